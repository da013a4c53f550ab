"""Built-in httpx model clients with tenacity retry.

Provides sync HTTP clients for OpenAI-compatible chat completion APIs and
the Anthropic Messages API. Both read configuration from constructor
arguments or ``CODELOOP_*`` environment variables, retry transient errors
with exponential backoff, and fail immediately on authentication errors.
"""

from __future__ import annotations

import json
import logging
import os
from typing import TYPE_CHECKING, Any

import httpx
import tenacity

from codeloop.llm.errors import (
    LLMAuthError,
    LLMClientError,
    LLMConfigError,
    LLMContextLengthError,
    LLMRateLimitError,
    LLMResponseError,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from codeloop.cancellation import CancellationToken

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
_AUTH_ERROR_STATUS_CODES = {401, 403}
_CONTEXT_MARKERS = (
    "context_length_exceeded",
    "maximum context length",
    "context window",
    "prompt is too long",
    "too many tokens",
)


def _is_retryable(exc: BaseException) -> bool:
    """Check if an exception is retryable.

    Retryable: 429, 500, 502, 503, 504, connection errors.
    Not retryable: 401, 403, context overflow, other client errors.
    """
    if isinstance(exc, (LLMAuthError, LLMContextLengthError)):
        return False
    if isinstance(exc, LLMRateLimitError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in _RETRYABLE_STATUS_CODES
    return isinstance(exc, (httpx.ConnectError, httpx.ConnectTimeout))


def _retrying(max_retries: int) -> tenacity.Retrying:
    return tenacity.Retrying(
        retry=tenacity.retry_if_exception(_is_retryable),
        wait=(
            tenacity.wait_exponential(multiplier=1, min=1, max=30)
            + tenacity.wait_random(0, 2)
        ),
        stop=tenacity.stop_after_attempt(max_retries),
        before_sleep=tenacity.before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )


def _check_response(response: httpx.Response) -> None:
    """Map an HTTP error response onto the LLM error hierarchy.

    Raises:
        LLMAuthError: On 401/403.
        LLMRateLimitError: On 429.
        LLMContextLengthError: On 413, or a 400 that names the context limit.
        httpx.HTTPStatusError: On any other error status.
    """
    if response.status_code in _AUTH_ERROR_STATUS_CODES:
        raise LLMAuthError(
            f"Authentication failed: HTTP {response.status_code} - {response.text}"
        )

    if response.status_code == 429:
        retry_after_raw = response.headers.get("Retry-After")
        retry_after: float | None = None
        if retry_after_raw is not None:
            try:
                retry_after = float(retry_after_raw)
            except (ValueError, TypeError):
                pass
        raise LLMRateLimitError(
            f"Rate limited: HTTP 429 - {response.text}",
            retry_after=retry_after,
        )

    if response.status_code == 413 or (
        response.status_code == 400
        and any(marker in response.text.lower() for marker in _CONTEXT_MARKERS)
    ):
        raise LLMContextLengthError(
            f"Context length exceeded: HTTP {response.status_code} - {response.text}"
        )

    response.raise_for_status()


class OpenAIClient:
    """Sync httpx client for OpenAI-compatible chat completions.

    Implements the LLMClient protocol. Supports retry with exponential
    backoff for transient errors (429, 5xx). Fails immediately on
    authentication errors (401, 403).

    Usage::

        with OpenAIClient(api_key="sk-...") as client:
            response = client.chat([{"role": "user", "content": "Hello"}])
            text = OpenAIClient.extract_content(response)
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        default_model: str = "gpt-4o-mini",
        timeout: float = 120.0,
        max_retries: int = 3,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the OpenAI-compatible client.

        Args:
            api_key: API key. Falls back to CODELOOP_OPENAI_API_KEY env var.
            base_url: API base URL. Falls back to CODELOOP_OPENAI_BASE_URL env var,
                then to https://api.openai.com/v1.
            default_model: Default model for chat requests.
            timeout: Request timeout in seconds.
            max_retries: Maximum number of attempts for retryable errors.
            transport: Optional httpx transport (tests pass a MockTransport).

        Raises:
            LLMConfigError: If no API key is provided or found in environment.
        """
        self._api_key = api_key or os.environ.get("CODELOOP_OPENAI_API_KEY", "")
        if not self._api_key:
            raise LLMConfigError(
                "No API key provided. Pass api_key= or set CODELOOP_OPENAI_API_KEY "
                "environment variable."
            )
        self._base_url = (
            base_url
            or os.environ.get("CODELOOP_OPENAI_BASE_URL", "https://api.openai.com/v1")
        ).rstrip("/")
        self._default_model = default_model
        self._max_retries = max_retries
        self._client = httpx.Client(
            timeout=timeout,
            transport=transport,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self._api_key}",
            },
        )

    @property
    def default_model(self) -> str:
        return self._default_model

    def _payload(
        self,
        messages: list[dict[str, Any]],
        model: str | None,
        temperature: float | None,
        max_tokens: int | None,
        kwargs: dict[str, Any],
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": model or self._default_model,
            "messages": messages,
        }
        if temperature is not None:
            payload["temperature"] = temperature
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        payload.update(kwargs)
        return payload

    def chat(
        self,
        messages: list[dict[str, Any]],
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> dict:
        """Send chat completion request with retry.

        Args:
            messages: List of message dicts with 'role' and 'content'.
            model: Model to use. Falls back to default_model.
            temperature: Sampling temperature.
            max_tokens: Maximum tokens to generate.
            **kwargs: Additional payload parameters (e.g. ``tools``).

        Returns:
            Full response dict with 'choices', 'usage', 'model', etc.

        Raises:
            LLMAuthError: On 401/403 (no retry).
            LLMRateLimitError: On 429 after all retries exhausted.
            LLMContextLengthError: When the prompt exceeds the context window.
            LLMResponseError: On unexpected response format.
            httpx.HTTPStatusError: On other non-retryable HTTP errors.
        """
        payload = self._payload(messages, model, temperature, max_tokens, kwargs)
        return _retrying(self._max_retries)(self._do_chat, payload)

    def _do_chat(self, payload: dict[str, Any]) -> dict:
        """Execute a single chat completion request (no retry)."""
        response = self._client.post(f"{self._base_url}/chat/completions", json=payload)
        _check_response(response)
        data = response.json()
        if "choices" not in data:
            raise LLMResponseError(
                f"Unexpected response format: missing 'choices' key. Response: {data}"
            )
        return data

    def chat_stream(
        self,
        messages: list[dict[str, Any]],
        on_chunk: Callable[[str], None],
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        cancel_token: CancellationToken | None = None,
        **kwargs: Any,
    ) -> dict:
        """Stream a chat completion, delivering text deltas to ``on_chunk``.

        Tool-call deltas are accumulated by index. The return value has
        the same shape as :meth:`chat`, so callers handle both alike.
        Only the connection is retried; a stream that fails midway raises.

        Raises:
            LLMClientError: If ``cancel_token`` fires while streaming.
        """
        payload = self._payload(messages, model, temperature, max_tokens, kwargs)
        payload["stream"] = True
        return _retrying(self._max_retries)(self._do_stream, payload, on_chunk, cancel_token)

    def _do_stream(
        self,
        payload: dict[str, Any],
        on_chunk: Callable[[str], None],
        cancel_token: CancellationToken | None,
    ) -> dict:
        text_parts: list[str] = []
        calls: dict[int, dict[str, Any]] = {}
        usage: dict | None = None
        with self._client.stream("POST", f"{self._base_url}/chat/completions", json=payload) as response:
            if response.status_code >= 400:
                response.read()
                _check_response(response)
            for line in response.iter_lines():
                if cancel_token is not None and cancel_token.cancelled:
                    raise LLMClientError("Request cancelled")
                if not line.startswith("data:"):
                    continue
                data = line[len("data:"):].strip()
                if data == "[DONE]":
                    break
                try:
                    event = json.loads(data)
                except json.JSONDecodeError:
                    logger.debug("Skipping malformed stream event: %s", data[:200])
                    continue
                usage = event.get("usage") or usage
                for choice in event.get("choices") or []:
                    delta = choice.get("delta") or {}
                    if delta.get("content"):
                        text_parts.append(delta["content"])
                        on_chunk(delta["content"])
                    for part in delta.get("tool_calls") or []:
                        slot = calls.setdefault(
                            part.get("index", 0),
                            {"id": None, "type": "function", "function": {"name": "", "arguments": ""}},
                        )
                        if part.get("id"):
                            slot["id"] = part["id"]
                        function = part.get("function") or {}
                        slot["function"]["name"] += function.get("name") or ""
                        slot["function"]["arguments"] += function.get("arguments") or ""

        message: dict[str, Any] = {"role": "assistant", "content": "".join(text_parts)}
        if calls:
            message["tool_calls"] = [calls[i] for i in sorted(calls)]
        return {"choices": [{"index": 0, "message": message}], "usage": usage}

    def close(self) -> None:
        """Close the underlying httpx client."""
        self._client.close()

    def __enter__(self) -> OpenAIClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    @staticmethod
    def extract_content(response: dict) -> str:
        """Extract the assistant's message content from a response dict.

        Raises:
            LLMResponseError: If the response format is unexpected.
        """
        try:
            return response["choices"][0]["message"].get("content") or ""
        except (KeyError, IndexError, TypeError, AttributeError) as exc:
            raise LLMResponseError(
                f"Cannot extract content from response: {exc}. Response: {response}"
            ) from exc

    @staticmethod
    def extract_tool_calls(response: dict) -> list[dict]:
        """Raw ``message.tool_calls`` entries, or [] when there are none."""
        try:
            return response["choices"][0]["message"].get("tool_calls") or []
        except (KeyError, IndexError, TypeError, AttributeError):
            return []

    @staticmethod
    def extract_usage(response: dict) -> dict | None:
        return response.get("usage")


class AnthropicClient:
    """Sync httpx client for the Anthropic Messages API.

    Same retry and error behavior as :class:`OpenAIClient`. The system
    prompt is a top-level field rather than a message.

    Usage::

        with AnthropicClient(api_key="sk-ant-...") as client:
            response = client.chat([{"role": "user", "content": "Hello"}], system="Be brief.")
            text = AnthropicClient.extract_content(response)
    """

    API_VERSION = "2023-06-01"

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        default_model: str = "claude-sonnet-4-5",
        timeout: float = 120.0,
        max_retries: int = 3,
        max_tokens: int = 8192,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the Anthropic client.

        Args:
            api_key: API key. Falls back to CODELOOP_ANTHROPIC_API_KEY env var.
            base_url: API base URL. Falls back to CODELOOP_ANTHROPIC_BASE_URL,
                then to https://api.anthropic.com/v1.
            default_model: Default model for requests.
            timeout: Request timeout in seconds.
            max_retries: Maximum number of attempts for retryable errors.
            max_tokens: Default ``max_tokens`` (required by the API).
            transport: Optional httpx transport.

        Raises:
            LLMConfigError: If no API key is provided or found in environment.
        """
        self._api_key = api_key or os.environ.get("CODELOOP_ANTHROPIC_API_KEY", "")
        if not self._api_key:
            raise LLMConfigError(
                "No API key provided. Pass api_key= or set CODELOOP_ANTHROPIC_API_KEY "
                "environment variable."
            )
        self._base_url = (
            base_url
            or os.environ.get("CODELOOP_ANTHROPIC_BASE_URL", "https://api.anthropic.com/v1")
        ).rstrip("/")
        self._default_model = default_model
        self._max_tokens = max_tokens
        self._max_retries = max_retries
        self._client = httpx.Client(
            timeout=timeout,
            transport=transport,
            headers={
                "Content-Type": "application/json",
                "x-api-key": self._api_key,
                "anthropic-version": self.API_VERSION,
            },
        )

    @property
    def default_model(self) -> str:
        return self._default_model

    def chat(
        self,
        messages: list[dict[str, Any]],
        *,
        system: str | None = None,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> dict:
        """Send a Messages API request with retry.

        Returns:
            Full response dict with 'content' blocks and 'usage'.

        Raises:
            LLMAuthError: On 401/403 (no retry).
            LLMRateLimitError: On 429 after all retries exhausted.
            LLMContextLengthError: When the prompt exceeds the context window.
            LLMResponseError: On unexpected response format.
        """
        payload: dict[str, Any] = {
            "model": model or self._default_model,
            "max_tokens": max_tokens or self._max_tokens,
            "messages": messages,
        }
        if system:
            payload["system"] = system
        if temperature is not None:
            payload["temperature"] = temperature
        payload.update(kwargs)
        return _retrying(self._max_retries)(self._do_chat, payload)

    def _do_chat(self, payload: dict[str, Any]) -> dict:
        response = self._client.post(f"{self._base_url}/messages", json=payload)
        _check_response(response)
        data = response.json()
        if not isinstance(data.get("content"), list):
            raise LLMResponseError(
                f"Unexpected response format: missing 'content' list. Response: {data}"
            )
        return data

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> AnthropicClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    @staticmethod
    def extract_content(response: dict) -> str:
        """Concatenate the text blocks of a response."""
        return "".join(
            block.get("text", "")
            for block in response.get("content") or []
            if isinstance(block, dict) and block.get("type") == "text"
        )

    @staticmethod
    def extract_tool_calls(response: dict) -> list[dict]:
        """The ``tool_use`` content blocks of a response."""
        return [
            block
            for block in response.get("content") or []
            if isinstance(block, dict) and block.get("type") == "tool_use"
        ]

    @staticmethod
    def extract_usage(response: dict) -> dict | None:
        return response.get("usage")
