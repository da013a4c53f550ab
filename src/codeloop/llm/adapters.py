"""Adapters from the LLM clients to the agent's ModelClient contract.

The agent loop only knows :class:`~codeloop.protocols.ModelRequest` and
:class:`~codeloop.protocols.ModelResponse`. These adapters translate a
request into one provider call and the provider's reply back into a
response, leaving tool-call parsing to the loop.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from codeloop.protocols import ModelResponse

if TYPE_CHECKING:
    from codeloop.llm.client import AnthropicClient, OpenAIClient
    from codeloop.protocols import Message, ModelRequest

logger = logging.getLogger(__name__)


class OpenAIModelClient:
    """ModelClient backed by an OpenAI-compatible chat completions API.

    Usage::

        client = OpenAIClient(api_key="sk-...")
        agent = Agent(root, model=OpenAIModelClient(client, model="gpt-4o"))
    """

    def __init__(
        self,
        client: OpenAIClient,
        *,
        model: str | None = None,
        temperature: float | None = 0.0,
        max_tokens: int | None = None,
        stream: bool = True,
    ) -> None:
        self._client = client
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._stream = stream

    def __call__(self, request: ModelRequest) -> ModelResponse:
        messages: list[dict[str, Any]] = [{"role": "system", "content": request.system_prompt}]
        messages.extend(request.messages)
        kwargs: dict[str, Any] = {}
        if request.tools:
            kwargs["tools"] = request.tools
            kwargs["tool_choice"] = "auto"

        if self._stream and request.on_chunk is not None:
            response = self._client.chat_stream(
                messages,
                request.on_chunk,
                model=self._model,
                temperature=self._temperature,
                max_tokens=self._max_tokens,
                cancel_token=request.cancel_token,
                **kwargs,
            )
        else:
            response = self._client.chat(
                messages,
                model=self._model,
                temperature=self._temperature,
                max_tokens=self._max_tokens,
                **kwargs,
            )

        return ModelResponse(
            text=self._client.extract_content(response),
            raw_tool_calls=self._client.extract_tool_calls(response) or None,
            dialect="openai",
            usage=self._client.extract_usage(response) or {},
        )


def merge_consecutive_roles(messages: list[Message]) -> list[dict[str, Any]]:
    """Join adjacent same-role messages; the Messages API requires alternation."""
    merged: list[dict[str, Any]] = []
    for message in messages:
        if merged and merged[-1]["role"] == message["role"]:
            merged[-1]["content"] += "\n\n" + message["content"]
        else:
            merged.append({"role": message["role"], "content": message["content"]})
    return merged


class AnthropicModelClient:
    """ModelClient backed by the Anthropic Messages API.

    Expects tools in the flat tool-use shape (``schema_dialect="anthropic"``).
    Streamed text is delivered once the reply is complete.
    """

    def __init__(
        self,
        client: AnthropicClient,
        *,
        model: str | None = None,
        temperature: float | None = 0.0,
        max_tokens: int | None = None,
    ) -> None:
        self._client = client
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens

    def __call__(self, request: ModelRequest) -> ModelResponse:
        kwargs: dict[str, Any] = {}
        if request.tools:
            if request.dialect != "anthropic":
                logger.warning("AnthropicModelClient received %s-shaped tools", request.dialect)
            kwargs["tools"] = request.tools
        response = self._client.chat(
            merge_consecutive_roles(request.messages),
            system=request.system_prompt,
            model=self._model,
            temperature=self._temperature,
            max_tokens=self._max_tokens,
            **kwargs,
        )
        text = self._client.extract_content(response)
        if text and request.on_chunk is not None:
            request.on_chunk(text)
        return ModelResponse(
            text=text,
            raw_tool_calls=self._client.extract_tool_calls(response) or None,
            dialect="anthropic",
            usage=self._client.extract_usage(response) or {},
        )
