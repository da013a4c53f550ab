"""LLM client protocol.

Defines the pluggable interface the model adapters drive.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class LLMClient(Protocol):
    """Protocol for pluggable LLM clients.

    Any object with chat() and close() methods matching this signature works.
    The built-in OpenAIClient and AnthropicClient implement this protocol.

    Custom clients can override ``extract_content()`` and
    ``extract_tool_calls()`` to support other response formats. The
    defaults assume OpenAI-style responses.
    """

    def chat(
        self,
        messages: list[dict[str, Any]],
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> dict:
        """Send messages, return response dict."""
        ...

    def close(self) -> None:
        """Release underlying resources."""
        ...

    def extract_content(self, response: dict) -> str:
        """Extract assistant message content from an LLM response.

        Default assumes ``response["choices"][0]["message"]["content"]``.
        """
        try:
            return response["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as exc:
            raise ValueError(
                f"Cannot extract content from response: {exc}. "
                f"Override extract_content() for custom formats."
            ) from exc

    def extract_tool_calls(self, response: dict) -> list[dict]:
        """Extract raw tool calls from an LLM response.

        Default assumes ``response["choices"][0]["message"]["tool_calls"]``.
        """
        try:
            return response["choices"][0]["message"].get("tool_calls") or []
        except (KeyError, IndexError, TypeError, AttributeError):
            return []
