"""LLM client infrastructure for Codeloop.

Provides OpenAI-compatible and Anthropic HTTP clients, the pluggable
LLMClient protocol, and adapters that plug a client into the agent loop.
"""

from codeloop.llm.adapters import AnthropicModelClient, OpenAIModelClient
from codeloop.llm.client import AnthropicClient, OpenAIClient
from codeloop.llm.errors import (
    LLMAuthError,
    LLMClientError,
    LLMConfigError,
    LLMContextLengthError,
    LLMRateLimitError,
    LLMResponseError,
)
from codeloop.llm.protocols import LLMClient

__all__ = [
    "AnthropicClient",
    "AnthropicModelClient",
    "OpenAIClient",
    "OpenAIModelClient",
    "LLMClient",
    "LLMClientError",
    "LLMConfigError",
    "LLMContextLengthError",
    "LLMRateLimitError",
    "LLMAuthError",
    "LLMResponseError",
]
