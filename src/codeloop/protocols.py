"""Collaborator contracts for the agent core.

The core never talks to a model API, a process table or a terminal
directly. It calls the collaborators defined here, so callers can plug in
any transport, runner or UI.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal, Protocol, TypedDict, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence

    from codeloop.cancellation import CancellationToken
    from codeloop.operations.diff import FileDiff
    from codeloop.shell import CommandResult
    from codeloop.toolkit.models import ToolCall

Dialect = Literal["openai", "anthropic"]


class Message(TypedDict):
    """One conversation turn in provider-neutral form."""

    role: Literal["user", "assistant"]
    content: str


@dataclass(frozen=True)
class ModelRequest:
    """Everything the model collaborator needs for one call.

    Attributes:
        system_prompt: Instructions for the model.
        messages: Conversation so far, oldest first.
        tools: Tool schemas in ``dialect`` shape, or None for text-only
            models (the system prompt then describes the tools).
        dialect: Shape of ``tools``.
        on_chunk: Receives streamed text fragments, when streaming.
        cancel_token: Lets a long request be abandoned.
    """

    system_prompt: str
    messages: list[Message]
    tools: list[dict] | None = None
    dialect: Dialect = "openai"
    on_chunk: Callable[[str], None] | None = None
    cancel_token: CancellationToken | None = None


@dataclass(frozen=True)
class ModelResponse:
    """What the model said.

    Attributes:
        text: Assistant text (may be empty when only tools were called).
        raw_tool_calls: Native tool invocations in ``dialect`` shape:
            OpenAI ``message.tool_calls`` entries, or Anthropic content
            blocks. None when the model answered in text only.
        dialect: Shape of ``raw_tool_calls``.
        usage: Provider usage numbers, if reported.
    """

    text: str = ""
    raw_tool_calls: list[dict] | None = None
    dialect: Dialect = "openai"
    usage: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class ModelClient(Protocol):
    """Anything that turns a ModelRequest into a reply.

    Returning a bare string is shorthand for ``ModelResponse(text=...)``.
    Raising any exception is treated as a fatal model-call failure.
    """

    def __call__(self, request: ModelRequest) -> ModelResponse | str:
        ...


@runtime_checkable
class CommandRunner(Protocol):
    """Runs one subprocess; :func:`codeloop.shell.run_command` is the default."""

    def __call__(
        self,
        command: str,
        args: Sequence[str] = (),
        *,
        cwd: str | None = None,
        timeout: float = 60.0,
        env: Mapping[str, str] | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> CommandResult:
        ...


@runtime_checkable
class ConfirmCallback(Protocol):
    """Asks the user whether ``call`` may run; ``diff`` previews file changes."""

    def __call__(self, call: ToolCall, diff: FileDiff | None) -> bool:
        ...
