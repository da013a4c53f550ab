"""Agent loop state, session and outcome models.

Provides AgentState, AgentSession, AgentEvent and AgentOutcome for the
agent's think-confirm-execute loop.
"""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from codeloop.cancellation import CancellationToken

if TYPE_CHECKING:
    from codeloop.protocols import Message
    from codeloop.toolkit.models import ActionLog
    from codeloop.verification.models import ParsedError, VerifyResult


class AgentState(str, enum.Enum):
    """States the agent moves through while running a task."""

    IDLE = "idle"
    THINKING = "thinking"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    EXECUTING = "executing"
    VERIFYING = "verifying"
    COMPLETED = "completed"
    ABORTED = "aborted"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (AgentState.COMPLETED, AgentState.ABORTED, AgentState.FAILED)


@dataclass
class AgentSession:
    """Runtime state of one task.

    Mutable: created when a task starts, mutated only by the agent loop,
    and discarded when the loop returns. Callers that want to keep the
    action log or history copy them out of the AgentOutcome.
    """

    task: str
    cancel_token: CancellationToken = field(default_factory=CancellationToken)
    state: AgentState = AgentState.IDLE
    running: bool = False
    iteration: int = 0
    fix_attempts: int = 0
    nudges: int = 0
    compressed: bool = False
    messages: list[Message] = field(default_factory=list)
    actions: list[ActionLog] = field(default_factory=list)
    verify_results: list[VerifyResult] = field(default_factory=list)
    read_cache: dict[str, str] = field(default_factory=dict)
    last_write: dict[str, str] = field(default_factory=dict)
    duplicate_writes: int = 0
    started_at: float = field(default_factory=time.monotonic)

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started_at

    @property
    def touched_files(self) -> list[str]:
        """Targets of successful write, edit and delete actions, first-seen order."""
        seen: dict[str, None] = {}
        for action in self.actions:
            if action.type.value in ("write", "edit", "delete") and action.succeeded:
                seen.setdefault(action.target, None)
        return list(seen)


@dataclass(frozen=True)
class AgentEvent:
    """A notification from the running loop to its observer.

    Kinds: "state", "iteration", "tool_call", "tool_result", "denied",
    "compressed", "verification", "finished".
    """

    kind: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AgentOutcome:
    """Final result of a task.

    Frozen: the outcome is an immutable record of what happened. Every
    terminal state carries the full action log collected so far.

    Attributes:
        state: COMPLETED, ABORTED or FAILED.
        message: Final answer, or a partial-progress summary.
        actions: Every action the agent took, in order.
        iterations: Model calls made, fix rounds included.
        fix_attempts: Verification fix rounds used.
        verify_results: Results of the last verification pass.
        residual_errors: Errors still failing when fix attempts ran out.
        error: Why the task did not complete, when it did not.
        duration: Wall-clock seconds.
    """

    state: AgentState
    message: str = ""
    actions: tuple[ActionLog, ...] = ()
    iterations: int = 0
    fix_attempts: int = 0
    verify_results: tuple[VerifyResult, ...] = ()
    residual_errors: tuple[ParsedError, ...] = ()
    error: str | None = None
    duration: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.state == AgentState.COMPLETED

    @property
    def aborted(self) -> bool:
        return self.state == AgentState.ABORTED

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "message": self.message,
            "actions": [a.to_dict() for a in self.actions],
            "iterations": self.iterations,
            "fix_attempts": self.fix_attempts,
            "verify_results": [r.to_dict() for r in self.verify_results],
            "residual_errors": [e.to_dict() for e in self.residual_errors],
            "error": self.error,
            "duration": self.duration,
        }
