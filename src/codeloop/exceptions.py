"""Codeloop exception hierarchy.

All Codeloop-specific exceptions inherit from CodeloopError.

Parse failures, safety rejections and tool execution failures are never
raised: they travel as values (an empty call list, or a ToolResult with
``success=False``). Only the conditions below escape to the caller.
"""


class CodeloopError(Exception):
    """Base exception for all Codeloop errors."""


class ConfigError(CodeloopError):
    """Raised when an agent or client configuration value is invalid."""


class AgentError(CodeloopError):
    """Raised when the agent loop cannot proceed."""


class AgentBusyError(AgentError):
    """Raised when a task is started on a session that is already running."""

    def __init__(self) -> None:
        super().__init__("Agent already running. Cancel the current task first.")


class ModelCallError(AgentError):
    """Raised when the model-call collaborator fails unrecoverably.

    Attributes:
        cause: The underlying exception raised by the model collaborator.
    """

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        self.cause = cause
        super().__init__(message)


class TaskCancelledError(AgentError):
    """Raised inside the loop when the session's cancellation token fires."""

    def __init__(self) -> None:
        super().__init__("Task cancelled by user")


class VerificationError(CodeloopError):
    """Raised when verification cannot be started (e.g. missing project root)."""

    def __init__(self, project_root: str, reason: str) -> None:
        self.project_root = project_root
        self.reason = reason
        super().__init__(f"Cannot verify {project_root}: {reason}")


class ToolExecutionError(CodeloopError):
    """Raised inside a tool handler; the executor turns it into a failed ToolResult."""


class PathOutsideRootError(ToolExecutionError):
    """Raised when a tool path resolves outside the project root."""

    def __init__(self, path: str, reason: str = "is outside project directory") -> None:
        self.path = path
        super().__init__(f"Path '{path}' {reason}")
