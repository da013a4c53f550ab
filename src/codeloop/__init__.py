"""Codeloop: an autonomous coding agent for local projects.

The agent plans with an LLM, acts through a fixed set of file, search and
command tools, previews every change as a diff, asks before dangerous
actions, and verifies its work with the project's own build and tests.
"""

from codeloop._version import __version__

# Core entry point
from codeloop.orchestrator import (
    Agent,
    AgentEvent,
    AgentOutcome,
    AgentSession,
    AgentState,
    auto_approve,
    cli_prompt,
    format_outcome,
    log_and_approve,
    reject_all,
    run_agent,
)

# Configuration
from codeloop.models.config import AgentConfig, ConfirmationPolicy, VerifyOptions

# Protocols
from codeloop.protocols import (
    CommandRunner,
    ConfirmCallback,
    Message,
    ModelClient,
    ModelRequest,
    ModelResponse,
)

# Tools
from codeloop.toolkit import (
    ActionLog,
    ActionType,
    ToolCall,
    ToolDefinition,
    ToolExecutor,
    ToolResult,
    format_tool_definitions,
    get_tool_schemas,
    parse_tool_calls,
)

# Safety
from codeloop.safety import ValidationResult, is_dangerous, validate_command

# Diffs
from codeloop.operations.diff import (
    DiffHunk,
    DiffLine,
    FileDiff,
    apply_diff,
    format_diff,
    generate_diff,
)

# Verification
from codeloop.verification import ParsedError, Verifier, VerifyResult, parse_errors

# Execution
from codeloop.cancellation import CancellationToken
from codeloop.shell import CommandResult, run_command

# Exceptions
from codeloop.exceptions import (
    AgentBusyError,
    AgentError,
    CodeloopError,
    ConfigError,
    ModelCallError,
    PathOutsideRootError,
    TaskCancelledError,
    ToolExecutionError,
    VerificationError,
)

__all__ = [
    "__version__",
    # Core
    "Agent",
    "AgentEvent",
    "AgentOutcome",
    "AgentSession",
    "AgentState",
    "format_outcome",
    "run_agent",
    # Confirmation callbacks
    "auto_approve",
    "cli_prompt",
    "log_and_approve",
    "reject_all",
    # Configuration
    "AgentConfig",
    "ConfirmationPolicy",
    "VerifyOptions",
    # Protocols
    "CommandRunner",
    "ConfirmCallback",
    "Message",
    "ModelClient",
    "ModelRequest",
    "ModelResponse",
    # Tools
    "ActionLog",
    "ActionType",
    "ToolCall",
    "ToolDefinition",
    "ToolExecutor",
    "ToolResult",
    "format_tool_definitions",
    "get_tool_schemas",
    "parse_tool_calls",
    # Safety
    "ValidationResult",
    "is_dangerous",
    "validate_command",
    # Diffs
    "DiffHunk",
    "DiffLine",
    "FileDiff",
    "apply_diff",
    "format_diff",
    "generate_diff",
    # Verification
    "ParsedError",
    "Verifier",
    "VerifyResult",
    "parse_errors",
    # Execution
    "CancellationToken",
    "CommandResult",
    "run_command",
    # Exceptions
    "AgentBusyError",
    "AgentError",
    "CodeloopError",
    "ConfigError",
    "ModelCallError",
    "PathOutsideRootError",
    "TaskCancelledError",
    "ToolExecutionError",
    "VerificationError",
]
