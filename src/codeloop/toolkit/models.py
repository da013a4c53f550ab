"""Toolkit data models for the coding agent's tool protocol.

Frozen dataclasses for tool definitions, canonical tool calls, execution
results, and the action log derived from them.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    from pydantic import BaseModel

    from codeloop.operations.diff import FileDiff

# Closed set of canonical tool names, in registry order.
CANONICAL_TOOL_NAMES: tuple[str, ...] = (
    "read_file",
    "write_file",
    "edit_file",
    "delete_file",
    "list_files",
    "create_directory",
    "execute_command",
    "search_code",
    "find_files",
    "fetch_url",
)

# Tools whose execution changes files on disk.
MUTATING_TOOLS: frozenset[str] = frozenset(
    {"write_file", "edit_file", "delete_file", "create_directory"}
)


@dataclass(frozen=True)
class ToolParameter:
    """One named parameter of a tool.

    Attributes:
        name: Parameter key as sent by the model.
        type: JSON Schema type ("string", "boolean", "array", ...).
        description: Human-readable description for the model.
        required: Whether the parameter must be present.
        items: Item type for array parameters.
    """

    name: str
    type: str
    description: str
    required: bool = False
    items: str | None = None

    def to_schema(self) -> dict:
        """Return the JSON Schema property for this parameter."""
        schema: dict[str, Any] = {"type": self.type, "description": self.description}
        if self.items is not None:
            schema["items"] = {"type": self.items}
        return schema


@dataclass(frozen=True)
class ToolDefinition:
    """A single tool definition for LLM consumption.

    Attributes:
        name: Canonical tool name (e.g. "read_file").
        description: When and why the model should use the tool.
        parameters: Ordered parameter descriptions.
        params_model: Pydantic model that validates decoded arguments.
    """

    name: str
    description: str
    parameters: tuple[ToolParameter, ...]
    params_model: type[BaseModel]

    @property
    def required(self) -> list[str]:
        """Names of the required parameters, in declaration order."""
        return [p.name for p in self.parameters if p.required]

    def input_schema(self) -> dict:
        """Build the JSON Schema object shared by both dialect shapes."""
        return {
            "type": "object",
            "properties": {p.name: p.to_schema() for p in self.parameters},
            "required": self.required,
        }

    def to_openai(self) -> dict:
        """Convert to OpenAI function-calling format.

        Returns:
            Dict with "type": "function" and nested "function" object.
        """
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_schema(),
            },
        }

    def to_anthropic(self) -> dict:
        """Convert to Anthropic tool-use format.

        Returns:
            Dict with "name", "description", and "input_schema".
        """
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema(),
        }


@dataclass(frozen=True)
class ToolCall:
    """A canonical tool invocation requested by the model.

    Only ever constructed with a canonical tool name; the parser drops
    anything it cannot normalize before reaching this point.

    Attributes:
        tool: Canonical tool name.
        parameters: Decoded arguments, in the order the model sent them.
        id: Correlation token from the model API, if any.
        partial: True when the arguments were recovered from truncated output.
    """

    tool: str
    parameters: dict[str, Any] = field(default_factory=dict)
    id: str | None = None
    partial: bool = False

    def __post_init__(self) -> None:
        if self.tool not in CANONICAL_TOOL_NAMES:
            raise ValueError(f"Not a canonical tool name: {self.tool!r}")

    @property
    def is_mutating(self) -> bool:
        return self.tool in MUTATING_TOOLS

    def typed(self) -> BaseModel:
        """Return the parameters as the tool's typed parameter record."""
        from codeloop.toolkit.definitions import get_tool

        return get_tool(self.tool).params_model.model_validate(self.parameters)


@dataclass(frozen=True)
class ToolResult:
    """Structured result from executing one tool call.

    Attributes:
        tool: Canonical name of the executed tool.
        parameters: Parameters the tool was called with.
        success: Whether execution succeeded.
        output: String output on success.
        error: Error message on failure.
        diff: Preview of the file change, for mutating tools.
    """

    tool: str
    parameters: dict[str, Any]
    success: bool
    output: str = ""
    error: str = ""
    diff: FileDiff | None = None


class ActionType(str, enum.Enum):
    """Coarse category of an action, used for the action log."""

    READ = "read"
    WRITE = "write"
    EDIT = "edit"
    DELETE = "delete"
    LIST = "list"
    SEARCH = "search"
    MKDIR = "mkdir"
    FETCH = "fetch"
    COMMAND = "command"


@dataclass(frozen=True)
class ActionLog:
    """One entry in the record of what the agent did.

    Attributes:
        type: Action category.
        target: Path, command, pattern or URL the action addressed.
        result: "success" or "error".
        details: Truncated output, or the error message on failure.
        timestamp: When the entry was created (UTC).
    """

    type: ActionType
    target: str
    result: Literal["success", "error"]
    details: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def succeeded(self) -> bool:
        return self.result == "success"

    def to_dict(self) -> dict:
        """Plain-dict form suitable for JSON serialization."""
        return {
            "type": self.type.value,
            "target": self.target,
            "result": self.result,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }
