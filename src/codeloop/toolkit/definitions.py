"""The fixed tool registry exposed to the model.

Each tool has a typed parameter record (a pydantic model). The JSON Schema
sent to the model, the required-parameter lists and the parser's per-tool
validation are all derived from those records, so the two dialect shapes
cannot drift apart.
"""

from __future__ import annotations

import shlex
import typing
from typing import Any

from pydantic import BaseModel, Field, field_validator

from codeloop.toolkit.models import CANONICAL_TOOL_NAMES, ToolDefinition, ToolParameter

_PATH_DESCRIPTION = "Path to the file relative to project root"


class ToolParams(BaseModel):
    """Base for typed tool parameter records."""

    model_config = {"extra": "ignore"}


class ReadFileParams(ToolParams):
    path: str = Field(min_length=1, description=_PATH_DESCRIPTION)


class WriteFileParams(ToolParams):
    path: str = Field(min_length=1, description=_PATH_DESCRIPTION)
    content: str = Field(description="The complete content to write to the file")


class EditFileParams(ToolParams):
    path: str = Field(min_length=1, description=_PATH_DESCRIPTION)
    old_text: str = Field(description="The exact text to find and replace")
    new_text: str = Field(description="The new text to replace with")


class DeleteFileParams(ToolParams):
    path: str = Field(
        min_length=1,
        description="Path to the file or directory relative to project root",
    )


class ListFilesParams(ToolParams):
    path: str = Field(
        min_length=1,
        description='Path to directory relative to project root (use "." for root)',
    )
    recursive: bool = Field(
        default=False, description="Whether to list recursively (default: false)"
    )


class CreateDirectoryParams(ToolParams):
    path: str = Field(
        min_length=1,
        description="Path to the directory to create, relative to project root",
    )


class ExecuteCommandParams(ToolParams):
    command: str = Field(
        min_length=1, description="The command to run (e.g., npm, git, node)"
    )
    args: list[str] = Field(
        default_factory=list,
        description='Command arguments as array (e.g., ["install", "lodash"])',
    )

    @field_validator("args", mode="before")
    @classmethod
    def _coerce_args(cls, value: Any) -> Any:
        # Models sometimes send "install lodash" or [1, "x"] instead of strings.
        if isinstance(value, str):
            return shlex.split(value)
        if isinstance(value, list):
            return [v if isinstance(v, str) else str(v) for v in value]
        return value


class SearchCodeParams(ToolParams):
    pattern: str = Field(min_length=1, description="Text or regex pattern to search for")
    path: str = Field(
        default=".", description="Path to search in (default: entire project)"
    )


class FindFilesParams(ToolParams):
    pattern: str = Field(
        min_length=1, description='Glob pattern to match file names (e.g., "*.py")'
    )
    path: str = Field(
        default=".", description="Directory to search in (default: entire project)"
    )


class FetchUrlParams(ToolParams):
    url: str = Field(min_length=1, description="The URL to fetch content from")


_JSON_TYPES: dict[type, str] = {str: "string", bool: "boolean", int: "integer", float: "number"}


def _json_type(annotation: Any) -> tuple[str, str | None]:
    """Map a parameter annotation to a (JSON type, array item type) pair."""
    if typing.get_origin(annotation) is list:
        (item,) = typing.get_args(annotation) or (str,)
        return "array", _JSON_TYPES.get(item, "string")
    return _JSON_TYPES.get(annotation, "string"), None


def _define(name: str, description: str, params_model: type[ToolParams]) -> ToolDefinition:
    parameters = []
    for param_name, info in params_model.model_fields.items():
        json_type, items = _json_type(info.annotation)
        parameters.append(
            ToolParameter(
                name=param_name,
                type=json_type,
                description=info.description or "",
                required=info.is_required(),
                items=items,
            )
        )
    return ToolDefinition(
        name=name,
        description=description,
        parameters=tuple(parameters),
        params_model=params_model,
    )


_REGISTRY: dict[str, ToolDefinition] = {
    tool.name: tool
    for tool in (
        _define(
            "read_file",
            "Read the contents of a file. Use this to examine existing code.",
            ReadFileParams,
        ),
        _define(
            "write_file",
            "Create a new file or completely overwrite an existing file with new content.",
            WriteFileParams,
        ),
        _define(
            "edit_file",
            "Edit an existing file by replacing specific text. Use for targeted changes.",
            EditFileParams,
        ),
        _define(
            "delete_file",
            "Delete a file or directory from the project. For directories, deletes recursively.",
            DeleteFileParams,
        ),
        _define(
            "list_files",
            "List files and directories in a path. Use to explore project structure.",
            ListFilesParams,
        ),
        _define(
            "create_directory",
            "Create a new directory (folder). Creates parent directories if needed.",
            CreateDirectoryParams,
        ),
        _define(
            "execute_command",
            "Execute a shell command. Use for npm, git, build tools, tests, etc.",
            ExecuteCommandParams,
        ),
        _define(
            "search_code",
            "Search for a text pattern in the codebase. Returns matching files and lines.",
            SearchCodeParams,
        ),
        _define(
            "find_files",
            "Find files whose names match a glob pattern. Returns relative paths.",
            FindFilesParams,
        ),
        _define(
            "fetch_url",
            "Fetch content from a URL (documentation, APIs, web pages). Returns text content.",
            FetchUrlParams,
        ),
    )
}

if tuple(_REGISTRY) != CANONICAL_TOOL_NAMES:
    raise RuntimeError(
        f"Tool registry out of sync with canonical names: {tuple(_REGISTRY)} != {CANONICAL_TOOL_NAMES}"
    )


def get_all_tools() -> list[ToolDefinition]:
    """Return every tool definition in registry order."""
    return list(_REGISTRY.values())


def get_tool(name: str) -> ToolDefinition:
    """Look up a tool by canonical name.

    Raises:
        KeyError: If ``name`` is not a canonical tool name.
    """
    return _REGISTRY[name]


def get_openai_tools() -> list[dict]:
    """Registry in the function-envelope shape (OpenAI ``tools`` parameter)."""
    return [tool.to_openai() for tool in _REGISTRY.values()]


def get_anthropic_tools() -> list[dict]:
    """Registry in the flat tool-use shape (Anthropic ``tools`` parameter)."""
    return [tool.to_anthropic() for tool in _REGISTRY.values()]


def get_tool_schemas(dialect: str) -> list[dict]:
    """Return the registry in the named dialect shape.

    Args:
        dialect: "openai" or "anthropic".

    Raises:
        ValueError: On an unknown dialect.
    """
    if dialect == "openai":
        return get_openai_tools()
    if dialect == "anthropic":
        return get_anthropic_tools()
    raise ValueError(f"Unknown tool schema dialect: {dialect!r}")


def format_tool_definitions() -> str:
    """Render the registry as plain text for models without native tool calling."""
    lines: list[str] = []
    for tool in _REGISTRY.values():
        lines.append(f"### {tool.name}")
        lines.append(tool.description)
        lines.append("Parameters:")
        for param in tool.parameters:
            required = "(required)" if param.required else "(optional)"
            lines.append(f"  - {param.name}: {param.type} {required} - {param.description}")
        lines.append("")
    return "\n".join(lines)
