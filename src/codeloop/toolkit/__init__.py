"""Tool protocol layer: registry, parser and executor."""

from codeloop.toolkit.definitions import (
    format_tool_definitions,
    get_all_tools,
    get_anthropic_tools,
    get_openai_tools,
    get_tool,
    get_tool_schemas,
)
from codeloop.toolkit.executor import ToolExecutor, action_type_for, create_action_log
from codeloop.toolkit.filesystem import LocalFileSystem
from codeloop.toolkit.models import (
    CANONICAL_TOOL_NAMES,
    MUTATING_TOOLS,
    ActionLog,
    ActionType,
    ToolCall,
    ToolDefinition,
    ToolParameter,
    ToolResult,
)
from codeloop.toolkit.parsing import (
    build_tool_call,
    extract_partial_parameters,
    normalize_tool_name,
    parse_anthropic_tool_calls,
    parse_openai_tool_calls,
    parse_tool_calls,
    strip_tool_markup,
)

__all__ = [
    "ActionLog",
    "ActionType",
    "CANONICAL_TOOL_NAMES",
    "LocalFileSystem",
    "MUTATING_TOOLS",
    "ToolCall",
    "ToolDefinition",
    "ToolExecutor",
    "ToolParameter",
    "ToolResult",
    "action_type_for",
    "build_tool_call",
    "create_action_log",
    "extract_partial_parameters",
    "format_tool_definitions",
    "get_all_tools",
    "get_anthropic_tools",
    "get_openai_tools",
    "get_tool",
    "get_tool_schemas",
    "normalize_tool_name",
    "parse_anthropic_tool_calls",
    "parse_openai_tool_calls",
    "parse_tool_calls",
    "strip_tool_markup",
]
