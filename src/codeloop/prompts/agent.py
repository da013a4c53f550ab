"""Agent loop prompts.

Provides the system prompt for native tool calling, the text-fallback
variant that embeds the tool registry, and the follow-up messages the loop
sends between model calls (tool results, continue nudges, fix requests).
"""

from __future__ import annotations

import logging
import os

from codeloop.toolkit.definitions import format_tool_definitions

logger = logging.getLogger(__name__)

AGENT_SYSTEM_PROMPT = """You are an AI coding agent with FULL autonomous access to this project.

## Your Capabilities
- Read, write, edit, and delete files and directories
- Create directories with the create_directory tool
- Execute shell commands (package managers, build tools, version control)
- Search code and find files in the project
- Fetch documentation from a URL

## Follow User Instructions Exactly
- Do EXACTLY what the user asks, and keep working until the ENTIRE task is finished
- The user may write in any language; tool names and parameters are ALWAYS in English
- Only stop when every file needed for a complete, working solution exists

## Rules
1. Always read files before editing them to understand the current content
2. Use edit_file for modifications to existing files (preserves other content)
3. Use write_file only for creating new files or complete overwrites
4. Use list_files, find_files and search_code instead of ls, find or grep
5. Use execute_command ONLY for package managers, build tools, tests and git
6. All paths are relative to the project root
7. When the task is complete, respond with a summary WITHOUT any tool calls
8. If the task is NOT complete, you MUST call a tool. Never describe what you
   are about to do without doing it.

## Project Information
Root: {root}"""

FALLBACK_TOOL_INSTRUCTIONS = """## Tool Format
Call a tool by writing a JSON object inside <tool_call> tags:

<tool_call>
{{"tool": "read_file", "parameters": {{"path": "src/app.py"}}}}
</tool_call>

You may make several tool calls in one response. Escape newlines and quotes
inside JSON strings.

## Available Tools

{tools}"""

TOOL_RESULTS_SUFFIX = "Continue with the task. If this subtask is complete, provide a summary without tool calls."

CONTINUE_NUDGE = "Continue. Execute the tool calls now."

DENIED_MESSAGE = (
    "The user declined to run {tool}. The remaining tool calls in that response "
    "were not executed. Choose a different approach or ask for clarification."
)

DUPLICATE_WRITE_WARNING = (
    "[WARNING] You have written the same content to `{path}` {count} times in a row. "
    "You are stuck in a loop. Read the file to check its current state, then try a "
    "completely different approach."
)

_PROJECT_RULE_FILES = (os.path.join(".codeloop", "rules.md"), "CODELOOP.md")


def load_project_rules(project_root: str) -> str:
    """Return the project's rules section, or "" when the project has none.

    Rules live in ``.codeloop/rules.md`` or ``CODELOOP.md``; the first
    non-empty file wins.
    """
    for name in _PROJECT_RULE_FILES:
        path = os.path.join(project_root, name)
        if not os.path.isfile(path):
            continue
        try:
            with open(path, encoding="utf-8") as fh:
                content = fh.read().strip()
        except OSError:
            logger.debug("Failed to read project rules from %s", path, exc_info=True)
            continue
        if content:
            logger.debug("Loaded project rules from %s", path)
            return (
                "\n\n## Project Rules\nThe following rules are defined by the project "
                f"owner. You MUST follow these rules:\n\n{content}"
            )
    return ""


def build_system_prompt(project_root: str, *, native_tools: bool = True) -> str:
    """Build the agent system prompt.

    Args:
        project_root: Absolute project root, shown to the model.
        native_tools: When False the tool registry is described in the
            prompt so the model can call tools in text form.

    Returns:
        The system prompt string.
    """
    prompt = AGENT_SYSTEM_PROMPT.format(root=project_root)
    if not native_tools:
        prompt += "\n\n" + FALLBACK_TOOL_INSTRUCTIONS.format(tools=format_tool_definitions())
    return prompt + load_project_rules(project_root)


def build_tool_results_message(entries: list[str]) -> str:
    """Wrap per-tool result entries into the next user message."""
    return "Tool results:\n\n" + "\n\n".join(entries) + "\n\n" + TOOL_RESULTS_SUFFIX


def build_fix_prompt(errors_text: str, attempt: int, max_attempts: int, *, repeating: bool) -> str:
    """Build the "fix these errors" message for one verification round.

    Args:
        errors_text: Output of ``format_errors_for_agent``.
        attempt: 1-based fix attempt number.
        max_attempts: Configured maximum.
        repeating: True when the errors are identical to the previous round.
    """
    if repeating:
        return (
            f"{errors_text}\n\nYour previous fix attempt did NOT resolve these errors; "
            "they are still the same. You MUST try a completely different approach:\n"
            "- Re-read the affected files to understand the current state\n"
            "- Consider whether the root cause is different from what you assumed\n"
            "- Try an alternative implementation strategy\n"
            "- If a dependency is missing, install it with execute_command"
        )
    if attempt == 1:
        return (
            f"{errors_text}\n\nFix these errors. Read the affected files first to "
            "understand the current state before making changes."
        )
    return (
        f"{errors_text}\n\nAttempt {attempt}/{max_attempts}: errors remain after your "
        "previous fix. Re-read ALL affected files and take a fresh look; consider "
        "whether there are related issues you missed."
    )
