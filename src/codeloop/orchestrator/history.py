"""Conversation history helpers for the agent loop.

Keeps the history provider-neutral (plain user/assistant text), bounds its
size, and renders the summaries the loop falls back to when it runs out of
budget. Nothing here calls the model: compression summarizes from the
action log.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from codeloop.protocols import Message
    from codeloop.toolkit.models import ActionLog, ToolCall

logger = logging.getLogger(__name__)

RECENT_MESSAGES_TO_KEEP = 6


def history_chars(messages: Sequence[Message]) -> int:
    return sum(len(m["content"]) for m in messages)


def truncate_tool_result(output: str, max_chars: int) -> str:
    """Cap a tool's output, noting how much was cut."""
    if len(output) <= max_chars:
        return output
    dropped = len(output) - max_chars
    return (
        f"{output[:max_chars]}\n[... {dropped} chars truncated; use search_code or read "
        "specific sections if you need more]"
    )


def _targets(actions: Sequence[ActionLog], *types: str) -> list[str]:
    return [a.target for a in actions if a.type.value in types]


def compress_messages(
    messages: list[Message],
    actions: Sequence[ActionLog],
    threshold: int,
    *,
    keep: int = RECENT_MESSAGES_TO_KEEP,
    force: bool = False,
) -> list[Message]:
    """Shrink the history once it grows past ``threshold`` characters.

    The first message (the task) and the last ``keep`` messages survive
    verbatim; everything between becomes one summary message built from
    the action log.

    Returns:
        The same list when no compression was needed, else a new list.
    """
    if not force and history_chars(messages) < threshold:
        return messages
    if len(messages) <= keep + 1:
        return messages

    writes = _targets(actions, "write", "edit")
    deletes = _targets(actions, "delete")
    commands = _targets(actions, "command")
    reads = _targets(actions, "read")

    lines = ["[Context compressed: summary of work so far]"]
    if writes:
        lines.append(f"Files written/edited ({len(writes)}): {', '.join(writes)}")
    if deletes:
        lines.append(f"Files deleted: {', '.join(deletes)}")
    if commands:
        lines.append(f"Commands run: {', '.join(commands)}")
    if reads:
        lines.append(f"Files read ({len(reads)}): {', '.join(reads[-10:])}")
    lines.append("[End of summary: continuing from current state]")

    logger.debug(
        "Compressed history of %d chars to first + summary + last %d messages",
        history_chars(messages),
        keep,
    )
    return [messages[0], {"role": "user", "content": "\n".join(lines)}, *messages[-keep:]]


def render_tool_calls(calls: Sequence[ToolCall]) -> str:
    """Text form of native tool calls, for the neutral history."""
    blocks = []
    for call in calls:
        payload = json.dumps({"tool": call.tool, "parameters": call.parameters}, ensure_ascii=False)
        blocks.append(f"<tool_call>\n{payload}\n</tool_call>")
    return "\n".join(blocks)


def partial_progress(headline: str, actions: Sequence[ActionLog], footer: str) -> str:
    """Summary shown when a task stops before the model finished."""
    lines = [headline]
    done = list(dict.fromkeys(a.target for a in actions if a.type.value in ("write", "edit") and a.succeeded))
    if done:
        lines.append("")
        lines.append("Partial progress, files written/edited:")
        lines.extend(f"  - {path}" for path in done)
        lines.append("")
        lines.append(footer)
    return "\n".join(lines)


# Phrases that announce work the model has not started yet.
CONTINUE_INDICATORS = (
    "let me",
    "i will",
    "i'll",
    "now i",
    "next i",
    "creating",
    "writing",
    "generating",
    "let's",
    "going to",
    "need to create",
    "need to write",
)


def wants_to_continue(text: str, max_chars: int = 500) -> bool:
    """True for a short text-only answer that announces further work."""
    if not text.strip():
        return True
    lowered = text.lower()
    return len(text) < max_chars and any(indicator in lowered for indicator in CONTINUE_INDICATORS)
