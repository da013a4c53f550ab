"""Risk classification used by the ``dangerous`` confirmation policy."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from codeloop.toolkit.models import ToolCall

# Tools that change files or run processes.
RISKY_TOOLS: frozenset[str] = frozenset(
    {"write_file", "edit_file", "delete_file", "execute_command"}
)

RISK_KEYWORDS: tuple[str, ...] = (
    "delete",
    "remove",
    "drop",
    "reset",
    "force",
    "overwrite",
    "truncate",
    "replace all",
    "rm ",
)


def _target_text(call: ToolCall) -> str:
    params = call.parameters
    parts = [str(params.get(key, "")) for key in ("path", "command", "pattern", "url")]
    args = params.get("args")
    if isinstance(args, list):
        parts.extend(str(a) for a in args)
    return " ".join(p for p in parts if p).lower()


def matches_risk_keyword(text: str) -> bool:
    """Return True if ``text`` mentions one of the risk keywords."""
    lowered = text.lower()
    return any(keyword in lowered for keyword in RISK_KEYWORDS)


def is_dangerous(call: ToolCall) -> bool:
    """Return True if ``call`` needs approval under the ``dangerous`` policy.

    A call is dangerous when its tool writes, edits, deletes or runs a
    command, or when its target text matches a risk keyword.
    """
    if call.tool in RISKY_TOOLS:
        return True
    # Trailing space so "rm" as a whole command still matches "rm ".
    return matches_risk_keyword(_target_text(call) + " ")
