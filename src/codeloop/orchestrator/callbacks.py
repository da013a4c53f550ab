"""Built-in confirmation callbacks for the agent loop.

Provides ready-made callbacks for common approval workflows:
auto_approve, log_and_approve, cli_prompt, and reject_all.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from codeloop.operations.diff import FileDiff
    from codeloop.toolkit.models import ToolCall

logger = logging.getLogger(__name__)


def auto_approve(call: ToolCall, diff: FileDiff | None) -> bool:
    """Approve every call.

    For unattended runs; equivalent to ``confirmation="never"``.
    """
    return True


def log_and_approve(call: ToolCall, diff: FileDiff | None) -> bool:
    """Log the call then approve it, leaving an audit trail."""
    logger.info(
        "Approving %s %s%s%s",
        call.tool,
        json.dumps(call.parameters, ensure_ascii=False)[:200],
        f" (+{diff.additions} -{diff.deletions})" if diff is not None else "",
        " [recovered from truncated output]" if call.partial else "",
    )
    return True


def cli_prompt(call: ToolCall, diff: FileDiff | None) -> bool:
    """Interactive terminal prompt showing the call and its diff preview."""
    from rich.console import Console
    from rich.panel import Panel

    from codeloop.formatting import pprint_file_diff

    console = Console()
    content = (
        f"[bold]Tool:[/bold] {call.tool}\n"
        f"[bold]Parameters:[/bold] {json.dumps(_abbreviate(call.parameters), indent=2, ensure_ascii=False)}"
    )
    if call.partial:
        content += "\n[bold red]Recovered from truncated output; content may be incomplete.[/bold red]"
    console.print(Panel(content, title="Confirm action", border_style="yellow"))
    if diff is not None:
        pprint_file_diff(diff)

    try:
        while True:
            choice = console.input("[y]es / [n]o: ").strip().lower()
            if choice in ("y", "yes"):
                return True
            if choice in ("n", "no"):
                return False
            console.print("Invalid choice. Enter 'y' or 'n'.")
    except (EOFError, KeyboardInterrupt):
        return False


def reject_all(call: ToolCall, diff: FileDiff | None) -> bool:
    """Reject every call that needs confirmation.

    For testing and safety; dangerous actions never run.
    """
    return False


def _abbreviate(parameters: dict, limit: int = 400) -> dict:
    shown = {}
    for key, value in parameters.items():
        if isinstance(value, str) and len(value) > limit:
            value = value[:limit] + f"... ({len(value) - limit} more chars)"
        shown[key] = value
    return shown
