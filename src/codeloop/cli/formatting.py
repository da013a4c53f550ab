"""Rich formatting helpers for the Codeloop CLI.

Rich auto-detects TTY and degrades gracefully when piped (no ANSI codes).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console
from rich.markup import escape
from rich.text import Text

if TYPE_CHECKING:
    from codeloop.orchestrator.models import AgentEvent
    from codeloop.safety.validator import ValidationResult


def get_console() -> Console:
    """Create a Rich Console that auto-detects TTY for graceful pipe degradation."""
    return Console(stderr=False)


def format_error(message: str, console: Console) -> None:
    """Display an error message."""
    console.print(f"[red]Error:[/red] {escape(message)}", highlight=False)


def format_validation(command_line: str, verdict: ValidationResult, console: Console) -> None:
    """Display the safety verdict for one command line."""
    if verdict.allowed:
        console.print(f"[green]allowed[/green] {escape(command_line)}", highlight=False)
    else:
        console.print(
            f"[red]denied[/red] {escape(command_line)}: {escape(verdict.reason or '')}",
            highlight=False,
        )


def make_event_printer(console: Console):
    """Return an on_event callback that narrates the agent's progress."""
    from codeloop.formatting import pprint_tool_call, pprint_verify_results

    def _print(event: AgentEvent) -> None:
        payload = event.payload
        if event.kind == "iteration":
            console.print(Text(f"Iteration {payload['iteration']}/{payload['max_iterations']}", style="dim"))
        elif event.kind == "tool_call":
            pprint_tool_call(payload["call"], file=console.file)
        elif event.kind == "tool_result":
            result = payload["result"]
            if not result.success:
                console.print(f"  [red]failed:[/red] {escape(result.error)}", highlight=False)
        elif event.kind == "denied":
            console.print(f"  [yellow]denied[/yellow] {payload['call'].tool}")
        elif event.kind == "compressed":
            console.print(Text("Context compressed", style="dim"))
        elif event.kind == "verification":
            pprint_verify_results(payload["results"], file=console.file)

    return _print
