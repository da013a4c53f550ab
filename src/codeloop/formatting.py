"""Pretty-print support for codeloop output objects.

Uses rich library for formatted terminal output.
All functions accept their target object and print to a rich Console.

To avoid circular imports, this module does NOT import domain models
at module level. Functions access object attributes dynamically.
"""
from __future__ import annotations

import difflib
import json
from typing import Any

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table
from rich.text import Text


def _ensure_utf8_stdout() -> None:
    """Reconfigure stdout to UTF-8 on Windows to avoid cp1252 encoding errors."""
    import sys
    if sys.platform == "win32" and hasattr(sys.stdout, "reconfigure"):
        try:
            sys.stdout.reconfigure(encoding="utf-8")
        except (OSError, ValueError):
            pass


def _make_console(file: Any = None) -> Console:
    """Create a Console, optionally writing to a file-like object."""
    if file is not None:
        return Console(file=file, force_terminal=True, width=100)
    _ensure_utf8_stdout()
    return Console()


# ---------------------------------------------------------------------------
# Diffs
# ---------------------------------------------------------------------------


def _word_level_highlight(old_text: str, new_text: str) -> tuple[Text, Text]:
    """Produce two Rich Text lines with word-level change highlights.

    Unchanged words are dim red/green; changed words are bright bold.
    """
    old_words = old_text.split()
    new_words = new_text.split()

    matcher = difflib.SequenceMatcher(None, old_words, new_words)

    old_rich = Text("- ", style="red")
    new_rich = Text("+ ", style="green")

    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            old_rich.append(" ".join(old_words[i1:i2]) + " ", style="red")
            new_rich.append(" ".join(new_words[j1:j2]) + " ", style="green")
        elif tag == "replace":
            old_rich.append(" ".join(old_words[i1:i2]) + " ", style="bold red on #3d0000")
            new_rich.append(" ".join(new_words[j1:j2]) + " ", style="bold green on #003d00")
        elif tag == "delete":
            old_rich.append(" ".join(old_words[i1:i2]) + " ", style="bold red on #3d0000")
        elif tag == "insert":
            new_rich.append(" ".join(new_words[j1:j2]) + " ", style="bold green on #003d00")

    return old_rich, new_rich


def _render_hunk(hunk: Any, console: Console) -> None:
    """Render one hunk, pairing removed/added runs for word highlights."""
    console.print(Text(hunk.header, style="cyan"))
    lines = list(hunk.lines)
    i = 0
    while i < len(lines):
        line = lines[i]
        if line.type == "context":
            console.print(Text(f"  {line.content}", style="white"))
            i += 1
            continue

        removed: list[str] = []
        while i < len(lines) and lines[i].type == "remove":
            removed.append(lines[i].content)
            i += 1
        added: list[str] = []
        while i < len(lines) and lines[i].type == "add":
            added.append(lines[i].content)
            i += 1

        paired = min(len(removed), len(added))
        for k in range(paired):
            old_rich, new_rich = _word_level_highlight(removed[k], added[k])
            console.print(old_rich)
            console.print(new_rich)
        for k in range(paired, len(removed)):
            console.print(Text(f"- {removed[k]}", style="red"))
        for k in range(paired, len(added)):
            console.print(Text(f"+ {added[k]}", style="green"))


_DIFF_TYPE_STYLE = {"create": "green", "modify": "yellow", "delete": "red"}


def pprint_file_diff(diff: Any, *, file: Any = None) -> None:
    """Pretty-print a FileDiff with inline word highlights.

    Args:
        diff: A FileDiff instance.
        file: Optional file-like object for output (used in tests).
    """
    console = _make_console(file)
    style = _DIFF_TYPE_STYLE.get(diff.type, "white")
    console.print(
        f"[bold {style}]{diff.type}[/bold {style}] [bold]{diff.path}[/bold] "
        f"[green]+{diff.additions}[/green] [red]-{diff.deletions}[/red]"
    )
    if not diff.hunks:
        console.print("[dim]No changes[/dim]")
        return
    for hunk in diff.hunks:
        _render_hunk(hunk, console)


def pprint_diff_stats(stats: Any, *, file: Any = None) -> None:
    """Print a one-line summary of a DiffStats."""
    console = _make_console(file)
    console.print(
        f"[bold]{stats.total_files}[/bold] file(s)  "
        f"[green]+{stats.total_additions}[/green]  [red]-{stats.total_deletions}[/red]"
    )


# ---------------------------------------------------------------------------
# Tool calls and verification
# ---------------------------------------------------------------------------


def pprint_tool_call(call: Any, *, file: Any = None) -> None:
    """Print a tool call as ``name(key=value, ...)``; long values are abbreviated."""
    console = _make_console(file)
    text = Text()
    text.append(call.tool, style="bold cyan")
    text.append("(", style="dim")
    parts = []
    for key, value in call.parameters.items():
        shown = repr(value)
        if len(shown) > 80:
            shown = shown[:77] + "..."
        parts.append(f"{key}={shown}")
    text.append(", ".join(parts), style="white")
    text.append(")", style="dim")
    if getattr(call, "partial", False):
        text.append("  [recovered]", style="yellow")
    console.print(text)


def pprint_tool_result(result: Any, *, file: Any = None, max_lines: int = 10) -> None:
    """Print a ToolResult's status and the first ``max_lines`` of output."""
    console = _make_console(file)
    if result.success:
        body = result.output.splitlines()
        console.print(f"[green]ok[/green] {result.tool}")
        for line in body[:max_lines]:
            console.print(Text(f"  {line}", style="dim"))
        if len(body) > max_lines:
            console.print(f"[dim]  ... {len(body) - max_lines} more line(s)[/dim]")
    else:
        console.print(f"[red]failed[/red] {result.tool}: {result.error}")


def pprint_verify_results(results: Any, *, file: Any = None) -> None:
    """Print a table of VerifyResults with their parsed errors."""
    console = _make_console(file)
    if not results:
        console.print("[dim]No verification checks detected.[/dim]")
        return
    table = Table(show_header=True, header_style="bold")
    table.add_column("Check")
    table.add_column("Status")
    table.add_column("Command")
    table.add_column("Errors", justify="right")
    table.add_column("Time", justify="right")
    for result in results:
        status = "[green]pass[/green]" if result.success else "[red]fail[/red]"
        table.add_row(
            result.type,
            status,
            result.command,
            str(result.error_count),
            f"{result.duration:.1f}s",
        )
    console.print(table)
    for result in results:
        if result.success:
            continue
        for error in result.errors[:10]:
            code = f" ({error.code})" if error.code else ""
            color = "red" if error.severity == "error" else "yellow"
            console.print(Text(f"  [{error.location}] {error.message}{code}", style=color))


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------

_STATE_STYLE = {"completed": "green", "aborted": "yellow", "failed": "red"}


def pprint_outcome(outcome: Any, *, file: Any = None) -> None:
    """Pretty-print an AgentOutcome: final message, then the action log.

    Args:
        outcome: An AgentOutcome instance.
        file: Optional file-like object for output (used in tests).
    """
    console = _make_console(file)
    state = outcome.state.value
    style = _STATE_STYLE.get(state, "white")
    body: Any = Markdown(outcome.message) if outcome.message else Text("(no message)")
    subtitle = f"{outcome.iterations} iteration(s), {outcome.fix_attempts} fix attempt(s), {outcome.duration:.1f}s"
    console.print(Panel(
        body,
        title=f"[bold]{state}[/bold]",
        subtitle=subtitle,
        border_style=style,
    ))
    if outcome.error:
        console.print(f"[{style}]{outcome.error}[/{style}]")

    if outcome.actions:
        table = Table(show_header=True, header_style="bold")
        table.add_column("", width=2)
        table.add_column("Action")
        table.add_column("Target")
        for action in outcome.actions:
            mark = "[green]+[/green]" if action.succeeded else "[red]x[/red]"
            table.add_row(mark, action.type.value, action.target)
        console.print(table)

    if outcome.residual_errors:
        console.print(f"[yellow]{len(outcome.residual_errors)} verification error(s) remain[/yellow]")


def outcome_json(outcome: Any) -> str:
    """The outcome as indented JSON."""
    return json.dumps(outcome.to_dict(), indent=2, ensure_ascii=False)
