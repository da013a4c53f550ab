"""codeloop validate -- check a command against the safety rules."""

from __future__ import annotations

import click

from codeloop.cli.formatting import format_error, format_validation, get_console


@click.command(context_settings={"ignore_unknown_options": True})
@click.argument("command")
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
@click.pass_context
def validate(ctx: click.Context, command: str, args: tuple[str, ...]) -> None:
    """Report whether COMMAND with ARGS would be allowed to run.

    Paths are checked against the project root (see --project).
    Exits with status 1 when the command is denied.
    """
    from codeloop.safety.validator import validate_command

    console = get_console()
    try:
        verdict = validate_command(command, list(args), project_root=ctx.obj["project"])
        format_validation(" ".join([command, *args]), verdict, console)
    except SystemExit:
        raise
    except Exception as e:
        format_error(str(e), console)
        raise SystemExit(1) from None
    if not verdict.allowed:
        raise SystemExit(1)
