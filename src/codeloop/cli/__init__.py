"""Codeloop CLI -- run the coding agent and its building blocks from a terminal.

This module is NEVER imported from codeloop/__init__.py.
It is only loaded via the ``codeloop`` entry point defined in pyproject.toml.
"""

from __future__ import annotations

import logging
import os

import click
from dotenv import load_dotenv


@click.group()
@click.option(
    "--project",
    "-C",
    default=".",
    envvar="CODELOOP_PROJECT",
    type=click.Path(file_okay=False),
    help="Project root the agent works in.",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
def cli(ctx: click.Context, project: str, verbose: bool) -> None:
    """Codeloop: an autonomous coding agent with safety checks and diff previews."""
    load_dotenv()
    _configure_logging(verbose or os.environ.get("CODELOOP_DEBUG") == "1")
    ctx.ensure_object(dict)
    ctx.obj["project"] = os.path.abspath(project)


def _configure_logging(debug: bool) -> None:
    from rich.logging import RichHandler

    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=debug, show_path=debug)],
        force=True,
    )


# Register subcommands after cli group is defined
from codeloop.cli.commands.diff import diff  # noqa: E402
from codeloop.cli.commands.run import run  # noqa: E402
from codeloop.cli.commands.tools import tools  # noqa: E402
from codeloop.cli.commands.validate import validate  # noqa: E402
from codeloop.cli.commands.verify import verify  # noqa: E402

cli.add_command(run)
cli.add_command(validate)
cli.add_command(diff)
cli.add_command(verify)
cli.add_command(tools)
