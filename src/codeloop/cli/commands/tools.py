"""codeloop tools -- print the tool definitions the agent offers a model."""

from __future__ import annotations

import json

import click


@click.command()
@click.option(
    "--dialect",
    type=click.Choice(["openai", "anthropic", "text"]),
    default="text",
    show_default=True,
    help="Schema shape to print; 'text' is the prompt-embedded listing.",
)
def tools(dialect: str) -> None:
    """Print the agent's tool definitions."""
    from codeloop.toolkit.definitions import format_tool_definitions, get_tool_schemas

    if dialect == "text":
        click.echo(format_tool_definitions())
    else:
        click.echo(json.dumps(get_tool_schemas(dialect), indent=2))
