"""codeloop diff -- preview the change between two files."""

from __future__ import annotations

import click

from codeloop.cli.formatting import format_error, get_console


@click.command()
@click.argument("old", type=click.Path(dir_okay=False))
@click.argument("new", type=click.Path(exists=True, dir_okay=False))
@click.option("--context", "-U", default=3, show_default=True, type=click.IntRange(min=0), help="Lines of context per hunk.")
@click.option("--plain", is_flag=True, help="Print unified text instead of the highlighted view.")
def diff(old: str, new: str, context: int, plain: bool) -> None:
    """Show the diff that replacing OLD with NEW would produce.

    A missing OLD file is treated as a file creation.
    """
    import os

    from codeloop.formatting import pprint_file_diff
    from codeloop.operations.diff import create_file_diff, format_diff

    console = get_console()
    try:
        old_content = None
        if os.path.exists(old):
            with open(old, encoding="utf-8", errors="replace") as fh:
                old_content = fh.read()
        with open(new, encoding="utf-8", errors="replace") as fh:
            new_content = fh.read()

        result = create_file_diff(old, new_content, old_content, context=context)
        if plain:
            click.echo(format_diff(result))
        else:
            pprint_file_diff(result)
    except SystemExit:
        raise
    except Exception as e:
        format_error(str(e), console)
        raise SystemExit(1) from None
