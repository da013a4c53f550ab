"""codeloop verify -- run the project's detected checks."""

from __future__ import annotations

import json

import click

from codeloop.cli.formatting import format_error, get_console


@click.command()
@click.argument("path", required=False, type=click.Path(exists=True, file_okay=False))
@click.option("--lint", is_flag=True, help="Also run the linter.")
@click.option("--no-build", is_flag=True, help="Skip the build check.")
@click.option("--no-test", is_flag=True, help="Skip the test check.")
@click.option("--timeout", default=120.0, show_default=True, type=click.FloatRange(min=0, min_open=True), help="Per-check timeout in seconds.")
@click.option("--json", "as_json", is_flag=True, help="Print results as JSON.")
@click.pass_context
def verify(
    ctx: click.Context,
    path: str | None,
    lint: bool,
    no_build: bool,
    no_test: bool,
    timeout: float,
    as_json: bool,
) -> None:
    """Detect and run build, test, typecheck and lint checks.

    PATH defaults to the project root. Exits with status 1 when any check fails.
    """
    from codeloop.formatting import pprint_verify_results
    from codeloop.models.config import VerifyOptions
    from codeloop.verification import Verifier, has_verification_errors

    console = get_console()
    try:
        options = VerifyOptions(
            run_build=not no_build,
            run_test=not no_test,
            run_lint=lint,
            timeout=timeout,
        )
        results = Verifier(path or ctx.obj["project"]).run_all(options)
        if as_json:
            click.echo(json.dumps([r.to_dict() for r in results], indent=2))
        else:
            pprint_verify_results(results)
    except SystemExit:
        raise
    except Exception as e:
        format_error(str(e), console)
        raise SystemExit(1) from None
    if has_verification_errors(results):
        raise SystemExit(1)
