"""codeloop run -- hand a task to the agent."""

from __future__ import annotations

import threading

import click

from codeloop.cli.formatting import format_error, get_console, make_event_printer


def _build_model(provider: str, model: str | None):
    """Build the provider's HTTP client and its ModelClient adapter."""
    if provider == "anthropic":
        from codeloop.llm import AnthropicClient, AnthropicModelClient

        client = AnthropicClient()
        return client, AnthropicModelClient(client, model=model)

    from codeloop.llm import OpenAIClient, OpenAIModelClient

    client = OpenAIClient()
    return client, OpenAIModelClient(client, model=model)


@click.command()
@click.argument("task")
@click.option(
    "--provider",
    type=click.Choice(["openai", "anthropic"]),
    default="openai",
    envvar="CODELOOP_PROVIDER",
    show_default=True,
    help="LLM provider.",
)
@click.option("--model", "-m", default=None, envvar="CODELOOP_MODEL", help="Model name override.")
@click.option(
    "--confirm",
    "confirmation",
    type=click.Choice(["never", "dangerous", "always"]),
    default=None,
    help="Which actions need approval (default: dangerous).",
)
@click.option("--dry-run", is_flag=True, help="Preview mutating actions without applying them.")
@click.option("--no-verify", is_flag=True, help="Skip build/test verification after edits.")
@click.option("--max-iterations", type=click.IntRange(min=1), default=None, help="Model call budget.")
@click.option("--text-tools", is_flag=True, help="Embed tool definitions in the prompt instead of native tool calling.")
@click.option("--json", "as_json", is_flag=True, help="Print the outcome as JSON.")
@click.pass_context
def run(
    ctx: click.Context,
    task: str,
    provider: str,
    model: str | None,
    confirmation: str | None,
    dry_run: bool,
    no_verify: bool,
    max_iterations: int | None,
    text_tools: bool,
    as_json: bool,
) -> None:
    """Run TASK against the project until done, stopped, or out of budget.

    Press Ctrl+C to stop; the actions taken so far are still reported.
    Exits with status 1 unless the agent completed.
    """
    from codeloop.formatting import outcome_json, pprint_outcome
    from codeloop.models.config import AgentConfig
    from codeloop.orchestrator import Agent, cli_prompt

    console = get_console()
    try:
        overrides: dict[str, object] = {"schema_dialect": provider, "native_tools": not text_tools}
        if confirmation is not None:
            overrides["confirmation"] = confirmation
        if dry_run:
            overrides["dry_run"] = True
        if no_verify:
            overrides["auto_verify"] = False
        if max_iterations is not None:
            overrides["max_iterations"] = max_iterations
        config = AgentConfig.from_env(**overrides)

        client, model_client = _build_model(provider, model)
        try:
            agent = Agent(
                ctx.obj["project"],
                model_client,
                config,
                confirm=cli_prompt,
                on_event=None if as_json else make_event_printer(console),
            )
            outcome = _run_interruptible(agent, task)
        finally:
            client.close()

        if as_json:
            click.echo(outcome_json(outcome))
        else:
            pprint_outcome(outcome)
    except SystemExit:
        raise
    except Exception as e:
        format_error(str(e), console)
        raise SystemExit(1) from None
    if not outcome.succeeded:
        raise SystemExit(1)


def _run_interruptible(agent, task: str):
    """Run the agent on a worker thread so Ctrl+C can cancel it cleanly."""
    box: dict[str, object] = {}

    def _target() -> None:
        try:
            box["outcome"] = agent.run(task)
        except BaseException as exc:  # re-raised on the calling thread
            box["error"] = exc

    worker = threading.Thread(target=_target, name="codeloop-agent", daemon=True)
    worker.start()
    try:
        while worker.is_alive():
            worker.join(0.2)
    except KeyboardInterrupt:
        agent.cancel()
        worker.join()
    if "error" in box:
        raise box["error"]  # type: ignore[misc]
    return box["outcome"]
