"""Core agent loop for autonomous coding tasks.

Provides the Agent class that runs a think-confirm-execute loop: send the
history to the model, parse the tool calls it proposes, gate them through
the confirmation policy, execute them in order, feed the results back, and
repeat until the model answers without tool calls. A finished task that
changed files is verified, and verification failures re-enter the loop as
a bounded number of fix rounds.

Only three conditions end a task early: the iteration or time budget runs
out, the cancellation token fires, or the model call itself fails.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from typing import TYPE_CHECKING, Any

from codeloop.exceptions import AgentBusyError, ConfigError, ModelCallError, TaskCancelledError
from codeloop.llm.errors import LLMContextLengthError
from codeloop.models.config import ConfirmationPolicy
from codeloop.orchestrator.history import (
    compress_messages,
    partial_progress,
    render_tool_calls,
    truncate_tool_result,
    wants_to_continue,
)
from codeloop.orchestrator.models import AgentEvent, AgentOutcome, AgentSession, AgentState
from codeloop.prompts.agent import (
    CONTINUE_NUDGE,
    DENIED_MESSAGE,
    DUPLICATE_WRITE_WARNING,
    build_fix_prompt,
    build_system_prompt,
    build_tool_results_message,
)
from codeloop.protocols import ModelRequest, ModelResponse
from codeloop.safety.risk import is_dangerous
from codeloop.toolkit.definitions import get_tool_schemas
from codeloop.toolkit.executor import ToolExecutor, create_action_log
from codeloop.toolkit.models import ToolResult
from codeloop.toolkit.parsing import (
    parse_anthropic_tool_calls,
    parse_openai_tool_calls,
    parse_tool_calls,
    strip_tool_markup,
)
from codeloop.verification.parsing import error_signature
from codeloop.verification.runner import (
    Verifier,
    filter_results_to_files,
    format_errors_for_agent,
    get_verification_summary,
    has_verification_errors,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from codeloop.models.config import AgentConfig
    from codeloop.protocols import CommandRunner, ConfirmCallback, ModelClient
    from codeloop.toolkit.models import ToolCall

logger = logging.getLogger(__name__)

_MAX_NUDGES = 2


class _BudgetExhausted(Exception):
    """Internal: the iteration or time budget ran out."""

    def __init__(self, reason: str, summary: str) -> None:
        self.reason = reason
        self.summary = summary
        super().__init__(reason)


class Agent:
    """Autonomous coding agent bound to one project root.

    One task runs at a time; starting a second while the first is still
    running raises AgentBusyError. Each task gets a fresh AgentSession
    with its own history, counters and cancellation token.

    Usage::

        from codeloop import Agent, AgentConfig

        agent = Agent("/path/to/project", model=my_model, config=AgentConfig(confirmation="never"))
        outcome = agent.run("Add a --verbose flag to the CLI")
        print(format_outcome(outcome))
    """

    def __init__(
        self,
        project_root: str,
        model: ModelClient,
        config: AgentConfig | None = None,
        *,
        confirm: ConfirmCallback | None = None,
        on_event: Callable[[AgentEvent], None] | None = None,
        on_chunk: Callable[[str], None] | None = None,
        runner: CommandRunner | None = None,
        verifier: Verifier | None = None,
        system_prompt: str | None = None,
    ) -> None:
        from codeloop.models.config import AgentConfig as _AgentConfig

        if not os.path.isdir(project_root):
            raise ConfigError(f"Project root is not a directory: {project_root}")
        self.project_root = os.path.realpath(project_root)
        self._model = model
        self._config = config or _AgentConfig()
        self._confirm = confirm
        self._on_event = on_event
        self._on_chunk = on_chunk
        self._runner = runner
        self._verifier = verifier
        self._system_prompt = system_prompt
        self._lock = threading.Lock()
        self._session: AgentSession | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def config(self) -> AgentConfig:
        return self._config

    @property
    def session(self) -> AgentSession | None:
        """The current (or most recent) session, if any task has started."""
        return self._session

    @property
    def state(self) -> AgentState:
        return self._session.state if self._session is not None else AgentState.IDLE

    @property
    def is_running(self) -> bool:
        return self._session is not None and self._session.running

    def run(self, task: str) -> AgentOutcome:
        """Run ``task`` to a terminal state.

        Returns:
            AgentOutcome in state COMPLETED, ABORTED or FAILED. It always
            carries every action taken before the loop stopped.

        Raises:
            AgentBusyError: If a task is already running on this agent.
        """
        with self._lock:
            if self._session is not None and self._session.running:
                raise AgentBusyError()
            session = AgentSession(task=task, running=True)
            self._session = session

        executor = ToolExecutor(
            self.project_root,
            self._config,
            runner=self._runner,
            cancel_token=session.cancel_token,
        )
        try:
            outcome = self._run_session(session, executor)
        finally:
            executor.close()
            session.running = False
        self._emit("finished", outcome=outcome)
        return outcome

    def cancel(self) -> None:
        """Cancel the running task, killing any in-flight subprocess."""
        session = self._session
        if session is not None and session.running:
            logger.info("Cancelling task at iteration %d", session.iteration)
            session.cancel_token.cancel()

    # ------------------------------------------------------------------
    # Session driver
    # ------------------------------------------------------------------

    def _run_session(self, session: AgentSession, executor: ToolExecutor) -> AgentOutcome:
        system_prompt = self._system_prompt or build_system_prompt(
            self.project_root, native_tools=self._config.native_tools
        )
        session.messages.append({"role": "user", "content": session.task})
        try:
            final = self._think_until_done(session, executor, system_prompt)
            if self._should_verify(session):
                final = self._verify_and_fix(session, executor, system_prompt, final)
        except TaskCancelledError as exc:
            return self._finish(session, AgentState.ABORTED, "Agent was stopped by user", error=str(exc))
        except _BudgetExhausted as exc:
            return self._finish(session, AgentState.FAILED, exc.summary, error=exc.reason)
        except ModelCallError as exc:
            logger.warning("Model call failed: %s", exc)
            return self._finish(session, AgentState.FAILED, "", error=str(exc))
        return self._finish(session, AgentState.COMPLETED, final)

    def _finish(
        self,
        session: AgentSession,
        state: AgentState,
        message: str,
        *,
        error: str | None = None,
    ) -> AgentOutcome:
        self._set_state(session, state)
        residual = ()
        if state == AgentState.COMPLETED and has_verification_errors(session.verify_results):
            residual = tuple(e for r in session.verify_results if not r.success for e in r.errors)
        return AgentOutcome(
            state=state,
            message=message,
            actions=tuple(session.actions),
            iterations=session.iteration,
            fix_attempts=session.fix_attempts,
            verify_results=tuple(session.verify_results),
            residual_errors=residual,
            error=error,
            duration=session.elapsed,
        )

    def _think_until_done(self, session: AgentSession, executor: ToolExecutor, system_prompt: str) -> str:
        """Loop model calls and tool batches until the model answers in text."""
        while True:
            self._check_budget(session)
            self._maybe_compress(session)

            self._set_state(session, AgentState.THINKING)
            response = self._call_model(session, system_prompt)
            calls = self._extract_calls(response)

            if not calls:
                final = strip_tool_markup(response.text)
                if session.nudges < _MAX_NUDGES and wants_to_continue(final):
                    logger.debug("Model announced work without calling tools; nudging")
                    session.nudges += 1
                    session.messages.append({"role": "assistant", "content": response.text})
                    session.messages.append({"role": "user", "content": CONTINUE_NUDGE})
                    continue
                session.nudges = 0
                logger.info("Model finished at iteration %d", session.iteration)
                return final

            assistant_text = response.text
            if response.raw_tool_calls:
                assistant_text = "\n\n".join(filter(None, [response.text.strip(), render_tool_calls(calls)]))
            session.messages.append({"role": "assistant", "content": assistant_text})
            entries = self._run_batch(session, executor, calls)
            session.messages.append({"role": "user", "content": build_tool_results_message(entries)})

    # ------------------------------------------------------------------
    # Model interaction
    # ------------------------------------------------------------------

    def _check_budget(self, session: AgentSession) -> None:
        session.cancel_token.raise_if_cancelled()
        if session.iteration >= self._config.max_iterations:
            raise _BudgetExhausted(
                f"Exceeded maximum of {self._config.max_iterations} iterations",
                partial_progress(
                    f"Agent reached the iteration limit ({self._config.max_iterations} steps).",
                    session.actions,
                    "The task may be incomplete. You can continue by running the agent again.",
                ),
            )
        if session.elapsed >= self._config.max_duration:
            minutes = round(self._config.max_duration / 60)
            raise _BudgetExhausted(
                f"Exceeded maximum duration of {minutes} min",
                partial_progress(
                    f"Agent reached the time limit ({minutes} min).",
                    session.actions,
                    "You can continue by running the agent again.",
                ),
            )

    def _maybe_compress(self, session: AgentSession, *, force: bool = False) -> bool:
        compressed = compress_messages(
            session.messages,
            session.actions,
            self._config.compress_history_chars,
            force=force,
        )
        if compressed is session.messages:
            return False
        session.messages[:] = compressed
        session.compressed = True
        self._emit("compressed", messages=len(compressed))
        return True

    def _request(self, session: AgentSession, system_prompt: str) -> ModelRequest:
        tools = None
        if self._config.native_tools:
            tools = get_tool_schemas(self._config.schema_dialect)
        return ModelRequest(
            system_prompt=system_prompt,
            messages=list(session.messages),
            tools=tools,
            dialect=self._config.schema_dialect,
            on_chunk=self._on_chunk,
            cancel_token=session.cancel_token,
        )

    def _call_model(self, session: AgentSession, system_prompt: str) -> ModelResponse:
        """One model call; counts as one iteration.

        A context-overflow error compresses the history and retries once.

        Raises:
            TaskCancelledError: If cancellation fired during the call.
            ModelCallError: On any other model failure.
        """
        session.iteration += 1
        self._emit("iteration", iteration=session.iteration, max_iterations=self._config.max_iterations)
        logger.debug("Iteration %d/%d, %d actions", session.iteration, self._config.max_iterations, len(session.actions))

        retried = False
        while True:
            try:
                reply = self._model(self._request(session, system_prompt))
                break
            except LLMContextLengthError as exc:
                session.cancel_token.raise_if_cancelled()
                if retried or not self._maybe_compress(session, force=True):
                    raise ModelCallError(f"Model call failed: {exc}", exc) from exc
                logger.info("Context too long; retrying with compressed history")
                retried = True
            except Exception as exc:
                session.cancel_token.raise_if_cancelled()
                raise ModelCallError(f"Model call failed: {exc}", exc) from exc

        session.cancel_token.raise_if_cancelled()
        if isinstance(reply, str):
            return ModelResponse(text=reply, dialect=self._config.schema_dialect)
        return reply

    @staticmethod
    def _extract_calls(response: ModelResponse) -> list[ToolCall]:
        calls: list[ToolCall] = []
        if response.raw_tool_calls:
            if response.dialect == "anthropic":
                calls = parse_anthropic_tool_calls(response.raw_tool_calls)
            else:
                calls = parse_openai_tool_calls(response.raw_tool_calls)
        if not calls and response.text:
            calls = parse_tool_calls(response.text)
        return calls

    # ------------------------------------------------------------------
    # Tool execution
    # ------------------------------------------------------------------

    def _needs_confirmation(self, call: ToolCall) -> bool:
        policy = self._config.confirmation
        if self._config.dry_run or policy == ConfirmationPolicy.NEVER:
            return False
        if policy == ConfirmationPolicy.ALWAYS:
            return True
        return is_dangerous(call)

    def _approve(self, session: AgentSession, call: ToolCall, executor: ToolExecutor) -> bool:
        if not self._needs_confirmation(call):
            return True
        if self._confirm is None:
            logger.info("No confirmation handler; denying %s", call.tool)
            return False
        self._set_state(session, AgentState.AWAITING_CONFIRMATION)
        diff = executor.preview(call)
        try:
            approved = bool(self._confirm(call, diff))
        except Exception:
            logger.debug("Confirmation callback error", exc_info=True)
            approved = False
        session.cancel_token.raise_if_cancelled()
        return approved

    def _run_batch(self, session: AgentSession, executor: ToolExecutor, calls: list[ToolCall]) -> list[str]:
        """Execute ``calls`` in order and return one history entry per call.

        A denied call stops the batch; the calls after it are not run.
        """
        entries: list[str] = []
        for call in calls:
            session.cancel_token.raise_if_cancelled()
            if not self._approve(session, call, executor):
                self._emit("denied", call=call)
                entries.append(DENIED_MESSAGE.format(tool=call.tool))
                break

            self._set_state(session, AgentState.EXECUTING)
            self._emit("tool_call", call=call)
            if self._config.dry_run:
                result = ToolResult(
                    tool=call.tool,
                    parameters=call.parameters,
                    success=True,
                    output=f"[DRY RUN] Would execute: {call.tool}",
                    diff=executor.preview(call),
                )
            else:
                result = executor.execute(call)
            action = create_action_log(call, result)
            session.actions.append(action)
            self._emit("tool_result", call=call, result=result, action=action)
            entries.append(self._result_entry(session, call, result))
        return entries

    def _result_entry(self, session: AgentSession, call: ToolCall, result: ToolResult) -> str:
        limit = self._config.tool_result_max_chars
        path = str(call.parameters.get("path", ""))

        if call.tool in ("write_file", "edit_file"):
            entry = self._write_entry(session, call, result, path)
        elif call.tool == "read_file" and result.success:
            cached = session.read_cache.get(path)
            if cached is not None:
                entry = f"Tool read_file succeeded (cached, file unchanged since last read):\n{cached}"
            else:
                output = truncate_tool_result(result.output, limit)
                session.read_cache[path] = output
                entry = f"Tool read_file succeeded:\n{output}"
        elif result.success:
            entry = f"Tool {call.tool} succeeded:\n{truncate_tool_result(result.output, limit)}"
        else:
            entry = f"Tool {call.tool} failed:\n{result.error or 'Unknown error'}"

        if result.success and call.tool in ("write_file", "edit_file", "delete_file"):
            session.read_cache.pop(path, None)
        elif result.success and call.tool == "execute_command":
            # Commands can change arbitrary files.
            session.read_cache.clear()
        return entry

    def _write_entry(self, session: AgentSession, call: ToolCall, result: ToolResult, path: str) -> str:
        if not result.success:
            return f"Tool {call.tool} failed:\n{result.error or 'Unknown error'}"
        key = json.dumps(call.parameters, sort_keys=True, ensure_ascii=False)[:500]
        if session.last_write.get(path) == key:
            session.duplicate_writes += 1
            if session.duplicate_writes >= 2:
                session.duplicate_writes = 0
                return DUPLICATE_WRITE_WARNING.format(path=path, count=3)
            return f"Tool {call.tool} succeeded (note: same content as previous write to this file):\n{result.output}"
        session.duplicate_writes = 0
        session.last_write[path] = key
        return f"Tool {call.tool} succeeded:\n{result.output}"

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def _should_verify(self, session: AgentSession) -> bool:
        return self._config.auto_verify and not self._config.dry_run and bool(session.touched_files)

    def _get_verifier(self) -> Verifier:
        if self._verifier is None:
            self._verifier = Verifier(self.project_root, runner=self._runner)
        return self._verifier

    def _verify_and_fix(
        self,
        session: AgentSession,
        executor: ToolExecutor,
        system_prompt: str,
        final: str,
    ) -> str:
        """Verify, then run fix rounds until checks pass or attempts run out.

        Exhausting fix attempts (or the budget during a fix round) still
        completes the task; the remaining errors are reported on the outcome.
        """
        verifier = self._get_verifier()
        previous_signature: str | None = None
        while True:
            session.cancel_token.raise_if_cancelled()
            self._set_state(session, AgentState.VERIFYING)
            results = verifier.run_all(self._config.verify, session.cancel_token)
            session.cancel_token.raise_if_cancelled()
            results = filter_results_to_files(results, session.touched_files, self.project_root)
            session.verify_results = results
            self._emit("verification", results=results, attempt=session.fix_attempts)

            if not has_verification_errors(results):
                if results:
                    summary = get_verification_summary(results)
                    final += f"\n\nVerification passed: {summary.passed}/{summary.total} checks"
                return final

            if session.fix_attempts >= self._config.max_fix_attempts:
                return final + self._residual_note(session)

            errors_text = format_errors_for_agent(results)
            signature = error_signature([e for r in results if not r.success for e in r.errors])
            repeating = signature == previous_signature
            previous_signature = signature

            session.fix_attempts += 1
            logger.info("Verification failed; fix attempt %d/%d", session.fix_attempts, self._config.max_fix_attempts)
            session.messages.append({"role": "assistant", "content": final or "(no summary)"})
            session.messages.append(
                {
                    "role": "user",
                    "content": build_fix_prompt(
                        errors_text,
                        session.fix_attempts,
                        self._config.max_fix_attempts,
                        repeating=repeating,
                    ),
                }
            )
            try:
                final = self._think_until_done(session, executor, system_prompt)
            except _BudgetExhausted as exc:
                logger.info("Budget exhausted during fix round: %s", exc.reason)
                return final + self._residual_note(session)

    @staticmethod
    def _residual_note(session: AgentSession) -> str:
        remaining = sum(r.error_count for r in session.verify_results if not r.success)
        return (
            f"\n\nVerification still failing after {session.fix_attempts} fix attempt(s): "
            f"{remaining} error(s) remain."
        )

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def _set_state(self, session: AgentSession, state: AgentState) -> None:
        if session.state == state:
            return
        logger.debug("State %s -> %s", session.state.value, state.value)
        session.state = state
        self._emit("state", state=state)

    def _emit(self, kind: str, **payload: object) -> None:
        if self._on_event is None:
            return
        try:
            self._on_event(AgentEvent(kind=kind, payload=payload))
        except Exception:
            logger.debug("on_event callback error", exc_info=True)


def format_outcome(outcome: AgentOutcome) -> str:
    """Plain-text report of an outcome and the actions it performed."""
    if outcome.state == AgentState.COMPLETED:
        lines = [f"Agent completed in {outcome.iterations} iteration(s)"]
    elif outcome.state == AgentState.ABORTED:
        lines = ["Agent was stopped by user"]
    else:
        lines = [f"Agent failed: {outcome.error}"]
    if outcome.actions:
        lines.append("")
        lines.append("Actions performed:")
        for action in outcome.actions:
            mark = "+" if action.succeeded else "x"
            lines.append(f"  {mark} {action.type.value}: {action.target}")
    return "\n".join(lines)


def run_agent(
    task: str,
    project_root: str,
    model: ModelClient,
    config: AgentConfig | None = None,
    **kwargs: Any,
) -> AgentOutcome:
    """Run one task with a throwaway Agent."""
    return Agent(project_root, model, config, **kwargs).run(task)
