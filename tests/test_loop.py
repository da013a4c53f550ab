"""Tests for the Agent loop, driven by scripted models and fake collaborators.

Tests cover:
- Think/execute rounds, final answers and continue nudges
- Confirmation policies, denial and dry runs
- Verification and bounded fix rounds
- Budgets, cancellation, model failures and busy detection
- History handling: native calls, read cache, duplicate writes, compression
"""

from __future__ import annotations

import json
import threading
import time

import pytest

from codeloop.exceptions import AgentBusyError, ConfigError
from codeloop.llm.errors import LLMContextLengthError
from codeloop.models.config import AgentConfig
from codeloop.orchestrator import (
    Agent,
    AgentOutcome,
    AgentState,
    cli_prompt,
    format_outcome,
    reject_all,
    run_agent,
)
from codeloop.protocols import ModelResponse
from codeloop.shell import CommandResult
from codeloop.toolkit import ActionType, ToolCall
from codeloop.verification import ParsedError, VerifyResult

from conftest import FakeRunner


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


def tool(name, **params):
    """One tool call in the <tool_call> text encoding."""
    return "<tool_call>" + json.dumps({"tool": name, "parameters": params}) + "</tool_call>"


class ScriptedModel:
    """Replies from a script; each entry is a str, a ModelResponse, an
    exception (raised) or a callable taking the request. Answers "Done."
    once the script runs out."""

    def __init__(self, *script):
        self.script = list(script)
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        if not self.script:
            return "Done."
        step = self.script.pop(0)
        if isinstance(step, BaseException):
            raise step
        if callable(step):
            return step(request)
        return step

    def last_user_message(self, index=-1):
        return self.requests[index].messages[-1]["content"]


class FakeVerifier:
    """Returns queued result lists; the last one repeats."""

    def __init__(self, *rounds):
        self.rounds = list(rounds)
        self.calls = 0

    def run_all(self, options=None, cancel_token=None):
        self.calls += 1
        if len(self.rounds) > 1:
            return self.rounds.pop(0)
        return self.rounds[0] if self.rounds else []


def _failing(*errors):
    return [VerifyResult(success=False, type="test", command="pytest -q", errors=tuple(errors))]


_PASSING = [VerifyResult(success=True, type="test", command="pytest -q")]


def _config(**overrides):
    values = {"confirmation": "never", "auto_verify": False}
    values.update(overrides)
    return AgentConfig(**values)


# ---------------------------------------------------------------------------
# Basic rounds
# ---------------------------------------------------------------------------


class TestBasicLoop:
    def test_read_then_answer(self, project):
        model = ScriptedModel(tool("read_file", path="src/util.py"), "The value is 1.")
        outcome = Agent(str(project), model, _config()).run("What is VALUE?")

        assert outcome.state == AgentState.COMPLETED
        assert outcome.succeeded
        assert outcome.message == "The value is 1."
        assert outcome.iterations == 2
        assert [(a.type, a.target) for a in outcome.actions] == [(ActionType.READ, "src/util.py")]
        results = model.last_user_message()
        assert results.startswith("Tool results:")
        assert "Tool read_file succeeded:\nVALUE = 1" in results

    def test_first_message_is_task(self, project):
        model = ScriptedModel("Nothing to do.")
        Agent(str(project), model, _config()).run("Explain the repo")
        request = model.requests[0]
        assert request.messages == [{"role": "user", "content": "Explain the repo"}]
        assert str(project.resolve()) in request.system_prompt

    def test_native_tools_sent_in_dialect(self, project):
        model = ScriptedModel("ok")
        Agent(str(project), model, _config(schema_dialect="anthropic")).run("t")
        request = model.requests[0]
        assert request.dialect == "anthropic"
        assert {"name", "description", "input_schema"} == set(request.tools[0])

    def test_text_tools_mode(self, project):
        model = ScriptedModel("ok")
        Agent(str(project), model, _config(native_tools=False)).run("t")
        request = model.requests[0]
        assert request.tools is None
        assert "<tool_call>" in request.system_prompt
        assert "### read_file" in request.system_prompt

    def test_project_rules_in_prompt(self, project):
        (project / "CODELOOP.md").write_text("Always use tabs.")
        model = ScriptedModel("ok")
        Agent(str(project), model, _config()).run("t")
        assert "Always use tabs." in model.requests[0].system_prompt

    def test_final_answer_is_cleaned(self, project):
        model = ScriptedModel("<think>hmm</think>All set.")
        assert Agent(str(project), model, _config()).run("t").message == "All set."

    def test_failed_tool_does_not_stop_loop(self, project):
        model = ScriptedModel(tool("read_file", path="missing.py"), "That file does not exist.")
        outcome = Agent(str(project), model, _config()).run("t")
        assert outcome.succeeded
        assert outcome.actions[0].result == "error"
        assert "Tool read_file failed:\nFile not found: missing.py" in model.last_user_message()

    def test_multiple_calls_run_in_order(self, project):
        reply = tool("create_directory", path="lib") + tool("write_file", path="lib/a.py", content="A = 1\n")
        outcome = Agent(str(project), ScriptedModel(reply, "Finished."), _config()).run("t")
        assert [a.type for a in outcome.actions] == [ActionType.MKDIR, ActionType.WRITE]
        assert (project / "lib" / "a.py").read_text() == "A = 1\n"

    def test_invalid_root(self, tmp_path):
        with pytest.raises(ConfigError):
            Agent(str(tmp_path / "missing"), ScriptedModel())

    def test_string_reply_is_accepted(self, project):
        outcome = Agent(str(project), lambda request: "Plain answer.", _config()).run("t")
        assert outcome.message == "Plain answer."


class TestNativeCalls:
    def test_openai_tool_calls(self, project):
        response = ModelResponse(
            text="",
            raw_tool_calls=[{"id": "c1", "function": {"name": "read_file", "arguments": '{"path": "README.md"}'}}],
        )
        model = ScriptedModel(response, "Read it.")
        outcome = Agent(str(project), model, _config()).run("t")
        assert outcome.actions[0].target == "README.md"
        assistant = model.requests[1].messages[-2]
        assert assistant["role"] == "assistant"
        assert '"tool": "read_file"' in assistant["content"]
        assert assistant["content"].startswith("<tool_call>")

    def test_anthropic_tool_use(self, project):
        response = ModelResponse(
            text="Listing files.",
            raw_tool_calls=[{"type": "tool_use", "id": "t1", "name": "list_files", "input": {"path": "."}}],
            dialect="anthropic",
        )
        model = ScriptedModel(response, "Listed.")
        outcome = Agent(str(project), model, _config(schema_dialect="anthropic")).run("t")
        assert outcome.actions[0].type == ActionType.LIST
        assert model.requests[1].messages[-2]["content"].startswith("Listing files.\n\n<tool_call>")

    def test_text_fallback_when_native_calls_unparseable(self, project):
        response = ModelResponse(
            text=tool("read_file", path="README.md"),
            raw_tool_calls=[{"function": {"name": "nonsense", "arguments": "{}"}}],
        )
        outcome = Agent(str(project), ScriptedModel(response, "ok"), _config()).run("t")
        assert [a.target for a in outcome.actions] == ["README.md"]

    def test_truncated_arguments_write_is_flagged(self, project):
        response = ModelResponse(
            text="",
            raw_tool_calls=[
                {
                    "id": "c1",
                    "function": {
                        "name": "write_file",
                        "arguments": '{"path": "big.py", "content": "def f():\\n    return 1\\n\\ndef g(',
                    },
                }
            ],
        )
        model = ScriptedModel(response, "ok")
        outcome = Agent(str(project), model, _config()).run("t")
        assert outcome.actions[0].target == "big.py"
        feedback = model.last_user_message()
        assert "Created file: big.py" in feedback
        assert "recovered from truncated output" in feedback

    def test_truncated_arguments_shown_when_confirming(self, project):
        seen = []
        response = ModelResponse(
            text="",
            raw_tool_calls=[
                {"id": "c1", "function": {"name": "write_file", "arguments": '{"path": "a.txt", "content": "par'}}
            ],
        )

        def confirm(call, diff):
            seen.append(call.partial)
            return True

        Agent(str(project), ScriptedModel(response, "ok"), _config(confirmation="dangerous"), confirm=confirm).run("t")
        assert seen == [True]


class TestNudges:
    def test_announced_work_is_nudged(self, project):
        model = ScriptedModel("Let me look at the files.", tool("list_files", path="."), "Everything is in order.")
        outcome = Agent(str(project), model, _config()).run("t")
        assert outcome.iterations == 3
        assert model.requests[1].messages[-1]["content"] == "Continue. Execute the tool calls now."
        assert outcome.message == "Everything is in order."

    def test_empty_reply_is_nudged(self, project):
        model = ScriptedModel("", "Answer.")
        outcome = Agent(str(project), model, _config()).run("t")
        assert outcome.iterations == 2
        assert outcome.message == "Answer."

    def test_nudges_are_capped(self, project):
        model = ScriptedModel(*["I'll do it now."] * 5)
        outcome = Agent(str(project), model, _config()).run("t")
        assert outcome.succeeded
        assert outcome.iterations == 3


# ---------------------------------------------------------------------------
# Confirmation
# ---------------------------------------------------------------------------


class TestConfirmation:
    def test_denied_call_stops_batch(self, project):
        reply = tool("write_file", path="src/util.py", content="VALUE = 2\n") + tool("read_file", path="README.md")
        model = ScriptedModel(reply, "Understood, leaving it.")
        events = []
        agent = Agent(
            str(project), model, _config(confirmation="dangerous"), confirm=reject_all, on_event=events.append
        )
        outcome = agent.run("t")

        assert outcome.succeeded
        assert outcome.actions == ()
        assert (project / "src" / "util.py").read_text() == "VALUE = 1\n"
        assert "The user declined to run write_file" in model.last_user_message()
        assert [e.payload["call"].tool for e in events if e.kind == "denied"] == ["write_file"]

    def test_safe_call_needs_no_confirmation(self, project):
        asked = []
        model = ScriptedModel(tool("read_file", path="README.md"), "ok")
        agent = Agent(
            str(project), model, _config(confirmation="dangerous"), confirm=lambda c, d: asked.append(c) or True
        )
        agent.run("t")
        assert asked == []

    def test_always_policy_asks_for_reads(self, project):
        asked = []
        model = ScriptedModel(tool("read_file", path="README.md"), "ok")
        agent = Agent(
            str(project), model, _config(confirmation="always"), confirm=lambda c, d: asked.append(c.tool) or True
        )
        outcome = agent.run("t")
        assert asked == ["read_file"]
        assert len(outcome.actions) == 1

    def test_confirm_receives_diff_preview(self, project):
        seen = []

        def confirm(call, diff):
            seen.append(diff)
            return True

        model = ScriptedModel(tool("write_file", path="src/util.py", content="VALUE = 2\n"), "Updated.")
        Agent(str(project), model, _config(confirmation="dangerous"), confirm=confirm).run("t")
        (diff,) = seen
        assert diff.type == "modify"
        assert (diff.additions, diff.deletions) == (1, 1)
        assert (project / "src" / "util.py").read_text() == "VALUE = 2\n"

    def test_no_callback_denies(self, project):
        model = ScriptedModel(tool("delete_file", path="README.md"), "Okay.")
        outcome = Agent(str(project), model, _config(confirmation="dangerous")).run("t")
        assert (project / "README.md").exists()
        assert outcome.actions == ()

    def test_callback_error_denies(self, project):
        def explode(call, diff):
            raise RuntimeError("tty gone")

        model = ScriptedModel(tool("delete_file", path="README.md"), "Okay.")
        Agent(str(project), model, _config(confirmation="always"), confirm=explode).run("t")
        assert (project / "README.md").exists()

    def test_terminal_prompt_marks_recovered_calls(self, monkeypatch, capsys):
        from rich.console import Console

        monkeypatch.setattr(Console, "input", lambda self, prompt="", **kwargs: "n")
        call = ToolCall(tool="write_file", parameters={"path": "big.py", "content": "def g("}, partial=True)
        assert cli_prompt(call, None) is False
        assert "Recovered from truncated output" in capsys.readouterr().out


class TestDryRun:
    def test_mutations_are_previewed_only(self, project):
        verifier = FakeVerifier(_failing(ParsedError("x")))
        model = ScriptedModel(tool("write_file", path="src/util.py", content="VALUE = 3\n"), "Would update.")
        outcome = Agent(
            str(project), model, _config(dry_run=True, auto_verify=True), verifier=verifier
        ).run("t")

        assert (project / "src" / "util.py").read_text() == "VALUE = 1\n"
        assert outcome.actions[0].details == "[DRY RUN] Would execute: write_file"
        assert verifier.calls == 0
        assert outcome.succeeded


# ---------------------------------------------------------------------------
# Verification and fix rounds
# ---------------------------------------------------------------------------


class TestVerifyAndFix:
    def test_fix_round_then_pass(self, project):
        verifier = FakeVerifier(
            _failing(
                ParsedError("assert -1 == 3", file="src/app.py", line=2),
                ParsedError("Test failed: test_add", file="tests/test_app.py"),
            ),
            _PASSING,
        )
        model = ScriptedModel(
            tool("edit_file", path="src/app.py", old_text="return a - b", new_text="return a + b"),
            "Fixed the add function.",
            "Checked, the fix is in place.",
        )
        outcome = Agent(str(project), model, _config(auto_verify=True), verifier=verifier).run("Fix the tests")

        assert outcome.state == AgentState.COMPLETED
        assert outcome.fix_attempts == 1
        assert outcome.fix_attempts <= 3
        assert outcome.residual_errors == ()
        assert outcome.message.endswith("Verification passed: 1/1 checks")
        assert verifier.calls == 2
        fix_prompt = model.last_user_message()
        assert fix_prompt.startswith("## Verification Errors - Please Fix:")
        assert "- [src/app.py:2] assert -1 == 3" in fix_prompt
        assert "return a + b" in (project / "src" / "app.py").read_text()

    def test_no_verification_without_changes(self, project):
        verifier = FakeVerifier(_PASSING)
        model = ScriptedModel(tool("read_file", path="README.md"), "Read it.")
        Agent(str(project), model, _config(auto_verify=True), verifier=verifier).run("t")
        assert verifier.calls == 0

    def test_attempts_exhausted_completes_with_residual_errors(self, project):
        verifier = FakeVerifier(_failing(ParsedError("still broken", file="src/util.py", line=1)))
        model = ScriptedModel(tool("write_file", path="src/util.py", content="VALUE = \n"), "Changed.")
        outcome = Agent(
            str(project), model, _config(auto_verify=True, max_fix_attempts=2), verifier=verifier
        ).run("t")

        assert outcome.state == AgentState.COMPLETED
        assert outcome.fix_attempts == 2
        assert [e.message for e in outcome.residual_errors] == ["still broken"]
        assert "Verification still failing after 2 fix attempt(s): 1 error(s) remain." in outcome.message
        assert verifier.calls == 3
        assert outcome.iterations == 4

    def test_repeated_errors_escalate(self, project):
        verifier = FakeVerifier(_failing(ParsedError("same", file="src/util.py")))
        model = ScriptedModel(tool("write_file", path="src/util.py", content="X\n"), "Changed.")
        Agent(str(project), model, _config(auto_verify=True, max_fix_attempts=2), verifier=verifier).run("t")
        assert "did NOT resolve these errors" in model.last_user_message()

    def test_errors_in_untouched_files_ignored(self, project):
        verifier = FakeVerifier(_failing(ParsedError("legacy", file="src/other.py", line=9)))
        model = ScriptedModel(tool("write_file", path="src/util.py", content="VALUE = 2\n"), "Done here.")
        outcome = Agent(str(project), model, _config(auto_verify=True), verifier=verifier).run("t")
        assert outcome.fix_attempts == 0
        assert outcome.residual_errors == ()

    def test_budget_during_fix_round_completes(self, project):
        verifier = FakeVerifier(_failing(ParsedError("bad", file="src/util.py")))
        model = ScriptedModel(tool("write_file", path="src/util.py", content="X\n"), "Changed.")
        outcome = Agent(
            str(project), model, _config(auto_verify=True, max_iterations=2), verifier=verifier
        ).run("t")
        assert outcome.state == AgentState.COMPLETED
        assert outcome.fix_attempts == 1
        assert outcome.residual_errors


# ---------------------------------------------------------------------------
# Termination
# ---------------------------------------------------------------------------


class TestTermination:
    def test_iteration_budget(self, project):
        model = ScriptedModel(*[tool("write_file", path=f"f{i}.txt", content=str(i)) for i in range(10)])
        outcome = Agent(str(project), model, _config(max_iterations=2)).run("t")

        assert outcome.state == AgentState.FAILED
        assert outcome.error == "Exceeded maximum of 2 iterations"
        assert outcome.iterations == 2
        assert len(outcome.actions) == 2
        assert outcome.message.startswith("Agent reached the iteration limit (2 steps).")
        assert "  - f0.txt" in outcome.message

    def test_time_budget(self, project):
        def slow(request):
            time.sleep(0.2)
            return tool("write_file", path="f1.txt", content="1")

        model = ScriptedModel(tool("write_file", path="f0.txt", content="0"), slow, "never reached")
        outcome = Agent(str(project), model, _config(max_duration=0.1)).run("t")

        assert outcome.state == AgentState.FAILED
        assert outcome.error == "Exceeded maximum duration of 0 min"
        assert outcome.message.startswith("Agent reached the time limit (0 min).")
        assert "Partial progress" in outcome.message
        assert "  - f0.txt" in outcome.message
        assert "  - f1.txt" in outcome.message
        assert [a.target for a in outcome.actions] == ["f0.txt", "f1.txt"]
        assert len(model.requests) == 2

    def test_model_failure(self, project):
        model = ScriptedModel(tool("read_file", path="README.md"), RuntimeError("connection reset"))
        outcome = Agent(str(project), model, _config()).run("t")
        assert outcome.state == AgentState.FAILED
        assert outcome.error == "Model call failed: connection reset"
        assert len(outcome.actions) == 1

    def test_cancellation_mid_command(self, project):
        holder = {}

        def slow_command(command, args, *, cwd, timeout, cancel_token):
            threading.Timer(0.1, holder["agent"].cancel).start()
            cancel_token.wait(5)
            return CommandResult(command, tuple(args), stderr="Command cancelled", cancelled=True)

        reply = tool("write_file", path="notes.txt", content="hi") + tool("execute_command", command="npm", args=["test"])
        model = ScriptedModel(reply, "never reached")
        agent = Agent(str(project), model, _config(), runner=FakeRunner(handler=slow_command))
        holder["agent"] = agent
        outcome = agent.run("t")

        assert outcome.state == AgentState.ABORTED
        assert outcome.aborted
        assert outcome.message == "Agent was stopped by user"
        assert [(a.type, a.result) for a in outcome.actions] == [
            (ActionType.WRITE, "success"),
            (ActionType.COMMAND, "error"),
        ]
        assert len(model.requests) == 1
        assert not agent.is_running

    def test_cancel_when_idle_is_noop(self, project):
        agent = Agent(str(project), ScriptedModel(), _config())
        agent.cancel()
        assert agent.state == AgentState.IDLE
        assert agent.run("t").succeeded

    def test_busy(self, project):
        seen = []

        def reenter(request):
            try:
                agent.run("second task")
            except AgentBusyError:
                seen.append(True)
            return "First task done."

        agent = Agent(str(project), ScriptedModel(reenter), _config())
        outcome = agent.run("first task")
        assert seen == [True]
        assert outcome.succeeded

    def test_sequential_tasks_get_fresh_sessions(self, project):
        agent = Agent(str(project), ScriptedModel(tool("read_file", path="README.md"), "a", "b"), _config())
        first = agent.run("one")
        second = agent.run("two")
        assert len(first.actions) == 1
        assert second.actions == ()
        assert second.iterations == 1


# ---------------------------------------------------------------------------
# History handling
# ---------------------------------------------------------------------------


class TestHistory:
    def test_repeated_read_is_cached(self, project):
        model = ScriptedModel(tool("read_file", path="README.md"), tool("read_file", path="README.md"), "ok")
        Agent(str(project), model, _config()).run("t")
        assert "(cached, file unchanged since last read)" in model.last_user_message()

    def test_write_invalidates_cache(self, project):
        model = ScriptedModel(
            tool("read_file", path="README.md"),
            tool("write_file", path="README.md", content="# New\n"),
            tool("read_file", path="README.md"),
            "ok",
        )
        Agent(str(project), model, _config()).run("t")
        last = model.last_user_message()
        assert "cached" not in last
        assert "# New" in last

    def test_duplicate_writes_warn(self, project):
        same = tool("write_file", path="a.txt", content="same")
        model = ScriptedModel(same, same, same, "ok")
        Agent(str(project), model, _config()).run("t")
        assert "same content as previous write" in model.last_user_message(-2)
        assert "[WARNING] You have written the same content to `a.txt` 3 times" in model.last_user_message()

    def test_repeated_failed_edit_reports_failure(self, project):
        edit = tool("edit_file", path="src/util.py", old_text="VALUE = 1", new_text="VALUE = 2")
        model = ScriptedModel(edit, edit, "ok")
        outcome = Agent(str(project), model, _config()).run("t")

        assert [a.result for a in outcome.actions] == ["success", "error"]
        feedback = model.last_user_message()
        assert "Tool edit_file failed:" in feedback
        assert "Text not found" in feedback
        assert "same content" not in feedback

    def test_long_output_truncated(self, project):
        (project / "big.txt").write_text("z" * 500)
        model = ScriptedModel(tool("read_file", path="big.txt"), "ok")
        Agent(str(project), model, _config(tool_result_max_chars=100)).run("t")
        assert "[... 400 chars truncated" in model.last_user_message()

    def test_context_overflow_compresses_and_retries(self, project):
        reads = [tool("read_file", path=p) for p in ("README.md", "src/app.py", "src/util.py", "tests/test_app.py")]
        model = ScriptedModel(*reads, LLMContextLengthError("too long"), "Summary.")
        events = []
        outcome = Agent(str(project), model, _config(), on_event=events.append).run("t")

        assert outcome.succeeded
        assert outcome.message == "Summary."
        retry = model.requests[-1]
        assert retry.messages[0]["content"] == "t"
        assert retry.messages[1]["content"].startswith("[Context compressed")
        assert len(retry.messages) == 8
        assert any(e.kind == "compressed" for e in events)

    def test_context_overflow_without_history_fails(self, project):
        outcome = Agent(str(project), ScriptedModel(LLMContextLengthError("too long")), _config()).run("t")
        assert outcome.state == AgentState.FAILED


# ---------------------------------------------------------------------------
# Events and reporting
# ---------------------------------------------------------------------------


class TestEvents:
    def test_event_sequence(self, project):
        events = []
        model = ScriptedModel(tool("read_file", path="README.md"), "ok")
        Agent(str(project), model, _config(), on_event=events.append).run("t")
        kinds = [e.kind for e in events]
        assert kinds[0] == "state"
        assert kinds[-1] == "finished"
        assert kinds.index("tool_call") < kinds.index("tool_result")
        states = [e.payload["state"] for e in events if e.kind == "state"]
        assert states == [AgentState.THINKING, AgentState.EXECUTING, AgentState.THINKING, AgentState.COMPLETED]

    def test_observer_errors_are_ignored(self, project):
        def broken(event):
            raise ValueError("observer bug")

        assert Agent(str(project), ScriptedModel("ok"), _config(), on_event=broken).run("t").succeeded


def test_format_outcome(project):
    outcome = run_agent(
        "t",
        str(project),
        ScriptedModel(tool("read_file", path="README.md"), tool("read_file", path="nope"), "ok"),
        _config(),
    )
    assert format_outcome(outcome).splitlines() == [
        "Agent completed in 3 iteration(s)",
        "",
        "Actions performed:",
        "  + read: README.md",
        "  x read: nope",
    ]


def test_format_failed_outcome():
    outcome = AgentOutcome(state=AgentState.FAILED, error="Exceeded maximum of 5 iterations")
    assert format_outcome(outcome) == "Agent failed: Exceeded maximum of 5 iterations"


def test_outcome_to_dict(project):
    outcome = run_agent("t", str(project), ScriptedModel(tool("list_files", path=".")), _config())
    data = outcome.to_dict()
    assert data["state"] == "completed"
    assert data["actions"][0]["type"] == "list"
    assert json.dumps(data)
