"""CLI tests for Codeloop -- exercises every command via Click's CliRunner.

The run command is driven by a scripted model patched in place of the
provider clients, so no network access is needed.
"""

from __future__ import annotations

import json
import os

import pytest
from click.testing import CliRunner

from codeloop.cli import cli


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def runner():
    """Create a Click test runner."""
    return CliRunner()


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in list(os.environ):
        if name.startswith("CODELOOP_"):
            monkeypatch.delenv(name)


class _ClosableClient:
    def __init__(self):
        self.closed = False

    def close(self):
        self.closed = True


def _scripted(*replies):
    remaining = list(replies)

    def model(request):
        return remaining.pop(0) if remaining else "Done."

    return model


def _tool(name, **params):
    return "<tool_call>" + json.dumps({"tool": name, "parameters": params}) + "</tool_call>"


def _json_tail(output):
    return json.loads(output[output.index("{"):])


# ---------------------------------------------------------------------------
# validate
# ---------------------------------------------------------------------------


class TestValidate:
    def test_allowed(self, runner, project):
        result = runner.invoke(cli, ["-C", str(project), "validate", "npm", "test"])
        assert result.exit_code == 0
        assert "allowed npm test" in result.output

    def test_blocked_command(self, runner, project):
        result = runner.invoke(cli, ["-C", str(project), "validate", "sudo", "ls"])
        assert result.exit_code == 1
        assert "denied" in result.output
        assert "not allowed for security reasons" in result.output

    def test_options_passed_through(self, runner, project):
        result = runner.invoke(cli, ["-C", str(project), "validate", "npm", "--version"])
        assert result.exit_code == 0
        assert "npm --version" in result.output


# ---------------------------------------------------------------------------
# tools
# ---------------------------------------------------------------------------


class TestTools:
    def test_text_listing(self, runner):
        result = runner.invoke(cli, ["tools"])
        assert result.exit_code == 0
        assert "### read_file" in result.output
        assert "### fetch_url" in result.output

    def test_openai_schemas(self, runner):
        result = runner.invoke(cli, ["tools", "--dialect", "openai"])
        assert result.exit_code == 0
        schemas = json.loads(result.output)
        assert len(schemas) == 10
        assert schemas[0]["type"] == "function"
        assert schemas[0]["function"]["name"] == "read_file"

    def test_anthropic_schemas(self, runner):
        result = runner.invoke(cli, ["tools", "--dialect", "anthropic"])
        assert "input_schema" in json.loads(result.output)[0]


# ---------------------------------------------------------------------------
# diff
# ---------------------------------------------------------------------------


class TestDiff:
    def test_plain_modify(self, runner, tmp_path):
        old = tmp_path / "old.txt"
        new = tmp_path / "new.txt"
        old.write_text("one\ntwo\nthree\n")
        new.write_text("one\n2\nthree\n")
        result = runner.invoke(cli, ["diff", str(old), str(new), "--plain"])
        assert result.exit_code == 0
        assert "-two" in result.output
        assert "+2" in result.output
        assert "@@" in result.output

    def test_missing_old_is_create(self, runner, tmp_path):
        new = tmp_path / "new.txt"
        new.write_text("hello\n")
        result = runner.invoke(cli, ["diff", str(tmp_path / "absent.txt"), str(new), "--plain"])
        assert result.exit_code == 0
        assert result.output.startswith("--- /dev/null")
        assert "+hello" in result.output

    def test_rich_view(self, runner, tmp_path):
        old = tmp_path / "a.txt"
        new = tmp_path / "b.txt"
        old.write_text("x = 1\n")
        new.write_text("x = 2\n")
        result = runner.invoke(cli, ["diff", str(old), str(new)])
        assert result.exit_code == 0
        assert "modify" in result.output


# ---------------------------------------------------------------------------
# verify
# ---------------------------------------------------------------------------


class TestVerify:
    def test_no_checks_detected(self, runner, tmp_path):
        result = runner.invoke(cli, ["verify", str(tmp_path)])
        assert result.exit_code == 0
        assert "No verification checks detected" in result.output

    def test_json_empty(self, runner, tmp_path):
        result = runner.invoke(cli, ["-C", str(tmp_path), "verify", "--json"])
        assert result.exit_code == 0
        assert json.loads(result.output) == []


# ---------------------------------------------------------------------------
# run
# ---------------------------------------------------------------------------


class TestRun:
    def test_missing_api_key(self, runner, project):
        with runner.isolated_filesystem():
            result = runner.invoke(cli, ["-C", str(project), "run", "do something"])
        assert result.exit_code == 1
        assert "Error:" in result.output
        assert "CODELOOP_OPENAI_API_KEY" in result.output

    def test_json_outcome(self, runner, project, monkeypatch):
        client = _ClosableClient()
        model = _scripted(_tool("read_file", path="README.md"), "The README is a title only.")
        monkeypatch.setattr("codeloop.cli.commands.run._build_model", lambda provider, name: (client, model))

        with runner.isolated_filesystem():
            result = runner.invoke(
                cli, ["-C", str(project), "run", "Describe the README", "--confirm", "never", "--json"]
            )

        assert result.exit_code == 0, result.output
        data = _json_tail(result.output)
        assert data["state"] == "completed"
        assert data["message"] == "The README is a title only."
        assert data["actions"][0]["target"] == "README.md"
        assert client.closed

    def test_dry_run_reports_and_keeps_files(self, runner, project, monkeypatch):
        model = _scripted(_tool("delete_file", path="README.md"), "Would remove the README.")
        monkeypatch.setattr(
            "codeloop.cli.commands.run._build_model", lambda provider, name: (_ClosableClient(), model)
        )
        with runner.isolated_filesystem():
            result = runner.invoke(cli, ["-C", str(project), "run", "Remove README", "--dry-run"])

        assert result.exit_code == 0, result.output
        assert (project / "README.md").exists()
        assert "delete_file" in result.output
        assert "completed" in result.output

    def test_budget_exhaustion_exits_nonzero(self, runner, project, monkeypatch):
        model = _scripted(*[_tool("list_files", path=".")] * 5)
        monkeypatch.setattr(
            "codeloop.cli.commands.run._build_model", lambda provider, name: (_ClosableClient(), model)
        )
        with runner.isolated_filesystem():
            result = runner.invoke(
                cli, ["-C", str(project), "run", "loop", "--max-iterations", "2", "--json", "--no-verify"]
            )
        assert result.exit_code == 1
        data = _json_tail(result.output)
        assert data["state"] == "failed"
        assert data["error"] == "Exceeded maximum of 2 iterations"
