"""Shared test fixtures for Codeloop.

Provides a throwaway project directory and a scriptable command runner so
tests never depend on which toolchains the machine has installed.
"""

from __future__ import annotations

import pytest

from codeloop.shell import CommandResult


class FakeRunner:
    """Records every command and answers from a queue or a handler.

    ``results`` maps an executable name to a list of CommandResults handed
    out in order; the last one repeats. Commands with no entry succeed with
    empty output.
    """

    def __init__(self, results=None, handler=None):
        self.results = {k: list(v) for k, v in (results or {}).items()}
        self.handler = handler
        self.calls: list[tuple[str, tuple[str, ...], str | None]] = []

    def __call__(self, command, args=(), *, cwd=None, timeout=60.0, env=None, cancel_token=None):
        args = tuple(args)
        self.calls.append((command, args, cwd))
        if self.handler is not None:
            return self.handler(command, args, cwd=cwd, timeout=timeout, cancel_token=cancel_token)
        queue = self.results.get(command)
        if queue:
            return queue.pop(0) if len(queue) > 1 else queue[0]
        return CommandResult(command=command, args=args, exit_code=0)

    @property
    def command_lines(self) -> list[str]:
        return [" ".join([c, *a]) for c, a, _ in self.calls]


@pytest.fixture
def project(tmp_path):
    """A small project tree: a package, a test file and a README."""
    root = tmp_path / "project"
    (root / "src").mkdir(parents=True)
    (root / "src" / "app.py").write_text("def add(a, b):\n    return a - b\n")
    (root / "src" / "util.py").write_text("VALUE = 1\n")
    (root / "tests").mkdir()
    (root / "tests" / "test_app.py").write_text(
        "from src.app import add\n\n\ndef test_add():\n    assert add(1, 2) == 3\n"
    )
    (root / "README.md").write_text("# Demo\n")
    return root


@pytest.fixture
def fake_runner():
    return FakeRunner()
