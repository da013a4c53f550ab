"""Subprocess collaborator used by the tool executor and the verifier.

Commands run without a shell, in their own process group, so a timeout or
a cancellation can take down the whole tree the command spawned.
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from codeloop.cancellation import CancellationToken

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0
_KILL_GRACE = 5.0


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one subprocess run.

    Attributes:
        command: Executable that was run.
        args: Its arguments.
        exit_code: Process exit status; -1 when it never started or was killed.
        stdout: Captured standard output.
        stderr: Captured standard error, or the reason the run failed.
        duration: Wall-clock seconds.
        timed_out: The run was killed for exceeding its timeout.
        cancelled: The run was killed by a cancellation signal.
    """

    command: str
    args: tuple[str, ...] = ()
    exit_code: int = -1
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0
    timed_out: bool = False
    cancelled: bool = False

    @property
    def success(self) -> bool:
        return self.exit_code == 0 and not self.timed_out and not self.cancelled

    @property
    def command_line(self) -> str:
        return " ".join([self.command, *self.args])

    @property
    def output(self) -> str:
        """stdout and stderr combined, as parsers want them."""
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


def _kill_process_group(proc: subprocess.Popen) -> None:
    """Kill ``proc`` and everything in its process group."""
    if proc.poll() is not None:
        return
    if os.name == "posix":
        try:
            os.killpg(os.getpgid(proc.pid), signal.SIGKILL)
        except (OSError, ProcessLookupError):
            pass
    try:
        proc.kill()
    except OSError:
        pass


def _drain(proc: subprocess.Popen) -> tuple[str, str]:
    """Collect what a killed process left in its pipes."""
    try:
        stdout, stderr = proc.communicate(timeout=_KILL_GRACE)
    except subprocess.TimeoutExpired:
        # A grandchild outside the group still holds the pipes.
        logger.warning("Process %d did not exit after kill", proc.pid)
        return "", ""
    return stdout or "", stderr or ""


def run_command(
    command: str,
    args: Sequence[str] = (),
    *,
    cwd: str | None = None,
    timeout: float = DEFAULT_TIMEOUT,
    env: Mapping[str, str] | None = None,
    cancel_token: CancellationToken | None = None,
) -> CommandResult:
    """Run ``command`` with ``args`` and wait for it, bounded by ``timeout``.

    Never raises for process-level failures: a missing executable, a
    timeout or a cancellation are all reported in the returned result.

    Args:
        command: Executable name or path.
        args: Argument vector.
        cwd: Working directory.
        timeout: Seconds before the process group is killed.
        env: Extra environment variables layered over ``os.environ``.
        cancel_token: When cancelled, the process group is killed at once.

    Returns:
        CommandResult describing the run.
    """
    args = tuple(args)
    start = time.monotonic()

    def _failed(reason: str, **extra: object) -> CommandResult:
        return CommandResult(
            command=command,
            args=args,
            stderr=reason,
            duration=time.monotonic() - start,
            **extra,
        )

    if cwd is not None and not os.path.isdir(cwd):
        return _failed(f"Working directory does not exist: {cwd}")
    if cancel_token is not None and cancel_token.cancelled:
        return _failed("Command cancelled", cancelled=True)

    full_env = {**os.environ, **env} if env else None
    logger.debug("Running %s %s (cwd=%s, timeout=%ss)", command, list(args), cwd, timeout)
    try:
        proc = subprocess.Popen(
            [command, *args],
            cwd=cwd,
            env=full_env,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
            start_new_session=True,
        )
    except OSError as exc:
        return _failed(f"Failed to start '{command}': {exc}")

    unregister = (
        cancel_token.on_cancel(lambda: _kill_process_group(proc))
        if cancel_token is not None
        else None
    )
    try:
        stdout, stderr = proc.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        _kill_process_group(proc)
        stdout, _stderr = _drain(proc)
        return CommandResult(
            command=command,
            args=args,
            stdout=stdout,
            stderr=f"Command timed out after {timeout:g}s",
            duration=time.monotonic() - start,
            timed_out=True,
        )
    finally:
        if unregister is not None:
            unregister()

    duration = time.monotonic() - start
    if cancel_token is not None and cancel_token.cancelled:
        return CommandResult(
            command=command,
            args=args,
            stdout=stdout or "",
            stderr="Command cancelled",
            duration=duration,
            cancelled=True,
        )
    return CommandResult(
        command=command,
        args=args,
        exit_code=proc.returncode,
        stdout=stdout or "",
        stderr=stderr or "",
        duration=duration,
    )


def format_command_result(result: CommandResult) -> str:
    """One-paragraph summary of a command run for logs and prompts."""
    status = "ok" if result.success else "failed"
    lines = [f"$ {result.command_line}  [{status}, exit {result.exit_code}, {result.duration:.1f}s]"]
    if result.stdout.strip():
        lines.append(result.stdout.rstrip())
    if result.stderr.strip():
        lines.append(f"stderr: {result.stderr.rstrip()}")
    return "\n".join(lines)
