"""Run a project's verification checks and report the results.

Typecheck and lint run concurrently; build runs after both, and tests run
last. Every command passes the same safety gate and subprocess runner the
tool executor uses.
"""

from __future__ import annotations

import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING

from codeloop.exceptions import VerificationError
from codeloop.safety.validator import validate_command
from codeloop.shell import run_command
from codeloop.verification.detect import DEFAULT_DETECTORS, detect_project_checks
from codeloop.verification.models import ParsedError, VerificationSummary, VerifyResult
from codeloop.verification.parsing import parse_errors

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence

    from codeloop.cancellation import CancellationToken
    from codeloop.models.config import VerifyOptions
    from codeloop.protocols import CommandRunner
    from codeloop.verification.detect import VerificationCommand

logger = logging.getLogger(__name__)

_RAW_OUTPUT_LIMIT = 2000


class Verifier:
    """Runs the build/test/lint/typecheck checks detected for a project.

    Usage::

        verifier = Verifier("/path/to/project")
        results = verifier.run_all()
        if has_verification_errors(results):
            print(format_errors_for_agent(results))
    """

    def __init__(
        self,
        project_root: str,
        *,
        runner: CommandRunner | None = None,
        detectors: Sequence[Callable[[str], dict]] = DEFAULT_DETECTORS,
    ) -> None:
        if not os.path.isdir(project_root):
            raise VerificationError(project_root, "not a directory")
        self.project_root = os.path.realpath(project_root)
        self._runner = runner or run_command
        self._detectors = detectors

    def run_all(
        self,
        options: VerifyOptions | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> list[VerifyResult]:
        """Run every enabled, detected check.

        Returns:
            Results in run order: typecheck, lint, build, test. Checks the
            project does not support are simply absent.
        """
        from codeloop.models.config import VerifyOptions as _VerifyOptions

        opts = options or _VerifyOptions()
        checks = detect_project_checks(self.project_root, self._detectors)
        results: list[VerifyResult] = []

        parallel = [
            checks.get(check)
            for check, enabled in (("typecheck", opts.run_typecheck), ("lint", opts.run_lint))
            if enabled and checks.get(check) is not None
        ]
        if parallel:
            with ThreadPoolExecutor(max_workers=len(parallel), thread_name_prefix="verify") as pool:
                futures = [pool.submit(self.run_check, c, opts.timeout, cancel_token) for c in parallel]
                results.extend(f.result() for f in futures)

        for check, enabled in (("build", opts.run_build), ("test", opts.run_test)):
            command = checks.get(check)
            if not enabled or command is None:
                continue
            if cancel_token is not None and cancel_token.cancelled:
                break
            results.append(self.run_check(command, opts.timeout, cancel_token))
        return results

    def run_check(
        self,
        check: VerificationCommand,
        timeout: float,
        cancel_token: CancellationToken | None = None,
    ) -> VerifyResult:
        """Run one check and parse its output."""
        if check.blocked_reason:
            return VerifyResult(
                success=False,
                type=check.type,
                command=check.command_line,
                output=check.blocked_reason,
                errors=(ParsedError(message=check.blocked_reason),),
            )

        verdict = validate_command(check.command, check.args, project_root=self.project_root)
        if not verdict:
            return VerifyResult(
                success=False,
                type=check.type,
                command=check.command_line,
                output=verdict.reason,
                errors=(ParsedError(message=f"{verdict.reason}", severity="warning"),),
            )

        start = time.monotonic()
        result = self._runner(
            check.command,
            check.args,
            cwd=self.project_root,
            timeout=timeout,
            cancel_token=cancel_token,
        )
        duration = time.monotonic() - start
        output = result.output.strip()
        errors = parse_errors(output)
        if not result.success and not errors:
            # Never let a failure pass silently.
            if result.timed_out:
                reason = f"Command timed out after {round(duration)}s. This check may be too slow for verification."
            else:
                reason = output or f"Command failed with exit code {result.exit_code} and no output"
            errors.append(ParsedError(message=reason[:_RAW_OUTPUT_LIMIT], severity="warning"))
        logger.info("%s %s: %s", check.type, "passed" if result.success else "failed", check.command_line)
        return VerifyResult(
            success=result.success,
            type=check.type,
            command=check.command_line,
            output=output,
            errors=tuple(errors),
            duration=duration,
        )


def run_all_verifications(
    project_root: str,
    options: VerifyOptions | None = None,
    *,
    runner: CommandRunner | None = None,
    cancel_token: CancellationToken | None = None,
) -> list[VerifyResult]:
    """Convenience wrapper around :meth:`Verifier.run_all`."""
    return Verifier(project_root, runner=runner).run_all(options, cancel_token)


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------


def has_verification_errors(results: Iterable[VerifyResult]) -> bool:
    return any(not r.success for r in results)


def get_verification_summary(results: Sequence[VerifyResult]) -> VerificationSummary:
    passed = sum(1 for r in results if r.success)
    return VerificationSummary(
        passed=passed,
        failed=len(results) - passed,
        total=len(results),
        errors=sum(r.error_count for r in results),
    )


def format_verify_results(results: Sequence[VerifyResult]) -> str:
    """Human-readable status lines, with the first few errors of each failure."""
    lines: list[str] = []
    for result in results:
        status = "PASS" if result.success else "FAIL"
        lines.append(f"{status} {result.type}: {result.command} ({result.duration:.1f}s)")
        if result.success or not result.errors:
            continue
        lines.append(f"  {result.error_count} error(s), {result.warning_count} warning(s)")
        for error in result.errors[:5]:
            lines.append(f"  - {error.location}: {error.message}")
        if len(result.errors) > 5:
            lines.append(f"  ... and {len(result.errors) - 5} more")
    return "\n".join(lines)


def format_errors_for_agent(results: Sequence[VerifyResult]) -> str:
    """Fix-it instructions for the model; empty when nothing failed."""
    failed = [r for r in results if not r.success]
    if not failed:
        return ""
    lines = ["## Verification Errors - Please Fix:", ""]
    for result in failed:
        lines.append(f"### {result.type.upper()} Failed")
        lines.append(f"Command: {result.command}")
        lines.append("")
        if result.errors:
            lines.append("Errors:")
            for error in result.errors:
                code = f" ({error.code})" if error.code else ""
                lines.append(f"- [{error.location}] {error.message}{code}")
        else:
            lines.append("Output:")
            lines.append("```")
            lines.append(result.output[:_RAW_OUTPUT_LIMIT])
            if len(result.output) > _RAW_OUTPUT_LIMIT:
                lines.append("... (truncated)")
            lines.append("```")
        lines.append("")
    lines.append("Please fix these errors and try again.")
    return "\n".join(lines)


def _touches(error: ParsedError, touched: set[str], root: str) -> bool:
    if not error.file:
        return True
    path = error.file
    if os.path.isabs(path):
        path = os.path.relpath(path, root)
    path = os.path.normpath(path)
    return path in touched or any(path.endswith(os.sep + t) or t.endswith(os.sep + path) for t in touched)


def filter_results_to_files(
    results: Sequence[VerifyResult],
    touched_files: Iterable[str],
    project_root: str,
) -> list[VerifyResult]:
    """Keep only failures attributable to files the agent changed.

    Errors without a file are kept. A failed result whose every error
    points at an untouched file is treated as pre-existing and marked
    passed, so the agent is not asked to fix code it never edited.
    """
    touched = {os.path.normpath(p) for p in touched_files}
    filtered: list[VerifyResult] = []
    for result in results:
        if result.success or not result.errors:
            filtered.append(result)
            continue
        kept = tuple(e for e in result.errors if _touches(e, touched, project_root))
        if kept:
            filtered.append(
                VerifyResult(
                    success=False,
                    type=result.type,
                    command=result.command,
                    output=result.output,
                    errors=kept,
                    duration=result.duration,
                )
            )
        else:
            logger.debug("Ignoring pre-existing %s failures in untouched files", result.type)
            filtered.append(
                VerifyResult(
                    success=True,
                    type=result.type,
                    command=result.command,
                    output=result.output,
                    errors=(),
                    duration=result.duration,
                )
            )
    return filtered
