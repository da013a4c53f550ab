"""Extract structured diagnostics from build, test and lint output.

Each output line is tried against an ordered list of matchers; the first
match wins and later matchers are not consulted for that line.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from codeloop.verification.models import ParsedError

if TYPE_CHECKING:
    from collections.abc import Callable

_Matcher = tuple["re.Pattern[str]", "Callable[[re.Match[str]], ParsedError]"]


def _int(value: str | None) -> int | None:
    return int(value) if value else None


def _severity(value: str) -> str:
    return "warning" if "warn" in value.lower() else "error"


_MATCHERS: list[_Matcher] = [
    # TypeScript: src/app.ts(10,5): error TS2345: Argument of type ...
    (
        re.compile(r"^(.+?)\((\d+),(\d+)\):\s*(error|warning)\s+(TS\d+):\s*(.+)$"),
        lambda m: ParsedError(
            file=m[1], line=int(m[2]), column=int(m[3]),
            severity=m[4], code=m[5], message=m[6],
        ),
    ),
    # ESLint unix format: src/app.ts:10:5: error Unexpected any
    (
        re.compile(r"^(.+?):(\d+):(\d+):\s*(error|warning)\s+(.+)$"),
        lambda m: ParsedError(
            file=m[1], line=int(m[2]), column=int(m[3]), severity=m[4], message=m[5],
        ),
    ),
    # Jest / Vitest: FAIL src/app.test.ts
    (
        re.compile(r"^\s*FAIL\s+(.+)$"),
        lambda m: ParsedError(file=m[1].strip(), message="Test file failed"),
    ),
    # pytest -rf summary: FAILED tests/test_app.py::test_add - assert 1 == 2
    (
        re.compile(r"^FAILED\s+([^\s:]+)::(\S+)(?:\s+-\s+(.+))?$"),
        lambda m: ParsedError(
            file=m[1], message=f"Test failed: {m[2]}" + (f": {m[3]}" if m[3] else ""),
        ),
    ),
    # mypy: app.py:10: error: Incompatible types  [assignment]
    (
        re.compile(r"^(.+?\.pyi?):(\d+):(?:(\d+):)?\s*(error|warning):\s*(.+?)(?:\s+\[([\w-]+)\])?$"),
        lambda m: ParsedError(
            file=m[1], line=int(m[2]), column=_int(m[3]),
            severity=m[4], message=m[5], code=m[6],
        ),
    ),
    # ruff concise: app.py:1:8: F401 [*] `os` imported but unused
    (
        re.compile(r"^(.+?\.pyi?):(\d+):(\d+):\s*([A-Z]+\d+)\s+(?:\[\*\]\s+)?(.+)$"),
        lambda m: ParsedError(
            file=m[1], line=int(m[2]), column=int(m[3]), code=m[4], message=m[5],
        ),
    ),
    # Generic: file:line: ... error ...
    (
        re.compile(r"^(.+?):(\d+):\s*(.+error.+)$", re.IGNORECASE),
        lambda m: ParsedError(file=m[1], line=int(m[2]), message=m[3]),
    ),
    # Go: main.go:10:5: undefined: foo
    (
        re.compile(r"^(.+\.go):(\d+):(\d+):\s*(.+)$"),
        lambda m: ParsedError(file=m[1], line=int(m[2]), column=int(m[3]), message=m[4]),
    ),
    # Rust: --> src/main.rs:10:5
    (
        re.compile(r"^\s*-->\s*(.+?):(\d+):(\d+)$"),
        lambda m: ParsedError(
            file=m[1], line=int(m[2]), column=int(m[3]), message="Rust compilation error",
        ),
    ),
    # PHP: PHP Parse error: syntax error ... in /app/x.php on line 10
    (
        re.compile(
            r"PHP\s+(Parse error|Fatal error|Warning):\s*(.+?)\s+in\s+(.+?)\s+on line\s+(\d+)",
            re.IGNORECASE,
        ),
        lambda m: ParsedError(file=m[3], line=int(m[4]), severity=_severity(m[1]), message=m[2]),
    ),
    # PHPUnit: 1) Tests\UserTest::testCreate
    (
        re.compile(r"^\d+\)\s+(.+)::(.+)$"),
        lambda m: ParsedError(message=f"Test failed: {m[1]}::{m[2]}"),
    ),
]


def parse_errors(output: str) -> list[ParsedError]:
    """Scan ``output`` line by line and return every diagnostic found."""
    errors: list[ParsedError] = []
    for line in output.splitlines():
        line = line.rstrip()
        if not line:
            continue
        for pattern, build in _MATCHERS:
            match = pattern.search(line)
            if match:
                errors.append(build(match))
                break
    return errors


def error_signature(errors: list[ParsedError] | tuple[ParsedError, ...]) -> str:
    """Stable fingerprint of a set of diagnostics, for repeat detection."""
    keys = sorted(f"{e.file}:{e.line}:{e.code}:{e.message}" for e in errors)
    return "|".join(keys)
