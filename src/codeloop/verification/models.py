"""Verification result models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

VerifyType = Literal["build", "test", "lint", "typecheck"]


@dataclass(frozen=True)
class ParsedError:
    """One diagnostic extracted from verification output.

    Attributes:
        message: Diagnostic text.
        file: Source file, when the output names one.
        line: 1-based line number.
        column: 1-based column number.
        code: Tool-specific code (e.g. "TS2345", "F401").
        severity: "error" or "warning".
    """

    message: str
    file: str | None = None
    line: int | None = None
    column: int | None = None
    code: str | None = None
    severity: Literal["error", "warning"] = "error"

    @property
    def location(self) -> str:
        if not self.file:
            return "unknown"
        loc = self.file
        if self.line:
            loc += f":{self.line}"
            if self.column:
                loc += f":{self.column}"
        return loc

    def to_dict(self) -> dict:
        return {
            "message": self.message,
            "file": self.file,
            "line": self.line,
            "column": self.column,
            "code": self.code,
            "severity": self.severity,
        }


@dataclass(frozen=True)
class VerifyResult:
    """Outcome of one verification command.

    Attributes:
        success: Whether the command exited cleanly.
        type: Which check this was.
        command: Command line that ran.
        output: Combined stdout and stderr.
        errors: Diagnostics parsed from ``output``.
        duration: Wall-clock seconds.
    """

    success: bool
    type: VerifyType
    command: str
    output: str = ""
    errors: tuple[ParsedError, ...] = field(default_factory=tuple)
    duration: float = 0.0

    @property
    def error_count(self) -> int:
        return sum(1 for e in self.errors if e.severity == "error")

    @property
    def warning_count(self) -> int:
        return sum(1 for e in self.errors if e.severity == "warning")

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "type": self.type,
            "command": self.command,
            "output": self.output,
            "errors": [e.to_dict() for e in self.errors],
            "duration": self.duration,
        }


@dataclass(frozen=True)
class VerificationSummary:
    passed: int
    failed: int
    total: int
    errors: int
