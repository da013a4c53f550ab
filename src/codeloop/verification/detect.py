"""Detect which verification commands a project supports.

Detection is a table of small functions, each inspecting manifest and
config files for one ecosystem. Detectors run in order and later ones
override earlier ones for the same check type, so a Go or Rust manifest
wins over a stray package.json. New ecosystems are added by appending to
:data:`DEFAULT_DETECTORS` or passing a custom table.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from codeloop.verification.models import VerifyType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VerificationCommand:
    """A runnable check.

    Attributes:
        type: Which check this is.
        command: Executable.
        args: Arguments.
        blocked_reason: When set, the check cannot run and is reported as
            failed with this message (e.g. dependencies not installed).
    """

    type: VerifyType
    command: str
    args: tuple[str, ...] = ()
    blocked_reason: str | None = None

    @property
    def command_line(self) -> str:
        return " ".join([self.command, *self.args])


def _exists(root: str, *names: str) -> bool:
    return any(os.path.exists(os.path.join(root, name)) for name in names)


def _read_json(root: str, name: str) -> dict:
    path = os.path.join(root, name)
    try:
        with open(path, encoding="utf-8") as fh:
            data = json.load(fh)
    except (OSError, ValueError):
        logger.debug("Could not read %s", path, exc_info=True)
        return {}
    return data if isinstance(data, dict) else {}


def _read_text(root: str, name: str) -> str:
    path = os.path.join(root, name)
    try:
        with open(path, encoding="utf-8", errors="replace") as fh:
            return fh.read()
    except OSError:
        return ""


def _first_script(scripts: dict, *names: str) -> str | None:
    return next((name for name in names if name in scripts), None)


def package_manager(root: str) -> str:
    """Infer the Node package manager from lock files (default npm)."""
    if _exists(root, "bun.lockb", "bun.lock"):
        return "bun"
    if _exists(root, "pnpm-lock.yaml"):
        return "pnpm"
    if _exists(root, "yarn.lock"):
        return "yarn"
    return "npm"


def detect_node(root: str) -> dict[VerifyType, VerificationCommand]:
    if not _exists(root, "package.json"):
        return {}
    scripts = _read_json(root, "package.json").get("scripts") or {}
    pm = package_manager(root)
    missing_deps = None
    if not _exists(root, "node_modules"):
        missing_deps = f"node_modules not found. Run {pm} install first."

    found: dict[VerifyType, VerificationCommand] = {}
    for check, names in (
        ("build", ("build", "compile")),
        ("test", ("test", "spec")),
        ("lint", ("lint", "eslint")),
        ("typecheck", ("typecheck", "type-check", "tsc")),
    ):
        script = _first_script(scripts, *names)
        if script:
            found[check] = VerificationCommand(check, pm, ("run", script), missing_deps)
    if "typecheck" not in found and _exists(root, "tsconfig.json"):
        found["typecheck"] = VerificationCommand("typecheck", "npx", ("tsc", "--noEmit"), missing_deps)
    return found


def detect_python(root: str) -> dict[VerifyType, VerificationCommand]:
    if not _exists(root, "pyproject.toml", "requirements.txt", "setup.py", "setup.cfg"):
        return {}
    pyproject = _read_text(root, "pyproject.toml")
    found: dict[VerifyType, VerificationCommand] = {}
    if _exists(root, "pytest.ini", "tests", "conftest.py") or "[tool.pytest" in pyproject:
        found["test"] = VerificationCommand("test", "pytest", ("-q", "-rf", "--tb=short"))
    if _exists(root, "ruff.toml", ".ruff.toml") or "[tool.ruff" in pyproject:
        found["lint"] = VerificationCommand("lint", "ruff", ("check", "--output-format=concise", "."))
    if _exists(root, "mypy.ini", ".mypy.ini") or "[tool.mypy" in pyproject:
        found["typecheck"] = VerificationCommand("typecheck", "mypy", (".",))
    return found


def detect_go(root: str) -> dict[VerifyType, VerificationCommand]:
    if not _exists(root, "go.mod"):
        return {}
    return {
        "build": VerificationCommand("build", "go", ("build", "./...")),
        "test": VerificationCommand("test", "go", ("test", "./...")),
    }


def detect_rust(root: str) -> dict[VerifyType, VerificationCommand]:
    if not _exists(root, "Cargo.toml"):
        return {}
    return {
        "build": VerificationCommand("build", "cargo", ("build",)),
        "test": VerificationCommand("test", "cargo", ("test",)),
    }


def detect_php(root: str) -> dict[VerifyType, VerificationCommand]:
    found: dict[VerifyType, VerificationCommand] = {}
    if _exists(root, "composer.json"):
        scripts = _read_json(root, "composer.json").get("scripts") or {}
        if "test" in scripts:
            found["test"] = VerificationCommand("test", "composer", ("run", "test"))
        elif _exists(root, "phpunit.xml", "phpunit.xml.dist"):
            found["test"] = VerificationCommand("test", "php", ("vendor/bin/phpunit",))
        if "build" in scripts:
            found["build"] = VerificationCommand("build", "composer", ("run", "build"))
        found["typecheck"] = VerificationCommand(
            "typecheck",
            "find",
            (".", "-name", "*.php", "-not", "-path", "./vendor/*", "-exec", "php", "-l", "{}", ";"),
        )
    if _exists(root, "artisan"):
        found["test"] = VerificationCommand("test", "php", ("artisan", "test"))
    return found


DEFAULT_DETECTORS: tuple[Callable[[str], dict], ...] = (
    detect_node,
    detect_python,
    detect_go,
    detect_rust,
    detect_php,
)


@dataclass
class ProjectChecks:
    """The checks detected for one project root."""

    root: str
    commands: dict[VerifyType, VerificationCommand] = field(default_factory=dict)

    def get(self, check: VerifyType) -> VerificationCommand | None:
        return self.commands.get(check)

    def __bool__(self) -> bool:
        return bool(self.commands)


def detect_project_checks(
    root: str,
    detectors: Sequence[Callable[[str], dict]] = DEFAULT_DETECTORS,
) -> ProjectChecks:
    """Run every detector against ``root`` and merge what they find."""
    checks = ProjectChecks(root=root)
    for detector in detectors:
        checks.commands.update(detector(root))
    logger.debug("Detected checks for %s: %s", root, sorted(checks.commands))
    return checks
