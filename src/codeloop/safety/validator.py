"""Command safety gate.

Every ``(command, args)`` pair passes through :func:`validate_command`
before it reaches a subprocess. The posture is deny-by-default: a command
must be on the allow-list, must not be on the hard block-list, must not
match a dangerous textual pattern, and must keep its path arguments inside
the project root when one is given.

Isolation here is policy, not containment. Nothing in this module sandboxes
the process once it is allowed to start.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# Refused regardless of arguments.
BLOCKED_COMMANDS: frozenset[str] = frozenset({
    # privilege escalation
    "sudo", "su", "doas",
    # permissions and ownership
    "chmod", "chown", "chgrp",
    # disks and mounts
    "mkfs", "fdisk", "dd", "mount", "umount",
    # service control and power
    "systemctl", "service", "shutdown", "reboot", "halt", "poweroff", "init",
    # process killers
    "kill", "killall", "pkill",
})

ALLOWED_COMMANDS: frozenset[str] = frozenset({
    # package managers
    "npm", "npx", "yarn", "pnpm", "bun",
    "pip", "pip3", "poetry", "pipenv", "uv",
    "cargo", "rustup", "go", "composer", "gem", "bundle", "brew",
    # build tools
    "make", "cmake", "gradle", "mvn",
    "tsc", "esbuild", "vite", "webpack", "rollup",
    # version control
    "git",
    # file and text utilities
    "ls", "cat", "head", "tail", "grep", "find", "wc",
    "mkdir", "touch", "cp", "mv", "rm", "rmdir",
    # language toolchains and runners
    "node", "deno", "python", "python3", "php", "phpunit", "artisan",
    "jest", "vitest", "pytest", "mocha",
    # linters and formatters
    "eslint", "prettier", "black", "ruff", "mypy", "rustfmt",
    # misc
    "echo", "pwd", "which", "env", "date", "sleep",
    "curl", "wget", "tar", "unzip", "zip", "http", "https",
})

# Checked against "command arg1 arg2 ...", in order.
BLOCKED_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"rm\s+(-[rfRv]+\s+)*/(?!\w)"), "deletes the filesystem root"),
    (re.compile(r"rm\s+(-[rfRv]+\s+)*~"), "deletes the home directory"),
    (re.compile(r">\s*/(?:etc|usr|var|bin|sbin|boot|lib)/"), "redirects into a system directory"),
    (re.compile(r"(?:curl|wget).*\|\s*(?:ba|z)?sh\b"), "pipes a download into a shell"),
    (re.compile(r"\beval\s+"), "uses eval"),
    (re.compile(r"`.*`"), "uses backtick command substitution"),
    (re.compile(r"\$\(.*\)"), "uses command substitution"),
)


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a safety check.

    Attributes:
        allowed: Whether the command may run.
        reason: Human-readable reason when it may not.
    """

    allowed: bool
    reason: str = ""

    def __bool__(self) -> bool:
        return self.allowed


_ALLOWED = ValidationResult(allowed=True)


def _deny(reason: str) -> ValidationResult:
    logger.debug("Command rejected: %s", reason)
    return ValidationResult(allowed=False, reason=reason)


def _looks_like_path(arg: str) -> bool:
    return "/" in arg or "\\" in arg or arg in (".", "..") or arg.startswith("~")


def is_within(root: str, path: str) -> bool:
    """Return True if ``path`` resolves to ``root`` or somewhere beneath it."""
    root_real = os.path.realpath(root)
    target = os.path.realpath(path)
    return os.path.commonpath([root_real, target]) == root_real


def _rm_flags(args: list[str]) -> tuple[bool, bool]:
    recursive = force = False
    for arg in args:
        if arg in ("--recursive",):
            recursive = True
        elif arg == "--force":
            force = True
        elif arg.startswith("-") and not arg.startswith("--"):
            recursive = recursive or "r" in arg or "R" in arg
            force = force or "f" in arg
    return recursive, force


def validate_command(
    command: str,
    args: list[str] | tuple[str, ...] = (),
    project_root: str | None = None,
    cwd: str | None = None,
) -> ValidationResult:
    """Decide whether ``command`` with ``args`` may be executed.

    Args:
        command: Executable name, exactly as it would be spawned.
        args: Argument vector (no shell interpretation happens).
        project_root: When given, path-like arguments must stay inside it.
        cwd: Directory relative paths are resolved against. Defaults to
            ``project_root``.

    Returns:
        ValidationResult, truthy when allowed.
    """
    args = list(args)
    if not command or not command.strip():
        return _deny("Empty command")
    if command in BLOCKED_COMMANDS:
        return _deny(f"Command '{command}' is not allowed for security reasons")
    if command not in ALLOWED_COMMANDS:
        return _deny(f"Command '{command}' is not in the allowed list")

    full_command = " ".join([command, *args])
    for pattern, description in BLOCKED_PATTERNS:
        if pattern.search(full_command):
            return _deny(f"Command contains blocked pattern ({description})")

    if project_root:
        base = cwd or project_root
        for arg in args:
            if arg.startswith("-") or not _looks_like_path(arg):
                continue
            candidate = os.path.expanduser(arg)
            if not os.path.isabs(candidate):
                candidate = os.path.join(base, candidate)
            if not is_within(project_root, candidate):
                return _deny(f"Path '{arg}' is outside project directory")

    if command == "rm":
        targets = [a for a in args if not a.startswith("-")]
        recursive, force = _rm_flags(args)
        if recursive and force and not targets:
            return _deny("rm -rf without specific paths is not allowed")
        if project_root:
            root_real = os.path.realpath(project_root)
            base = cwd or project_root
            for arg in targets:
                candidate = os.path.expanduser(arg)
                if not os.path.isabs(candidate):
                    candidate = os.path.join(base, candidate)
                if os.path.realpath(candidate) == root_real:
                    return _deny("Refusing to delete the project root")

    return _ALLOWED


def get_allowed_commands() -> list[str]:
    """Sorted allow-list, for prompts and help output."""
    return sorted(ALLOWED_COMMANDS)
