"""Filesystem collaborator confined to one project root.

All paths are interpreted relative to the root. Absolute paths are accepted
only when they already point inside it, and every path is resolved through
symlinks before the containment check.
"""

from __future__ import annotations

import fnmatch
import logging
import os
import shutil
from typing import TYPE_CHECKING

from codeloop.exceptions import PathOutsideRootError, ToolExecutionError
from codeloop.safety.validator import is_within

if TYPE_CHECKING:
    from collections.abc import Iterator

logger = logging.getLogger(__name__)

# Directories never worth showing to the model.
DEFAULT_IGNORED_DIRS: frozenset[str] = frozenset({
    ".git", "node_modules", "__pycache__", ".venv", "venv", "dist", "build",
    ".next", ".mypy_cache", ".pytest_cache", ".ruff_cache", ".tox", "target",
})


class LocalFileSystem:
    """UTF-8 text file access rooted at ``root``.

    Usage::

        fs = LocalFileSystem("/path/to/project")
        text = fs.read_text("src/app.py", max_bytes=100_000)
    """

    def __init__(self, root: str) -> None:
        self.root = os.path.realpath(root)
        self._ignore_patterns = self._load_gitignore()

    # ------------------------------------------------------------------
    # Path handling
    # ------------------------------------------------------------------

    def resolve(self, path: str) -> str:
        """Return the absolute path for ``path``.

        Raises:
            PathOutsideRootError: If the path leaves the project root.
        """
        candidate = os.path.expanduser(path)
        if os.path.isabs(candidate):
            if not is_within(self.root, candidate):
                raise PathOutsideRootError(path, "is an absolute path outside the project. Use relative paths")
            return os.path.realpath(candidate)
        absolute = os.path.join(self.root, candidate)
        if not is_within(self.root, absolute):
            raise PathOutsideRootError(path)
        return os.path.realpath(absolute)

    def relative(self, absolute: str) -> str:
        return os.path.relpath(absolute, self.root)

    def _load_gitignore(self) -> list[str]:
        gitignore = os.path.join(self.root, ".gitignore")
        if not os.path.isfile(gitignore):
            return []
        with open(gitignore, encoding="utf-8", errors="replace") as fh:
            lines = [line.strip() for line in fh]
        # Negations are not supported; they are skipped.
        return [line.rstrip("/") for line in lines if line and not line.startswith(("#", "!"))]

    def is_ignored(self, absolute: str) -> bool:
        name = os.path.basename(absolute)
        if name in DEFAULT_IGNORED_DIRS and os.path.isdir(absolute):
            return True
        rel = self.relative(absolute).replace(os.sep, "/")
        for pattern in self._ignore_patterns:
            anchored = pattern.lstrip("/")
            if fnmatch.fnmatch(name, anchored) or fnmatch.fnmatch(rel, anchored):
                return True
        return False

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def exists(self, path: str) -> bool:
        return os.path.exists(self.resolve(path))

    def read_text(self, path: str, max_bytes: int | None = None) -> str:
        """Read a file as UTF-8, truncating past ``max_bytes`` with a marker.

        Raises:
            ToolExecutionError: If the path is missing or is a directory.
        """
        absolute = self.resolve(path)
        if not os.path.exists(absolute):
            raise ToolExecutionError(f"File not found: {path}")
        if os.path.isdir(absolute):
            raise ToolExecutionError(f"Path is a directory, not a file: {path}")
        size = os.path.getsize(absolute)
        with open(absolute, "rb") as fh:
            data = fh.read(max_bytes if max_bytes is not None else -1)
        text = data.decode("utf-8", errors="replace")
        if max_bytes is not None and size > max_bytes:
            text += f"\n\n... [truncated: showing first {max_bytes} of {size} bytes]"
        return text

    def read_text_if_exists(self, path: str) -> str | None:
        absolute = self.resolve(path)
        if not os.path.isfile(absolute):
            return None
        with open(absolute, encoding="utf-8", errors="replace") as fh:
            return fh.read()

    def write_text(self, path: str, content: str) -> bool:
        """Write ``content``, creating parent directories.

        Returns:
            True if the file already existed.
        """
        absolute = self.resolve(path)
        if os.path.isdir(absolute):
            raise ToolExecutionError(f"Path is a directory, not a file: {path}")
        existed = os.path.exists(absolute)
        os.makedirs(os.path.dirname(absolute), exist_ok=True)
        with open(absolute, "w", encoding="utf-8", newline="") as fh:
            fh.write(content)
        return existed

    def delete(self, path: str) -> str:
        """Delete a file, or a directory recursively.

        Returns:
            "file" or "directory".
        """
        absolute = self.resolve(path)
        if absolute == self.root:
            raise ToolExecutionError("Refusing to delete the project root")
        if not os.path.lexists(absolute):
            raise ToolExecutionError(f"Path not found: {path}")
        if os.path.isdir(absolute) and not os.path.islink(absolute):
            shutil.rmtree(absolute)
            return "directory"
        os.remove(absolute)
        return "file"

    def make_dirs(self, path: str) -> bool:
        """Create a directory and its parents.

        Returns:
            False if it already existed.
        """
        absolute = self.resolve(path)
        if os.path.isdir(absolute):
            return False
        if os.path.exists(absolute):
            raise ToolExecutionError(f"Path exists but is a file: {path}")
        os.makedirs(absolute)
        return True

    def list_dir(self, path: str, recursive: bool = False) -> list[str]:
        """List entries, directories suffixed with "/" and children indented."""
        absolute = self.resolve(path)
        if not os.path.exists(absolute):
            raise ToolExecutionError(f"Directory not found: {path}")
        if not os.path.isdir(absolute):
            raise ToolExecutionError(f"Path is not a directory: {path}")
        return self._list(absolute, recursive, "")

    def _list(self, directory: str, recursive: bool, prefix: str) -> list[str]:
        entries: list[str] = []
        for entry in sorted(os.scandir(directory), key=lambda e: e.name):
            if self.is_ignored(entry.path):
                continue
            if entry.is_dir(follow_symlinks=False):
                entries.append(f"{prefix}{entry.name}/")
                if recursive:
                    entries.extend(self._list(entry.path, True, prefix + "  "))
            else:
                entries.append(f"{prefix}{entry.name}")
        return entries

    def walk_files(self, path: str = ".") -> Iterator[str]:
        """Yield absolute paths of non-ignored files under ``path``."""
        start = self.resolve(path)
        if os.path.isfile(start):
            yield start
            return
        for dirpath, dirnames, filenames in os.walk(start):
            dirnames[:] = sorted(
                d for d in dirnames if not self.is_ignored(os.path.join(dirpath, d))
            )
            for name in sorted(filenames):
                absolute = os.path.join(dirpath, name)
                if not self.is_ignored(absolute):
                    yield absolute
