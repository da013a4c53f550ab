"""Line-level diff engine for previewing file mutations.

Provides generate_diff() which computes a shortest edit script between two
texts with Myers' O((N+M)D) algorithm and groups it into context-padded
hunks, plus helpers that build FileDiff previews for write, edit and delete
operations and render them as unified-diff-style text.

Lines are split on ``"\\n"`` only; a trailing newline yields a final empty
line, so ``"a"`` and ``"a\\n"`` differ. The empty string has no lines.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Literal, Sequence

DEFAULT_CONTEXT = 3

LineType = Literal["context", "add", "remove"]
DiffType = Literal["create", "modify", "delete"]


@dataclass(frozen=True)
class DiffLine:
    """One line of a hunk.

    Attributes:
        type: "context", "add" or "remove".
        content: Line text without the newline.
        old_line_num: 1-based line number in the old text (None for adds).
        new_line_num: 1-based line number in the new text (None for removes).
    """

    type: LineType
    content: str
    old_line_num: int | None = None
    new_line_num: int | None = None


@dataclass(frozen=True)
class DiffHunk:
    """A contiguous, context-padded group of changed lines.

    ``old_lines`` always equals the number of non-"add" lines and
    ``new_lines`` the number of non-"remove" lines; use :meth:`from_lines`
    to build one.
    """

    old_start: int
    old_lines: int
    new_start: int
    new_lines: int
    lines: tuple[DiffLine, ...] = ()

    @classmethod
    def from_lines(cls, lines: Sequence[DiffLine], old_start: int, new_start: int) -> DiffHunk:
        old_lines = sum(1 for line in lines if line.type != "add")
        new_lines = sum(1 for line in lines if line.type != "remove")
        return cls(
            # Unified-diff convention: an empty side starts at the line before.
            old_start=old_start + 1 if old_lines else old_start,
            old_lines=old_lines,
            new_start=new_start + 1 if new_lines else new_start,
            new_lines=new_lines,
            lines=tuple(lines),
        )

    @property
    def header(self) -> str:
        return f"@@ -{self.old_start},{self.old_lines} +{self.new_start},{self.new_lines} @@"


@dataclass(frozen=True)
class FileDiff:
    """Preview of one file mutation.

    Attributes:
        path: Path relative to the project root.
        type: "create", "modify" or "delete".
        old_content: Previous content (None for creates).
        new_content: Resulting content (None for deletes).
        hunks: Ordered change hunks.
    """

    path: str
    type: DiffType
    old_content: str | None = None
    new_content: str | None = None
    hunks: tuple[DiffHunk, ...] = ()

    @property
    def additions(self) -> int:
        return sum(1 for h in self.hunks for line in h.lines if line.type == "add")

    @property
    def deletions(self) -> int:
        return sum(1 for h in self.hunks for line in h.lines if line.type == "remove")

    def pprint(self) -> None:
        """Pretty-print this diff with colored lines."""
        from codeloop.formatting import pprint_file_diff

        pprint_file_diff(self)


@dataclass(frozen=True)
class DiffStats:
    """Aggregate add/remove counts across a batch of file diffs."""

    files: tuple[FileDiff, ...] = ()
    total_additions: int = 0
    total_deletions: int = 0

    @property
    def total_files(self) -> int:
        return len(self.files)


# ---------------------------------------------------------------------------
# Myers shortest edit script
# ---------------------------------------------------------------------------


def split_lines(text: str) -> list[str]:
    """Split on "\\n"; the empty string has no lines."""
    return text.split("\n") if text else []


def join_lines(lines: Sequence[str]) -> str:
    return "\n".join(lines)


def _myers_matches(a: Sequence[str], b: Sequence[str]) -> list[tuple[int, int]]:
    """Matched (old_index, new_index) pairs of a shortest edit script."""
    n, m = len(a), len(b)
    if n == 0 or m == 0:
        return []
    offset = n + m
    v = [0] * (2 * offset + 2)
    trace: list[list[int]] = []

    for d in range(offset + 1):
        trace.append(v[:])
        for k in range(-d, d + 1, 2):
            if k == -d or (k != d and v[offset + k - 1] < v[offset + k + 1]):
                x = v[offset + k + 1]
            else:
                x = v[offset + k - 1] + 1
            y = x - k
            while x < n and y < m and a[x] == b[y]:
                x += 1
                y += 1
            v[offset + k] = x
            if x >= n and y >= m:
                return _backtrack(trace, n, m, offset)
    raise AssertionError("edit script search did not terminate")  # pragma: no cover


def _backtrack(trace: list[list[int]], n: int, m: int, offset: int) -> list[tuple[int, int]]:
    x, y = n, m
    matches: list[tuple[int, int]] = []
    for d in range(len(trace) - 1, -1, -1):
        v = trace[d]
        k = x - y
        if k == -d or (k != d and v[offset + k - 1] < v[offset + k + 1]):
            prev_k = k + 1
        else:
            prev_k = k - 1
        prev_x = v[offset + prev_k]
        prev_y = prev_x - prev_k
        while x > prev_x and y > prev_y:
            x -= 1
            y -= 1
            matches.append((x, y))
        if d > 0:
            x, y = prev_x, prev_y
    matches.reverse()
    return matches


def _edit_script(a: Sequence[str], b: Sequence[str]) -> list[DiffLine]:
    """Every line of both texts tagged context, remove or add, in order."""
    # Common prefix and suffix never change; keep them out of the search.
    prefix = 0
    while prefix < len(a) and prefix < len(b) and a[prefix] == b[prefix]:
        prefix += 1
    suffix = 0
    while (
        suffix < len(a) - prefix
        and suffix < len(b) - prefix
        and a[len(a) - 1 - suffix] == b[len(b) - 1 - suffix]
    ):
        suffix += 1

    middle = _myers_matches(a[prefix : len(a) - suffix], b[prefix : len(b) - suffix])
    matches = [(i, i) for i in range(prefix)]
    matches += [(i + prefix, j + prefix) for i, j in middle]
    matches += [(len(a) - suffix + s, len(b) - suffix + s) for s in range(suffix)]
    matches.append((len(a), len(b)))

    script: list[DiffLine] = []
    i = j = 0
    for mi, mj in matches:
        while i < mi:
            script.append(DiffLine("remove", a[i], old_line_num=i + 1))
            i += 1
        while j < mj:
            script.append(DiffLine("add", b[j], new_line_num=j + 1))
            j += 1
        if mi < len(a):
            script.append(DiffLine("context", a[mi], old_line_num=mi + 1, new_line_num=mj + 1))
            i += 1
            j += 1
    return script


def generate_diff(old_text: str, new_text: str, context: int = DEFAULT_CONTEXT) -> list[DiffHunk]:
    """Compute context-padded hunks that turn ``old_text`` into ``new_text``.

    Change regions separated by more than ``2 * context`` unchanged lines
    become separate hunks; closer regions share one hunk.

    Args:
        old_text: Original text.
        new_text: Modified text.
        context: Unchanged lines shown before and after each change.

    Returns:
        Ordered hunks; empty when the texts are identical.
    """
    if context < 0:
        raise ValueError("context must be >= 0")
    script = _edit_script(split_lines(old_text), split_lines(new_text))
    changed = [idx for idx, line in enumerate(script) if line.type != "context"]
    if not changed:
        return []

    groups: list[tuple[int, int]] = []
    start = end = changed[0]
    for idx in changed[1:]:
        if idx - end - 1 > 2 * context:
            groups.append((start, end))
            start = idx
        end = idx
    groups.append((start, end))

    # Old/new lines consumed before each script position.
    consumed: list[tuple[int, int]] = []
    old_pos = new_pos = 0
    for line in script:
        consumed.append((old_pos, new_pos))
        if line.type != "add":
            old_pos += 1
        if line.type != "remove":
            new_pos += 1

    hunks = []
    for first, last in groups:
        lo = max(0, first - context)
        hi = min(len(script), last + context + 1)
        old_start, new_start = consumed[lo]
        hunks.append(DiffHunk.from_lines(script[lo:hi], old_start, new_start))
    return hunks


def apply_diff(old_text: str, hunks: Sequence[DiffHunk]) -> str:
    """Apply ``hunks`` to ``old_text`` and return the resulting text.

    Raises:
        ValueError: If a hunk's context or removed lines do not match.
    """
    old_lines = split_lines(old_text)
    result: list[str] = []
    cursor = 0
    for hunk in hunks:
        start = hunk.old_start - 1 if hunk.old_lines else hunk.old_start
        result.extend(old_lines[cursor:start])
        cursor = start
        for line in hunk.lines:
            if line.type == "add":
                result.append(line.content)
                continue
            if cursor >= len(old_lines) or old_lines[cursor] != line.content:
                raise ValueError(f"Hunk {hunk.header} does not apply at line {cursor + 1}")
            if line.type == "context":
                result.append(line.content)
            cursor += 1
    result.extend(old_lines[cursor:])
    return join_lines(result)


# ---------------------------------------------------------------------------
# FileDiff builders
# ---------------------------------------------------------------------------


def create_file_diff(
    path: str,
    new_content: str,
    old_content: str | None = None,
    context: int = DEFAULT_CONTEXT,
) -> FileDiff:
    """Diff for a write: "create" when there is no old content, else "modify"."""
    return FileDiff(
        path=path,
        type="create" if old_content is None else "modify",
        old_content=old_content,
        new_content=new_content,
        hunks=tuple(generate_diff(old_content or "", new_content, context)),
    )


def create_edit_diff(
    path: str,
    content: str,
    old_text: str,
    new_text: str,
    context: int = DEFAULT_CONTEXT,
) -> FileDiff | None:
    """Diff for replacing the first occurrence of ``old_text`` in ``content``.

    Returns:
        The preview, or None when ``old_text`` does not occur.
    """
    if old_text not in content:
        return None
    new_content = content.replace(old_text, new_text, 1)
    return FileDiff(
        path=path,
        type="modify",
        old_content=content,
        new_content=new_content,
        hunks=tuple(generate_diff(content, new_content, context)),
    )


def create_delete_diff(path: str, old_content: str, context: int = DEFAULT_CONTEXT) -> FileDiff:
    return FileDiff(
        path=path,
        type="delete",
        old_content=old_content,
        hunks=tuple(generate_diff(old_content, "", context)),
    )


def diff_for_path(root: str, path: str, new_content: str) -> FileDiff:
    """Build a write preview against whatever is on disk at ``root/path``."""
    full_path = os.path.join(root, path)
    old_content = None
    if os.path.isfile(full_path):
        with open(full_path, encoding="utf-8", errors="replace") as fh:
            old_content = fh.read()
    return create_file_diff(path, new_content, old_content)


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

_PREFIX = {"add": "+", "remove": "-", "context": " "}


def format_diff(diff: FileDiff) -> str:
    """Render one FileDiff as unified-diff-style text."""
    if diff.type == "create":
        lines = ["--- /dev/null", f"+++ b/{diff.path}"]
    elif diff.type == "delete":
        lines = [f"--- a/{diff.path}", "+++ /dev/null"]
    else:
        lines = [f"--- a/{diff.path}", f"+++ b/{diff.path}"]
    for hunk in diff.hunks:
        lines.append(hunk.header)
        lines.extend(_PREFIX[line.type] + line.content for line in hunk.lines)
    return "\n".join(lines)


def get_diff_stats(diffs: Sequence[FileDiff]) -> DiffStats:
    return DiffStats(
        files=tuple(diffs),
        total_additions=sum(d.additions for d in diffs),
        total_deletions=sum(d.deletions for d in diffs),
    )


def format_diff_preview(diffs: Sequence[FileDiff]) -> str:
    """Render a batch of diffs with a summary line, as Markdown."""
    stats = get_diff_stats(diffs)
    lines = [
        "## Diff Preview",
        "",
        f"Files: {stats.total_files} | +{stats.total_additions} -{stats.total_deletions}",
        "",
    ]
    for diff in diffs:
        lines.extend(["```diff", format_diff(diff), "```", ""])
    return "\n".join(lines)
