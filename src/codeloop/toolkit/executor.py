"""ToolExecutor: applies canonical tool calls to the project.

Provides ``execute()`` which dispatches a ToolCall to its handler and always
returns exactly one ToolResult, and ``create_action_log()`` which derives the
matching ActionLog entry. Handlers signal failure by raising
ToolExecutionError; nothing escapes ``execute()``.
"""

from __future__ import annotations

import fnmatch
import logging
import os
import re
from typing import TYPE_CHECKING

import httpx

from codeloop.exceptions import ToolExecutionError
from codeloop.operations.diff import create_delete_diff, create_edit_diff, create_file_diff
from codeloop.safety.validator import validate_command
from codeloop.shell import run_command
from codeloop.toolkit.filesystem import LocalFileSystem
from codeloop.toolkit.models import ActionLog, ActionType, ToolResult

if TYPE_CHECKING:
    from codeloop.cancellation import CancellationToken
    from codeloop.models.config import AgentConfig
    from codeloop.operations.diff import FileDiff
    from codeloop.protocols import CommandRunner
    from codeloop.toolkit.models import ToolCall

logger = logging.getLogger(__name__)

SEARCH_MAX_LINES = 50
FIND_MAX_RESULTS = 100
FETCH_MAX_CHARS = 10_000
_SEARCH_MAX_FILE_BYTES = 1024 * 1024
_USER_AGENT = "codeloop/0.1"

PARTIAL_CONTENT_NOTE = (
    "[WARNING] The arguments for this call were recovered from truncated output, so "
    "the written text may be incomplete. Read the file back and re-send the missing part."
)

_ACTION_TYPES: dict[str, ActionType] = {
    "read_file": ActionType.READ,
    "write_file": ActionType.WRITE,
    "edit_file": ActionType.EDIT,
    "delete_file": ActionType.DELETE,
    "list_files": ActionType.LIST,
    "create_directory": ActionType.MKDIR,
    "execute_command": ActionType.COMMAND,
    "search_code": ActionType.SEARCH,
    "find_files": ActionType.SEARCH,
    "fetch_url": ActionType.FETCH,
}

_TARGET_KEYS = ("path", "command", "pattern", "url")


def action_type_for(tool: str) -> ActionType:
    """Map a tool name to its action category; unknown tools count as commands."""
    return _ACTION_TYPES.get(tool, ActionType.COMMAND)


def create_action_log(call: ToolCall, result: ToolResult) -> ActionLog:
    """Derive the action-log entry for an executed call.

    ``target`` is the first present of path, command, pattern and url.
    ``details`` holds output (1000 characters for commands, 500 otherwise)
    or, on failure, the error message.
    """
    target = "unknown"
    for key in _TARGET_KEYS:
        value = call.parameters.get(key)
        if value:
            target = str(value)
            break
    if result.success:
        limit = 1000 if call.tool == "execute_command" else 500
        details = result.output[:limit]
    else:
        details = result.error
    return ActionLog(
        type=action_type_for(call.tool),
        target=target,
        result="success" if result.success else "error",
        details=details,
    )


def _note_partial(call: ToolCall, output: str) -> str:
    if not call.partial:
        return output
    return f"{output}\n{PARTIAL_CONTENT_NOTE}"


def html_to_text(html: str) -> str:
    """Readable text from an HTML page, scripts and chrome removed."""
    from bs4 import BeautifulSoup

    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript", "svg", "header", "footer", "nav", "aside", "form"]):
        tag.decompose()
    root = soup.find("main") or soup.find("article") or soup.body or soup
    text = root.get_text(separator="\n", strip=True)
    return "\n".join(line for line in text.splitlines() if line.strip())


class ToolExecutor:
    """Applies tool calls to one project and returns structured results.

    Usage::

        executor = ToolExecutor("/path/to/project")
        result = executor.execute(call)
        log = create_action_log(call, result)
    """

    def __init__(
        self,
        project_root: str,
        config: AgentConfig | None = None,
        *,
        runner: CommandRunner | None = None,
        http_client: httpx.Client | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> None:
        from codeloop.models.config import AgentConfig as _AgentConfig

        self.fs = LocalFileSystem(project_root)
        self.project_root = self.fs.root
        self._config = config or _AgentConfig()
        self._runner = runner or run_command
        self._http_client = http_client
        self.cancel_token = cancel_token
        self._handlers = {
            "read_file": self._read_file,
            "write_file": self._write_file,
            "edit_file": self._edit_file,
            "delete_file": self._delete_file,
            "list_files": self._list_files,
            "create_directory": self._create_directory,
            "execute_command": self._execute_command,
            "search_code": self._search_code,
            "find_files": self._find_files,
            "fetch_url": self._fetch_url,
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def preview(self, call: ToolCall) -> FileDiff | None:
        """Diff a mutating call would produce, computed against disk.

        Returns None for non-mutating tools and for calls that would fail
        (missing file, text not found, path outside the project).
        """
        try:
            return self._preview(call)
        except (ToolExecutionError, OSError, KeyError):
            return None

    def execute(self, call: ToolCall) -> ToolResult:
        """Execute one tool call.

        Returns:
            ToolResult with success/failure status and output/error.
        """
        handler = self._handlers.get(call.tool)
        if handler is None:
            return self._fail(call, f"Unknown tool: {call.tool}")
        try:
            params = call.typed()
            return handler(call, params)
        except ToolExecutionError as exc:
            return self._fail(call, str(exc))
        except Exception as exc:
            logger.debug("Tool %s raised", call.tool, exc_info=True)
            return self._fail(call, f"{type(exc).__name__}: {exc}")

    def close(self) -> None:
        if self._http_client is not None:
            self._http_client.close()
            self._http_client = None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _ok(call: ToolCall, output: str, diff: FileDiff | None = None) -> ToolResult:
        return ToolResult(tool=call.tool, parameters=call.parameters, success=True, output=output, diff=diff)

    @staticmethod
    def _fail(call: ToolCall, error: str, output: str = "") -> ToolResult:
        return ToolResult(tool=call.tool, parameters=call.parameters, success=False, output=output, error=error)

    def _preview(self, call: ToolCall) -> FileDiff | None:
        params = call.parameters
        if call.tool == "write_file":
            old = self.fs.read_text_if_exists(params["path"])
            return create_file_diff(params["path"], params["content"], old)
        if call.tool == "edit_file":
            content = self.fs.read_text_if_exists(params["path"])
            if content is None:
                return None
            return create_edit_diff(params["path"], content, params["old_text"], params["new_text"])
        if call.tool == "delete_file":
            content = self.fs.read_text_if_exists(params["path"])
            return None if content is None else create_delete_diff(params["path"], content)
        return None

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _read_file(self, call, params) -> ToolResult:
        return self._ok(call, self.fs.read_text(params.path, max_bytes=self._config.max_read_bytes))

    def _write_file(self, call, params) -> ToolResult:
        diff = self._preview(call)
        existed = self.fs.write_text(params.path, params.content)
        output = f"{'Updated' if existed else 'Created'} file: {params.path}"
        return self._ok(call, _note_partial(call, output), diff)

    def _edit_file(self, call, params) -> ToolResult:
        content = self.fs.read_text_if_exists(params.path)
        if content is None:
            raise ToolExecutionError(f"File not found: {params.path}")
        if params.old_text == "":
            if content:
                raise ToolExecutionError(
                    "old_text is empty but the file is not. Quote the text to replace, "
                    "or use write_file to replace the whole file."
                )
        else:
            matches = content.count(params.old_text)
            if matches == 0:
                raise ToolExecutionError("Text not found in file. Make sure old_text matches exactly.")
            if matches > 1:
                raise ToolExecutionError(
                    f"old_text matches {matches} locations in the file. Provide more "
                    "surrounding context to make it unique (only 1 match allowed)."
                )
        diff = create_edit_diff(params.path, content, params.old_text, params.new_text)
        self.fs.write_text(params.path, diff.new_content)
        return self._ok(call, _note_partial(call, f"Edited file: {params.path}"), diff)

    def _delete_file(self, call, params) -> ToolResult:
        diff = self._preview(call)
        kind = self.fs.delete(params.path)
        return self._ok(call, f"Deleted {kind}: {params.path}", diff)

    def _list_files(self, call, params) -> ToolResult:
        entries = self.fs.list_dir(params.path, recursive=params.recursive)
        return self._ok(call, "\n".join(entries) if entries else "(empty directory)")

    def _create_directory(self, call, params) -> ToolResult:
        if self.fs.make_dirs(params.path):
            return self._ok(call, f"Created directory: {params.path}")
        return self._ok(call, f"Directory already exists: {params.path}")

    def _execute_command(self, call, params) -> ToolResult:
        verdict = validate_command(params.command, params.args, project_root=self.project_root)
        if not verdict:
            return self._fail(call, verdict.reason)
        result = self._runner(
            params.command,
            params.args,
            cwd=self.project_root,
            timeout=self._config.command_timeout,
            cancel_token=self.cancel_token,
        )
        if result.success:
            return self._ok(call, result.stdout or "(no output)")
        error = result.stderr.strip() or f"Command exited with code {result.exit_code}"
        return self._fail(call, error, output=result.stdout)

    def _search_code(self, call, params) -> ToolResult:
        try:
            regex = re.compile(params.pattern)
        except re.error:
            regex = re.compile(re.escape(params.pattern))
        hits: list[str] = []
        for absolute in self.fs.walk_files(params.path):
            if len(hits) >= SEARCH_MAX_LINES:
                break
            if os.path.getsize(absolute) > _SEARCH_MAX_FILE_BYTES:
                continue
            with open(absolute, "rb") as fh:
                data = fh.read()
            if b"\0" in data[:1024]:
                continue
            rel = self.fs.relative(absolute)
            for lineno, line in enumerate(data.decode("utf-8", errors="replace").splitlines(), 1):
                if regex.search(line):
                    hits.append(f"{rel}:{lineno}:{line}")
                    if len(hits) >= SEARCH_MAX_LINES:
                        break
        return self._ok(call, "\n".join(hits) if hits else "No matches found")

    def _find_files(self, call, params) -> ToolResult:
        match_path = "/" in params.pattern
        found: list[str] = []
        for absolute in self.fs.walk_files(params.path):
            rel = self.fs.relative(absolute).replace(os.sep, "/")
            subject = rel if match_path else os.path.basename(rel)
            if fnmatch.fnmatch(subject, params.pattern) or (
                match_path and fnmatch.fnmatch(rel, f"*/{params.pattern}")
            ):
                found.append(rel)
                if len(found) >= FIND_MAX_RESULTS:
                    break
        if not found:
            return self._ok(call, f'No files matching "{params.pattern}"')
        return self._ok(call, f"Found {len(found)} file(s):\n" + "\n".join(found))

    def _fetch_url(self, call, params) -> ToolResult:
        try:
            url = httpx.URL(params.url)
        except httpx.InvalidURL:
            raise ToolExecutionError("Invalid URL format") from None
        if url.scheme not in ("http", "https") or not url.host:
            raise ToolExecutionError("Invalid URL format")
        if self._http_client is None:
            self._http_client = httpx.Client(
                timeout=30.0, follow_redirects=True, headers={"User-Agent": _USER_AGENT}
            )
        try:
            response = self._http_client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise ToolExecutionError(f"Failed to fetch URL: {exc}") from exc
        content = response.text
        content_type = response.headers.get("content-type", "")
        if "html" in content_type or "<html" in content[:1000].lower():
            content = html_to_text(content)
        if len(content) > FETCH_MAX_CHARS:
            content = content[:FETCH_MAX_CHARS] + "\n\n... (truncated)"
        return self._ok(call, content)
