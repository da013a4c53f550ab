"""Turn model output into canonical ToolCall values.

Model output arrives either as free text (for models without native tool
calling, or models that ignore it) or as a dialect-specific structured list.
Both paths end in :func:`build_tool_call`, which normalizes the tool name,
validates the arguments against the tool's typed parameter record and, when
the arguments could not be decoded, tries a targeted partial extraction.

Nothing in this module raises on bad input. Every strategy returns
``ToolCall | None`` and the caller moves on to the next one; the worst case
is an empty list, which the agent loop reads as "the model is talking, not
acting".
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from pydantic import ValidationError

from codeloop.toolkit.definitions import get_tool
from codeloop.toolkit.models import ToolCall

logger = logging.getLogger(__name__)

# Separator-free, lower-cased spelling -> canonical name.
_SYNONYMS: dict[str, str] = {
    "readfile": "read_file",
    "writefile": "write_file",
    "editfile": "edit_file",
    "deletefile": "delete_file",
    "listfiles": "list_files",
    "createdirectory": "create_directory",
    "executecommand": "execute_command",
    "searchcode": "search_code",
    "findfiles": "find_files",
    "fetchurl": "fetch_url",
    # Spellings seen in the wild
    "mkdir": "create_directory",
    "makedirectory": "create_directory",
    "runcommand": "execute_command",
    "listdirectory": "list_files",
    "removefile": "delete_file",
    "createfile": "write_file",
}

_SEPARATORS = re.compile(r"[\s_\-]+")


def normalize_tool_name(name: Any) -> str:
    """Map any spelling of a tool name to its canonical form.

    Lower-cases, strips hyphens, underscores and whitespace, then looks the
    result up in the synonym table. Idempotent on its own output.

    Returns:
        The canonical tool name, or "" if the name is not recognized.
    """
    if not isinstance(name, str):
        return ""
    return _SYNONYMS.get(_SEPARATORS.sub("", name.lower()), "")


# ---------------------------------------------------------------------------
# Low-level decoding helpers
# ---------------------------------------------------------------------------

_TRAILING_COMMA = re.compile(r",\s*([}\]])")
_STRING_BODY = r'((?:[^"\\]|\\.)*)'
_STRING_PAIR = re.compile(r'"(\w+)"\s*:\s*"' + _STRING_BODY + '"', re.DOTALL)
_BOOL_PAIR = re.compile(r'"(\w+)"\s*:\s*(true|false)\b', re.IGNORECASE)
_TOOL_KEY = re.compile(r'"tool"\s*:\s*"([^"]+)"', re.IGNORECASE)
_ESCAPE = re.compile(r"\\(u[0-9a-fA-F]{4}|.)", re.DOTALL)
_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "b": "\b", "f": "\f"}

_decoder = json.JSONDecoder(strict=False)


def _unescape(value: str) -> str:
    """Undo JSON string escapes without requiring a well-formed string."""

    def _replace(match: re.Match[str]) -> str:
        seq = match.group(1)
        if len(seq) == 5:
            return chr(int(seq[1:], 16))
        return _ESCAPES.get(seq, seq)

    return _ESCAPE.sub(_replace, value)


def _decode_object(raw: str) -> dict | None:
    """Decode ``raw`` as a JSON object, tolerating trailing commas.

    Literal control characters inside strings (raw newlines in file
    content, typically) are accepted.
    """
    text = raw.strip()
    for candidate in (text, _TRAILING_COMMA.sub(r"\1", text)):
        try:
            value = _decoder.decode(candidate)
        except json.JSONDecodeError:
            continue
        return value if isinstance(value, dict) else None
    return None


def _decode_object_at(text: str, index: int) -> dict | None:
    """Decode the JSON object starting at ``text[index]``, ignoring what follows."""
    try:
        value, _end = _decoder.raw_decode(text, index)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


# ---------------------------------------------------------------------------
# Partial extraction
# ---------------------------------------------------------------------------

# Fields each tool can have recovered from truncated argument text.
# Tools not listed are dropped when their arguments cannot be decoded.
_PARTIAL_FIELDS: dict[str, tuple[str, ...]] = {
    "write_file": ("path", "content"),
    "edit_file": ("path", "old_text", "new_text"),
    "read_file": ("path",),
    "list_files": ("path",),
    "create_directory": ("path",),
    "execute_command": ("command", "args"),
}

# Free-form fields that may be cut off mid-value by a truncated stream.
_OPEN_ENDED_FIELDS = frozenset({"content", "old_text", "new_text"})


def _extract_string(raw: str, name: str, *, open_ended: bool) -> str | None:
    end = r'(?:"|\\?\Z)' if open_ended else '"'
    pattern = r'"' + re.escape(name) + r'"\s*:\s*"' + _STRING_BODY + end
    match = re.search(pattern, raw, re.DOTALL)
    if match is None:
        return None
    return _unescape(match.group(1))


def _extract_string_list(raw: str, name: str) -> list[str] | None:
    match = re.search(r'"' + re.escape(name) + r'"\s*:\s*\[(.*?)(?:\]|\Z)', raw, re.DOTALL)
    if match is None:
        return None
    return [_unescape(item) for item in re.findall(r'"' + _STRING_BODY + '"', match.group(1))]


def extract_partial_parameters(tool: str, raw: str) -> dict[str, Any] | None:
    """Recover what parameters can be found in undecodable argument text.

    Args:
        tool: Canonical tool name.
        raw: The raw (typically truncated) argument text.

    Returns:
        The recovered fields, or None when the tool has no recovery strategy
        or nothing could be found. Required-field checks are left to the
        caller.
    """
    fields = _PARTIAL_FIELDS.get(tool)
    if fields is None:
        return None
    params: dict[str, Any] = {}
    for name in fields:
        if name == "args":
            value: Any = _extract_string_list(raw, name)
        else:
            value = _extract_string(raw, name, open_ended=name in _OPEN_ENDED_FIELDS)
        if value is not None:
            params[name] = value
    return params or None


# ---------------------------------------------------------------------------
# ToolCall construction
# ---------------------------------------------------------------------------


def _validate(tool: str, parameters: dict) -> dict[str, Any] | None:
    """Check ``parameters`` against the tool's record; None if they don't fit."""
    params_model = get_tool(tool).params_model
    try:
        record = params_model.model_validate(parameters)
    except ValidationError as exc:
        logger.debug("Rejecting %s parameters: %s", tool, exc.errors(include_url=False))
        return None
    dumped = record.model_dump(exclude_unset=True)
    # Keep the order the model sent the keys in.
    return {key: dumped[key] for key in parameters if key in dumped}


def build_tool_call(
    name: Any,
    parameters: Any,
    *,
    call_id: str | None = None,
    raw: str | None = None,
) -> ToolCall | None:
    """Build a canonical ToolCall, or None if the input cannot make one.

    Args:
        name: Tool name as sent by the model (any spelling).
        parameters: Decoded arguments, or None if decoding failed.
        call_id: Correlation token from the model API.
        raw: Raw argument text, used for partial extraction when
            ``parameters`` is missing or fails validation.
    """
    tool = normalize_tool_name(name)
    if not tool:
        logger.debug("Dropping call to unknown tool %r", name)
        return None

    params = _validate(tool, parameters) if isinstance(parameters, dict) else None
    partial = False
    if params is None and raw:
        recovered = extract_partial_parameters(tool, raw)
        if recovered is not None:
            params = _validate(tool, recovered)
            partial = params is not None
            if partial:
                logger.debug("Recovered partial %s parameters: %s", tool, list(params))
    if params is None:
        logger.debug("Skipping %s: missing or invalid parameters", tool)
        return None
    return ToolCall(tool=tool, parameters=params, id=call_id, partial=partial)


def _call_from_payload(payload: dict, raw: str) -> ToolCall | None:
    """Build a call from a decoded ``{"tool": ..., "parameters": {...}}`` object."""
    name = payload.get("tool")
    if not isinstance(name, str):
        return None
    params = payload.get("parameters", payload.get("arguments"))
    if isinstance(params, str):
        params = _decode_object(params)
    elif params is None:
        params = {k: v for k, v in payload.items() if k not in ("tool", "id")}
    call_id = payload.get("id") if isinstance(payload.get("id"), str) else None
    return build_tool_call(name, params, call_id=call_id, raw=raw)


def _call_from_scan(raw: str) -> ToolCall | None:
    """Best-effort extraction from malformed JSON: a "tool" key plus any
    string and boolean pairs that can be located, balanced braces or not."""
    match = _TOOL_KEY.search(raw)
    if match is None:
        return None
    params: dict[str, Any] = {}
    for key, value in _STRING_PAIR.findall(raw):
        if key != "tool":
            params[key] = _unescape(value)
    for key, value in _BOOL_PAIR.findall(raw):
        params[key] = value.lower() == "true"
    return build_tool_call(match.group(1), params, raw=raw)


# ---------------------------------------------------------------------------
# Text strategies
# ---------------------------------------------------------------------------

_TAG_BLOCK = re.compile(r"<tool_?call>\s*(.*?)\s*</tool_?call>", re.IGNORECASE | re.DOTALL)
_TAG_SHORTHAND = re.compile(
    r"<tool_?call>\s*([A-Za-z][\w-]*)\s*[,:]?\s*(?:[\"']?parameters[\"']?\s*:\s*)?(?=\{)",
    re.IGNORECASE,
)
_TAG_CLOSE = re.compile(r"</tool_?call>", re.IGNORECASE)
_FENCE = re.compile(r"```([\w-]*)[^\n]*\n(.*?)```", re.DOTALL)
_ARG_PAIRS_BLOCK = re.compile(
    r"Tool\s+([A-Za-z][\w-]*)((?:\s*<arg_key>.*?</arg_key>\s*<arg_value>.*?</arg_value>)+)",
    re.IGNORECASE | re.DOTALL,
)
_ARG_PAIR = re.compile(
    r"<arg_key>(.*?)</arg_key>\s*<arg_value>(.*?)</arg_value>", re.IGNORECASE | re.DOTALL
)


def _parse_tag_body(body: str) -> ToolCall | None:
    payload = _decode_object(body)
    if payload is not None:
        return _call_from_payload(payload, raw=body)
    return _call_from_scan(body)


def _parse_shorthand(text: str, match: re.Match[str]) -> ToolCall | None:
    """``<toolcall>read_file{"path": "x"}`` with the name outside the object."""
    start = match.end()
    payload = _decode_object_at(text, start)
    if payload is None:
        close = _TAG_CLOSE.search(text, start)
        raw = text[start : close.start() if close else len(text)]
        payload = _decode_object(raw)
        if payload is None:
            return build_tool_call(match.group(1), None, raw=raw)
    else:
        raw = text[start:]
    params = payload.get("parameters", payload)
    return build_tool_call(match.group(1), params, raw=raw)


def _parse_fence(lang: str, body: str) -> ToolCall | None:
    if lang.lower() == "tool":
        return _parse_tag_body(body)
    payload = _decode_object(body)
    if payload is None or "tool" not in payload:
        return None
    return _call_from_payload(payload, raw=body)


def _parse_arg_pairs(match: re.Match[str]) -> ToolCall | None:
    """``Tool write_file<arg_key>path</arg_key><arg_value>a.txt</arg_value>...``"""
    params = {k.strip(): v.strip() for k, v in _ARG_PAIR.findall(match.group(2))}
    return build_tool_call(match.group(1), params)


def _parse_inline(text: str) -> ToolCall | None:
    """First bare JSON object anywhere in ``text`` that carries a "tool" key."""
    index = text.find("{")
    while index != -1:
        payload = _decode_object_at(text, index)
        if payload is not None and "tool" in payload:
            call = _call_from_payload(payload, raw=text[index:])
            if call is not None:
                return call
        index = text.find("{", index + 1)
    return None


class _CallCollector:
    """Ordered ToolCall list de-duplicated by (tool, parameter snapshot)."""

    def __init__(self) -> None:
        self.calls: list[ToolCall] = []
        self._seen: set[tuple[str, str]] = set()

    def add(self, call: ToolCall | None) -> None:
        if call is None:
            return
        key = (call.tool, json.dumps(call.parameters, sort_keys=True, default=str))
        if key in self._seen:
            return
        self._seen.add(key)
        self.calls.append(call)


def parse_tool_calls(text: str) -> list[ToolCall]:
    """Extract tool calls from free-form model text.

    Encodings, tried in order:

    1. ``<tool_call>{json}</tool_call>`` (also ``<toolcall>``), with a
       trailing-comma cleanup and a best-effort scan for malformed JSON.
       The ``<toolcall>name{json}`` shorthand is accepted too.
    2. Fenced code blocks tagged ``tool``, or whose body is an object with a
       ``"tool"`` key.
    3. Only if nothing matched yet: ``Tool name<arg_key>..</arg_key>
       <arg_value>..</arg_value>`` pairs, then the first bare JSON object in
       the text that has a ``"tool"`` key.

    Safe to call on a prefix of a streamed response.

    Returns:
        De-duplicated calls in the order found; empty when there are none.
    """
    if not isinstance(text, str) or not text:
        return []
    collected = _CallCollector()

    for match in _TAG_BLOCK.finditer(text):
        collected.add(_parse_tag_body(match.group(1)))
    for match in _TAG_SHORTHAND.finditer(text):
        collected.add(_parse_shorthand(text, match))
    for match in _FENCE.finditer(text):
        collected.add(_parse_fence(match.group(1), match.group(2)))

    if not collected.calls:
        for match in _ARG_PAIRS_BLOCK.finditer(text):
            collected.add(_parse_arg_pairs(match))
    if not collected.calls:
        collected.add(_parse_inline(text))

    return collected.calls


# ---------------------------------------------------------------------------
# Structured strategies
# ---------------------------------------------------------------------------


def parse_openai_tool_calls(tool_calls: Any) -> list[ToolCall]:
    """Parse an OpenAI-style ``message.tool_calls`` list.

    Each entry carries ``function.name`` and a JSON-encoded
    ``function.arguments`` string, which may be truncated.
    """
    if not isinstance(tool_calls, list):
        return []
    collected = _CallCollector()
    for entry in tool_calls:
        if not isinstance(entry, dict):
            continue
        function = entry.get("function") or {}
        raw_args = function.get("arguments")
        if isinstance(raw_args, dict):
            params, raw = raw_args, None
        else:
            raw = raw_args if isinstance(raw_args, str) and raw_args.strip() else "{}"
            params = _decode_object(raw)
        collected.add(
            build_tool_call(function.get("name"), params, call_id=entry.get("id"), raw=raw)
        )
    return collected.calls


def parse_anthropic_tool_calls(content: Any) -> list[ToolCall]:
    """Parse ``tool_use`` blocks from an Anthropic-style content list."""
    if not isinstance(content, list):
        return []
    collected = _CallCollector()
    for block in content:
        if not isinstance(block, dict) or block.get("type") != "tool_use":
            continue
        collected.add(
            build_tool_call(block.get("name"), block.get("input") or {}, call_id=block.get("id"))
        )
    return collected.calls


# ---------------------------------------------------------------------------
# Final-answer cleanup
# ---------------------------------------------------------------------------

_THINK = re.compile(r"<think>.*?(?:</think>|\Z)", re.IGNORECASE | re.DOTALL)
_ARTIFACTS = (
    _TAG_BLOCK,
    re.compile(r"```tool\b.*?```", re.DOTALL),
    re.compile(r"</?tool_?call>", re.IGNORECASE),
    re.compile(r"</?arg_(?:key|value)>", re.IGNORECASE),
)


def strip_tool_markup(text: str) -> str:
    """Remove reasoning blocks and tool-call residue from a final answer."""
    cleaned = _THINK.sub("", text)
    for pattern in _ARTIFACTS:
        cleaned = pattern.sub("", cleaned)
    return re.sub(r"\n{3,}", "\n\n", cleaned).strip()
