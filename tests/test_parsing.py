"""Tests for codeloop.toolkit.parsing -- model output to canonical ToolCalls.

Tests cover:
- Name normalization: synonyms, separators, idempotence
- Text encodings: tag blocks, shorthand, fences, arg pairs, inline JSON
- Structured encodings: OpenAI tool_calls, Anthropic tool_use blocks
- De-duplication across encodings
- Partial extraction from truncated arguments
- Final-answer cleanup
"""

from __future__ import annotations

import json

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from codeloop.toolkit import CANONICAL_TOOL_NAMES, ToolCall
from codeloop.toolkit.parsing import (
    build_tool_call,
    extract_partial_parameters,
    normalize_tool_name,
    parse_anthropic_tool_calls,
    parse_openai_tool_calls,
    parse_tool_calls,
    strip_tool_markup,
)


# ---------------------------------------------------------------------------
# Name normalization
# ---------------------------------------------------------------------------


class TestNormalizeToolName:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("read_file", "read_file"),
            ("readFile", "read_file"),
            ("READ-FILE", "read_file"),
            ("Write File", "write_file"),
            ("mkdir", "create_directory"),
            ("run_command", "execute_command"),
            ("listDirectory", "list_files"),
            ("remove_file", "delete_file"),
            ("create_file", "write_file"),
        ],
    )
    def test_known_spellings(self, raw, expected):
        assert normalize_tool_name(raw) == expected

    def test_unknown_name(self):
        assert normalize_tool_name("launch_missiles") == ""

    def test_non_string(self):
        assert normalize_tool_name(None) == ""
        assert normalize_tool_name(42) == ""

    @given(st.text(max_size=30))
    def test_idempotent(self, name):
        once = normalize_tool_name(name)
        if once:
            assert normalize_tool_name(once) == once
            assert once in CANONICAL_TOOL_NAMES

    @given(st.sampled_from(CANONICAL_TOOL_NAMES))
    def test_canonical_names_are_fixed_points(self, name):
        assert normalize_tool_name(name) == name


# ---------------------------------------------------------------------------
# Text encodings
# ---------------------------------------------------------------------------


class TestParseToolCallsText:
    def test_tag_block(self):
        text = 'Let me look.\n<tool_call>{"tool": "read_file", "parameters": {"path": "src/a.py"}}</tool_call>'
        calls = parse_tool_calls(text)
        assert calls == [ToolCall(tool="read_file", parameters={"path": "src/a.py"})]

    def test_toolcall_tag_variant(self):
        text = '<toolcall>{"tool": "list_files", "parameters": {"path": "."}}</toolcall>'
        (call,) = parse_tool_calls(text)
        assert call.tool == "list_files"
        assert call.parameters == {"path": "."}

    def test_multiple_tag_blocks_keep_order(self):
        text = (
            '<tool_call>{"tool": "read_file", "parameters": {"path": "a"}}</tool_call>\n'
            '<tool_call>{"tool": "read_file", "parameters": {"path": "b"}}</tool_call>'
        )
        assert [c.parameters["path"] for c in parse_tool_calls(text)] == ["a", "b"]

    def test_trailing_comma_tolerated(self):
        text = '<tool_call>{"tool": "read_file", "parameters": {"path": "a.txt",},}</tool_call>'
        (call,) = parse_tool_calls(text)
        assert call.parameters == {"path": "a.txt"}

    def test_name_synonym_inside_tag(self):
        text = '<tool_call>{"tool": "runCommand", "parameters": {"command": "npm", "args": ["test"]}}</tool_call>'
        (call,) = parse_tool_calls(text)
        assert call.tool == "execute_command"
        assert call.parameters == {"command": "npm", "args": ["test"]}

    def test_string_args_are_split(self):
        text = '<tool_call>{"tool": "execute_command", "parameters": {"command": "npm", "args": "install lodash"}}</tool_call>'
        (call,) = parse_tool_calls(text)
        assert call.parameters["args"] == ["install", "lodash"]

    def test_malformed_json_scanned(self):
        text = '<tool_call>{"tool": "write_file", "parameters": {"path": "a.txt", "content": "hi" </tool_call>'
        (call,) = parse_tool_calls(text)
        assert call.tool == "write_file"
        assert call.parameters["path"] == "a.txt"
        assert call.parameters["content"] == "hi"

    def test_shorthand(self):
        text = '<toolcall>read_file{"path": "README.md"}</toolcall>'
        (call,) = parse_tool_calls(text)
        assert call == ToolCall(tool="read_file", parameters={"path": "README.md"})

    def test_fenced_tool_block(self):
        text = 'Here:\n```tool\n{"tool": "find_files", "parameters": {"pattern": "*.py"}}\n```\n'
        (call,) = parse_tool_calls(text)
        assert call.tool == "find_files"

    def test_fenced_json_with_tool_key(self):
        text = '```json\n{"tool": "search_code", "parameters": {"pattern": "TODO"}}\n```'
        (call,) = parse_tool_calls(text)
        assert call.tool == "search_code"
        assert call.parameters == {"pattern": "TODO"}

    def test_fenced_json_without_tool_key_ignored(self):
        assert parse_tool_calls('```json\n{"name": "package"}\n```') == []

    def test_arg_pairs(self):
        text = (
            "Tool write_file<arg_key>path</arg_key><arg_value>notes.txt</arg_value>"
            "<arg_key>content</arg_key><arg_value>hello</arg_value>"
        )
        (call,) = parse_tool_calls(text)
        assert call == ToolCall(tool="write_file", parameters={"path": "notes.txt", "content": "hello"})

    def test_inline_json(self):
        text = 'I will run {"tool": "list_files", "parameters": {"path": "src", "recursive": true}} now.'
        (call,) = parse_tool_calls(text)
        assert call.parameters == {"path": "src", "recursive": True}

    def test_inline_only_first_object(self):
        text = (
            '{"tool": "read_file", "parameters": {"path": "a"}} '
            '{"tool": "read_file", "parameters": {"path": "b"}}'
        )
        assert len(parse_tool_calls(text)) == 1

    def test_unknown_tool_dropped(self):
        text = '<tool_call>{"tool": "format_disk", "parameters": {}}</tool_call>'
        assert parse_tool_calls(text) == []

    def test_missing_required_parameter_dropped(self):
        text = '<tool_call>{"tool": "read_file", "parameters": {}}</tool_call>'
        assert parse_tool_calls(text) == []

    def test_raw_newlines_in_content(self):
        text = '<tool_call>{"tool": "write_file", "parameters": {"path": "a.py", "content": "x = 1\ny = 2\n"}}</tool_call>'
        (call,) = parse_tool_calls(text)
        assert call.parameters["content"] == "x = 1\ny = 2\n"

    def test_empty_and_non_string(self):
        assert parse_tool_calls("") == []
        assert parse_tool_calls(None) == []  # type: ignore[arg-type]

    @given(st.text(alphabet=st.characters(blacklist_characters="<{`"), max_size=200))
    @settings(max_examples=200)
    def test_plain_prose_yields_nothing(self, text):
        assert parse_tool_calls(text) == []


class TestDeduplication:
    def test_same_call_in_three_encodings(self):
        payload = {"tool": "read_file", "parameters": {"path": "src/main.py"}}
        blob = json.dumps(payload)
        text = f"<tool_call>{blob}</tool_call>\n```tool\n{blob}\n```\n```json\n{blob}\n```"
        calls = parse_tool_calls(text)
        assert calls == [ToolCall(tool="read_file", parameters={"path": "src/main.py"})]

    def test_different_parameters_kept(self):
        text = (
            '<tool_call>{"tool": "read_file", "parameters": {"path": "a"}}</tool_call>'
            '<tool_call>{"tool": "read_file", "parameters": {"path": "a"}}</tool_call>'
            '<tool_call>{"tool": "read_file", "parameters": {"path": "c"}}</tool_call>'
        )
        assert [c.parameters["path"] for c in parse_tool_calls(text)] == ["a", "c"]


# ---------------------------------------------------------------------------
# edit_file parameter rules
# ---------------------------------------------------------------------------


class TestEditFileParameters:
    def test_empty_old_text_accepted(self):
        call = build_tool_call("edit_file", {"path": "a.txt", "old_text": "", "new_text": "hello"})
        assert call is not None
        assert call.parameters["old_text"] == ""

    def test_missing_new_text_rejected(self):
        assert build_tool_call("edit_file", {"path": "a.txt", "old_text": "x"}) is None

    def test_empty_path_rejected(self):
        assert build_tool_call("edit_file", {"path": "", "old_text": "x", "new_text": "y"}) is None


# ---------------------------------------------------------------------------
# Partial extraction
# ---------------------------------------------------------------------------


class TestPartialExtraction:
    def test_truncated_write_recovers_content(self):
        raw = '{"path": "src/app.py", "content": "def main():\\n    print(\\"hi\\")\\n    ret'
        params = extract_partial_parameters("write_file", raw)
        assert params == {"path": "src/app.py", "content": 'def main():\n    print("hi")\n    ret'}

    def test_truncated_command_args(self):
        raw = '{"command": "npm", "args": ["run", "bu'
        params = extract_partial_parameters("execute_command", raw)
        assert params["command"] == "npm"
        assert params["args"] == ["run"]

    def test_tool_without_strategy(self):
        assert extract_partial_parameters("fetch_url", '{"url": "https://exa') is None

    def test_nothing_found(self):
        assert extract_partial_parameters("read_file", "garbage") is None

    def test_openai_truncated_arguments_marked_partial(self):
        raw_calls = [
            {
                "id": "call_1",
                "type": "function",
                "function": {"name": "write_file", "arguments": '{"path": "a.txt", "content": "partial con'},
            }
        ]
        (call,) = parse_openai_tool_calls(raw_calls)
        assert call.partial is True
        assert call.id == "call_1"
        assert call.parameters == {"path": "a.txt", "content": "partial con"}

    def test_write_without_recoverable_content_dropped(self):
        raw_calls = [{"function": {"name": "write_file", "arguments": '{"path": "a.txt", "con'}}]
        assert parse_openai_tool_calls(raw_calls) == []


# ---------------------------------------------------------------------------
# Structured encodings
# ---------------------------------------------------------------------------


class TestStructured:
    def test_openai_calls(self):
        raw_calls = [
            {"id": "c1", "function": {"name": "read_file", "arguments": '{"path": "a"}'}},
            {"id": "c2", "function": {"name": "list_files", "arguments": '{"path": ".", "recursive": true}'}},
        ]
        calls = parse_openai_tool_calls(raw_calls)
        assert [(c.tool, c.id) for c in calls] == [("read_file", "c1"), ("list_files", "c2")]
        assert all(not c.partial for c in calls)

    def test_openai_dict_arguments(self):
        (call,) = parse_openai_tool_calls([{"function": {"name": "read_file", "arguments": {"path": "x"}}}])
        assert call.parameters == {"path": "x"}

    def test_openai_not_a_list(self):
        assert parse_openai_tool_calls(None) == []
        assert parse_openai_tool_calls({"function": {}}) == []

    def test_anthropic_blocks(self):
        content = [
            {"type": "text", "text": "Reading the file."},
            {"type": "tool_use", "id": "toolu_1", "name": "read_file", "input": {"path": "a.py"}},
        ]
        (call,) = parse_anthropic_tool_calls(content)
        assert call == ToolCall(tool="read_file", parameters={"path": "a.py"}, id="toolu_1")

    def test_anthropic_invalid_input_dropped(self):
        content = [{"type": "tool_use", "name": "read_file", "input": {}}]
        assert parse_anthropic_tool_calls(content) == []


# ---------------------------------------------------------------------------
# ToolCall model
# ---------------------------------------------------------------------------


class TestToolCallModel:
    def test_rejects_non_canonical(self):
        with pytest.raises(ValueError):
            ToolCall(tool="readFile")

    def test_is_mutating(self):
        assert ToolCall(tool="write_file", parameters={"path": "a", "content": ""}).is_mutating
        assert not ToolCall(tool="read_file", parameters={"path": "a"}).is_mutating

    def test_typed(self):
        typed = ToolCall(tool="list_files", parameters={"path": "src"}).typed()
        assert typed.path == "src"
        assert typed.recursive is False


# ---------------------------------------------------------------------------
# Cleanup
# ---------------------------------------------------------------------------


class TestStripToolMarkup:
    def test_removes_think_and_tags(self):
        text = '<think>planning</think>Done!\n<tool_call>{"tool": "read_file"}</tool_call>'
        assert strip_tool_markup(text) == "Done!"

    def test_unterminated_think(self):
        assert strip_tool_markup("Answer.<think>still going") == "Answer."

    def test_collapses_blank_lines(self):
        assert strip_tool_markup("a\n\n\n\n\nb") == "a\n\nb"
