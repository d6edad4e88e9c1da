"""Tests for pymosaic.tools.directives -- tool directive parsing and display stripping."""

from __future__ import annotations

from pymosaic.tools.directives import extract_json_payload, parse_tool_directives, strip_tool_calls


class TestParse:
    def test_fenced_single(self):
        text = 'Let me look.\n```json\n{"tool": "read_file", "parameters": {"path": "a.txt"}}\n```'
        calls = parse_tool_directives(text)
        assert len(calls) == 1
        assert calls[0].name == "read_file"
        assert calls[0].parameters == {"path": "a.txt"}
        assert calls[0].id.startswith("tool_")

    def test_fenced_array_keeps_order(self):
        text = (
            "```json\n[\n"
            '  {"tool": "write_file", "parameters": {"path": "a", "content": "x"}},\n'
            '  {"tool": "read_file", "parameters": {"path": "a"}}\n'
            "]\n```"
        )
        calls = parse_tool_directives(text)
        assert [c.name for c in calls] == ["write_file", "read_file"]
        assert calls[0].id != calls[1].id

    def test_bare_object(self):
        calls = parse_tool_directives('{"tool": "list_directory", "parameters": {}}')
        assert [c.name for c in calls] == ["list_directory"]

    def test_inline_after_prose(self):
        text = 'Checking now {"tool": "file_exists", "parameters": {"path": "x {y}"}} done'
        calls = parse_tool_directives(text)
        assert calls[0].parameters == {"path": "x {y}"}

    def test_missing_parameters_defaults_to_empty(self):
        assert parse_tool_directives('{"tool": "list_directory"}')[0].parameters == {}

    def test_plain_answer_is_not_a_directive(self):
        assert parse_tool_directives("The file contains two functions.") == []

    def test_json_without_tool_key(self):
        assert parse_tool_directives('```json\n{"answer": 42}\n```') == []

    def test_malformed_json(self):
        assert parse_tool_directives('```json\n{"tool": "read_file", "parameters": }\n```') == []

    def test_non_object_parameters(self):
        assert parse_tool_directives('{"tool": "read_file", "parameters": "a.txt"}') == []

    def test_one_bad_element_rejects_batch(self):
        text = '[{"tool": "read_file", "parameters": {}}, {"tool": ""}]'
        assert parse_tool_directives(text) == []

    def test_empty(self):
        assert parse_tool_directives("") == []
        assert parse_tool_directives("   ") == []


class TestExtract:
    def test_prefers_fenced_block(self):
        text = 'x {"a": 1}\n```json\n{"tool": "t"}\n```'
        assert extract_json_payload(text) == '{"tool": "t"}'

    def test_none_without_json(self):
        assert extract_json_payload("no json here") is None


class TestStrip:
    def test_removes_fenced_directive(self):
        text = 'I will read it.\n```json\n{"tool": "read_file", "parameters": {"path": "a"}}\n```'
        assert strip_tool_calls(text) == "I will read it."

    def test_removes_unterminated_directive_fence(self):
        text = 'Reading.\n```json\n{"tool": "read_file", "par'
        assert strip_tool_calls(text) == "Reading."

    def test_removes_inline_directive(self):
        text = 'Reading {"tool": "read_file", "parameters": {"path": "a"}} now'
        assert strip_tool_calls(text) == "Reading  now"

    def test_keeps_ordinary_code(self):
        text = "Example:\n```json\n{\"name\": \"demo\"}\n```"
        assert strip_tool_calls(text) == text
