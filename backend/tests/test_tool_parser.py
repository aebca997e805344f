"""Tool-call extraction from model output."""

from hearth.tools.parser import find_balanced_object, has_tool_calls, parse_tool_calls, remove_tool_blocks


def test_tool_fence() -> None:
    text = 'Creating it now.\n```tool\n{"tool": "create_folder", "arguments": {"path": "Inbox"}}\n```'
    calls = parse_tool_calls(text)
    assert [(call.name, call.arguments) for call in calls] == [("create_folder", {"path": "Inbox"})]
    assert remove_tool_blocks(text) == "Creating it now."


def test_multiple_fences_keep_order() -> None:
    text = (
        "Done.\n"
        '```tool\n{"tool": "create_folder", "arguments": {"path": "Inbox"}}\n```\n'
        '```tool\n{"tool": "move_note", "arguments": {"sourcePath": "Welcome", "destinationFolder": "Inbox"}}\n```'
    )
    assert [call.name for call in parse_tool_calls(text)] == ["create_folder", "move_note"]


def test_json_fence_with_tool_key() -> None:
    text = 'Sure:\n```json\n{"tool": "delete_note", "arguments": {"path": "old"}}\n```\nThat is all.'
    calls = parse_tool_calls(text)
    assert [call.name for call in calls] == ["delete_note"]
    assert remove_tool_blocks(text) == "Sure:"


def test_plain_json_fence_is_not_a_call() -> None:
    text = 'Here is data:\n```json\n{"name": "value"}\n```'
    assert parse_tool_calls(text) == []
    assert remove_tool_blocks(text) == text


def test_bare_object_with_nested_braces_in_strings() -> None:
    text = 'I will add it {"tool": "append_to_note", "arguments": {"path": "log", "content": "a } b { \\"c\\""}} ok'
    calls = parse_tool_calls(text)
    assert len(calls) == 1
    assert calls[0].arguments == {"path": "log", "content": 'a } b { "c"'}
    assert remove_tool_blocks(text) == "I will add it"


def test_bare_object_inside_other_code_is_ignored() -> None:
    text = 'Example:\n```python\nx = {"tool": "delete_note", "arguments": {"path": "a"}}\n```\nand `{"tool": "delete_note"}`'
    assert parse_tool_calls(text) == []
    assert has_tool_calls(text) is False


def test_fenced_call_is_not_counted_twice() -> None:
    text = '```tool\n{"tool": "create_folder", "arguments": {"path": "A"}}\n```'
    assert len(parse_tool_calls(text)) == 1


def test_repeats_are_dropped() -> None:
    block = '```tool\n{"tool": "create_folder", "arguments": {"path": "A"}}\n```\n'
    assert len(parse_tool_calls(block * 3)) == 1


def test_malformed_blocks_are_skipped() -> None:
    text = (
        '```tool\n{"tool": "create_folder", "arguments": \n```\n'
        '```tool\n{"arguments": {"path": "x"}}\n```\n'
        '```tool\n{"tool": "create_folder", "arguments": {"path": "ok"}}\n```'
    )
    calls = parse_tool_calls(text)
    assert [call.arguments for call in calls] == [{"path": "ok"}]


def test_find_balanced_object() -> None:
    text = 'x {"a": {"b": "}"}} tail'
    assert find_balanced_object(text, 2) == text.index(" tail")
    assert find_balanced_object(text, 0) is None
    assert find_balanced_object('{"open": 1', 0) is None


def test_text_without_calls_is_untouched() -> None:
    text = "Just an answer.\n\n\n\nWith blank lines."
    assert parse_tool_calls(text) == []
    assert remove_tool_blocks(text) == "Just an answer.\n\nWith blank lines."


def test_bare_object_with_tool_key_after_braced_string() -> None:
    text = 'Saving. {"arguments": {"path": "log", "content": "a } b"}, "tool": "append_to_note"} done'
    calls = parse_tool_calls(text)
    assert [(call.name, call.arguments) for call in calls] == [("append_to_note", {"path": "log", "content": "a } b"})]
    assert remove_tool_blocks(text) == "Saving."


def test_bare_call_inside_wrapper_object() -> None:
    text = 'Plan { unclosed, then {"calls": [{"tool": "create_folder", "arguments": {"path": "A"}}]}'
    assert [call.arguments for call in parse_tool_calls(text)] == [{"path": "A"}]
