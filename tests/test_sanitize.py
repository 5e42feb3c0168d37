"""
Tests for message sanitization.
"""

from agent_runtime.llm import Message, TextBlock, ToolResultBlock, ToolUseBlock, sanitize_messages


def _tool_round(tool_id: str) -> list[Message]:
    return [
        Message(role="assistant", content=[ToolUseBlock(id=tool_id, name="echo", input={"text": "hi"})]),
        Message(role="user", content=[ToolResultBlock(tool_use_id=tool_id, content="hi")]),
    ]


def test_empty_list():
    """Test sanitizing an empty history."""
    assert sanitize_messages([]) == []


def test_valid_history_unchanged():
    """Test a well-formed history passes through."""
    messages = [Message(role="user", content="Hello")] + _tool_round("t1") + [
        Message(role="assistant", content="hi")
    ]
    assert sanitize_messages(messages) == messages


def test_orphan_tool_result_message_removed():
    """Test a message holding only orphan results is dropped."""
    messages = [
        Message(role="user", content="Hello"),
        Message(role="assistant", content="Hi"),
        Message(role="user", content=[ToolResultBlock(tool_use_id="missing", content="x")]),
    ]

    result = sanitize_messages(messages)

    assert result == messages[:2]


def test_orphan_block_removed_but_message_kept():
    """Test orphan blocks are removed from a mixed message."""
    messages = _tool_round("t1")
    messages[1] = Message(
        role="user",
        content=[
            ToolResultBlock(tool_use_id="t1", content="ok"),
            ToolResultBlock(tool_use_id="ghost", content="orphan"),
        ],
    )

    result = sanitize_messages(messages)

    assert result[1].content == [ToolResultBlock(tool_use_id="t1", content="ok")]


def test_consecutive_text_messages_merge():
    """Test same-role text turns are merged."""
    messages = [
        Message(role="user", content="[alice]: hi"),
        Message(role="user", content="[bob]: hello"),
        Message(role="assistant", content="Hey both"),
    ]

    result = sanitize_messages(messages)

    assert len(result) == 2
    assert result[0] == Message(role="user", content="[alice]: hi\n[bob]: hello")


def test_merge_keeps_tool_results_with_text():
    """Test merging keeps tool result blocks."""
    messages = _tool_round("t1") + [Message(role="user", content="and another thing")]

    result = sanitize_messages(messages)

    assert len(result) == 2
    assert result[1].content == [
        ToolResultBlock(tool_use_id="t1", content="hi"),
        TextBlock("and another thing"),
    ]


def test_input_not_modified():
    """Test the input list is not mutated."""
    messages = [Message(role="user", content="a"), Message(role="user", content="b")]
    sanitize_messages(messages)
    assert [m.content for m in messages] == ["a", "b"]


def test_idempotent():
    """Test sanitizing twice gives the same result."""
    messages = [
        Message(role="user", content="a"),
        Message(role="user", content=[ToolResultBlock(tool_use_id="orphan", content="x")]),
        Message(role="user", content="b"),
    ] + _tool_round("t1") + [
        Message(role="user", content="c"),
        Message(role="assistant", content="d"),
        Message(role="assistant", content=[TextBlock("e")]),
    ]

    once = sanitize_messages(messages)
    assert sanitize_messages(once) == once
