"""
Repair a message list before it is sent to a model.
"""

from .base import Message, TextBlock, ToolResultBlock, ToolUseBlock


def _is_plain_text(message: Message) -> bool:
    if isinstance(message.content, str):
        return True
    return all(isinstance(b, TextBlock) for b in message.content)


def _merge(previous: Message, current: Message) -> Message:
    if _is_plain_text(previous) and _is_plain_text(current):
        parts = [t for t in (previous.text, current.text) if t]
        return Message(role=previous.role, content="\n".join(parts))
    return Message(role=previous.role, content=previous.blocks + current.blocks)


def sanitize_messages(messages: list[Message]) -> list[Message]:
    """Clean a message list for submission to a model.

    1. Drops tool_result blocks whose tool_use_id matches no assistant
       tool_use (and any user message left with no blocks).
    2. Merges consecutive same-role messages. Two text-only messages merge
       into one string joined by a newline; otherwise their blocks are
       concatenated so tool results are kept.

    The input list is not modified. Idempotent.
    """
    if not messages:
        return []

    tool_use_ids = {
        block.id
        for msg in messages
        if msg.role == "assistant" and isinstance(msg.content, list)
        for block in msg.content
        if isinstance(block, ToolUseBlock)
    }

    cleaned: list[Message] = []
    for msg in messages:
        if msg.role == "user" and isinstance(msg.content, list):
            kept = [
                b for b in msg.content
                if not (isinstance(b, ToolResultBlock) and b.tool_use_id not in tool_use_ids)
            ]
            if not kept:
                continue
            cleaned.append(Message(role=msg.role, content=kept))
        else:
            cleaned.append(msg)

    merged: list[Message] = []
    for msg in cleaned:
        if merged and merged[-1].role == msg.role:
            merged[-1] = _merge(merged[-1], msg)
        else:
            merged.append(msg)

    return merged
