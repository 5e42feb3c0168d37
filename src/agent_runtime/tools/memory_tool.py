"""
Memory tools - let the model save and look up long-term facts.

Both tools scope their reads and writes with the caller's ToolAuthContext:
a chat may only touch its own memories (and global ones), while control
chats may act on any chat and write global facts.
"""

import structlog

from ..store import Store
from .base import Tool, ToolAuthContext, ToolParameter, ToolResult

logger = structlog.get_logger()

MEMORY_CATEGORIES = ["PROFILE", "KNOWLEDGE", "EVENT"]


def _denied(target_chat_id: int) -> ToolResult:
    return ToolResult.error(
        f"Permission denied: cannot access chat {target_chat_id}",
        error_type="permission_denied",
    )


def create_memory_tools(store: Store) -> list[Tool]:
    """Create the remember/recall tools bound to a store."""

    async def remember_handler(
        auth: ToolAuthContext | None,
        content: str,
        category: str = "KNOWLEDGE",
        chat_id: int | None = None,
        scope: str = "chat",
    ) -> ToolResult:
        if auth is None:
            return ToolResult.error("Missing caller context", error_type="permission_denied")

        content = content.strip()
        if not content:
            return ToolResult.error("Memory content is empty", error_type="invalid_input")

        if category not in MEMORY_CATEGORIES:
            category = "KNOWLEDGE"

        if scope == "global":
            if not auth.is_control_chat():
                return ToolResult.error(
                    "Permission denied: only control chats can write global memories",
                    error_type="permission_denied",
                )
            target: int | None = None
        else:
            target = auth.caller_chat_id if chat_id is None else int(chat_id)
            if not auth.can_access_chat(target):
                return _denied(target)

        memory_id = await store.insert_memory(target, content, category=category, source="tool")
        logger.info("Memory saved", memory_id=memory_id, chat_id=target, category=category)
        return ToolResult.success(f"Saved memory #{memory_id} ({category}): {content}")

    async def recall_handler(
        auth: ToolAuthContext | None,
        query: str,
        chat_id: int | None = None,
        limit: int = 10,
    ) -> ToolResult:
        if auth is None:
            return ToolResult.error("Missing caller context", error_type="permission_denied")

        target = auth.caller_chat_id if chat_id is None else int(chat_id)
        if not auth.can_access_chat(target):
            return _denied(target)

        matches = await store.search_memories(target, query, max(1, min(int(limit), 50)))
        if not matches:
            return ToolResult.success(f"No memories found for '{query}'.")

        lines = ["Found in memory:"]
        for memory in matches:
            scope = "global" if memory.chat_id is None else "chat"
            lines.append(f"- #{memory.id} [{memory.category}][{scope}] {memory.content}")
        return ToolResult.success("\n".join(lines))

    remember = Tool(
        name="remember",
        description=(
            "Save important information to long-term memory. Use this when the user "
            "shares something worth remembering for future conversations."
        ),
        parameters=[
            ToolParameter(
                name="content",
                param_type="string",
                description="The information to remember",
                required=True,
            ),
            ToolParameter(
                name="category",
                param_type="string",
                description="Kind of fact",
                required=False,
                enum=MEMORY_CATEGORIES,
            ),
            ToolParameter(
                name="chat_id",
                param_type="integer",
                description="Chat the memory belongs to (defaults to the current chat)",
                required=False,
            ),
            ToolParameter(
                name="scope",
                param_type="string",
                description="'chat' (default) or 'global' (control chats only)",
                required=False,
                enum=["chat", "global"],
            ),
        ],
        handler=remember_handler,
    )

    recall = Tool(
        name="recall",
        description="Search long-term memory for previously saved information.",
        parameters=[
            ToolParameter(
                name="query",
                param_type="string",
                description="Text to search for",
                required=True,
            ),
            ToolParameter(
                name="chat_id",
                param_type="integer",
                description="Chat to search (defaults to the current chat)",
                required=False,
            ),
            ToolParameter(
                name="limit",
                param_type="integer",
                description="Maximum results (default: 10)",
                required=False,
            ),
        ],
        handler=recall_handler,
    )

    return [remember, recall]
