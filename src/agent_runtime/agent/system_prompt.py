"""
System prompt assembly from SOUL.md, channel context and injected memories.
"""

from datetime import datetime, timezone
from pathlib import Path

import structlog

from ..config import Settings

logger = structlog.get_logger()

GUIDELINES = """You have access to various tools for file operations, web browsing, memory management, scheduling, and more. Use them as needed to complete tasks.

Key behaviors:
- Execute tool calls when needed to fulfill requests
- You can make multiple tool calls in sequence (agentic loop)
- Store important information in memory for future reference
- Be concise and direct in responses
- For code tasks, read relevant files before making changes
"""


def build_system_prompt(
    bot_username: str,
    caller_channel: str,
    memory_context: str,
    chat_id: int,
    soul_content: str | None = None,
) -> str:
    """Build the system prompt for one turn."""
    parts = []

    if soul_content:
        parts.append(f"<soul>\n{soul_content}\n</soul>\n\n")
    elif bot_username:
        parts.append(f"You are a helpful AI assistant named {bot_username}.\n\n")
    else:
        parts.append("You are a helpful AI assistant.\n\n")

    now = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    parts.append(f"You are communicating via the {caller_channel} channel.\n")
    parts.append(f"Current chat ID: {chat_id}\n")
    parts.append(f"Current time: {now}\n\n")

    parts.append(GUIDELINES)

    if memory_context:
        parts.append("\n")
        parts.append(memory_context)

    return "".join(parts)


def _read_if_exists(path: Path) -> str | None:
    try:
        content = path.expanduser().read_text(encoding="utf-8").strip()
    except OSError:
        return None
    return content or None


def load_soul_content(settings: Settings, chat_id: int) -> str | None:
    """Load SOUL.md content.

    Priority: per-chat override under the runtime dir, then the configured
    soul_path, then <data_dir>/SOUL.md.
    """
    candidates = [settings.runtime_dir / "groups" / str(chat_id) / "SOUL.md"]
    if settings.soul_path:
        candidates.append(Path(settings.soul_path))
    candidates.append(Path(settings.data_dir) / "SOUL.md")

    for path in candidates:
        content = _read_if_exists(path)
        if content is not None:
            logger.debug("Loaded soul", chat_id=chat_id, path=str(path))
            return content
    return None
