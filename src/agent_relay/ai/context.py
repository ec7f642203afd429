"""Conversation context assembly: knowledge block, system prompt, message list."""

from __future__ import annotations

from typing import Any

from agent_relay.log import get_logger
from agent_relay.storage.base import KnowledgeStore, NullKnowledgeStore
from agent_relay.storage.models import DEFAULT_SYSTEM_PROMPT, ChatMessage, KnowledgeEntry

logger = get_logger(__name__)

KNOWLEDGE_HEADER = "\n\nKnowledge Base (most recent first):\n"


def render_entry(entry: KnowledgeEntry) -> str:
    text_in = entry.input if isinstance(entry.input, str) else ""
    text_out = entry.output if isinstance(entry.output, str) else ""
    return f"- {text_in}: {text_out}"


def compose_system_prompt(system_prompt: str, context_block: str) -> str:
    """Append the knowledge block to the prompt; the header appears only with entries."""
    base = system_prompt.strip() or DEFAULT_SYSTEM_PROMPT
    if not context_block:
        return base
    return base + KNOWLEDGE_HEADER + context_block


class KnowledgeRetriever:
    """Fetches a bounded, most-recent-first slice of an agent's knowledge."""

    def __init__(self, store: KnowledgeStore | None = None, limit: int = 20):
        self._store = store or NullKnowledgeStore()
        self._limit = max(1, min(100, limit))

    @property
    def limit(self) -> int:
        return self._limit

    async def build_context_block(self, agent_id: str, limit: int | None = None) -> str:
        limit = self._limit if limit is None else max(1, min(100, limit))
        entries = await self._store.recent_entries(agent_id, limit)
        if not entries:
            return ""
        logger.debug("knowledge_loaded", agent_id=agent_id, count=len(entries))
        return "\n".join(render_entry(e) for e in entries[:limit])


def history_from_records(records: list[ChatMessage]) -> list[dict[str, str]]:
    """Convert stored messages to provider message dicts."""
    return [
        {"role": r.role, "content": r.content}
        for r in records
        if r.role in ("user", "assistant")
    ]


def sanitize_client_history(history: Any, limit: int) -> list[dict[str, str]]:
    """Keep only well-formed user/assistant turns from an untrusted client list."""
    if not isinstance(history, list):
        return []
    cleaned: list[dict[str, str]] = []
    for item in history:
        if not isinstance(item, dict):
            continue
        role = item.get("role")
        content = item.get("content")
        if role not in ("user", "assistant") or not isinstance(content, str):
            continue
        if not content.strip():
            continue
        cleaned.append({"role": role, "content": content})
    if limit <= 0:
        return []
    return cleaned[-limit:]


def build_messages(history: list[dict[str, str]], user_text: str) -> list[dict[str, str]]:
    """History followed by the current user turn."""
    return [*history, {"role": "user", "content": user_text}]
