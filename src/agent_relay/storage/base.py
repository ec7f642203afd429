"""Storage service interfaces consumed by the relay core.

Each interface has one SQLite implementation in this package. Components
receive a concrete store at construction time.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from agent_relay.storage.models import (
    Agent,
    ChatMessage,
    ChatSession,
    DiscordChannelConfig,
    KnowledgeEntry,
    MetaChannelConfig,
    TelegramChannelConfig,
)


class SessionStore(ABC):
    """Sessions keyed by (agent, external user) plus their append-only message log."""

    @abstractmethod
    async def create_session(
        self,
        agent_id: str,
        external_user_id: str,
        platform: str,
        metadata: dict[str, Any] | None = None,
    ) -> ChatSession:
        ...

    @abstractmethod
    async def get_session(self, session_id: str) -> ChatSession | None:
        ...

    @abstractmethod
    async def get_latest(self, agent_id: str, external_user_id: str) -> ChatSession | None:
        """Most recently created session for the pair, or None."""
        ...

    @abstractmethod
    async def touch(self, session_id: str) -> None:
        ...

    @abstractmethod
    async def merge_user_info(
        self, session_id: str, values: dict[str, str]
    ) -> ChatSession | None:
        """Merge values into ``metadata.userInfo``; returns None for an unknown session."""
        ...

    @abstractmethod
    async def append_message(
        self,
        session_id: str,
        role: str,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> ChatMessage:
        ...

    @abstractmethod
    async def get_messages(
        self, session_id: str, limit: int | None = None
    ) -> list[ChatMessage]:
        """Messages in creation order; with ``limit``, only the newest ``limit``."""
        ...


class AgentStore(ABC):
    @abstractmethod
    async def get_agent(self, agent_id: str) -> Agent | None:
        ...


class KnowledgeStore(ABC):
    @abstractmethod
    async def recent_entries(self, agent_id: str, limit: int) -> list[KnowledgeEntry]:
        """Up to ``limit`` entries for the agent, most recent first."""
        ...


class NullKnowledgeStore(KnowledgeStore):
    """Used when no knowledge backend is wired in."""

    async def recent_entries(self, agent_id: str, limit: int) -> list[KnowledgeEntry]:
        return []


class ChannelConfigStore(ABC):
    @abstractmethod
    async def get_telegram(self, agent_id: str) -> TelegramChannelConfig | None:
        ...

    @abstractmethod
    async def update_telegram_webhook(
        self, agent_id: str, webhook_url: str, webhook_secret: str, is_active: bool
    ) -> None:
        ...

    @abstractmethod
    async def get_discord(self, agent_id: str) -> DiscordChannelConfig | None:
        ...

    @abstractmethod
    async def get_discord_by_client_id(self, client_id: str) -> DiscordChannelConfig | None:
        ...

    @abstractmethod
    async def list_discord(self) -> list[DiscordChannelConfig]:
        ...

    @abstractmethod
    async def get_meta(self, agent_id: str) -> MetaChannelConfig | None:
        ...
