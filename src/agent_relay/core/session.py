"""Session resolver mapping (agent_id, external_user_id) to persisted sessions."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from agent_relay.core.errors import AgentNotFound, SessionNotFound
from agent_relay.log import get_logger
from agent_relay.storage.base import AgentStore, SessionStore
from agent_relay.storage.models import Agent, ChatSession

logger = get_logger(__name__)


class SessionResolver:
    """Resolves or creates sessions per (agent_id, external_user_id) pair.

    First contact for a key is serialized with a per-key lock so two
    concurrent inbound events cannot both create a session.
    """

    def __init__(self, sessions: SessionStore, agents: AgentStore):
        self._sessions = sessions
        self._agents = agents
        # key -> (lock, number of tasks holding or waiting on it)
        self._locks: dict[tuple[str, str], tuple[asyncio.Lock, int]] = {}

    @property
    def store(self) -> SessionStore:
        return self._sessions

    async def require_agent(self, agent_id: str) -> Agent:
        agent = await self._agents.get_agent(agent_id)
        if agent is None:
            logger.warning("agent_not_found", agent_id=agent_id)
            raise AgentNotFound(agent_id)
        return agent

    async def resolve_or_create(
        self,
        agent_id: str,
        external_user_id: str,
        platform: str,
        metadata: dict[str, Any] | None = None,
    ) -> ChatSession:
        """Return the latest session for the pair, creating one on first contact."""
        await self.require_agent(agent_id)
        async with self._key_lock((agent_id, external_user_id)):
            session = await self._sessions.get_latest(agent_id, external_user_id)
            if session is not None:
                return session
            return await self._create(agent_id, external_user_id, platform, metadata)

    @asynccontextmanager
    async def _key_lock(self, key: tuple[str, str]) -> AsyncIterator[None]:
        lock, users = self._locks.get(key) or (asyncio.Lock(), 0)
        self._locks[key] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._locks[key]
            if users == 1:
                del self._locks[key]
            else:
                self._locks[key] = (lock, users - 1)

    async def create_new(
        self,
        agent_id: str,
        external_user_id: str,
        platform: str,
        metadata: dict[str, Any] | None = None,
    ) -> ChatSession:
        """Force a fresh session for the pair."""
        await self.require_agent(agent_id)
        return await self._create(agent_id, external_user_id, platform, metadata)

    async def get(self, session_id: str) -> ChatSession:
        session = await self._sessions.get_session(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    async def touch(self, session_id: str) -> None:
        await self._sessions.touch(session_id)

    async def merge_user_info(self, session_id: str, values: dict[str, str]) -> ChatSession:
        session = await self._sessions.merge_user_info(session_id, values)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    async def _create(
        self,
        agent_id: str,
        external_user_id: str,
        platform: str,
        metadata: dict[str, Any] | None,
    ) -> ChatSession:
        base: dict[str, Any] = {"platform": platform, "userInfo": {}}
        if metadata:
            base.update(metadata)
        session = await self._sessions.create_session(agent_id, external_user_id, platform, base)
        logger.info(
            "session_created",
            agent_id=agent_id,
            external_user_id=external_user_id,
            platform=platform,
            session_id=session.session_id,
        )
        return session
