"""Chat session and message repository backed by SQLite."""

from __future__ import annotations

import json
import uuid
from typing import Any

from agent_relay.log import get_logger
from agent_relay.storage.base import SessionStore
from agent_relay.storage.database import Database, parse_timestamp
from agent_relay.storage.models import ChatMessage, ChatSession

logger = get_logger(__name__)

_NOW_SQL = "strftime('%Y-%m-%dT%H:%M:%f','now')"


class SqliteSessionStore(SessionStore):
    """Sessions plus an append-only message log."""

    def __init__(self, db: Database):
        self._db = db

    async def create_session(
        self,
        agent_id: str,
        external_user_id: str,
        platform: str,
        metadata: dict[str, Any] | None = None,
    ) -> ChatSession:
        session_id = uuid.uuid4().hex
        await self._db.conn.execute(
            """INSERT INTO chat_sessions
               (session_id, agent_id, external_user_id, platform, metadata_json)
               VALUES (?, ?, ?, ?, ?)""",
            (session_id, agent_id, external_user_id, platform, json.dumps(metadata or {})),
        )
        await self._db.conn.commit()
        session = await self.get_session(session_id)
        assert session is not None
        return session

    async def get_session(self, session_id: str) -> ChatSession | None:
        cursor = await self._db.conn.execute(
            "SELECT * FROM chat_sessions WHERE session_id = ?", (session_id,)
        )
        row = await cursor.fetchone()
        return self._row_to_session(row) if row else None

    async def get_latest(self, agent_id: str, external_user_id: str) -> ChatSession | None:
        cursor = await self._db.conn.execute(
            """SELECT * FROM chat_sessions
               WHERE agent_id = ? AND external_user_id = ?
               ORDER BY seq DESC
               LIMIT 1""",
            (agent_id, external_user_id),
        )
        row = await cursor.fetchone()
        return self._row_to_session(row) if row else None

    async def touch(self, session_id: str) -> None:
        await self._db.conn.execute(
            f"UPDATE chat_sessions SET last_active_at = {_NOW_SQL} WHERE session_id = ?",
            (session_id,),
        )
        await self._db.conn.commit()

    async def merge_user_info(
        self, session_id: str, values: dict[str, str]
    ) -> ChatSession | None:
        session = await self.get_session(session_id)
        if session is None:
            return None
        metadata = dict(session.metadata)
        user_info = dict(metadata.get("userInfo") or {})
        user_info.update(values)
        metadata["userInfo"] = user_info
        await self._db.conn.execute(
            "UPDATE chat_sessions SET metadata_json = ? WHERE session_id = ?",
            (json.dumps(metadata), session_id),
        )
        await self._db.conn.commit()
        session.metadata = metadata
        return session

    async def append_message(
        self,
        session_id: str,
        role: str,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> ChatMessage:
        cursor = await self._db.conn.execute(
            """INSERT INTO chat_messages (session_id, role, content, metadata_json)
               VALUES (?, ?, ?, ?)""",
            (session_id, role, content, json.dumps(metadata or {})),
        )
        await self._db.conn.commit()
        message_id = cursor.lastrowid
        cursor = await self._db.conn.execute(
            "SELECT * FROM chat_messages WHERE id = ?", (message_id,)
        )
        row = await cursor.fetchone()
        return self._row_to_message(row)

    async def get_messages(
        self, session_id: str, limit: int | None = None
    ) -> list[ChatMessage]:
        if limit is None:
            cursor = await self._db.conn.execute(
                "SELECT * FROM chat_messages WHERE session_id = ? ORDER BY id ASC",
                (session_id,),
            )
            rows = await cursor.fetchall()
        else:
            cursor = await self._db.conn.execute(
                """SELECT * FROM chat_messages WHERE session_id = ?
                   ORDER BY id DESC
                   LIMIT ?""",
                (session_id, limit),
            )
            rows = list(reversed(await cursor.fetchall()))
        return [self._row_to_message(row) for row in rows]

    @staticmethod
    def _row_to_session(row) -> ChatSession:
        return ChatSession(
            session_id=row["session_id"],
            agent_id=row["agent_id"],
            external_user_id=row["external_user_id"],
            platform=row["platform"],
            metadata=json.loads(row["metadata_json"] or "{}"),
            created_at=parse_timestamp(row["created_at"]),
            last_active_at=parse_timestamp(row["last_active_at"]),
        )

    @staticmethod
    def _row_to_message(row) -> ChatMessage:
        return ChatMessage(
            id=row["id"],
            session_id=row["session_id"],
            role=row["role"],
            content=row["content"],
            metadata=json.loads(row["metadata_json"] or "{}"),
            created_at=parse_timestamp(row["created_at"]),
        )
