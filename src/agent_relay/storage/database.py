"""SQLite database connection manager with schema migration."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import aiosqlite

from agent_relay.log import get_logger

logger = get_logger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS agents (
    id                  TEXT PRIMARY KEY,
    name                TEXT NOT NULL,
    system_prompt       TEXT NOT NULL DEFAULT '',
    welcome_message     TEXT NOT NULL DEFAULT '',
    temperature         REAL,
    header_color        TEXT,
    accent_color        TEXT,
    background_color    TEXT,
    profile_image       TEXT,
    collect_user_info   INTEGER NOT NULL DEFAULT 0,
    form_fields_json    TEXT NOT NULL DEFAULT '[]',
    created_at          TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now')),
    updated_at          TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now'))
);

CREATE TABLE IF NOT EXISTS knowledge_entries (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    agent_id        TEXT NOT NULL,
    input           TEXT,
    output          TEXT,
    created_at      TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now'))
);

CREATE INDEX IF NOT EXISTS idx_knowledge_agent
    ON knowledge_entries(agent_id, created_at);

CREATE TABLE IF NOT EXISTS chat_sessions (
    seq                 INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id          TEXT    NOT NULL UNIQUE,
    agent_id            TEXT    NOT NULL,
    external_user_id    TEXT    NOT NULL,
    platform            TEXT    NOT NULL,
    metadata_json       TEXT    NOT NULL DEFAULT '{}',
    created_at          TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now')),
    last_active_at      TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now'))
);

CREATE INDEX IF NOT EXISTS idx_sessions_agent_user
    ON chat_sessions(agent_id, external_user_id, seq);

CREATE TABLE IF NOT EXISTS chat_messages (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id      TEXT    NOT NULL,
    role            TEXT    NOT NULL CHECK(role IN ('user','assistant')),
    content         TEXT    NOT NULL,
    metadata_json   TEXT    NOT NULL DEFAULT '{}',
    created_at      TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now'))
);

CREATE INDEX IF NOT EXISTS idx_messages_session
    ON chat_messages(session_id, id);

CREATE TABLE IF NOT EXISTS telegram_configs (
    agent_id        TEXT PRIMARY KEY,
    bot_token       TEXT NOT NULL,
    bot_username    TEXT,
    webhook_url     TEXT,
    webhook_secret  TEXT,
    is_active       INTEGER NOT NULL DEFAULT 0,
    updated_at      TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now'))
);

CREATE TABLE IF NOT EXISTS discord_configs (
    agent_id        TEXT PRIMARY KEY,
    client_id       TEXT NOT NULL,
    bot_token       TEXT NOT NULL DEFAULT '',
    public_key      TEXT NOT NULL DEFAULT '',
    is_active       INTEGER NOT NULL DEFAULT 0,
    updated_at      TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now'))
);

CREATE INDEX IF NOT EXISTS idx_discord_client
    ON discord_configs(client_id);

CREATE TABLE IF NOT EXISTS meta_configs (
    agent_id                    TEXT PRIMARY KEY,
    platform                    TEXT NOT NULL CHECK(platform IN ('messenger','whatsapp')),
    verify_token                TEXT NOT NULL,
    access_token                TEXT NOT NULL,
    app_secret                  TEXT,
    page_id                     TEXT,
    whatsapp_phone_number_id    TEXT,
    webhook_url                 TEXT,
    is_active                   INTEGER NOT NULL DEFAULT 0,
    updated_at                  TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now'))
);
"""


def parse_timestamp(value: str | None) -> datetime:
    """Parse a stored ISO timestamp; SQLite's strftime values carry no offset and are UTC."""
    if not value:
        return datetime.now(timezone.utc)
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class Database:
    """Async SQLite database manager."""

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._conn: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Open connection and run migrations."""
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(self._db_path)
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.execute("PRAGMA foreign_keys=ON")
        await self._conn.executescript(SCHEMA_SQL)
        await self._conn.commit()
        logger.info("database_initialized", path=self._db_path)

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self._conn

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None
            logger.info("database_closed")
