"""Agent and knowledge repositories, plus seeding from configuration."""

from __future__ import annotations

import json

from agent_relay.config import AgentSeed
from agent_relay.log import get_logger
from agent_relay.storage.base import AgentStore, KnowledgeStore
from agent_relay.storage.database import Database, parse_timestamp
from agent_relay.storage.models import (
    DEFAULT_SYSTEM_PROMPT,
    DEFAULT_TEMPERATURE,
    Agent,
    FormField,
    KnowledgeEntry,
)

logger = get_logger(__name__)


class SqliteAgentStore(AgentStore):
    def __init__(self, db: Database):
        self._db = db

    async def get_agent(self, agent_id: str) -> Agent | None:
        cursor = await self._db.conn.execute("SELECT * FROM agents WHERE id = ?", (agent_id,))
        row = await cursor.fetchone()
        if row is None:
            return None
        fields = [
            FormField(
                id=str(item.get("id", "")),
                label=str(item.get("label", "")),
                type=str(item.get("type") or "text"),
                required=bool(item.get("required", False)),
                value=item.get("value"),
                options=[str(o) for o in item.get("options") or []],
            )
            for item in json.loads(row["form_fields_json"] or "[]")
            if isinstance(item, dict)
        ]
        temperature = row["temperature"]
        return Agent(
            id=row["id"],
            name=row["name"],
            system_prompt=(row["system_prompt"] or "").strip() or DEFAULT_SYSTEM_PROMPT,
            welcome_message=row["welcome_message"] or "",
            temperature=DEFAULT_TEMPERATURE if temperature is None else float(temperature),
            header_color=row["header_color"],
            accent_color=row["accent_color"],
            background_color=row["background_color"],
            profile_image=row["profile_image"],
            collect_user_info=bool(row["collect_user_info"]),
            form_fields=fields,
        )

    async def upsert(self, seed: AgentSeed) -> None:
        form_fields = [f.model_dump() for f in seed.form_fields]
        await self._db.conn.execute(
            """INSERT INTO agents
               (id, name, system_prompt, welcome_message, temperature, header_color,
                accent_color, background_color, profile_image, collect_user_info,
                form_fields_json)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                 name = excluded.name,
                 system_prompt = excluded.system_prompt,
                 welcome_message = excluded.welcome_message,
                 temperature = excluded.temperature,
                 header_color = excluded.header_color,
                 accent_color = excluded.accent_color,
                 background_color = excluded.background_color,
                 profile_image = excluded.profile_image,
                 collect_user_info = excluded.collect_user_info,
                 form_fields_json = excluded.form_fields_json,
                 updated_at = strftime('%Y-%m-%dT%H:%M:%f','now')""",
            (
                seed.id,
                seed.name,
                seed.system_prompt,
                seed.welcome_message,
                seed.temperature,
                seed.header_color,
                seed.accent_color,
                seed.background_color,
                seed.profile_image,
                int(seed.collect_user_info),
                json.dumps(form_fields),
            ),
        )
        await self._db.conn.commit()


class SqliteKnowledgeStore(KnowledgeStore):
    def __init__(self, db: Database):
        self._db = db

    async def recent_entries(self, agent_id: str, limit: int) -> list[KnowledgeEntry]:
        cursor = await self._db.conn.execute(
            """SELECT * FROM knowledge_entries
               WHERE agent_id = ?
               ORDER BY created_at DESC, id DESC
               LIMIT ?""",
            (agent_id, limit),
        )
        rows = await cursor.fetchall()
        return [
            KnowledgeEntry(
                id=row["id"],
                agent_id=row["agent_id"],
                input=row["input"],
                output=row["output"],
                created_at=parse_timestamp(row["created_at"]),
            )
            for row in rows
        ]

    async def add_entry(self, agent_id: str, input_text: str, output_text: str) -> int:
        cursor = await self._db.conn.execute(
            "INSERT INTO knowledge_entries (agent_id, input, output) VALUES (?, ?, ?)",
            (agent_id, input_text, output_text),
        )
        await self._db.conn.commit()
        return cursor.lastrowid  # type: ignore[return-value]

    async def replace_entries(self, agent_id: str, pairs: list[tuple[str, str]]) -> None:
        """Replace an agent's knowledge with ``pairs``; later pairs are more recent."""
        await self._db.conn.execute(
            "DELETE FROM knowledge_entries WHERE agent_id = ?", (agent_id,)
        )
        await self._db.conn.executemany(
            "INSERT INTO knowledge_entries (agent_id, input, output) VALUES (?, ?, ?)",
            [(agent_id, i, o) for i, o in pairs],
        )
        await self._db.conn.commit()
        logger.debug("knowledge_replaced", agent_id=agent_id, count=len(pairs))
