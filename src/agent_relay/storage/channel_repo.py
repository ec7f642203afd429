"""Per-agent channel credentials (Telegram, Discord, Meta)."""

from __future__ import annotations

from agent_relay.config import DiscordSeed, MetaSeed, TelegramSeed
from agent_relay.log import get_logger
from agent_relay.storage.base import ChannelConfigStore
from agent_relay.storage.database import Database
from agent_relay.storage.models import (
    DiscordChannelConfig,
    MetaChannelConfig,
    TelegramChannelConfig,
)

logger = get_logger(__name__)


class SqliteChannelConfigStore(ChannelConfigStore):
    def __init__(self, db: Database):
        self._db = db

    # --- Telegram ---

    async def get_telegram(self, agent_id: str) -> TelegramChannelConfig | None:
        cursor = await self._db.conn.execute(
            "SELECT * FROM telegram_configs WHERE agent_id = ?", (agent_id,)
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return TelegramChannelConfig(
            agent_id=row["agent_id"],
            bot_token=row["bot_token"],
            bot_username=row["bot_username"],
            webhook_url=row["webhook_url"],
            webhook_secret=row["webhook_secret"],
            is_active=bool(row["is_active"]),
        )

    async def update_telegram_webhook(
        self, agent_id: str, webhook_url: str, webhook_secret: str, is_active: bool
    ) -> None:
        await self._db.conn.execute(
            """UPDATE telegram_configs
               SET webhook_url = ?, webhook_secret = ?, is_active = ?,
                   updated_at = strftime('%Y-%m-%dT%H:%M:%f','now')
               WHERE agent_id = ?""",
            (webhook_url, webhook_secret, int(is_active), agent_id),
        )
        await self._db.conn.commit()

    async def upsert_telegram(self, agent_id: str, seed: TelegramSeed) -> None:
        # Webhook state survives re-seeding unless the token changed.
        await self._db.conn.execute(
            """INSERT INTO telegram_configs (agent_id, bot_token, bot_username)
               VALUES (?, ?, ?)
               ON CONFLICT(agent_id) DO UPDATE SET
                 bot_username = excluded.bot_username,
                 webhook_url = CASE WHEN bot_token = excluded.bot_token
                                    THEN webhook_url ELSE NULL END,
                 webhook_secret = CASE WHEN bot_token = excluded.bot_token
                                       THEN webhook_secret ELSE NULL END,
                 is_active = CASE WHEN bot_token = excluded.bot_token
                                  THEN is_active ELSE 0 END,
                 bot_token = excluded.bot_token,
                 updated_at = strftime('%Y-%m-%dT%H:%M:%f','now')""",
            (agent_id, seed.bot_token, seed.bot_username),
        )
        await self._db.conn.commit()

    # --- Discord ---

    async def get_discord(self, agent_id: str) -> DiscordChannelConfig | None:
        cursor = await self._db.conn.execute(
            "SELECT * FROM discord_configs WHERE agent_id = ?", (agent_id,)
        )
        row = await cursor.fetchone()
        return self._row_to_discord(row) if row else None

    async def get_discord_by_client_id(self, client_id: str) -> DiscordChannelConfig | None:
        cursor = await self._db.conn.execute(
            "SELECT * FROM discord_configs WHERE client_id = ? LIMIT 1", (client_id,)
        )
        row = await cursor.fetchone()
        return self._row_to_discord(row) if row else None

    async def list_discord(self) -> list[DiscordChannelConfig]:
        cursor = await self._db.conn.execute("SELECT * FROM discord_configs ORDER BY agent_id")
        rows = await cursor.fetchall()
        return [self._row_to_discord(row) for row in rows]

    async def upsert_discord(self, agent_id: str, seed: DiscordSeed) -> None:
        await self._db.conn.execute(
            """INSERT INTO discord_configs (agent_id, client_id, bot_token, public_key, is_active)
               VALUES (?, ?, ?, ?, 1)
               ON CONFLICT(agent_id) DO UPDATE SET
                 client_id = excluded.client_id,
                 bot_token = excluded.bot_token,
                 public_key = excluded.public_key,
                 is_active = 1,
                 updated_at = strftime('%Y-%m-%dT%H:%M:%f','now')""",
            (agent_id, seed.client_id, seed.bot_token, seed.public_key),
        )
        await self._db.conn.commit()

    @staticmethod
    def _row_to_discord(row) -> DiscordChannelConfig:
        return DiscordChannelConfig(
            agent_id=row["agent_id"],
            client_id=row["client_id"],
            bot_token=row["bot_token"] or "",
            public_key=row["public_key"] or "",
            is_active=bool(row["is_active"]),
        )

    # --- Meta ---

    async def get_meta(self, agent_id: str) -> MetaChannelConfig | None:
        cursor = await self._db.conn.execute(
            "SELECT * FROM meta_configs WHERE agent_id = ?", (agent_id,)
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return MetaChannelConfig(
            agent_id=row["agent_id"],
            platform=row["platform"],
            verify_token=row["verify_token"],
            access_token=row["access_token"],
            app_secret=row["app_secret"],
            page_id=row["page_id"],
            whatsapp_phone_number_id=row["whatsapp_phone_number_id"],
            webhook_url=row["webhook_url"],
            is_active=bool(row["is_active"]),
        )

    async def upsert_meta(self, agent_id: str, seed: MetaSeed, webhook_url: str = "") -> None:
        await self._db.conn.execute(
            """INSERT INTO meta_configs
               (agent_id, platform, verify_token, access_token, app_secret, page_id,
                whatsapp_phone_number_id, webhook_url, is_active)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, 1)
               ON CONFLICT(agent_id) DO UPDATE SET
                 platform = excluded.platform,
                 verify_token = excluded.verify_token,
                 access_token = excluded.access_token,
                 app_secret = excluded.app_secret,
                 page_id = excluded.page_id,
                 whatsapp_phone_number_id = excluded.whatsapp_phone_number_id,
                 webhook_url = excluded.webhook_url,
                 is_active = 1,
                 updated_at = strftime('%Y-%m-%dT%H:%M:%f','now')""",
            (
                agent_id,
                seed.platform,
                seed.verify_token,
                seed.access_token,
                seed.app_secret or None,
                seed.page_id or None,
                seed.whatsapp_phone_number_id or None,
                webhook_url or None,
            ),
        )
        await self._db.conn.commit()
