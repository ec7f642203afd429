"""Discord adapter: Ed25519-signed HTTP interactions and the backend relay endpoint."""

from __future__ import annotations

import hmac
import json
from typing import Any

from nacl.exceptions import BadSignatureError
from nacl.signing import VerifyKey

from agent_relay.config import DiscordConfig
from agent_relay.core.errors import (
    AgentNotFound,
    ConfigurationError,
    Unauthorized,
    ValidationFailed,
    require_str,
)
from agent_relay.core.pipeline import ConversationPipeline
from agent_relay.core.types import Platform, external_user_id
from agent_relay.log import get_logger
from agent_relay.messenger.base import ChannelAdapter
from agent_relay.messenger.models import InboundMessage
from agent_relay.storage.base import ChannelConfigStore
from agent_relay.storage.models import DiscordChannelConfig

logger = get_logger(__name__)

PING = 1
APPLICATION_COMMAND = 2
CHANNEL_MESSAGE_WITH_SOURCE = 4

NO_CONFIG_REPLY = (
    "No Discord configuration found for this application. "
    "Please save Client ID and Token for an agent."
)


def verify_signature(public_key_hex: str, signature_hex: str, timestamp: str, body: bytes) -> bool:
    """Check a Discord Ed25519 signature over ``timestamp + body``."""
    try:
        key = VerifyKey(bytes.fromhex(public_key_hex.strip()))
        key.verify(timestamp.encode() + body, bytes.fromhex(signature_hex))
    except (BadSignatureError, ValueError, TypeError):
        return False
    return True


def command_text(data: dict[str, Any]) -> str:
    """Text from the ``q`` or ``message`` option, else a greeting naming the command."""
    name = data.get("name") or "ask"
    options = data.get("options") if isinstance(data.get("options"), list) else []
    by_name = {
        str(o.get("name", "")).lower(): o.get("value")
        for o in options
        if isinstance(o, dict)
    }
    for key in ("q", "message"):
        value = by_name.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return f"Hello from /{name}"


def _reply(content: str) -> dict[str, Any]:
    return {"type": CHANNEL_MESSAGE_WITH_SOURCE, "data": {"content": content}}


class DiscordAdapter(ChannelAdapter):
    """Signed interactions and backend relay requests for Discord."""

    def __init__(
        self,
        pipeline: ConversationPipeline,
        channels: ChannelConfigStore,
        config: DiscordConfig | None = None,
    ):
        super().__init__(pipeline, channels)
        self._config = config or DiscordConfig()

    async def _candidate_keys(self, agent_id: str | None) -> list[tuple[str, DiscordChannelConfig | None]]:
        if agent_id:
            cfg = await self._channels.get_discord(agent_id)
            if cfg is None or not cfg.public_key:
                return []
            return [(cfg.public_key, cfg)]
        candidates: list[tuple[str, DiscordChannelConfig | None]] = []
        if self._config.public_key:
            candidates.append((self._config.public_key, None))
        for cfg in await self._channels.list_discord():
            if cfg.public_key:
                candidates.append((cfg.public_key, cfg))
        return candidates

    async def handle_interaction(
        self,
        body: bytes,
        signature: str | None,
        timestamp: str | None,
        agent_id: str | None = None,
    ) -> dict[str, Any]:
        candidates = await self._candidate_keys(agent_id)
        if not candidates:
            logger.error("discord_public_key_missing", agent_id=agent_id)
            raise ConfigurationError("Server not configured: Discord public key missing")

        if not signature or not timestamp:
            logger.warning("discord_signature_missing", agent_id=agent_id)
            raise Unauthorized("Bad request signature")

        matched: DiscordChannelConfig | None = None
        verified = False
        for key, cfg in candidates:
            if verify_signature(key, signature, timestamp, body):
                verified, matched = True, cfg
                break
        if not verified:
            logger.warning("discord_signature_invalid", agent_id=agent_id)
            raise Unauthorized("Bad request signature")

        try:
            interaction = json.loads(body)
        except ValueError as e:
            raise ValidationFailed("Invalid JSON") from e
        if not isinstance(interaction, dict):
            raise ValidationFailed("Invalid JSON")

        kind = interaction.get("type")
        if kind == PING:
            return {"type": PING}
        if kind != APPLICATION_COMMAND:
            return _reply("OK")

        target_agent = matched.agent_id if matched else None
        if not target_agent:
            app_id = str(interaction.get("application_id") or "").strip()
            if app_id:
                cfg = await self._channels.get_discord_by_client_id(app_id)
                target_agent = cfg.agent_id if cfg else None
        if not target_agent:
            logger.warning("discord_agent_unresolved", application_id=interaction.get("application_id"))
            return _reply(NO_CONFIG_REPLY)

        user = (interaction.get("member") or {}).get("user") or interaction.get("user") or {}
        raw_user_id = str(user.get("id") or "unknown")
        text = command_text(interaction.get("data") or {})

        try:
            turn = await self.process(
                InboundMessage(
                    platform=Platform.DISCORD,
                    agent_id=target_agent,
                    external_user_id=external_user_id(Platform.DISCORD, raw_user_id),
                    text=text,
                    replay_history=False,
                )
            )
        except AgentNotFound:
            return _reply("Agent not found.")
        return _reply(self.deliverable_text(turn))

    def authenticate_backend(self, presented: str | None) -> None:
        expected = self._config.backend_key
        if not expected:
            logger.error("discord_backend_key_missing")
            raise ConfigurationError("Server missing Discord backend key")
        if not presented or not hmac.compare_digest(presented.encode(), expected.encode()):
            logger.warning("discord_backend_key_rejected")
            raise Unauthorized("Unauthorized")

    async def respond(self, payload: dict[str, Any], presented_key: str | None) -> dict[str, Any]:
        """Relay a message from the gateway process and return the reply text."""
        self.authenticate_backend(presented_key)
        agent_id = require_str(payload, "agentId")
        user_id = require_str(payload, "userId")
        text = require_str(payload, "text")
        if not user_id.startswith(f"{Platform.DISCORD.value}_"):
            user_id = external_user_id(Platform.DISCORD, user_id)

        turn = await self.process(
            InboundMessage(
                platform=Platform.DISCORD,
                agent_id=agent_id,
                external_user_id=user_id,
                text=text,
                replay_history=False,
            )
        )
        return {"ok": True, "reply": self.deliverable_text(turn)}
