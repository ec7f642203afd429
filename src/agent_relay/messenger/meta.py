"""Messenger / WhatsApp webhook adapter over the Meta Graph API."""

from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any, Literal

import httpx

from agent_relay.config import MetaConfig
from agent_relay.core.errors import (
    ChannelNotConfigured,
    Forbidden,
    RelayError,
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
from agent_relay.storage.models import MetaChannelConfig

logger = get_logger(__name__)

EntryKind = Literal["messenger", "whatsapp", "unknown"]


class GraphSendError(RelayError):
    """The Graph API refused an outbound message."""


def classify_entry(entry: Any) -> EntryKind:
    """Tell a Messenger entry (``messaging``) from a WhatsApp entry (``changes``)."""
    if not isinstance(entry, dict):
        return "unknown"
    if isinstance(entry.get("messaging"), list):
        return "messenger"
    if isinstance(entry.get("changes"), list):
        return "whatsapp"
    return "unknown"


def verify_hub_signature(app_secret: str, body: bytes, header: str | None) -> bool:
    if not header or not header.startswith("sha256="):
        return False
    expected = hmac.new(app_secret.encode(), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(header[len("sha256="):], expected)


class GraphClient:
    """Outbound Messenger and WhatsApp sends."""

    def __init__(self, config: MetaConfig | None = None, client: httpx.AsyncClient | None = None):
        config = config or MetaConfig()
        self._base = f"{config.graph_base_url.rstrip('/')}/{config.graph_api_version}"
        self._client = client or httpx.AsyncClient(timeout=15.0)

    async def send_messenger(self, access_token: str, recipient_id: str, text: str) -> None:
        response = await self._client.post(
            f"{self._base}/me/messages",
            params={"access_token": access_token},
            json={"recipient": {"id": recipient_id}, "message": {"text": text}},
        )
        if response.is_error:
            raise GraphSendError(f"Messenger send failed: HTTP {response.status_code}")

    async def send_whatsapp(
        self, access_token: str, phone_number_id: str, to: str, text: str
    ) -> None:
        response = await self._client.post(
            f"{self._base}/{phone_number_id}/messages",
            headers={"Authorization": f"Bearer {access_token}"},
            json={
                "messaging_product": "whatsapp",
                "to": to,
                "type": "text",
                "text": {"body": text},
            },
        )
        if response.is_error:
            raise GraphSendError(f"WhatsApp send failed: HTTP {response.status_code}")

    async def aclose(self) -> None:
        await self._client.aclose()


class MetaAdapter(ChannelAdapter):
    """Webhook handshake and message events for Messenger and WhatsApp."""

    def __init__(
        self,
        pipeline: ConversationPipeline,
        channels: ChannelConfigStore,
        graph: GraphClient | None = None,
    ):
        super().__init__(pipeline, channels)
        self._graph = graph or GraphClient()

    async def _stored(self, agent_id: str) -> MetaChannelConfig:
        if not agent_id:
            raise ValidationFailed("Missing agentId")
        config = await self._channels.get_meta(agent_id)
        if config is None:
            raise ChannelNotConfigured("Meta")
        return config

    async def _config(self, agent_id: str) -> MetaChannelConfig:
        """Stored config that can also send, i.e. has an access token."""
        config = await self._stored(agent_id)
        if not config.access_token:
            logger.error("meta_access_token_missing", agent_id=agent_id)
            raise ChannelNotConfigured("Meta")
        return config

    async def verify_handshake(
        self, agent_id: str, mode: str | None, token: str | None, challenge: str | None
    ) -> str:
        """Return the challenge to echo, or raise when the subscription is not ours."""
        config = await self._stored(agent_id)
        if (
            mode == "subscribe"
            and token
            and challenge
            and config.verify_token
            and hmac.compare_digest(token.encode(), config.verify_token.encode())
        ):
            logger.info("meta_webhook_verified", agent_id=agent_id)
            return challenge
        logger.warning("meta_webhook_verify_rejected", agent_id=agent_id, mode=mode)
        raise Forbidden("Forbidden")

    async def handle_event(
        self, agent_id: str, body: bytes, signature: str | None = None
    ) -> dict[str, Any]:
        """Authenticate the raw body, then reply to every text message in it.

        A body that is not JSON is acknowledged and ignored.
        """
        config = await self._config(agent_id)
        if config.app_secret and not verify_hub_signature(config.app_secret, body, signature):
            logger.warning("meta_signature_invalid", agent_id=agent_id)
            raise Unauthorized("Invalid signature")

        try:
            payload = json.loads(body) if body else {}
        except ValueError:
            logger.warning("meta_body_not_json", agent_id=agent_id)
            return {"ok": True}
        if not isinstance(payload, dict) or not isinstance(payload.get("entry"), list):
            return {"ok": True}
        await self.resolver.require_agent(agent_id)

        for entry in payload["entry"]:
            match classify_entry(entry):
                case "messenger":
                    await self._handle_messenger_entry(config, entry)
                case "whatsapp":
                    await self._handle_whatsapp_entry(config, entry)
                case _:
                    logger.debug("meta_entry_ignored", agent_id=agent_id)
        return {"ok": True}

    async def _handle_messenger_entry(self, config: MetaChannelConfig, entry: dict) -> None:
        for event in entry["messaging"]:
            if not isinstance(event, dict):
                continue
            sender_id = (event.get("sender") or {}).get("id")
            text = (event.get("message") or {}).get("text")
            if not sender_id or not isinstance(text, str) or not text.strip():
                continue
            try:
                turn = await self.process(
                    InboundMessage(
                        platform=Platform.MESSENGER,
                        agent_id=config.agent_id,
                        external_user_id=external_user_id(Platform.MESSENGER, sender_id),
                        text=text.strip(),
                        chat_id=str(sender_id),
                        replay_history=False,
                    )
                )
                await self._graph.send_messenger(
                    config.access_token, str(sender_id), self.deliverable_text(turn)
                )
            except (RelayError, httpx.HTTPError) as e:
                logger.error(
                    "meta_message_failed",
                    agent_id=config.agent_id,
                    platform=Platform.MESSENGER.value,
                    error=str(e),
                )

    async def _handle_whatsapp_entry(self, config: MetaChannelConfig, entry: dict) -> None:
        for change in entry["changes"]:
            value = (change or {}).get("value") if isinstance(change, dict) else None
            if not isinstance(value, dict):
                continue
            messages = value.get("messages")
            if not isinstance(messages, list):
                continue
            phone_number_id = config.whatsapp_phone_number_id or (
                (value.get("metadata") or {}).get("phone_number_id")
            )
            for message in messages:
                if not isinstance(message, dict):
                    continue
                sender = message.get("from")
                text = (message.get("text") or {}).get("body")
                if not sender or not isinstance(text, str) or not text.strip():
                    continue
                try:
                    turn = await self.process(
                        InboundMessage(
                            platform=Platform.WHATSAPP,
                            agent_id=config.agent_id,
                            external_user_id=external_user_id(Platform.WHATSAPP, sender),
                            text=text.strip(),
                            chat_id=str(sender),
                            replay_history=False,
                        )
                    )
                    if not phone_number_id:
                        logger.error("whatsapp_phone_number_id_missing", agent_id=config.agent_id)
                        continue
                    await self._graph.send_whatsapp(
                        config.access_token,
                        str(phone_number_id),
                        str(sender),
                        self.deliverable_text(turn),
                    )
                except (RelayError, httpx.HTTPError) as e:
                    logger.error(
                        "meta_message_failed",
                        agent_id=config.agent_id,
                        platform=Platform.WHATSAPP.value,
                        error=str(e),
                    )

    async def test_send(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Send a one-off WhatsApp message with the stored credentials."""
        agent_id = require_str(payload, "agentId")
        to = require_str(payload, "to")
        text = require_str(payload, "text")
        config = await self._config(agent_id)
        if not config.whatsapp_phone_number_id:
            raise ValidationFailed("Missing whatsappPhoneNumberId")
        try:
            await self._graph.send_whatsapp(
                config.access_token, config.whatsapp_phone_number_id, to, text
            )
        except httpx.HTTPError as e:
            raise GraphSendError(f"WhatsApp send failed: {type(e).__name__}") from e
        logger.info("whatsapp_test_sent", agent_id=agent_id)
        return {"ok": True}
