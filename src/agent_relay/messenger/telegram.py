"""Telegram webhook adapter using python-telegram-bot's Bot API client."""

from __future__ import annotations

import hmac
import json
import re
import secrets
from typing import Any

from telegram import Bot
from telegram.error import InvalidToken, TelegramError
from telegram.request import HTTPXRequest

from agent_relay.core.errors import (
    ChannelNotConfigured,
    ConfigurationError,
    TelegramTokenRejected,
    Unauthorized,
    ValidationFailed,
)
from agent_relay.core.pipeline import ConversationPipeline
from agent_relay.core.types import Platform, external_user_id
from agent_relay.log import get_logger
from agent_relay.messenger.base import ChannelAdapter
from agent_relay.messenger.models import InboundMessage, OutgoingMessage
from agent_relay.storage.base import ChannelConfigStore
from agent_relay.storage.models import TelegramChannelConfig

logger = get_logger(__name__)

TOKEN_PATTERN = re.compile(r"^\d+:[A-Za-z0-9_-]{30,100}$")
ALLOWED_UPDATES = ["message", "callback_query"]
SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"


class TelegramGateway:
    """Wrapper over :class:`telegram.Bot` keeping one initialized bot per stored token."""

    def __init__(self, timeout: float = 15.0):
        self._timeout = timeout
        self._bots: dict[str, Bot] = {}

    def _new_bot(self, token: str) -> Bot:
        request = HTTPXRequest(connect_timeout=self._timeout, read_timeout=self._timeout)
        return Bot(token=token, request=request)

    async def _bot(self, token: str) -> Bot:
        bot = self._bots.get(token)
        if bot is not None:
            return bot
        bot = self._new_bot(token)
        try:
            await bot.initialize()
        except InvalidToken as e:
            raise TelegramTokenRejected() from e
        cached = self._bots.setdefault(token, bot)
        if cached is not bot:
            await bot.shutdown()
        return cached

    async def send_message(self, token: str, message: OutgoingMessage) -> None:
        bot = await self._bot(token)
        await bot.send_message(chat_id=int(message.chat_id), text=message.text)

    async def answer_callback_query(self, token: str, callback_query_id: str) -> None:
        bot = await self._bot(token)
        await bot.answer_callback_query(callback_query_id=callback_query_id)

    async def set_webhook(self, token: str, url: str, secret_token: str) -> None:
        bot = await self._bot(token)
        try:
            await bot.set_webhook(url=url, allowed_updates=ALLOWED_UPDATES, secret_token=secret_token)
        except InvalidToken as e:
            raise TelegramTokenRejected() from e

    async def get_me(self, token: str) -> dict[str, Any]:
        # Tokens checked here are not necessarily stored, so they are not cached.
        try:
            async with self._new_bot(token) as bot:
                me = bot.bot
        except InvalidToken as e:
            raise TelegramTokenRejected() from e
        return {"id": me.id, "username": me.username, "firstName": me.first_name}

    async def aclose(self) -> None:
        bots, self._bots = list(self._bots.values()), {}
        for bot in bots:
            await bot.shutdown()


def _parse_update(update: dict[str, Any]) -> tuple[InboundMessage | None, str, str | None]:
    """Return (inbound-without-agent, chat_id, callback_query_id) for supported updates."""
    message = update.get("message")
    if isinstance(message, dict):
        sender = message.get("from") or {}
        text = message.get("text")
        chat = message.get("chat") or {}
        if sender.get("is_bot") or not isinstance(text, str) or not text.strip():
            return None, "", None
        if sender.get("id") is None or chat.get("id") is None:
            return None, "", None
        inbound = InboundMessage(
            platform=Platform.TELEGRAM,
            agent_id="",
            external_user_id=external_user_id(Platform.TELEGRAM, sender["id"]),
            text=text.strip(),
            chat_id=str(chat["id"]),
        )
        return inbound, str(chat["id"]), None

    callback = update.get("callback_query")
    if isinstance(callback, dict):
        sender = callback.get("from") or {}
        chat = ((callback.get("message") or {}).get("chat")) or {}
        data = callback.get("data")
        if sender.get("is_bot") or sender.get("id") is None or chat.get("id") is None:
            return None, "", None
        if not isinstance(data, str) or not data.strip():
            return None, "", None
        inbound = InboundMessage(
            platform=Platform.TELEGRAM,
            agent_id="",
            external_user_id=external_user_id(Platform.TELEGRAM, sender["id"]),
            text=data.strip(),
            chat_id=str(chat["id"]),
            replay_history=False,
        )
        return inbound, str(chat["id"]), str(callback.get("id") or "")

    return None, "", None


class TelegramAdapter(ChannelAdapter):
    """Handles webhook updates and webhook activation for per-agent Telegram bots."""

    def __init__(
        self,
        pipeline: ConversationPipeline,
        channels: ChannelConfigStore,
        gateway: TelegramGateway | None = None,
    ):
        super().__init__(pipeline, channels)
        self._gateway = gateway or TelegramGateway()

    async def _config(self, agent_id: str) -> TelegramChannelConfig:
        config = await self._channels.get_telegram(agent_id)
        if config is None:
            raise ChannelNotConfigured("Telegram")
        if not config.bot_token:
            logger.error("telegram_token_missing", agent_id=agent_id)
            raise ConfigurationError("Bot token missing")
        return config

    async def handle_update(
        self, agent_id: str, body: bytes, secret_header: str | None = None
    ) -> dict[str, Any]:
        """Check the webhook secret on the raw body, then answer one update."""
        if not agent_id:
            raise ValidationFailed("agentId is required")
        config = await self._config(agent_id)

        if config.webhook_secret:
            if not secret_header or not hmac.compare_digest(
                secret_header.encode(), config.webhook_secret.encode()
            ):
                logger.warning("telegram_secret_mismatch", agent_id=agent_id)
                raise Unauthorized("Invalid webhook secret")

        try:
            update = json.loads(body) if body else {}
        except ValueError as e:
            raise ValidationFailed("Invalid JSON") from e
        if not isinstance(update, dict):
            raise ValidationFailed("Invalid update")

        parsed, chat_id, callback_id = _parse_update(update)
        if parsed is None:
            logger.debug("telegram_update_ignored", agent_id=agent_id, update_id=update.get("update_id"))
            return {"ok": True}

        inbound = InboundMessage(
            platform=parsed.platform,
            agent_id=agent_id,
            external_user_id=parsed.external_user_id,
            text=parsed.text,
            chat_id=chat_id,
            replay_history=parsed.replay_history,
        )
        turn = await self.process(inbound)

        try:
            await self._gateway.send_message(
                config.bot_token,
                OutgoingMessage(chat_id=chat_id, text=self.deliverable_text(turn)),
            )
        except (TelegramError, TelegramTokenRejected) as e:
            logger.error("telegram_send_failed", agent_id=agent_id, chat_id=chat_id, error=str(e))

        if callback_id:
            try:
                await self._gateway.answer_callback_query(config.bot_token, callback_id)
            except (TelegramError, TelegramTokenRejected) as e:
                logger.warning("telegram_callback_answer_failed", agent_id=agent_id, error=str(e))

        return {"ok": True}

    async def activate_webhook(self, agent_id: str, base_url: str) -> dict[str, Any]:
        """Point the bot's webhook at this relay. Safe to repeat."""
        if not agent_id:
            raise ValidationFailed("agentId is required")
        await self.resolver.require_agent(agent_id)
        config = await self._config(agent_id)

        webhook_url = f"{base_url.rstrip('/')}/telegram/webhook?agentId={agent_id}"
        secret = config.webhook_secret or secrets.token_urlsafe(32)
        try:
            await self._gateway.set_webhook(config.bot_token, webhook_url, secret)
        except TelegramTokenRejected:
            logger.warning("telegram_token_rejected", agent_id=agent_id)
            raise
        except TelegramError as e:
            logger.error("telegram_set_webhook_failed", agent_id=agent_id, error=str(e))
            raise ConfigurationError(f"Telegram setWebhook failed: {e}") from e

        await self._channels.update_telegram_webhook(agent_id, webhook_url, secret, True)
        logger.info("telegram_webhook_activated", agent_id=agent_id, webhook_url=webhook_url)
        return {"ok": True, "webhookUrl": webhook_url}

    async def validate_token(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Check a bot token (given directly or via a stored agent config) with getMe."""
        token = payload.get("botToken")
        if isinstance(token, str) and token.strip():
            token = token.strip()
        else:
            agent_id = payload.get("agentId")
            if not isinstance(agent_id, str) or not agent_id.strip():
                raise ValidationFailed("botToken or agentId is required")
            token = (await self._config(agent_id.strip())).bot_token

        if not TOKEN_PATTERN.match(token):
            raise ValidationFailed("Invalid bot token format")
        try:
            bot = await self._gateway.get_me(token)
        except TelegramError as e:
            logger.error("telegram_get_me_failed", error=str(e))
            raise ConfigurationError(f"Telegram getMe failed: {e}") from e
        return {"ok": True, "bot": bot}
