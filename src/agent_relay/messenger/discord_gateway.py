"""Long-lived Discord gateway bot that forwards messages to the relay endpoint."""

from __future__ import annotations

import asyncio
from typing import Any

import discord
import httpx
from discord.ext import commands

from agent_relay.core.types import Platform, external_user_id
from agent_relay.log import get_logger

logger = get_logger(__name__)

DISCORD_MESSAGE_LIMIT = 2000
RELAY_FAILURE_REPLY = "Sorry, I'm having trouble reaching the assistant right now."


def split_message(text: str, max_length: int = DISCORD_MESSAGE_LIMIT) -> list[str]:
    """Split text into platform-sized chunks, preferring newline boundaries."""
    if len(text) <= max_length:
        return [text]

    chunks = []
    while text:
        if len(text) <= max_length:
            chunks.append(text)
            break
        split_pos = text.rfind("\n", 0, max_length)
        if split_pos <= 0:
            split_pos = max_length
        chunks.append(text[:split_pos])
        text = text[split_pos:].lstrip("\n")
    return chunks


class RelayClient:
    """POSTs gateway messages to ``/discord/respond`` with the backend key."""

    def __init__(self, relay_url: str, backend_key: str, client: httpx.AsyncClient | None = None):
        self._url = relay_url
        self._key = backend_key
        self._client = client or httpx.AsyncClient(timeout=60.0)

    async def respond(self, agent_id: str, user_id: str, text: str) -> str:
        response = await self._client.post(
            self._url,
            json={"agentId": agent_id, "userId": user_id, "text": text},
            headers={"X-Backend-Key": self._key},
        )
        response.raise_for_status()
        reply = response.json().get("reply")
        if not isinstance(reply, str) or not reply:
            raise ValueError("relay returned no reply")
        return reply

    async def aclose(self) -> None:
        await self._client.aclose()


class GatewayBot:
    """One discord.py bot bound to one agent."""

    def __init__(self, agent_id: str, token: str, relay: RelayClient):
        self.agent_id = agent_id
        self._token = token
        self._relay = relay
        intents = discord.Intents.default()
        intents.message_content = True
        intents.dm_messages = True
        self._bot = commands.Bot(command_prefix="!", intents=intents)

        @self._bot.event
        async def on_ready() -> None:
            logger.info("discord_gateway_ready", user=str(self._bot.user), agent_id=self.agent_id)

        @self._bot.event
        async def on_message(message: discord.Message) -> None:
            if message.author == self._bot.user or message.author.bot:
                return
            await self._on_discord_message(message)

    def should_answer(self, message: discord.Message) -> bool:
        """DMs always; guild messages only when the bot is mentioned."""
        if message.guild is None:
            return True
        return self._bot.user is not None and self._bot.user in message.mentions

    async def _on_discord_message(self, message: discord.Message) -> None:
        text = (message.content or "").strip()
        if self._bot.user is not None:
            text = text.replace(self._bot.user.mention, "").strip()
        if not text or not self.should_answer(message):
            return
        if text == "!ping":
            await message.reply("Pong!")
            return

        user_id = external_user_id(Platform.DISCORD, message.author.id)
        try:
            async with message.channel.typing():
                reply = await self._relay.respond(self.agent_id, user_id, text)
        except (httpx.HTTPError, ValueError) as e:
            logger.error(
                "discord_relay_failed",
                agent_id=self.agent_id,
                channel_id=str(message.channel.id),
                error=str(e),
            )
            reply = RELAY_FAILURE_REPLY

        for chunk in split_message(reply):
            await message.channel.send(chunk)

    async def run(self) -> None:
        logger.info("discord_gateway_starting", agent_id=self.agent_id)
        await self._bot.start(self._token)

    async def close(self) -> None:
        await self._bot.close()


async def run_gateway(bots: list[GatewayBot], relay: RelayClient) -> None:
    """Run all bots until cancelled or one of them fails."""
    tasks: list[asyncio.Task[Any]] = [asyncio.create_task(b.run()) for b in bots]
    try:
        await asyncio.gather(*tasks)
    finally:
        for bot in bots:
            await bot.close()
        for task in tasks:
            task.cancel()
        await relay.aclose()
        logger.info("discord_gateway_stopped")
