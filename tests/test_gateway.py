"""Discord gateway relay client and message filtering."""

import json
from types import SimpleNamespace

import httpx
import pytest

from agent_relay.messenger.discord_gateway import GatewayBot, RelayClient


async def test_relay_client_posts_with_backend_key():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["key"] = request.headers["X-Backend-Key"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"ok": True, "reply": "pong"})

    relay = RelayClient(
        "http://relay/discord/respond",
        "secret",
        httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    reply = await relay.respond("support", "discord_1", "ping")
    await relay.aclose()

    assert reply == "pong"
    assert seen == {
        "key": "secret",
        "body": {"agentId": "support", "userId": "discord_1", "text": "ping"},
    }


async def test_relay_client_raises_on_rejection():
    relay = RelayClient(
        "http://relay/discord/respond",
        "wrong",
        httpx.AsyncClient(
            transport=httpx.MockTransport(
                lambda r: httpx.Response(401, json={"error": "Unauthorized"})
            )
        ),
    )

    with pytest.raises(httpx.HTTPStatusError):
        await relay.respond("support", "discord_1", "ping")
    await relay.aclose()


async def test_relay_client_requires_reply_text():
    relay = RelayClient(
        "http://relay/discord/respond",
        "secret",
        httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, json={}))),
    )

    with pytest.raises(ValueError):
        await relay.respond("support", "discord_1", "ping")
    await relay.aclose()


async def test_direct_messages_are_answered_and_guild_messages_need_a_mention():
    relay = RelayClient("http://relay/discord/respond", "secret")
    bot = GatewayBot("support", "token", relay)

    assert bot.should_answer(SimpleNamespace(guild=None, mentions=[]))
    # Not logged in yet, so the bot cannot have been mentioned.
    assert not bot.should_answer(SimpleNamespace(guild=object(), mentions=[]))
    await relay.aclose()
