"""Shared fixtures: a seeded relay on a temporary SQLite file and fake transports."""

from __future__ import annotations

import httpx
import pytest
import pytest_asyncio
from nacl.signing import SigningKey

from agent_relay.ai.providers import LLMProvider
from agent_relay.app import RelayApp, create_app
from agent_relay.config import (
    AgentSeed,
    AppConfig,
    DiscordConfig,
    DiscordSeed,
    FormFieldSeed,
    KnowledgeSeed,
    MetaSeed,
    StorageConfig,
    TelegramSeed,
)
from tests.fakes import BACKEND_KEY, TELEGRAM_TOKEN, FakeGraph, FakeTelegramGateway


@pytest.fixture
def signing_key() -> SigningKey:
    return SigningKey.generate()


@pytest.fixture
def config(tmp_path, signing_key) -> AppConfig:
    return AppConfig(
        storage=StorageConfig(db_path=str(tmp_path / "relay.db")),
        discord=DiscordConfig(backend_key=BACKEND_KEY),
        agents=[
            AgentSeed(
                id="support",
                name="Support Bot",
                system_prompt="You are a support assistant.",
                welcome_message="Hi!",
                temperature=0.5,
                collect_user_info=True,
                form_fields=[
                    FormFieldSeed(id="name", label="Name", required=True),
                    FormFieldSeed(id="email", type="email", label="Email"),
                    FormFieldSeed(id="plan", type="select", label="Plan"),
                ],
                knowledge=[
                    KnowledgeSeed(input="Opening hours", output="9 to 5"),
                    KnowledgeSeed(input="Refunds", output="Within 30 days"),
                ],
                telegram=TelegramSeed(bot_token=TELEGRAM_TOKEN),
                discord=DiscordSeed(
                    client_id="app-1",
                    bot_token="discord-token",
                    public_key=signing_key.verify_key.encode().hex(),
                ),
                meta=MetaSeed(
                    platform="messenger",
                    verify_token="verify-me",
                    access_token="page-token",
                    whatsapp_phone_number_id="PNID",
                ),
            ),
            AgentSeed(
                id="sales",
                name="Sales Bot",
                meta=MetaSeed(
                    platform="whatsapp",
                    verify_token="sales-verify",
                    access_token="sales-token",
                    app_secret="shh",
                ),
            ),
        ],
    )


@pytest.fixture
def telegram_gateway() -> FakeTelegramGateway:
    return FakeTelegramGateway()


@pytest.fixture
def graph() -> FakeGraph:
    return FakeGraph()


@pytest_asyncio.fixture
async def make_relay(config, telegram_gateway, graph):
    """Build and start relays; each is stopped at teardown."""
    started: list[RelayApp] = []

    async def _make(providers: list[LLMProvider] | None = None, **overrides) -> RelayApp:
        cfg = config.model_copy(update=overrides) if overrides else config
        relay = RelayApp(
            cfg,
            providers=providers or [],
            telegram_gateway=telegram_gateway,
            graph_client=graph,
        )
        await relay.start()
        started.append(relay)
        return relay

    yield _make
    for relay in started:
        await relay.stop()


@pytest_asyncio.fixture
async def relay(make_relay) -> RelayApp:
    return await make_relay()


@pytest_asyncio.fixture
async def make_client():
    """HTTP clients bound to a relay's ASGI app. The relay is started by make_relay."""
    clients: list[httpx.AsyncClient] = []

    def _make(relay: RelayApp) -> httpx.AsyncClient:
        client = httpx.AsyncClient(
            transport=httpx.ASGITransport(app=create_app(relay)), base_url="http://test"
        )
        clients.append(client)
        return client

    yield _make
    for client in clients:
        await client.aclose()


@pytest_asyncio.fixture
async def client(relay, make_client) -> httpx.AsyncClient:
    return make_client(relay)

