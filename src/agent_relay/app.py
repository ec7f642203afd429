"""Application orchestrator: wires storage, generation and channel adapters."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from agent_relay.ai.context import KnowledgeRetriever
from agent_relay.ai.generator import ResponseGenerator
from agent_relay.ai.providers import LLMProvider, build_providers
from agent_relay.config import AppConfig
from agent_relay.core.pipeline import ConversationPipeline
from agent_relay.core.session import SessionResolver
from agent_relay.log import get_logger
from agent_relay.messenger.discord import DiscordAdapter
from agent_relay.messenger.meta import GraphClient, MetaAdapter
from agent_relay.messenger.telegram import TelegramAdapter, TelegramGateway
from agent_relay.messenger.widget import WidgetAdapter
from agent_relay.storage.agent_repo import SqliteAgentStore, SqliteKnowledgeStore
from agent_relay.storage.channel_repo import SqliteChannelConfigStore
from agent_relay.storage.database import Database
from agent_relay.storage.session_repo import SqliteSessionStore

logger = get_logger(__name__)


class RelayApp:
    """Top-level application orchestrator.

    ``providers``, ``telegram_gateway`` and ``graph_client`` may be injected;
    otherwise they are built from configuration.
    """

    def __init__(
        self,
        config: AppConfig,
        providers: list[LLMProvider] | None = None,
        telegram_gateway: TelegramGateway | None = None,
        graph_client: GraphClient | None = None,
    ):
        self.config = config
        self.db = Database(config.storage.db_path)
        self.sessions = SqliteSessionStore(self.db)
        self.agents = SqliteAgentStore(self.db)
        self.knowledge = SqliteKnowledgeStore(self.db)
        self.channels = SqliteChannelConfigStore(self.db)

        if providers is None:
            providers = build_providers(config.llm.providers, config.llm.default_model)
        self.generator = ResponseGenerator(providers, timeout=config.llm.timeout)
        self.retriever = KnowledgeRetriever(self.knowledge, limit=config.knowledge.limit)
        self.resolver = SessionResolver(self.sessions, self.agents)
        self.pipeline = ConversationPipeline(
            self.resolver,
            self.retriever,
            self.generator,
            history_limit=config.widget.history_limit,
        )

        self.widget = WidgetAdapter(self.pipeline, self.channels, config.widget)
        self.telegram_gateway = telegram_gateway or TelegramGateway(
            timeout=config.telegram.api_timeout
        )
        self.telegram = TelegramAdapter(self.pipeline, self.channels, self.telegram_gateway)
        self.discord = DiscordAdapter(self.pipeline, self.channels, config.discord)
        self.graph = graph_client or GraphClient(config.meta)
        self.meta = MetaAdapter(self.pipeline, self.channels, self.graph)

    async def start(self) -> None:
        """Open the database and seed configured agents."""
        await self.db.initialize()
        await self.seed_agents()
        logger.info(
            "agent_relay_started",
            agent_count=len(self.config.agents),
            provider_count=len(self.generator.providers),
        )

    async def seed_agents(self) -> None:
        for seed in self.config.agents:
            await self.agents.upsert(seed)
            await self.knowledge.replace_entries(
                seed.id, [(k.input, k.output) for k in seed.knowledge]
            )
            if seed.telegram:
                await self.channels.upsert_telegram(seed.id, seed.telegram)
            if seed.discord:
                await self.channels.upsert_discord(seed.id, seed.discord)
            if seed.meta:
                webhook_url = ""
                if self.config.public_base_url:
                    base = self.config.public_base_url.rstrip("/")
                    webhook_url = f"{base}/meta/webhook?agentId={seed.id}"
                await self.channels.upsert_meta(seed.id, seed.meta, webhook_url)
            logger.info(
                "agent_seeded",
                agent_id=seed.id,
                knowledge=len(seed.knowledge),
                telegram=seed.telegram is not None,
                discord=seed.discord is not None,
                meta=seed.meta.platform if seed.meta else None,
            )

    async def stop(self) -> None:
        await self.generator.aclose()
        await self.telegram_gateway.aclose()
        await self.graph.aclose()
        await self.db.close()
        logger.info("agent_relay_stopped")


def create_app(relay: RelayApp) -> FastAPI:
    """Build the FastAPI application around a relay instance."""
    from agent_relay.api.routes import register_routes

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await relay.start()
        try:
            yield
        finally:
            await relay.stop()

    app = FastAPI(title="agent-relay", version="0.1.0", lifespan=lifespan)
    app.state.relay = relay
    register_routes(app, relay.config)
    return app
