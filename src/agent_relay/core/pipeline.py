"""Conversation pipeline: persist user turn, build context, generate, persist reply."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from agent_relay.ai.context import (
    KnowledgeRetriever,
    build_messages,
    compose_system_prompt,
    history_from_records,
)
from agent_relay.ai.generator import GenerationResult, ResponseGenerator
from agent_relay.core.session import SessionResolver
from agent_relay.core.types import Role
from agent_relay.log import get_logger
from agent_relay.storage.models import Agent, ChatSession

logger = get_logger(__name__)


@dataclass
class TurnResult:
    session: ChatSession
    result: GenerationResult

    @property
    def text(self) -> str:
        return self.result.text

    @property
    def degraded(self) -> bool:
        return self.result.degraded


class ConversationPipeline:
    """Runs one user turn end to end for any channel."""

    def __init__(
        self,
        resolver: SessionResolver,
        retriever: KnowledgeRetriever,
        generator: ResponseGenerator,
        history_limit: int = 20,
    ):
        self._resolver = resolver
        self._retriever = retriever
        self._generator = generator
        self._history_limit = history_limit

    @property
    def resolver(self) -> SessionResolver:
        return self._resolver

    async def run_turn(
        self,
        agent: Agent,
        session: ChatSession,
        text: str,
        source: str,
        history: Optional[list[dict[str, str]]] = None,
        replay_history: bool = True,
        system_prompt: Optional[str] = None,
        preferred_model: Optional[str] = None,
    ) -> TurnResult:
        """Process a user message on an already-resolved session.

        ``history`` supplies prior turns directly (widget); otherwise stored
        history is replayed when ``replay_history`` is set.
        """
        store = self._resolver.store

        if history is None and replay_history:
            prior = await store.get_messages(session.session_id, limit=self._history_limit)
            history = history_from_records(prior)
        elif history is None:
            history = []

        await store.append_message(session.session_id, Role.USER.value, text, {"source": source})

        context_block = await self._retriever.build_context_block(agent.id)
        system = compose_system_prompt(system_prompt or agent.system_prompt, context_block)
        messages = build_messages(history, text)

        result = await self._generator.generate_reply(
            system, messages, temperature=agent.temperature, preferred_model=preferred_model
        )

        metadata = {"source": source}
        if result.degraded:
            metadata["degraded"] = result.reason
        await store.append_message(session.session_id, Role.ASSISTANT.value, result.text, metadata)
        await store.touch(session.session_id)

        logger.info(
            "turn_complete",
            agent_id=agent.id,
            session_id=session.session_id,
            source=source,
            degraded=result.degraded,
            provider=result.provider,
        )
        return TurnResult(session=session, result=result)
