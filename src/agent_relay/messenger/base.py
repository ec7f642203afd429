"""Shared behavior for channel adapters."""

from __future__ import annotations

from agent_relay.ai.generator import FRIENDLY_FALLBACK
from agent_relay.core.pipeline import ConversationPipeline, TurnResult
from agent_relay.log import get_logger
from agent_relay.messenger.models import InboundMessage
from agent_relay.storage.base import ChannelConfigStore

logger = get_logger(__name__)


class ChannelAdapter:
    """Base class for channel adapters.

    A subclass authenticates and parses its platform's payloads, then hands an
    :class:`InboundMessage` to :meth:`process`, and finally delivers the reply
    through its own transport.
    """

    def __init__(self, pipeline: ConversationPipeline, channels: ChannelConfigStore):
        self._pipeline = pipeline
        self._channels = channels

    @property
    def resolver(self):
        return self._pipeline.resolver

    async def process(self, inbound: InboundMessage) -> TurnResult:
        """Resolve the session for the sender and run one turn."""
        agent = await self.resolver.require_agent(inbound.agent_id)
        session = await self.resolver.resolve_or_create(
            inbound.agent_id, inbound.external_user_id, inbound.platform.value
        )
        return await self._pipeline.run_turn(
            agent,
            session,
            inbound.text,
            source=inbound.platform.value,
            replay_history=inbound.replay_history,
        )

    @staticmethod
    def deliverable_text(turn: TurnResult) -> str:
        """Text to send to an end user; degraded replies get a generic apology."""
        if turn.degraded:
            return FRIENDLY_FALLBACK
        return turn.text
