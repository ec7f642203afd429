"""Web widget adapter: session bootstrap, chat turns and pre-chat user info."""

from __future__ import annotations

from typing import Any

from agent_relay.ai.context import sanitize_client_history
from agent_relay.config import WidgetConfig
from agent_relay.core.errors import Forbidden, ValidationFailed, require_str
from agent_relay.core.pipeline import ConversationPipeline
from agent_relay.core.types import WIDGET_USER_ID, Platform
from agent_relay.log import get_logger
from agent_relay.messenger.base import ChannelAdapter
from agent_relay.storage.base import ChannelConfigStore

logger = get_logger(__name__)


def coerce_user_values(raw: Any) -> dict[str, str]:
    """Flatten a client-supplied mapping into string values, dropping nulls."""
    if not isinstance(raw, dict):
        return {}
    values: dict[str, str] = {}
    for key, value in raw.items():
        if value is None or isinstance(value, (dict, list)):
            continue
        values[str(key)] = str(value)
    return values


class WidgetAdapter(ChannelAdapter):
    """Session, chat and user-info operations for the embeddable widget."""

    def __init__(
        self,
        pipeline: ConversationPipeline,
        channels: ChannelConfigStore,
        config: WidgetConfig | None = None,
    ):
        super().__init__(pipeline, channels)
        self._config = config or WidgetConfig()

    async def create_session(self, payload: dict[str, Any]) -> dict[str, Any]:
        agent_id = require_str(payload, "agentId")
        agent = await self.resolver.require_agent(agent_id)
        session = await self.resolver.create_new(agent_id, WIDGET_USER_ID, Platform.WIDGET.value)
        return {"sessionId": session.session_id, "agent": agent.public_projection()}

    async def chat(self, payload: dict[str, Any]) -> dict[str, Any]:
        session_id = require_str(payload, "sessionId")
        agent_id = require_str(payload, "agentId")
        message = payload.get("message")
        if not isinstance(message, str) or not message.strip():
            raise ValidationFailed("message is required")
        message = message.strip()

        agent = await self.resolver.require_agent(agent_id)
        session = await self.resolver.get(session_id)
        if session.agent_id != agent_id:
            logger.warning(
                "widget_session_agent_mismatch",
                session_id=session_id,
                agent_id=agent_id,
            )
            raise Forbidden("Session does not belong to this agent")

        user_values = coerce_user_values(payload.get("user"))
        user_values.update(coerce_user_values(payload.get("userFields")))
        if user_values:
            session = await self.resolver.merge_user_info(session_id, user_values)

        history = sanitize_client_history(payload.get("history"), self._config.history_limit)

        system_prompt = None
        override = payload.get("systemPromptOverride")
        if isinstance(override, str) and override.strip():
            if self._config.allow_system_prompt_override:
                system_prompt = override.strip()
            else:
                logger.debug("widget_prompt_override_ignored", agent_id=agent_id)

        turn = await self._pipeline.run_turn(
            agent,
            session,
            message,
            source=Platform.WIDGET.value,
            history=history,
            system_prompt=system_prompt,
        )
        return {"reply": turn.text, "sessionId": session.session_id}

    async def save_user_info(self, payload: dict[str, Any]) -> dict[str, Any]:
        session_id = require_str(payload, "sessionId")
        user_info = payload.get("userInfo")
        if not isinstance(user_info, dict):
            raise ValidationFailed("userInfo is required")
        session = await self.resolver.merge_user_info(session_id, coerce_user_values(user_info))
        logger.info(
            "widget_user_info_saved", session_id=session_id, fields=sorted(session.user_info)
        )
        return {"ok": True}
