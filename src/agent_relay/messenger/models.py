"""Normalized message models shared by all channel adapters."""

from __future__ import annotations

from dataclasses import dataclass

from agent_relay.core.types import Platform


@dataclass(frozen=True, slots=True)
class InboundMessage:
    """A channel event reduced to what the pipeline needs."""

    platform: Platform
    agent_id: str
    external_user_id: str
    text: str
    chat_id: str = ""
    replay_history: bool = True


@dataclass(frozen=True, slots=True)
class OutgoingMessage:
    chat_id: str
    text: str
