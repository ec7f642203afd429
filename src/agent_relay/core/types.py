"""Shared types and enumerations."""

from __future__ import annotations

from enum import StrEnum


class Platform(StrEnum):
    WIDGET = "widget"
    TELEGRAM = "telegram"
    DISCORD = "discord"
    MESSENGER = "messenger"
    WHATSAPP = "whatsapp"


class Role(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"


WIDGET_USER_ID = "widget-user"


def external_user_id(platform: Platform, raw_id: str | int) -> str:
    """Namespace a platform user id, e.g. ``telegram_555``."""
    return f"{platform.value}_{raw_id}"
