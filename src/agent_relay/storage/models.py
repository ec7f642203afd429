"""Data models for storage layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

DEFAULT_SYSTEM_PROMPT = "You are a helpful AI assistant."
DEFAULT_TEMPERATURE = 0.7

_FORM_FIELD_TYPES = frozenset({"text", "email", "tel", "textarea", "select"})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class FormField:
    id: str
    label: str
    type: str = "text"
    required: bool = False
    value: Optional[str] = None
    options: list[str] = field(default_factory=list)

    def to_schema(self) -> dict[str, Any]:
        """Widget-facing field description with a normalized input type."""
        field_type = (self.type or "text").lower()
        if field_type not in _FORM_FIELD_TYPES:
            field_type = "text"
        if field_type == "select" and not self.options:
            field_type = "text"
        schema: dict[str, Any] = {
            "id": self.id,
            "type": field_type,
            "label": self.label,
            "required": self.required,
        }
        if self.value is not None:
            schema["value"] = self.value
        if field_type == "select":
            schema["options"] = list(self.options)
        return schema


@dataclass
class Agent:
    id: str
    name: str
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    welcome_message: str = ""
    temperature: float = DEFAULT_TEMPERATURE
    header_color: Optional[str] = None
    accent_color: Optional[str] = None
    background_color: Optional[str] = None
    profile_image: Optional[str] = None
    collect_user_info: bool = False
    form_fields: list[FormField] = field(default_factory=list)

    def public_projection(self) -> dict[str, Any]:
        """Fields the embeddable widget may see. No owner data, no channel secrets."""
        form_fields = (
            [f.to_schema() for f in self.form_fields] if self.collect_user_info else []
        )
        return {
            "id": self.id,
            "name": self.name,
            "welcomeMessage": self.welcome_message,
            "systemPrompt": self.system_prompt,
            "temperature": self.temperature,
            "headerColor": self.header_color,
            "accentColor": self.accent_color,
            "backgroundColor": self.background_color,
            "profileImage": self.profile_image,
            "collectUserInfo": self.collect_user_info,
            "formFields": form_fields,
        }


@dataclass
class ChatSession:
    session_id: str
    agent_id: str
    external_user_id: str
    platform: str
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=_utcnow)
    last_active_at: datetime = field(default_factory=_utcnow)

    @property
    def user_info(self) -> dict[str, str]:
        return dict(self.metadata.get("userInfo") or {})


@dataclass
class ChatMessage:
    session_id: str
    role: str  # "user" | "assistant"
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=_utcnow)
    id: Optional[int] = None


@dataclass
class KnowledgeEntry:
    agent_id: str
    input: Any
    output: Any
    created_at: datetime = field(default_factory=_utcnow)
    id: Optional[int] = None


@dataclass
class TelegramChannelConfig:
    agent_id: str
    bot_token: str
    bot_username: Optional[str] = None
    webhook_url: Optional[str] = None
    webhook_secret: Optional[str] = None
    is_active: bool = False


@dataclass
class DiscordChannelConfig:
    agent_id: str
    client_id: str
    bot_token: str = ""
    public_key: str = ""
    is_active: bool = False


@dataclass
class MetaChannelConfig:
    agent_id: str
    platform: str  # "messenger" | "whatsapp"
    verify_token: str
    access_token: str
    app_secret: Optional[str] = None
    page_id: Optional[str] = None
    whatsapp_phone_number_id: Optional[str] = None
    webhook_url: Optional[str] = None
    is_active: bool = False
