"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Literal, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8080
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])


class StorageConfig(BaseModel):
    db_path: str = "./data/agent_relay.db"


class ProviderConfig(BaseModel):
    name: str
    kind: str = "anthropic"  # "anthropic" | "openai_compatible"
    api_key: str = ""
    base_url: Optional[str] = None
    model: str = ""
    max_tokens: int = 1024

    @field_validator("api_key", mode="before")
    @classmethod
    def _blank_key(cls, value: Optional[str]) -> str:
        return value or ""

    @property
    def configured(self) -> bool:
        return bool(self.api_key.strip())


class LLMConfig(BaseModel):
    timeout: float = 30.0
    default_model: str = "openai/gpt-4o-mini"
    providers: list[ProviderConfig] = Field(default_factory=list)


class KnowledgeConfig(BaseModel):
    limit: int = 20

    @field_validator("limit")
    @classmethod
    def _clamp(cls, value: int) -> int:
        return max(1, min(100, value))


class WidgetConfig(BaseModel):
    history_limit: int = 20
    allow_system_prompt_override: bool = False


class TelegramConfig(BaseModel):
    api_timeout: float = 15.0


class DiscordConfig(BaseModel):
    public_key: str = ""
    backend_key: str = ""
    relay_url: str = ""
    gateway_agents: list[str] = Field(default_factory=list)

    @field_validator("public_key", "backend_key", "relay_url", mode="before")
    @classmethod
    def _blank(cls, value: Optional[str]) -> str:
        return value or ""


class MetaConfig(BaseModel):
    graph_api_version: str = "v18.0"
    graph_base_url: str = "https://graph.facebook.com"


class FormFieldSeed(BaseModel):
    id: str
    type: str = "text"
    label: str
    required: bool = False
    value: Optional[str] = None
    options: list[str] = Field(default_factory=list)


class KnowledgeSeed(BaseModel):
    input: str
    output: str


class TelegramSeed(BaseModel):
    bot_token: str
    bot_username: Optional[str] = None


class DiscordSeed(BaseModel):
    client_id: str
    bot_token: str = ""
    public_key: str = ""


class MetaSeed(BaseModel):
    platform: Literal["messenger", "whatsapp"] = "messenger"
    verify_token: str
    access_token: str
    app_secret: Optional[str] = None
    page_id: Optional[str] = None
    whatsapp_phone_number_id: Optional[str] = None


class AgentSeed(BaseModel):
    id: str
    name: str
    system_prompt: str = ""
    welcome_message: str = ""
    temperature: float = 0.7
    header_color: str = "#2563eb"
    accent_color: str = "#2563eb"
    background_color: str = "#ffffff"
    profile_image: Optional[str] = None
    collect_user_info: bool = False
    form_fields: list[FormFieldSeed] = Field(default_factory=list)
    knowledge: list[KnowledgeSeed] = Field(default_factory=list)
    telegram: Optional[TelegramSeed] = None
    discord: Optional[DiscordSeed] = None
    meta: Optional[MetaSeed] = None


class AppConfig(BaseModel):
    log_level: str = "INFO"
    log_format: str = "console"  # "console" | "json"
    data_dir: str = "./data"
    public_base_url: str = ""
    server: ServerConfig = Field(default_factory=ServerConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    knowledge: KnowledgeConfig = Field(default_factory=KnowledgeConfig)
    widget: WidgetConfig = Field(default_factory=WidgetConfig)
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)
    discord: DiscordConfig = Field(default_factory=DiscordConfig)
    meta: MetaConfig = Field(default_factory=MetaConfig)
    agents: list[AgentSeed] = Field(default_factory=list)

    @field_validator("public_base_url", mode="before")
    @classmethod
    def _blank_url(cls, value: Optional[str]) -> str:
        return value or ""


_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _interpolate_env_vars(text: str, extra: dict[str, str] | None = None) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values.

    Unset variables become an empty string, so an unset API key reads as
    "not configured" instead of a literal placeholder.
    """

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        if extra and var_name in extra:
            return extra[var_name]
        return os.environ.get(var_name, "")

    return _ENV_VAR_PATTERN.sub(_replace, text)


def load_config(config_path: str | Path = "config.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Load and validate configuration from YAML file with env-var interpolation."""
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    raw_text = config_file.read_text(encoding="utf-8")

    # First pass: extract data_dir for self-referencing
    raw_data = yaml.safe_load(raw_text) or {}
    data_dir = raw_data.get("data_dir", "./data")
    data_dir = _interpolate_env_vars(data_dir)

    # Second pass: interpolate all env vars
    interpolated = _interpolate_env_vars(raw_text, extra={"data_dir": data_dir})
    data = yaml.safe_load(interpolated) or {}

    return AppConfig(**data)
