"""LLM provider backends: Anthropic SDK and OpenAI-compatible HTTP APIs."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import anthropic
import httpx

from agent_relay.config import ProviderConfig
from agent_relay.log import get_logger

logger = get_logger(__name__)

DEFAULT_ANTHROPIC_MODEL = "claude-3-5-haiku-latest"
DEFAULT_OPENROUTER_URL = "https://openrouter.ai/api/v1"


class ProviderError(Exception):
    """A provider call failed; ``reason`` names the degradation category."""

    reason = "provider_unavailable"


class ProviderRejected(ProviderError):
    """The provider refused the request (bad key, bad request)."""

    reason = "provider_rejected"


class ProviderUnavailable(ProviderError):
    reason = "provider_unavailable"


class MalformedResponse(ProviderError):
    reason = "malformed_response"


@dataclass
class ProviderReply:
    text: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0


class LLMProvider(ABC):
    """One upstream model API."""

    name: str = "provider"

    @abstractmethod
    async def complete(
        self,
        system: str,
        messages: list[dict[str, str]],
        temperature: float,
        preferred_model: str | None = None,
    ) -> ProviderReply:
        """Return a non-empty reply or raise ProviderError."""
        ...

    async def aclose(self) -> None:
        return None


def normalize_turns(messages: list[dict[str, str]]) -> list[dict[str, str]]:
    """Shape a history for APIs that require alternating turns starting with a user turn.

    Empty turns are dropped, consecutive same-role turns are merged and
    leading assistant turns are removed.
    """
    turns: list[dict[str, str]] = []
    for msg in messages:
        role = msg.get("role")
        content = (msg.get("content") or "").strip()
        if role not in ("user", "assistant") or not content:
            continue
        if not turns and role == "assistant":
            continue
        if turns and turns[-1]["role"] == role:
            turns[-1]["content"] += "\n\n" + content
        else:
            turns.append({"role": role, "content": content})
    return turns


class AnthropicProvider(LLMProvider):
    """Anthropic API backend using the official SDK."""

    def __init__(self, config: ProviderConfig, client: Any = None):
        self.name = config.name
        self._model = config.model or DEFAULT_ANTHROPIC_MODEL
        self._max_tokens = config.max_tokens
        self._client = client or anthropic.AsyncAnthropic(
            api_key=config.api_key,
            base_url=config.base_url,
            max_retries=0,
        )

    def _choose_model(self, preferred_model: str | None) -> str:
        if preferred_model and preferred_model.startswith("claude"):
            return preferred_model
        return self._model

    async def complete(
        self,
        system: str,
        messages: list[dict[str, str]],
        temperature: float,
        preferred_model: str | None = None,
    ) -> ProviderReply:
        model = self._choose_model(preferred_model)
        turns = normalize_turns(messages)
        if not turns:
            raise MalformedResponse("no user turn to send")

        logger.debug("api_request", provider=self.name, model=model, message_count=len(turns))
        try:
            response = await self._client.messages.create(
                model=model,
                max_tokens=self._max_tokens,
                system=system,
                messages=turns,
                temperature=temperature,
            )
        except (anthropic.AuthenticationError, anthropic.BadRequestError,
                anthropic.PermissionDeniedError, anthropic.NotFoundError) as e:
            raise ProviderRejected(str(e)) from e
        except anthropic.APIError as e:
            raise ProviderUnavailable(str(e)) from e

        text = "".join(
            getattr(block, "text", "")
            for block in (response.content or [])
            if getattr(block, "type", None) == "text"
        ).strip()
        if not text:
            raise MalformedResponse("empty completion")
        usage = getattr(response, "usage", None)
        logger.debug(
            "api_response",
            provider=self.name,
            model=model,
            input_tokens=getattr(usage, "input_tokens", 0),
            output_tokens=getattr(usage, "output_tokens", 0),
        )
        return ProviderReply(
            text=text,
            model=model,
            input_tokens=getattr(usage, "input_tokens", 0) or 0,
            output_tokens=getattr(usage, "output_tokens", 0) or 0,
        )

    async def aclose(self) -> None:
        close = getattr(self._client, "close", None)
        if close is not None:
            await close()


class OpenAICompatibleProvider(LLMProvider):
    """Chat-completions API over httpx (OpenRouter and compatible gateways)."""

    def __init__(
        self,
        config: ProviderConfig,
        default_model: str = "openai/gpt-4o-mini",
        client: httpx.AsyncClient | None = None,
    ):
        self.name = config.name
        self._model = config.model or default_model
        self._max_tokens = config.max_tokens
        self._api_key = config.api_key
        base_url = (config.base_url or DEFAULT_OPENROUTER_URL).rstrip("/")
        self._client = client or httpx.AsyncClient()
        self._url = f"{base_url}/chat/completions"

    def _choose_model(self, preferred_model: str | None) -> str:
        if preferred_model and "/" in preferred_model:
            return preferred_model
        return self._model

    async def complete(
        self,
        system: str,
        messages: list[dict[str, str]],
        temperature: float,
        preferred_model: str | None = None,
    ) -> ProviderReply:
        model = self._choose_model(preferred_model)
        payload = {
            "model": model,
            "messages": [{"role": "system", "content": system}, *messages],
            "temperature": temperature,
            "max_tokens": self._max_tokens,
        }
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

        logger.debug("api_request", provider=self.name, model=model, message_count=len(messages))
        try:
            response = await self._client.post(self._url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise ProviderUnavailable(f"{type(e).__name__}: {e}") from e

        if response.status_code in (400, 401, 403):
            raise ProviderRejected(f"HTTP {response.status_code}")
        if response.status_code >= 300:
            raise ProviderUnavailable(f"HTTP {response.status_code}")

        try:
            data = response.json()
            text = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise MalformedResponse(f"unexpected response shape: {e}") from e
        if not isinstance(text, str) or not text.strip():
            raise MalformedResponse("empty completion")

        usage = data.get("usage") or {}
        return ProviderReply(
            text=text.strip(),
            model=model,
            input_tokens=usage.get("prompt_tokens", 0) or 0,
            output_tokens=usage.get("completion_tokens", 0) or 0,
        )

    async def aclose(self) -> None:
        await self._client.aclose()


def build_providers(configs: list[ProviderConfig], default_model: str) -> list[LLMProvider]:
    """Instantiate providers with a non-empty API key, in config order."""
    providers: list[LLMProvider] = []
    for cfg in configs:
        if not cfg.configured:
            logger.info("provider_skipped", provider=cfg.name, reason="no_api_key")
            continue
        match cfg.kind:
            case "anthropic":
                providers.append(AnthropicProvider(cfg))
            case "openai_compatible":
                providers.append(OpenAICompatibleProvider(cfg, default_model=default_model))
            case _:
                logger.warning("provider_unknown_kind", provider=cfg.name, kind=cfg.kind)
    return providers
