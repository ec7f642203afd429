"""Response generator: provider fallback chain with graceful degradation."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional

from agent_relay.ai.providers import LLMProvider, ProviderError
from agent_relay.log import get_logger

logger = get_logger(__name__)

FRIENDLY_FALLBACK = (
    "Sorry, I'm having trouble processing your message right now. Please try again later."
)


@dataclass
class GenerationResult:
    text: str
    degraded: bool = False
    reason: Optional[str] = None
    provider: Optional[str] = None


def neutral_fallback(user_text: str) -> str:
    return f"You said: {user_text}"


class ResponseGenerator:
    """Tries each configured provider in order; never raises for upstream failures."""

    def __init__(self, providers: list[LLMProvider], timeout: float = 30.0):
        self._providers = list(providers)
        self._timeout = timeout

    @property
    def providers(self) -> list[LLMProvider]:
        return list(self._providers)

    async def generate_reply(
        self,
        system: str,
        messages: list[dict[str, str]],
        temperature: float = 0.7,
        preferred_model: str | None = None,
    ) -> GenerationResult:
        if not messages or messages[-1].get("role") != "user":
            raise ValueError("messages must end with a user message")
        user_text = messages[-1].get("content") or ""

        if not self._providers:
            logger.warning("generation_degraded", reason="no_provider")
            return GenerationResult(neutral_fallback(user_text), degraded=True, reason="no_provider")

        reason = "provider_unavailable"
        for provider in self._providers:
            try:
                reply = await asyncio.wait_for(
                    provider.complete(system, messages, temperature, preferred_model),
                    timeout=self._timeout,
                )
            except asyncio.TimeoutError:
                reason = "timeout"
                logger.warning("provider_timeout", provider=provider.name, timeout=self._timeout)
                continue
            except ProviderError as e:
                reason = e.reason
                logger.warning(
                    "provider_failed", provider=provider.name, reason=e.reason, error=str(e)
                )
                continue
            except Exception as e:
                reason = "provider_unavailable"
                logger.error("provider_error", provider=provider.name, error=str(e))
                continue

            logger.info(
                "generation_complete",
                provider=provider.name,
                model=reply.model,
                input_tokens=reply.input_tokens,
                output_tokens=reply.output_tokens,
            )
            return GenerationResult(reply.text, provider=provider.name)

        logger.warning("generation_degraded", reason=reason)
        return GenerationResult(neutral_fallback(user_text), degraded=True, reason=reason)

    async def aclose(self) -> None:
        for provider in self._providers:
            await provider.aclose()
