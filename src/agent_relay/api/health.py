"""Liveness and configuration-presence endpoints. Never exposes secret values."""

from __future__ import annotations

from pathlib import Path

from fastapi import APIRouter, Request, Response

from agent_relay.api.deps import get_relay

router = APIRouter(tags=["health"])

STATIC_DIR = Path(__file__).resolve().parent.parent / "static"


@router.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@router.get("/llm/health")
async def llm_health(request: Request) -> dict:
    config = get_relay(request).config
    configured = [p for p in config.llm.providers if p.configured]
    return {
        "ok": bool(configured),
        "hasAnthropic": any(p.kind == "anthropic" for p in configured),
        "hasOpenRouter": any(p.kind == "openai_compatible" for p in configured),
        "hasDiscordBackendKey": bool(config.discord.backend_key),
        "hasDiscordPublicKey": bool(config.discord.public_key),
    }


@router.get("/widget.js", include_in_schema=False)
async def widget_script() -> Response:
    script = (STATIC_DIR / "widget.js").read_text(encoding="utf-8")
    return Response(
        script,
        media_type="application/javascript",
        headers={"Cache-Control": "public, max-age=300"},
    )
