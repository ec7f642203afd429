"""Telegram webhook, activation and token validation endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Request

from agent_relay.api.deps import get_relay, public_base_url, read_object
from agent_relay.messenger.telegram import SECRET_HEADER

router = APIRouter(prefix="/telegram", tags=["telegram"])


@router.post("/webhook")
async def webhook(request: Request) -> dict:
    return await get_relay(request).telegram.handle_update(
        request.query_params.get("agentId", "").strip(),
        await request.body(),
        secret_header=request.headers.get(SECRET_HEADER),
    )


@router.post("/activate")
async def activate(request: Request) -> dict:
    relay = get_relay(request)
    payload = await read_object(request)
    agent_id = request.query_params.get("agentId") or payload.get("agentId") or ""
    return await relay.telegram.activate_webhook(
        str(agent_id).strip(), public_base_url(request, relay)
    )


@router.post("/validate")
async def validate(request: Request) -> dict:
    payload = await read_object(request)
    return await get_relay(request).telegram.validate_token(payload)
