"""Messenger / WhatsApp webhook endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse

from agent_relay.api.deps import get_relay, read_object

router = APIRouter(prefix="/meta", tags=["meta"])


@router.get("/webhook", response_class=PlainTextResponse)
async def verify(request: Request) -> PlainTextResponse:
    params = request.query_params
    challenge = await get_relay(request).meta.verify_handshake(
        params.get("agentId", "").strip(),
        params.get("hub.mode"),
        params.get("hub.verify_token"),
        params.get("hub.challenge"),
    )
    return PlainTextResponse(challenge)


@router.post("/webhook")
async def webhook(request: Request) -> dict:
    return await get_relay(request).meta.handle_event(
        request.query_params.get("agentId", "").strip(),
        await request.body(),
        signature=request.headers.get("X-Hub-Signature-256"),
    )


@router.post("/whatsapp/test-send")
async def whatsapp_test_send(request: Request) -> dict:
    payload = await read_object(request)
    return await get_relay(request).meta.test_send(payload)
