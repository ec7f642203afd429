"""Web widget endpoints: session bootstrap, chat and pre-chat user info."""

from __future__ import annotations

from fastapi import APIRouter, Request

from agent_relay.api.deps import get_relay, read_object

router = APIRouter(tags=["widget"])


@router.post("/session")
async def create_session(request: Request) -> dict:
    payload = await read_object(request)
    return await get_relay(request).widget.create_session(payload)


@router.post("/chat")
async def chat(request: Request) -> dict:
    payload = await read_object(request)
    return await get_relay(request).widget.chat(payload)


@router.post("/user")
async def save_user_info(request: Request) -> dict:
    payload = await read_object(request)
    return await get_relay(request).widget.save_user_info(payload)
