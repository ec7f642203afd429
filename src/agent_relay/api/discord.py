"""Discord signed-interaction and backend relay endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Request

from agent_relay.api.deps import get_relay, read_object

router = APIRouter(prefix="/discord", tags=["discord"])


@router.post("/interactions")
async def interactions(request: Request) -> dict:
    body = await request.body()
    agent_id = request.query_params.get("agentId") or None
    return await get_relay(request).discord.handle_interaction(
        body,
        signature=request.headers.get("X-Signature-Ed25519"),
        timestamp=request.headers.get("X-Signature-Timestamp"),
        agent_id=agent_id,
    )


def _backend_key(request: Request) -> str | None:
    key = request.headers.get("X-Backend-Key")
    if key:
        return key
    auth = request.headers.get("Authorization", "")
    if auth.lower().startswith("bearer "):
        return auth[7:].strip()
    return None


@router.post("/respond")
async def respond(request: Request) -> dict:
    payload = await read_object(request)
    return await get_relay(request).discord.respond(payload, _backend_key(request))
