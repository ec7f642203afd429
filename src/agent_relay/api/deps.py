"""Request helpers shared by the routers."""

from __future__ import annotations

import json
from typing import Any

from fastapi import Request

from agent_relay.app import RelayApp
from agent_relay.core.errors import ValidationFailed


def get_relay(request: Request) -> RelayApp:
    return request.app.state.relay


async def read_json(request: Request) -> Any:
    body = await request.body()
    if not body:
        return {}
    try:
        return json.loads(body)
    except ValueError as e:
        raise ValidationFailed("Invalid JSON") from e


async def read_object(request: Request) -> dict[str, Any]:
    payload = await read_json(request)
    if not isinstance(payload, dict):
        raise ValidationFailed("Request body must be a JSON object")
    return payload


def public_base_url(request: Request, relay: RelayApp) -> str:
    configured = relay.config.public_base_url.strip()
    if configured:
        return configured.rstrip("/")
    return str(request.base_url).rstrip("/")
