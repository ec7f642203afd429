"""HTTP surface: routers, CORS and error translation."""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.datastructures import Headers
from starlette.responses import Response

from agent_relay.config import AppConfig


class PreflightCORSMiddleware(CORSMiddleware):
    """CORSMiddleware that answers accepted preflights with 204 No Content."""

    def preflight_response(self, request_headers: Headers) -> Response:
        response = super().preflight_response(request_headers)
        if response.status_code != 200:
            return response
        headers = {
            key: value
            for key, value in response.headers.items()
            if key not in ("content-length", "content-type")
        }
        return Response(status_code=204, headers=headers)


def register_routes(app: FastAPI, config: AppConfig) -> None:
    from agent_relay.api import discord, health, meta, telegram, widget
    from agent_relay.api.errors import install_error_handlers

    app.add_middleware(
        PreflightCORSMiddleware,
        allow_origins=config.server.cors_origins or ["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )
    install_error_handlers(app)

    app.include_router(health.router)
    app.include_router(widget.router)
    app.include_router(widget.router, prefix="/api/chat/widget")
    app.include_router(telegram.router)
    app.include_router(discord.router)
    app.include_router(meta.router)
