"""Translate exceptions into ``{"error": ...}`` responses."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from agent_relay.core.errors import RelayError
from agent_relay.log import get_logger

logger = get_logger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization, X-Backend-Key",
}


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(RelayError)
    async def _relay_error(request: Request, exc: RelayError) -> JSONResponse:
        logger.info(
            "request_rejected",
            path=request.url.path,
            status=exc.status_code,
            error=exc.message,
        )
        return JSONResponse({"error": exc.message}, status_code=exc.status_code, headers=CORS_HEADERS)

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse({"error": "Invalid request"}, status_code=400, headers=CORS_HEADERS)

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
        logger.error("request_failed", path=request.url.path, error=str(exc), exc_info=exc)
        return JSONResponse(
            {"error": "Internal server error"}, status_code=500, headers=CORS_HEADERS
        )

    @app.options("/{rest:path}", include_in_schema=False)
    async def _preflight(rest: str) -> Response:
        return Response(status_code=204, headers=CORS_HEADERS)
