"""FastAPI application exposing the streaming chat relay."""
from __future__ import annotations

import json
from typing import Any, Dict, Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.background import BackgroundTask

from . import __version__
from .config import load_config
from .errors import ClientValidationError, RelayError
from .relay import BODY_MESSAGE, ChatRelay
from .upstream import UpstreamSettings

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
}


# -----------------------------
# App factory
# -----------------------------
def create_app(
    config_path: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Build the relay app.

    ``transport`` is handed to every per-request upstream client; tests pass
    an :class:`httpx.MockTransport` to stand in for the provider.
    """
    cfg = load_config(config_path)
    settings = UpstreamSettings.from_config(cfg)

    # CORS
    cors_origins = cfg.get("server", {}).get("cors_origins", ["*"])

    app = FastAPI(title="RevisionAI Relay", version=__version__)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RelayError)
    async def relay_error(request: Request, exc: RelayError) -> JSONResponse:
        return JSONResponse(exc.payload(), status_code=exc.status_code)

    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {
            "ok": True,
            "configured": settings.api_key() is not None,
            "model": settings.model,
            "version": __version__,
        }

    @app.post("/api/chat")
    async def chat(request: Request):
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ClientValidationError(BODY_MESSAGE) from e

        relay = ChatRelay(settings, transport=transport)
        events = await relay.start(body)
        return StreamingResponse(
            events,
            media_type="text/event-stream",
            headers=SSE_HEADERS,
            background=BackgroundTask(relay.aclose),
        )

    return app
