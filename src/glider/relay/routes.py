"""FastAPI routes for the relay's HTTP surface and WebSocket endpoints."""

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import FastAPI, Request, WebSocket
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import ValidationError

from glider import __version__
from glider.errors import GliderError
from glider.protocol import Command
from glider.relay.relay import CLOSE_NORMAL, Relay

log = logging.getLogger(__name__)


def create_app(relay: Relay | None = None) -> FastAPI:
    """Create the relay application around a Relay instance."""
    app = FastAPI(
        title="Glider Relay",
        description="CDP relay between a browser extension and automation clients",
        version=__version__,
    )
    app.state.relay = relay or Relay()
    _register_routes(app)
    return app


def _register_routes(app: FastAPI) -> None:
    """Register HTTP and WebSocket routes."""
    relay: Relay = app.state.relay

    @app.get("/")
    async def index() -> PlainTextResponse:
        return PlainTextResponse("OK")

    @app.get("/status")
    async def status() -> dict[str, Any]:
        """Extension connection flag plus target and client counts."""
        return relay.status()

    @app.get("/targets")
    async def targets() -> list[dict[str, Any]]:
        return relay.targets()

    @app.post("/attach")
    async def attach() -> JSONResponse:
        """Ask the extension to attach the active tab."""
        try:
            result = await relay.attach_active_tab()
        except GliderError as e:
            return JSONResponse({"error": str(e)}, status_code=500)
        return JSONResponse(result)

    @app.post("/cdp")
    async def cdp(request: Request) -> JSONResponse:
        """Single-shot command: the raw result, or ``{"error": ...}`` with status 500."""
        try:
            command = Command.model_validate(json.loads(await request.body()))
        except (json.JSONDecodeError, ValidationError) as e:
            return JSONResponse({"error": str(e)}, status_code=500)

        try:
            result = await relay.route_command(command.method, command.params, command.session_id)
        except GliderError as e:
            return JSONResponse({"error": str(e)}, status_code=500)
        return JSONResponse(result)

    @app.websocket("/extension")
    async def extension_endpoint(websocket: WebSocket) -> None:
        """The browser extension's control channel."""
        await websocket.accept()
        link = await relay.connect_upstream(websocket)
        try:
            async for raw in websocket.iter_text():
                await relay.handle_upstream_text(link, raw)
        finally:
            await relay.disconnect_upstream(link)

    @app.websocket("/cdp")
    @app.websocket("/cdp/{client_id}")
    async def cdp_endpoint(websocket: WebSocket, client_id: str = "default") -> None:
        """A downstream automation client."""
        await websocket.accept()
        link = relay.register_client(client_id, websocket)
        if link is None:
            await websocket.close(code=CLOSE_NORMAL, reason="Client ID already connected")
            return
        try:
            async for raw in websocket.iter_text():
                relay.handle_client_text(link, raw)
        finally:
            relay.unregister_client(link)
