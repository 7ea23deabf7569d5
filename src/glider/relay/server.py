"""Relay web server lifecycle."""

from __future__ import annotations

import logging

import uvicorn

from glider.config import RelayConfig
from glider.relay.relay import Relay
from glider.relay.routes import create_app

log = logging.getLogger(__name__)


def _make_server(relay: Relay, config: RelayConfig) -> uvicorn.Server:
    app = create_app(relay)
    uv_config = uvicorn.Config(
        app,
        host=config.host,
        port=config.port,
        log_level="warning",
        access_log=False,
    )
    return uvicorn.Server(uv_config)


async def serve(config: RelayConfig) -> None:
    """Run the relay in the foreground until interrupted."""
    relay = Relay(config)
    server = _make_server(relay, config)
    log.info("CDP relay server running on ws://%s:%d", config.host, config.port)
    try:
        await server.serve()
    finally:
        await relay.close("Relay shutting down")
