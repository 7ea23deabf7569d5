"""WebSocket client for the relay's downstream endpoint."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import Callable
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake

from glider.config import RelayConfig
from glider.correlator import Correlator
from glider.errors import CallTimeout, RelayUnreachable, UpstreamUnavailable
from glider.protocol import is_reply

log = logging.getLogger(__name__)

EventHandler = Callable[[dict[str, Any]], None]

ATTACH_TIMEOUT = 0.5
ENABLED_DOMAINS = ("Runtime", "Page")


class RelayClient:
    """Issues CDP commands through the relay and receives its events.

    Usage:
        async with RelayClient.from_config(config.relay) as client:
            await client.init()
            result = await client.call("Runtime.evaluate", {"expression": "1 + 1"})
    """

    def __init__(
        self,
        url: str,
        client_id: str | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.url = f"{url.rstrip('/')}/{client_id}" if client_id else url
        self.timeout = timeout
        self.session_id: str | None = None
        self.target_id: str | None = None
        self._ws: Any | None = None
        self._correlator: Correlator | None = None
        self._reader: asyncio.Task[None] | None = None
        self._handlers: dict[str, list[EventHandler]] = {}
        self._initialized = False

    @classmethod
    def from_config(cls, config: RelayConfig, client_id: str | None = None) -> RelayClient:
        return cls(f"{config.ws_url}/cdp", client_id=client_id, timeout=config.call_timeout)

    @property
    def connected(self) -> bool:
        return self._reader is not None and not self._reader.done()

    async def __aenter__(self) -> RelayClient:
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def connect(self) -> None:
        """Open the WebSocket and start reading replies and events."""
        try:
            self._ws = await websockets.connect(self.url, max_size=None)
        except (OSError, InvalidHandshake) as e:
            raise RelayUnreachable(f"Relay not reachable at {self.url}: {e}") from e
        self._correlator = Correlator(self._send, timeout=self.timeout)
        self._reader = asyncio.create_task(self._read_loop(self._ws, self._correlator))
        log.debug("Connected to relay at %s", self.url)

    async def close(self) -> None:
        if self._reader is not None:
            self._reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader
            self._reader = None
        if self._ws is not None:
            with contextlib.suppress(Exception):
                await self._ws.close()
            self._ws = None
        self._initialized = False

    async def _send(self, message: dict[str, Any]) -> None:
        if self._ws is None:
            raise UpstreamUnavailable("Relay connection closed")
        try:
            await self._ws.send(json.dumps(message))
        except ConnectionClosed as e:
            raise UpstreamUnavailable(f"Relay connection closed: {e}") from e

    async def _read_loop(self, ws: Any, correlator: Correlator) -> None:
        try:
            async for raw in ws:
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    log.warning("Ignoring malformed message from relay")
                    continue
                if is_reply(message):
                    correlator.resolve(message)
                else:
                    self._dispatch(message)
        except ConnectionClosed as e:
            log.info("Relay closed the connection: %s", e)
        finally:
            correlator.fail_all(UpstreamUnavailable("Relay connection closed"))

    def _dispatch(self, message: dict[str, Any]) -> None:
        method = message.get("method", "")
        params = message.get("params") or {}
        if method == "Target.attachedToTarget" and self.session_id is None:
            self.session_id = params.get("sessionId")
            self.target_id = (params.get("targetInfo") or {}).get("targetId")
        elif method == "Target.detachedFromTarget" and params.get("sessionId") == self.session_id:
            self.session_id = None
            self.target_id = None
        for handler in list(self._handlers.get(method, ())):
            try:
                handler(params)
            except Exception:
                log.exception("Event handler for %s failed", method)

    def on(self, method: str, handler: EventHandler) -> None:
        self._handlers.setdefault(method, []).append(handler)

    def off(self, method: str, handler: EventHandler) -> None:
        handlers = self._handlers.get(method, [])
        if handler in handlers:
            handlers.remove(handler)

    def expect_event(self, method: str) -> asyncio.Future[dict[str, Any]]:
        """Future for the next ``method`` event; the handler is registered immediately."""
        future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()

        def handler(params: dict[str, Any]) -> None:
            if not future.done():
                future.set_result(params)

        self.on(method, handler)
        future.add_done_callback(lambda _: self.off(method, handler))
        return future

    async def wait_for_event(self, method: str, timeout: float) -> dict[str, Any]:
        """Suspend until the next ``method`` event arrives, or fail with CallTimeout."""
        try:
            return await asyncio.wait_for(self.expect_event(method), timeout)
        except asyncio.TimeoutError:
            raise CallTimeout(method, timeout) from None

    async def call(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        session_id: str | None = None,
        timeout: float | None = None,
    ) -> Any:
        """Issue one command; reconnects first if the relay dropped us.

        A reconnect after ``init()`` re-runs it, since the old session died
        with the connection.
        """
        if not self.connected:
            was_initialized = self._initialized
            await self.close()
            await self.connect()
            if was_initialized:
                await self.init()
        if self._correlator is None:
            raise UpstreamUnavailable("Relay connection closed")
        return await self._correlator.call(
            method, params, session_id=session_id or self.session_id, timeout=timeout
        )

    async def init(self, attach_timeout: float = ATTACH_TIMEOUT) -> str:
        """Discover the attached tab and enable the domains pages need.

        Returns the adopted session id.
        """
        if self._initialized and self.connected and self.session_id:
            return self.session_id
        if not self.connected:
            await self.close()
            await self.connect()

        self.session_id = None
        # The relay replays existing attachments right after acknowledging auto-attach.
        attached = self.expect_event("Target.attachedToTarget")
        try:
            await self.call(
                "Target.setAutoAttach",
                {"autoAttach": True, "waitForDebuggerOnStart": False, "flatten": True},
            )
            await asyncio.wait_for(attached, attach_timeout)
        except CallTimeout:
            raise
        except asyncio.TimeoutError:
            raise UpstreamUnavailable("No browser tab connected") from None
        finally:
            attached.cancel()
        if not self.session_id:
            raise UpstreamUnavailable("Attached tab has no session id")

        for domain in ENABLED_DOMAINS:
            await self.call(f"{domain}.enable")
        self._initialized = True
        return self.session_id
