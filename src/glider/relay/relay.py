"""Session relay core.

One upstream connection (the browser extension) is multiplexed onto any
number of downstream client connections. The relay owns the session table,
forwards client commands upstream, fans extension events out to every
client, and answers the target-management methods the extension does not
implement from its own table.

Connections are anything with async ``send_json(data)`` and
``close(code, reason)``, which FastAPI's ``WebSocket`` provides.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from pydantic import ValidationError

from glider.config import RelayConfig
from glider.correlator import Correlator, SendFn
from glider.errors import EXTENSION_NOT_CONNECTED, GliderError, RemoteError, UpstreamUnavailable
from glider.protocol import Command, error_reply, event, is_reply, reply
from glider.relay.sessions import SessionTable

log = logging.getLogger(__name__)

CLOSE_NORMAL = 1000
CLOSE_REPLACED = 4001

BROWSER_VERSION = {
    "protocolVersion": "1.3",
    "product": "Chrome/Extension-Bridge",
    "revision": "1.0.0",
    "userAgent": "CDP-Bridge/1.0.0",
    "jsVersion": "V8",
}


class Connection(Protocol):
    async def send_json(self, data: Any) -> None: ...

    async def close(self, code: int = 1000, reason: str | None = None) -> None: ...


@dataclass(eq=False)
class UpstreamLink:
    """The extension connection and the calls in flight on it."""

    websocket: Connection
    correlator: Correlator
    ping_task: asyncio.Task[None] | None = None


@dataclass(eq=False)
class ClientLink:
    """A registered downstream client."""

    client_id: str
    websocket: Connection
    tasks: set[asyncio.Task[None]] = field(default_factory=set)


LocalHandler = Callable[[dict[str, Any], str | None], Any]


def _upstream_sender(websocket: Connection) -> SendFn:
    async def send(message: dict[str, Any]) -> None:
        try:
            await websocket.send_json(message)
        except Exception as e:
            log.warning("Send to extension failed: %s", e)
            raise UpstreamUnavailable() from e

    return send


class Relay:
    """Routes commands and events between clients and the extension."""

    def __init__(self, config: RelayConfig | None = None) -> None:
        self.config = config or RelayConfig()
        self.sessions = SessionTable()
        self._upstream: UpstreamLink | None = None
        self._clients: dict[str, ClientLink] = {}
        self._local_handlers: dict[str, LocalHandler] = {
            "Browser.getVersion": self._browser_version,
            "Target.setAutoAttach": self._acknowledge,
            "Target.setDiscoverTargets": self._acknowledge,
            "Target.getTargets": self._get_targets,
            "Target.attachToTarget": self._attach_to_target,
            "Target.getTargetInfo": self._get_target_info,
        }

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def upstream_connected(self) -> bool:
        return self._upstream is not None

    @property
    def upstream(self) -> UpstreamLink | None:
        return self._upstream

    @property
    def clients(self) -> dict[str, ClientLink]:
        return dict(self._clients)

    def status(self) -> dict[str, Any]:
        return {
            "extension": self.upstream_connected,
            "targets": len(self.sessions),
            "clients": len(self._clients),
        }

    def targets(self) -> list[dict[str, Any]]:
        return self.sessions.snapshot()

    # ------------------------------------------------------------------
    # Upstream (extension) lifecycle
    # ------------------------------------------------------------------

    async def connect_upstream(self, websocket: Connection) -> UpstreamLink:
        """Install a new extension connection, replacing any existing one."""
        link = UpstreamLink(
            websocket=websocket,
            correlator=Correlator(_upstream_sender(websocket), timeout=self.config.call_timeout),
        )
        previous, self._upstream = self._upstream, link

        if previous is not None:
            log.info("Replacing existing extension connection")
            self._retire(previous, UpstreamUnavailable("Extension connection replaced"))
            with contextlib.suppress(Exception):
                await previous.websocket.close(code=CLOSE_REPLACED, reason="Replaced")
            await self._invalidate("Extension replaced")

        if self.config.ping_interval > 0:
            link.ping_task = asyncio.create_task(self._keepalive(link))
        log.info("Extension connected")
        return link

    async def disconnect_upstream(self, link: UpstreamLink) -> None:
        """Tear down after the extension connection closed.

        A link that was already replaced is ignored.
        """
        if self._upstream is not link:
            return
        self._upstream = None
        self._retire(link, UpstreamUnavailable(EXTENSION_NOT_CONNECTED))
        log.info("Extension disconnected")
        await self._invalidate("Extension disconnected")

    def _retire(self, link: UpstreamLink, error: GliderError) -> None:
        if link.ping_task is not None:
            link.ping_task.cancel()
            link.ping_task = None
        link.correlator.fail_all(error)

    async def _invalidate(self, reason: str) -> None:
        """Drop every session and close every client; their view is stale."""
        self.sessions.clear()
        clients = list(self._clients.values())
        self._clients.clear()
        for client in clients:
            for task in client.tasks:
                task.cancel()
            with contextlib.suppress(Exception):
                await client.websocket.close(code=CLOSE_NORMAL, reason=reason)
        if clients:
            log.info("Closed %d client(s): %s", len(clients), reason)

    async def _keepalive(self, link: UpstreamLink) -> None:
        while True:
            await asyncio.sleep(self.config.ping_interval)
            try:
                await link.websocket.send_json({"method": "ping"})
            except Exception as e:
                log.debug("Keep-alive ping failed: %s", e)
                return

    async def handle_upstream_text(self, link: UpstreamLink, raw: str) -> None:
        try:
            message = json.loads(raw)
        except json.JSONDecodeError as e:
            log.error("Error parsing extension message: %s", e)
            return
        if not isinstance(message, dict):
            log.error("Ignoring non-object extension message")
            return
        try:
            await self.handle_upstream_message(link, message)
        except Exception as e:
            log.error("Error handling extension message: %s", e)

    async def handle_upstream_message(self, link: UpstreamLink, message: dict[str, Any]) -> None:
        """Process one message from the extension."""
        if link is not self._upstream:
            return
        log.debug("Extension message: %s", json.dumps(message)[:200])

        if is_reply(message):
            link.correlator.resolve(message)
            return

        method = message.get("method")
        params = message.get("params") or {}

        if method == "pong":
            return
        if method == "log":
            args = " ".join(str(arg) for arg in params.get("args", []))
            log.info("[ext:%s] %s", params.get("level", "info"), args)
            return
        if method == "forwardCDPEvent":
            await self._on_cdp_event(params)
            return

        log.debug("Ignoring extension message: %s", method)

    async def _on_cdp_event(self, params: dict[str, Any]) -> None:
        method = params.get("method")
        event_params = params.get("params") or {}

        if method == "Target.attachedToTarget":
            session = self.sessions.attach(event_params)
            if session is None:
                log.warning("Dropping attach event without a session id")
                return
            log.info("Target attached: %s", session.url)
        elif method == "Target.detachedFromTarget":
            self.sessions.detach(event_params.get("sessionId", ""))
            log.info("Target detached: %s", event_params.get("sessionId"))
        elif method == "Target.targetInfoChanged":
            self.sessions.update_info(event_params.get("targetInfo") or {})

        await self.broadcast(event(method or "", params.get("params"), params.get("sessionId")))

    async def broadcast(self, message: dict[str, Any]) -> None:
        """Send a message to every connected client, in order."""
        for client in list(self._clients.values()):
            await self._send(client, message)

    # ------------------------------------------------------------------
    # Downstream clients
    # ------------------------------------------------------------------

    def register_client(self, client_id: str, websocket: Connection) -> ClientLink | None:
        """Register a client; returns None when the id is already taken."""
        if client_id in self._clients:
            log.warning("Rejecting duplicate client id: %s", client_id)
            return None
        link = ClientLink(client_id=client_id, websocket=websocket)
        self._clients[client_id] = link
        log.info("CDP client connected: %s", client_id)
        return link

    def unregister_client(self, link: ClientLink) -> None:
        if self._clients.get(link.client_id) is link:
            del self._clients[link.client_id]
        for task in link.tasks:
            task.cancel()
        log.info("CDP client disconnected: %s", link.client_id)

    def handle_client_text(self, link: ClientLink, raw: str) -> asyncio.Task[None] | None:
        """Parse a client message and serve it in its own task.

        Commands are served concurrently so a slow upstream reply does not
        hold up the client's other commands.
        """
        try:
            command = Command.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as e:
            log.error("Error handling CDP message from %s: %s", link.client_id, e)
            return None

        task = asyncio.create_task(self.serve_command(link, command))
        link.tasks.add(task)
        task.add_done_callback(link.tasks.discard)
        return task

    async def serve_command(self, link: ClientLink, command: Command) -> None:
        """Answer one client command, then replay attachments if it asked to auto-attach."""
        if self._upstream is None:
            await self._send(link, error_reply(command.id, EXTENSION_NOT_CONNECTED))
            return

        try:
            result = await self.route_command(command.method, command.params, command.session_id)
        except GliderError as e:
            await self._send(link, error_reply(command.id, str(e), command.session_id))
            return

        await self._send(link, reply(command.id, result, command.session_id))

        # Clients learn about tabs from attach events; replay the ones that already exist.
        if command.method == "Target.setAutoAttach" and not command.session_id:
            for session in self.sessions:
                await self._send(link, session.attach_event())

    async def _send(self, link: ClientLink, message: dict[str, Any]) -> None:
        try:
            await link.websocket.send_json(message)
        except Exception as e:
            log.debug("Dropping message to client %s: %s", link.client_id, e)

    # ------------------------------------------------------------------
    # Command routing
    # ------------------------------------------------------------------

    async def route_command(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        session_id: str | None = None,
    ) -> Any:
        """Answer locally or forward to the extension.

        Without a session id the first tracked session is used.
        """
        params = params or {}
        if not session_id:
            first = self.sessions.first()
            session_id = first.session_id if first else None
        elif self.config.strict_sessions and session_id not in self.sessions:
            raise RemoteError(f"Unknown session: {session_id}")

        handler = self._local_handlers.get(method)
        if handler is not None:
            return handler(params, session_id)

        forward: dict[str, Any] = {"method": method, "params": params}
        if session_id:
            forward["sessionId"] = session_id
        return await self.request_upstream("forwardCDPCommand", forward)

    async def request_upstream(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        link = self._upstream
        if link is None:
            raise UpstreamUnavailable()
        return await link.correlator.call(method, params, timeout=timeout)

    async def attach_active_tab(self) -> Any:
        """Ask the extension to attach the active tab."""
        return await self.request_upstream("attachActiveTab", {})

    def _browser_version(self, params: dict[str, Any], session_id: str | None) -> dict[str, Any]:
        return dict(BROWSER_VERSION)

    def _acknowledge(self, params: dict[str, Any], session_id: str | None) -> dict[str, Any]:
        return {}

    def _get_targets(self, params: dict[str, Any], session_id: str | None) -> dict[str, Any]:
        return {"targetInfos": [session.attached_info() for session in self.sessions]}

    def _attach_to_target(self, params: dict[str, Any], session_id: str | None) -> dict[str, Any]:
        target_id = params.get("targetId")
        session = self.sessions.find_by_target(target_id)
        if session is None:
            raise RemoteError(f"Target {target_id} not found")
        return {"sessionId": session.session_id}

    def _get_target_info(self, params: dict[str, Any], session_id: str | None) -> dict[str, Any]:
        session = self.sessions.find_by_target(params.get("targetId"))
        if session is None and session_id:
            session = self.sessions.get(session_id)
        if session is None:
            session = self.sessions.first()
        return {"targetInfo": session.target_info} if session else {}

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def close(self, reason: str = "Relay shutting down") -> None:
        link, self._upstream = self._upstream, None
        if link is not None:
            self._retire(link, UpstreamUnavailable(reason))
            with contextlib.suppress(Exception):
                await link.websocket.close(code=CLOSE_NORMAL, reason=reason)
        await self._invalidate(reason)
