"""Tests for the WebSocket relay client."""

from __future__ import annotations

import asyncio
import json
from typing import Any
from unittest.mock import AsyncMock

import pytest

from glider.client import RelayClient
from glider.config import RelayConfig
from glider.errors import CallTimeout, RelayUnreachable, RemoteError, UpstreamUnavailable


class FakeRelaySocket:
    """Stands in for a websockets connection to the relay.

    Every command is answered with an empty result (or a scripted error).
    ``Target.setAutoAttach`` is followed by one attach event per session,
    as the relay's replay does.
    """

    def __init__(self, sessions: tuple[str, ...] = ("s1",), errors: dict[str, str] | None = None):
        self.sessions = sessions
        self.errors = errors or {}
        self.sent: list[dict[str, Any]] = []
        self.incoming: asyncio.Queue[str | None] = asyncio.Queue()
        self.closed = False

    async def send(self, raw: str) -> None:
        message = json.loads(raw)
        self.sent.append(message)
        if message["method"] in self.errors:
            reply = {"id": message["id"], "error": {"message": self.errors[message["method"]]}}
        else:
            reply = {"id": message["id"], "result": {}}
        self.incoming.put_nowait(json.dumps(reply))
        if message["method"] == "Target.setAutoAttach":
            for session_id in self.sessions:
                self.push_event(
                    "Target.attachedToTarget",
                    {"sessionId": session_id, "targetInfo": {"targetId": f"t-{session_id}"}},
                )

    def push_event(self, method: str, params: dict[str, Any]) -> None:
        self.incoming.put_nowait(json.dumps({"method": method, "params": params}))

    def drop(self) -> None:
        """Simulate the relay closing the connection."""
        self.incoming.put_nowait(None)

    def __aiter__(self) -> FakeRelaySocket:
        return self

    async def __anext__(self) -> str:
        raw = await self.incoming.get()
        if raw is None:
            raise StopAsyncIteration
        return raw

    async def close(self) -> None:
        self.closed = True
        self.drop()


async def wait_until(predicate, attempts: int = 100) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


@pytest.fixture
def patch_connect(monkeypatch):
    """Route websockets.connect to the given fake sockets, in order."""

    def install(*sockets: FakeRelaySocket) -> AsyncMock:
        connect = AsyncMock(side_effect=list(sockets))
        monkeypatch.setattr("glider.client.websockets.connect", connect)
        return connect

    return install


class TestConstruction:
    """Tests for client URLs."""

    def test_from_config_uses_cdp_path(self) -> None:
        client = RelayClient.from_config(RelayConfig(host="127.0.0.1", port=20000))
        assert client.url == "ws://127.0.0.1:20000/cdp"

    def test_client_id_is_appended(self) -> None:
        client = RelayClient.from_config(RelayConfig(port=20000), client_id="worker")
        assert client.url.endswith("/cdp/worker")


class TestConnection:
    """Tests for connecting and reconnecting."""

    @pytest.mark.asyncio
    async def test_connect_failure_raises_relay_unreachable(self, monkeypatch) -> None:
        monkeypatch.setattr(
            "glider.client.websockets.connect", AsyncMock(side_effect=OSError("refused"))
        )
        client = RelayClient("ws://127.0.0.1:1/cdp")

        with pytest.raises(RelayUnreachable, match="refused"):
            await client.connect()

    @pytest.mark.asyncio
    async def test_call_round_trip(self, patch_connect) -> None:
        sock = FakeRelaySocket()
        patch_connect(sock)

        async with RelayClient("ws://relay/cdp") as client:
            result = await client.call("Browser.getVersion")

        assert result == {}
        assert sock.sent == [{"id": 1, "method": "Browser.getVersion", "params": {}}]

    @pytest.mark.asyncio
    async def test_error_reply_raises(self, patch_connect) -> None:
        patch_connect(FakeRelaySocket(errors={"Page.reload": "Detached"}))

        async with RelayClient("ws://relay/cdp") as client:
            with pytest.raises(RemoteError, match="Detached"):
                await client.call("Page.reload")

    @pytest.mark.asyncio
    async def test_dropped_connection_fails_pending_and_reconnects(self, patch_connect) -> None:
        first, second = FakeRelaySocket(), FakeRelaySocket()
        connect = patch_connect(first, second)
        client = RelayClient("ws://relay/cdp")
        await client.connect()

        first.drop()
        await wait_until(lambda: not client.connected)
        await client.call("Page.enable")

        assert connect.await_count == 2
        assert second.sent[0]["method"] == "Page.enable"
        await client.close()

    @pytest.mark.asyncio
    async def test_close_fails_outstanding_calls(self, patch_connect) -> None:
        sock = FakeRelaySocket()
        sock.send = AsyncMock()  # never answers
        patch_connect(sock)
        client = RelayClient("ws://relay/cdp")
        await client.connect()

        call = asyncio.create_task(client.call("Runtime.evaluate"))
        await wait_until(lambda: sock.send.await_count == 1)
        await client.close()

        with pytest.raises(UpstreamUnavailable):
            await call


class TestInit:
    """Tests for tab discovery."""

    @pytest.mark.asyncio
    async def test_init_adopts_first_attached_session(self, patch_connect) -> None:
        sock = FakeRelaySocket(sessions=("s1", "s2"))
        patch_connect(sock)

        async with RelayClient("ws://relay/cdp") as client:
            session_id = await client.init()

            assert session_id == "s1"
            assert client.target_id == "t-s1"

        methods = [m["method"] for m in sock.sent]
        assert methods == ["Target.setAutoAttach", "Runtime.enable", "Page.enable"]
        assert sock.sent[1]["sessionId"] == "s1"

    @pytest.mark.asyncio
    async def test_init_without_tabs_fails(self, patch_connect) -> None:
        patch_connect(FakeRelaySocket(sessions=()))

        async with RelayClient("ws://relay/cdp") as client:
            with pytest.raises(UpstreamUnavailable, match="No browser tab connected"):
                await client.init(attach_timeout=0.05)

    @pytest.mark.asyncio
    async def test_init_rejects_attach_without_session_id(self, patch_connect) -> None:
        sock = FakeRelaySocket(sessions=("",))
        patch_connect(sock)

        async with RelayClient("ws://relay/cdp") as client:
            with pytest.raises(UpstreamUnavailable, match="no session id"):
                await client.init(attach_timeout=0.5)

        assert [m["method"] for m in sock.sent] == ["Target.setAutoAttach"]

    @pytest.mark.asyncio
    async def test_reconnect_after_init_reinitializes(self, patch_connect) -> None:
        first = FakeRelaySocket(sessions=("old",))
        second = FakeRelaySocket(sessions=("new",))
        patch_connect(first, second)
        client = RelayClient("ws://relay/cdp")
        await client.connect()
        await client.init()

        first.drop()
        await wait_until(lambda: not client.connected)
        await client.call("Runtime.evaluate", {"expression": "1"})

        assert client.session_id == "new"
        assert second.sent[-1]["method"] == "Runtime.evaluate"
        assert second.sent[-1]["sessionId"] == "new"
        await client.close()


class TestEvents:
    """Tests for event handlers and waits."""

    @pytest.mark.asyncio
    async def test_handlers_receive_event_params(self, patch_connect) -> None:
        sock = FakeRelaySocket()
        patch_connect(sock)
        seen: list[dict] = []

        async with RelayClient("ws://relay/cdp") as client:
            client.on("Page.loadEventFired", seen.append)
            sock.push_event("Page.loadEventFired", {"timestamp": 1})
            await wait_until(lambda: seen)

            client.off("Page.loadEventFired", seen.append)
            sock.push_event("Page.loadEventFired", {"timestamp": 2})
            await client.call("Runtime.enable")

        assert seen == [{"timestamp": 1}]

    @pytest.mark.asyncio
    async def test_wait_for_event(self, patch_connect) -> None:
        sock = FakeRelaySocket()
        patch_connect(sock)

        async with RelayClient("ws://relay/cdp") as client:
            waiter = asyncio.create_task(client.wait_for_event("Page.frameNavigated", timeout=1.0))
            await asyncio.sleep(0)
            sock.push_event("Page.frameNavigated", {"frame": {"url": "https://a.test"}})

            assert await waiter == {"frame": {"url": "https://a.test"}}

    @pytest.mark.asyncio
    async def test_wait_for_event_times_out(self, patch_connect) -> None:
        patch_connect(FakeRelaySocket())

        async with RelayClient("ws://relay/cdp") as client:
            with pytest.raises(CallTimeout):
                await client.wait_for_event("Page.frameNavigated", timeout=0.01)

    def test_detach_clears_adopted_session(self) -> None:
        client = RelayClient("ws://relay/cdp")
        client._dispatch(
            {"method": "Target.attachedToTarget", "params": {"sessionId": "s1", "targetInfo": {"targetId": "t1"}}}
        )
        assert client.session_id == "s1"

        client._dispatch({"method": "Target.detachedFromTarget", "params": {"sessionId": "s1"}})

        assert client.session_id is None
        assert client.target_id is None

    def test_failing_handler_does_not_stop_others(self) -> None:
        client = RelayClient("ws://relay/cdp")
        seen: list[dict] = []

        def broken(params: dict) -> None:
            raise ValueError("boom")

        client.on("Runtime.consoleAPICalled", broken)
        client.on("Runtime.consoleAPICalled", seen.append)
        client._dispatch({"method": "Runtime.consoleAPICalled", "params": {"type": "log"}})

        assert seen == [{"type": "log"}]
