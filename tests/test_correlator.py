"""Tests for request/response correlation."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from glider.correlator import Correlator
from glider.errors import CallTimeout, RemoteError, UpstreamUnavailable


class RecordingChannel:
    """Captures outbound messages instead of sending them."""

    def __init__(self, fail_with: Exception | None = None):
        self.sent: list[dict[str, Any]] = []
        self.fail_with = fail_with

    async def send(self, message: dict[str, Any]) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append(message)


async def wait_for_sent(channel: RecordingChannel, count: int) -> None:
    """Yield to the loop until ``count`` messages have been sent."""
    for _ in range(100):
        if len(channel.sent) >= count:
            return
        await asyncio.sleep(0)
    raise AssertionError(f"expected {count} sent messages, got {len(channel.sent)}")


@pytest.fixture
def channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
def correlator(channel: RecordingChannel) -> Correlator:
    return Correlator(channel.send, timeout=1.0)


class TestCallMessages:
    """Tests for the shape of outbound calls."""

    @pytest.mark.asyncio
    async def test_call_sends_id_method_and_params(
        self, correlator: Correlator, channel: RecordingChannel
    ) -> None:
        task = asyncio.create_task(correlator.call("Page.navigate", {"url": "https://a.test"}))
        await wait_for_sent(channel, 1)

        assert channel.sent[0] == {
            "id": 1,
            "method": "Page.navigate",
            "params": {"url": "https://a.test"},
        }
        correlator.resolve({"id": 1, "result": {}})
        await task

    @pytest.mark.asyncio
    async def test_call_defaults_params_and_adds_session(
        self, correlator: Correlator, channel: RecordingChannel
    ) -> None:
        task = asyncio.create_task(correlator.call("Runtime.enable", session_id="s1"))
        await wait_for_sent(channel, 1)

        assert channel.sent[0] == {"id": 1, "method": "Runtime.enable", "params": {}, "sessionId": "s1"}
        correlator.resolve({"id": 1, "result": {}})
        await task

    @pytest.mark.asyncio
    async def test_ids_are_unique_and_increasing(
        self, correlator: Correlator, channel: RecordingChannel
    ) -> None:
        tasks = [asyncio.create_task(correlator.call(f"M{i}")) for i in range(5)]
        await wait_for_sent(channel, 5)

        ids = [message["id"] for message in channel.sent]
        assert ids == [1, 2, 3, 4, 5]
        assert sorted(correlator.pending_ids) == ids

        for call_id in ids:
            correlator.resolve({"id": call_id, "result": None})
        await asyncio.gather(*tasks)


class TestReplyRouting:
    """Tests for matching replies to callers."""

    @pytest.mark.asyncio
    async def test_out_of_order_replies_reach_their_callers(
        self, correlator: Correlator, channel: RecordingChannel
    ) -> None:
        tasks = [asyncio.create_task(correlator.call("Runtime.evaluate", {"n": i})) for i in range(4)]
        await wait_for_sent(channel, 4)

        for message in reversed(channel.sent):
            correlator.resolve({"id": message["id"], "result": {"n": message["params"]["n"]}})

        results = await asyncio.gather(*tasks)
        assert results == [{"n": 0}, {"n": 1}, {"n": 2}, {"n": 3}]
        assert len(correlator) == 0

    @pytest.mark.asyncio
    async def test_error_reply_raises_remote_error(
        self, correlator: Correlator, channel: RecordingChannel
    ) -> None:
        task = asyncio.create_task(correlator.call("DOM.getDocument"))
        await wait_for_sent(channel, 1)

        correlator.resolve({"id": 1, "error": {"message": "No node"}})

        with pytest.raises(RemoteError, match="No node"):
            await task

    @pytest.mark.asyncio
    async def test_bare_string_error_is_accepted(
        self, correlator: Correlator, channel: RecordingChannel
    ) -> None:
        task = asyncio.create_task(correlator.call("Page.reload"))
        await wait_for_sent(channel, 1)

        correlator.resolve({"id": 1, "error": "Tab closed"})

        with pytest.raises(RemoteError, match="Tab closed"):
            await task

    @pytest.mark.asyncio
    async def test_extension_not_connected_error_maps_to_upstream_unavailable(
        self, correlator: Correlator, channel: RecordingChannel
    ) -> None:
        task = asyncio.create_task(correlator.call("Page.reload"))
        await wait_for_sent(channel, 1)

        correlator.resolve({"id": 1, "error": {"message": "Extension not connected"}})

        with pytest.raises(UpstreamUnavailable):
            await task

    def test_resolve_unknown_id_returns_false(self, correlator: Correlator) -> None:
        assert correlator.resolve({"id": 99, "result": {}}) is False


class TestTimeouts:
    """Tests for per-call deadlines."""

    @pytest.mark.asyncio
    async def test_call_times_out_and_frees_its_slot(self, correlator: Correlator) -> None:
        with pytest.raises(CallTimeout, match="Timeout: Page.navigate"):
            await correlator.call("Page.navigate", timeout=0.01)

        assert len(correlator) == 0

    @pytest.mark.asyncio
    async def test_late_reply_after_timeout_is_dropped(self, correlator: Correlator) -> None:
        with pytest.raises(CallTimeout):
            await correlator.call("Page.navigate", timeout=0.01)

        assert correlator.resolve({"id": 1, "result": {"late": True}}) is False

    @pytest.mark.asyncio
    async def test_timeout_does_not_affect_other_calls(
        self, correlator: Correlator, channel: RecordingChannel
    ) -> None:
        slow = asyncio.create_task(correlator.call("Slow", timeout=0.01))
        fast = asyncio.create_task(correlator.call("Fast", timeout=1.0))
        await wait_for_sent(channel, 2)

        with pytest.raises(CallTimeout):
            await slow
        correlator.resolve({"id": 2, "result": "ok"})

        assert await fast == "ok"

    @pytest.mark.asyncio
    async def test_call_timeout_is_a_timeout_error(self, correlator: Correlator) -> None:
        with pytest.raises(TimeoutError):
            await correlator.call("Page.navigate", timeout=0.01)


class TestFailures:
    """Tests for channel-level failures."""

    @pytest.mark.asyncio
    async def test_fail_all_rejects_pending_calls(
        self, correlator: Correlator, channel: RecordingChannel
    ) -> None:
        tasks = [asyncio.create_task(correlator.call(f"M{i}")) for i in range(3)]
        await wait_for_sent(channel, 3)

        correlator.fail_all(UpstreamUnavailable("Connection lost"))

        for task in tasks:
            with pytest.raises(UpstreamUnavailable, match="Connection lost"):
                await task
        assert len(correlator) == 0

    @pytest.mark.asyncio
    async def test_send_failure_frees_slot(self) -> None:
        channel = RecordingChannel(fail_with=UpstreamUnavailable())
        correlator = Correlator(channel.send)

        with pytest.raises(UpstreamUnavailable):
            await correlator.call("Page.navigate")

        assert len(correlator) == 0
