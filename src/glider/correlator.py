"""Request/response correlation over a message channel.

Each outbound call gets the next id from a per-channel counter and a future
in the pending table. Replies resolve the future by id, so replies may
arrive in any order. A call that times out is removed from the table and a
late reply for its id is dropped.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from glider.errors import CallTimeout, GliderError, error_from_reply
from glider.logging import TRACE

log = logging.getLogger(__name__)

SendFn = Callable[[dict[str, Any]], Awaitable[None]]

DEFAULT_TIMEOUT = 30.0


@dataclass
class PendingCall:
    """An in-flight call awaiting its reply."""

    id: int
    method: str
    future: asyncio.Future[Any]
    created_at: float
    deadline: float


class Correlator:
    """Matches replies to outstanding calls by id."""

    def __init__(self, send: SendFn, timeout: float = DEFAULT_TIMEOUT) -> None:
        self._send = send
        self.timeout = timeout
        self._pending: dict[int, PendingCall] = {}
        self._next_id = 0

    def __len__(self) -> int:
        return len(self._pending)

    @property
    def pending_ids(self) -> list[int]:
        return list(self._pending)

    async def call(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        session_id: str | None = None,
        timeout: float | None = None,
    ) -> Any:
        """Send a call and wait for its reply.

        Raises:
            CallTimeout: No reply within ``timeout`` seconds.
            RemoteError: The reply carried an error payload.
        """
        timeout = self.timeout if timeout is None else timeout
        self._next_id += 1
        call_id = self._next_id

        now = time.monotonic()
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[call_id] = PendingCall(
            id=call_id,
            method=method,
            future=future,
            created_at=now,
            deadline=now + timeout,
        )

        message: dict[str, Any] = {"id": call_id, "method": method, "params": params or {}}
        if session_id:
            message["sessionId"] = session_id

        try:
            await self._send(message)
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            raise CallTimeout(method, timeout) from None
        finally:
            self._pending.pop(call_id, None)

    def resolve(self, message: dict[str, Any]) -> bool:
        """Settle the pending call matching ``message["id"]``.

        Returns False when no call is waiting on that id (late or unknown reply).
        """
        pending = self._pending.pop(message.get("id"), None)  # type: ignore[arg-type]
        if pending is None or pending.future.done():
            log.log(TRACE, "Dropping reply for unknown or expired id %s", message.get("id"))
            return False

        error = message.get("error")
        if error:
            pending.future.set_exception(error_from_reply(error))
        else:
            pending.future.set_result(message.get("result"))
        return True

    def fail_all(self, error: GliderError) -> None:
        """Reject every outstanding call, e.g. when the channel closes."""
        pending, self._pending = self._pending, {}
        for call in pending.values():
            if not call.future.done():
                call.future.set_exception(error)
        if pending:
            log.debug("Failed %d pending call(s): %s", len(pending), error)
