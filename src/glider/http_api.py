"""HTTP client for the relay's status and single-shot command endpoints."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from glider.config import RelayConfig
from glider.errors import CallTimeout, RelayUnreachable, error_from_reply

log = logging.getLogger(__name__)

STATUS_TIMEOUT = 2.0


class RelayAPI:
    """Thin async wrapper over ``/status``, ``/targets``, ``/attach`` and ``/cdp``.

    ``call()`` has the same shape as ``RelayClient.call()`` so a ``Page`` can
    run over either transport.
    """

    def __init__(self, base_url: str, timeout: float = 30.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: RelayConfig) -> RelayAPI:
        return cls(config.http_url, timeout=config.call_timeout)

    async def _request(
        self,
        method: str,
        path: str,
        body: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=timeout or self.timeout) as client:
                response = await client.request(method, url, json=body)
        except httpx.TimeoutException:
            raise CallTimeout(f"{method} {path}", timeout or self.timeout) from None
        except httpx.TransportError as e:
            raise RelayUnreachable(f"Relay not reachable at {self.base_url}: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = response.text

        if response.status_code >= 400:
            error = data.get("error") if isinstance(data, dict) else data
            raise error_from_reply(error or f"HTTP {response.status_code}")
        return data

    async def status(self) -> dict[str, Any]:
        return await self._request("GET", "/status", timeout=STATUS_TIMEOUT)

    async def targets(self) -> list[dict[str, Any]]:
        return await self._request("GET", "/targets", timeout=STATUS_TIMEOUT)

    async def attach(self) -> Any:
        return await self._request("POST", "/attach")

    async def call(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        session_id: str | None = None,
        timeout: float | None = None,
    ) -> Any:
        body: dict[str, Any] = {"method": method, "params": params or {}}
        if session_id:
            body["sessionId"] = session_id
        log.debug("POST /cdp %s", method)
        return await self._request("POST", "/cdp", body, timeout=timeout)
