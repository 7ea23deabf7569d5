"""Page-level operations built from CDP commands."""

from __future__ import annotations

import base64
import json
import logging
from pathlib import Path
from typing import Any, Protocol

from glider.errors import AssertionFailed, ElementNotFound, RemoteError

log = logging.getLogger(__name__)


class Channel(Protocol):
    """Anything that can issue a CDP command: RelayClient or RelayAPI."""

    async def call(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        session_id: str | None = None,
        timeout: float | None = None,
    ) -> Any: ...


_CLICK_JS = """
(() => {
  const el = document.querySelector(%s);
  if (!el) return { error: 'Element not found' };
  el.click();
  return { clicked: true };
})()
"""

_TYPE_JS = """
(() => {
  const el = document.querySelector(%s);
  if (!el) return { error: 'Element not found' };
  el.focus();
  el.value = %s;
  el.dispatchEvent(new Event('input', { bubbles: true }));
  return { typed: true };
})()
"""


def _js_string(value: str) -> str:
    return json.dumps(value)


class Page:
    """The attached tab, driven through a channel."""

    def __init__(self, channel: Channel) -> None:
        self.channel = channel

    async def navigate(self, url: str) -> dict[str, Any]:
        result = await self.channel.call("Page.navigate", {"url": url}) or {}
        if result.get("errorText"):
            raise RemoteError(f"Navigation to {url} failed: {result['errorText']}")
        return result

    async def evaluate(self, expression: str, await_promise: bool = True) -> Any:
        """Evaluate in the page and return the value.

        Page exceptions raise RemoteError. Non-serializable results fall back
        to their description.
        """
        params = {"expression": expression, "returnByValue": True, "awaitPromise": await_promise}
        result = await self.channel.call("Runtime.evaluate", params) or {}

        details = result.get("exceptionDetails")
        if details:
            exception = details.get("exception") or {}
            raise RemoteError(exception.get("description") or details.get("text") or "Evaluation failed")

        remote = result.get("result") or {}
        if "value" in remote:
            return remote["value"]
        return remote.get("description")

    async def click(self, selector: str) -> None:
        value = await self.evaluate(_CLICK_JS % _js_string(selector), await_promise=False)
        if isinstance(value, dict) and value.get("error"):
            raise ElementNotFound(selector)

    async def type(self, selector: str, text: str) -> None:
        value = await self.evaluate(
            _TYPE_JS % (_js_string(selector), _js_string(text)), await_promise=False
        )
        if isinstance(value, dict) and value.get("error"):
            raise ElementNotFound(selector)

    async def screenshot(self, path: Path, image_format: str = "png") -> Path:
        """Capture the viewport and write it to ``path``. I/O errors propagate."""
        result = await self.channel.call("Page.captureScreenshot", {"format": image_format}) or {}
        data = result.get("data")
        if not data:
            raise RemoteError("No screenshot data received")
        path.write_bytes(base64.b64decode(data))
        log.debug("Screenshot written to %s", path)
        return path

    async def check(self, expression: str) -> None:
        """Require ``expression`` to evaluate to literal ``true``."""
        value = await self.evaluate(expression, await_promise=False)
        if value is not True:
            raise AssertionFailed(expression, value)

    async def text(self) -> str:
        return await self.evaluate("document.body.innerText", await_promise=False) or ""

    async def html(self, selector: str | None = None) -> str:
        """Outer HTML of the document, or of the first element matching ``selector``."""
        if selector is None:
            return await self.evaluate("document.documentElement.outerHTML", await_promise=False) or ""
        value = await self.evaluate(
            f"document.querySelector({_js_string(selector)})?.outerHTML ?? null", await_promise=False
        )
        if value is None:
            raise ElementNotFound(selector)
        return value

    async def title(self) -> str:
        return await self.evaluate("document.title", await_promise=False) or ""

    async def url(self) -> str:
        return await self.evaluate("window.location.href", await_promise=False) or ""
