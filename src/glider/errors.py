"""Exception hierarchy shared by the relay, client and task runner."""

from __future__ import annotations

from typing import Any

EXTENSION_NOT_CONNECTED = "Extension not connected"


class GliderError(Exception):
    """Base class for all glider errors."""


class UpstreamUnavailable(GliderError):
    """No browser-extension connection is available to serve the call."""

    def __init__(self, message: str = EXTENSION_NOT_CONNECTED) -> None:
        super().__init__(message)


class RelayUnreachable(UpstreamUnavailable):
    """The relay process itself could not be reached."""


class CallTimeout(GliderError, TimeoutError):
    """No reply arrived for a call within its deadline."""

    def __init__(self, method: str, timeout: float | None = None) -> None:
        self.method = method
        self.timeout = timeout
        super().__init__(f"Timeout: {method}")


class RemoteError(GliderError):
    """The peer answered with an explicit error payload."""


class ElementNotFound(GliderError):
    """A DOM-dependent step found no element matching its selector."""

    def __init__(self, selector: str) -> None:
        self.selector = selector
        super().__init__(f"Element not found: {selector}")


class AssertionFailed(GliderError):
    """An assert step evaluated to something other than literal true."""

    def __init__(self, expression: str, value: Any) -> None:
        self.expression = expression
        self.value = value
        super().__init__(f"Assertion failed: {expression} -> {value!r}")


class TaskDefinitionError(GliderError):
    """A task file is malformed or names an unknown operation."""


def error_from_reply(error: Any) -> GliderError:
    """Build the exception for a reply's ``error`` payload.

    Extensions send either ``{"message": ...}`` or a bare string.
    """
    if isinstance(error, dict):
        message = str(error.get("message") or error)
    else:
        message = str(error)
    if message == EXTENSION_NOT_CONNECTED:
        return UpstreamUnavailable(message)
    return RemoteError(message)
