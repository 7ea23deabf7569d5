"""Wire messages exchanged between the relay, its clients and the extension.

Every message is a JSON object:
- Call:  ``{"id": int, "method": str, "params": {...}, "sessionId"?: str}``
- Reply: ``{"id": int, "result"?: {...}, "error"?: {"message": str}}``
- Event: ``{"method": str, "params": {...}, "sessionId"?: str}`` (no ``id``)

Inbound commands are validated with pydantic. Outbound replies and events
are built as plain dicts so payloads pass through unmodified.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Command(BaseModel):
    """A command issued by a downstream client (over WebSocket or HTTP)."""

    model_config = ConfigDict(populate_by_name=True)

    id: int | None = None
    method: str
    params: dict[str, Any] | None = None
    session_id: str | None = Field(default=None, alias="sessionId")


def reply(msg_id: int | None, result: Any, session_id: str | None = None) -> dict[str, Any]:
    message: dict[str, Any] = {"id": msg_id}
    if session_id is not None:
        message["sessionId"] = session_id
    message["result"] = result
    return message


def error_reply(msg_id: int | None, text: str, session_id: str | None = None) -> dict[str, Any]:
    message: dict[str, Any] = {"id": msg_id}
    if session_id is not None:
        message["sessionId"] = session_id
    message["error"] = {"message": text}
    return message


def event(method: str, params: dict[str, Any] | None, session_id: str | None = None) -> dict[str, Any]:
    message: dict[str, Any] = {"method": method, "params": params if params is not None else {}}
    if session_id is not None:
        message["sessionId"] = session_id
    return message


def is_reply(message: dict[str, Any]) -> bool:
    """Replies carry an ``id``; events never do."""
    return message.get("id") is not None
