"""Tracked browser-tab sessions."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any


@dataclass
class Session:
    """One attached browser tab, as reported by the extension."""

    session_id: str
    target_id: str
    target_info: dict[str, Any] = field(default_factory=dict)

    @property
    def url(self) -> str | None:
        return self.target_info.get("url")

    @property
    def title(self) -> str | None:
        return self.target_info.get("title")

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "targetId": self.target_id,
            "targetInfo": self.target_info,
        }

    def attached_info(self) -> dict[str, Any]:
        return {**self.target_info, "attached": True}

    def attach_event(self) -> dict[str, Any]:
        """Synthesized ``Target.attachedToTarget`` event for this session."""
        return {
            "method": "Target.attachedToTarget",
            "params": {
                "sessionId": self.session_id,
                "targetInfo": self.attached_info(),
                "waitingForDebugger": False,
            },
        }


class SessionTable:
    """Sessions keyed by id, iterated in attach order."""

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[Session]:
        return iter(list(self._sessions.values()))

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def first(self) -> Session | None:
        return next(iter(self._sessions.values()), None)

    def find_by_target(self, target_id: str | None) -> Session | None:
        if not target_id:
            return None
        for session in self._sessions.values():
            if session.target_id == target_id:
                return session
        return None

    def attach(self, params: dict[str, Any]) -> Session | None:
        """Record a ``Target.attachedToTarget`` event.

        Events without a session id are ignored.
        """
        if not params.get("sessionId"):
            return None
        target_info = dict(params.get("targetInfo") or {})
        session = Session(
            session_id=params["sessionId"],
            target_id=target_info.get("targetId", ""),
            target_info=target_info,
        )
        self._sessions[session.session_id] = session
        return session

    def detach(self, session_id: str) -> Session | None:
        return self._sessions.pop(session_id, None)

    def update_info(self, target_info: dict[str, Any]) -> Session | None:
        """Refresh metadata from a ``Target.targetInfoChanged`` event."""
        session = self.find_by_target(target_info.get("targetId"))
        if session is not None:
            session.target_info = dict(target_info)
        return session

    def clear(self) -> None:
        self._sessions.clear()

    def snapshot(self) -> list[dict[str, Any]]:
        return [session.to_dict() for session in self._sessions.values()]
