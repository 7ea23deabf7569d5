"""CDP session relay: one extension connection, many automation clients."""

from glider.relay.relay import ClientLink, Relay, UpstreamLink
from glider.relay.sessions import Session, SessionTable

__all__ = [
    "ClientLink",
    "Relay",
    "Session",
    "SessionTable",
    "UpstreamLink",
]
