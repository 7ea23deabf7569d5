"""Tests for wire messages and error mapping."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from glider.errors import (
    CallTimeout,
    RelayUnreachable,
    RemoteError,
    UpstreamUnavailable,
    error_from_reply,
)
from glider.protocol import Command, error_reply, event, is_reply, reply


class TestCommand:
    """Test inbound command validation."""

    def test_session_id_alias(self) -> None:
        command = Command.model_validate({"id": 1, "method": "Page.enable", "sessionId": "s1"})
        assert command.session_id == "s1"
        assert command.params is None

    def test_null_params_allowed(self) -> None:
        command = Command.model_validate({"id": 2, "method": "Page.enable", "params": None})
        assert command.params is None

    def test_method_required(self) -> None:
        with pytest.raises(ValidationError):
            Command.model_validate({"id": 3})


class TestOutbound:
    """Test outbound message builders."""

    def test_reply(self) -> None:
        assert reply(1, {"a": 1}) == {"id": 1, "result": {"a": 1}}
        assert reply(1, {}, "s1") == {"id": 1, "sessionId": "s1", "result": {}}

    def test_error_reply(self) -> None:
        assert error_reply(2, "Nope") == {"id": 2, "error": {"message": "Nope"}}

    def test_event_defaults_params(self) -> None:
        assert event("Page.loadEventFired", None) == {"method": "Page.loadEventFired", "params": {}}

    def test_is_reply(self) -> None:
        assert is_reply({"id": 1, "result": {}}) is True
        assert is_reply({"method": "Page.loadEventFired"}) is False
        assert is_reply({"id": None, "method": "x"}) is False


class TestErrors:
    """Test the error hierarchy."""

    def test_reply_errors(self) -> None:
        assert isinstance(error_from_reply({"message": "Extension not connected"}), UpstreamUnavailable)
        remote = error_from_reply({"message": "Cannot find context", "code": -32000})
        assert isinstance(remote, RemoteError)
        assert str(remote) == "Cannot find context"
        assert str(error_from_reply("plain")) == "plain"

    def test_relay_unreachable_is_upstream_unavailable(self) -> None:
        assert issubclass(RelayUnreachable, UpstreamUnavailable)

    def test_call_timeout_message(self) -> None:
        error = CallTimeout("Page.navigate", 5.0)
        assert str(error) == "Timeout: Page.navigate"
        assert error.timeout == 5.0
