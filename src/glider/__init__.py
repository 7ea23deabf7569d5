"""Glider: browser automation through a CDP relay and a tab-attached extension."""

__version__ = "0.1.0"

# Public API
from glider.client import RelayClient
from glider.config import Config, load_config
from glider.correlator import Correlator
from glider.errors import (
    AssertionFailed,
    CallTimeout,
    ElementNotFound,
    GliderError,
    RelayUnreachable,
    RemoteError,
    TaskDefinitionError,
    UpstreamUnavailable,
)
from glider.http_api import RelayAPI
from glider.loop import LoopController, LoopState, LoopStatus
from glider.page import Page
from glider.relay import Relay
from glider.tasks import StepInterpreter, TaskDefinition, TaskSource

__all__ = [
    # Clients
    "Page",
    "RelayAPI",
    "RelayClient",
    # Relay
    "Correlator",
    "Relay",
    # Tasks and loop
    "LoopController",
    "LoopState",
    "LoopStatus",
    "StepInterpreter",
    "TaskDefinition",
    "TaskSource",
    # Config
    "Config",
    "load_config",
    # Errors
    "AssertionFailed",
    "CallTimeout",
    "ElementNotFound",
    "GliderError",
    "RelayUnreachable",
    "RemoteError",
    "TaskDefinitionError",
    "UpstreamUnavailable",
]
