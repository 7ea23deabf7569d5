"""Root pytest configuration for all tests."""

from __future__ import annotations

import io

import pytest
from rich.console import Console

from glider.config import RelayConfig
from glider.reporter import Reporter

# Configure pytest-asyncio to use auto mode
# This is redundant with pyproject.toml but ensures it's set
pytest_plugins = ("pytest_asyncio",)


@pytest.fixture(scope="session")
def anyio_backend():
    """Set anyio backend to asyncio."""
    return "asyncio"


@pytest.fixture
def relay_config() -> RelayConfig:
    """Relay config with keep-alive pings disabled."""
    return RelayConfig(ping_interval=0, call_timeout=1.0)


@pytest.fixture
def reporter() -> Reporter:
    """Reporter writing to in-memory buffers.

    Status lines: ``reporter.console.file.getvalue()``;
    results: ``reporter.out.file.getvalue()``.
    """
    return Reporter(
        console=Console(file=io.StringIO(), width=200, highlight=False),
        out=Console(file=io.StringIO(), width=200, highlight=False),
    )
