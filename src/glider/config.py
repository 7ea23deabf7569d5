"""Configuration loading for glider.

Values come from (lowest to highest priority): dataclass defaults, a YAML
config file, environment variables, then CLI flags applied by the caller.
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

_log = logging.getLogger("glider.config")

DEFAULT_PORT = 19988
DEFAULT_CONFIG_NAMES = ("glider.yaml", ".glider.yaml", "glider.yml", ".glider.yml")


def default_state_file() -> Path:
    return Path(tempfile.gettempdir()) / "glider-state.json"


@dataclass
class RelayConfig:
    """Relay server and client connection settings."""

    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT
    call_timeout: float = 30.0
    """Seconds to wait for a reply before a call fails with CallTimeout."""

    ping_interval: float = 5.0
    """Seconds between keep-alive pings sent to the extension."""

    strict_sessions: bool = False
    """Reject commands naming a session the relay does not track."""

    @property
    def http_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    @property
    def ws_url(self) -> str:
        return f"ws://{self.host}:{self.port}"


@dataclass
class LoopConfig:
    """Autonomous loop bounds and checkpointing."""

    max_iterations: int = 10
    max_runtime: float = 3600.0
    completion_marker: str = "LOOP_COMPLETE"
    checkpoint_interval: int = 5
    iteration_delay: float = 1.0
    state_file: Path = field(default_factory=default_state_file)


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str | None = None  # DEBUG, INFO, WARNING, ERROR
    verbose: int | None = None  # 0-4, overrides level
    file: str | None = None


@dataclass
class Config:
    """Glider configuration."""

    relay: RelayConfig = field(default_factory=RelayConfig)
    loop: LoopConfig = field(default_factory=LoopConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from file and environment."""
    if config_path is None:
        for name in DEFAULT_CONFIG_NAMES:
            if Path(name).exists():
                config_path = Path(name)
                break

    data: dict[str, Any] = {}
    if config_path is not None:
        data = load_yaml_file(config_path)

    config = dict_to_config(data)
    apply_env_overrides(config)
    return config


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file, returning empty dict if not found or invalid."""
    if not path.exists():
        return {}

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
            return data if isinstance(data, dict) else {}
    except yaml.YAMLError as e:
        _log.warning("Invalid YAML in %s: %s", path, e)
        return {}
    except OSError as e:
        _log.warning("Error reading %s: %s", path, e)
        return {}


def dict_to_config(data: dict[str, Any]) -> Config:
    """Convert a parsed config dict to the typed Config dataclass."""
    relay_data = data.get("relay") or {}
    relay = RelayConfig(
        host=relay_data.get("host", "127.0.0.1"),
        port=int(relay_data.get("port", DEFAULT_PORT)),
        call_timeout=float(relay_data.get("call_timeout", 30.0)),
        ping_interval=float(relay_data.get("ping_interval", 5.0)),
        strict_sessions=bool(relay_data.get("strict_sessions", False)),
    )

    loop_data = data.get("loop") or {}
    state_file = loop_data.get("state_file")
    checkpoint_interval = int(loop_data.get("checkpoint_interval", 5))
    if checkpoint_interval < 1:
        _log.warning("Ignoring checkpoint_interval=%d, must be at least 1", checkpoint_interval)
        checkpoint_interval = 5
    loop = LoopConfig(
        max_iterations=int(loop_data.get("max_iterations", 10)),
        max_runtime=float(loop_data.get("max_runtime", 3600.0)),
        completion_marker=str(loop_data.get("completion_marker", "LOOP_COMPLETE")),
        checkpoint_interval=checkpoint_interval,
        iteration_delay=float(loop_data.get("iteration_delay", 1.0)),
        state_file=Path(state_file).expanduser() if state_file else default_state_file(),
    )

    logging_data = data.get("logging") or {}
    log_config = LoggingConfig(
        level=logging_data.get("level"),
        verbose=logging_data.get("verbose"),
        file=logging_data.get("file"),
    )

    return Config(relay=relay, loop=loop, logging=log_config)


def apply_env_overrides(config: Config) -> None:
    """Apply GLIDER_* environment variables on top of file values."""
    host = os.environ.get("GLIDER_HOST")
    if host:
        config.relay.host = host

    port = os.environ.get("GLIDER_PORT")
    if port:
        try:
            config.relay.port = int(port)
        except ValueError:
            _log.warning("Ignoring non-numeric GLIDER_PORT=%r", port)

    state_file = os.environ.get("GLIDER_STATE_FILE")
    if state_file:
        config.loop.state_file = Path(state_file).expanduser()

    log_path = os.environ.get("GLIDER_LOG")
    if log_path:
        config.logging.file = log_path
