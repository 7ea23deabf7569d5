"""Logging setup for glider.

Records go to the file named by ``logging.file`` or ``GLIDER_LOG``, else to
stderr. ``-v`` flags raise verbosity: error(0), warning(1), info(2),
debug(3), trace(4). TRACE carries per-message relay chatter.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from glider.config import LoggingConfig

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

logger = logging.getLogger("glider")

_initialized = False

_VERBOSITY = (logging.ERROR, logging.WARNING, logging.INFO, logging.DEBUG, TRACE)


class _LowercaseLevelFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        record.levelname = record.levelname.lower()
        return super().format(record)


def resolve_level(config: LoggingConfig | None) -> int:
    """Pick the effective level; ``verbose`` wins over ``level``."""
    if config is None:
        return logging.WARNING
    if config.verbose is not None:
        return _VERBOSITY[max(0, min(config.verbose, len(_VERBOSITY) - 1))]
    if config.level:
        name = config.level.upper()
        if name == "TRACE":
            return TRACE
        level = logging.getLevelName("WARNING" if name == "WARN" else name)
        return level if isinstance(level, int) else logging.WARNING
    return logging.WARNING


def setup_logging(config: LoggingConfig | None = None) -> None:
    """Install the glider handler once; later calls are no-ops."""
    global _initialized
    if _initialized:
        return
    _initialized = True

    level = resolve_level(config)
    logger.setLevel(level)

    handler: logging.Handler
    log_path = config.file if config and config.file else os.environ.get("GLIDER_LOG")
    if log_path:
        try:
            handler = logging.FileHandler(os.path.expanduser(log_path), mode="a", encoding="utf-8")
        except OSError as e:
            print(f"[glider] Failed to open log file: {e}", file=sys.stderr)
            handler = logging.StreamHandler(sys.stderr)
    else:
        handler = logging.StreamHandler(sys.stderr)

    handler.setLevel(level)
    handler.setFormatter(
        _LowercaseLevelFormatter("%(asctime)s %(levelname)s: %(message)s", datefmt="%H:%M:%S")
    )
    logger.addHandler(handler)


def get_logger(name: str | None = None) -> logging.Logger:
    """The ``glider`` logger, or its child ``glider.<name>``."""
    return logger.getChild(name) if name else logger
