# creditgate/logging_config.py
from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(levelname)s - %(asctime)s - %(name)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def map_log_level(level_name: str) -> int:
    level = logging.getLevelName((level_name or "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(level_name: str = "INFO") -> None:
    """Attach one stdout handler to the ``creditgate`` logger tree. Idempotent."""
    root = logging.getLogger("creditgate")
    root.setLevel(map_log_level(level_name))
    if any(getattr(h, "_creditgate", False) for h in root.handlers):
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    handler._creditgate = True  # type: ignore[attr-defined]
    root.addHandler(handler)
