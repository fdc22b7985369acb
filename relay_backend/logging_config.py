"""Logging setup shared by the instance service and the controller."""

from __future__ import annotations

import logging
import os
from typing import Dict, Mapping

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

# Chatty third-party loggers held at WARNING unless overridden.
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def parse_level_overrides(raw: str | None) -> Dict[str, str]:
    """Parse ``RELAY_LOG_LEVELS`` (``"relay_core.jobs=DEBUG,httpx=INFO"``)."""
    overrides: Dict[str, str] = {}
    for part in (raw or "").split(","):
        name, sep, level = part.strip().partition("=")
        if sep and name and level:
            overrides[name.strip()] = level.strip().upper()
    return overrides


def configure_logging(
    *,
    level: str | None = None,
    overrides: Mapping[str, str] | None = None,
) -> logging.Logger:
    """Configure root logging for a relay process.

    Args:
        level: Base level. Falls back to ``RELAY_LOG_LEVEL`` or INFO.
        overrides: Per-logger levels. Falls back to ``RELAY_LOG_LEVELS``.

    Returns:
        The ``relay_backend`` logger.
    """
    base = (level or os.getenv("RELAY_LOG_LEVEL") or "INFO").upper()
    logging.basicConfig(level=base, format=LOG_FORMAT, datefmt=LOG_DATEFMT)

    for name in ("relay_core", "relay_backend", "uvicorn", "uvicorn.error"):
        logging.getLogger(name).setLevel(base)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if overrides is None:
        overrides = parse_level_overrides(os.getenv("RELAY_LOG_LEVELS"))
    for name, name_level in overrides.items():
        logging.getLogger(name).setLevel(name_level)

    app_logger = logging.getLogger("relay_backend")
    app_logger.debug("Logging configured at %s (overrides: %s)", base, dict(overrides))
    return app_logger
