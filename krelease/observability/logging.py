"""structlog setup for krelease.

Every module logs through ``structlog.get_logger(component=...)``.  Events go
to stderr as one JSON object per line (``KRELEASE_LOG_FORMAT=console`` gives
a human-readable rendering for local runs).  Standard-library loggers used by
uvicorn and kubernetes-asyncio are sent to the same stream at WARNING.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import MutableMapping
from typing import Any

import structlog

LOG_FORMATS = ("json", "console")

# Event keys that may carry a raw credential.
_SECRET_KEYS = frozenset({"api_key", "authorization", "x_api_key", "apikey"})
_PREVIEW_LEN = 8


def key_preview(key: str) -> str:
    """First eight characters of a credential, safe to log."""
    return key[:_PREVIEW_LEN] + "..."


def mask_credentials(_logger: Any, _method: str, event_dict: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    """Replace credential-valued keys with their preview."""
    for key in _SECRET_KEYS.intersection(event_dict):
        value = event_dict[key]
        if isinstance(value, str) and value:
            event_dict[key] = key_preview(value)
    return event_dict


def setup_logging(level: str = "info", fmt: str = "json") -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        level: Minimum level for krelease events (debug, info, warning, error).
        fmt:   ``json`` for production, ``console`` for coloured dev output.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    renderer: Any = structlog.dev.ConsoleRenderer() if fmt == "console" else structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            mask_credentials,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    # Third-party stdlib loggers: warnings and above only.
    logging.basicConfig(stream=sys.stderr, level=max(log_level, logging.WARNING), format="%(name)s %(levelname)s %(message)s")


def get_logger(component: str) -> structlog.stdlib.BoundLogger:
    """Logger bound with a component name, for code that logs before module import time."""
    return structlog.get_logger(component=component)  # type: ignore[return-value]
