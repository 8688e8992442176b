"""structlog setup for the deploy tooling.

Logs go to stderr so that stdout carries only what the command line prints
(plan listings, the access banner). Keys that may hold credential material
are masked before rendering.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import MutableMapping
from typing import Any

import structlog

SECRET_KEYS = frozenset({"password", "passcode", "secret_value", "token", "credentials"})
_MASK = "***"


def mask_secrets(_logger: Any, _method: str, event_dict: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    """Replace the value of any denylisted key with a fixed mask."""
    for key in event_dict.keys() & SECRET_KEYS:
        event_dict[key] = _MASK
    return event_dict


def setup_logging(level: str = "info", fmt: str = "json") -> None:
    """Configure structlog once per process.

    ``fmt="console"`` swaps the JSON renderer for structlog's coloured
    console renderer, for interactive runs.
    """
    renderer: Any = (
        structlog.dev.ConsoleRenderer() if fmt == "console" else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
            mask_secrets,
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(component: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(component=component)  # type: ignore[return-value]
