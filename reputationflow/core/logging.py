"""Structured logging for the metering service."""
from __future__ import annotations

import logging

import structlog

from .settings import get_settings

# Third-party loggers that echo full request payloads, message bodies included.
NOISY_LOGGERS = ("twilio.http_client", "stripe", "urllib3")


def resolve_level(level: int | str | None = None) -> int:
    if level is None:
        level = get_settings().log_level
    if isinstance(level, str):
        value = logging.getLevelName(level.upper())
        return value if isinstance(value, int) else logging.INFO
    return level


def setup_logging(level: int | str | None = None) -> int:
    resolved = resolve_level(level)
    logging.basicConfig(level=resolved, format="%(message)s")
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(resolved, logging.WARNING))
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(resolved),
        cache_logger_on_first_use=True,
    )
    return resolved


def get_logger(name: str) -> structlog.BoundLogger:
    return structlog.get_logger(name)


__all__ = ["NOISY_LOGGERS", "get_logger", "resolve_level", "setup_logging"]
