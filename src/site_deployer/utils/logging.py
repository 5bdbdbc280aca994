"""Logging configuration utilities."""

import logging
import os
import sys
from typing import Any, List, Optional

import structlog
from structlog.contextvars import bind_contextvars, unbind_contextvars


# Request headers and fetch options that may end up in log fields
SENSITIVE_KEYS = frozenset({"authorization", "cookie", "password", "secret", "token", "api_key"})

DEPLOY_CONTEXT_KEYS = ("transaction_id", "target")


def _redact_sensitive(_, __, event_dict: dict) -> dict:
    """Redact sensitive fields in the structured log."""
    for key in event_dict.keys() & SENSITIVE_KEYS:
        event_dict[key] = "[REDACTED]"
    return event_dict


def _stringify_paths(_, __, event_dict: dict) -> dict:
    """Render pathlib paths as plain strings so JSON output stays readable."""
    for key, value in event_dict.items():
        if isinstance(value, os.PathLike):
            event_dict[key] = os.fspath(value)
    return event_dict


def _renderer(log_format: str) -> List[Any]:
    if log_format == "console":
        return [structlog.dev.ConsoleRenderer()]
    return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]


def setup_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """Configure structlog (and stdlib logging for uvicorn) for the deployer."""
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            _stringify_paths,
            _redact_sensitive,
            *_renderer(log_format),
        ],
        context_class=dict,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(),
        # Not cached so that structlog.testing.capture_logs still sees loggers
        # created after configuration
        cache_logger_on_first_use=False,
    )


def bind_deploy_context(transaction_id: Optional[str] = None, target: Optional[str] = None) -> None:
    """Bind correlation fields for transaction logs using contextvars."""
    if transaction_id:
        bind_contextvars(transaction_id=transaction_id)
    if target:
        bind_contextvars(target=target)


def clear_deploy_context() -> None:
    unbind_contextvars(*DEPLOY_CONTEXT_KEYS)
