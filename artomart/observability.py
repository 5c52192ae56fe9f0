"""Structured logging configuration.

Event names use dot notation, ``domain.entity.verb_past_tense``
(``agent.task.completed``, ``gateway.request.rejected``). Request-scoped
values such as ``request_id`` are bound through contextvars so every log
line emitted while serving a request carries them.
"""
from __future__ import annotations

import logging
import sys
from typing import Any, Dict

import structlog

SENSITIVE_FIELD_NAMES = frozenset(
    {
        "password",
        "api_key",
        "apikey",
        "secret",
        "token",
        "authorization",
        "bearer",
        "credential",
    }
)


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return any(name in lowered for name in SENSITIVE_FIELD_NAMES)


def redact(data: Any) -> Any:
    """Return a copy of ``data`` with sensitive keys masked."""
    if isinstance(data, dict):
        return {
            key: "<REDACTED>" if _is_sensitive(str(key)) else redact(value)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [redact(item) for item in data]
    return data


def _mask_sensitive_data(_logger: Any, _method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in list(event_dict.items()):
        if key in ("event", "level", "timestamp"):
            continue
        if _is_sensitive(key):
            event_dict[key] = "<REDACTED>"
        elif isinstance(value, (dict, list)):
            event_dict[key] = redact(value)
    return event_dict


def configure_logging(level: str = "INFO", fmt: str = "console") -> None:
    """Configure structlog for the process. Safe to call more than once."""
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    processors = [
        structlog.contextvars.merge_contextvars,
        _mask_sensitive_data,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if fmt == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def bind_context(**kwargs: Any) -> None:
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
