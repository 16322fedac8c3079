"""structlog configuration: single-line key=value (or JSON) records."""
from __future__ import annotations

import logging
import sys

import structlog

from webhook_delivery.settings import settings


def _escape(value: str) -> str:
    return (
        value.replace("\\", "\\\\")
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
    )


def single_line_processor(logger, method_name, event_dict):
    """Escape control characters so tracebacks and response bodies stay on one line."""
    for key, value in event_dict.items():
        if isinstance(value, str):
            event_dict[key] = _escape(value)
        elif isinstance(value, (list, tuple)):
            event_dict[key] = [_escape(item) if isinstance(item, str) else item for item in value]
    return event_dict


def configure_logging(level: str | None = None, fmt: str | None = None) -> None:
    """Route stdlib and structlog output to stdout, one record per line."""
    level_name = (level or settings.log_level).upper()
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(message)s"))

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level_name)

    renderer = (
        structlog.processors.JSONRenderer()
        if (fmt or settings.log_format) == "json"
        else structlog.processors.KeyValueRenderer(
            key_order=["timestamp", "level", "logger", "event"],
            drop_missing=True,
        )
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            # after format_exc_info so the traceback is escaped too
            single_line_processor,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
