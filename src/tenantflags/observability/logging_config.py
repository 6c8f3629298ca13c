"""Structlog configuration for tenantflags.

Call ``configure_logging()`` once during application startup. Every module
logs through ``structlog.get_logger(__name__)`` and every record, including
those from uvicorn and httpx, is rendered by one stdlib handler and tagged
with ``service`` and ``environment``.

``RequestLoggingMiddleware`` already emits one line per request, so the
uvicorn access log and httpx's per-call INFO lines (tenant directory lookups)
are raised to WARNING.
"""
from __future__ import annotations

import logging
import sys

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

SERVICE_NAME = "tenantflags"

QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore")


def _service_tagger(environment: str) -> Processor:
    def _tag(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", SERVICE_NAME)
        event_dict.setdefault("environment", environment)
        return event_dict

    return _tag


def configure_logging(
    *,
    json_output: bool = False,
    log_level: str = "INFO",
    environment: str = "dev",
) -> None:
    """Configure structlog and the root stdlib logger.

    Parameters
    ----------
    json_output:
        Render JSON lines (production) instead of coloured console output.
    log_level:
        Root log level (DEBUG, INFO, WARNING, ERROR). Evaluation requests
        are only logged at DEBUG.
    environment:
        Deployment profile stamped on every record.
    """
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        _service_tagger(environment),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(root.level, logging.WARNING))
