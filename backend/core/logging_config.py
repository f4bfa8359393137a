"""Structured logging configuration using structlog.

All modules log through ``logging.getLogger(__name__)``; this module
routes those records through structlog so they render as JSON in
production and as colored console lines in development. Credential
values are masked before rendering.
"""

import logging
import sys

import structlog
from app.config import get_settings

from core.credentials import mask_secret

# Event keys whose values are credentials and must never be rendered raw
SENSITIVE_KEYS = frozenset({
    "client_secret",
    "secret_key",
    "x-client-secret",
    "authorization",
})


def redact_credentials(logger, method_name, event_dict):
    """Processor that masks credential values carried as log fields."""
    for key in list(event_dict):
        if key.lower() in SENSITIVE_KEYS and isinstance(event_dict[key], str):
            event_dict[key] = mask_secret(event_dict[key])
    return event_dict


def _shared_processors() -> list:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.ExtraAdder(),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        redact_credentials,
    ]


def _renderer(settings):
    if settings.is_development or settings.LOG_FORMAT == "text":
        return structlog.dev.ConsoleRenderer(colors=True)
    return structlog.processors.JSONRenderer()


def setup_logging() -> None:
    """Configure structured logging for the whole gateway."""
    settings = get_settings()
    shared = _shared_processors()

    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _renderer(settings),
        ],
        foreign_pre_chain=shared,
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.DEBUG if settings.SQLALCHEMY_ECHO else logging.WARNING
    )
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)

    structlog.contextvars.bind_contextvars(
        service=settings.APP_NAME,
        environment=settings.ENVIRONMENT,
    )
