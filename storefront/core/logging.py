"""
Logging configuration for the API.

Usage:
    import logging
    logger = logging.getLogger(__name__)

    logger.info("Processing request", extra={"product_id": 42})

    # structlog loggers go through the same handlers
    import structlog
    logger = structlog.get_logger(__name__)
    logger.info("embedding_loaded", dimension=384)

Both kinds of record are rendered by structlog: one JSON object per line
when LOG_FORMAT=json, a coloured console line otherwise. Keys passed in
`extra` become fields of the event. The request ID bound by
storefront.middleware.logging_middleware is added to every line logged
while a request is being handled.
"""
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, TextIO

import structlog

from storefront.core.config import settings

NOISY_LOGGERS = (
    "uvicorn.access",
    "uvicorn.error",
    "httpx",
    "httpcore",
    "sqlalchemy.engine",
    "sentence_transformers",
    "google_genai",
)


def _shared_processors() -> list:
    # Run for structlog events and for stdlib records alike
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.ExtraAdder(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]


def _formatter(log_format: str) -> structlog.stdlib.ProcessorFormatter:
    if log_format == "json":
        renderers = [
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ]
    else:
        renderers = [
            structlog.dev.ConsoleRenderer(
                colors=True,
                exception_formatter=structlog.dev.plain_traceback,
            )
        ]

    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_shared_processors(),
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *renderers],
    )


def setup_logging(
    log_level: Optional[str] = None,
    log_format: Optional[str] = None,
    stream: Optional[TextIO] = None,
):
    """
    Configure logging for the application.

    Args:
        log_level: Overrides settings.log_level
        log_format: "json" or "console"; overrides settings.log_format
        stream: Console output, stdout by default
    """
    level_name = (log_level or settings.log_level).upper()
    log_format = log_format or settings.log_format
    level = getattr(logging, level_name, logging.INFO)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *_shared_processors(),
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = []

    console_handler = logging.StreamHandler(stream or sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(_formatter(log_format))
    root_logger.addHandler(console_handler)

    if settings.environment == "production":
        log_dir = Path("logs")
        log_dir.mkdir(exist_ok=True)

        # Files are always JSON
        file_handler = RotatingFileHandler(
            log_dir / "api.log",
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(_formatter("json"))
        root_logger.addHandler(file_handler)

        error_handler = RotatingFileHandler(
            log_dir / "api_errors.log",
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(_formatter("json"))
        root_logger.addHandler(error_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info(
        f"Logging configured: level={level_name}, format={log_format}, env={settings.environment}",
        extra={"log_level": level_name, "log_format": log_format},
    )
