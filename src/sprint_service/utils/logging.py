"""Structured logging configuration using structlog."""

import logging
import re
import sys
from functools import lru_cache
from typing import Any, TextIO

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from sprint_service.config import Settings, get_settings

# Keys whose values are never written to logs
SECRET_KEY_PARTS = ("password", "token", "secret", "authorization", "api_key")

# Project members and known users are identified by e-mail
EMAIL_PATTERN = re.compile(r"\b([A-Za-z0-9._%+-])[A-Za-z0-9._%+-]*(@[A-Za-z0-9.-]+\.[A-Za-z]{2,})\b")


def _mask(key: str, value: Any) -> Any:
    if any(part in key.lower() for part in SECRET_KEY_PARTS):
        return "***"
    if isinstance(value, str):
        return EMAIL_PATTERN.sub(r"\1***\2", value)
    if isinstance(value, dict):
        return {k: _mask(str(k), v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_mask(key, v) for v in value]
    return value


def redact_sensitive(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Blank out secrets and shorten e-mail addresses to ``a***@example.com``."""
    return {key: _mask(key, value) for key, value in event_dict.items()}


def _shared_processors() -> list[Processor]:
    """Processors applied to structlog and foreign stdlib records alike."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
        redact_sensitive,
    ]


def _handler(
    stream: TextIO | None,
    renderer: Processor,
    shared: list[Processor],
    path: str | None = None,
) -> logging.Handler:
    handler: logging.Handler = logging.FileHandler(path) if path else logging.StreamHandler(stream)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=shared))
    return handler


def setup_logging(settings: Settings | None = None, use_stderr: bool = False) -> None:
    """Configure structured logging based on settings.

    Args:
        settings: Settings to read log options from (defaults to get_settings())
        use_stderr: Write logs to stderr so stdout stays clean for CLI output
    """
    settings = settings or get_settings()
    shared = _shared_processors()

    renderer: Processor
    if settings.log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=not use_stderr)

    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(_handler(sys.stderr if use_stderr else sys.stdout, renderer, shared))
    if settings.log_file:
        # Files always get JSON lines regardless of the console format
        root_logger.addHandler(_handler(None, structlog.processors.JSONRenderer(), shared, settings.log_file))
    root_logger.setLevel(settings.log_level)

    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


@lru_cache(maxsize=128)
def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a cached structured logger by name."""
    return structlog.get_logger(name)
