"""
Structured Logging Configuration Module for StampMint

This module provides logging utilities with JSON-formatted output, context
enrichment via LoggerAdapter, and integration with Uvicorn's loggers so that
mint, pin and ledger events share one structured format.

Features:
- JSONFormatter: Formatter emitting one JSON object per record, with
  Decimal amounts rendered as strings so no precision is lost
- StandardFormatter: Human-readable output for local development
- setup_logging: Application-wide configuration, called from the app lifespan
- add_log_context: Enrich every record with fields such as serial_number

Usage:
    from stampmint.utils.logger import add_log_context, get_logger, setup_logging

    setup_logging(log_level="INFO", json_logs=True)

    logger = get_logger(__name__)
    ctx_logger = add_log_context(logger, catalog_item_id="stamp-1")
    ctx_logger.info("Mint started")
"""

import json
import logging
import sys
import traceback

from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any


# =============================================================================
# Constants
# =============================================================================

LOG_LEVEL_MAP: dict[str, int] = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# Third-party loggers to reduce verbosity
THIRD_PARTY_LOGGERS: list[str] = [
    "fastapi",
    "motor",
    "pymongo",
    "httpx",
    "httpcore",
    "asyncio",
]

UVICORN_LOGGERS: tuple[str, ...] = ("uvicorn", "uvicorn.access", "uvicorn.error")


# =============================================================================
# Custom JSON Encoder
# =============================================================================


class LogJSONEncoder(json.JSONEncoder):
    """
    JSON encoder for log record serialization.

    Amounts are Decimals throughout the ledger; they are emitted as strings
    so a log line shows exactly the value that was stored.
    """

    def default(self, obj: Any) -> Any:
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, bytes):
            return f"<{len(obj)} bytes>"
        if isinstance(obj, set | frozenset):
            return sorted(obj, key=str)
        return str(obj)


# =============================================================================
# Formatters
# =============================================================================


class JSONFormatter(logging.Formatter):
    """
    Logging formatter that outputs log records as JSON strings.

    Example output:
        {
            "timestamp": "2025-01-15T10:30:45.123456+00:00",
            "level": "INFO",
            "logger": "stampmint.services.minting_service",
            "message": "Mint committed",
            "extra": {"serial_number": "FRANCE-000042", "amount": "360.00"}
        }
    """

    # Standard LogRecord attributes to exclude from extra fields
    RESERVED_ATTRS: frozenset[str] = frozenset(
        {
            "args",
            "asctime",
            "created",
            "exc_info",
            "exc_text",
            "filename",
            "funcName",
            "levelname",
            "levelno",
            "lineno",
            "message",
            "module",
            "msecs",
            "msg",
            "name",
            "pathname",
            "process",
            "processName",
            "relativeCreated",
            "stack_info",
            "thread",
            "threadName",
            "taskName",
        }
    )

    def __init__(self, include_extra_fields: bool = True, include_source_location: bool = False) -> None:
        super().__init__()
        self.include_extra_fields = include_extra_fields
        self.include_source_location = include_source_location

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(timespec="microseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if self.include_source_location:
            log_entry["source"] = {
                "filename": record.filename,
                "lineno": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            log_entry["exception"] = {
                "type": exc_type.__name__ if exc_type else "Unknown",
                "message": str(exc_value) if exc_value else "",
                "traceback": "".join(traceback.format_exception(*record.exc_info)),
            }

        if record.stack_info:
            log_entry["stack_info"] = record.stack_info

        if self.include_extra_fields:
            extra_fields = {
                key: value
                for key, value in record.__dict__.items()
                if not key.startswith("_") and key not in self.RESERVED_ATTRS
            }
            if extra_fields:
                log_entry["extra"] = extra_fields

        return json.dumps(log_entry, cls=LogJSONEncoder, ensure_ascii=False, separators=(",", ":"))


class StandardFormatter(logging.Formatter):
    """
    Text formatter for console output in development mode.

    Format: [TIMESTAMP] LEVEL logger_name: message
    """

    DEFAULT_FORMAT: str = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"
    DEFAULT_DATE_FORMAT: str = "%Y-%m-%d %H:%M:%S"

    def __init__(self, fmt: str | None = None, datefmt: str | None = None) -> None:
        super().__init__(fmt=fmt or self.DEFAULT_FORMAT, datefmt=datefmt or self.DEFAULT_DATE_FORMAT)


def _build_formatter(json_logs: bool, level: int) -> logging.Formatter:
    if json_logs:
        return JSONFormatter(include_extra_fields=True, include_source_location=level <= logging.DEBUG)
    return StandardFormatter()


# =============================================================================
# Logger Factory and Application Setup
# =============================================================================


def get_logger(name: str, level: str | None = None) -> logging.Logger:
    """
    Return a module logger, optionally with an explicit level.

    Handlers are configured once on the root logger by setup_logging; module
    loggers only propagate to it.
    """
    logger = logging.getLogger(name)
    if level is not None:
        logger.setLevel(LOG_LEVEL_MAP.get(level.upper(), logging.INFO))
    return logger


def setup_logging(
    log_level: str = "INFO",
    json_logs: bool = True,
    third_party_level: str = "WARNING",
) -> None:
    """
    Configure application-wide logging with root logger and Uvicorn integration.

    Called once at application startup from the FastAPI lifespan. Replaces any
    existing root handlers so repeated calls do not duplicate output.

    Args:
        log_level: Application log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: If True, output JSON format; if False, output standard text
        third_party_level: Log level for third-party libraries (default WARNING)
    """
    level_str = log_level.upper()
    level = LOG_LEVEL_MAP.get(level_str, logging.INFO)
    formatter = _build_formatter(json_logs, level)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Uvicorn installs its own handlers; route them through our formatter
    for name in UVICORN_LOGGERS:
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.setLevel(level)
        uvicorn_logger.propagate = False
        uvicorn_logger.handlers.clear()
        handler = logging.StreamHandler(sys.stderr if name == "uvicorn.error" else sys.stdout)
        handler.setFormatter(formatter)
        uvicorn_logger.addHandler(handler)

    third_party_log_level = LOG_LEVEL_MAP.get(third_party_level.upper(), logging.WARNING)
    for name in THIRD_PARTY_LOGGERS:
        logging.getLogger(name).setLevel(third_party_log_level)

    logging.getLogger(__name__).info(
        "Logging configured: level=%s, json=%s", level_str, json_logs
    )


# =============================================================================
# Context Enrichment
# =============================================================================


class ContextLoggerAdapter(logging.LoggerAdapter):
    """
    LoggerAdapter that merges its context into each call's extra fields.

    Fields passed explicitly with ``extra=`` win over the adapter's context.
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        extra = kwargs.get("extra", {})
        for key, value in self.extra.items():
            extra.setdefault(key, value)
        kwargs["extra"] = extra
        return msg, kwargs


def add_log_context(logger: logging.Logger, **kwargs: Any) -> logging.LoggerAdapter:
    """
    Wrap a logger so every record carries the given context fields.

    Example:
        ctx_logger = add_log_context(logger, catalog_item_id="stamp-1", owner_id="user-1")
        ctx_logger.warning("Secondary pin failed", extra={"provider": "pinata"})
    """
    return ContextLoggerAdapter(logger, kwargs)


__all__ = [
    "LOG_LEVEL_MAP",
    "ContextLoggerAdapter",
    "JSONFormatter",
    "LogJSONEncoder",
    "StandardFormatter",
    "add_log_context",
    "get_logger",
    "setup_logging",
]
