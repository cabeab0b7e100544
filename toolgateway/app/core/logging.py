"""Structured logging configuration for the gateway.

This module provides a structured logging setup using Python's standard
logging module with JSON formatting for production environments.

All handlers write to stderr so that stdout stays free for any protocol
framing layered on top of the process.
"""

import json
import logging
import logging.config
import sys
import traceback
from datetime import datetime
from typing import Any, Dict, Optional

from toolgateway.app.core.config import Settings, settings


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging.

    Outputs log records as JSON objects for consumption by log aggregation
    systems like ELK Stack or Grafana Loki.

    Attributes:
        fields: List of fields to include in JSON output
    """

    # Standard fields always included
    STANDARD_FIELDS = ["name", "levelname", "message", "timestamp"]

    # Contextual fields for invocation tracking
    CONTEXT_FIELDS = [
        "request_id",    # Request ID from X-Request-ID header
        "tool",          # Tool name being invoked
        "resource_key",  # Rate limit / cache resource key
        "model",         # Upstream model id
        "attempt",       # Retry attempt number
        "duration_ms",   # Invocation duration in milliseconds
    ]

    _RESERVED = frozenset((
        "name", "msg", "args", "levelname", "levelno", "pathname",
        "filename", "module", "exc_info", "exc_text", "stack_info",
        "lineno", "funcName", "created", "msecs", "relativeCreated",
        "thread", "threadName", "processName", "process", "message",
        "asctime", "timestamp", "logger", "level", "source", "taskName",
    ))

    def __init__(
        self,
        fields: Optional[list] = None,
        datefmt: Optional[str] = None,
    ):
        """Initialize JSON formatter.

        Args:
            fields: Custom fields to include (defaults to all standard + context)
            datefmt: Date format string (ISO8601 by default)
        """
        super().__init__(datefmt=datefmt)
        self.fields = fields or (self.STANDARD_FIELDS + self.CONTEXT_FIELDS)

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON.

        Args:
            record: Log record to format

        Returns:
            JSON string representation of the log record
        """
        log_data: Dict[str, Any] = {}

        record.message = record.getMessage()

        log_data["timestamp"] = datetime.now().astimezone().isoformat()
        log_data["level"] = record.levelname
        log_data["logger"] = record.name
        log_data["message"] = record.message

        log_data["source"] = {
            "file": record.pathname,
            "line": record.lineno,
            "function": record.funcName,
        }

        for field in self.CONTEXT_FIELDS:
            if hasattr(record, field):
                value = getattr(record, field)
                if value is not None and value != "-":
                    log_data[field] = value

        for key, value in record.__dict__.items():
            if key in self._RESERVED or key in self.CONTEXT_FIELDS:
                continue
            log_data.setdefault("extra", {})[key] = value

        if record.exc_info and record.exc_info != (None, None, None):
            log_data["exception"] = traceback.format_exception(*record.exc_info)

        return json.dumps(log_data, default=str, ensure_ascii=False)


class ContextFilter(logging.Filter):
    """Logging filter that adds contextual fields to log records.

    Adds default values for request_id, tool and the other contextual
    fields so that format strings referencing them never fail.
    """

    CONTEXT_DEFAULTS = {field: None for field in JSONFormatter.CONTEXT_FIELDS}

    def filter(self, record: logging.LogRecord) -> bool:
        """Add context fields to log record if not present.

        Args:
            record: Log record to enrich

        Returns:
            True to allow the record through
        """
        for field, default in self.CONTEXT_DEFAULTS.items():
            if not hasattr(record, field):
                setattr(record, field, default)
        return True


def get_logging_config(app_settings: Optional[Settings] = None) -> Dict[str, Any]:
    """Get logging configuration dictionary.

    Args:
        app_settings: Settings to read level/format from (defaults to global)

    Returns:
        Logging configuration dict compatible with logging.config.dictConfig
    """
    cfg = app_settings or settings
    log_format = cfg.log_format.lower()
    log_level = cfg.log_level.upper()

    formatters = {
        "standard": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        },
        "structured": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s - tool=%(tool)s - resource_key=%(resource_key)s - request_id=%(request_id)s"
        },
    }

    if log_format == "json":
        formatters["json"] = {
            "()": "toolgateway.app.core.logging.JSONFormatter",
        }
        default_formatter = "json"
    else:
        default_formatter = "structured" if log_format == "structured" else "standard"

    handlers = {
        "console": {
            "class": "logging.StreamHandler",
            "level": log_level,
            "formatter": default_formatter,
            "stream": sys.stderr,
            "filters": ["context"],
        },
    }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": formatters,
        "filters": {
            "context": {
                "()": "toolgateway.app.core.logging.ContextFilter",
            },
        },
        "handlers": handlers,
        "loggers": {
            "toolgateway": {
                "level": log_level,
            },
            "uvicorn": {
                "level": log_level,
                "handlers": ["console"],
                "propagate": False,
            },
        },
        "root": {
            "level": log_level,
            "handlers": ["console"],
        },
    }


def setup_logging(app_settings: Optional[Settings] = None) -> None:
    """Configure logging for the application."""
    logging.config.dictConfig(get_logging_config(app_settings))

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)


def get_logger(name: str = "toolgateway") -> logging.Logger:
    """Get a logger instance with the specified name.

    Args:
        name: Logger name, defaults to "toolgateway"

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)


def get_log_context(
    request_id: Optional[str] = None,
    tool: Optional[str] = None,
    resource_key: Optional[str] = None,
    model: Optional[str] = None,
    **extra
) -> Dict[str, Any]:
    """Create a log context dictionary for use with the extra parameter.

    Args:
        request_id: Request ID
        tool: Tool name
        resource_key: Rate limit / cache resource key
        model: Upstream model id
        **extra: Additional custom fields

    Returns:
        Dictionary suitable for passing as extra= parameter to logging calls

    Example:
        >>> logger.info(
        ...     "Tool executed",
        ...     extra=get_log_context(tool="groq_text_completion", duration_ms=12.5)
        ... )
    """
    context = {
        "request_id": request_id,
        "tool": tool,
        "resource_key": resource_key,
        "model": model,
    }
    context.update(extra)
    return {k: v for k, v in context.items() if v is not None}
