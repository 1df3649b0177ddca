"""Logging setup for the loop tracker: plain text or JSON lines."""
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

TEXT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Record attributes copied to the top level of JSON output when present
CONTEXT_FIELDS: Tuple[str, ...] = ("request_id", "user_id", "loop_id", "organization_id")

# Libraries that are chatty at INFO
QUIET_LOGGERS: Tuple[str, ...] = (
    "httpx",
    "httpcore",
    "sqlalchemy.engine",
    "multipart",
    "uvicorn.access",
)


class JSONFormatter(logging.Formatter):
    """
    Formats each record as one JSON object per line.

    ``extra={"extra_data": {...}}`` is emitted under ``extra``; request and
    loop identifiers bound by a ContextLogger are emitted as top-level keys.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                payload[name] = value

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            payload["extra"] = extra_data
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


class ContextLogger(logging.LoggerAdapter):
    """Logger adapter that stamps bound context (request_id, user_id...) onto every record."""

    def process(self, msg: str, kwargs: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


def _formatter(json_format: bool) -> logging.Formatter:
    if json_format:
        return JSONFormatter()
    return logging.Formatter(TEXT_LOG_FORMAT, DATE_FORMAT)


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    json_format: bool = False,
) -> None:
    """
    Configure root logging for the API and the CLI.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Also append to this file when set.
        json_format: Emit JSON lines instead of text.
    """
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    for handler in handlers:
        handler.setFormatter(_formatter(json_format))

    logging.basicConfig(level=level, handlers=handlers, force=True)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Module logger; call with ``__name__``."""
    return logging.getLogger(name)


def get_context_logger(name: str, **context: Any) -> ContextLogger:
    """
    Logger that includes ``context`` in every record.

    Example:
        logger = get_context_logger(__name__, request_id="abc123", loop_id=42)
        logger.info("Uploading documents")
    """
    return ContextLogger(logging.getLogger(name), context)


def log_external_call(
    logger: logging.Logger,
    service: str,
    operation: str,
    success: bool,
    duration_ms: float,
    **extra: Any,
) -> None:
    """
    Log one call to an outside service (the email API) with timing.

    Args:
        logger: Logger instance to use.
        service: Name of the external service (e.g., "email").
        operation: Operation performed (e.g., "send").
        success: Whether the call succeeded.
        duration_ms: Duration of the call in milliseconds.
        **extra: Additional context to log.
    """
    data = {
        "service": service,
        "operation": operation,
        "success": success,
        "duration_ms": round(duration_ms, 2),
        **extra,
    }
    outcome = "completed in" if success else "failed after"
    level = logging.INFO if success else logging.WARNING
    logger.log(
        level,
        f"External call: {service}.{operation} {outcome} {duration_ms:.2f}ms",
        extra={"extra_data": data},
    )


__all__ = [
    "CONTEXT_FIELDS",
    "setup_logging",
    "get_logger",
    "get_context_logger",
    "log_external_call",
    "JSONFormatter",
    "ContextLogger",
]
