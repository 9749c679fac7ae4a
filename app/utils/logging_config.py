"""
Structured Logging Configuration

Provides JSON-formatted logging with:
- Request ID tracking
- Sync run tracking (every line of one reconciliation run shares a sync_id)
- Structured output for log aggregation
"""

import logging
import json
import sys
from datetime import datetime, timezone
from typing import Optional, Any, Dict
from contextvars import ContextVar

# Context variables for request / sync tracking
request_id_var: ContextVar[str] = ContextVar('request_id', default='')
sync_id_var: ContextVar[str] = ContextVar('sync_id', default='')


class JSONFormatter(logging.Formatter):
    """
    Custom JSON formatter for structured logging.
    Outputs logs in JSON format for easy parsing by log aggregators.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Request and sync context, when set
        request_id = request_id_var.get()
        if request_id:
            log_data["request_id"] = request_id

        sync_id = sync_id_var.get()
        if sync_id:
            log_data["sync_id"] = sync_id

        # Source location
        log_data["module"] = record.module
        log_data["function"] = record.funcName
        log_data["line"] = record.lineno

        # Exception info if present
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Structured fields passed through log_with_context
        if hasattr(record, 'extra_data'):
            log_data["data"] = record.extra_data

        # Timing of sync runs
        if hasattr(record, 'duration_ms'):
            log_data["duration_ms"] = record.duration_ms

        # Entity the line is about (sync run, booking)
        if hasattr(record, 'entity_type'):
            log_data["entity_type"] = record.entity_type
        if hasattr(record, 'entity_id'):
            log_data["entity_id"] = record.entity_id

        return json.dumps(log_data, ensure_ascii=False, default=str)


class StructuredLogger(logging.LoggerAdapter):
    """
    Logger adapter that adds structured context to log messages.
    """

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        # Merge adapter context into per-call extra
        extra = kwargs.get('extra', {})
        extra.update(self.extra)
        kwargs['extra'] = extra
        return msg, kwargs

    def log_with_context(
        self,
        level: int,
        msg: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        duration_ms: Optional[float] = None,
        **extra_data
    ):
        """Log with additional structured context."""
        extra = {}
        if entity_type:
            extra['entity_type'] = entity_type
        if entity_id:
            extra['entity_id'] = entity_id
        if duration_ms is not None:
            extra['duration_ms'] = duration_ms
        if extra_data:
            extra['extra_data'] = extra_data

        self.log(level, msg, extra=extra)

    def sync_started(self, source_count: int, window_from, window_to):
        """Log the start of a reconciliation run."""
        self.log_with_context(
            logging.INFO,
            f"Sync started: {source_count} feeds, window {window_from} -> {window_to}",
            entity_type="sync",
            entity_id=sync_id_var.get() or None,
            source_count=source_count,
            window_from=window_from,
            window_to=window_to
        )

    def sync_completed(self, stats: Dict[str, Any], duration_ms: float):
        """Log reconciliation run statistics."""
        self.log_with_context(
            logging.INFO,
            f"Sync completed: {stats.get('upserted', 0)} upserted, "
            f"{stats.get('cancelled', 0)} cancelled, "
            f"{stats.get('failed_urls', 0)} feeds failed",
            entity_type="sync",
            entity_id=sync_id_var.get() or None,
            duration_ms=duration_ms,
            **stats
        )

    def manual_edit(self, action: str, booking_id: str, **details):
        """Log an operator edit (merge, split, block, ...)."""
        self.log_with_context(
            logging.INFO,
            f"Manual edit: {action} {booking_id}",
            entity_type="booking",
            entity_id=booking_id,
            action=action,
            **details
        )


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    include_uvicorn: bool = True
) -> None:
    """
    Configure application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: Use JSON format (True for production)
        include_uvicorn: Also configure uvicorn loggers
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    # Single stdout handler
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)

    # JSON for production, plain text for local runs
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))

    # Root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    # App logger
    app_logger = logging.getLogger("app")
    app_logger.setLevel(log_level)

    # Route uvicorn through the same handler
    if include_uvicorn:
        for logger_name in ["uvicorn", "uvicorn.access", "uvicorn.error"]:
            uvicorn_logger = logging.getLogger(logger_name)
            uvicorn_logger.handlers = [handler]

    # Reduce noise from third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger for the given module."""
    base_logger = logging.getLogger(name)
    return StructuredLogger(base_logger, {})


# Request context helpers used by the request id middleware
def set_request_context(request_id: str):
    """Set context for the current request."""
    request_id_var.set(request_id)


def clear_request_context():
    """Clear request context."""
    request_id_var.set('')
