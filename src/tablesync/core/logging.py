"""
Logging utilities for tablesync.

Provides structured logging with correlation context so every line emitted
while synchronizing a snapshot can be traced back to its call
(sync_id → table → statements → row errors).
"""

import json
import logging
import sys
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional


# Context fields copied from log records into formatted output
CONTEXT_FIELDS = ["sync_id", "table", "attempt", "row_state", "statement"]


class StructuredFormatter(logging.Formatter):
    """
    Renders each record as one JSON object per line.

    Each log line includes:
    - level, logger, message and (optionally) an ISO-8601 UTC timestamp
    - Correlation fields if present (sync_id, table, attempt)
    - Exception text if present
    """

    def __init__(self, include_timestamp: bool = True):
        super().__init__()
        self.include_timestamp = include_timestamp

    def format(self, record: logging.LogRecord) -> str:
        """Serialize the record, its correlation fields and any traceback."""
        log_entry = {
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if self.include_timestamp:
            log_entry["timestamp"] = datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat()

        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_entry[field] = value

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """
    Plain-text formatter that appends correlation fields in brackets.

    Format: TIMESTAMP - LOGGER - LEVEL - MESSAGE [sync_id=X table=Y]
    """

    def __init__(self, include_timestamp: bool = True):
        if include_timestamp:
            fmt = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        else:
            fmt = "%(name)s - %(levelname)s - %(message)s"
        super().__init__(fmt)

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)

        context_parts = []
        for field in ["sync_id", "table", "attempt"]:
            value = getattr(record, field, None)
            if value is not None:
                context_parts.append(f"{field}={value}")

        if context_parts:
            return f"{base} [{' '.join(context_parts)}]"
        return base


class ContextFilter(logging.Filter):
    """Copies the current CorrelationContext onto every record passing the handler."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in CorrelationContext.get_current().items():
            if getattr(record, key, None) is None:
                setattr(record, key, value)
        return True


def configure_logging(
    level: int = logging.INFO,
    format_string: Optional[str] = None,
    include_timestamp: bool = True,
    structured: bool = False,
) -> None:
    """
    Configure logging for the tablesync package.

    Args:
        level: Threshold for the "tablesync" logger and its handler
        format_string: Plain logging format used instead of the bracketed one; unused when structured
        include_timestamp: Prefix lines (or add a JSON field) with the record time
        structured: Emit one JSON object per line instead of text

    Example:
        >>> from tablesync.core.logging import configure_logging
        >>> configure_logging(level=logging.DEBUG, structured=True, include_timestamp=False)
    """
    package_logger = logging.getLogger("tablesync")
    package_logger.setLevel(level)

    # Repeated calls keep the first handler
    if not package_logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(level)

        if structured:
            formatter = StructuredFormatter(include_timestamp=include_timestamp)
        elif format_string:
            formatter = logging.Formatter(format_string)
        else:
            formatter = HumanReadableFormatter(include_timestamp=include_timestamp)

        handler.setFormatter(formatter)
        handler.addFilter(ContextFilter())
        package_logger.addHandler(handler)


class CorrelationContext:
    """
    Scopes sync_id, table and other fields onto every record logged inside it.

    Contexts are tracked per thread, so concurrent synchronizations do not
    see each other's fields.

    Example:
        >>> with CorrelationContext(sync_id="abc", table="Employee"):
        ...     logger.info("Applying changes")  # includes sync_id and table
    """

    _local = threading.local()

    def __init__(self, sync_id: Optional[str] = None, table: Optional[str] = None, **extra: Any):
        self.context = {"sync_id": sync_id, "table": table, **extra}
        self.context = {k: v for k, v in self.context.items() if v is not None}
        self._previous: Optional["CorrelationContext"] = None

    def __enter__(self) -> "CorrelationContext":
        self._previous = getattr(CorrelationContext._local, "current", None)
        CorrelationContext._local.current = self
        return self

    def __exit__(self, *args) -> None:
        CorrelationContext._local.current = self._previous

    @classmethod
    def get_current(cls) -> Dict[str, Any]:
        """Return a copy of the innermost active context for this thread."""
        current = getattr(cls._local, "current", None)
        if current is None:
            return {}
        return current.context.copy()


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    **extra: Any,
) -> None:
    """
    Log through ``logger`` with the active correlation fields attached.

    Keyword fields override context fields of the same name.
    """
    context = CorrelationContext.get_current()
    context.update(extra)
    logger.log(level, message, extra=context)
