"""Line-oriented JSON logging for the sync layer.

Fallback transitions, cache purges and divergence reports are logged with
their details as record attributes. ``StructuredJsonFormatter`` turns those
attributes into top-level JSON keys so a log pipeline can filter on them.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_BUILTINS = frozenset(
    vars(logging.LogRecord("", logging.NOTSET, "", 0, "", (), None))
) | {"message", "asctime", "taskName"}


def _jsonable(value: Any) -> Any:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return str(value)
    return value


class StructuredJsonFormatter(logging.Formatter):
    """Render each record as one JSON object.

    Keys are ``timestamp`` (UTC, ISO 8601), ``level``, ``logger`` and
    ``message``, then ``exception`` when a traceback is attached, then every
    extra attribute passed by the caller.
    """

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload: dict[str, Any] = {
            "timestamp": created.isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        payload.update(
            (name, _jsonable(value))
            for name, value in vars(record).items()
            if name not in _RECORD_BUILTINS and not name.startswith("_")
        )
        return json.dumps(payload, default=str)


def configure_structured_logging(
    level: int = logging.INFO,
    logger_name: str | None = "content_sync",
) -> logging.Logger:
    """Send ``logger_name`` records to stdout as JSON lines.

    Calling this again replaces the previous handler rather than stacking a
    second one.
    """
    target = logging.getLogger(logger_name)
    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(StructuredJsonFormatter())
    target.handlers = [stdout_handler]
    target.setLevel(level)
    return target


class SyncLoggerAdapter(logging.LoggerAdapter):
    """Stamps every record with fixed context, such as a bus ``context_id``."""

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        kwargs["extra"] = {**kwargs.get("extra", {}), **self.extra}
        return msg, kwargs


def log_sync_event(
    logger: logging.Logger | logging.LoggerAdapter,
    event: str,
    level: int = logging.INFO,
    message: str | None = None,
    **fields: Any,
) -> None:
    """Log a named sync event with structured fields.

    The event name is the log message unless ``message`` is given.

    Example:
        >>> log_sync_event(logger, "fallback_write", resource_type="article", item_id="local-1")
    """
    logger.log(level, message or event, extra={"sync_event": event, **fields})
