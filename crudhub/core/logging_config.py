"""
Structured logging.

Records carry a ``context`` mapping built from the keyword arguments of the
logging call, so call sites read like::

    logger = get_logger(__name__)
    logger.info("Calling database", target="postgresql", query="SELECT_USERS")
    logger.log(logging.ERROR, "Database query failed", context={"error": msg})

Console output is JSON lines. In production, error/combined/app log files
are written under ``settings.log_dir`` as well.
"""

import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, MutableMapping

from crudhub.core.config import Settings

# keyword arguments understood by Logger._log itself
_RESERVED = {"exc_info", "extra", "stack_info", "stacklevel"}

_HANDLER_MARK = "_crudhub_handler"


class StructuredLogger(logging.LoggerAdapter):
    """LoggerAdapter that folds free keyword arguments into ``record.context``."""

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        context = dict(self.extra or {})
        context.update(kwargs.pop("context", None) or {})
        for key in [k for k in kwargs if k not in _RESERVED]:
            context[key] = kwargs.pop(key)

        extra = dict(kwargs.get("extra") or {})
        extra["context"] = context
        kwargs["extra"] = extra
        return msg, kwargs


def get_logger(name: str, **bound: Any) -> StructuredLogger:
    return StructuredLogger(logging.getLogger(name), bound)


class JSONFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        context = getattr(record, "context", None)
        if context:
            entry.update(context)

        if record.exc_info and record.exc_info[1]:
            entry["exception"] = {
                "type": type(record.exc_info[1]).__name__,
                "message": str(record.exc_info[1]),
            }
        return json.dumps(entry, default=str)


def _handler(handler: logging.Handler, level: int | str) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter())
    setattr(handler, _HANDLER_MARK, True)
    return handler


def setup_logging(settings: Settings) -> None:
    """Install the crudhub handlers on the root logger (idempotent)."""
    root = logging.getLogger()
    for existing in [h for h in root.handlers if getattr(h, _HANDLER_MARK, False)]:
        root.removeHandler(existing)
        existing.close()

    level = settings.log_level.upper()
    root.setLevel(level)
    root.addHandler(_handler(logging.StreamHandler(), level))

    if settings.environment == "production":
        os.makedirs(settings.log_dir, exist_ok=True)
        root.addHandler(
            _handler(
                logging.FileHandler(os.path.join(settings.log_dir, "error.log")),
                logging.ERROR,
            )
        )
        root.addHandler(
            _handler(
                logging.FileHandler(os.path.join(settings.log_dir, "combined.log")),
                logging.DEBUG,
            )
        )
        root.addHandler(
            _handler(
                logging.FileHandler(os.path.join(settings.log_dir, "app.log")),
                logging.INFO,
            )
        )
