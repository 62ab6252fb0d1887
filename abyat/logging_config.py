"""Structured logs for the WhatsApp webhook.

Each record is one JSON line. Records emitted on behalf of a WhatsApp user
carry that user's id as a top-level ``user_id`` so one conversation can be
followed across the webhook, the facet flow, edit mode and the timers.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Optional

LIFTED_FIELDS = ("user_id", "session_id")

# chatty below WARNING: every Graph API call, every decoded WebP upload
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "PIL")


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = getattr(record, "context", None)
        if context:
            for key in LIFTED_FIELDS:
                if context.get(key):
                    log_data[key] = context[key]
            log_data["context"] = context

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Send JSON lines to stdout at ``LOG_LEVEL``; unknown names fall back to INFO."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Service loggers live under ``abyat.`` (``abyat.conversation_service``, ...)."""
    return logging.getLogger(f"abyat.{name}")


class UserLoggerAdapter(logging.LoggerAdapter):
    """Bound user fields merged with the ``context=`` passed on each call."""

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        context = kwargs.pop("context", None)
        if context or self.extra:
            kwargs["extra"] = {"context": {**self.extra, **(context or {})}}
        return msg, kwargs


def user_logger(logger: logging.Logger, user_id: str, session_id: Optional[str] = None) -> UserLoggerAdapter:
    bound = {"user_id": user_id}
    if session_id:
        bound["session_id"] = session_id
    return UserLoggerAdapter(logger, bound)
