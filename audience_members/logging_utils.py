"""
Structured logging for audience maintenance.

Member writes and refresh runs log through ``member_logger`` so every record
carries the seller, the contact email and the member action it concerns.
``AudienceJsonFormatter`` renders those as top-level JSON fields, which lets
a log aggregator answer "what happened to this member" without parsing
messages. Call ``configure_audience_logging`` once at process start-up.
"""

import json
import logging
import sys
from datetime import UTC, datetime
from typing import IO, Any

# Always emitted, null when a record does not concern one member
MEMBER_FIELDS = ("seller_id", "email", "action")

_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class AudienceJsonFormatter(logging.Formatter):
    """
    One JSON object per record.

    Fields:
    - timestamp: record creation time, ISO 8601 in UTC
    - level, logger, message
    - seller_id, email, action: member context (null when absent)
    - context: any other ``extra`` values (counts, durations, errors)
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in MEMBER_FIELDS:
            value = getattr(record, name, None)
            payload[name] = getattr(value, "value", value)

        context = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS and key not in MEMBER_FIELDS and not key.startswith("_")
        }
        if context:
            payload["context"] = context
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


def configure_audience_logging(
    level: int = logging.INFO,
    stream: IO[str] | None = None,
) -> logging.Logger:
    """
    Send the library's records to ``stream`` as JSON lines.

    Only the ``audience_members`` logger is touched, and calling this again
    replaces the handler it installed before rather than adding another.

    Args:
        level: Logging level (default: INFO)
        stream: Output stream (default: stdout)

    Returns:
        The configured ``audience_members`` logger
    """
    logger = logging.getLogger("audience_members")
    for handler in list(logger.handlers):
        if isinstance(handler.formatter, AudienceJsonFormatter):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(AudienceJsonFormatter())
    logger.addHandler(handler)
    logger.setLevel(level)
    return logger


def get_audience_logger(name: str) -> logging.Logger:
    """Logger named ``audience_members.{name}``."""
    return logging.getLogger(f"audience_members.{name}")


class AudienceLoggerAdapter(logging.LoggerAdapter):
    """
    Adds member context to every record; per-call ``extra`` wins.

    Example:
        >>> log = member_logger(logger, 7, "a@example.com")
        >>> log.info("Member created", extra={"action": "created"})
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


def member_logger(
    logger: logging.Logger, seller_id: int, email: str | None = None
) -> AudienceLoggerAdapter:
    """Adapter stamping ``seller_id`` (and ``email`` when given) on records."""
    context: dict[str, Any] = {"seller_id": seller_id}
    if email is not None:
        context["email"] = email
    return AudienceLoggerAdapter(logger, context)
