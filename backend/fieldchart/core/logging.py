"""JSON logging with PHI redaction for the service and the field client."""

import logging
import sys
from typing import Any, Optional, TextIO

from pythonjsonlogger.json import JsonFormatter

from fieldchart.core.config import settings

REDACTED = "***REDACTED***"

# Substrings of `extra` keys whose values never reach a log line
PHI_KEY_FRAGMENTS = (
    "password",
    "token",
    "secret",
    "api_key",
    "authorization",
    "first_name",
    "last_name",
    "patient_name",
    "dob",
    "birth",
    "phone",
    "email",
    "street",
    "ssn",
    "signature",
    "narrative",
    "snapshot",
)

NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "aiosqlite", "asyncio")


def _is_phi_key(key: str) -> bool:
    lowered = key.lower()
    return any(fragment in lowered for fragment in PHI_KEY_FRAGMENTS)


def redact(value: Any) -> Any:
    """Redact PHI keys inside nested dicts and lists."""
    if isinstance(value, dict):
        return {key: REDACTED if _is_phi_key(str(key)) else redact(item) for key, item in value.items()}
    if isinstance(value, list):
        return [redact(item) for item in value]
    return value


class SanitizingFormatter(JsonFormatter):
    """JSON formatter that strips PHI and stamps service metadata on every record."""

    def process_log_record(self, log_record: dict[str, Any]) -> dict[str, Any]:
        sanitized = redact(log_record)
        sanitized["service"] = settings.APP_NAME
        sanitized["environment"] = settings.APP_ENV
        sanitized["version"] = settings.APP_VERSION
        return sanitized


def setup_logging(level: Optional[int] = None, stream: Optional[TextIO] = None) -> logging.Logger:
    """
    Route every logger through one JSON handler on the root logger.

    The audit mirror logger (`fieldchart.audit`) stays at INFO even when
    the root level is raised, so audit events are never filtered out.
    """
    root = logging.getLogger()
    root.setLevel(level if level is not None else (logging.DEBUG if settings.APP_DEBUG else logging.INFO))
    root.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(SanitizingFormatter(
        fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("fieldchart.audit").setLevel(logging.INFO)

    return root
