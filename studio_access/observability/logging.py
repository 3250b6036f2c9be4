"""
Structured Logging with Structlog.

Provides JSON-formatted logs with request context. Signed download URLs,
webhook signatures and bearer tokens are credentials; the redaction
processor keeps them out of log output.
"""

import logging
import sys
from typing import Any
from urllib.parse import urlsplit, urlunsplit

import structlog
from structlog.types import EventDict, Processor

from studio_access.config import settings

REDACTED = "[redacted]"

# Keys whose values are secrets in their entirety
SECRET_KEYS = frozenset(
    {"authorization", "signature", "token", "secret", "secret_key", "api_key", "password"}
)


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add application-level context to all log entries."""
    event_dict["service"] = settings.service_name
    event_dict["version"] = settings.api_version
    return event_dict


def _strip_query(url: str) -> str:
    parts = urlsplit(url)
    if not parts.query:
        return url
    return urlunsplit((parts.scheme, parts.netloc, parts.path, REDACTED, ""))


def redact_sensitive(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Mask secrets before rendering.

    Secret-named keys are replaced outright. Values of *_url keys keep their
    path but lose the query string, which carries expiry and signature for
    signed downloads (local HMAC and S3 presigned alike).
    """
    for key, value in event_dict.items():
        lowered = key.lower()
        if lowered in SECRET_KEYS:
            event_dict[key] = REDACTED
        elif lowered.endswith("_url") and isinstance(value, str):
            event_dict[key] = _strip_query(value)
    return event_dict


def setup_logging() -> None:
    """
    Configure structured logging with structlog.

    Logs are formatted as JSON for machine parsing with the following structure:
    {
        "event": "download_url_issued",
        "level": "info",
        "timestamp": "2026-10-19T12:00:00.123456Z",
        "logger": "studio_access.services.delivery",
        "service": "studio-access-api",
        "version": "0.1.0",
        "request_id": "req-123",
        ...additional context
    }
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level.upper()),
    )

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_app_context,
        redact_sensitive,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    if settings.log_level.upper() == "DEBUG":
        processors.append(structlog.processors.ExceptionRenderer())
    else:
        processors.append(structlog.processors.format_exc_info)

    if settings.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Usage:
        logger = get_logger(__name__)
        logger.info("access_checked", content_id=str(content_id), decision="granted")
    """
    return structlog.get_logger(name)  # type: ignore[no-any-return]


class log_context:
    """
    Bind request-scoped context (request id, principal) to every log line.

    Usage:
        with log_context(request_id="req-123", principal_id="U42"):
            logger.info("download_url_issued")
    """

    def __init__(self, **kwargs: Any) -> None:
        self.context = {key: value for key, value in kwargs.items() if value is not None}

    def __enter__(self) -> None:
        structlog.contextvars.bind_contextvars(**self.context)

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        structlog.contextvars.unbind_contextvars(*self.context.keys())
