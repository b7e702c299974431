"""
Structured logging configuration using structlog.

Features:
- JSON structured logging for staging/production
- Pretty console logging for development
- Request ID and subject tracking through context variables
- Phone masking helper so full numbers never reach log aggregation
"""

import logging
import sys
from contextvars import ContextVar
from typing import Any, cast

import structlog
from structlog.types import EventDict, Processor

from nursery_auth.config import settings

# Context variables for request tracking
request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)
subject_ctx: ContextVar[str | None] = ContextVar("subject", default=None)


def add_context_info(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add contextual information to log records."""
    request_id = request_id_ctx.get(None)
    if request_id:
        event_dict["request_id"] = request_id

    subject = subject_ctx.get(None)
    if subject:
        event_dict.setdefault("subject", subject)

    return event_dict


def configure_logging() -> None:
    """
    Configure structured logging for the application.

    In development: Pretty console output with colors
    Elsewhere: JSON-formatted logs for aggregation
    """
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        add_context_info,
        structlog.processors.StackInfoRenderer(),
    ]

    if settings.ENVIRONMENT == "development":
        processors: list[Processor] = shared_processors + [
            structlog.dev.ConsoleRenderer(colors=True)
        ]
    else:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(logging.NOTSET),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.LOG_LEVEL.upper()),
    )

    if settings.ENVIRONMENT != "development":
        logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a logger instance with the given name.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logger instance

    Example:
        logger = get_logger(__name__)
        logger.info("otp_sent", phone=mask_phone(phone), challenge_id=12)
    """
    return cast(structlog.stdlib.BoundLogger, structlog.get_logger(name))


def mask_phone(phone: str | None) -> str:
    """Keep only the last four digits of a phone number for logging."""
    if not phone:
        return ""
    if len(phone) <= 4:
        return "*" * len(phone)
    return "*" * (len(phone) - 4) + phone[-4:]


def set_request_context(request_id: str, subject: str | None = None) -> None:
    """
    Set context variables for the current request.

    Args:
        request_id: Unique request identifier
        subject: Optional authenticated subject (``<role>:<subject_id>``)
    """
    request_id_ctx.set(request_id)
    if subject:
        subject_ctx.set(subject)


def clear_request_context() -> None:
    """Clear context variables after request completes."""
    request_id_ctx.set(None)
    subject_ctx.set(None)
