"""
Logging utilities for consistent logging with correlation IDs.

Provides standardized logging functions that automatically include
correlation IDs from request context.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import Request

logger = logging.getLogger(__name__)


def get_correlation_id_from_request(request: Optional[Request]) -> str:
    """
    Extract correlation ID from request state or return empty string.

    Args:
        request: FastAPI request object (may be None)

    Returns:
        Correlation ID string or empty string if not available
    """
    if request is None:
        return ""
    return getattr(request.state, "correlation_id", "")


def _format(message: str, correlation_id: str, context: Dict[str, Any]) -> str:
    formatted = f"[{correlation_id}] {message}" if correlation_id else message
    if context:
        context_str = ", ".join(f"{k}={v}" for k, v in context.items())
        formatted = f"{formatted} ({context_str})"
    return formatted


def log_with_correlation(
    level: str,
    message: str,
    correlation_id: Optional[str] = None,
    request: Optional[Request] = None,
    **kwargs
) -> None:
    """
    Log a message with correlation ID.

    Args:
        level: Log level ('info', 'warning', 'error', 'debug')
        message: Log message
        correlation_id: Correlation ID (extracted from request if not provided)
        request: FastAPI request object (used to extract correlation ID)
        **kwargs: Additional context to include in log message
    """
    if correlation_id is None:
        correlation_id = get_correlation_id_from_request(request)

    log_func = getattr(logger, level.lower(), logger.info)
    log_func(_format(message, correlation_id, kwargs))


def log_structured(
    level: str,
    message: str,
    correlation_id: Optional[str] = None,
    request: Optional[Request] = None,
    **fields: Any
) -> None:
    """
    Log an event with key=value fields, e.g. one line per handled HL7 message.

    Args:
        level: Log level name
        message: Event description
        correlation_id: Explicit correlation ID
        request: Request carrying the correlation ID
        **fields: Event fields; None values are dropped
    """
    context = {key: value for key, value in fields.items() if value is not None}
    log_with_correlation(level, message, correlation_id, request, **context)


def log_service_error(
    error: BaseException,
    context: Dict[str, Any],
    correlation_id: Optional[str] = None,
    request: Optional[Request] = None,
) -> None:
    """
    Log an error raised by a service call.

    5xx-class errors are logged at error level with traceback, client errors
    at warning level.
    """
    correlation_id = correlation_id or get_correlation_id_from_request(request)
    status_code = getattr(error, "status_code", 500)
    fields = dict(context, error_type=type(error).__name__)
    message = _format(str(error) or type(error).__name__, correlation_id, fields)
    if status_code >= 500:
        logger.error(message, exc_info=(type(error), error, error.__traceback__))
    else:
        logger.warning(message)
