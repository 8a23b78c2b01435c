"""
Standardized error response formatting utilities.

Provides consistent error response structure across all endpoints.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Request

from interop_gateway.exceptions import ExternalSystemError, InteropError


def create_error_response(
    message: str,
    status_code: int = 500,
    correlation_id: Optional[str] = None,
    error_type: Optional[str] = None,
    hint: Optional[str] = None,
    detail: Optional[Any] = None,
    path: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Create a standardized error response dictionary.

    Args:
        message: Human-readable error message
        status_code: HTTP status code
        correlation_id: Request correlation ID for tracing
        error_type: Type/category of error (e.g., "malformed_message", "circuit_open")
        hint: Helpful hint for resolving the error
        detail: Additional error details
        path: Request path where error occurred

    Returns:
        Standardized error response dictionary
    """
    response: Dict[str, Any] = {
        "status": "error",
        "message": message,
        "correlation_id": correlation_id or uuid.uuid4().hex,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "status_code": status_code,
    }

    if error_type:
        response["error_type"] = error_type

    if hint:
        response["hint"] = hint

    if detail:
        response["detail"] = detail

    if path:
        response["path"] = path

    return response


def get_hint_for_status_code(status_code: int) -> Optional[str]:
    """
    Get a helpful hint message for a given HTTP status code.

    Args:
        status_code: HTTP status code

    Returns:
        Hint message or None
    """
    hints = {
        400: "Bad request. Check the HL7 message structure or input parameters.",
        404: "The requested resource was not found. Check the URL and resource ID.",
        409: "Resource conflict. The external system may be inactive or in use.",
        422: "Request validation failed. Check required FHIR elements and input parameters.",
        429: "Rate limit for the external system exceeded. Retry after the indicated delay.",
        500: "Internal server error. Please try again later or contact support.",
        502: "The external system did not accept the request after retrying.",
        503: "The external system is unavailable; its circuit breaker is open.",
    }

    return hints.get(status_code)


def interop_error_response(exc: InteropError, correlation_id: Optional[str], path: Optional[str] = None) -> Dict[str, Any]:
    """Error body for a gateway exception, including its structured fields."""
    detail: Dict[str, Any] = {}
    if exc.detail:
        detail["reason"] = exc.detail
    for attribute in ("resource_type", "resource_id", "issues", "attempts", "retry_after", "in_flight"):
        value = getattr(exc, attribute, None)
        if value not in (None, []):
            detail[attribute] = value

    response = create_error_response(
        message=exc.message,
        status_code=exc.status_code,
        correlation_id=correlation_id,
        error_type=exc.error_type,
        hint=get_hint_for_status_code(exc.status_code),
        detail=detail or None,
        path=path,
    )
    if isinstance(exc, ExternalSystemError):
        response["system_id"] = exc.system_id
    return response


def get_correlation_id(request: Request) -> str:
    """
    Extract correlation ID from request state or generate a new one.

    Args:
        request: FastAPI request object

    Returns:
        Correlation ID string
    """
    return getattr(request.state, "correlation_id", uuid.uuid4().hex)


def format_validation_error(
    errors: list,
    correlation_id: Optional[str] = None,
    path: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Format Pydantic validation errors into standardized response.

    Args:
        errors: List of validation errors from Pydantic
        correlation_id: Request correlation ID
        path: Request path

    Returns:
        Standardized error response dictionary
    """
    error_messages = []
    for error in errors:
        if isinstance(error, dict):
            field = error.get("loc", ["unknown"])[-1]
            msg = error.get("msg", "Validation error")
            error_messages.append(f"{field}: {msg}")
        else:
            error_messages.append(str(error))

    message = "Validation failed: " + "; ".join(error_messages)

    return create_error_response(
        message=message,
        status_code=422,
        correlation_id=correlation_id,
        error_type="validation_error",
        hint=get_hint_for_status_code(422),
        path=path,
    )
