"""
Exception taxonomy for the interoperability gateway.

Local validation failures and failures reported by external systems live in
separate branches so callers can choose between rejecting a request and
falling back to cached data.
"""

from typing import List, Optional


class InteropError(Exception):
    """Base exception for all gateway errors."""

    status_code = 500
    error_type = "interop_error"

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail


class MalformedMessageError(InteropError):
    """Raised when an HL7 message violates the basic wire structure."""

    status_code = 400
    error_type = "malformed_message"


class UnsupportedMessageTypeError(InteropError):
    """Raised when asked to generate an HL7 message type we have no builder for."""

    status_code = 400
    error_type = "unsupported_message_type"

    def __init__(self, message_type: str):
        super().__init__(f"Unsupported HL7 message type: {message_type}")
        self.message_type = message_type


class InvalidResourceError(InteropError):
    """Raised when a FHIR document is incomplete and cannot be stored."""

    status_code = 422
    error_type = "invalid_resource"

    def __init__(self, message: str, *, resource_type: Optional[str] = None, issues: Optional[List[str]] = None):
        super().__init__(message)
        self.resource_type = resource_type
        self.issues = list(issues or [])


class NotFoundError(InteropError):
    """Raised when a resource or external system does not exist."""

    status_code = 404
    error_type = "not_found"

    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(f"{resource_type}/{resource_id} not found")
        self.resource_type = resource_type
        self.resource_id = resource_id


class SystemInactiveError(InteropError):
    status_code = 409
    error_type = "system_inactive"

    def __init__(self, system_id: str):
        super().__init__(f"External system {system_id} is not active")
        self.system_id = system_id


class SystemBusyError(InteropError):
    status_code = 409
    error_type = "system_busy"

    def __init__(self, system_id: str, in_flight: int):
        super().__init__(f"External system {system_id} has {in_flight} deliveries in flight")
        self.system_id = system_id
        self.in_flight = in_flight


class DuplicateSystemError(InteropError):
    """Raised when a system name is already registered; rate windows are keyed by name."""

    status_code = 409
    error_type = "duplicate_system"

    def __init__(self, name: str):
        super().__init__(f"External system named {name!r} already exists")
        self.name = name


class ExternalSystemError(InteropError):
    """Base for failures raised by the delivery gateway on behalf of a remote system."""

    status_code = 502
    error_type = "external_system_error"

    def __init__(self, message: str, *, system_id: Optional[str] = None, detail: Optional[str] = None):
        super().__init__(message, detail)
        self.system_id = system_id


class RateLimitExceededError(ExternalSystemError):
    """Raised when a system's sliding window is full. ``retry_after`` is in seconds."""

    status_code = 429
    error_type = "rate_limit_exceeded"

    def __init__(self, key: str, retry_after: float, *, system_id: Optional[str] = None):
        super().__init__(
            f"Rate limit exceeded for {key}. Try again in {retry_after:.0f} seconds",
            system_id=system_id,
        )
        self.key = key
        self.retry_after = retry_after


class CircuitOpenError(ExternalSystemError):
    """Raised when the circuit breaker rejects a call without attempting it."""

    status_code = 503
    error_type = "circuit_open"

    def __init__(self, name: str, retry_after: Optional[float] = None, *, system_id: Optional[str] = None):
        super().__init__(f"Circuit breaker for {name} is open", system_id=system_id)
        self.name = name
        self.retry_after = retry_after
        self.attempts: Optional[int] = None


class DeliveryFailedError(ExternalSystemError):
    """Raised when every delivery attempt failed."""

    status_code = 502
    error_type = "delivery_failed"

    def __init__(self, system_id: str, attempts: int, cause: Optional[BaseException] = None):
        super().__init__(
            f"Delivery to {system_id} failed after {attempts} attempts: {cause}",
            system_id=system_id,
            detail=str(cause) if cause is not None else None,
        )
        self.attempts = attempts
        self.cause = cause
