"""
Outbound delivery to external systems: rate limiting, circuit breaking, retry.
"""

from interop_gateway.delivery.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerState,
    CircuitState,
)
from interop_gateway.delivery.gateway import (
    BroadcastOutcome,
    BroadcastResult,
    DeliveryGateway,
    DeliveryPolicy,
    DeliveryResult,
)
from interop_gateway.delivery.rate_limiter import RateLimiterState, SlidingWindowRateLimiter
from interop_gateway.delivery.transports import SystemClient, auth_headers

__all__ = [
    "BroadcastOutcome",
    "BroadcastResult",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerState",
    "CircuitState",
    "DeliveryGateway",
    "DeliveryPolicy",
    "DeliveryResult",
    "RateLimiterState",
    "SlidingWindowRateLimiter",
    "SystemClient",
    "auth_headers",
]
