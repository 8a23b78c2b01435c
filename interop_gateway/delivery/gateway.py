"""
Resilient delivery gateway.

Wraps outbound operations against registered external systems with a
sliding-window rate limit, a per-system circuit breaker and bounded
exponential-backoff retry, and records the outcome on the system's sync status.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

import anyio
import httpx

from interop_gateway.audit import AuditAction, ComplianceAuditor
from interop_gateway.delivery.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from interop_gateway.delivery.rate_limiter import SlidingWindowRateLimiter
from interop_gateway.delivery.transports import SystemClient
from interop_gateway.exceptions import (
    CircuitOpenError,
    DeliveryFailedError,
    ExternalSystemError,
    RateLimitExceededError,
    SystemInactiveError,
)
from interop_gateway.models.external_system import ExternalSystem, SyncStatus, SystemType

logger = logging.getLogger(__name__)

Operation = Callable[[SystemClient], Awaitable[Any]]

RETRYABLE_STATUSES = {408, 429, 500, 502, 503, 504}


def is_system_failure(exc: BaseException) -> bool:
    """Client errors (4xx other than 408/429) are the caller's fault, not the system's."""
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status >= 500 or status in RETRYABLE_STATUSES
    return True


@dataclass
class DeliveryPolicy:
    """Retry, timeout and protection settings shared by every system."""

    max_attempts: int = 3
    backoff_base: float = 2.0
    backoff_scale: float = 1.0
    request_timeout: float = 30.0
    rate_limit: int = 100
    rate_period: float = 60.0
    breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)

    def backoff(self, attempt: int) -> float:
        return self.backoff_scale * self.backoff_base ** attempt


@dataclass
class DeliveryResult:
    system_id: str
    system_name: str
    value: Any
    attempts: int


@dataclass
class BroadcastOutcome:
    system_id: str
    system_name: str
    success: bool
    attempts: Optional[int] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    value: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "system_id": self.system_id,
            "system_name": self.system_name,
            "success": self.success,
            "attempts": self.attempts,
            "error": self.error,
            "error_type": self.error_type,
        }


@dataclass
class BroadcastResult:
    system_type: str
    outcomes: List[BroadcastOutcome]

    @property
    def delivered(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.success)

    @property
    def failed(self) -> int:
        return len(self.outcomes) - self.delivered

    @property
    def succeeded(self) -> bool:
        """True only when every targeted system accepted the payload."""
        return self.failed == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "system_type": self.system_type,
            "succeeded": self.succeeded,
            "delivered": self.delivered,
            "failed": self.failed,
            "results": [outcome.to_dict() for outcome in self.outcomes],
        }


class SystemChannel:
    """Per-system state owned by the gateway: breaker, HTTP client, in-flight count."""

    def __init__(self, system: ExternalSystem, breaker: CircuitBreaker, client: SystemClient):
        self.system = system
        self.breaker = breaker
        self.client = client
        self.in_flight = 0


def _connection_key(system: ExternalSystem) -> Tuple:
    return (
        system.name,
        system.type,
        system.base_url,
        system.auth_type,
        tuple(sorted(system.credentials.model_dump().items())),
    )


class DeliveryGateway:
    """
    Executes outbound operations against registered external systems.

    Policies apply in order: rate limit, circuit breaker, retry. The channel
    registry is loaded from the external system registry on startup and
    refreshed whenever a system's connection settings change.
    """

    def __init__(
        self,
        registry,
        *,
        policy: Optional[DeliveryPolicy] = None,
        auditor: Optional[ComplianceAuditor] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = anyio.sleep,
    ):
        """
        Args:
            registry: ExternalSystemRegistry used for lookups and sync status
            policy: Retry and protection settings
            auditor: Receives an event for every failed delivery
            transport: httpx transport for all system clients (tests use MockTransport)
            clock: Monotonic time source for breakers and rate windows
            sleep: Backoff sleep
        """
        self.registry = registry
        self.policy = policy or DeliveryPolicy()
        self.auditor = auditor
        self.transport = transport
        self._clock = clock
        self._sleep = sleep
        self.rate_limiter = SlidingWindowRateLimiter(self.policy.rate_limit, self.policy.rate_period, clock)
        self._channels: Dict[str, SystemChannel] = {}
        self._retired_clients: List[SystemClient] = []

    # ------------------------------------------------------------------
    # Channel registry
    # ------------------------------------------------------------------
    async def load(self) -> None:
        """Build channels for every active system."""
        systems = await self.registry.list(is_active=True)
        for system in systems:
            await self.refresh(system)
        logger.info("Delivery gateway loaded %d external systems", len(systems))

    async def refresh(self, system: ExternalSystem) -> SystemChannel:
        """Rebuild the HTTP client for ``system``; breaker state is kept."""
        existing = self._channels.get(system.id)
        client = SystemClient(system, timeout=self.policy.request_timeout, transport=self.transport)
        if existing is None:
            breaker = CircuitBreaker(
                system.name,
                self.policy.breaker,
                clock=self._clock,
                is_failure=is_system_failure,
            )
            channel = SystemChannel(system, breaker, client)
            self._channels[system.id] = channel
            return channel

        await self._retire(existing)
        existing.system = system
        existing.client = client
        existing.breaker.name = system.name
        logger.info("Refreshed delivery channel for %s", system.name)
        return existing

    async def forget(self, system_id: str) -> None:
        channel = self._channels.pop(system_id, None)
        if channel is None:
            return
        await self._retire(channel)
        self.rate_limiter.reset(channel.system.name)
        logger.info("Removed delivery channel for %s", channel.system.name)

    async def _retire(self, channel: SystemChannel) -> None:
        # A client still serving deliveries is closed on shutdown instead.
        if channel.in_flight:
            self._retired_clients.append(channel.client)
        else:
            await channel.client.aclose()

    async def _channel_for(self, system: ExternalSystem) -> SystemChannel:
        channel = self._channels.get(system.id)
        if channel is None or _connection_key(channel.system) != _connection_key(system):
            return await self.refresh(system)
        channel.system = system
        return channel

    def in_flight(self, system_id: str) -> int:
        channel = self._channels.get(system_id)
        return channel.in_flight if channel else 0

    def breaker_for(self, system_id: str) -> Optional[CircuitBreaker]:
        channel = self._channels.get(system_id)
        return channel.breaker if channel else None

    def snapshot(self) -> List[Dict[str, Any]]:
        """Breaker and rate window state per system."""
        result = []
        for system_id, channel in self._channels.items():
            rate = self.rate_limiter.state(channel.system.name)
            result.append(
                {
                    "system_id": system_id,
                    "system_name": channel.system.name,
                    "circuit": channel.breaker.snapshot().to_dict(),
                    "rate_limit": {
                        "limit": rate.limit,
                        "period": rate.period,
                        "remaining": rate.remaining,
                    },
                    "in_flight": channel.in_flight,
                }
            )
        return result

    async def aclose(self) -> None:
        for channel in self._channels.values():
            await channel.client.aclose()
        for client in self._retired_clients:
            await client.aclose()
        self._channels.clear()
        self._retired_clients.clear()

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------
    async def deliver(
        self,
        system_id: str,
        operation: Operation,
        *,
        action: AuditAction = AuditAction.DELIVERY_FAILED,
        preview: Optional[str] = None,
    ) -> DeliveryResult:
        """
        Execute ``operation`` against one external system.

        Args:
            system_id: Registered system id
            operation: Coroutine function receiving the system's SystemClient
            action: Audit action recorded if delivery fails
            preview: Payload text included (truncated) in failure audits

        Returns:
            DeliveryResult with the operation's value and the attempt count

        Raises:
            NotFoundError: Unknown system
            SystemInactiveError: System is disabled
            RateLimitExceededError: The system's window is full
            CircuitOpenError: The system's breaker rejected the call
            DeliveryFailedError: Every attempt failed
        """
        system = await self.registry.get(system_id)
        return await self._deliver(system, operation, action, preview)

    async def _deliver(
        self,
        system: ExternalSystem,
        operation: Operation,
        action: AuditAction,
        preview: Optional[str],
    ) -> DeliveryResult:
        if not system.is_active:
            raise SystemInactiveError(system.id)

        channel = await self._channel_for(system)
        try:
            await self.rate_limiter.acquire(system.name, system_id=system.id)
        except RateLimitExceededError as e:
            await self._audit_failure(system, action, e, preview)
            raise

        channel.in_flight += 1
        try:
            await self.registry.update_sync_status(system.id, SyncStatus.SYNCING)
            value, attempts = await self._run_with_retry(channel, operation)
        except (CircuitOpenError, DeliveryFailedError) as e:
            cause = e.cause if isinstance(e, DeliveryFailedError) else e
            await self.registry.update_sync_status(system.id, SyncStatus.FAILED, error_message=str(cause))
            await self._audit_failure(system, action, e, preview, getattr(e, "attempts", None))
            raise
        except anyio.get_cancelled_exc_class():
            with anyio.CancelScope(shield=True):
                await self.registry.update_sync_status(
                    system.id, SyncStatus.FAILED, error_message="Delivery cancelled"
                )
            raise
        finally:
            channel.in_flight -= 1

        await self.registry.update_sync_status(system.id, SyncStatus.SUCCESS)
        logger.info("Delivered to %s after %d attempt(s)", system.name, attempts)
        return DeliveryResult(system_id=system.id, system_name=system.name, value=value, attempts=attempts)

    async def _run_with_retry(self, channel: SystemChannel, operation: Operation) -> Tuple[Any, int]:
        attempt = 0
        while True:
            attempt += 1
            try:
                value = await channel.breaker.call(self._attempt, operation, channel.client)
                return value, attempt
            except CircuitOpenError as e:
                e.system_id = channel.system.id
                e.attempts = attempt - 1
                logger.warning("Circuit open for %s, attempt %d not made", channel.system.name, attempt)
                raise
            except Exception as e:
                logger.warning(
                    "Delivery attempt %d/%d to %s failed: %s",
                    attempt,
                    self.policy.max_attempts,
                    channel.system.name,
                    e,
                )
                if attempt >= self.policy.max_attempts or not is_system_failure(e):
                    raise DeliveryFailedError(channel.system.id, attempts=attempt, cause=e) from e
            await self._sleep(self.policy.backoff(attempt))

    async def _attempt(self, operation: Operation, client: SystemClient) -> Any:
        with anyio.fail_after(self.policy.request_timeout):
            return await operation(client)

    async def _audit_failure(
        self,
        system: ExternalSystem,
        action: AuditAction,
        error: ExternalSystemError,
        preview: Optional[str],
        attempts: Optional[int] = None,
    ) -> None:
        if self.auditor is None:
            return
        await self.auditor.delivery_failed(
            system_id=system.id,
            system_name=system.name,
            action=action,
            error=error,
            payload_preview=preview,
            attempts=attempts,
        )

    # ------------------------------------------------------------------
    # Broadcast
    # ------------------------------------------------------------------
    async def broadcast(
        self,
        system_type: SystemType,
        operation: Operation,
        *,
        exclude: Iterable[str] = (),
        action: AuditAction = AuditAction.DELIVERY_FAILED,
        preview: Optional[str] = None,
    ) -> BroadcastResult:
        """
        Deliver to every active system of ``system_type`` concurrently.

        A failure on one system never aborts the others; the result is joined
        after every branch has finished.
        """
        excluded = set(exclude)
        systems = [
            system
            for system in await self.registry.list(system_type=system_type, is_active=True)
            if system.id not in excluded
        ]
        outcomes: Dict[str, BroadcastOutcome] = {}

        async def branch(system: ExternalSystem) -> None:
            try:
                result = await self._deliver(system, operation, action, preview)
            except Exception as e:
                logger.warning("Broadcast to %s failed: %s", system.name, e)
                outcomes[system.id] = BroadcastOutcome(
                    system_id=system.id,
                    system_name=system.name,
                    success=False,
                    attempts=getattr(e, "attempts", None),
                    error=str(e),
                    error_type=type(e).__name__,
                )
            else:
                outcomes[system.id] = BroadcastOutcome(
                    system_id=system.id,
                    system_name=system.name,
                    success=True,
                    attempts=result.attempts,
                    value=result.value,
                )

        async with anyio.create_task_group() as tg:
            for system in systems:
                tg.start_soon(branch, system)

        result = BroadcastResult(
            system_type=system_type.value,
            outcomes=[outcomes[system.id] for system in systems],
        )
        logger.info(
            "Broadcast to %s systems: %d delivered, %d failed",
            system_type.value,
            result.delivered,
            result.failed,
        )
        return result

    # ------------------------------------------------------------------
    # Typed operations
    # ------------------------------------------------------------------
    async def send_hl7(self, system_id: str, message: str) -> DeliveryResult:
        async def send(client: SystemClient):
            return await client.send_hl7(message)

        return await self.deliver(system_id, send, action=AuditAction.HL7_TRANSMISSION_FAILED, preview=message)

    async def broadcast_hl7(self, message: str, *, exclude: Iterable[str] = ()) -> BroadcastResult:
        async def send(client: SystemClient):
            return await client.send_hl7(message)

        return await self.broadcast(
            SystemType.HL7_ENDPOINT,
            send,
            exclude=exclude,
            action=AuditAction.HL7_TRANSMISSION_FAILED,
            preview=message,
        )

    async def push_resource(
        self,
        system_id: str,
        resource_type: str,
        resource: Dict[str, Any],
        *,
        update: bool = False,
    ) -> DeliveryResult:
        """POST a new resource, or PUT it by id when ``update`` is set."""

        async def push(client: SystemClient):
            if update:
                return await client.update_resource(resource_type, resource["id"], resource)
            return await client.create_resource(resource_type, resource)

        return await self.deliver(system_id, push, action=AuditAction.FHIR_SYNC_FAILED)

    async def fetch_resource(self, system_id: str, resource_type: str, resource_id: str) -> DeliveryResult:
        async def read(client: SystemClient):
            return await client.read_resource(resource_type, resource_id)

        return await self.deliver(system_id, read, action=AuditAction.FHIR_SYNC_FAILED)

    async def search_resources(
        self,
        system_id: str,
        resource_type: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> DeliveryResult:
        async def search(client: SystemClient):
            return await client.search(resource_type, params)

        return await self.deliver(system_id, search, action=AuditAction.FHIR_SYNC_FAILED)

    async def probe(self, system_id: str) -> DeliveryResult:
        async def check(client: SystemClient):
            return await client.probe()

        return await self.deliver(system_id, check)

    async def bulk_sync(self, system_id: str, payload: Dict[str, Any]) -> DeliveryResult:
        async def sync(client: SystemClient):
            return await client.bulk_sync(payload)

        return await self.deliver(system_id, sync, action=AuditAction.FHIR_SYNC_FAILED)
