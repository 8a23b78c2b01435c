"""
Tests for the percentage-based circuit breaker.
"""

import anyio
import pytest

from interop_gateway.delivery.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitState
from interop_gateway.exceptions import CircuitOpenError


class Boom(Exception):
    pass


async def ok():
    return "ok"


async def fail():
    raise Boom("down")


@pytest.fixture
def breaker(clock):
    config = CircuitBreakerConfig(
        failure_threshold_percent=50.0,
        rolling_window=20,
        minimum_requests=5,
        reset_timeout=60.0,
    )
    return CircuitBreaker("lab", config, clock=clock)


async def run(breaker, outcomes):
    for succeed in outcomes:
        if succeed:
            await breaker.call(ok)
        else:
            with pytest.raises(Boom):
                await breaker.call(fail)


@pytest.mark.anyio
async def test_opens_when_failure_rate_exceeds_threshold(breaker):
    await run(breaker, [True, True, False, False, False])

    assert breaker.state == CircuitState.OPEN
    assert breaker.snapshot().failure_rate == pytest.approx(60.0)


@pytest.mark.anyio
async def test_exactly_threshold_stays_closed(breaker):
    await run(breaker, [True, True, True, False, False, False])

    assert breaker.state == CircuitState.CLOSED
    assert breaker.failure_rate == pytest.approx(50.0)


@pytest.mark.anyio
async def test_minimum_requests_before_opening(breaker):
    await run(breaker, [False, False, False, False])

    assert breaker.state == CircuitState.CLOSED
    assert breaker.snapshot().consecutive_failures == 4


@pytest.mark.anyio
async def test_open_circuit_rejects_without_calling(breaker, clock):
    await run(breaker, [False] * 5)
    calls = []

    async def tracked():
        calls.append(1)

    clock.advance(10)
    with pytest.raises(CircuitOpenError) as exc_info:
        await breaker.call(tracked)

    assert calls == []
    assert exc_info.value.retry_after == pytest.approx(50.0)


@pytest.mark.anyio
async def test_half_open_success_closes(breaker, clock):
    await run(breaker, [False] * 5)
    clock.advance(60)

    assert breaker.state == CircuitState.HALF_OPEN
    assert await breaker.call(ok) == "ok"
    assert breaker.state == CircuitState.CLOSED
    assert breaker.snapshot().window_size == 0


@pytest.mark.anyio
async def test_half_open_failure_reopens(breaker, clock):
    await run(breaker, [False] * 5)
    clock.advance(60)

    with pytest.raises(Boom):
        await breaker.call(fail)

    assert breaker.state == CircuitState.OPEN
    with pytest.raises(CircuitOpenError):
        await breaker.call(ok)


@pytest.mark.anyio
async def test_half_open_admits_a_single_trial(breaker, clock):
    await run(breaker, [False] * 5)
    clock.advance(60)

    started = anyio.Event()
    release = anyio.Event()
    rejected = []

    async def slow_trial():
        started.set()
        await release.wait()
        return "recovered"

    async def trial():
        assert await breaker.call(slow_trial) == "recovered"

    async with anyio.create_task_group() as tg:
        tg.start_soon(trial)
        await started.wait()
        for _ in range(3):
            try:
                await breaker.call(ok)
            except CircuitOpenError as e:
                rejected.append(e)
        release.set()

    assert len(rejected) == 3
    assert breaker.state == CircuitState.CLOSED


@pytest.mark.anyio
async def test_cancelled_trial_frees_the_slot(breaker, clock):
    await run(breaker, [False] * 5)
    clock.advance(60)

    started = anyio.Event()

    async def hang():
        started.set()
        await anyio.sleep_forever()

    async with anyio.create_task_group() as tg:
        tg.start_soon(breaker.call, hang)
        await started.wait()
        tg.cancel_scope.cancel()

    assert breaker.state == CircuitState.HALF_OPEN
    assert await breaker.call(ok) == "ok"
    assert breaker.state == CircuitState.CLOSED


@pytest.mark.anyio
async def test_rejected_exceptions_count_as_success(clock):
    breaker = CircuitBreaker("lab", clock=clock, is_failure=lambda exc: not isinstance(exc, ValueError))

    async def bad_request():
        raise ValueError("client error")

    for _ in range(10):
        with pytest.raises(ValueError):
            await breaker.call(bad_request)

    assert breaker.state == CircuitState.CLOSED
    assert breaker.failure_rate == 0.0


@pytest.mark.anyio
async def test_manual_reset(breaker):
    await run(breaker, [False] * 5)
    await breaker.reset()

    assert breaker.state == CircuitState.CLOSED
    assert await breaker.call(ok) == "ok"
