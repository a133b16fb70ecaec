import asyncio

import pytest

import resilient_client.circuit_breaker.breaker as breaker_mod
from resilient_client.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitOpenError,
    CircuitState,
)
from resilient_client.errors import (
    InvalidInputError,
    RequestTimeoutError,
    TransportError,
)
from resilient_client.result import Failure, Success
from tests.resilient_client.support.fakes import (
    ExplodingListener,
    FakeClock,
    RecordingListener,
)

pytestmark = pytest.mark.asyncio

_OK = Success({"ok": True})
_DOWN = Failure(TransportError("connection refused"))


def _breaker(
    clock: FakeClock,
    *,
    failure_threshold: int = 3,
    cooldown: float = 5.0,
    listeners: list[object] | None = None,
) -> CircuitBreaker:
    return CircuitBreaker(
        "svc",
        config=CircuitBreakerConfig(
            failure_threshold=failure_threshold, cooldown=cooldown
        ),
        listeners=listeners,  # type: ignore[arg-type]
        clock=clock.now,
    )


def _fail(breaker: CircuitBreaker, times: int = 1) -> None:
    for _ in range(times):
        breaker.report(breaker.admit(), _DOWN)


async def test_new_breaker_is_closed_with_zero_tally(fake_clock: FakeClock) -> None:
    breaker = _breaker(fake_clock)

    snapshot = breaker.snapshot()
    assert breaker.get_state() == CircuitState.CLOSED
    assert snapshot.failure_count == 0
    assert snapshot.opened_at is None
    assert snapshot.probe_in_flight is False


@pytest.mark.parametrize("threshold", [1, 3, 5])
async def test_opens_exactly_on_threshold_th_consecutive_failure(
    fake_clock: FakeClock,
    recording_listener: RecordingListener,
    threshold: int,
) -> None:
    breaker = _breaker(
        fake_clock, failure_threshold=threshold, listeners=[recording_listener]
    )

    for expected_tally in range(1, threshold):
        snapshot = breaker.report(breaker.admit(), _DOWN)
        assert snapshot.state == CircuitState.CLOSED
        assert snapshot.failure_count == expected_tally

    snapshot = breaker.report(breaker.admit(), _DOWN)

    assert snapshot.state == CircuitState.OPEN
    assert snapshot.failure_count == threshold
    assert snapshot.opened_at == fake_clock.now()
    assert recording_listener.transitions() == [
        (CircuitState.CLOSED, CircuitState.OPEN)
    ]


async def test_success_while_closed_resets_tally_and_is_idempotent(
    fake_clock: FakeClock,
) -> None:
    breaker = _breaker(fake_clock, failure_threshold=3)
    _fail(breaker, 2)

    for _ in range(3):
        snapshot = breaker.report(breaker.admit(), _OK)
        assert snapshot.failure_count == 0
        assert snapshot.state == CircuitState.CLOSED

    _fail(breaker, 2)
    assert breaker.get_state() == CircuitState.CLOSED


async def test_open_rejects_until_cooldown_elapses(
    fake_clock: FakeClock,
    recording_listener: RecordingListener,
) -> None:
    breaker = _breaker(
        fake_clock, failure_threshold=1, cooldown=5.0, listeners=[recording_listener]
    )
    _fail(breaker)

    fake_clock.advance(4.0)
    with pytest.raises(CircuitOpenError) as excinfo:
        breaker.admit()

    assert excinfo.value.retry_after == pytest.approx(1.0)
    assert excinfo.value.probe_in_flight is False
    assert excinfo.value.counts_as_failure is False
    assert breaker.get_state() == CircuitState.OPEN
    assert ("rejected", "svc") in recording_listener.events


async def test_cooldown_elapsed_admits_single_probe(fake_clock: FakeClock) -> None:
    breaker = _breaker(fake_clock, failure_threshold=1, cooldown=5.0)
    _fail(breaker)
    fake_clock.advance(5.0)

    probe = breaker.admit()

    assert probe.is_probe is True
    assert breaker.get_state() == CircuitState.HALF_OPEN
    assert breaker.snapshot().probe_in_flight is True

    with pytest.raises(CircuitOpenError) as excinfo:
        breaker.admit()
    assert excinfo.value.probe_in_flight is True
    assert excinfo.value.retry_after == 0.0


async def test_probe_success_closes_and_clears_tally(
    fake_clock: FakeClock,
    recording_listener: RecordingListener,
) -> None:
    breaker = _breaker(
        fake_clock, failure_threshold=2, cooldown=1.0, listeners=[recording_listener]
    )
    _fail(breaker, 2)
    fake_clock.advance(1.0)

    snapshot = breaker.report(breaker.admit(), _OK)

    assert snapshot.state == CircuitState.CLOSED
    assert snapshot.failure_count == 0
    assert snapshot.opened_at is None
    assert snapshot.probe_in_flight is False
    assert recording_listener.transitions() == [
        (CircuitState.CLOSED, CircuitState.OPEN),
        (CircuitState.OPEN, CircuitState.HALF_OPEN),
        (CircuitState.HALF_OPEN, CircuitState.CLOSED),
    ]


async def test_probe_failure_reopens_and_restarts_cooldown(
    fake_clock: FakeClock,
) -> None:
    breaker = _breaker(fake_clock, failure_threshold=1, cooldown=5.0)
    _fail(breaker)
    fake_clock.advance(5.0)

    snapshot = breaker.report(breaker.admit(), Failure(RequestTimeoutError(1.0)))

    assert snapshot.state == CircuitState.OPEN
    assert snapshot.opened_at == fake_clock.now()
    assert snapshot.probe_in_flight is False

    fake_clock.advance(0.001)
    with pytest.raises(CircuitOpenError) as excinfo:
        breaker.admit()
    assert excinfo.value.retry_after == pytest.approx(4.999)


async def test_late_closed_outcome_does_not_touch_open_breaker(
    fake_clock: FakeClock,
) -> None:
    breaker = _breaker(fake_clock, failure_threshold=1, cooldown=5.0)
    first = breaker.admit()
    second = breaker.admit()

    breaker.report(first, _DOWN)
    opened_at = breaker.snapshot().opened_at
    fake_clock.advance(2.0)
    snapshot = breaker.report(second, _DOWN)

    assert snapshot.state == CircuitState.OPEN
    assert snapshot.opened_at == opened_at


async def test_late_closed_outcome_cannot_resolve_probe(fake_clock: FakeClock) -> None:
    breaker = _breaker(fake_clock, failure_threshold=1, cooldown=0.0)
    slow = breaker.admit()
    _fail(breaker)

    probe = breaker.admit()
    snapshot = breaker.report(slow, _OK)

    assert snapshot.state == CircuitState.HALF_OPEN
    assert snapshot.probe_in_flight is True

    snapshot = breaker.report(probe, _DOWN)
    assert snapshot.state == CircuitState.OPEN


async def test_permit_cannot_be_reported_twice(fake_clock: FakeClock) -> None:
    breaker = _breaker(fake_clock)
    permit = breaker.admit()
    breaker.report(permit, _OK)

    with pytest.raises(RuntimeError, match="already reported"):
        breaker.report(permit, _DOWN)
    assert breaker.snapshot().failure_count == 0


async def test_report_refuses_pre_admission_failures(fake_clock: FakeClock) -> None:
    breaker = _breaker(fake_clock)
    permit = breaker.admit()

    with pytest.raises(ValueError, match="invalid_input"):
        breaker.report(permit, Failure(InvalidInputError("bad path")))


async def test_reset_closes_open_breaker_and_ignores_stale_probe(
    fake_clock: FakeClock,
    recording_listener: RecordingListener,
) -> None:
    breaker = _breaker(
        fake_clock, failure_threshold=1, cooldown=0.0, listeners=[recording_listener]
    )
    _fail(breaker)
    probe = breaker.admit()

    breaker.reset()

    snapshot = breaker.snapshot()
    assert snapshot.state == CircuitState.CLOSED
    assert snapshot.failure_count == 0
    assert snapshot.probe_in_flight is False
    assert recording_listener.transitions()[-1] == (
        CircuitState.HALF_OPEN,
        CircuitState.CLOSED,
    )

    breaker.report(probe, _DOWN)
    assert breaker.get_state() == CircuitState.CLOSED
    assert breaker.snapshot().failure_count == 0


async def test_call_reports_success_and_failure(fake_clock: FakeClock) -> None:
    breaker = _breaker(fake_clock, failure_threshold=1, cooldown=10.0)

    async def _ok() -> str:
        return "ok"

    async def _boom() -> None:
        raise RuntimeError("nope")

    assert await breaker.call(_ok) == "ok"
    with pytest.raises(RuntimeError):
        await breaker.call(_boom)

    with pytest.raises(CircuitOpenError):
        await breaker.call(_ok)
    assert breaker.get_state() == CircuitState.OPEN


async def test_call_reports_cancellation_as_probe_failure(
    fake_clock: FakeClock,
) -> None:
    breaker = _breaker(fake_clock, failure_threshold=1, cooldown=0.0)
    _fail(breaker)
    started = asyncio.Event()

    async def _hang() -> None:
        started.set()
        await asyncio.Event().wait()

    task = asyncio.create_task(breaker.call(_hang))
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    snapshot = breaker.snapshot()
    assert snapshot.state == CircuitState.OPEN
    assert snapshot.probe_in_flight is False


async def test_concurrent_probe_rejected_while_first_is_awaited(
    fake_clock: FakeClock,
) -> None:
    breaker = _breaker(fake_clock, failure_threshold=1, cooldown=0.0)
    _fail(breaker)

    started = asyncio.Event()
    release = asyncio.Event()

    async def _probe() -> str:
        started.set()
        await release.wait()
        return "ok"

    async def _ok() -> str:
        return "ok"

    task = asyncio.create_task(breaker.call(_probe))
    await started.wait()

    with pytest.raises(CircuitOpenError) as excinfo:
        await breaker.call(_ok)
    assert excinfo.value.probe_in_flight is True

    release.set()
    assert await task == "ok"
    assert await breaker.call(_ok) == "ok"
    assert breaker.get_state() == CircuitState.CLOSED


async def test_listener_exceptions_are_logged_and_swallowed(
    fake_clock: FakeClock,
    recording_listener: RecordingListener,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    logged: list[str] = []
    monkeypatch.setattr(
        breaker_mod,
        "log_exception",
        lambda logger, event, **fields: logged.append(event),
    )
    breaker = _breaker(
        fake_clock,
        failure_threshold=1,
        cooldown=10.0,
        listeners=[ExplodingListener(), recording_listener],
    )

    breaker.report(breaker.admit(), _DOWN)
    with pytest.raises(CircuitOpenError):
        breaker.admit()

    assert ("failed", ("svc", "transport")) in recording_listener.events
    assert ("rejected", "svc") in recording_listener.events
    assert logged.count("circuit_breaker.listener_failed") == 3


async def test_config_rejects_invalid_threshold_and_cooldown() -> None:
    with pytest.raises(ValueError, match="failure_threshold"):
        CircuitBreakerConfig(failure_threshold=0)
    with pytest.raises(ValueError, match="cooldown"):
        CircuitBreakerConfig(cooldown=-1.0)


async def test_mutation_guard_uses_thread_lock_when_gil_disabled(
    monkeypatch: pytest.MonkeyPatch,
    fake_clock: FakeClock,
) -> None:
    monkeypatch.setattr(
        "resilient_client.circuit_breaker.breaker.sys._is_gil_enabled",
        lambda: False,
        raising=False,
    )
    guard = breaker_mod._MutationGuard()
    assert guard._thread_lock is not None

    with guard:
        assert guard._thread_lock.locked() is True
    assert guard._thread_lock.locked() is False

    breaker = _breaker(fake_clock, failure_threshold=1)
    breaker.report(breaker.admit(), _DOWN)
    assert breaker.get_state() == CircuitState.OPEN
