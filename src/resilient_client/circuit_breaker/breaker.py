"""Core circuit breaker implementation."""

import asyncio
import sys
import threading
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import ParamSpec, TypeVar, assert_never

from resilient_client.circuit_breaker.exceptions import CircuitOpenError
from resilient_client.circuit_breaker.metrics import BreakerListener
from resilient_client.circuit_breaker.state import BreakerSnapshot, CircuitState
from resilient_client.logging import get_logger, log_exception, log_info
from resilient_client.result import Failure, Success

T = TypeVar("T")
P = ParamSpec("P")

_logger = get_logger(__name__)

_Event = tuple[str, tuple[object, ...]]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class _MutationGuard:
    """Serialize breaker mutations when the interpreter runs without the GIL."""

    def __init__(self) -> None:
        is_gil_enabled = getattr(sys, "_is_gil_enabled", None)
        self._gil_enabled = True if is_gil_enabled is None else bool(is_gil_enabled())
        self._thread_lock: threading.Lock | None = None
        if not self._gil_enabled:
            self._thread_lock = threading.Lock()

    def __enter__(self) -> None:
        if self._thread_lock is not None:
            self._thread_lock.acquire()

    def __exit__(self, *exc_info: object) -> None:
        if self._thread_lock is not None:
            self._thread_lock.release()


@dataclass(slots=True)
class CircuitBreakerConfig:
    """Circuit breaker configuration values.

    Attributes:
        failure_threshold: Consecutive failures required while ``CLOSED``
            before opening.
        cooldown: Seconds to stay ``OPEN`` before allowing a probe.
    """

    failure_threshold: int = 3
    cooldown: float = 5.0

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if self.cooldown < 0:
            raise ValueError("cooldown must be >= 0")


@dataclass(slots=True)
class Permit:
    """Admission granted by ``CircuitBreaker.admit()``.

    Attributes:
        breaker_name: Breaker that issued the permit.
        is_probe: Whether this attempt is the half-open trial call.
        epoch: Breaker epoch at admission. The epoch changes on every state
            transition, so outcomes of attempts admitted in an earlier epoch
            are recognized as stale.
        admitted_at: Monotonic timestamp of admission.
    """

    breaker_name: str
    is_probe: bool
    epoch: int
    admitted_at: float
    settled: bool = field(default=False, init=False)


class CircuitBreaker:
    """Three-state gate in front of one upstream dependency.

    ``admit()`` must run before every outbound attempt and ``report()`` exactly
    once per admitted attempt. Both are synchronous and never yield, so under
    asyncio each is atomic with respect to other tasks.
    """

    def __init__(
        self,
        name: str,
        *,
        config: CircuitBreakerConfig | None = None,
        listeners: Sequence[BreakerListener] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Build a circuit breaker in the ``CLOSED`` state.

        Args:
            name: Breaker name used in errors, logs and metrics.
            config: Breaker behavior configuration. Defaults to
                ``CircuitBreakerConfig()``.
            listeners: Optional listener hooks for breaker events.
            clock: Returns the current aware datetime. Defaults to UTC now.
        """
        self.name = name
        self.config = CircuitBreakerConfig() if config is None else config
        self._listeners = tuple(listeners) if listeners is not None else ()
        self._clock = _utcnow if clock is None else clock
        self._guard = _MutationGuard()

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_at: datetime | None = None
        self._opened_at: datetime | None = None
        self._probe_in_flight = False
        self._epoch = 0

    @property
    def state(self) -> CircuitState:
        return self._state

    def get_state(self) -> CircuitState:
        """Return the current state without driving any transition."""
        return self._state

    def snapshot(self) -> BreakerSnapshot:
        """Return a frozen view of the breaker internals."""
        with self._guard:
            return BreakerSnapshot(
                name=self.name,
                state=self._state,
                failure_count=self._failure_count,
                last_failure_at=self._last_failure_at,
                opened_at=self._opened_at,
                probe_in_flight=self._probe_in_flight,
            )

    def admit(self) -> Permit:
        """Grant or refuse one outbound attempt.

        Returns:
            A ``Permit`` that must be handed back to ``report()``.

        Raises:
            CircuitOpenError: When the circuit is ``OPEN`` and cooling down, or
                ``HALF_OPEN`` with the probe already outstanding.
        """
        events: list[_Event] = []
        rejection: CircuitOpenError | None = None
        permit: Permit | None = None

        with self._guard:
            match self._state:
                case CircuitState.CLOSED:
                    permit = self._issue(is_probe=False)
                case CircuitState.OPEN:
                    retry_after = self._retry_after(self._clock())
                    if retry_after > 0:
                        rejection = CircuitOpenError(self.name, retry_after)
                    else:
                        self._transition(CircuitState.HALF_OPEN, events)
                        permit = self._claim_probe()
                case CircuitState.HALF_OPEN:
                    if self._probe_in_flight:
                        rejection = CircuitOpenError(
                            self.name, 0.0, probe_in_flight=True
                        )
                    else:
                        permit = self._claim_probe()
                case _:
                    assert_never(self._state)

        if rejection is not None:
            events.append(("rejected", ()))
        self._emit(events)
        if rejection is not None:
            raise rejection
        assert permit is not None
        return permit

    def report(self, permit: Permit, outcome: Success[object] | Failure) -> BreakerSnapshot:
        """Record the outcome of an admitted attempt.

        Every failure kind that reaches this point counts as a failure:
        timeouts, cancellations, transport errors, bad statuses, oversized
        bodies and decode errors alike.

        Raises:
            ValueError: If ``outcome`` carries an error that is produced
                before admission and therefore never reported.
            RuntimeError: If ``permit`` was already reported.
        """
        if isinstance(outcome, Failure):
            if not outcome.error.counts_as_failure:
                raise ValueError(
                    f"{outcome.reason} failures are not reported to the breaker"
                )
            return self._settle(permit, succeeded=False, reason=str(outcome.reason))
        return self._settle(permit, succeeded=True, reason=None)

    def reset(self) -> None:
        """Force the breaker back to ``CLOSED`` with a zero failure tally."""
        events: list[_Event] = []
        with self._guard:
            if self._state != CircuitState.CLOSED:
                self._transition(CircuitState.CLOSED, events)
            else:
                self._epoch += 1
            self._failure_count = 0
            self._last_failure_at = None
            self._opened_at = None
        self._emit(events)

    async def call(
        self,
        func: Callable[P, Awaitable[T]],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> T:
        """Invoke an async callable under circuit breaker protection.

        Any exception raised by ``func``, cancellation included, is reported
        as a failure and re-raised.

        Raises:
            CircuitOpenError: When the call is rejected without running
                ``func``.
        """
        task = asyncio.current_task()
        if task is not None:
            callable_name = getattr(func, "__qualname__", None)
            if callable_name is None:
                callable_name = func.__class__.__qualname__
            task.set_name(f"circuit_breaker:{self.name}:{callable_name}")

        permit = self.admit()
        try:
            result = await func(*args, **kwargs)
        except BaseException as exc:
            self._settle(permit, succeeded=False, reason=exc.__class__.__name__)
            raise
        self._settle(permit, succeeded=True, reason=None)
        return result

    def _issue(self, *, is_probe: bool) -> Permit:
        return Permit(
            breaker_name=self.name,
            is_probe=is_probe,
            epoch=self._epoch,
            admitted_at=time.monotonic(),
        )

    def _claim_probe(self) -> Permit:
        self._probe_in_flight = True
        return self._issue(is_probe=True)

    def _retry_after(self, now: datetime) -> float:
        opened_at = now if self._opened_at is None else self._opened_at
        ready_at = opened_at + timedelta(seconds=self.config.cooldown)
        return max((ready_at - now).total_seconds(), 0.0)

    def _transition(self, new: CircuitState, events: list[_Event]) -> None:
        old = self._state
        self._state = new
        self._epoch += 1
        self._probe_in_flight = False
        match new:
            case CircuitState.OPEN:
                self._opened_at = self._clock()
            case CircuitState.CLOSED:
                self._failure_count = 0
                self._opened_at = None
            case CircuitState.HALF_OPEN:
                pass
            case _:
                assert_never(new)
        events.append(("state", (old, new)))

    def _record_closed_failure(self, now: datetime, events: list[_Event]) -> None:
        self._failure_count += 1
        self._last_failure_at = now
        if self._failure_count >= self.config.failure_threshold:
            self._transition(CircuitState.OPEN, events)

    def _settle(
        self,
        permit: Permit,
        *,
        succeeded: bool,
        reason: str | None,
    ) -> BreakerSnapshot:
        events: list[_Event] = []
        elapsed = max(time.monotonic() - permit.admitted_at, 0.0)
        if succeeded:
            events.append(("succeeded", (elapsed,)))
        else:
            events.append(("failed", (reason or "failure", elapsed)))

        with self._guard:
            if permit.settled:
                raise RuntimeError("permit was already reported")
            permit.settled = True

            stale = permit.breaker_name != self.name or permit.epoch != self._epoch
            if not stale:
                match self._state:
                    case CircuitState.CLOSED:
                        if succeeded:
                            self._failure_count = 0
                        else:
                            self._record_closed_failure(self._clock(), events)
                    case CircuitState.HALF_OPEN:
                        if succeeded:
                            self._transition(CircuitState.CLOSED, events)
                            self._last_failure_at = None
                        else:
                            self._last_failure_at = self._clock()
                            self._transition(CircuitState.OPEN, events)
                    case CircuitState.OPEN:
                        # Entering OPEN bumps the epoch, so no permit matches it.
                        stale = True
                    case _:
                        assert_never(self._state)

            snapshot = BreakerSnapshot(
                name=self.name,
                state=self._state,
                failure_count=self._failure_count,
                last_failure_at=self._last_failure_at,
                opened_at=self._opened_at,
                probe_in_flight=self._probe_in_flight,
            )

        if stale:
            log_info(
                _logger,
                "circuit_breaker.stale_report_ignored",
                breaker=self.name,
                is_probe=permit.is_probe,
                succeeded=succeeded,
            )
        self._emit(events)
        return snapshot

    def _emit(self, events: list[_Event]) -> None:
        for kind, payload in events:
            for listener in self._listeners:
                try:
                    if kind == "state":
                        old, new = payload
                        listener.on_state_change(self.name, old, new)  # type: ignore[arg-type]
                    elif kind == "rejected":
                        listener.on_call_rejected(self.name)
                    elif kind == "succeeded":
                        listener.on_call_succeeded(self.name, *payload)  # type: ignore[arg-type]
                    else:
                        listener.on_call_failed(self.name, *payload)  # type: ignore[arg-type]
                except Exception:
                    log_exception(
                        _logger,
                        "circuit_breaker.listener_failed",
                        breaker=self.name,
                        event_kind=kind,
                    )
                    continue
