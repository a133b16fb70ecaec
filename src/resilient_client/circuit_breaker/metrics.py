"""Observability hooks for circuit breakers."""

from typing import Protocol

from resilient_client.circuit_breaker.state import CircuitState
from resilient_client.logging import (
    StructuredLogger,
    get_logger,
    log_debug,
    log_info,
    log_warning,
)


class BreakerListener(Protocol):
    """Listener protocol for circuit breaker events.

    Notes:
        Hooks run synchronously inside ``admit()`` / ``report()`` after the
        state mutation is complete, so they must not block.
    """

    def on_state_change(self, name: str, old: CircuitState, new: CircuitState) -> None:
        """Handle circuit state transitions."""

    def on_call_rejected(self, name: str) -> None:
        """Handle call rejection while the circuit is open."""

    def on_call_succeeded(self, name: str, elapsed: float) -> None:
        """Handle successful protected call completion."""

    def on_call_failed(self, name: str, reason: str, elapsed: float) -> None:
        """Handle failed protected call completion."""


class LoggingBreakerListener:
    """Write breaker events as structured log lines."""

    def __init__(self, logger: StructuredLogger | None = None) -> None:
        self._logger = get_logger(__name__) if logger is None else logger

    def on_state_change(self, name: str, old: CircuitState, new: CircuitState) -> None:
        if new == CircuitState.OPEN:
            log_warning(
                self._logger,
                "circuit_breaker.state_change",
                breaker=name,
                old=str(old),
                new=str(new),
            )
            return
        log_info(
            self._logger,
            "circuit_breaker.state_change",
            breaker=name,
            old=str(old),
            new=str(new),
        )

    def on_call_rejected(self, name: str) -> None:
        log_info(self._logger, "circuit_breaker.call_rejected", breaker=name)

    def on_call_succeeded(self, name: str, elapsed: float) -> None:
        log_debug(
            self._logger,
            "circuit_breaker.call_succeeded",
            breaker=name,
            elapsed=round(elapsed, 6),
        )

    def on_call_failed(self, name: str, reason: str, elapsed: float) -> None:
        log_info(
            self._logger,
            "circuit_breaker.call_failed",
            breaker=name,
            reason=reason,
            elapsed=round(elapsed, 6),
        )
