"""In-process circuit breaker for one upstream dependency.

This package implements the circuit breaker pattern from *Release It!*.

Key behavior notes:
  - State lives in the ``CircuitBreaker`` instance only. It is neither
    persisted nor shared across processes.
  - ``OPEN`` moves to ``HALF_OPEN`` lazily, inside the first ``admit()`` after
    the cooldown has elapsed. No background timer runs.
  - Half-open probing is conservative: at most one in-flight probe per
    breaker. Every other caller fails fast until the probe is reported.
  - Outcomes reported for permits issued before the latest state transition
    are ignored, so a slow call admitted while ``CLOSED`` cannot decide a probe.
"""

from resilient_client.circuit_breaker.breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    Permit,
)
from resilient_client.circuit_breaker.exceptions import (
    CircuitBreakerError,
    CircuitOpenError,
)
from resilient_client.circuit_breaker.metrics import (
    BreakerListener,
    LoggingBreakerListener,
)
from resilient_client.circuit_breaker.state import BreakerSnapshot, CircuitState

__all__ = [
    "BreakerListener",
    "BreakerSnapshot",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerError",
    "CircuitOpenError",
    "CircuitState",
    "LoggingBreakerListener",
    "Permit",
]
