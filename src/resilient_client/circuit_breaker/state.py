"""Circuit breaker state primitives."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum


class CircuitState(StrEnum):
    """Circuit breaker state values."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class BreakerSnapshot:
    """Point-in-time view of breaker internals useful for metrics/logging.

    Attributes:
        name: Breaker name.
        state: Current breaker state.
        failure_count: Consecutive failures while ``CLOSED``; zero elsewhere.
        last_failure_at: Timestamp of the last counted failure, if any.
        opened_at: Timestamp when the breaker last entered ``OPEN``, if it has
            not closed since.
        probe_in_flight: Whether the single half-open probe is outstanding.
    """

    name: str
    state: CircuitState
    failure_count: int
    last_failure_at: datetime | None
    opened_at: datetime | None
    probe_in_flight: bool = False
