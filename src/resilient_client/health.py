from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from resilient_client.circuit_breaker import BreakerSnapshot, CircuitState

REASON_READY = "ready"
REASON_PROBING = "probing"
REASON_DEPENDENCY_UNAVAILABLE = "dependency_unavailable"


@dataclass(frozen=True)
class CheckResult:
    """Result of one dependency readiness check."""

    name: str
    ok: bool
    reason: str | None = None
    detail: str = ""
    data: Mapping[str, object] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Freeze check metadata mapping to keep results read-only."""
        frozen_data = MappingProxyType(dict(self.data))
        object.__setattr__(self, "data", frozen_data)


def breaker_check(snapshot: BreakerSnapshot) -> CheckResult:
    """Map a breaker snapshot to a readiness result.

    Only ``OPEN`` is reported unhealthy; a half-open breaker is probing and
    still admits its trial call.
    """
    data: dict[str, object] = {
        "state": str(snapshot.state),
        "failure_count": snapshot.failure_count,
        "probe_in_flight": snapshot.probe_in_flight,
    }
    if snapshot.opened_at is not None:
        data["opened_at"] = snapshot.opened_at.isoformat()

    match snapshot.state:
        case CircuitState.CLOSED:
            return CheckResult(name=snapshot.name, ok=True, reason=REASON_READY, data=data)
        case CircuitState.HALF_OPEN:
            return CheckResult(
                name=snapshot.name,
                ok=True,
                reason=REASON_PROBING,
                detail="circuit half-open; probing dependency",
                data=data,
            )
        case CircuitState.OPEN:
            return CheckResult(
                name=snapshot.name,
                ok=False,
                reason=REASON_DEPENDENCY_UNAVAILABLE,
                detail="circuit open; calls fail fast",
                data=data,
            )
    raise ValueError(f"unknown circuit state: {snapshot.state!r}")
