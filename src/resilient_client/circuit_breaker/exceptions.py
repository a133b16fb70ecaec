"""Circuit breaker exceptions.

Callers can distinguish between:
  - A call being rejected because the circuit is open and cooling down.
  - A call being rejected because the single half-open probe is in flight.
"""

from resilient_client.errors import ClientError, ErrorKind


class CircuitBreakerError(ClientError):
    """Base exception for the circuit breaker package."""


class CircuitOpenError(CircuitBreakerError):
    """Raised when a call is rejected without any network attempt.

    Attributes:
        breaker_name: Name of the breaker rejecting the call.
        retry_after: Seconds until a half-open probe may be attempted.
        probe_in_flight: True when rejected because another caller holds the
            half-open probe.
    """

    kind = ErrorKind.CIRCUIT_OPEN

    def __init__(
        self,
        breaker_name: str,
        retry_after: float,
        *,
        probe_in_flight: bool = False,
    ) -> None:
        """Initialize a circuit-open exception payload.

        Args:
            breaker_name: Breaker rejecting the call.
            retry_after: Seconds until the next probe window opens.
            probe_in_flight: Whether a probe is already outstanding.
        """
        self.breaker_name = breaker_name
        self.retry_after = retry_after
        self.probe_in_flight = probe_in_flight
        if probe_in_flight:
            message = f"probe_in_flight: {breaker_name}"
        else:
            message = f"circuit_open: {breaker_name} retry_after={retry_after:g}s"
        super().__init__(message)
