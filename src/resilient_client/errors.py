"""Error taxonomy for resilient_client.

Every failure the client can surface is a ``ClientError`` subclass tagged with
an ``ErrorKind``. Callers can distinguish between:
  - Calls refused before any network attempt (``INVALID_INPUT``,
    ``CIRCUIT_OPEN``). These never touch the breaker's failure tally.
  - Attempts that were sent and failed (every other kind). These always count
    as a breaker failure.
"""

from __future__ import annotations

from enum import StrEnum

MAX_BODY_PREFIX_CHARS = 512


class ErrorKind(StrEnum):
    """Failure reasons surfaced to callers."""

    INVALID_INPUT = "invalid_input"
    CIRCUIT_OPEN = "circuit_open"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    TRANSPORT = "transport"
    UNSUCCESSFUL_STATUS = "unsuccessful_status"
    OVERSIZED_RESPONSE = "oversized_response"
    DECODE = "decode"


_NOT_SENT = frozenset({ErrorKind.INVALID_INPUT, ErrorKind.CIRCUIT_OPEN})


def body_prefix(body: bytes | str, *, limit: int = MAX_BODY_PREFIX_CHARS) -> str:
    """Return a bounded, printable prefix of a response body for diagnostics."""
    if isinstance(body, bytes):
        body = body[: limit * 4].decode("utf-8", errors="replace")
    return body[:limit]


class TransientError(RuntimeError):
    """Generic retry-safe transient dependency failure."""


class ClientError(RuntimeError):
    """Base exception for every failure surfaced by the client."""

    kind: ErrorKind

    @property
    def counts_as_failure(self) -> bool:
        """Return true when this error must be reported to the breaker."""
        return self.kind not in _NOT_SENT


class InvalidInputError(ClientError, ValueError):
    """Raised when a caller-supplied path or identifier fails validation."""

    kind = ErrorKind.INVALID_INPUT

    def __init__(self, message: str, *, value: str | None = None) -> None:
        """Initialize validation-error metadata.

        Args:
            message: Human-readable reason the input was rejected.
            value: Bounded copy of the offending input, when safe to keep.
        """
        super().__init__(message)
        self.value = None if value is None else value[:MAX_BODY_PREFIX_CHARS]


class RequestTimeoutError(ClientError, TransientError):
    """Raised when an attempt exceeds the configured deadline."""

    kind = ErrorKind.TIMEOUT

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(f"request timed out after {timeout:g}s")


class RequestCancelledError(ClientError):
    """Raised when the caller's cancel signal aborts an in-flight attempt."""

    kind = ErrorKind.CANCELLED

    def __init__(self, message: str = "request cancelled by caller") -> None:
        super().__init__(message)


class TransportError(ClientError, TransientError):
    """Raised for network or connection failures unrelated to the deadline."""

    kind = ErrorKind.TRANSPORT


class UnsuccessfulStatusError(ClientError):
    """Raised when the response status falls outside the accepted window."""

    kind = ErrorKind.UNSUCCESSFUL_STATUS

    def __init__(self, status_code: int, *, response_body: str | None = None) -> None:
        """Initialize status-error metadata.

        Args:
            status_code: HTTP status observed from the dependency.
            response_body: Bounded prefix of the response payload.
        """
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(f"unexpected HTTP status {status_code}")


class OversizedResponseError(ClientError):
    """Raised when the response body exceeds the configured byte cap."""

    kind = ErrorKind.OVERSIZED_RESPONSE

    def __init__(self, max_bytes: int, *, received: int) -> None:
        self.max_bytes = max_bytes
        self.received = received
        super().__init__(
            f"response exceeded maximum size of {max_bytes} bytes "
            f"(received at least {received})"
        )


class DecodeError(ClientError):
    """Raised when a bounded body cannot be parsed into the expected shape."""

    kind = ErrorKind.DECODE

    def __init__(self, message: str, *, response_body: str) -> None:
        self.response_body = response_body
        super().__init__(message)
