"""Tagged outcome of one request attempt."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Literal, NoReturn, TypeAlias, TypeVar

from resilient_client.errors import ClientError, ErrorKind

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Success(Generic[T]):
    """Decoded payload from an accepted response."""

    payload: T
    ok: Literal[True] = True

    def unwrap(self) -> T:
        return self.payload


@dataclass(frozen=True, slots=True)
class Failure:
    """Typed failure; ``error.kind`` tells the reason."""

    error: ClientError
    ok: Literal[False] = False

    @property
    def reason(self) -> ErrorKind:
        return self.error.kind

    def unwrap(self) -> NoReturn:
        """Raise the carried error."""
        raise self.error


RequestOutcome: TypeAlias = Success[T] | Failure
