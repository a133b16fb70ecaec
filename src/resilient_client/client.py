"""Public entry point: validated, breaker-guarded, deadline-bounded GETs."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Container, Sequence
from datetime import datetime
from functools import partial
from types import TracebackType
from typing import Any, Generic, TypeVar
from urllib.parse import urlsplit

import httpx

from resilient_client.circuit_breaker import (
    BreakerListener,
    BreakerSnapshot,
    CircuitBreaker,
    CircuitOpenError,
    CircuitState,
    LoggingBreakerListener,
    Permit,
)
from resilient_client.decoding import DEFAULT_SUCCESS_STATUSES, ResponseDecoder
from resilient_client.errors import (
    ClientError,
    InvalidInputError,
    RequestCancelledError,
    RequestTimeoutError,
    TransportError,
)
from resilient_client.health import CheckResult, breaker_check
from resilient_client.invoker import TimeoutInvoker
from resilient_client.logging import (
    StructuredLogger,
    bound_request_context,
    get_logger,
    log_exception,
    log_info,
    log_warning,
)
from resilient_client.result import Failure, Success
from resilient_client.settings import ClientConfig
from resilient_client.validation import validate_path, validate_resource_id

T = TypeVar("T")

_DEFAULT_HEADERS = {"Accept": "application/json"}


class ResilientClient(Generic[T]):
    """HTTP client for one upstream dependency, guarded by its own breaker."""

    def __init__(
        self,
        config: ClientConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
        shape: type[T] | None = None,
        success_statuses: Container[int] = DEFAULT_SUCCESS_STATUSES,
        name: str | None = None,
        listeners: Sequence[BreakerListener] | None = None,
        clock: Callable[[], datetime] | None = None,
        logger: StructuredLogger | None = None,
    ) -> None:
        """Create a client and the breaker it owns.

        Args:
            config: Client and breaker settings.
            http_client: Transport to send requests with. When omitted, the
                client creates one and closes it in ``aclose()``.
            shape: Expected payload type for successful responses.
            success_statuses: Status codes treated as success.
            name: Breaker and log name. Defaults to the base address host.
            listeners: Extra breaker listeners, notified after the built-in
                logging listener.
            clock: Breaker clock override, mainly for tests.
            logger: Structured logger for request events.
        """
        self.config = config
        self.name = name or urlsplit(config.base_address).netloc
        self._owns_http_client = http_client is None
        self._http = httpx.AsyncClient(timeout=None) if http_client is None else http_client
        self._logger = get_logger(__name__) if logger is None else logger
        self._invoker = TimeoutInvoker(config.timeout_seconds)
        self._decoder: ResponseDecoder[T] = ResponseDecoder(
            config.max_response_bytes,
            shape=shape,
            success_statuses=success_statuses,
        )
        self.breaker = CircuitBreaker(
            self.name,
            config=config.breaker_config(),
            listeners=[LoggingBreakerListener(), *(listeners or ())],
            clock=clock,
        )

    async def __aenter__(self) -> ResilientClient[T]:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the HTTP transport if this client created it."""
        if self._owns_http_client:
            await self._http.aclose()

    @property
    def state(self) -> CircuitState:
        return self.breaker.state

    def get_state(self) -> CircuitState:
        return self.breaker.get_state()

    def snapshot(self) -> BreakerSnapshot:
        return self.breaker.snapshot()

    def reset(self) -> None:
        """Administrative override: close the breaker and clear its tally."""
        self.breaker.reset()
        log_info(self._logger, "client.reset", client=self.name)

    def health(self) -> CheckResult:
        return breaker_check(self.breaker.snapshot())

    async def get_resource(
        self,
        collection: str,
        resource_id: str,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> Success[T] | Failure:
        """Fetch ``<collection>/<resource_id>`` with ``resource_id`` as one segment."""
        try:
            validate_resource_id(resource_id)
            route = validate_path(collection).rstrip("/")
        except InvalidInputError as exc:
            return Failure(exc)
        return await self.perform_request(
            f"{route}/{resource_id}", cancel_event=cancel_event
        )

    async def perform_request(
        self,
        path: str,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> Success[T] | Failure:
        """GET ``path`` relative to the base address.

        Args:
            path: Relative request target, optionally with a query string.
            cancel_event: Caller cancel signal, OR'ed with the timeout.

        Returns:
            ``Success`` with the decoded payload, or ``Failure`` whose
            ``error.kind`` names the reason. Errors are never replaced with a
            default value. An unexpected exception from the transport is
            logged and returned as a ``TransportError`` failure chained to
            the original exception.

        Raises:
            asyncio.CancelledError: When the calling task is cancelled. The
                attempt is still reported to the breaker first.
        """
        try:
            relative = validate_path(path)
        except InvalidInputError as exc:
            return Failure(exc)

        with bound_request_context(client=self.name, path=relative):
            try:
                permit = self.breaker.admit()
            except CircuitOpenError as exc:
                log_info(
                    self._logger,
                    "request.rejected",
                    retry_after=exc.retry_after,
                    probe_in_flight=exc.probe_in_flight,
                )
                return Failure(exc)

            url = f"{self.config.base_address}/{relative}"
            outcome = await self._attempt(url, permit, cancel_event)
            self._log_outcome(outcome, permit)
            return outcome

    async def _attempt(
        self,
        url: str,
        permit: Permit,
        cancel_event: asyncio.Event | None,
    ) -> Success[T] | Failure:
        outcome: Success[T] | Failure
        try:
            status_code, body = await self._invoker.invoke(
                partial(self._send, url),
                cancel_event=cancel_event,
            )
            outcome = Success(self._decoder.decode(status_code, body))
        except ClientError as exc:
            outcome = Failure(exc)
        except asyncio.CancelledError:
            self.breaker.report(
                permit, Failure(RequestCancelledError("request task cancelled"))
            )
            raise
        except Exception as exc:
            log_exception(self._logger, "request.unexpected_error", url=url)
            error = TransportError(f"unexpected transport failure: {exc!r}")
            error.__cause__ = exc
            outcome = Failure(error)
        self.breaker.report(permit, outcome)
        return outcome

    async def _send(self, url: str) -> tuple[int, bytes]:
        request = self._http.build_request("GET", url, headers=_DEFAULT_HEADERS)
        try:
            response = await self._http.send(request, stream=True)
            body = await self._decoder.read_body(response)
        except httpx.TimeoutException as exc:
            raise RequestTimeoutError(self.config.timeout_seconds) from exc
        except httpx.RequestError as exc:
            raise TransportError(str(exc) or exc.__class__.__name__) from exc
        return response.status_code, body

    def _log_outcome(self, outcome: Success[T] | Failure, permit: Permit) -> None:
        if isinstance(outcome, Success):
            log_info(
                self._logger,
                "request.succeeded",
                probe=permit.is_probe,
                state=str(self.breaker.state),
            )
            return
        fields: dict[str, object] = {
            "reason": str(outcome.reason),
            "error": str(outcome.error),
            "probe": permit.is_probe,
            "state": str(self.breaker.state),
        }
        status_code = getattr(outcome.error, "status_code", None)
        if status_code is not None:
            fields["status_code"] = status_code
        log_warning(self._logger, "request.failed", **fields)


def build_client(
    *,
    shape: Any = None,
    http_client: httpx.AsyncClient | None = None,
    **overrides: Any,
) -> ResilientClient[Any]:
    """Build a client from ``RESILIENT_CLIENT_*`` settings plus overrides."""
    return ResilientClient(ClientConfig(**overrides), http_client=http_client, shape=shape)
