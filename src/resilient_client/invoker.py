"""Deadline-bounded execution of one outbound attempt."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from contextlib import suppress
from typing import TypeVar

from resilient_client.errors import RequestCancelledError, RequestTimeoutError

T = TypeVar("T")


class TimeoutInvoker:
    """Run one attempt with a hard wall-clock deadline.

    The deadline and an optional caller-supplied ``asyncio.Event`` are OR'ed:
    whichever fires first cancels the in-flight attempt. A deadline expiry
    surfaces as ``RequestTimeoutError`` and a caller cancel as
    ``RequestCancelledError``, never as a generic transport failure.
    """

    def __init__(self, timeout: float) -> None:
        """Create an invoker.

        Args:
            timeout: Deadline in seconds for each attempt.
        """
        if timeout <= 0:
            raise ValueError("timeout must be > 0")
        self.timeout = timeout

    async def invoke(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> T:
        """Await ``operation()`` under the deadline.

        Raises:
            RequestTimeoutError: The deadline passed before completion.
            RequestCancelledError: ``cancel_event`` was set first.
            Exception: Whatever ``operation`` itself raised.
        """
        if cancel_event is not None and cancel_event.is_set():
            raise RequestCancelledError("request cancelled before it was sent")

        attempt = asyncio.ensure_future(operation())
        waiters: set[asyncio.Future[object]] = {attempt}
        cancel_waiter: asyncio.Future[object] | None = None
        if cancel_event is not None:
            cancel_waiter = asyncio.ensure_future(cancel_event.wait())
            waiters.add(cancel_waiter)

        try:
            done, _ = await asyncio.wait(
                waiters,
                timeout=self.timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            if cancel_waiter is not None and not cancel_waiter.done():
                cancel_waiter.cancel()
            if not attempt.done():
                attempt.cancel()
                with suppress(asyncio.CancelledError, Exception):
                    await attempt

        if attempt in done:
            return attempt.result()
        if cancel_waiter is not None and cancel_waiter in done:
            raise RequestCancelledError()
        raise RequestTimeoutError(self.timeout)
