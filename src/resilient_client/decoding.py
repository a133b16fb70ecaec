"""Turn a raw HTTP response into a decoded payload or a typed failure."""

from __future__ import annotations

from collections.abc import Container
from typing import Any, Generic, TypeVar, cast

import httpx
from pydantic import TypeAdapter, ValidationError

from resilient_client.errors import (
    DecodeError,
    OversizedResponseError,
    UnsuccessfulStatusError,
    body_prefix,
)

T = TypeVar("T")

DEFAULT_SUCCESS_STATUSES = range(200, 300)


class ResponseDecoder(Generic[T]):
    """Bounded body reader plus status and shape validation.

    ``shape`` is anything pydantic can build a ``TypeAdapter`` for: a model, a
    ``TypedDict``, ``list[int]`` and so on. Without a shape the body is parsed
    as plain JSON.
    """

    def __init__(
        self,
        max_response_bytes: int,
        *,
        shape: Any = None,
        success_statuses: Container[int] = DEFAULT_SUCCESS_STATUSES,
    ) -> None:
        """Create a decoder.

        Args:
            max_response_bytes: Largest body accepted, in bytes.
            shape: Expected payload type. Defaults to any JSON value.
            success_statuses: Status codes treated as success.
        """
        if max_response_bytes <= 0:
            raise ValueError("max_response_bytes must be > 0")
        self.max_response_bytes = max_response_bytes
        self.success_statuses = success_statuses
        self._adapter: TypeAdapter[Any] = TypeAdapter(Any if shape is None else shape)

    async def read_body(self, response: httpx.Response) -> bytes:
        """Read a streamed body, aborting once it passes the byte cap.

        The response is always closed on return.

        Raises:
            OversizedResponseError: When ``Content-Length`` or the bytes read
                so far exceed ``max_response_bytes``.
        """
        chunks: list[bytes] = []
        received = 0
        try:
            declared = response.headers.get("content-length", "")
            if declared.isdigit() and int(declared) > self.max_response_bytes:
                raise OversizedResponseError(
                    self.max_response_bytes, received=int(declared)
                )
            async for chunk in response.aiter_bytes():
                received += len(chunk)
                if received > self.max_response_bytes:
                    raise OversizedResponseError(
                        self.max_response_bytes, received=received
                    )
                chunks.append(chunk)
        finally:
            await response.aclose()
        return b"".join(chunks)

    def decode(self, status_code: int, body: bytes) -> T:
        """Validate the status and parse ``body`` into the expected shape.

        Raises:
            UnsuccessfulStatusError: Status outside the success window.
            DecodeError: Body is not valid JSON or does not match the shape.
        """
        if status_code not in self.success_statuses:
            raise UnsuccessfulStatusError(
                status_code,
                response_body=body_prefix(body),
            )
        if status_code == httpx.codes.NO_CONTENT:
            return cast(T, None)
        try:
            return cast(T, self._adapter.validate_json(body))
        except ValidationError as exc:
            if any(error["type"] == "json_invalid" for error in exc.errors()):
                message = "response body is not valid JSON"
            else:
                message = (
                    f"response body does not match the expected shape "
                    f"({exc.error_count()} error(s))"
                )
            raise DecodeError(message, response_body=body_prefix(body)) from exc
