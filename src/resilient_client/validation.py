"""Caller input validation.

Checks run before the breaker is consulted, so rejected input never counts as
a dependency failure. Paths are rejected for:
  - emptiness or excessive length,
  - absolute URLs or scheme-relative references (``//host``),
  - null bytes, control characters and backslashes,
  - ``..`` segments, including percent-encoded and double-encoded forms,
  - characters outside the RFC 3986 path/query set.
"""

from __future__ import annotations

import re
from urllib.parse import unquote, urlsplit

from resilient_client.errors import InvalidInputError
from resilient_client.logging import get_logger, log_warning

MAX_PATH_LENGTH = 2048
MAX_RESOURCE_ID_LENGTH = 128

_PATH_CHARS = re.compile(r"[A-Za-z0-9\-._~!$&'()*+,;=:@/?%]+")
_RESOURCE_ID = re.compile(r"[A-Za-z0-9][A-Za-z0-9_.\-]*")

_logger = get_logger(__name__)


def _reject(reason: str, value: str) -> InvalidInputError:
    log_warning(_logger, "validation.input_rejected", reason=reason)
    return InvalidInputError(reason, value=value)


def _double_decode(value: str) -> str:
    return unquote(unquote(value))


def _has_control_chars(value: str) -> bool:
    return any(ord(char) < 32 or ord(char) == 127 for char in value)


def validate_path(path: str) -> str:
    """Validate a request target and return it relative to the base address.

    Leading slashes are stripped; everything else is returned unchanged.

    Raises:
        InvalidInputError: If the path is unsafe or malformed.
    """
    if not isinstance(path, str) or not path.strip():
        raise _reject("path must be a non-empty string", str(path))
    if len(path) > MAX_PATH_LENGTH:
        raise _reject(f"path exceeds {MAX_PATH_LENGTH} characters", path)

    decoded = _double_decode(path)
    if _has_control_chars(path) or _has_control_chars(decoded):
        raise _reject("path contains control characters", path)
    if "\\" in path or "\\" in decoded:
        raise _reject("path contains backslashes", path)

    parts = urlsplit(path)
    if parts.scheme or parts.netloc or path.startswith("//"):
        raise _reject("absolute URLs are not accepted", path)
    if _PATH_CHARS.fullmatch(path) is None:
        raise _reject("path contains characters outside the URL-safe set", path)

    # Split on the raw "?": an encoded "%3F" stays part of the route.
    route = _double_decode(parts.path)
    if ".." in route.split("/"):
        raise _reject("path traversal segments are not accepted", path)

    return path.lstrip("/")


def validate_resource_id(resource_id: str) -> str:
    """Validate one opaque identifier that becomes a single path segment."""
    if not isinstance(resource_id, str) or not resource_id:
        raise _reject("resource id must be a non-empty string", str(resource_id))
    if len(resource_id) > MAX_RESOURCE_ID_LENGTH:
        raise _reject(
            f"resource id exceeds {MAX_RESOURCE_ID_LENGTH} characters", resource_id
        )
    if _RESOURCE_ID.fullmatch(resource_id) is None:
        raise _reject("resource id contains unsupported characters", resource_id)
    return resource_id
