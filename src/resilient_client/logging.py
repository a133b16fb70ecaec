"""structlog setup and the log helpers used by the client and its breaker.

Library code only ever asks for a logger through ``get_logger`` and writes
events through the ``log_*`` helpers. Nothing is printed until the host
process calls ``configure_structlog``; until then events follow whatever
stdlib logging configuration is in place.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from typing import Literal, Protocol, TextIO

import structlog
from structlog.typing import EventDict, Processor

_LEVEL_NAMES = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

_Level = Literal["debug", "info", "warning", "exception"]


class StructuredLogger(Protocol):
    """Logger accepting an event name plus keyword fields."""

    def debug(self, event: str, **kwargs: object) -> None: ...

    def info(self, event: str, **kwargs: object) -> None: ...

    def warning(self, event: str, **kwargs: object) -> None: ...

    def exception(self, event: str, **kwargs: object) -> None: ...


def get_log_level_value(level: str) -> int:
    """Map a case-insensitive level name to its stdlib constant."""
    normalized = level.strip().upper()
    if normalized not in _LEVEL_NAMES:
        raise ValueError(f"log_level must be one of: {', '.join(_LEVEL_NAMES)}")
    return logging.getLevelName(normalized)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.stdlib.get_logger(name)


@contextmanager
def bound_request_context(**fields: object) -> Iterator[None]:
    """Attach ``fields`` to every event logged inside the block."""
    with structlog.contextvars.bound_contextvars(**fields):
        yield


def _emit(
    logger: StructuredLogger,
    level: _Level,
    event: str,
    fields: dict[str, object],
) -> None:
    getattr(logger, level)(event, **fields)


def log_debug(logger: StructuredLogger, event: str, **fields: object) -> None:
    _emit(logger, "debug", event, fields)


def log_info(logger: StructuredLogger, event: str, **fields: object) -> None:
    _emit(logger, "info", event, fields)


def log_warning(logger: StructuredLogger, event: str, **fields: object) -> None:
    _emit(logger, "warning", event, fields)


def log_exception(logger: StructuredLogger, event: str, **fields: object) -> None:
    """Log at error level with the active exception's traceback attached."""
    _emit(logger, "exception", event, fields)


def _build_static_fields_merger(static_fields: Mapping[str, object] | None) -> Processor:
    fields = dict(static_fields or {})

    def _merge_static_fields(_: object, __: str, event_dict: EventDict) -> EventDict:
        for key, value in fields.items():
            event_dict.setdefault(key, value)
        return event_dict

    return _merge_static_fields


def _select_renderer(stream: TextIO) -> Processor:
    isatty = getattr(stream, "isatty", None)
    if isatty is not None and isatty():
        return structlog.dev.ConsoleRenderer()
    return structlog.processors.JSONRenderer()


def _shared_processors(static_fields: Mapping[str, object] | None) -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        _build_static_fields_merger(static_fields),
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]


def configure_structlog(
    *,
    log_level: str,
    static_fields: Mapping[str, object] | None = None,
    stream: TextIO | None = None,
) -> structlog.stdlib.BoundLogger:
    """Route structlog and stdlib logging through one formatted handler.

    Calling it again replaces the previous configuration.

    Args:
        log_level: ``DEBUG``, ``INFO``, ``WARNING``, ``ERROR`` or ``CRITICAL``.
        static_fields: Fields added to every event unless the event already
            sets them, e.g. ``{"service": "orders"}``.
        stream: Output stream. Defaults to ``sys.stderr``; a console renderer
            is used when it is a TTY, JSON lines otherwise.
    """
    level_value = get_log_level_value(log_level)
    target = sys.stderr if stream is None else stream
    shared = _shared_processors(static_fields)

    handler = logging.StreamHandler(target)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _select_renderer(target),
            ],
        )
    )
    logging.basicConfig(
        format="%(message)s",
        handlers=[handler],
        level=level_value,
        force=True,
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared,
            structlog.stdlib.add_logger_name,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    return get_logger("resilient_client")
