"""Scheduling context stamped onto log records.

Engine logs interleave when several orgs preview and book at once. Each
record therefore carries two fields:

- ``request_id``: set once at the entry point (a CLI invocation, an API
  request) with ``set_request_id``.
- ``org_id``: bound for the duration of an engine call by ``org_scoped``.

``load_config`` formats both through ``LOG_FORMAT`` and installs the
filter on the root handlers, so records from any logger render.

Usage:
    set_request_id("CLI-1a2b3c4d")
    logger = get_context_logger(__name__)

    class AvailabilityEngine:
        @org_scoped
        def compute_availability_for_worker(self, org_id, ...):
            logger.debug("...")  # ... [CLI-1a2b3c4d org=org_1]: ...
"""

import functools
import logging
from contextvars import ContextVar
from typing import Callable, Iterable, TypeVar

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s [%(request_id)s org=%(org_id)s]: %(message)s"
UNSET = "-"

_request_id: ContextVar[str] = ContextVar("request_id", default=UNSET)
_org_id: ContextVar[str] = ContextVar("org_id", default=UNSET)

F = TypeVar("F", bound=Callable[..., object])


def set_request_id(request_id: str) -> None:
    _request_id.set(request_id)


def get_request_id() -> str:
    return _request_id.get()


def get_org_id() -> str:
    """Org bound by the innermost ``org_scoped`` call, or ``UNSET``."""
    return _org_id.get()


def org_scoped(method: F) -> F:
    """Bind an engine method's ``org_id`` argument to log records for the call.

    The previous org is restored on exit, so nested engine calls (the
    resolver driving the availability engine) unwind cleanly.
    """

    @functools.wraps(method)
    def wrapper(self, org_id, *args, **kwargs):
        token = _org_id.set(org_id or UNSET)
        try:
            return method(self, org_id, *args, **kwargs)
        finally:
            _org_id.reset(token)

    return wrapper  # type: ignore[return-value]


class SchedulingContextFilter(logging.Filter):
    """Adds ``request_id`` and ``org_id`` to each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id.get()  # type: ignore[attr-defined]
        record.org_id = _org_id.get()  # type: ignore[attr-defined]
        return True


def _has_context_filter(filterer: logging.Filterer) -> bool:
    return any(isinstance(f, SchedulingContextFilter) for f in filterer.filters)


def install_context_filter(handlers: Iterable[logging.Handler]) -> None:
    """Attach the filter to ``handlers`` so ``LOG_FORMAT`` renders for every logger."""
    for handler in handlers:
        if not _has_context_filter(handler):
            handler.addFilter(SchedulingContextFilter())


def get_context_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    if not _has_context_filter(logger):
        logger.addFilter(SchedulingContextFilter())
    return logger
