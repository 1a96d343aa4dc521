import asyncio
import errno
import socket
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass

from .errors import RetryCancelledError

TRANSIENT_STATUS_CODES: frozenset[int] = frozenset({408, 500, 502, 503, 504})
THROTTLING_STATUS_CODES: frozenset[int] = frozenset({429})
TRANSIENT_ERROR_CODES: frozenset[str] = frozenset({"ServerBusy", "OperationTimedOut"})

_NETWORK_ERRNOS = frozenset(
    code
    for code in (
        getattr(errno, name, None)
        for name in (
            "ECONNRESET",
            "ECONNREFUSED",
            "ECONNABORTED",
            "EPIPE",
            "ETIMEDOUT",
            "ENETDOWN",
            "ENETUNREACH",
            "ENETRESET",
            "EHOSTDOWN",
            "EHOSTUNREACH",
        )
    )
    if code is not None
)

_CONNECTIVITY_TYPES: tuple[type[BaseException], ...] = (
    ConnectionError,
    TimeoutError,
    socket.gaierror,
    socket.herror,
)

_MAX_CAUSE_DEPTH = 16


@dataclass(frozen=True)
class Classification:
    """
    Verdict for a single failure.

    ``reason`` names the rule that produced the verdict and is only used for
    diagnostics; control flow looks at ``is_transient`` alone.
    """

    is_transient: bool
    status_code: int | None = None
    error_code: str | None = None
    reason: str = "fatal"


ClassifierFn = Callable[[BaseException], Classification]


def _coerce_status(exc: BaseException) -> int | None:
    for attr in ("status_code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value

    response = getattr(exc, "response", None)
    if response is not None:
        for attr in ("status_code", "status"):
            value = getattr(response, attr, None)
            if isinstance(value, int) and not isinstance(value, bool):
                return value
    return None


def _coerce_error_code(exc: BaseException) -> str | None:
    for attr in ("error_code", "ErrorCode", "code"):
        value = getattr(exc, attr, None)
        if isinstance(value, str) and value:
            return value
    return None


def iter_causes(exc: BaseException) -> Iterator[BaseException]:
    """
    Yield ``exc`` followed by its underlying causes.

    Follows ``__cause__``, then an unsuppressed ``__context__``, then an SDK-style
    ``inner_exception`` attribute. Cycles and very deep chains are cut off.
    """
    seen: set[int] = set()
    current: BaseException | None = exc
    depth = 0
    while current is not None and id(current) not in seen and depth < _MAX_CAUSE_DEPTH:
        seen.add(id(current))
        yield current
        depth += 1
        nxt = current.__cause__
        if nxt is None and not current.__suppress_context__:
            nxt = current.__context__
        if nxt is None:
            inner = getattr(current, "inner_exception", None)
            nxt = inner if isinstance(inner, BaseException) else None
        current = nxt


def is_connectivity_error(exc: BaseException) -> bool:
    """True for connection resets, socket errors and I/O timeouts."""
    if isinstance(exc, _CONNECTIVITY_TYPES):
        return True
    return isinstance(exc, OSError) and exc.errno in _NETWORK_ERRNOS


def _is_cancellation(exc: BaseException) -> bool:
    return isinstance(exc, (asyncio.CancelledError, RetryCancelledError))


def make_classifier(
    *,
    status_codes: Iterable[int] | None = None,
    error_codes: Iterable[str] | None = None,
    include_connectivity: bool = True,
) -> ClassifierFn:
    """
    Build a classifier with custom transient code lists.

    ``status_codes`` replaces the 5xx/408 set (429 is always treated as
    throttling). ``error_codes`` replaces the symbolic backend codes.
    """
    transient_status = (
        TRANSIENT_STATUS_CODES if status_codes is None else frozenset(status_codes)
    )
    transient_codes = TRANSIENT_ERROR_CODES if error_codes is None else frozenset(error_codes)

    def classifier(exc: BaseException) -> Classification:
        if _is_cancellation(exc):
            return Classification(False, reason="cancelled")

        try:
            status = _coerce_status(exc)
            code = _coerce_error_code(exc)
        except Exception:
            return Classification(False, reason="unreadable")

        if status is not None and status in transient_status:
            return Classification(True, status, code, reason="status")
        if status is not None and status in THROTTLING_STATUS_CODES:
            return Classification(True, status, code, reason="throttled")
        if code is not None and code in transient_codes:
            return Classification(True, status, code, reason="error_code")

        if include_connectivity:
            try:
                connectivity = any(is_connectivity_error(e) for e in iter_causes(exc))
            except Exception:
                return Classification(False, status, code, reason="unreadable")
            if connectivity:
                return Classification(True, status, code, reason="connectivity")

        return Classification(False, status, code, reason="fatal")

    return classifier


classify: ClassifierFn = make_classifier()


def default_classifier(exc: BaseException) -> bool:
    """
    Return True when retrying ``exc`` has a reasonable chance of succeeding.

    Rules, first match wins:
      * status code 408/500/502/503/504
      * status code 429 (throttling)
      * error code ServerBusy/OperationTimedOut
      * a connectivity failure anywhere in the cause chain
    Everything else, including cancellation, is fatal.
    """
    return classify(exc).is_transient
