"""Logging adapters for retry diagnostics."""

import logging
from collections.abc import Callable
from typing import Any

LogHook = Callable[[str, dict[str, Any]], None]

logger = logging.getLogger("stowage.retry")

_EVENT_LEVELS = {
    "success": logging.DEBUG,
    "retry": logging.INFO,
    "permanent_fail": logging.WARNING,
    "retry_disabled": logging.DEBUG,
    "max_attempts_exceeded": logging.WARNING,
    "cancelled": logging.INFO,
}


def _format(event: str, fields: dict[str, Any]) -> str:
    parts = " ".join(f"{key}={value}" for key, value in fields.items())
    return f"{event} {parts}" if parts else event


def log_event(event: str, attempt: int, sleep_s: float, tags: dict[str, Any]) -> None:
    """Write one retry event to the ``stowage.retry`` logger."""
    level = _EVENT_LEVELS.get(event, logging.INFO)
    if not logger.isEnabledFor(level):
        return
    fields = {"attempt": attempt, "sleep_s": round(sleep_s, 3), **tags}
    logger.log(level, _format(event, fields), extra={"retry_event": event, "retry_fields": fields})


def logging_hook(target: logging.Logger | None = None, level: int = logging.INFO) -> LogHook:
    """
    Adapt a stdlib logger into an ``on_log`` hook.

    Every event is logged at ``level``; the event name and fields are also
    attached to the record as ``retry_event`` / ``retry_fields``.
    """
    log = target or logger

    def hook(event: str, fields: dict[str, Any]) -> None:
        log.log(level, _format(event, fields), extra={"retry_event": event, "retry_fields": fields})

    return hook
