import time
from dataclasses import dataclass, field
from typing import Any

from ..classify import Classification
from ..config import RetryPolicy
from ..errors import StopReason
from ..observability import log_event
from ..strategies import backoff_delay
from .types import AttemptContext, BeforeSleepHook, ClassifierFn, EventName, LogHook, MetricHook


def _normalize_classification(value: Classification | bool) -> Classification:
    if isinstance(value, Classification):
        return value
    return Classification(bool(value), reason="transient" if value else "fatal")


@dataclass
class _RetryState:
    """
    Per-call attempt context.

    Created when a call starts and dropped when it returns or raises, so
    concurrent calls through the same policy never share it.
    """

    policy: RetryPolicy
    classifier: ClassifierFn
    on_metric: MetricHook | None = None
    on_log: LogHook | None = None
    operation: str | None = None
    attempt: int = 0
    last_error: BaseException | None = None
    last_classification: Classification | None = None
    start: float = field(default_factory=time.monotonic)

    def elapsed(self) -> float:
        return time.monotonic() - self.start

    def snapshot(self) -> AttemptContext:
        return AttemptContext(
            attempt=self.attempt,
            operation=self.operation,
            elapsed_s=self.elapsed(),
            last_error=self.last_error,
            classification=self.last_classification,
        )

    def emit(
        self,
        event: EventName,
        attempt: int,
        sleep_s: float,
        exc: BaseException | None = None,
        *,
        stop_reason: StopReason | None = None,
    ) -> None:
        tags: dict[str, Any] = {}
        if exc is not None:
            tags["err"] = type(exc).__name__
        classification = self.last_classification if exc is not None else None
        if classification is not None:
            tags["reason"] = classification.reason
            if classification.status_code is not None:
                tags["status"] = classification.status_code
            if classification.error_code is not None:
                tags["code"] = classification.error_code
        if stop_reason is not None:
            tags["stop_reason"] = stop_reason.value
        if self.operation:
            tags["operation"] = self.operation

        log_event(event.value, attempt, sleep_s, tags)

        if self.on_metric is not None:
            try:
                self.on_metric(event.value, attempt, sleep_s, tags)
            except Exception:
                pass

        if self.on_log is not None:
            fields = {"attempt": attempt, "sleep_s": sleep_s, **tags}
            try:
                self.on_log(event.value, fields)
            except Exception:
                pass

    def classify(self, exc: BaseException) -> Classification:
        try:
            classification = _normalize_classification(self.classifier(exc))
        except Exception:
            # A classifier that cannot read the failure fails closed.
            classification = Classification(False, reason="unreadable")
        self.last_classification = classification
        return classification

    def handle_exception(self, exc: BaseException, *, cancelled: bool) -> float | None:
        """
        Decide what to do after a failed attempt.

        Returns the delay before the next attempt, or None when ``exc``
        must be re-raised to the caller.
        """
        attempt = self.attempt
        self.last_error = exc

        if not self.policy.enabled:
            self.last_classification = None
            self.emit(
                EventName.RETRY_DISABLED,
                attempt,
                0.0,
                exc,
                stop_reason=StopReason.RETRY_DISABLED,
            )
            return None

        if cancelled:
            self.last_classification = Classification(False, reason="cancelled")
            self.emit(EventName.CANCELLED, attempt, 0.0, exc, stop_reason=StopReason.CANCELLED)
            return None

        classification = self.classify(exc)
        if not classification.is_transient:
            self.emit(
                EventName.PERMANENT_FAIL,
                attempt,
                0.0,
                exc,
                stop_reason=StopReason.NON_RETRYABLE,
            )
            return None

        if attempt > self.policy.max_attempts:
            self.emit(
                EventName.MAX_ATTEMPTS_EXCEEDED,
                attempt,
                0.0,
                exc,
                stop_reason=StopReason.MAX_ATTEMPTS,
            )
            return None

        sleep_s = backoff_delay(attempt, self.policy)
        self.emit(EventName.RETRY, attempt, sleep_s, exc)
        return sleep_s

    def handle_cancel(self, exc: BaseException) -> None:
        self.last_classification = Classification(False, reason="cancelled")
        self.emit(
            EventName.CANCELLED,
            self.attempt,
            0.0,
            exc,
            stop_reason=StopReason.CANCELLED,
        )

    def notify_before_sleep(self, hook: BeforeSleepHook | None, sleep_s: float) -> None:
        if hook is None:
            return
        try:
            hook(self.snapshot(), sleep_s)
        except Exception:
            pass

    def emit_success(self) -> None:
        self.emit(EventName.SUCCESS, self.attempt, 0.0)
