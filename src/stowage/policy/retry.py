import asyncio
import threading
import time
from collections.abc import Awaitable, Callable
from typing import Any

from ..classify import classify
from ..config import NO_RETRY, RetryPolicy
from ..errors import RetryCancelledError
from .context import _AsyncRetryContext, _Binding, _RetryContext
from .state import _RetryState
from .types import (
    AsyncSleeperFn,
    BeforeSleepHook,
    ClassifierFn,
    LogHook,
    MetricHook,
    SleeperFn,
    T,
)


class _BaseRetry:
    """
    Shared configuration for the sync and async retry loops.

    The loop itself is deliberately dumb:
      * It does not know about HTTP, blobs or tables.
      * It only asks the classifier "transient or fatal?" and the policy
        "how long to wait?".
      * The failure it finally raises is the one the operation raised,
        unchanged, with its original traceback.
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        *,
        classifier: ClassifierFn = classify,
    ) -> None:
        self.policy = policy if policy is not None else NO_RETRY
        self.classifier = classifier

    def _new_state(
        self,
        on_metric: MetricHook | None,
        on_log: LogHook | None,
        operation: str | None,
    ) -> _RetryState:
        return _RetryState(
            policy=self.policy,
            classifier=self.classifier,
            on_metric=on_metric,
            on_log=on_log,
            operation=operation,
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(policy={self.policy!r})"


class Retry(_BaseRetry):
    """
    Blocking retry loop for plain callables.

    Waits with ``time.sleep`` (or ``sleeper``) between attempts; a
    ``threading.Event`` passed as ``cancel`` interrupts the wait.
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        *,
        classifier: ClassifierFn = classify,
        sleeper: SleeperFn | None = None,
    ) -> None:
        super().__init__(policy, classifier=classifier)
        self.sleeper = sleeper

    def _suspend(self, sleep_s: float, cancel: threading.Event | None) -> bool:
        if cancel is None:
            (self.sleeper or time.sleep)(sleep_s)
            return False
        if cancel.is_set():
            return True
        if self.sleeper is not None:
            self.sleeper(sleep_s)
            return cancel.is_set()
        return cancel.wait(timeout=sleep_s)

    def call(
        self,
        func: Callable[[], T],
        *,
        cancel: threading.Event | None = None,
        on_metric: MetricHook | None = None,
        on_log: LogHook | None = None,
        operation: str | None = None,
        before_sleep: BeforeSleepHook | None = None,
    ) -> T:
        """
        Execute ``func`` with retries according to this policy.

        Parameters
        ----------
        func:
            Zero-argument callable performing one remote call.

        cancel:
            Optional event. Set while waiting between attempts, the wait ends
            at once and RetryCancelledError is raised. Set while ``func`` is
            running, the resulting failure is not retried.

        on_metric:
            Optional callback ``on_metric(event, attempt, sleep_s, tags)``.
            Events: "success", "retry", "permanent_fail", "retry_disabled",
            "max_attempts_exceeded", "cancelled". Tags carry the error type
            name, status/error code, stop reason and operation name; never
            messages or payloads.

        on_log:
            Optional callback ``on_log(event, fields)`` invoked at the same
            points. Hook errors are swallowed so observability never changes
            the outcome of a call.

        operation:
            Optional logical name propagated into tags.

        before_sleep:
            Optional callback receiving the attempt context and the delay
            just before each wait.

        Returns
        -------
        The return value of ``func`` once it succeeds.

        Raises
        ------
        BaseException
            The failure from the last attempt, unchanged.

        RetryCancelledError
            The cancel event fired while waiting for the next attempt.
        """
        state = self._new_state(on_metric, on_log, operation)

        while True:
            state.attempt += 1
            try:
                result = func()
            except (KeyboardInterrupt, SystemExit):
                raise
            except RetryCancelledError:
                raise
            except Exception as exc:
                cancelled = cancel is not None and cancel.is_set()
                sleep_s = state.handle_exception(exc, cancelled=cancelled)
                if sleep_s is None:
                    raise

                state.notify_before_sleep(before_sleep, sleep_s)
                if self._suspend(sleep_s, cancel):
                    state.handle_cancel(exc)
                    raise RetryCancelledError(state.attempt, exc) from exc
                continue

            state.emit_success()
            return result

    def context(
        self,
        *,
        cancel: threading.Event | None = None,
        on_metric: MetricHook | None = None,
        on_log: LogHook | None = None,
        operation: str | None = None,
        before_sleep: BeforeSleepHook | None = None,
    ) -> _RetryContext:
        """
        Context manager that binds hooks/operation for multiple calls.
        ``call.named("step")`` runs under the operation name "batch.step".

        Usage:
            with retry.context(on_metric=hook, operation="batch") as call:
                call(fn1)
                call(fn2, arg1, arg2)
                call.named("flush")(fn3)
        """
        return _RetryContext(self, _Binding(cancel, on_metric, on_log, operation, before_sleep))


class AsyncRetry(_BaseRetry):
    """
    Async retry loop mirroring Retry semantics for awaitables.

    The wait between attempts is an ``asyncio.sleep`` (or ``sleeper``), so the
    event loop keeps running other work; an ``asyncio.Event`` passed as
    ``cancel`` interrupts the wait.
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        *,
        classifier: ClassifierFn = classify,
        sleeper: AsyncSleeperFn | None = None,
    ) -> None:
        super().__init__(policy, classifier=classifier)
        self.sleeper = sleeper

    async def _suspend(self, sleep_s: float, cancel: asyncio.Event | None) -> bool:
        sleeper = self.sleeper or asyncio.sleep
        if cancel is None:
            await sleeper(sleep_s)
            return False
        if cancel.is_set():
            return True

        sleep_task = asyncio.ensure_future(sleeper(sleep_s))
        cancel_task = asyncio.ensure_future(cancel.wait())
        try:
            await asyncio.wait({sleep_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleep_task, cancel_task):
                if not task.done():
                    task.cancel()
        if sleep_task.done() and not sleep_task.cancelled():
            # Re-raises a failing sleeper.
            sleep_task.result()
        return cancel.is_set()

    async def call(
        self,
        func: Callable[[], Awaitable[T]],
        *,
        cancel: asyncio.Event | None = None,
        on_metric: MetricHook | None = None,
        on_log: LogHook | None = None,
        operation: str | None = None,
        before_sleep: BeforeSleepHook | None = None,
    ) -> T:
        """
        Execute an async function with retries according to this policy.

        Same contract as Retry.call. Task cancellation (CancelledError) is
        never retried and propagates as is.
        """
        state = self._new_state(on_metric, on_log, operation)

        while True:
            state.attempt += 1
            try:
                result = await func()
            except asyncio.CancelledError:
                raise
            except (KeyboardInterrupt, SystemExit):
                raise
            except RetryCancelledError:
                raise
            except Exception as exc:
                cancelled = cancel is not None and cancel.is_set()
                sleep_s = state.handle_exception(exc, cancelled=cancelled)
                if sleep_s is None:
                    raise

                state.notify_before_sleep(before_sleep, sleep_s)
                if await self._suspend(sleep_s, cancel):
                    state.handle_cancel(exc)
                    raise RetryCancelledError(state.attempt, exc) from exc
                continue

            state.emit_success()
            return result

    def context(
        self,
        *,
        cancel: asyncio.Event | None = None,
        on_metric: MetricHook | None = None,
        on_log: LogHook | None = None,
        operation: str | None = None,
        before_sleep: BeforeSleepHook | None = None,
    ) -> _AsyncRetryContext:
        """
        Async context manager that binds hooks/operation for multiple calls.

        Usage:
            async with retry.context(on_metric=hook, operation="batch") as call:
                await call(async_fn1)
                await call(async_fn2, arg)
        """
        return _AsyncRetryContext(self, _Binding(cancel, on_metric, on_log, operation, before_sleep))


async def execute_with_retry(
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    *,
    classifier: ClassifierFn = classify,
    cancel: asyncio.Event | None = None,
    **hooks: Any,
) -> T:
    """
    Run ``func`` under ``policy``. ``policy=None`` means a single attempt.
    """
    return await AsyncRetry(policy, classifier=classifier).call(func, cancel=cancel, **hooks)


def execute_with_retry_sync(
    func: Callable[[], T],
    policy: RetryPolicy | None = None,
    *,
    classifier: ClassifierFn = classify,
    cancel: threading.Event | None = None,
    **hooks: Any,
) -> T:
    """Blocking counterpart of execute_with_retry."""
    return Retry(policy, classifier=classifier).call(func, cancel=cancel, **hooks)
