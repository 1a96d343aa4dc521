import functools
import inspect
from collections.abc import Callable
from typing import Any

from ..classify import classify
from ..config import NO_RETRY, RetryPolicy
from .retry import AsyncRetry, Retry
from .types import ClassifierFn, LogHook, MetricHook


def retry(
    policy: RetryPolicy | None = None,
    *,
    classifier: ClassifierFn = classify,
    operation: str | None = None,
    on_metric: MetricHook | None = None,
    on_log: LogHook | None = None,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Decorate a sync or async function so every call runs under ``policy``.

    ``policy=None`` makes a single attempt, as everywhere else; pass
    ``RetryPolicy.default()`` to retry. The operation name defaults to the
    function's qualified name.
    """
    effective = policy if policy is not None else NO_RETRY

    def decorate(func: Callable[..., Any]) -> Callable[..., Any]:
        name = operation or func.__qualname__

        if inspect.iscoroutinefunction(func):
            async_runner = AsyncRetry(effective, classifier=classifier)

            @functools.wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                return await async_runner.call(
                    lambda: func(*args, **kwargs),
                    on_metric=on_metric,
                    on_log=on_log,
                    operation=name,
                )

            return async_wrapper

        sync_runner = Retry(effective, classifier=classifier)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            return sync_runner.call(
                lambda: func(*args, **kwargs),
                on_metric=on_metric,
                on_log=on_log,
                operation=name,
            )

        return wrapper

    return decorate
