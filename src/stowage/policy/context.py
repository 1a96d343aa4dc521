import asyncio
import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from typing import Any, Literal, TYPE_CHECKING

from .types import BeforeSleepHook, LogHook, MetricHook, T

if TYPE_CHECKING:
    from .retry import AsyncRetry, Retry


@dataclass(frozen=True)
class _Binding:
    """Per-call keyword arguments shared by every call made through a context."""

    cancel: threading.Event | asyncio.Event | None = None
    on_metric: MetricHook | None = None
    on_log: LogHook | None = None
    operation: str | None = None
    before_sleep: BeforeSleepHook | None = None

    def scoped(self, name: str) -> "_Binding":
        return replace(self, operation=f"{self.operation}.{name}" if self.operation else name)

    def kwargs(self) -> dict[str, Any]:
        return {
            "cancel": self.cancel,
            "on_metric": self.on_metric,
            "on_log": self.on_log,
            "operation": self.operation,
            "before_sleep": self.before_sleep,
        }


class _RetryContext:
    """
    ``with retry.context(...) as call`` yields a callable running
    ``func(*args, **kwargs)`` under the retry loop with the bound hooks.

    ``calls`` counts the operations started through the context.
    ``call.named("step")`` scopes the operation name as ``"<operation>.step"``.
    """

    def __init__(self, retry: "Retry", binding: _Binding) -> None:
        self.retry = retry
        self.binding = binding
        self.calls = 0

    def __enter__(self) -> "_RetryContext":
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> Literal[False]:
        return False

    def __call__(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        self.calls += 1
        return self.retry.call(lambda: func(*args, **kwargs), **self.binding.kwargs())

    def named(self, operation: str) -> "_RetryContext":
        return _RetryContext(self.retry, self.binding.scoped(operation))


class _AsyncRetryContext:
    """Async counterpart of _RetryContext (``async with``)."""

    def __init__(self, retry: "AsyncRetry", binding: _Binding) -> None:
        self.retry = retry
        self.binding = binding
        self.calls = 0

    async def __aenter__(self) -> "_AsyncRetryContext":
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> Literal[False]:
        return False

    async def __call__(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        self.calls += 1
        return await self.retry.call(lambda: func(*args, **kwargs), **self.binding.kwargs())

    def named(self, operation: str) -> "_AsyncRetryContext":
        return _AsyncRetryContext(self.retry, self.binding.scoped(operation))
