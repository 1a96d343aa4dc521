import asyncio
from collections.abc import Awaitable, Callable

from ..classify import _coerce_error_code, _coerce_status, classify
from ..config import RetryPolicy, StorageOptions
from ..errors import RetryCancelledError, StorageError
from ..policy import AsyncRetry, AsyncSleeperFn, ClassifierFn, LogHook, MetricHook, T


class StorageSurface:
    """
    Base class for service clients (blob, queue, table, file share).

    Every remote call goes through ``_execute``: the call is wrapped in a
    zero-argument closure, run under the client's RetryPolicy, and whatever
    failure finally surfaces is translated into StorageError.
    """

    service = "storage"

    def __init__(
        self,
        options: StorageOptions | None = None,
        *,
        retry_policy: RetryPolicy | None = None,
        classifier: ClassifierFn = classify,
        sleeper: AsyncSleeperFn | None = None,
        on_metric: MetricHook | None = None,
        on_log: LogHook | None = None,
    ) -> None:
        if options is not None:
            options.validate()
        self.options = options
        if retry_policy is None:
            retry_policy = options.retry_policy if options is not None else RetryPolicy.default()
        self.retry = AsyncRetry(retry_policy, classifier=classifier, sleeper=sleeper)
        self.on_metric = on_metric
        self.on_log = on_log

    @property
    def retry_policy(self) -> RetryPolicy:
        return self.retry.policy

    async def _execute(
        self,
        operation: str,
        message: str,
        func: Callable[[], Awaitable[T]],
        *,
        cancel: asyncio.Event | None = None,
    ) -> T:
        try:
            return await self.retry.call(
                func,
                cancel=cancel,
                on_metric=self.on_metric,
                on_log=self.on_log,
                operation=f"{self.service}.{operation}",
            )
        except (StorageError, RetryCancelledError):
            raise
        except Exception as exc:
            raise translate_error(exc, message) from exc


def translate_error(exc: BaseException, message: str) -> StorageError:
    """Build the public StorageError for a failure raised by the backend."""
    return StorageError(message, error_code=_coerce_error_code(exc), status_code=_coerce_status(exc))
