from .decorator import retry
from .retry import AsyncRetry, Retry, execute_with_retry, execute_with_retry_sync
from .types import (
    AsyncSleeperFn,
    AttemptContext,
    BeforeSleepHook,
    ClassifierFn,
    EventName,
    LogHook,
    MetricHook,
    P,
    SleeperFn,
    T,
)

__all__ = [
    "AsyncRetry",
    "Retry",
    "execute_with_retry",
    "execute_with_retry_sync",
    "retry",
    "AttemptContext",
    "ClassifierFn",
    "EventName",
    "MetricHook",
    "LogHook",
    "BeforeSleepHook",
    "SleeperFn",
    "AsyncSleeperFn",
    "P",
    "T",
]
