from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, ParamSpec, TypeVar

from ..classify import Classification

ClassifierFn = Callable[[BaseException], Classification | bool]
MetricHook = Callable[[str, int, float, dict[str, Any]], None]
LogHook = Callable[[str, dict[str, Any]], None]
BeforeSleepHook = Callable[["AttemptContext", float], None]
SleeperFn = Callable[[float], None]
AsyncSleeperFn = Callable[[float], Awaitable[None]]
P = ParamSpec("P")
T = TypeVar("T")


class EventName(str, Enum):
    SUCCESS = "success"
    RETRY = "retry"
    PERMANENT_FAIL = "permanent_fail"
    RETRY_DISABLED = "retry_disabled"
    MAX_ATTEMPTS_EXCEEDED = "max_attempts_exceeded"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class AttemptContext:
    attempt: int
    operation: str | None
    elapsed_s: float
    last_error: BaseException | None
    classification: Classification | None
