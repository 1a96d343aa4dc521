import random
import threading
from collections.abc import Callable

from .config import RetryPolicy

DEFAULT_JITTER_RATIO = 0.2

StrategyFn = Callable[[int], float]

_local = threading.local()


def _thread_rng() -> random.Random:
    # One generator per thread: no lock, no correlated sequences across threads.
    rng = getattr(_local, "rng", None)
    if rng is None:
        rng = random.Random()
        _local.rng = rng
    return rng


def _exponential_with_jitter(
    attempt: int,
    initial_s: float,
    max_s: float,
    jitter_ratio: float,
    rng: random.Random,
) -> float:
    if initial_s <= 0.0:
        return 0.0
    try:
        exponential = initial_s * (2.0 ** (attempt - 1))
    except OverflowError:
        return max_s
    # Also covers inf, so jitter never sees inf * 0.
    if exponential >= max_s:
        return max_s

    jitter = rng.uniform(0.0, jitter_ratio) * exponential
    return max(0.0, min(exponential + jitter, max_s))


def backoff_delay(
    attempt: int,
    policy: RetryPolicy,
    *,
    rng: random.Random | None = None,
) -> float:
    """
    Delay in seconds before retry number ``attempt`` (1-based).

    exponential = initial_delay_s * 2^(attempt - 1)
    sleep       = min(exponential * (1 + U[0, jitter_ratio]), max_delay_s)
    """
    return _exponential_with_jitter(
        attempt,
        policy.initial_delay_s,
        policy.max_delay_s,
        policy.jitter_ratio,
        rng or _thread_rng(),
    )


def exponential_jitter(
    initial_s: float = 1.0,
    max_s: float = 30.0,
    jitter_ratio: float = DEFAULT_JITTER_RATIO,
) -> StrategyFn:
    """
    Exponential backoff with multiplicative jitter.

    base  = initial_s * 2^(attempt-1)
    sleep in [base, base * (1 + jitter_ratio)], clamped to max_s

    """

    def f(attempt: int) -> float:
        return _exponential_with_jitter(attempt, initial_s, max_s, jitter_ratio, _thread_rng())

    return f
