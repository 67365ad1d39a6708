import time
from functools import wraps
from typing import Callable, Tuple, Type, TypeVar

from config import RETRY_ATTEMPTS, RETRY_BASE_DELAY, RETRY_FACTOR
from exceptions import NetworkError
from logger import get_logger

log = get_logger("retry")

T = TypeVar("T")


def call_with_retry(
    fn: Callable[[], T],
    *,
    attempts: int = RETRY_ATTEMPTS,
    base_delay: float = RETRY_BASE_DELAY,
    factor: float = RETRY_FACTOR,
    retry_on: Tuple[Type[BaseException], ...] = (NetworkError,),
    label: str = "call",
    sleep: Callable[[float], None] | None = None,
) -> T:
    """
    Run fn up to `attempts` times, sleeping base_delay * factor**n between tries.
    Only for idempotent reads: the last error is re-raised unchanged.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    delay = base_delay
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except retry_on as e:
            if attempt == attempts:
                log.error(f"{label}: giving up after {attempts} attempt(s): {e}")
                raise
            log.warning(f"{label}: attempt {attempt}/{attempts} failed ({e}); retrying in {delay:.1f}s")
            (sleep or time.sleep)(delay)
            delay *= factor

    raise AssertionError("unreachable")


def idempotent(label: str | None = None, **retry_kwargs):
    """Decorator form of call_with_retry for read-only service functions."""
    def decorator(fn):
        name = label or fn.__name__

        @wraps(fn)
        def wrapper(*args, **kwargs):
            return call_with_retry(lambda: fn(*args, **kwargs), label=name, **retry_kwargs)

        return wrapper
    return decorator
