"""Retry and backoff helpers for warm_recs."""

import asyncio
import logging
from dataclasses import dataclass
from functools import wraps
from typing import Awaitable, Callable, TypeVar

from .config import (
    RATE_LIMIT_MAX_ATTEMPTS,
    RATE_LIMIT_INITIAL_DELAY,
    RATE_LIMIT_BACKOFF_FACTOR,
    RATE_LIMIT_MAX_DELAY,
)

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Bounded exponential backoff for rate-limited requests.

    A request gets at most ``max_attempts`` tries. Before retry n (0-based)
    the caller waits ``min(initial_delay * backoff_factor ** n, max_delay)``,
    or the server-provided Retry-After value capped at ``max_delay``.
    ``max_attempts=1`` means: pause once, then give up on that request.
    """

    max_attempts: int = RATE_LIMIT_MAX_ATTEMPTS
    initial_delay: float = RATE_LIMIT_INITIAL_DELAY
    backoff_factor: float = RATE_LIMIT_BACKOFF_FACTOR
    max_delay: float = RATE_LIMIT_MAX_DELAY

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("backoff delays must be non-negative")
        if self.backoff_factor < 1.0:
            raise ValueError("backoff_factor must be >= 1.0")

    def delay_for(self, attempt: int, retry_after: float | None = None) -> float:
        if retry_after is not None and retry_after >= 0:
            return min(retry_after, self.max_delay)
        return min(self.initial_delay * (self.backoff_factor ** attempt), self.max_delay)


def retry_transient(
    policy: BackoffPolicy,
    exceptions: tuple[type[BaseException], ...],
    sleep: Callable[[float], Awaitable[None]] | None = None,
):
    """
    Retry a graph request coroutine on transient errors (timeouts, dropped
    connections), waiting ``policy.delay_for(n)`` between attempts. The last
    error is re-raised once ``policy.max_attempts`` is used up.

    ``sleep`` defaults to ``asyncio.sleep``, resolved at call time.
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            pause = sleep or asyncio.sleep
            for attempt in range(policy.max_attempts):
                try:
                    return await func(*args, **kwargs)
                except exceptions as exc:
                    if attempt == policy.max_attempts - 1:
                        logger.error(f"{func.__name__} gave up after {policy.max_attempts} attempts: {exc}")
                        raise
                    delay = policy.delay_for(attempt)
                    logger.warning(
                        f"{func.__name__} hit {type(exc).__name__} "
                        f"(attempt {attempt + 1}/{policy.max_attempts}), retrying in {delay:.1f}s"
                    )
                    await pause(delay)

        return wrapper
    return decorator
