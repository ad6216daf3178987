"""Retry utilities with backoff.

Every outbound exchange call goes through `retry_with_backoff`. The default
schedule is linear (`delay * attempt`). Errors listed in `fatal` are re-raised
on the first occurrence.
"""

import asyncio
import logging
import random
from functools import wraps
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from spreadscan.utils.logging import get_logger


logger = get_logger("retry")


T = TypeVar('T')

# Log level per failed attempt; later attempts log at DEBUG
_ATTEMPT_LEVELS = (logging.WARNING, logging.INFO)


def compute_delay(
    attempt: int,
    initial_delay: float,
    backoff: str = "linear",
    backoff_factor: float = 2.0,
    max_delay: float = 60.0,
    jitter: bool = False,
) -> float:
    """Delay before retrying after the given (1-based) failed attempt."""
    if backoff == "linear":
        delay = initial_delay * attempt
    elif backoff == "exponential":
        delay = initial_delay * (backoff_factor ** (attempt - 1))
    elif backoff == "fixed":
        delay = initial_delay
    else:
        raise ValueError(f"unknown backoff strategy: {backoff}")

    if jitter:
        delay = delay * (0.5 + random.random() * 0.5)
    return min(delay, max_delay)


def _attempt_level(attempt: int) -> int:
    if attempt <= len(_ATTEMPT_LEVELS):
        return _ATTEMPT_LEVELS[attempt - 1]
    return logging.DEBUG


async def retry_with_backoff(
    func: Callable[..., Awaitable[T]],
    *args,
    max_retries: int = 3,
    initial_delay: float = 1.0,
    backoff: str = "linear",
    backoff_factor: float = 2.0,
    max_delay: float = 60.0,
    exceptions: Tuple[Type[BaseException], ...] = (Exception,),
    fatal: Tuple[Type[BaseException], ...] = (),
    jitter: bool = False,
    context: Optional[str] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    **kwargs
) -> T:
    """Retry an async function with backoff.

    Args:
        func: The async function to retry
        max_retries: Maximum number of attempts (including the first one)
        initial_delay: Base delay in seconds
        backoff: "linear" (delay * attempt), "exponential" or "fixed"
        backoff_factor: Multiplier for exponential backoff
        max_delay: Maximum delay between retries in seconds
        exceptions: Exception types that are retried
        fatal: Exception types re-raised immediately even if they match `exceptions`
        jitter: Whether to add random jitter to delays
        context: Label used in log lines
        sleep: Awaitable sleep, injectable for tests
        *args: Positional arguments to pass to func
        **kwargs: Keyword arguments to pass to func

    Returns:
        The result of calling func

    Raises:
        The last exception raised by func if all retries fail
    """
    label = context or getattr(func, "__qualname__", repr(func))
    last_exception: Optional[BaseException] = None

    for attempt in range(1, max_retries + 1):
        try:
            return await func(*args, **kwargs)
        except fatal:
            raise
        except exceptions as e:
            last_exception = e

            if attempt < max_retries:
                delay = compute_delay(attempt, initial_delay, backoff, backoff_factor, max_delay, jitter)
                logger.log(
                    _attempt_level(attempt),
                    "[%s] attempt %d/%d failed, retrying in %.2fs: %s",
                    label,
                    attempt,
                    max_retries,
                    delay,
                    e,
                )
                await sleep(delay)
            else:
                logger.warning(
                    "[%s] all %d retry attempts failed: %s",
                    label,
                    max_retries,
                    e,
                )

    if last_exception:
        raise last_exception

    raise RuntimeError("No exception captured but retries exhausted")


def retry_decorator(
    max_retries: int = 3,
    initial_delay: float = 1.0,
    backoff: str = "linear",
    max_delay: float = 60.0,
    exceptions: Tuple[Type[BaseException], ...] = (Exception,),
    fatal: Tuple[Type[BaseException], ...] = (),
    jitter: bool = False,
):
    """Decorator for async functions with retry logic.

    Usage:
        @retry_decorator(max_retries=5, initial_delay=2.0)
        async def my_function():
            ...
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            return await retry_with_backoff(
                func,
                *args,
                max_retries=max_retries,
                initial_delay=initial_delay,
                backoff=backoff,
                max_delay=max_delay,
                exceptions=exceptions,
                fatal=fatal,
                jitter=jitter,
                context=func.__qualname__,
                **kwargs
            )
        return wrapper
    return decorator
