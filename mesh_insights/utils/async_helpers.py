"""
Async utility helpers.

Provides:
- async_retry: Retry decorator with exponential backoff
- run_with_timeout: Await with a deadline and a fallback value
- swallow_errors: Keep host-facing entry points from ever raising
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def async_retry(
    attempts: int = 3,
    delay: float = 0.5,
    backoff: float = 2.0,
    exceptions: tuple = (Exception,),
) -> Callable:
    """
    Decorator for async retry with exponential backoff.

    Example:
        @async_retry(attempts=3, delay=1.0)
        async def post_batch():
            ...
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            last_exception: Optional[BaseException] = None

            for attempt in range(attempts):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    last_exception = e
                    if attempt < attempts - 1:
                        wait_time = delay * (backoff ** attempt)
                        logger.warning(
                            f"Retry {attempt + 1}/{attempts} for {func.__name__} "
                            f"after {wait_time:.1f}s: {e}"
                        )
                        await asyncio.sleep(wait_time)

            raise last_exception

        return wrapper

    return decorator


async def run_with_timeout(
    coro: Awaitable[T],
    timeout: float,
    default: Optional[T] = None,
) -> Optional[T]:
    """
    Run coroutine with timeout, returning default on timeout.

    Example:
        result = await run_with_timeout(sink.deliver(batch), timeout=5.0)
    """
    try:
        return await asyncio.wait_for(coro, timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"Operation timed out after {timeout}s")
        return default


def swallow_errors(default: Any = None, message: str = "Collector call failed") -> Callable:
    """
    Decorator that logs and suppresses any exception raised by the wrapped call.

    The collector is embedded in host applications and must never take them
    down; every public entry point is wrapped with this.

    Example:
        @swallow_errors(default={})
        def get_real_time_dashboard(self):
            ...
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs) -> Any:
            try:
                return await func(*args, **kwargs)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(f"{message}: {func.__qualname__}")
                return default

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs) -> Any:
            try:
                return func(*args, **kwargs)
            except Exception:
                logger.exception(f"{message}: {func.__qualname__}")
                return default

        if inspect.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator
