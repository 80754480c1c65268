"""Retry-with-backoff for async I/O calls."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, TypeVar

from tradebot.errors import ExchangeUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_BACKOFF_SECONDS = 30.0


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    attempts: int = 3,
    delay: float = 1.0,
    timeout: float | None = None,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    description: str | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    **kwargs: Any,
) -> T:
    """Await ``func(*args, **kwargs)`` up to ``attempts`` times.

    Each attempt is bounded by ``timeout`` seconds. Exceptions listed in
    ``retry_on`` (and timeouts) are retried after ``delay * 2**n`` seconds, capped
    at 30s; anything else propagates immediately. When every attempt failed an
    ``ExchangeUnavailableError`` is raised from the last error.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    name = description or getattr(func, "__name__", "call")
    last_error: BaseException | None = None

    for attempt in range(attempts):
        try:
            if timeout is not None:
                return await asyncio.wait_for(func(*args, **kwargs), timeout=timeout)
            return await func(*args, **kwargs)
        except asyncio.CancelledError:
            raise
        except (asyncio.TimeoutError, *retry_on) as e:
            last_error = e
            if attempt == attempts - 1:
                break
            wait = min(delay * 2 ** attempt, MAX_BACKOFF_SECONDS)
            logger.warning(
                f"{name} failed (attempt {attempt + 1}/{attempts}): {e!r}; retrying in {wait:.1f}s"
            )
            await sleep(wait)

    logger.error(f"{name} failed after {attempts} attempts: {last_error!r}")
    raise ExchangeUnavailableError(f"{name} failed after {attempts} attempts: {last_error}") from last_error
