"""Retry helpers for provider calls, built on tenacity."""
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ..errors import ProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_EXCEPTIONS = (ProviderError,)


def is_transient(exc: BaseException, exceptions: tuple = RETRYABLE_EXCEPTIONS) -> bool:
    """Only errors the adapter flagged as transient are retried."""
    return isinstance(exc, exceptions) and getattr(exc, "transient", False)


async def call_with_retry(
    func: Callable[[], Awaitable[T]],
    retries: int = 0,
    min_wait: float = 0.5,
    max_wait: float = 10,
    exceptions: tuple = RETRYABLE_EXCEPTIONS,
    on_attempt: Optional[Callable[[int], Any]] = None,
) -> T:
    """Await ``func()`` with exponential backoff.

    Args:
        func: Zero-argument coroutine factory
        retries: Retries after the first attempt (0 disables retrying)
        min_wait: Minimum wait time between retries (seconds)
        max_wait: Maximum wait time between retries (seconds)
        exceptions: Exception types that may carry a transient flag
        on_attempt: Called with the attempt number before each try

    The last error is re-raised once attempts are exhausted.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(retries + 1),
        wait=wait_exponential(multiplier=min_wait, min=min_wait, max=max_wait),
        retry=retry_if_exception(lambda exc: is_transient(exc, exceptions)),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            if on_attempt is not None:
                on_attempt(attempt.retry_state.attempt_number)
            return await func()
