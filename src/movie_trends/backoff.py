"""Retry-with-exponential-backoff wrapper for async remote calls."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from .errors import RetryExhausted, TransientRemoteError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


class BackoffExecutor:
    """
    Runs an async operation, retrying retryable failures with exponential backoff.

    Between attempt i (0-indexed) and attempt i + 1 the executor waits
    ``base_delay * 2 ** i`` seconds. There is no wait after the final attempt.
    Errors outside ``retry_on`` propagate unchanged on first occurrence.
    """

    def __init__(
        self,
        base_delay: float = 1.0,
        retry_on: Tuple[Type[BaseException], ...] = (TransientRemoteError,),
        sleep: Optional[Sleep] = None,
    ):
        self.base_delay = base_delay
        self.retry_on = retry_on
        self._sleep = sleep or asyncio.sleep

    def delay_for(self, attempt: int) -> float:
        """Delay after the given 0-indexed failed attempt."""
        return self.base_delay * (2 ** attempt)

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        max_retries: int = 3,
        label: str = "Operation",
    ) -> T:
        """
        Run ``operation`` up to ``max_retries + 1`` times.

        Args:
            operation: Zero-argument coroutine function to call
            max_retries: Number of retries after the first attempt
            label: Name used in logs and in the exhaustion error

        Returns:
            The first successful result

        Raises:
            RetryExhausted: every attempt failed with a retryable error
        """
        attempts = max_retries + 1
        last_error: Optional[BaseException] = None

        for attempt in range(attempts):
            try:
                logger.debug(f"{label} - attempt {attempt + 1}/{attempts}")
                return await operation()

            except self.retry_on as e:
                last_error = e
                logger.warning(f"{label} - attempt {attempt + 1} failed: {e}")

                if attempt == attempts - 1:
                    break

                wait = self.delay_for(attempt)
                logger.info(f"{label} - retrying in {wait:.2f}s")
                await self._sleep(wait)

        logger.error(f"{label} - all {attempts} attempts failed: {last_error}")
        raise RetryExhausted(label, attempts, last_error) from last_error
