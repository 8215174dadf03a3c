"""
Retry policy for a single provider.

Decides whether a failed call is worth another attempt on the same provider
and how long to wait first. Failover to the next provider is the
orchestrator's job, not this module's.
"""

import asyncio
import logging
import random
from typing import Awaitable, Callable, Iterable, Optional, TypeVar

from lexiroute.modules.api.models import ErrorKind
from lexiroute.modules.errors import (
    DEFAULT_RETRYABLE_KEYWORDS,
    RetryExhaustedError,
    classify_error,
    normalize_error,
)

logger = logging.getLogger("lexiroute.retry")

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[None]]


class RetryPolicy:
    """
    Exponential backoff with jitter for transient failures.

    Only transient errors are retried. Permanent, unsupported and invalid
    input errors are re-raised on the spot without consuming retry budget.
    """

    DEFAULT_MAX_ATTEMPTS = 3
    DEFAULT_BASE_DELAY = 1.0
    DEFAULT_MAX_DELAY = 10.0

    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay: float = DEFAULT_BASE_DELAY,
        max_delay: float = DEFAULT_MAX_DELAY,
        jitter: bool = True,
        retryable_keywords: Iterable[str] = DEFAULT_RETRYABLE_KEYWORDS,
        sleep: Optional[SleepFunc] = None,
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize retry policy.

        Args:
            max_attempts: Total attempts per provider, including the first
            base_delay: Delay in seconds before the first retry
            max_delay: Upper bound for the exponential part of the delay
            jitter: Add random jitter in [0, base_delay) to each delay
            retryable_keywords: Message fragments that mark untyped errors transient
            sleep: Awaitable sleep, injectable for tests
            rng: Random source, injectable for tests
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if base_delay < 0 or max_delay < 0:
            raise ValueError("delays must not be negative")

        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self.retryable_keywords = tuple(retryable_keywords)
        self._sleep = sleep or asyncio.sleep
        self._rng = rng or random.Random()

    def classify(self, error: BaseException) -> ErrorKind:
        """Classify an error as transient, permanent, unsupported or invalid input."""
        return classify_error(error, self.retryable_keywords)

    def base_delay_for(self, retry_number: int) -> float:
        """Delay before retry N without jitter: base, 2*base, 4*base, ..."""
        return min(self.base_delay * (2 ** (retry_number - 1)), self.max_delay)

    def delay_for(self, retry_number: int) -> float:
        """Delay before retry N including jitter."""
        delay = self.base_delay_for(retry_number)
        if self.jitter and self.base_delay > 0:
            delay += self._rng.uniform(0, self.base_delay)
        return delay

    async def run(
        self,
        call: Callable[[int], Awaitable[T]],
        *,
        provider_id: Optional[str] = None,
        deadline: Optional[float] = None,
    ) -> T:
        """
        Run call until it succeeds, fails non-transiently or runs out of attempts.

        Args:
            call: Coroutine factory receiving the 1-based attempt number
            provider_id: Used for error attribution and logging
            deadline: Event loop time after which no backoff is started

        Returns:
            Whatever call returns on success

        Raises:
            CapabilityError: Non-transient failure, normalized
            RetryExhaustedError: Transient failures outlasted the budget
        """
        last_error: Optional[BaseException] = None
        attempt = 0

        while attempt < self.max_attempts:
            attempt += 1
            try:
                return await call(attempt)
            except Exception as e:
                kind = self.classify(e)
                if kind != ErrorKind.TRANSIENT:
                    error = normalize_error(
                        e, provider_id=provider_id, retryable_keywords=self.retryable_keywords
                    )
                    if error is e:
                        raise
                    raise error from e

                last_error = e
                if attempt >= self.max_attempts:
                    break

                delay = self.delay_for(attempt)
                if deadline is not None:
                    remaining = deadline - asyncio.get_running_loop().time()
                    if delay >= remaining:
                        logger.info(
                            f"[{provider_id}] Skipping retry: backoff {delay:.2f}s exceeds "
                            f"remaining budget {max(remaining, 0):.2f}s"
                        )
                        break

                logger.info(
                    f"[{provider_id}] Attempt {attempt}/{self.max_attempts} failed "
                    f"({e}); retrying in {delay:.2f}s"
                )
                await self._sleep(delay)

        logger.warning(f"[{provider_id}] All {attempt} attempts failed")
        raise RetryExhaustedError(attempt, last_error, provider_id=provider_id) from last_error
