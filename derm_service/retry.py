"""
Retry with exponential backoff for model calls.

The delay schedule is a pure function so it can be tested without waiting;
the loop takes an injectable sleep for the same reason.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from .errors import AIError, AIServiceError

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 2
    base_delay: float = 1.0
    max_delay: float = 8.0

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1


def backoff_delay(attempt: int, policy: RetryPolicy) -> float:
    """Delay to wait after failed attempt number ``attempt`` (1-based).

    1 -> base, 2 -> 2*base, 3 -> 4*base, ... capped at max_delay.
    """
    if attempt < 1:
        return 0.0
    return min(policy.base_delay * (2 ** (attempt - 1)), policy.max_delay)


async def call_with_retry(
    operation: Callable[[int], Awaitable[T]],
    policy: RetryPolicy,
    *,
    operation_name: str = "model call",
    sleep: Optional[SleepFn] = None,
) -> tuple[T, int]:
    """Run ``operation(attempt)`` until it succeeds or retries are exhausted.

    Returns (result, attempts). Non-retryable AIErrors are raised right away.
    Any other exception is wrapped as a retryable AIServiceError. The last
    error is raised with ``attempts`` set.
    """
    sleep = sleep or asyncio.sleep
    last_error: Optional[AIError] = None

    for attempt in range(1, policy.max_attempts + 1):
        try:
            result = await operation(attempt)
            if attempt > 1:
                logger.info(f"{operation_name} succeeded on attempt {attempt}/{policy.max_attempts}")
            return result, attempt
        except AIError as e:
            last_error = e
        except Exception as e:
            logger.exception(f"{operation_name} raised an unexpected error")
            last_error = AIServiceError(f"{operation_name} failed: {type(e).__name__}")

        last_error.attempts = attempt
        if not last_error.retryable:
            logger.error(f"{operation_name} failed with non-retryable error: {last_error.message}")
            raise last_error

        if attempt < policy.max_attempts:
            delay = backoff_delay(attempt, policy)
            logger.warning(
                f"{operation_name} attempt {attempt}/{policy.max_attempts} failed "
                f"({last_error.code}: {last_error.message}); retrying in {delay:.1f}s"
            )
            await sleep(delay)

    logger.error(f"{operation_name} failed after {policy.max_attempts} attempts")
    raise last_error
