"""Bounded exponential backoff for calls to external collaborators."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from telehealth.core.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry settings for one class of external call.

    Attributes:
        attempts: Total number of attempts (first call included)
        base_delay: Delay before the second attempt, doubled each time
        max_delay: Upper bound for a single delay
        timeout: Per-attempt timeout; None disables it
    """

    attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 8.0
    timeout: float | None = None

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError(f"RetryPolicy needs at least one attempt, got {self.attempts}")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("RetryPolicy delays must not be negative")

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given zero-based failed attempt."""
        return min(self.base_delay * (2**attempt), self.max_delay)

    @classmethod
    def from_settings(cls, timeout: float | None = None) -> "RetryPolicy":
        """Build the default policy from application settings."""
        return cls(
            attempts=settings.retry_attempts,
            base_delay=settings.retry_base_delay_seconds,
            max_delay=settings.retry_max_delay_seconds,
            timeout=timeout,
        )


def is_retryable(exc: BaseException) -> bool:
    """Timeouts and errors flagged ``is_retryable`` are transient."""
    if isinstance(exc, asyncio.TimeoutError):
        return True
    return bool(getattr(exc, "is_retryable", False))


class RetryExhausted(Exception):
    """Raised when every attempt failed with a transient error."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"gave up after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    description: str = "operation",
) -> tuple[T, int]:
    """Run ``operation`` until it succeeds or the policy is exhausted.

    Non-retryable errors propagate immediately. Transient errors are retried
    with exponential backoff and raise RetryExhausted on the last attempt.

    Returns:
        Tuple of (result, attempts used)
    """
    attempt = 0
    while True:
        try:
            if policy.timeout is not None:
                result = await asyncio.wait_for(operation(), timeout=policy.timeout)
            else:
                result = await operation()
            return result, attempt + 1
        except Exception as exc:
            if not is_retryable(exc):
                raise
            if attempt + 1 >= policy.attempts:
                raise RetryExhausted(policy.attempts, exc) from exc
            delay = policy.delay_for(attempt)
            logger.info(
                f"Retrying {description} after transient error "
                f"(attempt {attempt + 1}/{policy.attempts}, backoff {delay:.2f}s): {exc!r}",
                extra={"attempt": attempt + 1},
            )
            await asyncio.sleep(delay)
            attempt += 1
