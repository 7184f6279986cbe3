"""Retry with exponential backoff for idempotent document reads.

Snapshot writes are never retried here: a failed write is logged and the
next local edit or inbound snapshot reconciles the state.
"""

import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

__all__ = ["RetryConfig", "RetryExhausted", "calculate_delay", "retry_with_backoff"]

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_retries: int = 2
    base_delay: float = 0.5  # seconds
    max_delay: float = 10.0  # seconds
    exponential_base: float = 2.0
    jitter: bool = True


class RetryExhausted(Exception):
    """All retry attempts exhausted."""

    def __init__(self, attempts: int, last_error: Optional[Exception] = None):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Retry exhausted after {attempts} attempts")


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Delay before retry number ``attempt`` (0-indexed), capped at max_delay."""
    delay = min(config.base_delay * (config.exponential_base ** attempt), config.max_delay)
    if config.jitter:
        # +/- 25%
        spread = delay * 0.25
        delay += random.uniform(-spread, spread)
    return max(0.0, delay)


def retry_with_backoff(
    func: Callable[[], T],
    config: Optional[RetryConfig] = None,
    retryable_exceptions: tuple = (Exception,),
    should_continue: Optional[Callable[[], bool]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``func`` until it succeeds or the retry budget is spent.

    Args:
        func: Function to execute
        config: Retry configuration
        retryable_exceptions: Exceptions that trigger another attempt
        should_continue: Checked before each retry; returning False stops
            early (used when a subscription is cancelled mid-poll)
        sleep: Sleep function, injectable for tests

    Raises:
        RetryExhausted: If all attempts fail or retrying was stopped
    """
    config = config or RetryConfig()
    last_error: Optional[Exception] = None
    attempts = 0

    for attempt in range(config.max_retries + 1):
        attempts = attempt + 1
        try:
            return func()
        except retryable_exceptions as e:
            last_error = e
            if attempt >= config.max_retries:
                break
            if should_continue is not None and not should_continue():
                break
            delay = calculate_delay(attempt, config)
            logger.debug(f"Attempt {attempts} failed: {e}. Retrying in {delay:.1f}s...")
            sleep(delay)

    raise RetryExhausted(attempts, last_error)
