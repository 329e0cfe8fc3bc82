"""
Reconnection policy for live feeds.

Exponential backoff with jitter, capped at ``max_delay``.
"""

import logging
import random
from dataclasses import dataclass

import anyio

from couchdb_changes._errors import ChangesFeedError

logger = logging.getLogger(__name__)

# 2**32 * base_delay already exceeds any sensible cap
_MAX_EXPONENT = 32


@dataclass(frozen=True)
class RetryPolicy:
    """
    Backoff tuning, in seconds.

    The delay for the n-th consecutive failure is
    ``min(2**n * base_delay, max_delay) + uniform(0, jitter)``.
    """

    base_delay: float = 0.1
    max_delay: float = 30.0
    jitter: float = 0.1

    def delay_for(self, retry_count: int) -> float:
        exponent = min(retry_count, _MAX_EXPONENT)
        backoff = min(2**exponent * self.base_delay, self.max_delay)
        return backoff + random.uniform(0, self.jitter)


def is_retryable(error: BaseException) -> bool:
    """Whether a live feed reconnects after this error."""
    return isinstance(error, ChangesFeedError)


class Reconnector:
    """
    Tracks consecutive failures and sleeps between reconnect attempts.

    The sleep is a plain anyio checkpoint, so cancelling the enclosing
    scope (stop()) interrupts it immediately.
    """

    def __init__(self, policy: RetryPolicy | None = None) -> None:
        self.policy = policy or RetryPolicy()
        self.retry_count = 0

    def next_delay(self) -> float:
        self.retry_count += 1
        return self.policy.delay_for(self.retry_count)

    def reset(self) -> None:
        self.retry_count = 0

    async def backoff(self, reason: ChangesFeedError | str) -> float:
        """
        Wait before the next attempt.

        Returns:
            The delay that was slept, in seconds
        """
        delay = self.next_delay()
        logger.warning(
            "Changes feed interrupted: %s. Retrying in %.2f seconds (attempt %d)",
            reason,
            delay,
            self.retry_count,
        )
        await anyio.sleep(delay)
        return delay
