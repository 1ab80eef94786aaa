"""Capped exponential backoff with full jitter for gateway reconnects.

Tracks consecutive failed connection attempts.  The delay before attempt
``n`` (1-based) is drawn uniformly from ``[0, min(max_delay, base * 2**(n-1))]``
so that many clients dropped at once do not reconnect in lockstep.
A successful READY/RESUMED resets the counter.
"""

import random
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any


@dataclass
class ReconnectPolicy:
    """Configuration for reconnect backoff."""

    base_delay: float = 1.0
    """Ceiling of the first delay, in seconds."""

    max_delay: float = 60.0
    """Upper bound on any single delay."""

    max_attempts: int | None = None
    """Consecutive failed attempts allowed before giving up.  None = forever."""

    @classmethod
    def from_config(cls, config: Any) -> "ReconnectPolicy":
        settings = config.validated().reconnect
        return cls(
            base_delay=settings.base_delay,
            max_delay=settings.max_delay,
            max_attempts=settings.max_attempts,
        )


class Backoff:
    """Stateful attempt counter driven by a :class:`ReconnectPolicy`.

    Usage::

        backoff = Backoff(ReconnectPolicy(base_delay=1, max_delay=30))
        while backoff.can_retry():
            await asyncio.sleep(backoff.next_delay())
            ...
        backoff.reset()  # after a good connection
    """

    def __init__(self, policy: ReconnectPolicy | None = None, *, rand: Callable[[float, float], float] = random.uniform):
        self.policy = policy or ReconnectPolicy()
        self._rand = rand
        self.attempts = 0

    def ceiling(self, attempt: int) -> float:
        """Maximum delay for the given 1-based attempt number."""
        exponent = min(attempt - 1, 32)
        return min(self.policy.max_delay, self.policy.base_delay * (2**exponent))

    def can_retry(self) -> bool:
        return self.policy.max_attempts is None or self.attempts < self.policy.max_attempts

    def record_attempt(self) -> int:
        """Count one attempt that waits on its own schedule.  Returns the new count."""
        self.attempts += 1
        return self.attempts

    def next_delay(self) -> float:
        """Count one attempt and return how long to wait before it."""
        return self._rand(0.0, self.ceiling(self.record_attempt()))

    def reset(self) -> None:
        self.attempts = 0
