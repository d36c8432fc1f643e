"""
Retry policy — decides what happens after a transient failure.

Two outcomes:
1. attempt_count < max_attempts → retry at now + backoff delay
2. attempt_count >= max_attempts → give up, the job is FAILED

attempt_count is the number of retries already spent, so a job that keeps
failing transiently is retried max_attempts times and fails on the failure
after that.

Backoff is exponential and capped:

    delay = min(base_delay * 2 ** attempt_count * (1 + jitter * u), max_delay)

With the defaults (15s base, 300s cap): 15s, 30s, 60s, 120s, 240s.
u is drawn from [0, 1) so jitter only ever lengthens the delay and
next_retry_at is always in the future.

Only TRANSIENT_ERROR is retried here. Quota errors never reach this policy
(they pause the batch instead) and permanent errors give up immediately.

This module is pure: no database, no clock reads. The caller passes `now`.
"""

import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from config.settings import settings
from jobs.base import StepOutcome


@dataclass(frozen=True)
class RetryDecision:
    give_up: bool
    next_retry_at: Optional[datetime] = None
    delay: Optional[float] = None  # seconds


class RetryPolicy:

    def __init__(
        self,
        max_attempts: int = settings.RETRY_MAX_ATTEMPTS,
        base_delay: float = settings.RETRY_BASE_DELAY,
        max_delay: float = settings.RETRY_MAX_DELAY,
        jitter: float = settings.RETRY_JITTER,
    ):
        if base_delay <= 0 or max_delay < base_delay:
            raise ValueError("need 0 < base_delay <= max_delay")
        if jitter < 0:
            raise ValueError("jitter must be >= 0")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter

    def backoff(self, attempt_count: int, rng: Callable[[], float] = random.random) -> float:
        """Delay in seconds before retry number attempt_count + 1."""
        # cap the exponent first so huge attempt counts cannot overflow
        exponent = min(attempt_count, 32)
        delay = self.base_delay * (2 ** exponent)
        delay *= 1 + self.jitter * rng()
        return min(delay, self.max_delay)

    def decide(
        self,
        attempt_count: int,
        outcome: StepOutcome,
        now: datetime,
        max_attempts: Optional[int] = None,
        rng: Callable[[], float] = random.random,
    ) -> RetryDecision:
        limit = self.max_attempts if max_attempts is None else max_attempts
        if outcome != StepOutcome.TRANSIENT_ERROR or attempt_count >= limit:
            return RetryDecision(give_up=True)

        delay = self.backoff(attempt_count, rng)
        return RetryDecision(
            give_up=False,
            next_retry_at=now + timedelta(seconds=delay),
            delay=delay,
        )
