"""Retry delays for announces that failed on the transport."""

from __future__ import annotations

import math
import random
from dataclasses import dataclass


@dataclass
class ExponentialBackoff:
    """Exponential backoff over consecutive failures, with optional jitter.

    Delays are whole seconds because announce intervals are.
    """

    base_delay: float = 15.0
    multiplier: float = 2.0
    max_delay: float = 1800.0
    jitter: float = 0.0

    def next_delay(self, failures: int) -> int:
        """Return the delay in seconds after ``failures`` consecutive failures.

        ``failures`` counts the failure that just happened, so the first
        failure (``failures == 1``) waits ``base_delay``.
        """
        delay = self.base_delay * (self.multiplier ** max(0, failures - 1))
        delay = min(delay, self.max_delay)
        if self.jitter > 0:
            spread = delay * self.jitter
            delay = min(self.max_delay, max(0.0, delay - spread) + random.random() * 2 * spread)
        return max(1, math.ceil(delay))
