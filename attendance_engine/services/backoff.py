"""
Exponential backoff with jitter for terminal retries
"""
import random
from dataclasses import dataclass
from typing import Callable


@dataclass(frozen=True)
class BackoffPolicy:
    base_delay_ms: float = 1000
    multiplier: float = 2.0
    max_delay_ms: float = 10000
    jitter_ratio: float = 0.1


class BackoffCalculator:
    """
    Computes retry delays.

    ``delay_ms(n) = min(base * multiplier**n, max) + uniform(0, jitter_ratio * that)``.
    The random source is injectable so tests can pin the jitter.
    """

    def __init__(self, policy: BackoffPolicy = BackoffPolicy(), rng: Callable[[float, float], float] = random.uniform) -> None:
        self.policy = policy
        self._rng = rng

    def base_delay_for(self, attempt: int) -> float:
        """Delay before jitter; monotonically non-decreasing in ``attempt``."""
        if attempt < 0:
            raise ValueError("attempt must be >= 0")
        policy = self.policy
        # float power raises instead of returning inf
        try:
            raw = policy.base_delay_ms * (policy.multiplier ** attempt)
        except OverflowError:
            raw = float("inf")
        return min(raw, policy.max_delay_ms)

    def delay_ms(self, attempt: int) -> float:
        base = self.base_delay_for(attempt)
        return base + self._rng(0, self.policy.jitter_ratio * base)

    def delay_seconds(self, attempt: int) -> float:
        return self.delay_ms(attempt) / 1000.0
