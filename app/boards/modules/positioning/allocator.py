"""
Key allocation for fractional indexing.

A new key is computed from at most two neighbor keys and nothing else, so an
insert costs O(1) regardless of how many items share the container. The price
is a bounded insert depth: repeatedly halving the same gap runs out of float
mantissa after ~52 steps, at which point `PrecisionExhausted` asks the caller
to rebalance.
"""
from __future__ import annotations

import math
from dataclasses import dataclass

from .errors import PrecisionExhausted
from .keys import PositionKey

FIRST_KEY = 0.0
DEFAULT_STEP = 1.0


@dataclass(frozen=True)
class Allocator:
    step: float = DEFAULT_STEP
    min_gap: float = 0.0

    def __post_init__(self) -> None:
        if not (math.isfinite(self.step) and self.step > 0):
            raise ValueError(f"step must be a positive finite number, got {self.step!r}")
        if not (math.isfinite(self.min_gap) and self.min_gap >= 0):
            raise ValueError(f"min_gap must be >= 0, got {self.min_gap!r}")

    def between(self, lower: PositionKey | None, upper: PositionKey | None) -> float:
        """
        Return a value strictly between `lower` and `upper`.

        A missing bound means the open end of the container: only `lower`
        appends after it, only `upper` prepends before it, neither starts an
        empty container at 0.0.
        """
        if lower is None and upper is None:
            return FIRST_KEY

        if upper is None:
            value = lower.value + self.step
            if not math.isfinite(value) or value <= lower.value:
                raise PrecisionExhausted(lower.value, None)
            return value

        if lower is None:
            value = upper.value - self.step
            if not math.isfinite(value) or value >= upper.value:
                raise PrecisionExhausted(None, upper.value)
            return value

        lo, hi = lower.value, upper.value
        if lo >= hi or (hi - lo) <= self.min_gap:
            raise PrecisionExhausted(lo, hi)
        # lo / 2 + hi / 2 cannot overflow for keys near the float limits.
        value = (lo + hi) / 2 if math.isfinite(lo + hi) else lo / 2 + hi / 2
        if value == lo or value == hi:
            raise PrecisionExhausted(lo, hi)
        return value


def between(lower: PositionKey | None, upper: PositionKey | None) -> float:
    return Allocator().between(lower, upper)
