"""
Adaptive per-minute rate limiting for inference calls.

The nominal allowance shrinks as budget utilization climbs, so a nearly
spent budget is drained more slowly.
"""

import math
import threading
import time
from decimal import Decimal
from typing import Callable, Union

from structlog import get_logger

logger = get_logger(__name__)

WINDOW_SECONDS = 60.0

# (utilization lower bound, fraction of nominal rate), checked from the top
_RATE_STEPS = (
    (Decimal("0.8"), Decimal("0.3")),
    (Decimal("0.6"), Decimal("0.5")),
    (Decimal("0.4"), Decimal("0.7")),
)


def adaptive_rate_factor(utilization: Union[Decimal, float]) -> Decimal:
    """Fraction of the nominal rate allowed at a given budget utilization.

    Full rate below 40%, 70% from 40 to 60%, 50% from 60 to 80%, 30% above.
    """
    utilization = Decimal(str(utilization))
    for lower_bound, factor in _RATE_STEPS:
        if utilization >= lower_bound:
            return factor
    return Decimal("1")


class AdaptiveRateLimiter:
    """Fixed one-minute window counter with a utilization-scaled allowance.

    The lock guards the counter only; waiting for the next window happens
    outside it.
    """

    def __init__(
        self,
        nominal_per_minute: int,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if nominal_per_minute < 1:
            raise ValueError("nominal_per_minute must be >= 1")
        self.nominal_per_minute = nominal_per_minute
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._window_start = clock()
        self._count = 0

    def allowance(self, utilization: Union[Decimal, float]) -> int:
        """Requests allowed per minute at this utilization; never below one."""
        scaled = Decimal(self.nominal_per_minute) * adaptive_rate_factor(utilization)
        return max(1, math.floor(scaled))

    def acquire(self, utilization: Union[Decimal, float]) -> float:
        """Take one permit, blocking until the window resets if none are left.

        Returns:
            Seconds spent waiting
        """
        allowed = self.allowance(utilization)
        waited = 0.0
        while True:
            with self._lock:
                now = self._clock()
                if now - self._window_start >= WINDOW_SECONDS:
                    self._window_start = now
                    self._count = 0
                if self._count < allowed:
                    self._count += 1
                    return waited
                wait = WINDOW_SECONDS - (now - self._window_start)

            logger.warning(
                "Rate limit reached, waiting for next window",
                wait_seconds=round(wait, 3),
                request_count=self._count,
                allowance=allowed,
                nominal=self.nominal_per_minute,
            )
            self._sleep(wait)
            waited += wait

    @property
    def request_count(self) -> int:
        with self._lock:
            return self._count
