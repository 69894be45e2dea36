"""
Bounded retry with exponential backoff.

The only place in the package where sleep/backoff logic lives. Every network
call made by delivery, push lifecycle and enrichment goes through here.
"""

import time
from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar

from structlog import get_logger

from .errors import is_retryable

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    """Retry policy. Delays are in seconds."""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0

    def __post_init__(self):
        """Validate retry values."""
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must be >= 0")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")


@dataclass(frozen=True)
class RetryResult(Generic[T]):
    """Successful result plus how many attempts it took."""
    value: T
    attempts: int

    @property
    def retry_count(self) -> int:
        """Attempts beyond the first."""
        return self.attempts - 1


def compute_delay(attempt: int, config: RetryConfig) -> float:
    """Backoff before the attempt following `attempt` (1-based)."""
    delay = config.base_delay * (config.backoff_multiplier ** (attempt - 1))
    return min(delay, config.max_delay)


class RetryExecutor:
    """Runs operations under a bounded-retry policy.

    Holds no per-call state, so one executor can be shared by concurrent
    callers. Non-retryable errors are raised on the attempt they occur and are
    never masked by the loop; exhausting attempts raises the last error.
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config or RetryConfig()
        self._sleep = sleep

    def run(
        self,
        operation: Callable[[], T],
        classify_retryable: Callable[[BaseException], bool] = is_retryable,
        config: Optional[RetryConfig] = None,
        operation_name: str = "operation",
    ) -> RetryResult[T]:
        """Run `operation` until it succeeds, fails permanently, or runs out of attempts.

        Args:
            operation: Zero-argument callable performing one attempt
            classify_retryable: Decides whether a failure may be retried
            config: Overrides the executor's default policy for this call
            operation_name: Label used in log events

        Returns:
            RetryResult with the operation's value and the attempt count

        Raises:
            The operation's own exception, unchanged
        """
        policy = config or self.config

        for attempt in range(1, policy.max_attempts + 1):
            try:
                value = operation()
            except Exception as error:
                retryable = classify_retryable(error)
                logger.warning(
                    "Operation attempt failed",
                    operation=operation_name,
                    attempt=attempt,
                    max_attempts=policy.max_attempts,
                    error_type=type(error).__name__,
                    error=str(error),
                    retryable=retryable,
                )
                if not retryable:
                    raise
                if attempt == policy.max_attempts:
                    logger.error(
                        "Operation failed after all retry attempts",
                        operation=operation_name,
                        attempts=attempt,
                    )
                    raise

                delay = compute_delay(attempt, policy)
                self._sleep(delay)
                continue

            if attempt > 1:
                logger.info(
                    "Operation succeeded after retry",
                    operation=operation_name,
                    attempts=attempt,
                )
            return RetryResult(value=value, attempts=attempt)

        # max_attempts >= 1 is enforced by RetryConfig, so the loop always returns or raises
        raise AssertionError("unreachable")

    def execute(
        self,
        operation: Callable[[], T],
        classify_retryable: Callable[[BaseException], bool] = is_retryable,
        config: Optional[RetryConfig] = None,
        operation_name: str = "operation",
    ) -> T:
        """Same as run() but returns only the operation's value."""
        return self.run(operation, classify_retryable, config, operation_name).value
