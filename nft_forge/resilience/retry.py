"""
Retry executor for fallible network operations.

Every attempt calls the operation factory again, so anything the operation
builds internally (a signed transaction with a recent blockhash, an upload
request) is rebuilt per attempt instead of being reused after it went stale.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

import structlog

from ..core.exceptions import (
    InsufficientFundsError,
    RetryExhaustedError,
    ValidationError,
)


logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Delay primitive: suspends the caller for the given number of seconds
Sleeper = Callable[[float], Awaitable[None]]

# Errors that indicate a precondition problem rather than a transient failure
NON_RETRYABLE_ERRORS: Tuple[Type[BaseException], ...] = (
    ValidationError,
    InsufficientFundsError,
)


class Backoff(Enum):
    """How the delay grows between attempts."""
    CONSTANT = "constant"
    LINEAR = "linear"


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget and delay schedule for one call site."""
    max_attempts: int = 3
    delay: float = 3.0  # seconds
    backoff: Backoff = Backoff.CONSTANT

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValidationError(
                "max_attempts must be at least 1",
                {"max_attempts": self.max_attempts}
            )
        if self.delay < 0:
            raise ValidationError(
                "delay must not be negative",
                {"delay": self.delay}
            )

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after failed attempt number `attempt` (1-based)."""
        if self.backoff is Backoff.LINEAR:
            return self.delay * attempt
        return self.delay


class RetryExecutor:
    """
    Runs an async operation until it succeeds or the policy is exhausted.

    The final failure is raised as RetryExhaustedError chained from the last
    underlying error. Validation and insufficient-funds errors are raised
    immediately since retrying cannot fix them.
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        sleep: Optional[Sleeper] = None,
        non_retryable: Tuple[Type[BaseException], ...] = NON_RETRYABLE_ERRORS,
    ):
        self.policy = policy or RetryPolicy()
        self._sleep = sleep or asyncio.sleep
        self.non_retryable = non_retryable
        self.logger = logger.bind(service="retry_executor")

    async def run(self, operation: Callable[[], Awaitable[T]], name: str = "operation") -> T:
        policy = self.policy
        last_error: Optional[BaseException] = None

        for attempt in range(1, policy.max_attempts + 1):
            self.logger.debug(
                "Attempt started",
                operation=name,
                attempt=attempt,
                max_attempts=policy.max_attempts
            )
            try:
                result = await operation()
            except self.non_retryable:
                raise
            except Exception as e:
                last_error = e
                if attempt == policy.max_attempts:
                    break

                delay = policy.delay_for(attempt)
                self.logger.warning(
                    "Attempt failed, retrying",
                    operation=name,
                    attempt=attempt,
                    max_attempts=policy.max_attempts,
                    delay=delay,
                    error=str(e),
                    error_type=type(e).__name__
                )
                await self._sleep(delay)
                continue

            if attempt > 1:
                self.logger.info(
                    "Operation succeeded after retries",
                    operation=name,
                    attempt=attempt
                )
            return result

        self.logger.error(
            "All attempts failed",
            operation=name,
            attempts=policy.max_attempts,
            error=str(last_error),
            error_type=type(last_error).__name__
        )
        raise RetryExhaustedError(name, policy.max_attempts, last_error) from last_error


async def retry_operation(
    operation: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    name: str = "operation",
    sleep: Optional[Sleeper] = None,
) -> T:
    """Convenience wrapper: run `operation` under `policy` once."""
    return await RetryExecutor(policy, sleep=sleep).run(operation, name=name)
