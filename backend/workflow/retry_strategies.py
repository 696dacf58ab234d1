"""Retry strategies for workflow steps and per-record calls.

Provides configurable backoff policies:
- Fixed delay
- Linear backoff (delay = base_delay * attempt), the default for steps
- Exponential backoff (with optional jitter)

Usage:
    strategy = RetryStrategy.linear(max_retries=2, base_delay=1.0)
    response = await execute_with_retry(call, strategy, on_retry=log_retry)
"""

import asyncio
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Optional


class RetryPolicy(str, Enum):
    """Available retry policies."""
    FIXED = "fixed"
    EXPONENTIAL = "exponential"
    LINEAR = "linear"
    NONE = "none"


@dataclass
class RetryStrategy:
    """Configurable retry strategy.

    ``max_retries`` counts additional attempts after the first one.
    """
    policy: RetryPolicy
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 300.0
    jitter: bool = False
    jitter_range: float = 0.5
    retryable_errors: list[str] = field(default_factory=list)

    @classmethod
    def none(cls) -> 'RetryStrategy':
        """No retries, fail immediately."""
        return cls(policy=RetryPolicy.NONE, max_retries=0)

    @classmethod
    def fixed(cls, max_retries: int = 3, delay: float = 5.0) -> 'RetryStrategy':
        """Fixed delay between retries."""
        return cls(policy=RetryPolicy.FIXED, max_retries=max_retries, base_delay=delay)

    @classmethod
    def exponential(
        cls,
        max_retries: int = 5,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        jitter: bool = True,
    ) -> 'RetryStrategy':
        """Exponential backoff with optional jitter."""
        return cls(
            policy=RetryPolicy.EXPONENTIAL,
            max_retries=max_retries,
            base_delay=base_delay,
            max_delay=max_delay,
            jitter=jitter,
        )

    @classmethod
    def linear(
        cls,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
    ) -> 'RetryStrategy':
        """Linear backoff: delay = base_delay * attempt_number."""
        return cls(
            policy=RetryPolicy.LINEAR,
            max_retries=max_retries,
            base_delay=base_delay,
            max_delay=max_delay,
        )

    @classmethod
    def from_policy(
        cls,
        policy: str,
        max_retries: int,
        base_delay: float,
        max_delay: float = 60.0,
    ) -> 'RetryStrategy':
        """Build a strategy from a policy name (as found in settings)."""
        policy = RetryPolicy(policy.lower())
        if policy == RetryPolicy.NONE:
            return cls.none()
        if policy == RetryPolicy.FIXED:
            return cls.fixed(max_retries=max_retries, delay=base_delay)
        if policy == RetryPolicy.EXPONENTIAL:
            return cls.exponential(max_retries=max_retries, base_delay=base_delay, max_delay=max_delay)
        return cls.linear(max_retries=max_retries, base_delay=base_delay, max_delay=max_delay)

    def with_max_retries(self, max_retries: int) -> 'RetryStrategy':
        """Same policy and delays with a different retry count.

        The NONE policy keeps zero retries; it overrides per-step counts.
        """
        if self.policy == RetryPolicy.NONE:
            return self
        return RetryStrategy(
            policy=self.policy,
            max_retries=max_retries,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            jitter=self.jitter,
            jitter_range=self.jitter_range,
            retryable_errors=list(self.retryable_errors),
        )

    def compute_delay(self, attempt: int) -> float:
        """Compute the delay before retry number ``attempt`` (1-based)."""
        if self.policy == RetryPolicy.NONE:
            return 0.0

        if self.policy == RetryPolicy.FIXED:
            delay = self.base_delay
        elif self.policy == RetryPolicy.EXPONENTIAL:
            delay = self.base_delay * (2 ** (attempt - 1))
        else:
            delay = self.base_delay * attempt

        delay = min(delay, self.max_delay)

        if self.jitter and delay > 0:
            jitter_amount = delay * self.jitter_range
            delay = delay + random.uniform(-jitter_amount, jitter_amount)
            delay = max(0.0, delay)

        return round(delay, 3)

    def should_retry(self, retries_done: int, error: Optional[BaseException] = None) -> bool:
        """Whether another attempt is allowed after ``retries_done`` retries."""
        if self.policy == RetryPolicy.NONE:
            return False

        if retries_done >= self.max_retries:
            return False

        if error is None or not self.retryable_errors:
            return True

        return type(error).__name__ in self.retryable_errors


async def execute_with_retry(
    func: Callable[[], Awaitable],
    strategy: RetryStrategy,
    on_retry: Optional[Callable[[int, Exception, float], None]] = None,
    sleep: Callable[[float], Awaitable] = asyncio.sleep,
):
    """Call ``func`` until it succeeds or the strategy gives up.

    Args:
        func: Zero-argument async callable to execute.
        strategy: RetryStrategy instance.
        on_retry: Optional callback(retry_number, error, delay) called before each retry.
        sleep: Awaitable delay function (lets callers make the wait cancellable).

    Returns:
        The result of func().

    Raises:
        The last exception if all retries are exhausted.
    """
    retries = 0

    while True:
        try:
            return await func()
        except Exception as e:
            if not strategy.should_retry(retries, e):
                raise

            retries += 1
            delay = strategy.compute_delay(retries)

            if on_retry:
                on_retry(retries, e, delay)

            await sleep(delay)
