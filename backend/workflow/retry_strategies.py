"""Execution retry strategies.

When a step fails the scheduler does not sleep; it parks the execution with
``next_run_at = now + delay`` and a later dispatch cycle picks it up again.
These strategies compute that delay and decide when to give up.

Usage:
    strategy = RetryStrategy.from_settings()
    if strategy.should_retry(execution.retry_count, retryable=True):
        execution.next_run_at = strategy.next_run_at(now, execution.retry_count)
"""

import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional


class RetryPolicy(str, Enum):
    """Available retry policies."""
    FIXED = "fixed"
    EXPONENTIAL = "exponential"
    LINEAR = "linear"
    NONE = "none"


@dataclass
class RetryStrategy:
    """Back-off policy for failed executions."""
    policy: RetryPolicy
    max_retries: int = 3
    base_delay: float = 60.0
    max_delay: float = 3600.0
    jitter: bool = True
    jitter_range: float = 0.2

    @classmethod
    def none(cls) -> 'RetryStrategy':
        """No retries, fail immediately."""
        return cls(policy=RetryPolicy.NONE, max_retries=0)

    @classmethod
    def fixed(cls, max_retries: int = 3, delay: float = 60.0) -> 'RetryStrategy':
        """Fixed delay between retries."""
        return cls(
            policy=RetryPolicy.FIXED,
            max_retries=max_retries,
            base_delay=delay,
            jitter=False,
        )

    @classmethod
    def exponential(
        cls,
        max_retries: int = 3,
        base_delay: float = 60.0,
        max_delay: float = 3600.0,
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
        base_delay: float = 120.0,
        max_delay: float = 3600.0,
    ) -> 'RetryStrategy':
        """Linear backoff: delay = base_delay * attempt_number."""
        return cls(
            policy=RetryPolicy.LINEAR,
            max_retries=max_retries,
            base_delay=base_delay,
            max_delay=max_delay,
            jitter=False,
        )

    @classmethod
    def from_settings(cls, settings=None) -> 'RetryStrategy':
        """Exponential strategy configured from WORKFLOW_RETRY_* settings."""
        if settings is None:
            from app.config import get_settings
            settings = get_settings()
        return cls.exponential(
            max_retries=settings.WORKFLOW_MAX_RETRIES,
            base_delay=settings.WORKFLOW_RETRY_BASE_DELAY,
            max_delay=settings.WORKFLOW_RETRY_MAX_DELAY,
        )

    @classmethod
    def from_dict(cls, config: dict) -> 'RetryStrategy':
        """Create strategy from a stored configuration dict."""
        return cls(
            policy=RetryPolicy(config.get('policy', 'exponential')),
            max_retries=config.get('max_retries', 3),
            base_delay=config.get('base_delay', 60.0),
            max_delay=config.get('max_delay', 3600.0),
            jitter=config.get('jitter', True),
            jitter_range=config.get('jitter_range', 0.2),
        )

    def to_dict(self) -> dict:
        return {
            'policy': self.policy.value,
            'max_retries': self.max_retries,
            'base_delay': self.base_delay,
            'max_delay': self.max_delay,
            'jitter': self.jitter,
            'jitter_range': self.jitter_range,
        }

    def compute_delay(self, attempt: int) -> float:
        """Compute the delay in seconds before retry number ``attempt`` (1-based)."""
        if self.policy == RetryPolicy.NONE:
            return 0.0

        if self.policy == RetryPolicy.FIXED:
            delay = self.base_delay
        elif self.policy == RetryPolicy.EXPONENTIAL:
            delay = self.base_delay * (2 ** (max(attempt, 1) - 1))
        elif self.policy == RetryPolicy.LINEAR:
            delay = self.base_delay * max(attempt, 1)
        else:
            delay = self.base_delay

        delay = min(delay, self.max_delay)

        if self.jitter and delay > 0:
            jitter_amount = delay * self.jitter_range
            delay = delay + random.uniform(-jitter_amount, jitter_amount)
            delay = min(max(0.0, delay), self.max_delay)

        return round(delay, 3)

    def should_retry(self, attempt: int, retryable: bool = True) -> bool:
        """``attempt`` is the number of failures so far, including the current one."""
        if self.policy == RetryPolicy.NONE or not retryable:
            return False
        return attempt < self.max_retries

    def next_run_at(self, now: datetime, attempt: int) -> datetime:
        return now + timedelta(seconds=self.compute_delay(attempt))


# ─── Preset strategies ───

RETRY_PRESETS: dict[str, RetryStrategy] = {
    'none': RetryStrategy.none(),
    'default': RetryStrategy.exponential(),
    'messaging': RetryStrategy.linear(max_retries=3, base_delay=300.0, max_delay=1800.0),
    'webhook': RetryStrategy.exponential(max_retries=5, base_delay=30.0, max_delay=3600.0),
}


def get_preset(name: Optional[str]) -> Optional[RetryStrategy]:
    return RETRY_PRESETS.get(name) if name else None
