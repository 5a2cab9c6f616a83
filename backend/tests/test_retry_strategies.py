"""Tests for workflow retry strategies."""

from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from workflow.retry_strategies import (
    RETRY_PRESETS,
    RetryPolicy,
    RetryStrategy,
    get_preset,
)

pytestmark = pytest.mark.unit


# ─── RetryStrategy creation ───

class TestRetryStrategyCreation:
    def test_none_strategy(self):
        s = RetryStrategy.none()
        assert s.policy == RetryPolicy.NONE
        assert s.max_retries == 0

    def test_fixed_strategy(self):
        s = RetryStrategy.fixed(max_retries=3, delay=5.0)
        assert s.policy == RetryPolicy.FIXED
        assert s.base_delay == 5.0
        assert s.jitter is False

    def test_exponential_strategy(self):
        s = RetryStrategy.exponential(max_retries=5, base_delay=1.0, max_delay=60.0)
        assert s.policy == RetryPolicy.EXPONENTIAL
        assert s.max_retries == 5
        assert s.jitter is True

    def test_linear_strategy(self):
        s = RetryStrategy.linear(max_retries=4, base_delay=2.0)
        assert s.policy == RetryPolicy.LINEAR
        assert s.base_delay == 2.0

    def test_from_dict(self):
        config = {
            'policy': 'exponential',
            'max_retries': 7,
            'base_delay': 0.5,
            'max_delay': 120.0,
            'jitter': True,
        }
        s = RetryStrategy.from_dict(config)
        assert s.policy == RetryPolicy.EXPONENTIAL
        assert s.max_retries == 7
        assert s.base_delay == 0.5

    def test_to_dict_roundtrip(self):
        original = RetryStrategy.exponential(max_retries=5)
        restored = RetryStrategy.from_dict(original.to_dict())
        assert restored == original

    def test_from_settings(self):
        settings = SimpleNamespace(
            WORKFLOW_MAX_RETRIES=4,
            WORKFLOW_RETRY_BASE_DELAY=30.0,
            WORKFLOW_RETRY_MAX_DELAY=600.0,
        )
        s = RetryStrategy.from_settings(settings)
        assert s.policy == RetryPolicy.EXPONENTIAL
        assert s.max_retries == 4
        assert s.base_delay == 30.0
        assert s.max_delay == 600.0


# ─── Delay computation ───

class TestDelayComputation:
    def test_none_delay(self):
        assert RetryStrategy.none().compute_delay(1) == 0.0

    def test_fixed_delay(self):
        s = RetryStrategy.fixed(delay=5.0)
        assert s.compute_delay(1) == 5.0
        assert s.compute_delay(3) == 5.0

    def test_exponential_delay_no_jitter(self):
        s = RetryStrategy.exponential(base_delay=1.0, jitter=False)
        assert [s.compute_delay(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 8.0]

    def test_linear_delay(self):
        s = RetryStrategy.linear(base_delay=2.0)
        assert [s.compute_delay(n) for n in (1, 2, 3)] == [2.0, 4.0, 6.0]

    def test_max_delay_cap(self):
        s = RetryStrategy.exponential(base_delay=10.0, max_delay=30.0, jitter=False)
        assert s.compute_delay(5) == 30.0  # 10 * 16 = 160, capped at 30

    def test_exponential_with_jitter_in_range(self):
        s = RetryStrategy.exponential(base_delay=10.0, jitter=True, max_delay=100.0)
        for _ in range(50):
            # jitter_range=0.2 → between 8 and 12
            assert 8.0 <= s.compute_delay(1) <= 12.0

    def test_next_run_at(self):
        s = RetryStrategy.fixed(delay=90.0)
        now = datetime(2025, 1, 1, 12, 0)
        assert s.next_run_at(now, 1) == now + timedelta(seconds=90)


# ─── Should retry ───

class TestShouldRetry:
    def test_none_never_retries(self):
        assert RetryStrategy.none().should_retry(1) is False

    def test_three_attempts_in_total(self):
        s = RetryStrategy.fixed(max_retries=3)
        assert s.should_retry(1) is True
        assert s.should_retry(2) is True
        assert s.should_retry(3) is False

    def test_non_retryable_failure(self):
        s = RetryStrategy.exponential(max_retries=5)
        assert s.should_retry(1, retryable=False) is False


# ─── Presets ───

class TestPresets:
    def test_all_presets_exist(self):
        assert set(RETRY_PRESETS) == {'none', 'default', 'messaging', 'webhook'}

    def test_presets_are_valid(self):
        for strategy in RETRY_PRESETS.values():
            assert isinstance(strategy, RetryStrategy)
            assert strategy.max_retries >= 0

    def test_get_preset(self):
        assert get_preset('messaging').policy == RetryPolicy.LINEAR
        assert get_preset('missing') is None
        assert get_preset(None) is None
