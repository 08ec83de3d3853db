"""BackoffPolicy 测试 -- 指数退避与重试上限"""

import random

import pytest
from pydantic import ValidationError

from reviewgen.provider import BackoffPolicy


class TestBackoffPolicy:
    def test_max_attempts_is_retries_plus_one(self):
        assert BackoffPolicy(max_retries=2).max_attempts == 3
        assert BackoffPolicy(max_retries=0).max_attempts == 1

    def test_should_retry_bound(self):
        """attempt 从 0 开始，最多重试 max_retries 次"""
        policy = BackoffPolicy(max_retries=2)
        assert policy.should_retry(0) is True
        assert policy.should_retry(1) is True
        assert policy.should_retry(2) is False

    def test_exponential_delay_without_jitter(self):
        """delay = base × 2^attempt"""
        policy = BackoffPolicy(base_delay_s=1.0, jitter=0.0)
        assert [policy.delay_for(i) for i in range(4)] == [1.0, 2.0, 4.0, 8.0]

    def test_delay_capped(self):
        policy = BackoffPolicy(base_delay_s=1.0, max_delay_s=5.0, jitter=0.0)
        assert policy.delay_for(10) == 5.0

    def test_jitter_bounded(self):
        """抖动在 [delay, delay × (1 + jitter)] 区间"""
        policy = BackoffPolicy(base_delay_s=1.0, jitter=0.5)
        rng = random.Random(7)
        for attempt in range(3):
            base = 2**attempt
            delay = policy.delay_for(attempt, rng=rng)
            assert base <= delay <= base * 1.5

    def test_zero_base_means_no_wait(self):
        assert BackoffPolicy(base_delay_s=0.0).delay_for(3) == 0.0

    def test_negative_retries_rejected(self):
        with pytest.raises(ValidationError):
            BackoffPolicy(max_retries=-1)
