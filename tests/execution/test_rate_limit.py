"""Tests for AdaptiveRateLimiter — sliding window admission and feedback."""

from __future__ import annotations

import pytest

from callguard.execution.rate_limit import AdaptiveRateLimiter


@pytest.fixture
def limiter(clock):
    return AdaptiveRateLimiter(base_limit=10, window_seconds=60, clock=clock)


class TestAdmission:
    def test_admits_up_to_limit(self, limiter):
        decisions = [limiter.check_limit("openai") for _ in range(11)]
        assert all(d.allowed for d in decisions[:10])
        assert not decisions[10].allowed
        assert decisions[10].current_limit == 10

    def test_retry_after_points_at_oldest_admission(self, limiter, clock):
        limiter.check_limit("openai")
        clock.advance(20)
        for _ in range(9):
            limiter.check_limit("openai")
        denied = limiter.check_limit("openai")
        assert not denied.allowed
        assert denied.retry_after == pytest.approx(40.0)

    def test_window_slides(self, limiter, clock):
        for _ in range(10):
            limiter.check_limit("openai")
        assert not limiter.check_limit("openai").allowed
        clock.advance(60)
        assert limiter.check_limit("openai").allowed

    def test_identities_are_independent(self, limiter):
        for _ in range(10):
            limiter.check_limit("a")
        assert not limiter.check_limit("a").allowed
        assert limiter.check_limit("b").allowed

    def test_denied_checks_are_not_counted(self, limiter, clock):
        for _ in range(10):
            limiter.check_limit("a")
        for _ in range(5):
            limiter.check_limit("a")
        assert len(limiter.window("a").timestamps) == 10

    def test_configure_per_identity_base(self, limiter):
        limiter.configure("tiny", 2)
        assert limiter.check_limit("tiny").allowed
        assert limiter.check_limit("tiny").allowed
        assert not limiter.check_limit("tiny").allowed

    def test_invalid_arguments(self):
        with pytest.raises(ValueError):
            AdaptiveRateLimiter(base_limit=0)
        with pytest.raises(ValueError):
            AdaptiveRateLimiter(step=1.0)


class TestAdaptation:
    def test_good_window_grows_to_cap(self, limiter):
        limits = [limiter.update_limit("a", latency=0.1, error_occurred=False) for _ in range(30)]
        assert limits == sorted(limits)
        assert limits[0] == pytest.approx(11.0)
        assert max(limits) == pytest.approx(20.0)

    def test_errors_shrink_to_floor(self, limiter):
        limits = [limiter.update_limit("a", latency=0.1, error_occurred=True) for _ in range(30)]
        assert limits[0] == pytest.approx(9.0)
        assert min(limits) == pytest.approx(5.0)

    def test_high_latency_shrinks(self, limiter):
        assert limiter.update_limit("a", latency=6.0, error_occurred=False) == pytest.approx(9.0)

    def test_middle_band_unchanged(self, limiter):
        assert limiter.update_limit("a", latency=2.0, error_occurred=False) == pytest.approx(10.0)

    def test_decrease_wins_over_increase(self, limiter):
        # Low latency but 1/4 errors: above the high error rate
        for error in (False, False, False, True):
            limit = limiter.update_limit("a", latency=0.1, error_occurred=error)
        assert limit == pytest.approx(10 * 1.1**3 * 0.9)
        assert limiter.window("a").error_rate == 0.25

    def test_custom_step(self, clock):
        limiter = AdaptiveRateLimiter(base_limit=100, step=0.25, clock=clock)
        assert limiter.update_limit("a", 0.1, False) == pytest.approx(125.0)

    def test_samples_are_bounded(self, clock):
        limiter = AdaptiveRateLimiter(sample_capacity=5, clock=clock)
        for _ in range(20):
            limiter.update_limit("a", 0.1, False)
        assert len(limiter.window("a").recent_latencies) == 5
        assert len(limiter.window("a").recent_errors) == 5


class TestStatus:
    def test_status_and_reset(self, limiter):
        limiter.check_limit("a")
        limiter.check_limit("a")
        status = limiter.status()["a"]
        assert status["in_window"] == 2
        assert status["utilization"] == 0.2

        limiter.reset("a")
        assert limiter.status() == {}

    def test_reset_all(self, limiter):
        limiter.check_limit("a")
        limiter.check_limit("b")
        limiter.reset()
        assert limiter.status() == {}
