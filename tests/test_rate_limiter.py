"""Tests for core/rate_limiter.py: refill windows, all-or-nothing debit, waiting."""

from __future__ import annotations

import threading
from datetime import datetime, timezone

import pytest

from core.config import DEFAULT_LIMITS, PlatformLimits
from core.rate_limiter import RateLimiter

# ── fixtures ──────────────────────────────────────────────────────────────────


class FakeClock:
    """Manually advanced clock; sleep() advances it instead of blocking."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def limiter(clock: FakeClock) -> RateLimiter:
    return RateLimiter(clock=clock, sleep=clock.sleep)


def _bounded(limiter: RateLimiter, platform: str, limits: PlatformLimits) -> bool:
    q = limiter.get_remaining_quota(platform)
    return (
        0 <= q.minute <= limits.requests_per_minute
        and 0 <= q.hour <= limits.requests_per_hour
        and 0 <= q.burst <= limits.burst_limit
    )


# ── creation ──────────────────────────────────────────────────────────────────


class TestPlatformState:
    def test_new_platform_starts_full_with_defaults(self, limiter: RateLimiter) -> None:
        q = limiter.get_remaining_quota("anything")
        assert (q.minute, q.hour, q.burst) == (60, 1000, 10)

    def test_constructor_overrides_seed_state(self, clock: FakeClock) -> None:
        rl = RateLimiter(
            platform_limits={"p": PlatformLimits(5, 50, 2)}, clock=clock, sleep=clock.sleep
        )
        q = rl.get_remaining_quota("p")
        assert (q.minute, q.hour, q.burst) == (5, 50, 2)

    def test_quota_is_a_snapshot(self, limiter: RateLimiter) -> None:
        q = limiter.get_remaining_quota("p")
        q.minute = -100
        assert limiter.get_remaining_quota("p").minute == 60


# ── acquire / release ─────────────────────────────────────────────────────────


class TestAcquire:
    def test_acquire_debits_every_window(self, limiter: RateLimiter) -> None:
        assert limiter.acquire_token("p") is True
        q = limiter.get_remaining_quota("p")
        assert (q.minute, q.hour, q.burst) == (59, 999, 9)

    def test_burst_exhaustion_blocks_despite_ample_minute_capacity(
        self, limiter: RateLimiter
    ) -> None:
        limiter.set_platform_limits("p", burst_limit=2)
        assert limiter.acquire_token("p") is True
        assert limiter.acquire_token("p") is True
        assert limiter.acquire_token("p") is False
        assert limiter.get_remaining_quota("p").minute == 58

    def test_failed_acquire_mutates_nothing(self, limiter: RateLimiter) -> None:
        limiter.set_platform_limits("p", burst_limit=1)
        limiter.acquire_token("p")
        before = limiter.get_remaining_quota("p")
        assert limiter.acquire_token("p") is False
        assert limiter.get_remaining_quota("p") == before

    def test_hour_window_alone_can_block(self, limiter: RateLimiter) -> None:
        limiter.set_platform_limits("p", requests_per_hour=1)
        assert limiter.acquire_token("p") is True
        assert limiter.acquire_token("p") is False

    def test_platforms_are_independent(self, limiter: RateLimiter) -> None:
        limiter.set_platform_limits("a", burst_limit=1)
        assert limiter.acquire_token("a") is True
        assert limiter.acquire_token("a") is False
        assert limiter.acquire_token("b") is True


class TestRelease:
    def test_release_restores_one_token(self, limiter: RateLimiter) -> None:
        limiter.acquire_token("p")
        limiter.release_token("p")
        q = limiter.get_remaining_quota("p")
        assert (q.minute, q.hour, q.burst) == (60, 1000, 10)

    def test_repeated_release_never_exceeds_limits(self, limiter: RateLimiter) -> None:
        for _ in range(25):
            limiter.release_token("p")
        q = limiter.get_remaining_quota("p")
        assert (q.minute, q.hour, q.burst) == (60, 1000, 10)


# ── refill ────────────────────────────────────────────────────────────────────


class TestRefill:
    def test_minute_window_refills_in_whole_minutes_only(
        self, limiter: RateLimiter, clock: FakeClock
    ) -> None:
        limiter.set_platform_limits("p", requests_per_minute=60, burst_limit=100)
        for _ in range(60):
            assert limiter.acquire_token("p") is True
        assert limiter.acquire_token("p") is False

        clock.advance(30)
        assert limiter.get_remaining_quota("p").minute == 0

        clock.advance(31)
        assert limiter.get_remaining_quota("p").minute == 60

    def test_hour_window_refills_after_an_hour(
        self, limiter: RateLimiter, clock: FakeClock
    ) -> None:
        limiter.set_platform_limits("p", requests_per_hour=2)
        limiter.acquire_token("p")
        limiter.acquire_token("p")
        clock.advance(1800)
        assert limiter.get_remaining_quota("p").hour == 0
        clock.advance(1800)
        assert limiter.get_remaining_quota("p").hour == 2

    def test_burst_trickles_fractionally_before_minute_boundary(
        self, limiter: RateLimiter, clock: FakeClock
    ) -> None:
        limiter.set_platform_limits("p", burst_limit=10)
        for _ in range(10):
            limiter.acquire_token("p")
        clock.advance(30)
        # 0.5 min * 10/300
        assert limiter.get_remaining_quota("p").burst == pytest.approx(10 / 600)
        # fractional burst still admits
        assert limiter.acquire_token("p") is True
        # the debit overshoots below zero but is never observed there
        assert limiter.get_remaining_quota("p").burst == 0

    def test_fractional_burst_debit_clamped_to_zero_in_stats(
        self, limiter: RateLimiter, clock: FakeClock
    ) -> None:
        limiter.set_platform_limits("p", burst_limit=3)
        for _ in range(3):
            limiter.acquire_token("p")
        clock.advance(1)
        assert limiter.acquire_token("p") is True
        assert limiter.get_stats()["p"]["remaining"].burst == 0

    def test_burst_trickle_measures_from_last_minute_refill(
        self, limiter: RateLimiter, clock: FakeClock
    ) -> None:
        limiter.set_platform_limits("p", burst_limit=10)
        for _ in range(10):
            limiter.acquire_token("p")
        clock.advance(30)
        limiter.get_remaining_quota("p")  # +0.5 min worth
        clock.advance(30)
        # +1.0 min worth: elapsed is still counted from the earlier timestamp
        assert limiter.get_remaining_quota("p").burst == pytest.approx(0.5 / 30 + 1 / 30)
        clock.advance(30)
        # minute timestamp moved on the previous call: only +0.5 min worth
        assert limiter.get_remaining_quota("p").burst == pytest.approx(0.5 / 30 + 1 / 30 + 0.5 / 30)

    def test_counters_stay_within_bounds(self, limiter: RateLimiter, clock: FakeClock) -> None:
        limits = limiter.set_platform_limits(
            "p", requests_per_minute=5, requests_per_hour=20, burst_limit=3
        )
        for step in range(200):
            if step % 3 == 0:
                limiter.release_token("p")
            else:
                limiter.acquire_token("p")
            clock.advance(7)
            assert _bounded(limiter, "p", limits)


# ── overrides / reset / stats ─────────────────────────────────────────────────


class TestPlatformLimits:
    def test_override_merges_over_defaults_not_previous_override(
        self, limiter: RateLimiter
    ) -> None:
        limiter.set_platform_limits("p", burst_limit=2)
        merged = limiter.set_platform_limits("p", requests_per_minute=5)
        assert merged == PlatformLimits(requests_per_minute=5, requests_per_hour=1000, burst_limit=10)

    def test_override_keeps_existing_counts_until_refill_clamps(
        self, limiter: RateLimiter
    ) -> None:
        limiter.acquire_token("p")
        limiter.set_platform_limits("p", requests_per_minute=10)
        q = limiter.get_remaining_quota("p")
        assert q.minute == 10
        assert q.hour == 999

    def test_unknown_limit_name_raises(self, limiter: RateLimiter) -> None:
        with pytest.raises(TypeError):
            limiter.set_platform_limits("p", requests_per_day=5)


class TestReset:
    def test_reset_restores_full_default_capacity(self, limiter: RateLimiter) -> None:
        for _ in range(5):
            limiter.acquire_token("p")
        limiter.reset()
        q = limiter.get_remaining_quota("p")
        assert (q.minute, q.hour, q.burst) == (
            DEFAULT_LIMITS.requests_per_minute,
            DEFAULT_LIMITS.requests_per_hour,
            DEFAULT_LIMITS.burst_limit,
        )

    def test_reset_keeps_overrides(self, limiter: RateLimiter) -> None:
        limiter.set_platform_limits("p", requests_per_minute=3, requests_per_hour=3, burst_limit=3)
        limiter.acquire_token("p")
        limiter.reset()
        q = limiter.get_remaining_quota("p")
        assert (q.minute, q.hour, q.burst) == (3, 3, 3)

    def test_reset_empties_stats(self, limiter: RateLimiter) -> None:
        limiter.acquire_token("a")
        limiter.reset()
        assert limiter.get_stats() == {}


class TestStats:
    def test_stats_lists_every_known_platform(self, limiter: RateLimiter) -> None:
        limiter.acquire_token("a")
        limiter.acquire_token("b")
        stats = limiter.get_stats()
        assert set(stats) == {"a", "b"}
        assert stats["a"]["remaining"].minute == 59
        assert stats["a"]["limits"] == DEFAULT_LIMITS
        assert set(stats["a"]["last_refill"]) == {"minute", "hour"}


class TestResetTime:
    def test_reset_time_counts_minutes_up(self, limiter: RateLimiter, clock: FakeClock) -> None:
        start = clock.now
        limiter.acquire_token("p")
        clock.advance(10)
        rt = limiter.get_reset_time("p")
        assert rt.minutes_until_minute_reset == 1
        assert rt.minutes_until_hour_reset == 60
        assert rt.minute == datetime.fromtimestamp(start + 60, tz=timezone.utc)
        assert rt.hour == datetime.fromtimestamp(start + 3600, tz=timezone.utc)

    def test_reset_time_does_not_refill(self, limiter: RateLimiter, clock: FakeClock) -> None:
        limiter.set_platform_limits("p", burst_limit=1)
        limiter.acquire_token("p")
        clock.advance(120)
        limiter.get_reset_time("p")
        # still anchored to the creation timestamp
        assert limiter.get_reset_time("p").minutes_until_minute_reset == -1


# ── waiting ───────────────────────────────────────────────────────────────────


class TestWaitForToken:
    def test_returns_immediately_when_available(
        self, limiter: RateLimiter, clock: FakeClock
    ) -> None:
        assert limiter.wait_for_token("p", max_wait_s=5) is True
        assert clock.sleeps == []

    def test_polls_once_per_second_until_trickle_frees_burst(
        self, limiter: RateLimiter, clock: FakeClock
    ) -> None:
        limiter.set_platform_limits("p", burst_limit=1)
        limiter.acquire_token("p")
        assert limiter.wait_for_token("p", max_wait_s=5) is True
        assert clock.sleeps == [1.0]

    def test_times_out_when_windows_stay_empty(
        self, limiter: RateLimiter, clock: FakeClock
    ) -> None:
        limiter.set_platform_limits("p", requests_per_minute=1, requests_per_hour=1, burst_limit=1)
        limiter.acquire_token("p")
        assert limiter.wait_for_token("p", max_wait_s=5) is False
        assert clock.sleeps == [1.0] * 5

    def test_stop_event_interrupts_wait(self, limiter: RateLimiter) -> None:
        limiter.set_platform_limits("p", requests_per_minute=1, requests_per_hour=1, burst_limit=1)
        limiter.acquire_token("p")
        stop = threading.Event()
        stop.set()
        assert limiter.wait_for_token("p", max_wait_s=60, stop_event=stop) is False


# ── concurrency ───────────────────────────────────────────────────────────────


class TestConcurrency:
    def test_racing_threads_cannot_overdraw_one_token(self) -> None:
        limiter = RateLimiter()
        limiter.set_platform_limits("p", requests_per_minute=1, requests_per_hour=1, burst_limit=1)
        barrier = threading.Barrier(16)
        results: list[bool] = []
        results_lock = threading.Lock()

        def worker() -> None:
            barrier.wait()
            ok = limiter.acquire_token("p")
            with results_lock:
                results.append(ok)

        threads = [threading.Thread(target=worker) for _ in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert results.count(True) == 1
        assert results.count(False) == 15
