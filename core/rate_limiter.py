"""Per-platform token buckets with burst / minute / hour windows.

Every outbound action debits one token from all three windows at once.
Minute and hour windows refill in whole-window jumps; the burst window
trickles back fractionally on every refill.
"""

from __future__ import annotations

import dataclasses
import logging
import math
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from core.config import DEFAULT_LIMITS, PlatformLimits

logger = logging.getLogger(__name__)

_MINUTE_S = 60.0
_HOUR_S = 3600.0
# burst_limit / 300 tokens per elapsed minute.
_BURST_REFILL_DIVISOR = 300.0
_WAIT_POLL_S = 1.0


@dataclass
class TokenCounts:
    minute: float
    hour: float
    burst: float

    def copy(self) -> TokenCounts:
        return dataclasses.replace(self)


@dataclass(frozen=True)
class ResetTime:
    minute: datetime
    hour: datetime
    minutes_until_minute_reset: int
    minutes_until_hour_reset: int


@dataclass
class _PlatformState:
    limits: PlatformLimits
    tokens: TokenCounts
    last_refill_minute: float
    last_refill_hour: float
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)


class RateLimiter:
    """Admission control per platform.  Never raises for exhausted capacity."""

    def __init__(
        self,
        platform_limits: Mapping[str, PlatformLimits] | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._clock = clock
        self._sleep = sleep
        self._platform_limits: dict[str, PlatformLimits] = dict(platform_limits or {})
        self._platforms: dict[str, _PlatformState] = {}
        self._registry_lock = threading.Lock()
        logger.debug("rate limiter initialized (%d overrides)", len(self._platform_limits))

    # ── state ─────────────────────────────────────────────────────

    def _get_platform_state(self, platform: str) -> _PlatformState:
        with self._registry_lock:
            state = self._platforms.get(platform)
            if state is None:
                limits = self._platform_limits.get(platform, DEFAULT_LIMITS)
                now = self._clock()
                state = _PlatformState(
                    limits=limits,
                    tokens=TokenCounts(
                        minute=limits.requests_per_minute,
                        hour=limits.requests_per_hour,
                        burst=limits.burst_limit,
                    ),
                    last_refill_minute=now,
                    last_refill_hour=now,
                )
                self._platforms[platform] = state
            return state

    def _refill(self, state: _PlatformState) -> None:
        """Top up all windows from elapsed time.  Caller holds state.lock."""
        now = self._clock()
        limits = state.limits
        tokens = state.tokens

        minutes_since = (now - state.last_refill_minute) / _MINUTE_S
        if minutes_since >= 1:
            refill = math.floor(minutes_since * limits.requests_per_minute)
            tokens.minute = min(limits.requests_per_minute, tokens.minute + refill)
            state.last_refill_minute = now

        hours_since = (now - state.last_refill_hour) / _HOUR_S
        if hours_since >= 1:
            refill = math.floor(hours_since * limits.requests_per_hour)
            tokens.hour = min(limits.requests_per_hour, tokens.hour + refill)
            state.last_refill_hour = now

        # The trickle rides on minutes_since, measured before the minute
        # timestamp above was moved.
        if tokens.burst < limits.burst_limit:
            rate = limits.burst_limit / _BURST_REFILL_DIVISOR
            tokens.burst = min(limits.burst_limit, tokens.burst + minutes_since * rate)

        # Lowered limits clamp on the next refill.  A debit admitted on a
        # fractional burst leaves it below zero; clamp that back to 0.
        tokens.minute = max(0, min(tokens.minute, limits.requests_per_minute))
        tokens.hour = max(0, min(tokens.hour, limits.requests_per_hour))
        tokens.burst = max(0, min(tokens.burst, limits.burst_limit))

    # ── public API ────────────────────────────────────────────────

    def acquire_token(self, platform: str, action_type: str = "request") -> bool:
        """Debit one token from every window, or nothing at all."""
        state = self._get_platform_state(platform)
        with state.lock:
            self._refill(state)
            tokens = state.tokens
            if tokens.minute > 0 and tokens.hour > 0 and tokens.burst > 0:
                tokens.minute -= 1
                tokens.hour -= 1
                tokens.burst -= 1
                logger.debug(
                    "token acquired: platform=%s action=%s remaining=%s",
                    platform, action_type, tokens,
                )
                return True
            logger.debug(
                "rate limit reached: platform=%s action=%s remaining=%s",
                platform, action_type, tokens,
            )
            return False

    def release_token(self, platform: str, action_type: str = "request") -> None:
        """Give one token back to each window, clamped at its limit."""
        state = self._get_platform_state(platform)
        with state.lock:
            limits = state.limits
            tokens = state.tokens
            tokens.minute = min(limits.requests_per_minute, tokens.minute + 1)
            tokens.hour = min(limits.requests_per_hour, tokens.hour + 1)
            tokens.burst = min(limits.burst_limit, tokens.burst + 1)
        logger.debug("token released: platform=%s action=%s", platform, action_type)

    def get_remaining_quota(self, platform: str) -> TokenCounts:
        state = self._get_platform_state(platform)
        with state.lock:
            self._refill(state)
            return state.tokens.copy()

    def get_reset_time(self, platform: str) -> ResetTime:
        """When each window was last topped up plus its length.  Does not refill."""
        state = self._get_platform_state(platform)
        with state.lock:
            minute_at = state.last_refill_minute + _MINUTE_S
            hour_at = state.last_refill_hour + _HOUR_S
        now = self._clock()
        return ResetTime(
            minute=datetime.fromtimestamp(minute_at, tz=timezone.utc),
            hour=datetime.fromtimestamp(hour_at, tz=timezone.utc),
            minutes_until_minute_reset=math.ceil((minute_at - now) / _MINUTE_S),
            minutes_until_hour_reset=math.ceil((hour_at - now) / _MINUTE_S),
        )

    def wait_for_token(
        self,
        platform: str,
        max_wait_s: float = 60.0,
        stop_event: threading.Event | None = None,
    ) -> bool:
        """Poll acquire_token once a second until it succeeds or max_wait_s passes.

        Fixed-interval polling: a token that frees up mid-interval is only
        noticed on the next poll.  Setting *stop_event* abandons the wait.
        """
        start = self._clock()
        while self._clock() - start < max_wait_s:
            if self.acquire_token(platform):
                return True
            if stop_event is not None:
                if stop_event.wait(_WAIT_POLL_S):
                    logger.debug("wait for token interrupted: platform=%s", platform)
                    return False
            else:
                self._sleep(_WAIT_POLL_S)
        logger.debug("wait for token timed out: platform=%s max_wait_s=%s", platform, max_wait_s)
        return False

    def set_platform_limits(self, platform: str, **limits: int) -> PlatformLimits:
        """Override limits for *platform*, merged over the defaults.

        Existing counters are kept as-is; the next refill clamps them.
        Raises TypeError for unknown limit names.
        """
        merged = dataclasses.replace(DEFAULT_LIMITS, **limits)
        with self._registry_lock:
            self._platform_limits[platform] = merged
            state = self._platforms.get(platform)
        if state is not None:
            with state.lock:
                state.limits = merged
        logger.debug("platform limits updated: platform=%s limits=%s", platform, merged)
        return merged

    def get_stats(self) -> dict[str, dict[str, Any]]:
        with self._registry_lock:
            states = list(self._platforms.items())
        stats: dict[str, dict[str, Any]] = {}
        for platform, state in states:
            with state.lock:
                self._refill(state)
                stats[platform] = {
                    "limits": state.limits,
                    "remaining": state.tokens.copy(),
                    "last_refill": {
                        "minute": state.last_refill_minute,
                        "hour": state.last_refill_hour,
                    },
                }
        return stats

    def reset(self) -> None:
        with self._registry_lock:
            self._platforms.clear()
        logger.debug("rate limiters reset")
