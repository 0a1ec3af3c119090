"""In-process sliding-window rate limiting.

Each key (usually ``"<type>:<user id>"``) keeps the timestamps of its
recent requests. A request is allowed while fewer than ``limit`` timestamps
fall inside the window. Keys are held in LRU order and the least recently
used ones are evicted beyond ``max_keys``.

State is per process. Several API workers each enforce their own budget.

Usage:
    >>> limiter = SlidingWindowRateLimiter()
    >>> limiter.check_or_raise(rate_limit_key("query", user_id), "query_execution")
"""

import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable

from scurry.config.models import Settings, get_settings
from scurry.errors import RateLimitExceededError

MAX_TRACKED_KEYS = 50_000


@dataclass(frozen=True)
class RateLimit:
    limit: int
    window_seconds: float = 60.0


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of one rate limit check.

    ``reset_at`` is on the limiter's clock; ``retry_after`` is seconds
    until the oldest counted request leaves the window (0 when allowed).
    """

    allowed: bool
    remaining: int
    limit: int
    reset_at: float
    retry_after: float = 0.0

    def headers(self) -> dict[str, str]:
        """``X-RateLimit-*`` response headers, plus ``Retry-After`` when denied."""
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
        }
        if not self.allowed:
            headers["Retry-After"] = str(max(1, int(self.retry_after + 0.999)))
        return headers


def default_rate_limits(settings: Settings | None = None) -> dict[str, RateLimit]:
    """Per-type presets; query and schema budgets come from settings."""
    settings = settings or get_settings()
    return {
        "query_execution": RateLimit(settings.query_rate_limit_per_minute),
        "schema_fetch": RateLimit(settings.schema_rate_limit_per_minute),
        "general_api": RateLimit(1000),
    }


def rate_limit_key(*parts: str | None) -> str:
    """Join the non-empty *parts* with ``:``."""
    return ":".join(p for p in parts if p)


class SlidingWindowRateLimiter:
    """Sliding-window limiter keyed by caller.

    Args:
        limits: Named presets for ``check_type``/``check_or_raise``
            (default: ``default_rate_limits()``)
        max_keys: Keys tracked before the least recently used is dropped
        clock: Monotonic time source in seconds, injectable for tests
    """

    def __init__(
        self,
        limits: dict[str, RateLimit] | None = None,
        max_keys: int = MAX_TRACKED_KEYS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.limits = limits if limits is not None else default_rate_limits()
        self.max_keys = max_keys
        self._clock = clock
        self._timestamps: OrderedDict[str, list[float]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._timestamps)

    def _prune(self, key: str, now: float, window_seconds: float) -> list[float]:
        cutoff = now - window_seconds
        recent = [t for t in self._timestamps.get(key, []) if t > cutoff]
        if recent:
            self._timestamps[key] = recent
            self._timestamps.move_to_end(key)
        else:
            self._timestamps.pop(key, None)
        return recent

    def _record(self, key: str, now: float) -> None:
        self._timestamps.setdefault(key, []).append(now)
        self._timestamps.move_to_end(key)
        while len(self._timestamps) > self.max_keys:
            self._timestamps.popitem(last=False)

    def check(self, key: str, limit: int, window_seconds: float = 60.0) -> RateLimitResult:
        """Count a request against *key* if it fits in the window.

        Denied requests are not recorded.
        """
        now = self._clock()
        recent = self._prune(key, now, window_seconds)

        if len(recent) >= limit:
            reset_at = min(recent) + window_seconds
            return RateLimitResult(
                allowed=False,
                remaining=0,
                limit=limit,
                reset_at=reset_at,
                retry_after=max(0.0, reset_at - now),
            )

        self._record(key, now)
        return RateLimitResult(
            allowed=True,
            remaining=limit - len(recent) - 1,
            limit=limit,
            reset_at=now + window_seconds,
        )

    def _preset(self, limit_type: str) -> RateLimit:
        try:
            return self.limits[limit_type]
        except KeyError:
            raise ValueError(f"Unknown rate limit type: {limit_type}") from None

    def check_type(self, key: str, limit_type: str) -> RateLimitResult:
        preset = self._preset(limit_type)
        return self.check(key, preset.limit, preset.window_seconds)

    def check_or_raise(self, key: str, limit_type: str) -> RateLimitResult:
        """Like ``check_type`` but raise when the request is denied.

        Raises:
            RateLimitExceededError: Budget for *key* is used up.
            ValueError: *limit_type* is not a configured preset.
        """
        preset = self._preset(limit_type)
        result = self.check(key, preset.limit, preset.window_seconds)
        if not result.allowed:
            raise RateLimitExceededError(
                key, preset.limit, preset.window_seconds, result.retry_after
            )
        return result

    def status(self, key: str, limit_type: str) -> RateLimitResult:
        """Current budget for *key* without counting a request."""
        preset = self._preset(limit_type)
        now = self._clock()
        cutoff = now - preset.window_seconds
        recent = [t for t in self._timestamps.get(key, []) if t > cutoff]
        remaining = max(0, preset.limit - len(recent))
        reset_at = (min(recent) if recent else now) + preset.window_seconds
        return RateLimitResult(
            allowed=remaining > 0,
            remaining=remaining,
            limit=preset.limit,
            reset_at=reset_at,
            retry_after=0.0 if remaining > 0 else max(0.0, reset_at - now),
        )

    def reset(self, key: str | None = None) -> None:
        """Forget *key*, or every key when None."""
        if key is None:
            self._timestamps.clear()
        else:
            self._timestamps.pop(key, None)
