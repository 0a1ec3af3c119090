"""Request throttling for the API surface."""

from scurry.security.rate_limiter import (
    RateLimit,
    RateLimitResult,
    SlidingWindowRateLimiter,
    default_rate_limits,
    rate_limit_key,
)

__all__ = [
    "RateLimit",
    "RateLimitResult",
    "SlidingWindowRateLimiter",
    "default_rate_limits",
    "rate_limit_key",
]
