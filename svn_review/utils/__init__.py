from __future__ import annotations

from svn_review.utils.rate_limiter import RateLimiter, RateLimitEntry, RateLimitResult

__all__ = ["RateLimiter", "RateLimitEntry", "RateLimitResult"]
