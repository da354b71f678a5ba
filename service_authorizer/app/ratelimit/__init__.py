"""
Upstream fetch rate limiting for the key cache.
"""

from .fetch_limiter import FetchRateLimiter

__all__ = ["FetchRateLimiter"]
