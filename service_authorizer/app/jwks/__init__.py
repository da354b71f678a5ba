"""
JWKS package.

Contains logic for retrieving and caching the JSON Web Key Sets that
identity providers publish for token signature verification.

Key points:
- Keep network fetches bounded (timeouts, circuit breaker, fetch ceiling).
- Cache keys by (issuer, kid) for a fixed TTL; never serve stale entries.
- Collapse concurrent misses for the same key into one upstream fetch.
"""

from .cache import KeyCache, KeyCacheEntry
from .client import JWKSClient

__all__ = ["JWKSClient", "KeyCache", "KeyCacheEntry"]
