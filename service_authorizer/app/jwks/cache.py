"""
Per-key cache of provider signing keys with single-flight refresh.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple

from jose import jwk
from jose.exceptions import JWKError

from shared.errors import KeyFetchError, RateLimitedError
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..ratelimit import FetchRateLimiter

KeySetFetcher = Callable[[str], Awaitable[Dict[str, Any]]]
CacheKey = Tuple[str, str]

ALLOWED_ALGORITHM = "RS256"


@dataclass(frozen=True)
class KeyCacheEntry:
    """A provider public key. Replaced on refresh, never mutated."""

    issuer: str
    key_id: str
    public_key: Mapping[str, Any]
    fetched_at: float
    ttl: float

    def is_fresh(self, now: float) -> bool:
        return now - self.fetched_at < self.ttl


class KeyCache:
    """Caches JWKs by ``(issuer, kid)``.

    Reads of fresh entries never wait on anything. A miss starts one fetch
    task per cache key and every concurrent caller for that key awaits the
    same task; misses for different keys proceed independently. Failed
    fetches leave no trace in the cache.
    """

    def __init__(
        self,
        fetch_key_set: KeySetFetcher,
        *,
        ttl: float = 600.0,
        rate_limiter: Optional[FetchRateLimiter] = None,
        max_wait: float = 5.0,
        fetch_timeout: float = 3.0,
        clock: Callable[[], float] = time.monotonic,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self._fetch_key_set = fetch_key_set
        self.ttl = ttl
        self.max_wait = max_wait
        self.fetch_timeout = fetch_timeout
        self._clock = clock
        self._limiter = rate_limiter or FetchRateLimiter(clock=clock)
        self._metrics = metrics
        self._jwks_uris: Dict[str, str] = {}
        self._entries: Dict[CacheKey, KeyCacheEntry] = {}
        self._inflight: Dict[CacheKey, asyncio.Future] = {}
        self.logger = get_logger("authorizer.key_cache")

    def register_issuer(self, issuer: str, jwks_uri: str) -> None:
        """Tell the cache where an issuer publishes its key set."""
        self._jwks_uris[issuer] = jwks_uri

    async def get_key(self, issuer: str, key_id: str) -> Mapping[str, Any]:
        """Return the public JWK for ``(issuer, key_id)``.

        Raises ``KeyFetchError`` or ``RateLimitedError``.
        """
        cache_key = (issuer, key_id)
        entry = self._entries.get(cache_key)
        if entry is not None and entry.is_fresh(self._clock()):
            return entry.public_key

        future = self._inflight.get(cache_key)
        if future is None:
            future = asyncio.ensure_future(self._refresh(issuer, key_id))
            self._inflight[cache_key] = future
            future.add_done_callback(lambda done, key=cache_key: self._forget(key, done))
        else:
            self.logger.debug("Joining in-flight key fetch", issuer=issuer, kid=key_id)

        # Shielded so one cancelled caller does not abort the fetch for the others
        return await asyncio.shield(future)

    def _forget(self, cache_key: CacheKey, future: asyncio.Future) -> None:
        if self._inflight.get(cache_key) is future:
            del self._inflight[cache_key]
        if not future.cancelled():
            # Mark consumed even when every waiter was cancelled
            future.exception()

    async def _refresh(self, issuer: str, key_id: str) -> Mapping[str, Any]:
        jwks_uri = self._jwks_uris.get(issuer)
        if jwks_uri is None:
            raise KeyFetchError("No key set registered for issuer", details={"issuer": issuer})

        try:
            await self._limiter.acquire(self.max_wait)
        except RateLimitedError:
            self._record_fetch("rate_limited")
            raise

        try:
            key_set = await asyncio.wait_for(self._fetch_key_set(jwks_uri), timeout=self.fetch_timeout)
        except asyncio.TimeoutError as exc:
            self._record_fetch("timeout")
            raise KeyFetchError("Key set fetch timed out", details={"issuer": issuer}) from exc
        except KeyFetchError:
            self._record_fetch("error")
            raise
        except Exception as exc:
            self._record_fetch("error")
            raise KeyFetchError("Key set fetch failed", details={"issuer": issuer, "error": str(exc)}) from exc

        fetched_at = self._clock()
        fresh = self._parse_key_set(issuer, key_set, fetched_at)
        if key_id not in fresh:
            self._record_fetch("unknown_kid")
            raise KeyFetchError("Signing key not found in key set", details={"issuer": issuer, "kid": key_id})

        for kid, entry in fresh.items():
            self._entries[(issuer, kid)] = entry
        self._record_fetch("ok")
        self.logger.info("Key set refreshed", issuer=issuer, keys_count=len(fresh))
        return fresh[key_id].public_key

    def _parse_key_set(self, issuer: str, key_set: Any, fetched_at: float) -> Dict[str, KeyCacheEntry]:
        keys = key_set.get("keys") if isinstance(key_set, dict) else None
        if not isinstance(keys, list):
            self._record_fetch("malformed")
            raise KeyFetchError("Malformed key set", details={"issuer": issuer})

        entries: Dict[str, KeyCacheEntry] = {}
        for key_data in keys:
            if not isinstance(key_data, dict):
                continue
            kid = key_data.get("kid")
            if not isinstance(kid, str) or key_data.get("use", "sig") != "sig":
                continue
            try:
                jwk.construct(key_data, algorithm=ALLOWED_ALGORITHM)
            except (JWKError, ValueError, TypeError) as exc:
                self.logger.warning("Skipping unusable key", issuer=issuer, kid=kid, error=str(exc))
                continue
            entries[kid] = KeyCacheEntry(
                issuer=issuer,
                key_id=kid,
                public_key=MappingProxyType(dict(key_data)),
                fetched_at=fetched_at,
                ttl=self.ttl,
            )
        return entries

    def _record_fetch(self, status: str) -> None:
        if self._metrics is not None:
            self._metrics.increment_counter("jwks_fetch_total", status=status)

    def invalidate(self, issuer: Optional[str] = None) -> None:
        """Drop cached keys, for one issuer or all of them."""
        if issuer is None:
            self._entries.clear()
        else:
            for cache_key in [k for k in self._entries if k[0] == issuer]:
                del self._entries[cache_key]
        self.logger.info("Key cache invalidated", issuer=issuer or "*")

    def stats(self) -> Dict[str, Any]:
        now = self._clock()
        return {
            "entries": len(self._entries),
            "fresh": sum(1 for entry in self._entries.values() if entry.is_fresh(now)),
            "inflight": len(self._inflight),
            "issuers": sorted(self._jwks_uris),
            "rate_limit": self._limiter.status(),
        }
