"""
Unit tests for KeyCache.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock

from service_authorizer.app.jwks import KeyCache
from service_authorizer.app.ratelimit import FetchRateLimiter
from shared.errors import KeyFetchError, RateLimitedError
from shared.test_helpers import COGNITO_ISSUER, create_jwks, create_key_pair

JWKS_URI = f"{COGNITO_ISSUER}/.well-known/jwks.json"


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture(scope="module")
def key_pair():
    return create_key_pair("kid-1")


@pytest.fixture(scope="module")
def second_key_pair():
    return create_key_pair("kid-2")


@pytest.fixture
def clock():
    return FakeClock()


def make_cache(fetcher, clock=None, **kwargs) -> KeyCache:
    options = {"ttl": 600.0, "max_wait": 0.05, "fetch_timeout": 1.0}
    if clock is not None:
        options["clock"] = clock
    options.update(kwargs)
    cache = KeyCache(fetcher, **options)
    cache.register_issuer(COGNITO_ISSUER, JWKS_URI)
    return cache


class TestKeyCache:
    """Test cases for KeyCache."""

    @pytest.mark.asyncio
    async def test_get_key_fetches_and_caches(self, key_pair, clock):
        fetcher = AsyncMock(return_value=create_jwks(key_pair))
        cache = make_cache(fetcher, clock)

        first = await cache.get_key(COGNITO_ISSUER, "kid-1")
        second = await cache.get_key(COGNITO_ISSUER, "kid-1")

        assert first["kid"] == "kid-1"
        assert second == first
        fetcher.assert_awaited_once_with(JWKS_URI)

    @pytest.mark.asyncio
    async def test_concurrent_misses_share_one_fetch(self, key_pair):
        calls = 0

        async def slow_fetch(uri):
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.05)
            return create_jwks(key_pair)

        cache = make_cache(AsyncMock(side_effect=slow_fetch))

        results = await asyncio.gather(
            cache.get_key(COGNITO_ISSUER, "kid-1"),
            cache.get_key(COGNITO_ISSUER, "kid-1"),
            cache.get_key(COGNITO_ISSUER, "kid-1"),
        )

        assert calls == 1
        assert all(result["kid"] == "kid-1" for result in results)

    @pytest.mark.asyncio
    async def test_expired_entry_is_refetched(self, key_pair, clock):
        fetcher = AsyncMock(return_value=create_jwks(key_pair))
        cache = make_cache(fetcher, clock, ttl=600.0)

        await cache.get_key(COGNITO_ISSUER, "kid-1")
        clock.now += 599
        await cache.get_key(COGNITO_ISSUER, "kid-1")
        assert fetcher.await_count == 1

        clock.now += 1
        await cache.get_key(COGNITO_ISSUER, "kid-1")
        assert fetcher.await_count == 2

    @pytest.mark.asyncio
    async def test_whole_key_set_is_cached(self, key_pair, second_key_pair, clock):
        fetcher = AsyncMock(return_value=create_jwks(key_pair, second_key_pair))
        cache = make_cache(fetcher, clock)

        await cache.get_key(COGNITO_ISSUER, "kid-1")
        await cache.get_key(COGNITO_ISSUER, "kid-2")

        fetcher.assert_awaited_once()
        assert cache.stats()["entries"] == 2

    @pytest.mark.asyncio
    async def test_unknown_kid_fails_and_is_not_cached(self, key_pair, clock):
        fetcher = AsyncMock(return_value=create_jwks(key_pair))
        cache = make_cache(fetcher, clock)

        with pytest.raises(KeyFetchError):
            await cache.get_key(COGNITO_ISSUER, "rotated-away")
        with pytest.raises(KeyFetchError):
            await cache.get_key(COGNITO_ISSUER, "rotated-away")

        assert fetcher.await_count == 2

    @pytest.mark.asyncio
    async def test_fetch_error_is_not_cached(self, key_pair, clock):
        fetcher = AsyncMock(side_effect=[ConnectionError("idp down"), create_jwks(key_pair)])
        cache = make_cache(fetcher, clock)

        with pytest.raises(KeyFetchError):
            await cache.get_key(COGNITO_ISSUER, "kid-1")

        key = await cache.get_key(COGNITO_ISSUER, "kid-1")
        assert key["kid"] == "kid-1"

    @pytest.mark.asyncio
    async def test_malformed_key_set(self, clock):
        cache = make_cache(AsyncMock(return_value={"not_keys": []}), clock)

        with pytest.raises(KeyFetchError):
            await cache.get_key(COGNITO_ISSUER, "kid-1")

    @pytest.mark.asyncio
    async def test_unusable_key_is_skipped(self, clock):
        broken = {"keys": [{"kid": "kid-1", "kty": "oct", "k": "c2VjcmV0"}]}
        cache = make_cache(AsyncMock(return_value=broken), clock)

        with pytest.raises(KeyFetchError):
            await cache.get_key(COGNITO_ISSUER, "kid-1")

    @pytest.mark.asyncio
    async def test_unregistered_issuer(self, key_pair):
        fetcher = AsyncMock(return_value=create_jwks(key_pair))
        cache = make_cache(fetcher)

        with pytest.raises(KeyFetchError):
            await cache.get_key("https://unknown.example.com", "kid-1")
        fetcher.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fetch_timeout(self):
        async def hung_fetch(uri):
            await asyncio.sleep(5)

        cache = make_cache(AsyncMock(side_effect=hung_fetch), fetch_timeout=0.05)

        with pytest.raises(KeyFetchError):
            await cache.get_key(COGNITO_ISSUER, "kid-1")

    @pytest.mark.asyncio
    async def test_rate_ceiling_fails_after_bounded_wait(self, key_pair, second_key_pair):
        fetcher = AsyncMock(side_effect=[create_jwks(key_pair), create_jwks(key_pair, second_key_pair)])
        cache = make_cache(fetcher, rate_limiter=FetchRateLimiter(1, 60.0), max_wait=0.05)

        await cache.get_key(COGNITO_ISSUER, "kid-1")
        with pytest.raises(RateLimitedError):
            await cache.get_key(COGNITO_ISSUER, "kid-2")
        assert fetcher.await_count == 1

    @pytest.mark.asyncio
    async def test_invalidate(self, key_pair, clock):
        fetcher = AsyncMock(return_value=create_jwks(key_pair))
        cache = make_cache(fetcher, clock)

        await cache.get_key(COGNITO_ISSUER, "kid-1")
        cache.invalidate(COGNITO_ISSUER)
        await cache.get_key(COGNITO_ISSUER, "kid-1")

        assert fetcher.await_count == 2
