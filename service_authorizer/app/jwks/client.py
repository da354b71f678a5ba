"""
HTTP client for provider-hosted JWKS endpoints.
"""

from typing import Any, Dict, Optional

import httpx

from shared.circuit_breaker import CircuitBreakerManager, CircuitBreakerOpenException
from shared.errors import KeyFetchError
from shared.logging import get_logger


class JWKSClient:
    """Fetches key sets over HTTP, one circuit breaker per JWKS URI."""

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        *,
        http_timeout: float = 3.0,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
    ) -> None:
        self._client = http_client or httpx.AsyncClient(timeout=http_timeout)
        self.breakers = CircuitBreakerManager(
            failure_threshold=failure_threshold,
            recovery_timeout=recovery_timeout,
        )
        self.logger = get_logger("authorizer.jwks_client")

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def fetch_key_set(self, jwks_uri: str) -> Dict[str, Any]:
        """GET the key set and check it carries a ``keys`` array."""

        async def _fetch() -> Dict[str, Any]:
            response = await self._client.get(jwks_uri)
            response.raise_for_status()
            return response.json()

        breaker = self.breakers.get_circuit_breaker(jwks_uri)
        try:
            payload = await breaker.call(_fetch)
        except CircuitBreakerOpenException as exc:
            raise KeyFetchError("Key set endpoint circuit open", details={"jwks_uri": jwks_uri}) from exc
        except (httpx.HTTPError, ValueError) as exc:
            self.logger.error("Failed to fetch JWKS", jwks_uri=jwks_uri, error=str(exc))
            raise KeyFetchError("Key set fetch failed", details={"jwks_uri": jwks_uri, "error": str(exc)}) from exc

        if not isinstance(payload, dict) or not isinstance(payload.get("keys"), list):
            raise KeyFetchError("JWKS response missing 'keys' array", details={"jwks_uri": jwks_uri})

        self.logger.info("JWKS fetched", jwks_uri=jwks_uri, keys_count=len(payload["keys"]))
        return payload

    async def check_health(self, jwks_uri: str) -> str:
        """Return 'ok' if the JWKS endpoint responds correctly, otherwise 'error'."""
        try:
            await self.fetch_key_set(jwks_uri)
            return "ok"
        except KeyFetchError as exc:
            self.logger.error("JWKS health check failed", error=exc.message)
            return "error"
