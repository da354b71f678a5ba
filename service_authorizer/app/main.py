"""
Authorizer service for the M2M Trust Layer.
"""

from typing import Any, Dict, Optional

from fastapi import Request
from pydantic import BaseModel

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config

from .engine import AuthorizationEngine
from .jwks import JWKSClient, KeyCache
from .policy import PolicyBuilder
from .ratelimit import FetchRateLimiter
from .validation import ProviderConfig, TokenValidator, provider_from_settings


class AuthorizerEvent(BaseModel):
    """Token-authorizer invocation as delivered by the gateway."""

    type: str = "TOKEN"
    authorizationToken: Optional[str] = None
    methodArn: str = ""
    headers: Optional[Dict[str, str]] = None

    def credential(self) -> Optional[str]:
        if self.authorizationToken:
            return self.authorizationToken
        headers = self.headers or {}
        return headers.get("Authorization") or headers.get("authorization")


class AuthorizerService(BaseService):
    """Authorizer service implementation."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        provider: Optional[ProviderConfig] = None,
        jwks_client: Optional[JWKSClient] = None,
    ):
        super().__init__("authorizer", 8020, config=config)
        self.provider = provider or provider_from_settings(self.config)
        self.jwks_client = jwks_client or JWKSClient(http_timeout=self.config.jwks_fetch_timeout_seconds)

        self.key_cache = KeyCache(
            self.jwks_client.fetch_key_set,
            ttl=self.config.jwks_cache_ttl_seconds,
            rate_limiter=FetchRateLimiter(self.config.jwks_requests_per_minute, 60.0),
            max_wait=self.config.jwks_rate_limit_wait_seconds,
            fetch_timeout=self.config.jwks_fetch_timeout_seconds,
            metrics=self.metrics,
        )
        self.key_cache.register_issuer(self.provider.issuer, self.provider.jwks_uri)

        self.engine = AuthorizationEngine(
            TokenValidator(self.key_cache, leeway=self.config.clock_leeway_seconds),
            PolicyBuilder(self.config.resource_scope),
            decision_timeout=self.config.decision_timeout_seconds,
            metrics=self.metrics,
        )

        self.logger.info(
            "Authorizer initialized",
            provider=self.provider.name,
            issuer=self.provider.issuer,
            jwks_uri=self.provider.jwks_uri,
        )

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.jwks_client.close()

        self._setup_authorizer_routes()

    def _setup_authorizer_routes(self):
        """Set up authorizer-specific routes."""

        @self.app.get("/")
        async def root():
            return {
                "service": "authorizer",
                "message": "M2M Trust Layer - Token Authorizer",
                "provider": self.provider.name,
                "version": "1.0.0",
            }

        @self.app.post("/authorize")
        async def authorize(event: AuthorizerEvent, request: Request) -> Dict[str, Any]:
            """Answer a token-authorizer event with a policy document."""
            credential = event.credential() or request.headers.get("Authorization")
            decision = await self.engine.authorize(credential, event.methodArn, self.provider)
            return decision.to_policy()

        @self.app.get("/keys/stats")
        async def key_stats():
            """Key cache occupancy, fetch budget and JWKS breaker state."""
            stats = self.key_cache.stats()
            stats["breakers"] = self.jwks_client.breakers.get_all_states()
            return stats

    async def _check_dependencies(self) -> Dict[str, str]:
        return {"jwks": await self.jwks_client.check_health(self.provider.jwks_uri)}


def create_app(config: Optional[ServiceConfig] = None, **kwargs):
    """Create the FastAPI app for the authorizer."""
    return AuthorizerService(config or get_config("authorizer", 8020), **kwargs).app


if __name__ == "__main__":
    AuthorizerService().run()
