"""
Authorization engine: token in, Allow/Deny out, never an exception.
"""

import asyncio
import time
from typing import Optional, Union

from shared.errors import AuthorizationFailure
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from .models import AuthorizationDecision, RequestContext
from .policy import PolicyBuilder
from .validation import ProviderConfig, TokenValidator

BEARER_PREFIX = "bearer "


def extract_bearer(raw: Optional[str]) -> Optional[str]:
    """Accept a bare token or an ``Authorization: Bearer`` value."""
    if not raw:
        return None
    token = raw.strip()
    if token[:len(BEARER_PREFIX)].lower() == BEARER_PREFIX:
        token = token[len(BEARER_PREFIX):].strip()
    return token or None


class AuthorizationEngine:
    """Orchestrates key cache, validator and policy builder per request.

    The gateway treats an exception as a hard 5xx, so every failure is
    converted to the same Deny here. The distinct reason is logged and
    counted for operators and never returned.
    """

    def __init__(
        self,
        validator: TokenValidator,
        policy_builder: Optional[PolicyBuilder] = None,
        *,
        decision_timeout: float = 8.0,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.validator = validator
        self.policy_builder = policy_builder or PolicyBuilder()
        self.decision_timeout = decision_timeout
        self.metrics = metrics
        self.logger = get_logger("authorizer.engine")

    async def authorize(
        self,
        raw_auth_header_or_token: Optional[str],
        request_context: Union[RequestContext, str],
        provider: ProviderConfig,
    ) -> AuthorizationDecision:
        method_arn = request_context.method_arn if isinstance(request_context, RequestContext) else request_context
        started = time.perf_counter()
        try:
            decision = await asyncio.wait_for(
                self._decide(raw_auth_header_or_token, request_context, provider),
                timeout=self.decision_timeout,
            )
        except AuthorizationFailure as exc:
            decision = self._deny(method_arn, provider, exc.reason, exc.message)
        except asyncio.TimeoutError:
            decision = self._deny(method_arn, provider, "Timeout", "Decision timed out")
        except Exception as exc:
            self.logger.error("Unexpected authorization error", error=str(exc), exc_info=True)
            decision = self._deny(method_arn, provider, "InternalError", str(exc))
        else:
            self.logger.info(
                "Authorization allowed",
                principal_id=decision.principal_id,
                provider=provider.name,
                resource_scope=decision.resource_scope,
            )

        if self.metrics is not None:
            self.metrics.increment_counter(
                "authorization_decisions_total", provider=provider.name, effect=decision.effect.value
            )
            self.metrics.observe_histogram("authorization_duration_seconds", time.perf_counter() - started)
        return decision

    async def _decide(
        self,
        raw: Optional[str],
        request_context: Union[RequestContext, str],
        provider: ProviderConfig,
    ) -> AuthorizationDecision:
        token = extract_bearer(raw)
        if token is None:
            raise AuthorizationFailure("MissingToken", "No bearer credential supplied")

        if not isinstance(request_context, RequestContext):
            request_context = RequestContext.from_method_arn(request_context)

        claims = await self.validator.validate(token, provider)
        return self.policy_builder.build(claims, request_context)

    def _deny(self, method_arn: Optional[str], provider: ProviderConfig, reason: str, message: str) -> AuthorizationDecision:
        self.logger.warning("Authorization denied", reason=reason, detail=message, provider=provider.name)
        if self.metrics is not None:
            self.metrics.increment_counter("authorization_denials_total", reason=reason)
        return self.policy_builder.deny(method_arn)
