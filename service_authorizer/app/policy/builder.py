"""
Turns validated claims into a scoped authorization decision.
"""

from enum import Enum
from typing import Dict, Optional

from ..models import DENY_PRINCIPAL, AuthorizationDecision, Effect, RequestContext
from ..validation import TokenClaims


class ScopeMode(str, Enum):
    # Allow every method/resource in the stage so the gateway can reuse one decision
    STAGE = "stage"
    # Allow only the method ARN that was asked for
    METHOD = "method"


class PolicyBuilder:
    """Builds Allow decisions for validated claims and uniform Denies."""

    def __init__(self, scope_mode: ScopeMode = ScopeMode.STAGE) -> None:
        self.scope_mode = ScopeMode(scope_mode)

    def build(self, claims: TokenClaims, request_context: RequestContext) -> AuthorizationDecision:
        if self.scope_mode == ScopeMode.STAGE:
            resource_scope = request_context.stage_scope()
        else:
            resource_scope = request_context.method_arn

        return AuthorizationDecision(
            principal_id=claims.subject,
            effect=Effect.ALLOW,
            resource_scope=resource_scope,
            context=self._context(claims),
        )

    @staticmethod
    def deny(method_arn: Optional[str]) -> AuthorizationDecision:
        """Deny scoped to the exact resource that was requested."""
        return AuthorizationDecision(
            principal_id=DENY_PRINCIPAL,
            effect=Effect.DENY,
            resource_scope=method_arn or "",
        )

    @staticmethod
    def _context(claims: TokenClaims) -> Dict[str, str]:
        # The gateway only accepts string context values
        values = {
            "userId": claims.subject,
            "email": claims.email,
            "username": claims.username,
            "clientId": claims.client_id,
            "scope": claims.scope,
            "provider": claims.provider,
        }
        return {key: "" if value is None else str(value) for key, value in values.items()}
