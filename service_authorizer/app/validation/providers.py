"""
Identity-provider variants and their provider-specific claim gates.

Adding a provider means adding one subclass here and one entry in
``PROVIDERS``; the validator never branches on provider names.
"""

from dataclasses import dataclass
from typing import ClassVar, Dict, FrozenSet, Optional, Tuple, Type

from shared.config import BaseConfig
from shared.errors import InvalidTokenError, TokenErrorReason

from .claims import TokenClaims


@dataclass(frozen=True)
class ProviderConfig:
    """Where a provider's tokens come from and how to check them."""

    issuer: str
    jwks_uri: str
    audience: Optional[str] = None

    name: ClassVar[str] = "generic"

    def accepts_issuer(self, issuer: Optional[str]) -> bool:
        return issuer == self.issuer

    def check_claims(self, claims: TokenClaims) -> None:
        """Provider gate, run after signature, issuer and time checks."""


@dataclass(frozen=True)
class CognitoProvider(ProviderConfig):
    """Amazon Cognito user pool.

    Client-credential access tokens carry no ``aud`` claim, so audience is
    not checked; ``token_use`` must be ``access`` so ID tokens are refused.
    """

    name: ClassVar[str] = "cognito"

    @classmethod
    def for_user_pool(cls, region: str, user_pool_id: str) -> "CognitoProvider":
        issuer = f"https://cognito-idp.{region}.amazonaws.com/{user_pool_id}"
        return cls(issuer=issuer, jwks_uri=f"{issuer}/.well-known/jwks.json")

    def check_claims(self, claims: TokenClaims) -> None:
        if claims.token_use != "access":
            raise InvalidTokenError(
                TokenErrorReason.WRONG_TOKEN_USE,
                "Token must be an access token",
                details={"token_use": claims.token_use},
            )


@dataclass(frozen=True)
class AzureADProvider(ProviderConfig):
    """Microsoft Entra ID (Azure AD) tenant.

    v2.0 tokens are issued by ``login.microsoftonline.com/{tenant}/v2.0`` and
    v1.0 tokens by ``sts.windows.net/{tenant}/``; both are signed with the
    tenant's one key set, so ``v1_issuer`` only widens the issuer check.
    """

    v1_issuer: Optional[str] = None

    name: ClassVar[str] = "azure"
    versions: ClassVar[FrozenSet[str]] = frozenset({"1.0", "2.0"})

    def __post_init__(self) -> None:
        if not self.audience:
            raise ValueError("Azure AD provider requires an audience")

    @classmethod
    def for_tenant(cls, tenant_id: str, audience: str) -> "AzureADProvider":
        base = f"https://login.microsoftonline.com/{tenant_id}"
        return cls(
            issuer=f"{base}/v2.0",
            jwks_uri=f"{base}/discovery/v2.0/keys",
            audience=audience,
            v1_issuer=f"https://sts.windows.net/{tenant_id}/",
        )

    @property
    def issuers(self) -> Tuple[str, ...]:
        return (self.issuer, self.v1_issuer) if self.v1_issuer else (self.issuer,)

    def accepts_issuer(self, issuer: Optional[str]) -> bool:
        return issuer in self.issuers

    def check_claims(self, claims: TokenClaims) -> None:
        if not claims.audience or claims.audience != self.audience:
            raise InvalidTokenError(
                TokenErrorReason.INVALID_AUDIENCE,
                "Invalid audience claim",
                details={"aud": claims.audience},
            )
        if claims.version not in self.versions:
            raise InvalidTokenError(
                TokenErrorReason.INVALID_VERSION,
                "Invalid token version",
                details={"ver": claims.version},
            )


PROVIDERS: Dict[str, Type[ProviderConfig]] = {
    CognitoProvider.name: CognitoProvider,
    AzureADProvider.name: AzureADProvider,
}


def provider_from_settings(settings: BaseConfig) -> ProviderConfig:
    """Build the configured provider variant."""
    provider_cls = PROVIDERS.get(settings.provider_type.lower())
    if provider_cls is None:
        raise ValueError(f"Unknown provider type '{settings.provider_type}'")

    if provider_cls is CognitoProvider and settings.issuer is None:
        if not settings.cognito_user_pool_id:
            raise ValueError("Cognito provider needs an issuer or a user pool id")
        return CognitoProvider.for_user_pool(settings.cognito_region, settings.cognito_user_pool_id)

    if provider_cls is AzureADProvider and settings.issuer is None:
        if not settings.azure_tenant_id:
            raise ValueError("Azure AD provider needs an issuer or a tenant id")
        return AzureADProvider.for_tenant(settings.azure_tenant_id, settings.audience or "")

    jwks_uri = settings.jwks_uri or f"{settings.issuer.rstrip('/')}/.well-known/jwks.json"
    return provider_cls(issuer=settings.issuer, jwks_uri=jwks_uri, audience=settings.audience)
