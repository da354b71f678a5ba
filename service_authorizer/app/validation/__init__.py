"""
Token validation package.

Verifies bearer tokens for each supported identity provider and returns
normalized claims. Nothing here decides Allow or Deny.
"""

from .claims import TokenClaims
from .providers import PROVIDERS, AzureADProvider, CognitoProvider, ProviderConfig, provider_from_settings
from .token_validator import TokenValidator

__all__ = [
    "PROVIDERS",
    "AzureADProvider",
    "CognitoProvider",
    "ProviderConfig",
    "TokenClaims",
    "TokenValidator",
    "provider_from_settings",
]
