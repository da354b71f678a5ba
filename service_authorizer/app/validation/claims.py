"""
Decoded token payload, normalized across provider claim names.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping, Optional

USERNAME_CLAIMS = ("username", "preferred_username", "upn")
CLIENT_ID_CLAIMS = ("client_id", "azp", "appid")


def first_claim(payload: Mapping[str, Any], names: Iterable[str]) -> Optional[str]:
    """First non-empty value among ``names``."""
    for name in names:
        value = payload.get(name)
        if value not in (None, ""):
            return str(value)
    return None


@dataclass(frozen=True)
class TokenClaims:
    subject: str
    issuer: str
    key_id: str
    provider: str
    audience: Optional[str] = None
    token_use: Optional[str] = None
    version: Optional[str] = None
    scope: Optional[str] = None
    email: Optional[str] = None
    username: Optional[str] = None
    client_id: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], key_id: str, provider: str) -> "TokenClaims":
        audience = payload.get("aud")
        if isinstance(audience, list):
            audience = audience[0] if len(audience) == 1 else " ".join(str(a) for a in audience)

        scope = payload.get("scope", payload.get("scp"))
        if isinstance(scope, list):
            scope = " ".join(str(s) for s in scope)

        return cls(
            subject=str(payload.get("sub", "")),
            issuer=str(payload.get("iss", "")),
            key_id=key_id,
            provider=provider,
            audience=None if audience is None else str(audience),
            token_use=payload.get("token_use"),
            version=None if payload.get("ver") is None else str(payload.get("ver")),
            scope=None if scope is None else str(scope),
            email=first_claim(payload, ("email",)),
            username=first_claim(payload, USERNAME_CLAIMS),
            client_id=first_claim(payload, CLIENT_ID_CLAIMS),
            raw=dict(payload),
        )
