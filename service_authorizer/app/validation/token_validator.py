"""
Bearer token validation against provider key sets.
"""

import time
from typing import Any, Callable, Dict, Mapping

from jose import jwt
from jose.exceptions import JWTError

from shared.errors import InvalidTokenError, TokenErrorReason
from shared.logging import get_logger

from ..jwks import KeyCache
from .claims import TokenClaims
from .providers import ProviderConfig

ALLOWED_ALGORITHM = "RS256"

# Only the signature is checked by the library; every claim gate runs here
# so the failures come out in a fixed order with a precise reason.
_SIGNATURE_ONLY = {
    "verify_signature": True,
    "verify_aud": False,
    "verify_iat": False,
    "verify_exp": False,
    "verify_nbf": False,
    "verify_iss": False,
    "verify_sub": False,
    "verify_jti": False,
    "verify_at_hash": False,
}


class TokenValidator:
    """Runs the ordered validation gates for one provider's token.

    1. structure  2. algorithm  3. key + signature  4. issuer
    5. exp / nbf  6. provider-specific claims

    The first failing gate raises ``InvalidTokenError``; key resolution
    errors from the cache propagate unchanged. No side effects.
    """

    def __init__(
        self,
        key_cache: KeyCache,
        *,
        leeway: int = 0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.key_cache = key_cache
        self.leeway = leeway
        self._clock = clock
        self.logger = get_logger("authorizer.validator")

    async def validate(self, raw_token: str, provider: ProviderConfig) -> TokenClaims:
        header = self._parse(raw_token)

        algorithm = header.get("alg")
        if algorithm != ALLOWED_ALGORITHM:
            raise InvalidTokenError(
                TokenErrorReason.ALGORITHM_NOT_ALLOWED,
                "Token algorithm not allowed",
                details={"alg": algorithm},
            )

        kid = header.get("kid")
        if not isinstance(kid, str) or not kid:
            raise InvalidTokenError(TokenErrorReason.MALFORMED_TOKEN, "Token header missing key id")

        public_key = await self.key_cache.get_key(provider.issuer, kid)
        payload = self._verify_signature(raw_token, public_key)

        if not provider.accepts_issuer(payload.get("iss")):
            raise InvalidTokenError(
                TokenErrorReason.ISSUER_MISMATCH,
                "Issuer does not match provider",
                details={"iss": payload.get("iss")},
            )

        self._check_time_claims(payload)

        claims = TokenClaims.from_payload(payload, key_id=kid, provider=provider.name)
        if not claims.subject:
            raise InvalidTokenError(TokenErrorReason.MALFORMED_TOKEN, "Token missing subject claim")

        provider.check_claims(claims)
        return claims

    def _parse(self, raw_token: str) -> Dict[str, Any]:
        if not isinstance(raw_token, str) or raw_token.count(".") != 2:
            raise InvalidTokenError(TokenErrorReason.MALFORMED_TOKEN, "Token is not a compact JWS")
        try:
            header = jwt.get_unverified_header(raw_token)
            claims = jwt.get_unverified_claims(raw_token)
        except JWTError as exc:
            raise InvalidTokenError(TokenErrorReason.MALFORMED_TOKEN, "Token could not be decoded") from exc
        if not isinstance(header, dict) or not isinstance(claims, dict):
            raise InvalidTokenError(TokenErrorReason.MALFORMED_TOKEN, "Token segments are not JSON objects")
        return header

    def _verify_signature(self, raw_token: str, public_key: Mapping[str, Any]) -> Dict[str, Any]:
        try:
            return jwt.decode(
                raw_token,
                dict(public_key),
                algorithms=[ALLOWED_ALGORITHM],
                options=_SIGNATURE_ONLY,
            )
        except JWTError as exc:
            raise InvalidTokenError(TokenErrorReason.SIGNATURE_INVALID, "Signature verification failed") from exc

    def _check_time_claims(self, payload: Mapping[str, Any]) -> None:
        now = self._clock()

        exp = payload.get("exp")
        if exp is None:
            raise InvalidTokenError(TokenErrorReason.TOKEN_EXPIRED, "Token has no expiry")
        if isinstance(exp, bool) or not isinstance(exp, (int, float)):
            raise InvalidTokenError(TokenErrorReason.MALFORMED_TOKEN, "Expiry claim is not numeric")
        if now >= exp + self.leeway:
            raise InvalidTokenError(TokenErrorReason.TOKEN_EXPIRED, "Token has expired", details={"exp": exp})

        nbf = payload.get("nbf")
        if nbf is not None:
            if isinstance(nbf, bool) or not isinstance(nbf, (int, float)):
                raise InvalidTokenError(TokenErrorReason.MALFORMED_TOKEN, "Not-before claim is not numeric")
            if nbf > now + self.leeway:
                raise InvalidTokenError(
                    TokenErrorReason.TOKEN_NOT_YET_VALID,
                    "Token is not yet valid",
                    details={"nbf": nbf},
                )
