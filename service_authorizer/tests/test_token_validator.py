"""
Unit tests for TokenValidator.
"""

import time

import pytest
from jose import jwt
from unittest.mock import AsyncMock

from service_authorizer.app.jwks import KeyCache
from service_authorizer.app.validation import AzureADProvider, CognitoProvider, TokenValidator
from shared.errors import InvalidTokenError, KeyFetchError, TokenErrorReason
from shared.test_helpers import (
    AZURE_AUDIENCE,
    AZURE_ISSUER,
    AZURE_TENANT,
    COGNITO_ISSUER,
    create_azure_claims,
    create_cognito_claims,
    create_jwks,
    create_key_pair,
    create_unsigned_token,
)


@pytest.fixture(scope="module")
def key_pair():
    return create_key_pair("kid-1")


@pytest.fixture(scope="module")
def impostor_key_pair():
    return create_key_pair("kid-1")


@pytest.fixture
def cognito():
    return CognitoProvider(issuer=COGNITO_ISSUER, jwks_uri=f"{COGNITO_ISSUER}/.well-known/jwks.json")


@pytest.fixture
def azure():
    return AzureADProvider.for_tenant(AZURE_TENANT, AZURE_AUDIENCE)


@pytest.fixture
def fetcher(key_pair):
    return AsyncMock(return_value=create_jwks(key_pair))


@pytest.fixture
def validator(fetcher, cognito, azure):
    cache = KeyCache(fetcher)
    cache.register_issuer(cognito.issuer, cognito.jwks_uri)
    cache.register_issuer(azure.issuer, azure.jwks_uri)
    return TokenValidator(cache)


async def assert_rejected(validator, token, provider, reason):
    with pytest.raises(InvalidTokenError) as exc_info:
        await validator.validate(token, provider)
    assert exc_info.value.token_reason == reason
    return exc_info.value


class TestTokenValidator:
    """Test cases for TokenValidator."""

    @pytest.mark.asyncio
    async def test_valid_cognito_token(self, validator, key_pair, cognito):
        claims = await validator.validate(key_pair.sign(create_cognito_claims()), cognito)

        assert claims.subject == "6s2fq8ofbk4ni1nq3sbb1e9c5t"
        assert claims.issuer == COGNITO_ISSUER
        assert claims.key_id == "kid-1"
        assert claims.provider == "cognito"
        assert claims.client_id == "6s2fq8ofbk4ni1nq3sbb1e9c5t"
        assert claims.scope == "orders/read orders/write"

    @pytest.mark.asyncio
    async def test_valid_azure_token(self, validator, key_pair, azure):
        claims = await validator.validate(key_pair.sign(create_azure_claims()), azure)

        assert claims.provider == "azure"
        assert claims.audience == AZURE_AUDIENCE
        assert claims.username == "orders-batch"

    @pytest.mark.asyncio
    async def test_azure_v1_token_accepted(self, validator, key_pair, azure):
        claims = await validator.validate(key_pair.sign(create_azure_claims(ver="1.0")), azure)
        assert claims.version == "1.0"

    @pytest.mark.asyncio
    async def test_azure_v1_issuer_accepted(self, validator, key_pair, azure):
        token = key_pair.sign(create_azure_claims(ver="1.0", iss=f"https://sts.windows.net/{AZURE_TENANT}/"))

        claims = await validator.validate(token, azure)

        assert claims.issuer == f"https://sts.windows.net/{AZURE_TENANT}/"
        assert claims.version == "1.0"

    @pytest.mark.asyncio
    async def test_azure_v1_issuer_of_other_tenant_rejected(self, validator, key_pair, azure):
        token = key_pair.sign(create_azure_claims(ver="1.0", iss="https://sts.windows.net/other-tenant/"))
        await assert_rejected(validator, token, azure, TokenErrorReason.ISSUER_MISMATCH)

    @pytest.mark.asyncio
    async def test_not_a_jws(self, validator, cognito, fetcher):
        await assert_rejected(validator, "not-a-token", cognito, TokenErrorReason.MALFORMED_TOKEN)
        fetcher.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_undecodable_segments(self, validator, cognito):
        await assert_rejected(validator, "abc.def.ghi", cognito, TokenErrorReason.MALFORMED_TOKEN)

    @pytest.mark.asyncio
    async def test_hs256_rejected_before_key_lookup(self, validator, cognito, fetcher):
        token = jwt.encode(create_cognito_claims(), "shared-secret", algorithm="HS256", headers={"kid": "kid-1"})

        await assert_rejected(validator, token, cognito, TokenErrorReason.ALGORITHM_NOT_ALLOWED)
        fetcher.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_alg_none_rejected(self, validator, cognito):
        token = create_unsigned_token(create_cognito_claims(), {"alg": "none", "kid": "kid-1"})
        await assert_rejected(validator, token, cognito, TokenErrorReason.ALGORITHM_NOT_ALLOWED)

    @pytest.mark.asyncio
    async def test_missing_kid(self, validator, cognito, fetcher):
        token = create_unsigned_token(create_cognito_claims(), {"alg": "RS256", "typ": "JWT"})

        await assert_rejected(validator, token, cognito, TokenErrorReason.MALFORMED_TOKEN)
        fetcher.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_signature_from_other_key(self, validator, impostor_key_pair, cognito):
        token = impostor_key_pair.sign(create_cognito_claims())
        await assert_rejected(validator, token, cognito, TokenErrorReason.SIGNATURE_INVALID)

    @pytest.mark.asyncio
    async def test_empty_signature(self, validator, cognito):
        token = create_unsigned_token(create_cognito_claims(), {"alg": "RS256", "kid": "kid-1"})
        await assert_rejected(validator, token, cognito, TokenErrorReason.SIGNATURE_INVALID)

    @pytest.mark.asyncio
    async def test_unknown_kid_propagates_key_error(self, validator, key_pair, cognito):
        token = key_pair.sign(create_cognito_claims(), kid="kid-unknown")

        with pytest.raises(KeyFetchError):
            await validator.validate(token, cognito)

    @pytest.mark.asyncio
    async def test_issuer_mismatch(self, validator, key_pair, cognito):
        token = key_pair.sign(create_cognito_claims(iss="https://evil.example.com"))
        await assert_rejected(validator, token, cognito, TokenErrorReason.ISSUER_MISMATCH)

    @pytest.mark.asyncio
    async def test_issuer_checked_before_expiry(self, validator, key_pair, cognito):
        token = key_pair.sign(create_cognito_claims(expires_in=-60, iss="https://evil.example.com"))
        await assert_rejected(validator, token, cognito, TokenErrorReason.ISSUER_MISMATCH)

    @pytest.mark.asyncio
    async def test_expired(self, validator, key_pair, cognito):
        token = key_pair.sign(create_cognito_claims(expires_in=-1))
        await assert_rejected(validator, token, cognito, TokenErrorReason.TOKEN_EXPIRED)

    @pytest.mark.asyncio
    async def test_missing_exp_treated_as_expired(self, validator, key_pair, cognito):
        claims = create_cognito_claims()
        del claims["exp"]

        await assert_rejected(validator, key_pair.sign(claims), cognito, TokenErrorReason.TOKEN_EXPIRED)

    @pytest.mark.asyncio
    async def test_not_yet_valid(self, validator, key_pair, azure):
        token = key_pair.sign(create_azure_claims(nbf=int(time.time()) + 300))
        await assert_rejected(validator, token, azure, TokenErrorReason.TOKEN_NOT_YET_VALID)

    @pytest.mark.asyncio
    async def test_leeway_tolerates_small_skew(self, fetcher, key_pair, cognito):
        cache = KeyCache(fetcher)
        cache.register_issuer(cognito.issuer, cognito.jwks_uri)
        lenient = TokenValidator(cache, leeway=30)

        claims = await lenient.validate(key_pair.sign(create_cognito_claims(expires_in=-5)), cognito)
        assert claims.subject

    @pytest.mark.asyncio
    async def test_expiry_boundary_uses_clock(self, fetcher, key_pair, cognito):
        cache = KeyCache(fetcher)
        cache.register_issuer(cognito.issuer, cognito.jwks_uri)
        claims = create_cognito_claims()
        at_expiry = TokenValidator(cache, clock=lambda: float(claims["exp"]))

        await assert_rejected(at_expiry, key_pair.sign(claims), cognito, TokenErrorReason.TOKEN_EXPIRED)

    @pytest.mark.asyncio
    async def test_cognito_id_token_rejected(self, validator, key_pair, cognito):
        token = key_pair.sign(create_cognito_claims(token_use="id"))
        await assert_rejected(validator, token, cognito, TokenErrorReason.WRONG_TOKEN_USE)

    @pytest.mark.asyncio
    async def test_azure_audience_mismatch(self, validator, key_pair, azure):
        token = key_pair.sign(create_azure_claims(aud="api://someone-else"))
        await assert_rejected(validator, token, azure, TokenErrorReason.INVALID_AUDIENCE)

    @pytest.mark.asyncio
    async def test_azure_unknown_version(self, validator, key_pair, azure):
        token = key_pair.sign(create_azure_claims(ver="3.0"))
        await assert_rejected(validator, token, azure, TokenErrorReason.INVALID_VERSION)

    @pytest.mark.asyncio
    async def test_missing_subject(self, validator, key_pair, cognito):
        claims = create_cognito_claims()
        del claims["sub"]

        await assert_rejected(validator, key_pair.sign(claims), cognito, TokenErrorReason.MALFORMED_TOKEN)


class TestProviders:
    """Test cases for provider variants."""

    def test_cognito_for_user_pool(self):
        provider = CognitoProvider.for_user_pool("eu-west-1", "eu-west-1_Abc")

        assert provider.issuer == "https://cognito-idp.eu-west-1.amazonaws.com/eu-west-1_Abc"
        assert provider.jwks_uri.endswith("/eu-west-1_Abc/.well-known/jwks.json")
        assert provider.name == "cognito"

    def test_azure_for_tenant(self):
        provider = AzureADProvider.for_tenant(AZURE_TENANT, AZURE_AUDIENCE)

        assert provider.issuer == AZURE_ISSUER
        assert provider.jwks_uri == f"https://login.microsoftonline.com/{AZURE_TENANT}/discovery/v2.0/keys"
        assert provider.issuers == (AZURE_ISSUER, f"https://sts.windows.net/{AZURE_TENANT}/")

    def test_explicit_azure_issuer_accepts_only_itself(self):
        provider = AzureADProvider(issuer=AZURE_ISSUER, jwks_uri="https://example.com/keys", audience=AZURE_AUDIENCE)

        assert provider.accepts_issuer(AZURE_ISSUER)
        assert not provider.accepts_issuer(f"https://sts.windows.net/{AZURE_TENANT}/")

    def test_azure_requires_audience(self):
        with pytest.raises(ValueError):
            AzureADProvider(issuer=AZURE_ISSUER, jwks_uri="https://example.com/keys")
