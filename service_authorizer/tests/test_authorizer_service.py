"""
Unit tests for the Authorizer service.
"""

import httpx
import pytest
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock, patch

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_authorizer.app.jwks import JWKSClient
from service_authorizer.app.main import AuthorizerService, create_app
from shared.config import get_config
from shared.test_helpers import COGNITO_ISSUER, METHOD_ARN, create_cognito_claims, create_jwks, create_key_pair

JWKS_URI = f"{COGNITO_ISSUER}/.well-known/jwks.json"


@pytest.fixture(scope="module")
def key_pair():
    return create_key_pair("kid-1")


class TestAuthorizerService:
    """Test cases for AuthorizerService."""

    @pytest.fixture
    def jwks_requests(self):
        return []

    @pytest.fixture
    def service(self, key_pair, jwks_requests):
        """Create AuthorizerService backed by a mocked JWKS endpoint."""

        def handler(request):
            jwks_requests.append(str(request.url))
            return httpx.Response(200, json=create_jwks(key_pair))

        config = get_config("authorizer", 8020, provider_type="cognito", issuer=COGNITO_ISSUER)
        jwks_client = JWKSClient(http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        return AuthorizerService(config, jwks_client=jwks_client)

    @pytest.fixture
    def client(self, service):
        """Create test client."""
        return TestClient(service.app)

    def test_root_endpoint(self, client):
        """Test root endpoint."""
        response = client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "authorizer"
        assert data["provider"] == "cognito"

    def test_authorize_valid_token(self, client, key_pair, jwks_requests):
        """Test a valid token yields an Allow policy."""
        token = key_pair.sign(create_cognito_claims())

        response = client.post("/authorize", json={
            "type": "TOKEN",
            "authorizationToken": f"Bearer {token}",
            "methodArn": METHOD_ARN,
        })

        assert response.status_code == 200
        policy = response.json()
        assert policy["principalId"] == "6s2fq8ofbk4ni1nq3sbb1e9c5t"
        assert policy["policyDocument"]["Statement"][0]["Effect"] == "Allow"
        assert policy["context"]["provider"] == "cognito"
        assert jwks_requests == [JWKS_URI]

    def test_authorize_reuses_cached_keys(self, client, key_pair, jwks_requests):
        token = key_pair.sign(create_cognito_claims())
        for _ in range(3):
            client.post("/authorize", json={"authorizationToken": token, "methodArn": METHOD_ARN})

        assert len(jwks_requests) == 1

    def test_authorize_from_authorization_header(self, client, key_pair):
        token = key_pair.sign(create_cognito_claims())

        response = client.post(
            "/authorize",
            json={"methodArn": METHOD_ARN},
            headers={"Authorization": f"Bearer {token}"},
        )

        assert response.json()["policyDocument"]["Statement"][0]["Effect"] == "Allow"

    def test_authorize_invalid_token_is_deny_not_error(self, client):
        """Test an invalid token yields a Deny policy with HTTP 200."""
        response = client.post("/authorize", json={"authorizationToken": "Bearer junk", "methodArn": METHOD_ARN})

        assert response.status_code == 200
        policy = response.json()
        assert policy["principalId"] == "user"
        assert policy["policyDocument"]["Statement"][0] == {
            "Action": "execute-api:Invoke",
            "Effect": "Deny",
            "Resource": METHOD_ARN,
        }
        assert "context" not in policy

    def test_key_stats(self, client, key_pair):
        client.post("/authorize", json={
            "authorizationToken": key_pair.sign(create_cognito_claims()),
            "methodArn": METHOD_ARN,
        })

        stats = client.get("/keys/stats").json()

        assert stats["entries"] == 1
        assert stats["issuers"] == [COGNITO_ISSUER]
        assert stats["rate_limit"]["limit"] == 10
        assert stats["breakers"][JWKS_URI]["state"] == "closed"

    def test_health_endpoint(self, client):
        """Test health endpoint checks the JWKS endpoint."""
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["dependencies"] == {"jwks": "ok"}

    @patch('service_authorizer.app.main.AuthorizerService._check_dependencies')
    def test_health_degraded(self, mock_check_deps, client):
        mock_check_deps.return_value = {"jwks": "error"}

        assert client.get("/health").json()["status"] == "degraded"

    def test_metrics_endpoint(self, client):
        client.post("/authorize", json={"authorizationToken": "junk", "methodArn": METHOD_ARN})

        response = client.get("/metrics")

        assert response.status_code == 200
        assert 'authorization_denials_total{reason="MalformedToken"} 1.0' in response.text


class TestCreateApp:
    """Test cases for app construction from settings."""

    def test_create_app_from_user_pool(self):
        config = get_config(
            "authorizer", 8020,
            provider_type="cognito",
            cognito_region="eu-west-1",
            cognito_user_pool_id="eu-west-1_Pool",
        )
        service = AuthorizerService(config)

        assert service.provider.issuer == "https://cognito-idp.eu-west-1.amazonaws.com/eu-west-1_Pool"

    def test_create_app_for_azure(self):
        config = get_config(
            "authorizer", 8020,
            provider_type="azure",
            azure_tenant_id="tenant-1",
            audience="api://orders-api",
            resource_scope="method",
        )
        app = create_app(config)

        assert app.title == "Authorizer Service"

    def test_shutdown_closes_jwks_client(self):
        service = AuthorizerService(get_config("authorizer", 8020, provider_type="cognito", issuer=COGNITO_ISSUER))

        with patch.object(service.jwks_client, "close", new_callable=AsyncMock) as mock_close:
            with TestClient(service.app):
                mock_close.assert_not_awaited()
            mock_close.assert_awaited_once()

    def test_unknown_provider_rejected(self):
        with pytest.raises(ValueError):
            AuthorizerService(get_config("authorizer", 8020, provider_type="okta", issuer="https://x"))
