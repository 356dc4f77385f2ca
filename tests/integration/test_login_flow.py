"""
Integration tests for the authorization code login flow against the mock Keycloak.
"""

import httpx
import pytest
from prometheus_client import CollectorRegistry
from pydantic import SecretStr

from mocks.keycloak.server import MockKeycloakServer
from shared.config import get_settings
from shared.errors import AuthenticationFailed, ExchangeErrorKind
from shared.metrics import MetricsCollector
from service_login.app.main import LoginService


@pytest.fixture
def keycloak():
    return MockKeycloakServer()


@pytest.fixture
def settings(keycloak):
    return get_settings(
        issuer=keycloak.issuer,
        client_id=keycloak.client_id,
        client_secret=keycloak.client_secret,
        redirect_uri=keycloak.redirect_uri,
        token_endpoint="",
        jwks_endpoint="",
    )


@pytest.fixture
async def idp_client(keycloak):
    """HTTP client whose requests are served by the mock Keycloak app."""
    client = httpx.AsyncClient(transport=httpx.ASGITransport(app=keycloak.app))
    yield client
    await client.aclose()


@pytest.fixture
def service(settings, idp_client):
    return LoginService(settings, http_client=idp_client, metrics=MetricsCollector("login-it", registry=CollectorRegistry()))


@pytest.fixture
async def login_api(service):
    """HTTP client for the login service itself."""
    client = httpx.AsyncClient(transport=httpx.ASGITransport(app=service.app), base_url="http://login")
    yield client
    await client.aclose()


class TestLoginFlow:
    """End-to-end login scenarios."""

    @pytest.mark.asyncio
    async def test_endpoints_match_discovery(self, idp_client, keycloak, settings):
        response = await idp_client.get(f"{keycloak.issuer}/.well-known/openid-configuration")

        discovery = response.json()
        assert discovery["issuer"] == settings.issuer
        assert discovery["token_endpoint"] == settings.token_endpoint
        assert discovery["jwks_uri"] == settings.jwks_endpoint

    @pytest.mark.asyncio
    async def test_login(self, service, keycloak):
        code = keycloak.issue_code("u1")

        principal = await service.orchestrator.authenticate(code)

        assert principal.subject == "u1"
        assert principal.preferred_username == "john.doe"
        assert principal.name == "John Doe"
        assert principal.authorities == frozenset({"ROLE_ADMIN"})
        assert principal.scope == frozenset({"openid", "profile", "email"})
        assert principal.access_token.startswith("mock-access-")
        assert keycloak.token_requests[0]["grant_type"] == "authorization_code"
        assert keycloak.jwks_requests == 1

    @pytest.mark.asyncio
    async def test_login_over_http(self, login_api, keycloak):
        response = await login_api.post("/auth/authenticate", json={"code": keycloak.issue_code("u2")})

        assert response.status_code == 200
        data = response.json()
        assert data["subject"] == "u2"
        assert data["authorities"] == ["ROLE_ACCESS-LOGIN_VIEWER", "ROLE_ANALYST", "ROLE_USER"]
        assert "access_token" not in data

    @pytest.mark.asyncio
    async def test_user_without_roles_gets_default_authority(self, service, keycloak):
        principal = await service.orchestrator.authenticate(keycloak.issue_code("u3"))

        assert principal.authorities == frozenset({"ROLE_USER"})

    @pytest.mark.asyncio
    async def test_code_cannot_be_replayed(self, service, login_api, keycloak):
        code = keycloak.issue_code("u1")
        await service.orchestrator.authenticate(code)

        with pytest.raises(AuthenticationFailed) as exc_info:
            await service.orchestrator.authenticate(code)
        assert exc_info.value.reason.kind is ExchangeErrorKind.PROVIDER_REJECTED
        assert exc_info.value.reason.oauth_error == "invalid_grant"

        response = await login_api.post("/auth/authenticate", json={"code": code})
        assert response.status_code == 401
        assert response.json()["details"]["oauth_error"] == "invalid_grant"

    @pytest.mark.asyncio
    async def test_redirect_uri_must_match_authorization_request(self, service, keycloak):
        code = keycloak.issue_code("u1", redirect_uri="http://localhost:8020/callback-a")

        with pytest.raises(AuthenticationFailed) as exc_info:
            await service.orchestrator.authenticate(code, "http://localhost:8020/callback-b")

        assert exc_info.value.reason.oauth_error == "invalid_grant"

    @pytest.mark.asyncio
    async def test_client_secret_basic(self, settings, idp_client, keycloak):
        settings = settings.model_copy(update={"token_endpoint_auth_method": "client_secret_basic"})
        service = LoginService(settings, http_client=idp_client, metrics=MetricsCollector("login-it", registry=CollectorRegistry()))

        principal = await service.orchestrator.authenticate(keycloak.issue_code("u1"))

        assert principal.subject == "u1"
        assert "client_secret" not in keycloak.token_requests[0]

    @pytest.mark.asyncio
    async def test_wrong_client_secret(self, settings, idp_client, keycloak):
        settings = settings.model_copy(update={"client_secret": SecretStr("wrong")})
        service = LoginService(settings, http_client=idp_client, metrics=MetricsCollector("login-it", registry=CollectorRegistry()))

        with pytest.raises(AuthenticationFailed) as exc_info:
            await service.orchestrator.authenticate(keycloak.issue_code("u1"))

        assert exc_info.value.reason.status == 401
        assert exc_info.value.reason.oauth_error == "invalid_client"

    @pytest.mark.asyncio
    async def test_key_rotation(self, service, keycloak):
        await service.orchestrator.authenticate(keycloak.issue_code("u1"))
        assert keycloak.jwks_requests == 1

        keycloak.rotate_keys()
        await service.orchestrator.authenticate(keycloak.issue_code("u1"))
        assert keycloak.jwks_requests == 2

        await service.orchestrator.authenticate(keycloak.issue_code("u2"))
        assert keycloak.jwks_requests == 2

    @pytest.mark.asyncio
    async def test_unreachable_provider(self, settings, keycloak):
        async def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(refuse)) as client:
            service = LoginService(settings, http_client=client, metrics=MetricsCollector("login-it", registry=CollectorRegistry()))
            async with httpx.AsyncClient(transport=httpx.ASGITransport(app=service.app), base_url="http://login") as api:
                response = await api.post("/auth/authenticate", json={"code": keycloak.issue_code("u1")})

        assert response.status_code == 503
        assert response.json()["details"]["kind"] == "unreachable"
