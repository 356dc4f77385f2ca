"""
Shared pytest fixtures for the login service tests.
"""

import pytest
from prometheus_client import CollectorRegistry

from shared.metrics import MetricsCollector
from shared.test_helpers import (
    CLIENT_ID,
    CLIENT_SECRET,
    ISSUER,
    JWKS_ENDPOINT,
    REDIRECT_URI,
    TOKEN_ENDPOINT,
    FakeIdentityProvider,
    MockTokenGenerator,
    generate_signing_key,
)
from service_login.app.models import ClientConfig


@pytest.fixture(scope="session")
def signing_key():
    """Key currently published by the identity provider."""
    return generate_signing_key("key-a")


@pytest.fixture(scope="session")
def rotated_key():
    """Key the identity provider rotates to."""
    return generate_signing_key("key-b")


@pytest.fixture
def metrics():
    """Metrics collector on a private registry."""
    return MetricsCollector("login-test", registry=CollectorRegistry())


@pytest.fixture
def tokens(signing_key):
    return MockTokenGenerator(signing_key)


@pytest.fixture
def client_config():
    return ClientConfig(
        client_id=CLIENT_ID,
        client_secret=CLIENT_SECRET,
        token_endpoint=TOKEN_ENDPOINT,
        jwks_endpoint=JWKS_ENDPOINT,
        issuer=ISSUER,
        redirect_uri=REDIRECT_URI,
    )


@pytest.fixture
def idp(signing_key):
    """Fake token and JWKS endpoints publishing ``signing_key``."""
    return FakeIdentityProvider(signing_key)


@pytest.fixture
async def http_client(idp):
    client = idp.client()
    yield client
    await client.aclose()
