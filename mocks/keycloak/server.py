"""
Mock Keycloak server issuing authorization codes, RS256 ID tokens and JWKS.
"""

import base64
import secrets
import time
from typing import Dict, Any, Optional, List
from urllib.parse import parse_qs

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from shared.logging import get_logger
from shared.test_helpers import MockTokenGenerator, SigningKeyPair, generate_signing_key, jwks_document


class MockKeycloakServer:
    """Mock Keycloak realm with one confidential client."""

    def __init__(
        self,
        base_url: str = "http://keycloak.test",
        realm: str = "access",
        client_id: str = "access-login",
        client_secret: str = "mock-client-secret",
        redirect_uri: str = "http://localhost:8020/login/oauth2/code/keycloak",
    ):
        self.logger = get_logger("mock.keycloak")
        self.app = FastAPI(title="Mock Keycloak", version="1.0.0")

        self.realm = realm
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.issuer = f"{base_url}/realms/{realm}"
        self.token_endpoint = f"{self.issuer}/protocol/openid-connect/token"
        self.jwks_endpoint = f"{self.issuer}/protocol/openid-connect/certs"

        self.users: Dict[str, Dict[str, Any]] = {
            "u1": {
                "preferred_username": "john.doe",
                "email": "john.doe@example.com",
                "name": "John Doe",
                "realm_roles": ["admin"],
                "resource_roles": {},
            },
            "u2": {
                "preferred_username": "jane.smith",
                "email": "jane.smith@example.com",
                "name": "Jane Smith",
                "realm_roles": ["user", "analyst"],
                "resource_roles": {client_id: ["viewer"]},
            },
            "u3": {
                "preferred_username": "guest",
                "email": "guest@example.com",
                "name": "Guest",
                "realm_roles": None,
                "resource_roles": None,
            },
        }

        self.signing_key = generate_signing_key()
        self.published_keys: List[SigningKeyPair] = [self.signing_key]
        self.tokens = MockTokenGenerator(self.signing_key, issuer=self.issuer, client_id=client_id)

        # code -> (subject, redirect_uri)
        self._codes: Dict[str, Dict[str, str]] = {}
        self.token_requests: List[Dict[str, str]] = []
        self.jwks_requests = 0

        self._setup_routes()

    def issue_code(self, subject: str, redirect_uri: Optional[str] = None) -> str:
        """Simulate a browser login and return the authorization code."""
        if subject not in self.users:
            raise KeyError(subject)
        code = secrets.token_urlsafe(16)
        self._codes[code] = {"sub": subject, "redirect_uri": redirect_uri or self.redirect_uri}
        return code

    def rotate_keys(self, keep_previous: bool = True) -> SigningKeyPair:
        """Start signing with a new key, optionally still publishing the old one."""
        new_key = generate_signing_key()
        self.published_keys = ([*self.published_keys] if keep_previous else []) + [new_key]
        self.signing_key = new_key
        self.tokens.signing_key = new_key
        return new_key

    def _setup_routes(self):
        """Set up mock Keycloak routes."""

        @self.app.get("/realms/{realm}/.well-known/openid-configuration")
        async def openid_configuration(realm: str):
            """OpenID Connect configuration."""
            self._check_realm(realm)
            return {
                "issuer": self.issuer,
                "authorization_endpoint": f"{self.issuer}/protocol/openid-connect/auth",
                "token_endpoint": self.token_endpoint,
                "jwks_uri": self.jwks_endpoint,
                "grant_types_supported": ["authorization_code", "refresh_token"],
                "response_types_supported": ["code"],
                "subject_types_supported": ["public"],
                "id_token_signing_alg_values_supported": ["RS256"],
                "token_endpoint_auth_methods_supported": ["client_secret_post", "client_secret_basic"],
                "scopes_supported": ["openid", "profile", "email"]
            }

        @self.app.get("/realms/{realm}/protocol/openid-connect/certs")
        async def jwks_endpoint(realm: str):
            """JWKS endpoint."""
            self._check_realm(realm)
            self.jwks_requests += 1
            return jwks_document(*self.published_keys)

        @self.app.post("/realms/{realm}/protocol/openid-connect/token")
        async def token_endpoint(realm: str, request: Request):
            """Token endpoint for the authorization code grant."""
            self._check_realm(realm)
            body = await request.body()
            form = {key: values[0] for key, values in parse_qs(body.decode()).items()}
            self.token_requests.append(form)

            client_id, client_secret = self._client_credentials(request, form)
            if client_id != self.client_id or client_secret != self.client_secret:
                return self._oauth_error(401, "invalid_client", "Invalid client credentials")

            if form.get("grant_type") != "authorization_code":
                return self._oauth_error(400, "unsupported_grant_type", "Unsupported grant type")

            # Codes are single use, even when the redemption fails
            issued = self._codes.pop(form.get("code", ""), None)
            if issued is None:
                self.logger.info("Rejecting unknown or used authorization code")
                return self._oauth_error(400, "invalid_grant", "Code not valid")
            if form.get("redirect_uri") != issued["redirect_uri"]:
                return self._oauth_error(400, "invalid_grant", "Incorrect redirect_uri")

            return self._token_response(issued["sub"])

    def _check_realm(self, realm: str) -> None:
        if realm != self.realm:
            raise HTTPException(status_code=404, detail="Realm not found")

    @staticmethod
    def _client_credentials(request: Request, form: Dict[str, str]):
        authorization = request.headers.get("Authorization", "")
        if authorization.startswith("Basic "):
            decoded = base64.b64decode(authorization[6:]).decode()
            client_id, _, client_secret = decoded.partition(":")
            return client_id, client_secret
        return form.get("client_id"), form.get("client_secret")

    @staticmethod
    def _oauth_error(status_code: int, error: str, description: str) -> JSONResponse:
        return JSONResponse(status_code=status_code, content={"error": error, "error_description": description})

    def _token_response(self, subject: str) -> Dict[str, Any]:
        user = self.users[subject]
        extra = {
            key: user[key]
            for key in ("preferred_username", "email", "name")
            if user.get(key) is not None
        }
        id_token = self.tokens.id_token(
            subject,
            realm_roles=user["realm_roles"],
            resource_roles=user["resource_roles"],
            **extra,
        )
        return {
            "access_token": f"mock-access-{secrets.token_urlsafe(24)}",
            "expires_in": 300,
            "refresh_expires_in": 1800,
            "refresh_token": f"mock-refresh-{secrets.token_urlsafe(24)}",
            "token_type": "Bearer",
            "id_token": id_token,
            "not-before-policy": 0,
            "session_state": secrets.token_hex(8),
            "scope": "openid profile email",
            "issued_at": int(time.time()),
        }


def create_app():
    """Create mock Keycloak application."""
    server = MockKeycloakServer()
    return server.app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=8080)
