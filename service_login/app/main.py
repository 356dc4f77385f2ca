"""
Login service: authorization code to authenticated principal.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx
from fastapi import FastAPI
from pydantic import BaseModel

from shared.base_service import BaseService
from shared.config import LoginSettings, get_settings
from shared.errors import AuthenticationFailed, LoginException, SigningKeyError
from shared.metrics import MetricsCollector
from .authenticator import AuthenticationOrchestrator
from .authorities import KeycloakAuthorityExtractor
from .exchange import TokenExchanger
from .jwks import KeySetCache
from .models import AuthenticatedPrincipal, ClientConfig
from .validation import IdentityTokenValidator


class AuthenticateRequest(BaseModel):
    """Authorization code delivered to the redirect URI."""
    code: str
    redirect_uri: Optional[str] = None


class PrincipalResponse(BaseModel):
    """Principal summary; tokens stay with the session layer."""
    subject: str
    preferred_username: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None
    authorities: List[str]
    scope: List[str] = []
    expiry: Optional[datetime] = None

    @classmethod
    def from_principal(cls, principal: AuthenticatedPrincipal) -> "PrincipalResponse":
        return cls(
            subject=principal.subject,
            preferred_username=principal.preferred_username,
            email=principal.email,
            name=principal.name,
            authorities=sorted(principal.authorities),
            scope=sorted(principal.scope),
            expiry=principal.expiry,
        )


class LoginService(BaseService):
    """Login service implementation."""

    def __init__(
        self,
        settings: Optional[LoginSettings] = None,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        settings = settings or get_settings()
        super().__init__("login", settings, metrics)
        self.settings = settings
        self.client_config = ClientConfig.from_settings(settings)

        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=settings.http_timeout)

        self.key_set_cache = KeySetCache(self.http_client, timeout=settings.http_timeout, metrics=self.metrics)
        self.orchestrator = AuthenticationOrchestrator(
            TokenExchanger(self.http_client, timeout=settings.http_timeout, metrics=self.metrics),
            IdentityTokenValidator(
                self.key_set_cache,
                clock_skew_seconds=settings.clock_skew_seconds,
                verify_audience=settings.verify_audience,
                metrics=self.metrics,
            ),
            KeycloakAuthorityExtractor(settings.authority_prefix, settings.default_authority),
            self.client_config,
            metrics=self.metrics,
        )

        self._setup_login_routes()

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        if self.settings.jwks_warmup:
            await self.warmup()
        yield
        if self._owns_client:
            await self.http_client.aclose()

    async def warmup(self) -> None:
        """Load the JWKS eagerly so the first login does not pay for it."""
        try:
            await self.key_set_cache.refresh(self.client_config.jwks_endpoint)
        except SigningKeyError as e:
            self.logger.warning("JWKS warmup failed", kind=e.kind.value)

    def _status_for(self, exc: LoginException) -> int:
        if isinstance(exc, AuthenticationFailed):
            return 503 if exc.retryable else 401
        return super()._status_for(exc)

    async def _check_dependencies(self) -> Dict[str, Any]:
        key_set = self.key_set_cache.key_set(self.client_config.jwks_endpoint)
        return {
            "jwks": {
                "endpoint": self.client_config.jwks_endpoint,
                "cached_keys": len(key_set),
            }
        }

    def _setup_login_routes(self):
        """Set up login routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "login",
                "message": "Authorization code login service",
                "version": "1.0.0",
                "issuer": self.client_config.issuer,
            }

        @self.app.post("/auth/authenticate", response_model=PrincipalResponse)
        async def authenticate(request: AuthenticateRequest):
            """Exchange an authorization code and return the authenticated principal."""
            principal = await self.orchestrator.authenticate(request.code, request.redirect_uri)
            return PrincipalResponse.from_principal(principal)


def create_app(settings: Optional[LoginSettings] = None, **kwargs) -> FastAPI:
    """Create the login service application."""
    return LoginService(settings, **kwargs).app


if __name__ == "__main__":
    LoginService().run()
