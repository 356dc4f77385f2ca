"""
Shared configuration management for the login service.
"""

from typing import Literal

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

KEYCLOAK_TOKEN_PATH = "/protocol/openid-connect/token"
KEYCLOAK_CERTS_PATH = "/protocol/openid-connect/certs"


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="ACCESS_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = "local"
    log_level: str = "info"


class LoginSettings(BaseConfig):
    """Relying-party settings for the authorization-code login flow."""

    issuer: str = "http://localhost:8080/realms/access"
    client_id: str = "access-login"
    client_secret: SecretStr = SecretStr("")
    redirect_uri: str = "http://localhost:8020/login/oauth2/code/keycloak"

    # Derived from the issuer (Keycloak layout) when left empty
    token_endpoint: str = ""
    jwks_endpoint: str = ""

    token_endpoint_auth_method: Literal["client_secret_post", "client_secret_basic"] = "client_secret_post"
    clock_skew_seconds: int = Field(default=60, ge=0)
    http_timeout: float = Field(default=10.0, gt=0)
    verify_audience: bool = True
    jwks_warmup: bool = False

    authority_prefix: str = "ROLE_"
    default_authority: str = "ROLE_USER"

    @model_validator(mode="after")
    def _derive_endpoints(self) -> "LoginSettings":
        issuer = self.issuer.rstrip("/")
        if not self.token_endpoint:
            self.token_endpoint = issuer + KEYCLOAK_TOKEN_PATH
        if not self.jwks_endpoint:
            self.jwks_endpoint = issuer + KEYCLOAK_CERTS_PATH
        return self


def get_settings(**overrides) -> LoginSettings:
    """Load login settings from the environment, applying explicit overrides."""
    return LoginSettings(**overrides)
