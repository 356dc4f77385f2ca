"""
Data model of the authorization-code login pipeline.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, FrozenSet, Mapping, Optional, TYPE_CHECKING

from shared.config import LoginSettings

if TYPE_CHECKING:
    from .validation.claims import DecodedClaims


@dataclass(frozen=True)
class ClientConfig:
    """Relying-party registration with the identity provider."""

    client_id: str
    client_secret: str = field(repr=False)
    token_endpoint: str
    jwks_endpoint: str
    issuer: str
    redirect_uri: str
    token_endpoint_auth_method: str = "client_secret_post"

    @classmethod
    def from_settings(cls, settings: LoginSettings) -> "ClientConfig":
        return cls(
            client_id=settings.client_id,
            client_secret=settings.client_secret.get_secret_value(),
            token_endpoint=settings.token_endpoint,
            jwks_endpoint=settings.jwks_endpoint,
            issuer=settings.issuer,
            redirect_uri=settings.redirect_uri,
            token_endpoint_auth_method=settings.token_endpoint_auth_method,
        )


@dataclass(frozen=True)
class TokenSet:
    """Tokens returned by the token endpoint for one authorization code."""

    access_token: str = field(repr=False)
    token_type: str
    id_token: Optional[str] = field(default=None, repr=False)
    refresh_token: Optional[str] = field(default=None, repr=False)
    expires_in: Optional[int] = None
    scope: FrozenSet[str] = frozenset()


@dataclass(frozen=True)
class SigningKey:
    """A public signing key published by the identity provider."""

    key_id: str
    algorithm: str
    key: Any = field(repr=False, compare=False)
    jwk: Mapping[str, Any] = field(default_factory=dict, repr=False, compare=False)


# A key set is swapped wholesale; the mapping itself is read-only.
KeySet = Mapping[str, SigningKey]
EMPTY_KEY_SET: KeySet = MappingProxyType({})


@dataclass(frozen=True)
class AuthenticatedPrincipal:
    """Identity produced by a successful login, handed to the session layer."""

    subject: str
    preferred_username: Optional[str]
    email: Optional[str]
    authorities: FrozenSet[str]
    raw_id_token: str = field(repr=False)
    access_token: str = field(repr=False)
    refresh_token: Optional[str] = field(repr=False)
    expiry: Optional[datetime]
    name: Optional[str] = None
    scope: FrozenSet[str] = frozenset()
    claims: Optional["DecodedClaims"] = field(default=None, repr=False, compare=False)

    @property
    def display_name(self) -> str:
        return self.preferred_username or self.subject

    def has_authority(self, authority: str) -> bool:
        return authority in self.authorities
