"""
Maps identity provider role claims to normalized authorities.
"""

from abc import ABC, abstractmethod
from typing import FrozenSet, Set

from shared.logging import get_logger
from ..validation.claims import DecodedClaims

DEFAULT_PREFIX = "ROLE_"
DEFAULT_AUTHORITY = "ROLE_USER"


class AuthorityExtractor(ABC):
    """Turns validated claims into a set of authorities.

    Implementations never fail: a token without role data still yields at
    least one authority.
    """

    @abstractmethod
    def extract(self, claims: DecodedClaims) -> FrozenSet[str]:
        ...


class KeycloakAuthorityExtractor(AuthorityExtractor):
    """Reads Keycloak's ``realm_access`` and ``resource_access`` role claims.

    Realm roles become ``ROLE_<ROLE>``; client roles become
    ``ROLE_<CLIENT>_<ROLE>``. Names are upper-cased, nothing else is
    rewritten.
    """

    def __init__(self, prefix: str = DEFAULT_PREFIX, default_authority: str = DEFAULT_AUTHORITY) -> None:
        self.prefix = prefix
        self.default_authority = default_authority
        self.logger = get_logger("login.authorities")

    def extract(self, claims: DecodedClaims) -> FrozenSet[str]:
        authorities: Set[str] = set()

        for role in claims.get_nested_roles("realm_access") or []:
            authorities.add(f"{self.prefix}{role.upper()}")

        resource_access = claims.get_mapping("resource_access") or {}
        for client in resource_access:
            for role in claims.get_nested_roles("resource_access", client) or []:
                authorities.add(f"{self.prefix}{client.upper()}_{role.upper()}")

        if not authorities:
            self.logger.debug("No roles in claims, using default authority", sub=claims.get_string("sub"))
            authorities.add(self.default_authority)

        return frozenset(authorities)
