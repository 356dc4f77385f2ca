"""
Unit tests for KeycloakAuthorityExtractor.
"""

import pytest

from service_login.app.authorities import AuthorityExtractor, KeycloakAuthorityExtractor
from service_login.app.validation import DecodedClaims


def decoded(**claims):
    return DecodedClaims._from_validated({"sub": "u1", **claims})


class TestKeycloakAuthorityExtractor:
    """Test cases for KeycloakAuthorityExtractor."""

    @pytest.fixture
    def extractor(self):
        return KeycloakAuthorityExtractor()

    def test_no_roles_yields_default(self, extractor):
        assert extractor.extract(decoded()) == frozenset({"ROLE_USER"})

    def test_empty_roles_yield_default(self, extractor):
        claims = decoded(realm_access={"roles": []}, resource_access={"access-login": {"roles": []}})

        assert extractor.extract(claims) == frozenset({"ROLE_USER"})

    def test_realm_roles(self, extractor):
        claims = decoded(realm_access={"roles": ["admin", "Analyst"]})

        assert extractor.extract(claims) == frozenset({"ROLE_ADMIN", "ROLE_ANALYST"})

    def test_resource_roles(self, extractor):
        claims = decoded(resource_access={"my-client": {"roles": ["viewer"]}, "billing": {"roles": ["edit"]}})

        assert extractor.extract(claims) == frozenset({"ROLE_MY-CLIENT_VIEWER", "ROLE_BILLING_EDIT"})

    def test_realm_and_resource_roles_combined(self, extractor):
        claims = decoded(
            realm_access={"roles": ["admin", "admin"]},
            resource_access={"access-login": {"roles": ["viewer"]}},
        )

        assert extractor.extract(claims) == frozenset({"ROLE_ADMIN", "ROLE_ACCESS-LOGIN_VIEWER"})

    def test_malformed_role_claims_are_ignored(self, extractor):
        claims = decoded(
            realm_access={"roles": "admin"},
            resource_access={"good": {"roles": ["reader", 42]}, "bad": ["x"], "worse": {"roles": None}},
        )

        assert extractor.extract(claims) == frozenset({"ROLE_GOOD_READER"})

    def test_resource_access_not_an_object(self, extractor):
        claims = decoded(realm_access={"roles": ["admin"]}, resource_access=["nope"])

        assert extractor.extract(claims) == frozenset({"ROLE_ADMIN"})

    def test_custom_prefix_and_default(self):
        extractor = KeycloakAuthorityExtractor(prefix="SCOPE_", default_authority="SCOPE_GUEST")

        assert extractor.extract(decoded()) == frozenset({"SCOPE_GUEST"})
        assert extractor.extract(decoded(realm_access={"roles": ["admin"]})) == frozenset({"SCOPE_ADMIN"})


def test_custom_extractor_interface():
    """Other providers plug in by implementing ``extract``."""

    class GroupsExtractor(AuthorityExtractor):
        def extract(self, claims):
            return frozenset(f"GROUP_{group}" for group in claims.get_string_list("groups") or [])

    assert GroupsExtractor().extract(decoded(groups=["ops"])) == frozenset({"GROUP_ops"})

    with pytest.raises(TypeError):
        AuthorityExtractor()
