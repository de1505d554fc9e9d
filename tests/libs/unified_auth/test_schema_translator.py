"""Unit tests for claim-shape translation.

Tests cover:
- First-party and OAuth/Keycloak payloads to unified claims
- Role mapping policy (role list precedence, aliases, per-client roles)
- Unified claims back to first-party and Keycloak shapes
- Source detection for verified payloads
"""

import base64
import json

import pytest

from libs.unified_auth.claims import AuthMethod, AuthProvider, Role, TokenType, UnifiedClaims
from libs.unified_auth.exceptions import TranslationError
from libs.unified_auth.translator import (
    DEFAULT_OAUTH_SCOPE,
    SchemaTranslator,
    detect_source,
    first_party_to_unified,
    map_provider_role,
    oauth_to_unified,
    read_id_token_payload,
    translate_verified,
    unified_to_first_party_shape,
    unified_to_oauth_shape,
)


class TestFirstPartyTranslation:
    """Tests for first-party payloads."""

    def test_defaults_for_missing_fields(self):
        claims = first_party_to_unified({"sub": "u-1", "email": "u1@example.com"})

        assert claims.sub == "u-1"
        assert claims.role is Role.USER
        assert claims.auth_provider is AuthProvider.FIRST_PARTY
        assert claims.auth_method is AuthMethod.PASSWORD
        assert claims.permissions == []

    def test_preserves_auth_method_and_permissions(self):
        claims = first_party_to_unified(
            {
                "sub": "u-1",
                "role": "admin",
                "auth_method": "sso",
                "permissions": ["users:write"],
                "tenant_id": "t-9",
            }
        )

        assert claims.role is Role.ADMIN
        assert claims.auth_method is AuthMethod.SSO
        assert claims.permissions == ["users:write"]
        assert claims.tenant_id == "t-9"

    def test_unknown_role_becomes_user(self):
        assert first_party_to_unified({"sub": "u-1", "role": "owner"}).role is Role.USER

    def test_missing_subject_raises(self):
        with pytest.raises(TranslationError, match="subject"):
            first_party_to_unified({"email": "nobody@example.com"})

    def test_round_trip_through_first_party_shape(self, unified_admin):
        """first-party shape translates back to the same shared fields."""
        shape = unified_to_first_party_shape(unified_admin)

        assert "auth_provider" not in shape
        assert first_party_to_unified(shape).identity_fields() == unified_admin.identity_fields()


class TestOAuthTranslation:
    """Tests for OAuth/Keycloak payloads."""

    def test_keycloak_payload(self, keycloak_payload):
        claims = oauth_to_unified(keycloak_payload)

        assert claims.sub == "kc-user-1"
        assert claims.email == "kc@example.com"
        assert claims.username == "kcuser"
        assert claims.role is Role.ADMIN
        assert claims.auth_provider is AuthProvider.KEYCLOAK
        assert claims.auth_method is AuthMethod.OAUTH
        assert claims.session_id == "kc-session-7"
        assert claims.scope == "openid email"
        assert claims.type is TokenType.ACCESS

    def test_name_falls_back_to_preferred_username(self):
        claims = oauth_to_unified({"sub": "s", "preferred_username": "handle"})

        assert claims.name == "handle"
        assert claims.scope == DEFAULT_OAUTH_SCOPE

    def test_sid_used_when_no_session_state(self):
        assert oauth_to_unified({"sub": "s", "sid": "sid-1"}).session_id == "sid-1"

    def test_generic_oauth_provider(self):
        claims = oauth_to_unified({"sub": "s"}, AuthProvider.OAUTH)

        assert claims.auth_provider is AuthProvider.OAUTH

    def test_subject_falls_back_to_user_id(self):
        assert oauth_to_unified({"userId": "legacy-7"}).sub == "legacy-7"

    def test_missing_subject_raises(self):
        with pytest.raises(TranslationError):
            oauth_to_unified({"email": "x@example.com"})

    def test_token_response_reads_id_token(self):
        id_token = _unsigned_jwt({"sub": "from-id-token", "email": "id@example.com"})

        claims = oauth_to_unified({"access_token": "opaque", "id_token": id_token})

        assert claims.sub == "from-id-token"
        assert claims.email == "id@example.com"

    def test_unreadable_id_token_raises(self):
        with pytest.raises(TranslationError):
            read_id_token_payload("only.two")
        with pytest.raises(TranslationError):
            read_id_token_payload("a.!!!.c")
        with pytest.raises(TranslationError):
            read_id_token_payload(_unsigned_jwt(["not", "an", "object"]))

    def test_id_token_expiry_not_checked(self):
        id_token = _unsigned_jwt({"sub": "from-id-token", "exp": 1})

        assert read_id_token_payload(id_token) == {"sub": "from-id-token", "exp": 1}


class TestRoleMapping:
    """Tests for the provider role mapping policy."""

    @pytest.mark.parametrize(
        ("payload", "expected"),
        [
            ({"roles": ["viewer"]}, Role.USER),
            ({"roles": ["manager"]}, Role.ADMIN),
            ({"roles": ["Moderator"]}, Role.ADMIN),
            ({"roles": ["admin", "root"]}, Role.SUPER_ADMIN),
            ({"realm_access": {"roles": ["administrator"]}}, Role.SUPER_ADMIN),
            ({"resource_access": {"roles": ["admin"]}}, Role.ADMIN),
            ({}, Role.USER),
        ],
    )
    def test_aliases(self, payload, expected):
        assert map_provider_role(payload) is expected

    def test_first_non_empty_source_wins(self):
        """``roles`` shadows realm roles even when realm roles are stronger."""
        payload = {"roles": ["user"], "realm_access": {"roles": ["super_admin"]}}

        assert map_provider_role(payload) is Role.USER

    def test_empty_roles_fall_through_to_realm(self):
        payload = {"roles": [], "realm_access": {"roles": ["admin"]}}

        assert map_provider_role(payload) is Role.ADMIN

    def test_keycloak_per_client_roles_are_merged(self):
        payload = {
            "resource_access": {
                "account": {"roles": ["view-profile"]},
                "backend": {"roles": ["manager"]},
            }
        }

        assert map_provider_role(payload) is Role.ADMIN

    def test_scalar_role_used_without_role_lists(self):
        assert map_provider_role({"role": "super_admin"}) is Role.SUPER_ADMIN


class TestOAuthShape:
    """Tests for the Keycloak-compatible output shape."""

    def test_shape_fields(self, unified_admin):
        shape = unified_to_oauth_shape(unified_admin)

        assert shape["realm_access"] == {"roles": ["admin"]}
        assert shape["preferred_username"] == "admin1"
        assert shape["email_verified"] is True
        assert shape["sid"] == "sess-1"

    def test_role_survives_oauth_round_trip(self, unified_admin):
        back = oauth_to_unified(unified_to_oauth_shape(unified_admin))

        assert back.sub == unified_admin.sub
        assert back.email == unified_admin.email
        assert back.role is unified_admin.role
        assert back.session_id == unified_admin.session_id


class TestSourceDetection:
    """Tests for detect_source and translate_verified."""

    @pytest.mark.parametrize(
        ("payload", "expected"),
        [
            ({"sub": "s", "auth_provider": "custom"}, "custom"),
            ({"sub": "s", "auth_provider": "keycloak"}, "keycloak"),
            ({"sub": "s", "auth_provider": "oauth"}, "oauth"),
            ({"sub": "s", "auth_provider": "something-else"}, "custom"),
            ({"sub": "s", "auth_method": "password"}, "custom"),
            ({"sub": "s"}, "oauth"),
        ],
    )
    def test_detect_source(self, payload, expected):
        assert detect_source(payload) == expected

    def test_translate_verified_keeps_keycloak_identity(self, unified_admin):
        """A unified Keycloak token re-translates to the same identity."""
        payload = {**unified_admin.to_dict(), "auth_provider": "keycloak", "type": "access"}

        claims = translate_verified(payload)

        assert claims.auth_provider is AuthProvider.KEYCLOAK
        assert claims.role is Role.ADMIN
        assert claims.session_id == "sess-1"

    def test_translate_verified_first_party(self, unified_admin):
        claims = translate_verified({**unified_admin.to_dict(), "type": "refresh"})

        assert claims.auth_provider is AuthProvider.FIRST_PARTY
        assert claims.type is TokenType.REFRESH

    def test_facade_exposes_functions(self):
        assert SchemaTranslator.detect_source({"sub": "s"}) == "oauth"
        assert SchemaTranslator.map_provider_role({"roles": ["root"]}) is Role.SUPER_ADMIN


def _unsigned_jwt(payload) -> str:
    def segment(data) -> str:
        return base64.urlsafe_b64encode(json.dumps(data).encode()).rstrip(b"=").decode()

    return f"{segment({'alg': 'none'})}.{segment(payload)}.sig"


# Fixtures


@pytest.fixture()
def unified_admin():
    return UnifiedClaims(
        sub="admin-1",
        email="admin@example.com",
        name="Admin One",
        role=Role.ADMIN,
        auth_provider=AuthProvider.FIRST_PARTY,
        auth_method=AuthMethod.PASSWORD,
        username="admin1",
        session_id="sess-1",
        permissions=["users:write"],
    )


@pytest.fixture()
def keycloak_payload():
    return {
        "sub": "kc-user-1",
        "email": "kc@example.com",
        "name": "KC User",
        "preferred_username": "kcuser",
        "session_state": "kc-session-7",
        "scope": "openid email",
        "realm_access": {"roles": ["offline_access", "manager"]},
        "iss": "https://keycloak.example.com/realms/main",
        "aud": ["backend", "account"],
        "exp": 2000000000,
        "iat": 1999990000,
    }
