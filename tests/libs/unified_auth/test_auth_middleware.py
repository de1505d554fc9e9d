"""Unit tests for AuthMiddleware and the FastAPI dependency adapters.

Tests cover:
- Token extraction (Bearer header before cookie)
- 401 outcomes for missing/invalid tokens and dead sessions
- 403 outcomes for role and permission failures
- Role hierarchy helpers
- require_auth / optional_auth / require_role / require_permission on a FastAPI app
"""

import pytest
from fastapi import Depends, FastAPI, Request
from fastapi.testclient import TestClient

from libs.unified_auth.claims import AuthProvider, Role, TokenType, UnifiedClaims
from libs.unified_auth.key_manager import KeyManager
from libs.unified_auth.middleware import (
    AuthMiddleware,
    AuthRequirements,
    has_permission,
    has_required_role,
    optional_auth,
    require_admin,
    require_auth,
    require_permission,
    require_super_admin,
    role_level,
)
from libs.unified_auth.session import SessionManager
from libs.unified_auth.session_store import RedisSessionStore
from libs.unified_auth.token_codec import TokenCodec


class TestRoleHelpers:
    """Tests for the role hierarchy."""

    @pytest.mark.parametrize(
        ("role", "required", "expected"),
        [
            (Role.USER, Role.USER, True),
            (Role.USER, Role.ADMIN, False),
            (Role.ADMIN, Role.ADMIN, True),
            (Role.SUPER_ADMIN, Role.ADMIN, True),
            (Role.ADMIN, Role.SUPER_ADMIN, False),
            ("owner", Role.ADMIN, False),
        ],
    )
    def test_has_required_role(self, role, required, expected):
        assert has_required_role(role, required) is expected

    def test_unknown_role_ranks_as_user(self):
        assert role_level("owner") == 0
        assert role_level(None) == 0

    def test_has_permission_is_exact(self):
        claims = UnifiedClaims(sub="s", permissions=["reports:read"])

        assert has_permission(claims, "reports:read") is True
        assert has_permission(claims, "reports:write") is False
        assert has_permission(claims, "reports") is False


class TestTokenExtraction:
    """Tests for extract_token."""

    def test_bearer_header(self, middleware):
        assert middleware.extract_token({"Authorization": "Bearer abc"}, {}) == "abc"

    def test_header_beats_cookie(self, middleware):
        token = middleware.extract_token(
            {"authorization": "Bearer from-header"}, {"auth-token": "from-cookie"}
        )

        assert token == "from-header"

    def test_cookie_fallback(self, middleware):
        assert middleware.extract_token({}, {"auth-token": "from-cookie"}) == "from-cookie"

    def test_non_bearer_scheme_ignored(self, middleware):
        assert middleware.extract_token({"Authorization": "Basic dXNlcjpwYXNz"}, {}) is None

    def test_custom_cookie_name(self, session_manager):
        middleware = AuthMiddleware(session_manager, cookie_name="sid")

        assert middleware.extract_token({}, {"sid": "x", "auth-token": "y"}) == "x"


class TestAuthenticate:
    """Tests for authenticate outcomes."""

    def test_authenticated_request(self, middleware, issue):
        tokens = issue(Role.ADMIN)

        outcome = middleware.authenticate(_bearer(tokens.access_token), {})

        assert outcome.ok is True
        assert outcome.claims.sub == "user-1"
        assert outcome.principal.session_id == outcome.session.id

    def test_cookie_authenticated_request(self, middleware, issue):
        tokens = issue(Role.USER)

        outcome = middleware.authenticate({}, {"auth-token": tokens.access_token})

        assert outcome.ok is True

    def test_missing_token(self, middleware):
        outcome = middleware.authenticate({}, {})

        assert outcome.ok is False
        assert outcome.status_code == 401
        assert outcome.error == "Authentication failed"

    def test_invalid_token_body_is_generic(self, middleware):
        outcome = middleware.authenticate(_bearer("garbage"), {})

        assert outcome.status_code == 401
        assert outcome.to_error_body() == {
            "error": "Authentication failed",
            "message": "Invalid or expired credentials",
        }
        assert outcome.reason == "Invalid token"

    def test_refresh_token_on_access_route(self, middleware, issue):
        tokens = issue(Role.USER)

        outcome = middleware.authenticate(_bearer(tokens.refresh_token), {})

        assert outcome.status_code == 401
        assert outcome.error == "Invalid token type"

    def test_revoked_session(self, middleware, session_manager, issue):
        tokens = issue(Role.USER)
        session_manager.logout(tokens.refresh_token)

        outcome = middleware.authenticate(_bearer(tokens.access_token), {})

        assert outcome.status_code == 401
        assert outcome.reason == "Session inactive or expired"

    def test_insufficient_role(self, middleware, issue):
        tokens = issue(Role.USER)

        outcome = middleware.authenticate(
            _bearer(tokens.access_token), {}, AuthRequirements(required_role=Role.ADMIN)
        )

        assert outcome.status_code == 403
        assert outcome.error == "Insufficient permissions"
        assert outcome.principal is None

    def test_super_admin_satisfies_admin(self, middleware, issue):
        tokens = issue(Role.SUPER_ADMIN)

        outcome = middleware.authenticate(
            _bearer(tokens.access_token), {}, AuthRequirements(required_role=Role.ADMIN)
        )

        assert outcome.ok is True

    def test_missing_permission(self, middleware, issue):
        tokens = issue(Role.SUPER_ADMIN)

        outcome = middleware.authenticate(
            _bearer(tokens.access_token),
            {},
            AuthRequirements(required_permission="users:delete"),
        )

        assert outcome.status_code == 403

    def test_refresh_requirement_accepts_refresh_token(self, middleware, issue):
        tokens = issue(Role.USER)

        outcome = middleware.authenticate(
            _bearer(tokens.refresh_token), {}, AuthRequirements(token_type=TokenType.REFRESH)
        )

        assert outcome.ok is True


class TestFastAPIDependencies:
    """Tests for the dependency factories on a real FastAPI app."""

    def test_require_auth_attaches_principal(self, client, issue):
        tokens = issue(Role.USER)

        response = client.get("/private", headers=_bearer(tokens.access_token))

        assert response.status_code == 200
        assert response.json() == {"user_id": "user-1", "state_user": "user-1"}

    def test_require_auth_rejects_anonymous(self, client):
        response = client.get("/private")

        assert response.status_code == 401
        assert response.json()["detail"]["error"] == "Authentication failed"

    def test_require_admin(self, client, issue):
        assert client.get("/admin", headers=_bearer(issue(Role.USER).access_token)).status_code == 403
        assert client.get("/admin", headers=_bearer(issue(Role.ADMIN).access_token)).status_code == 200

    def test_require_super_admin(self, client, issue):
        response = client.get("/root", headers=_bearer(issue(Role.ADMIN).access_token))

        assert response.status_code == 403

    def test_require_permission(self, client, issue):
        response = client.get("/reports", headers=_bearer(issue(Role.USER).access_token))

        assert response.status_code == 200

    def test_optional_auth(self, client, issue):
        anonymous = client.get("/maybe")
        invalid = client.get("/maybe", headers=_bearer("garbage"))
        known = client.get("/maybe", headers=_bearer(issue(Role.USER).access_token))

        assert anonymous.json() == {"user_id": None}
        assert invalid.json() == {"user_id": None}
        assert known.json() == {"user_id": "user-1"}


def _bearer(token):
    return {"Authorization": f"Bearer {token}"}


# Fixtures


@pytest.fixture()
def session_manager(rs256_config, fake_redis):
    codec = TokenCodec(rs256_config, KeyManager(rs256_config))
    return SessionManager(RedisSessionStore(fake_redis, rs256_config), codec, rs256_config)


@pytest.fixture()
def middleware(session_manager):
    return AuthMiddleware(session_manager)


@pytest.fixture()
def issue(session_manager):
    """Issue a session for user-1 with the given role; returns the token pair."""

    def _issue(role):
        claims = UnifiedClaims(
            sub="user-1",
            email="user1@example.com",
            role=role,
            auth_provider=AuthProvider.FIRST_PARTY,
            permissions=["reports:read"],
        )
        return session_manager.issue(claims).tokens

    return _issue


@pytest.fixture()
def client(middleware):
    app = FastAPI()
    app.state.auth_middleware = middleware

    @app.get("/private")
    def private(request: Request, principal=Depends(require_auth())):
        return {"user_id": principal.user_id, "state_user": request.state.user.user_id}

    @app.get("/admin")
    def admin(principal=Depends(require_admin)):
        return {"user_id": principal.user_id}

    @app.get("/root")
    def root(principal=Depends(require_super_admin)):
        return {"user_id": principal.user_id}

    @app.get("/reports")
    def reports(principal=Depends(require_permission("reports:read"))):
        return {"user_id": principal.user_id}

    @app.get("/maybe")
    def maybe(principal=Depends(optional_auth())):
        return {"user_id": principal.user_id if principal else None}

    return TestClient(app)
