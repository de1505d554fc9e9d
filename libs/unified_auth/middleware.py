"""Per-request authentication and role/permission enforcement.

The core (``AuthMiddleware.authenticate``) works on plain header and cookie
mappings. FastAPI dependency factories at the bottom of this module adapt it
to routes; they expect the app to expose the middleware as
``app.state.auth_middleware``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from fastapi import HTTPException, Request, status

from libs.unified_auth.claims import Role, TokenType, UnifiedClaims
from libs.unified_auth.metrics import auth_requests_total
from libs.unified_auth.session import INVALID_TOKEN_TYPE, SessionManager
from libs.unified_auth.session_store import Session

logger = logging.getLogger(__name__)

ROLE_LEVELS: dict[Role, int] = {Role.USER: 0, Role.ADMIN: 1, Role.SUPER_ADMIN: 2}

AUTHENTICATION_FAILED = "Authentication failed"
INSUFFICIENT_PERMISSIONS = "Insufficient permissions"


def role_level(role: Role | str | None) -> int:
    """Numeric rank of a role; unknown roles rank as ``user``."""
    if isinstance(role, Role):
        return ROLE_LEVELS[role]
    try:
        return ROLE_LEVELS[Role(str(role))]
    except ValueError:
        return 0


def has_required_role(role: Role | str | None, required: Role | str) -> bool:
    return role_level(role) >= role_level(required)


def has_permission(claims: UnifiedClaims, permission: str) -> bool:
    """Exact membership in ``claims.permissions`` (default-deny)."""
    return permission in claims.permissions


@dataclass(frozen=True)
class AuthRequirements:
    token_type: TokenType | None = TokenType.ACCESS
    required_role: Role | None = None
    required_permission: str | None = None


@dataclass(frozen=True)
class AuthenticatedPrincipal:
    """Identity attached to ``request.state.user`` after authentication."""

    user_id: str
    email: str
    name: str
    role: Role
    auth_provider: str
    session_id: str | None
    claims: UnifiedClaims = field(repr=False)

    @classmethod
    def from_claims(cls, claims: UnifiedClaims, session: Session | None = None) -> AuthenticatedPrincipal:
        return cls(
            user_id=claims.sub,
            email=claims.email,
            name=claims.name,
            role=claims.role,
            auth_provider=claims.auth_provider.value,
            session_id=session.id if session else claims.session_id,
            claims=claims,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.user_id,
            "email": self.email,
            "name": self.name,
            "role": self.role.value,
            "authProvider": self.auth_provider,
            "sessionId": self.session_id,
            "permissions": list(self.claims.permissions),
        }


@dataclass(frozen=True)
class AuthOutcome:
    """Authentication decision for one request.

    ``error`` is the client-facing label and ``message`` a generic
    explanation; ``reason`` is the internal cause, for logs only.
    """

    ok: bool
    status_code: int = status.HTTP_200_OK
    error: str | None = None
    message: str | None = None
    reason: str | None = None
    claims: UnifiedClaims | None = None
    session: Session | None = None

    @property
    def principal(self) -> AuthenticatedPrincipal | None:
        if not self.ok or self.claims is None:
            return None
        return AuthenticatedPrincipal.from_claims(self.claims, self.session)

    def to_error_body(self) -> dict[str, str | None]:
        return {"error": self.error, "message": self.message}


class AuthMiddleware:
    """Extracts the request token and delegates to SessionManager.validate."""

    def __init__(self, session_manager: SessionManager, cookie_name: str = "auth-token") -> None:
        self.sessions = session_manager
        self.cookie_name = cookie_name

    def extract_token(self, headers: Mapping[str, str], cookies: Mapping[str, str]) -> str | None:
        """Bearer header first, then the auth cookie. The first carrier found wins."""
        authorization = next(
            (value for key, value in headers.items() if key.lower() == "authorization"), None
        )
        if authorization:
            scheme, _, credentials = authorization.partition(" ")
            if scheme.lower() == "bearer" and credentials.strip():
                return credentials.strip()
        cookie = cookies.get(self.cookie_name)
        return cookie or None

    def authenticate(
        self,
        headers: Mapping[str, str],
        cookies: Mapping[str, str],
        requirements: AuthRequirements | None = None,
    ) -> AuthOutcome:
        """Authenticate a request and enforce ``requirements``.

        Returns 401 outcomes for missing/invalid tokens and dead sessions,
        403 outcomes for role or permission failures.

        Raises:
            SessionStoreError: Store I/O failure
        """
        requirements = requirements or AuthRequirements()
        token = self.extract_token(headers, cookies)
        if token is None:
            return self._deny(
                status.HTTP_401_UNAUTHORIZED,
                AUTHENTICATION_FAILED,
                "Authentication required",
                "missing_token",
            )

        validation = self.sessions.validate(token, requirements.token_type)
        if not validation.valid or validation.claims is None:
            if validation.error == INVALID_TOKEN_TYPE:
                return self._deny(
                    status.HTTP_401_UNAUTHORIZED,
                    INVALID_TOKEN_TYPE,
                    f"Expected {requirements.token_type.value if requirements.token_type else 'a valid'} token",
                    validation.error,
                )
            return self._deny(
                status.HTTP_401_UNAUTHORIZED,
                AUTHENTICATION_FAILED,
                "Invalid or expired credentials",
                validation.error,
            )

        claims = validation.claims
        if requirements.required_role is not None and not has_required_role(
            claims.role, requirements.required_role
        ):
            return self._deny(
                status.HTTP_403_FORBIDDEN,
                INSUFFICIENT_PERMISSIONS,
                f"Requires {requirements.required_role.value} role",
                f"role {claims.role.value} below {requirements.required_role.value}",
                claims,
            )

        if requirements.required_permission is not None and not has_permission(
            claims, requirements.required_permission
        ):
            return self._deny(
                status.HTTP_403_FORBIDDEN,
                INSUFFICIENT_PERMISSIONS,
                f"Requires {requirements.required_permission} permission",
                "permission missing",
                claims,
            )

        auth_requests_total.labels(result="authenticated").inc()
        return AuthOutcome(ok=True, claims=claims, session=validation.session)

    def _deny(
        self,
        status_code: int,
        error: str,
        message: str,
        reason: str | None,
        claims: UnifiedClaims | None = None,
    ) -> AuthOutcome:
        auth_requests_total.labels(result=str(status_code)).inc()
        logger.warning(
            "request_authentication_denied",
            extra={
                "status_code": status_code,
                "error": error,
                "reason": reason,
                "user_id": claims.sub if claims else None,
            },
        )
        return AuthOutcome(
            ok=False, status_code=status_code, error=error, message=message, reason=reason
        )


# ----------------------------------------------------------------------
# FastAPI adapters
# ----------------------------------------------------------------------


def _middleware(request: Request) -> AuthMiddleware:
    return request.app.state.auth_middleware  # type: ignore[no-any-return]


def require_auth(
    token_type: TokenType | None = TokenType.ACCESS,
    required_role: Role | None = None,
    required_permission: str | None = None,
) -> Callable[[Request], AuthenticatedPrincipal]:
    """Dependency factory denying unauthenticated or under-privileged requests.

    On success the principal is stored on ``request.state.user`` and returned.
    The dependency is synchronous so FastAPI runs the blocking store lookup
    in its threadpool.
    """
    requirements = AuthRequirements(token_type, required_role, required_permission)

    def dependency(request: Request) -> AuthenticatedPrincipal:
        outcome = _middleware(request).authenticate(
            request.headers, request.cookies, requirements
        )
        principal = outcome.principal
        if principal is None:
            raise HTTPException(status_code=outcome.status_code, detail=outcome.to_error_body())
        request.state.user = principal
        request.state.session = outcome.session
        return principal

    return dependency


def optional_auth() -> Callable[[Request], AuthenticatedPrincipal | None]:
    """Dependency factory attaching identity when present, never denying."""

    def dependency(request: Request) -> AuthenticatedPrincipal | None:
        middleware = _middleware(request)
        if middleware.extract_token(request.headers, request.cookies) is None:
            return None
        outcome = middleware.authenticate(request.headers, request.cookies)
        principal = outcome.principal
        if principal is not None:
            request.state.user = principal
            request.state.session = outcome.session
        return principal

    return dependency


def require_role(role: Role) -> Callable[[Request], AuthenticatedPrincipal]:
    return require_auth(required_role=role)


def require_permission(permission: str) -> Callable[[Request], AuthenticatedPrincipal]:
    return require_auth(required_permission=permission)


require_admin = require_role(Role.ADMIN)
require_super_admin = require_role(Role.SUPER_ADMIN)


__all__ = [
    "AuthMiddleware",
    "AuthOutcome",
    "AuthRequirements",
    "AuthenticatedPrincipal",
    "ROLE_LEVELS",
    "has_permission",
    "has_required_role",
    "optional_auth",
    "require_admin",
    "require_auth",
    "require_permission",
    "require_role",
    "require_super_admin",
]
