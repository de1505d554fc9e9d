"""Canonical claim set shared by every token source."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Role(str, Enum):
    """Supported roles, ordered by privilege."""

    USER = "user"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


class AuthProvider(str, Enum):
    """Token-producing source. The first-party authenticator is ``custom`` on the wire."""

    FIRST_PARTY = "custom"
    KEYCLOAK = "keycloak"
    OAUTH = "oauth"


class AuthMethod(str, Enum):
    PASSWORD = "password"
    OAUTH = "oauth"
    SSO = "sso"


class TokenType(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


# Fields stamped by the codec at signing time; never taken from callers.
INTERNAL_CLAIMS = frozenset({"exp", "iat", "jti", "type"})

# Fields stamped by the codec, compared loosely when checking sign/verify fidelity.
STAMPED_CLAIMS = frozenset({"iss", "aud", "iat", "jti", "exp", "type"})


def _coerce_role(value: Any) -> Role:
    if isinstance(value, Role):
        return value
    try:
        return Role(str(value))
    except ValueError:
        return Role.USER


def _coerce_enum(enum_cls: type[Enum], value: Any, default: Enum) -> Any:
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value))
    except ValueError:
        return default


@dataclass
class UnifiedClaims:
    """Provider-agnostic payload carried by every issued token.

    ``iss``, ``aud``, ``exp``, ``iat`` and ``jti`` are zero/empty until the
    codec stamps them. ``type`` is None for claims that have not been signed.
    """

    sub: str
    email: str = ""
    name: str = ""
    role: Role = Role.USER
    auth_provider: AuthProvider = AuthProvider.FIRST_PARTY
    auth_method: AuthMethod = AuthMethod.PASSWORD
    username: str | None = None
    session_id: str | None = None
    type: TokenType | None = None
    scope: str | None = None
    tenant_id: str | None = None
    permissions: list[str] = field(default_factory=list)
    iss: str = ""
    aud: str = ""
    exp: int = 0
    iat: int = 0
    jti: str = ""
    nbf: int | None = None

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> UnifiedClaims:
        """Build claims from a verified token payload or a first-party mapping."""
        token_type = payload.get("type")
        return cls(
            sub=str(payload.get("sub", "")),
            email=str(payload.get("email") or ""),
            name=str(payload.get("name") or ""),
            role=_coerce_role(payload.get("role", Role.USER)),
            auth_provider=_coerce_enum(
                AuthProvider, payload.get("auth_provider"), AuthProvider.FIRST_PARTY
            ),
            auth_method=_coerce_enum(AuthMethod, payload.get("auth_method"), AuthMethod.PASSWORD),
            username=payload.get("username"),
            session_id=payload.get("session_id"),
            type=_coerce_enum(TokenType, token_type, None) if token_type else None,
            scope=payload.get("scope"),
            tenant_id=payload.get("tenant_id"),
            permissions=list(payload.get("permissions") or []),
            iss=str(payload.get("iss") or ""),
            aud=_first_audience(payload.get("aud")),
            exp=int(payload.get("exp") or 0),
            iat=int(payload.get("iat") or 0),
            jti=str(payload.get("jti") or ""),
            nbf=int(payload["nbf"]) if payload.get("nbf") is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible token payload, omitting unset optionals."""
        payload: dict[str, Any] = {
            "sub": self.sub,
            "email": self.email,
            "name": self.name,
            "role": self.role.value,
            "auth_provider": self.auth_provider.value,
            "auth_method": self.auth_method.value,
            "permissions": list(self.permissions),
        }
        optional = {
            "username": self.username,
            "session_id": self.session_id,
            "type": self.type.value if self.type else None,
            "scope": self.scope,
            "tenant_id": self.tenant_id,
            "nbf": self.nbf,
            "iss": self.iss or None,
            "aud": self.aud or None,
            "exp": self.exp or None,
            "iat": self.iat or None,
            "jti": self.jti or None,
        }
        payload.update({key: value for key, value in optional.items() if value is not None})
        return payload

    def identity_fields(self) -> dict[str, Any]:
        """Payload without the fields the codec stamps."""
        return {
            key: value for key, value in self.to_dict().items() if key not in STAMPED_CLAIMS
        }


def _first_audience(aud: Any) -> str:
    if isinstance(aud, (list, tuple)):
        return str(aud[0]) if aud else ""
    return str(aud or "")


__all__ = [
    "AuthMethod",
    "AuthProvider",
    "INTERNAL_CLAIMS",
    "Role",
    "STAMPED_CLAIMS",
    "TokenType",
    "UnifiedClaims",
]
