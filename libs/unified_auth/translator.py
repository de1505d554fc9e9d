"""Claim-shape translation between first-party, OAuth/Keycloak and unified payloads.

All functions are pure. They raise TranslationError only when the source is
structurally unusable (no subject, unreadable ID token); every other missing
field gets a documented default.

Role mapping policy for provider payloads:

1. The role list is the first non-empty of ``roles``, ``realm_access.roles``,
   ``resource_access.roles``. ``resource_access`` may also be a Keycloak
   per-client mapping (``{client: {"roles": [...]}}``); client roles are then
   merged in client order.
2. Any super-admin alias (``super_admin``, ``administrator``, ``root``) maps to
   ``super_admin``; otherwise any admin alias (``admin``, ``manager``,
   ``moderator``) maps to ``admin``; otherwise ``user``.
3. A payload with no role list at all but a scalar ``role`` (an already
   unified token) is mapped through the same aliases.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import jwt

from libs.unified_auth.claims import AuthMethod, AuthProvider, Role, TokenType, UnifiedClaims
from libs.unified_auth.exceptions import TranslationError

logger = logging.getLogger(__name__)

SUPER_ADMIN_ALIASES = frozenset({"super_admin", "administrator", "root"})
ADMIN_ALIASES = frozenset({"admin", "manager", "moderator"})
DEFAULT_OAUTH_SCOPE = "openid email profile"

# Source labels returned by detect_source
SOURCE_FIRST_PARTY = AuthProvider.FIRST_PARTY.value
SOURCE_KEYCLOAK = AuthProvider.KEYCLOAK.value
SOURCE_OAUTH = AuthProvider.OAUTH.value


def _as_mapping(claims: UnifiedClaims | Mapping[str, Any]) -> dict[str, Any]:
    if isinstance(claims, UnifiedClaims):
        return claims.to_dict()
    return dict(claims)


def _require_subject(payload: Mapping[str, Any], *fallbacks: str) -> str:
    for key in ("sub", *fallbacks):
        value = payload.get(key)
        if value:
            return str(value)
    raise TranslationError("Payload has no subject (sub) claim")


def _optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _token_type(value: Any) -> TokenType:
    try:
        return TokenType(value) if value else TokenType.ACCESS
    except ValueError:
        return TokenType.ACCESS


def _role_list(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple, set, frozenset)):
        return [str(role) for role in value]
    return []


def provider_roles(payload: Mapping[str, Any]) -> list[str]:
    """Collect the role list from the first non-empty provider source."""
    roles = _role_list(payload.get("roles"))
    if roles:
        return roles

    realm_access = payload.get("realm_access")
    if isinstance(realm_access, Mapping):
        roles = _role_list(realm_access.get("roles"))
        if roles:
            return roles

    resource_access = payload.get("resource_access")
    if isinstance(resource_access, Mapping):
        roles = _role_list(resource_access.get("roles"))
        if roles:
            return roles
        merged: list[str] = []
        for client_name, client_access in resource_access.items():
            if client_name == "roles" or not isinstance(client_access, Mapping):
                continue
            merged.extend(_role_list(client_access.get("roles")))
        if merged:
            return merged

    return []


def map_provider_role(payload: Mapping[str, Any]) -> Role:
    """Apply the role mapping policy to a provider payload."""
    roles = provider_roles(payload)
    if not roles and payload.get("role"):
        roles = [str(payload["role"])]

    normalized = {role.strip().lower() for role in roles}
    if normalized & SUPER_ADMIN_ALIASES:
        return Role.SUPER_ADMIN
    if normalized & ADMIN_ALIASES:
        return Role.ADMIN
    return Role.USER


def read_id_token_payload(id_token: str) -> dict[str, Any]:
    """Read the payload segment of an ID token WITHOUT verifying it.

    Only for tokens that were already verified upstream (for example by the
    code exchange that returned them).
    """
    try:
        return jwt.decode(id_token, options={"verify_signature": False})
    except jwt.PyJWTError as e:
        raise TranslationError(f"ID token payload is unreadable: {e}") from e


def first_party_to_unified(claims: UnifiedClaims | Mapping[str, Any]) -> UnifiedClaims:
    """Translate a first-party payload.

    ``auth_provider`` is always first-party; ``auth_method`` is preserved and
    defaults to ``password``; missing ``permissions`` become an empty list.
    """
    payload = _as_mapping(claims)
    subject = _require_subject(payload)
    return UnifiedClaims(
        sub=subject,
        email=str(payload.get("email") or ""),
        name=str(payload.get("name") or ""),
        role=_scalar_role(payload.get("role")),
        username=payload.get("username"),
        auth_provider=AuthProvider.FIRST_PARTY,
        auth_method=_auth_method(payload.get("auth_method"), AuthMethod.PASSWORD),
        session_id=payload.get("session_id"),
        type=_token_type(payload.get("type")),
        scope=payload.get("scope"),
        tenant_id=payload.get("tenant_id"),
        permissions=list(payload.get("permissions") or []),
        iss=str(payload.get("iss") or ""),
        aud=_audience(payload.get("aud")),
        exp=_optional_int(payload.get("exp")) or 0,
        iat=_optional_int(payload.get("iat")) or 0,
        jti=str(payload.get("jti") or ""),
        nbf=_optional_int(payload.get("nbf")),
    )


def oauth_to_unified(
    payload: Mapping[str, Any],
    provider: AuthProvider = AuthProvider.KEYCLOAK,
) -> UnifiedClaims:
    """Translate an OAuth/Keycloak payload (userinfo, ID token claims, or token response).

    A token response carrying ``id_token`` is read from the ID token's payload.
    The role comes from the role mapping policy; ``auth_method`` is always oauth.
    """
    source = dict(payload)
    if isinstance(source.get("id_token"), str):
        source = read_id_token_payload(source["id_token"])

    subject = _require_subject(source, "userId")
    username = source.get("preferred_username") or source.get("username")
    unified = UnifiedClaims(
        sub=subject,
        email=str(source.get("email") or ""),
        name=str(source.get("name") or username or ""),
        role=map_provider_role(source),
        username=username,
        auth_provider=provider,
        auth_method=AuthMethod.OAUTH,
        session_id=source.get("session_id")
        or source.get("session_state")
        or source.get("sid")
        or source.get("sessionId"),
        type=_token_type(source.get("type")),
        scope=source.get("scope") or DEFAULT_OAUTH_SCOPE,
        tenant_id=source.get("tenant_id"),
        permissions=list(source.get("permissions") or []),
        iss=str(source.get("iss") or ""),
        aud=_audience(source.get("aud")),
        exp=_optional_int(source.get("exp")) or 0,
        iat=_optional_int(source.get("iat")) or 0,
        jti=str(source.get("jti") or ""),
        nbf=_optional_int(source.get("nbf")),
    )
    logger.debug(
        "oauth_payload_translated",
        extra={"user_id": subject, "provider": provider.value, "role": unified.role.value},
    )
    return unified


def unified_to_first_party_shape(claims: UnifiedClaims) -> dict[str, Any]:
    """Unified claims in the first-party payload shape (no ``auth_provider``)."""
    shape = claims.to_dict()
    shape.pop("auth_provider", None)
    return shape


def unified_to_oauth_shape(claims: UnifiedClaims) -> dict[str, Any]:
    """Unified claims in a Keycloak-compatible shape.

    Lossy: the role becomes a single-element ``realm_access.roles`` list and
    provider-specific fields that were never unified cannot be reconstructed.
    """
    shape: dict[str, Any] = {
        "sub": claims.sub,
        "email": claims.email,
        "name": claims.name,
        "preferred_username": claims.username,
        "email_verified": True,
        "realm_access": {"roles": [claims.role.value]},
        "scope": claims.scope or DEFAULT_OAUTH_SCOPE,
        "permissions": list(claims.permissions),
    }
    optional = {
        "iss": claims.iss or None,
        "aud": claims.aud or None,
        "exp": claims.exp or None,
        "iat": claims.iat or None,
        "jti": claims.jti or None,
        "nbf": claims.nbf,
        "sid": claims.session_id,
        "tenant_id": claims.tenant_id,
    }
    shape.update({key: value for key, value in optional.items() if value is not None})
    return shape


def detect_source(claims: Mapping[str, Any]) -> str:
    """Classify an already-verified payload as ``custom``, ``keycloak`` or ``oauth``.

    ``auth_provider`` decides when present (keycloak and oauth keep their
    label, anything else is first-party); a bare ``auth_method`` means
    first-party; a payload with neither came from the generic OAuth
    authenticator.
    """
    provider = claims.get("auth_provider")
    if provider:
        if provider in (SOURCE_KEYCLOAK, SOURCE_OAUTH):
            return str(provider)
        return SOURCE_FIRST_PARTY
    if claims.get("auth_method"):
        return SOURCE_FIRST_PARTY
    return SOURCE_OAUTH


def translate_verified(payload: Mapping[str, Any]) -> UnifiedClaims:
    """Route a verified payload to the matching translation."""
    source = detect_source(payload)
    if source == SOURCE_KEYCLOAK:
        return oauth_to_unified(payload, AuthProvider.KEYCLOAK)
    if source == SOURCE_OAUTH:
        return oauth_to_unified(payload, AuthProvider.OAUTH)
    return first_party_to_unified(payload)


class SchemaTranslator:
    """Stateless facade over the translation functions, for injection."""

    first_party_to_unified = staticmethod(first_party_to_unified)
    oauth_to_unified = staticmethod(oauth_to_unified)
    unified_to_first_party_shape = staticmethod(unified_to_first_party_shape)
    unified_to_oauth_shape = staticmethod(unified_to_oauth_shape)
    detect_source = staticmethod(detect_source)
    map_provider_role = staticmethod(map_provider_role)
    translate_verified = staticmethod(translate_verified)


def _scalar_role(value: Any) -> Role:
    if isinstance(value, Role):
        return value
    try:
        return Role(str(value)) if value else Role.USER
    except ValueError:
        return Role.USER


def _auth_method(value: Any, default: AuthMethod) -> AuthMethod:
    if isinstance(value, AuthMethod):
        return value
    try:
        return AuthMethod(value) if value else default
    except ValueError:
        return default


def _audience(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return str(value[0]) if value else ""
    return str(value or "")


__all__ = [
    "ADMIN_ALIASES",
    "DEFAULT_OAUTH_SCOPE",
    "SUPER_ADMIN_ALIASES",
    "SchemaTranslator",
    "detect_source",
    "first_party_to_unified",
    "map_provider_role",
    "oauth_to_unified",
    "provider_roles",
    "read_id_token_payload",
    "translate_verified",
    "unified_to_first_party_shape",
    "unified_to_oauth_shape",
]
