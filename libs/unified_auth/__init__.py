"""Unified authentication: token issuance, verification and session reconciliation.

Usage:
    from libs.unified_auth import AuthConfig, KeyManager, TokenCodec

    config = AuthConfig.from_env()
    codec = TokenCodec(config, KeyManager(config) if config.rs256_enabled else None)
    pair = codec.sign_pair(claims)
    result = codec.verify(pair.access_token)
"""

from libs.unified_auth.claims import AuthMethod, AuthProvider, Role, TokenType, UnifiedClaims
from libs.unified_auth.config import AuthConfig, codec_config_from_legacy
from libs.unified_auth.exceptions import (
    AuthError,
    KeycloakClaimsError,
    KeycloakVerificationError,
    KeyConfigurationError,
    SessionError,
    SessionNotFoundError,
    SessionStoreError,
    SigningError,
    TranslationError,
)
from libs.unified_auth.key_manager import KeyManager, KeyValidationReport, keys_to_base64
from libs.unified_auth.keycloak import KeycloakVerifier
from libs.unified_auth.middleware import (
    AuthenticatedPrincipal,
    AuthMiddleware,
    AuthOutcome,
    AuthRequirements,
    has_permission,
    has_required_role,
    optional_auth,
    require_admin,
    require_auth,
    require_permission,
    require_role,
    require_super_admin,
)
from libs.unified_auth.session import (
    ClientContext,
    IssuedSession,
    RefreshResult,
    SessionManager,
    SessionValidation,
)
from libs.unified_auth.session_store import RedisSessionStore, Session, SessionStore
from libs.unified_auth.token_codec import (
    ExpirationInfo,
    TokenCodec,
    TokenMetadata,
    TokenPair,
    VerificationResult,
)
from libs.unified_auth.translator import SchemaTranslator

__all__ = [
    # Claims
    "AuthMethod",
    "AuthProvider",
    "Role",
    "TokenType",
    "UnifiedClaims",
    # Configuration
    "AuthConfig",
    "codec_config_from_legacy",
    # Exceptions
    "AuthError",
    "KeyConfigurationError",
    "KeycloakClaimsError",
    "KeycloakVerificationError",
    "SessionError",
    "SessionNotFoundError",
    "SessionStoreError",
    "SigningError",
    "TranslationError",
    # Keys and tokens
    "KeyManager",
    "KeyValidationReport",
    "keys_to_base64",
    "TokenCodec",
    "TokenPair",
    "TokenMetadata",
    "VerificationResult",
    "ExpirationInfo",
    "KeycloakVerifier",
    # Translation
    "SchemaTranslator",
    # Sessions
    "ClientContext",
    "IssuedSession",
    "RefreshResult",
    "RedisSessionStore",
    "Session",
    "SessionManager",
    "SessionStore",
    "SessionValidation",
    # Request authentication
    "AuthMiddleware",
    "AuthOutcome",
    "AuthRequirements",
    "AuthenticatedPrincipal",
    "has_permission",
    "has_required_role",
    "optional_auth",
    "require_admin",
    "require_auth",
    "require_permission",
    "require_role",
    "require_super_admin",
]
