"""Authentication configuration for the unified auth library."""

import os
from dataclasses import dataclass, replace
from typing import Any

from libs.unified_auth.exceptions import KeyConfigurationError

DEVELOPMENT_ENVIRONMENTS = frozenset({"development", "dev", "local", "test"})


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class AuthConfig:
    """Authentication configuration with secure defaults.

    The signing algorithm is an explicit field so that several codecs with
    different policies can coexist in one process (tests, migrations).
    All settings can be overridden via environment variables using from_env().
    """

    # Deployment mode. Ephemeral RSA keys are only allowed in development.
    environment: str = "production"

    # RS256 Settings (base64-encoded PEM material)
    rs256_enabled: bool = False
    rs256_private_key_b64: str | None = None
    rs256_public_key_b64: str | None = None
    rs256_key_id: str = "default"

    # HS256 shared secret (signing when RS256 is off, verification fallback always)
    hs256_secret: str | None = None

    jwt_issuer: str = "modular-monolith"
    jwt_audience: str = "modular-monolith-api"

    # Token Expiration
    access_token_ttl: int = 3 * 60 * 60  # 3 hours
    refresh_token_ttl: int = 7 * 24 * 60 * 60  # 7 days

    # Clock Skew Tolerance
    clock_skew_seconds: int = 0

    # Request authentication carriers
    auth_cookie_name: str = "auth-token"

    # Cookie Security Parameters
    cookie_secure: bool = True
    cookie_httponly: bool = True
    cookie_samesite: str = "Strict"
    cookie_domain: str | None = None
    cookie_path: str = "/"

    # Session Store
    session_store_timeout: float = 5.0  # seconds, applied as Redis socket timeout
    session_retention_seconds: int = 24 * 60 * 60  # keep inactive rows for audit
    redis_key_prefix: str = "unified_auth:"

    # Keycloak (OIDC sign-in)
    keycloak_url: str | None = None
    keycloak_realm: str | None = None
    keycloak_client_id: str | None = None
    keycloak_jwks_cache_seconds: int = 600

    @property
    def is_development(self) -> bool:
        return self.environment.strip().lower() in DEVELOPMENT_ENVIRONMENTS

    @property
    def signing_algorithm(self) -> str:
        return "RS256" if self.rs256_enabled else "HS256"

    @property
    def keycloak_issuer(self) -> str | None:
        if not self.keycloak_url or not self.keycloak_realm:
            return None
        return f"{self.keycloak_url.rstrip('/')}/realms/{self.keycloak_realm}"

    def validate(self) -> None:
        """Fail fast when no signing scheme is usable.

        Raises:
            KeyConfigurationError: RS256 disabled and no HS256 secret configured,
                or token lifetimes are not positive
        """
        if not self.rs256_enabled and not self.hs256_secret:
            raise KeyConfigurationError(
                "No signing key available: enable RS256 or set JWT_SECRET for HS256"
            )
        if self.access_token_ttl <= 0 or self.refresh_token_ttl <= 0:
            raise KeyConfigurationError("Token lifetimes must be positive")

    @classmethod
    def from_env(cls) -> "AuthConfig":
        """Load configuration from environment variables.

        Environment variable mapping:
        - AUTH_ENVIRONMENT: development | staging | production
        - ENABLE_RS256_TOKENS: Sign with RS256 (true/false)
        - JWT_RS256_PRIVATE_KEY_BASE64 / JWT_RS256_PUBLIC_KEY_BASE64: base64 PEM keys
        - JWT_RS256_KEY_ID: Key identifier embedded as the kid header
        - JWT_SECRET: HS256 shared secret
        - JWT_ISSUER / JWT_AUDIENCE: Pinned iss/aud claims
        - ACCESS_TOKEN_TTL / REFRESH_TOKEN_TTL: Default lifetimes in seconds
        - AUTH_COOKIE_NAME: Cookie carrying the access token
        - AUTH_SESSION_STORE_TIMEOUT: Session store deadline in seconds
        - KEYCLOAK_URL / KEYCLOAK_REALM / KEYCLOAK_CLIENT_ID: Keycloak sign-in
        """
        return cls(
            environment=os.getenv("AUTH_ENVIRONMENT", "production"),
            rs256_enabled=_env_bool("ENABLE_RS256_TOKENS", "false"),
            rs256_private_key_b64=os.getenv("JWT_RS256_PRIVATE_KEY_BASE64") or None,
            rs256_public_key_b64=os.getenv("JWT_RS256_PUBLIC_KEY_BASE64") or None,
            rs256_key_id=os.getenv("JWT_RS256_KEY_ID", "default"),
            hs256_secret=os.getenv("JWT_SECRET") or None,
            jwt_issuer=os.getenv("JWT_ISSUER", "modular-monolith"),
            jwt_audience=os.getenv("JWT_AUDIENCE", "modular-monolith-api"),
            access_token_ttl=int(os.getenv("ACCESS_TOKEN_TTL", str(3 * 60 * 60))),
            refresh_token_ttl=int(os.getenv("REFRESH_TOKEN_TTL", str(7 * 24 * 60 * 60))),
            clock_skew_seconds=int(os.getenv("CLOCK_SKEW_SECONDS", "0")),
            auth_cookie_name=os.getenv("AUTH_COOKIE_NAME", "auth-token"),
            cookie_secure=_env_bool("COOKIE_SECURE", "true"),
            cookie_httponly=_env_bool("COOKIE_HTTPONLY", "true"),
            cookie_samesite=os.getenv("COOKIE_SAMESITE", "Strict"),
            cookie_domain=os.getenv("COOKIE_DOMAIN") or None,
            cookie_path=os.getenv("COOKIE_PATH", "/"),
            session_store_timeout=float(os.getenv("AUTH_SESSION_STORE_TIMEOUT", "5.0")),
            session_retention_seconds=int(os.getenv("SESSION_RETENTION_SECONDS", "86400")),
            redis_key_prefix=os.getenv("AUTH_REDIS_PREFIX", "unified_auth:"),
            keycloak_url=os.getenv("KEYCLOAK_URL") or None,
            keycloak_realm=os.getenv("KEYCLOAK_REALM") or None,
            keycloak_client_id=os.getenv("KEYCLOAK_CLIENT_ID") or None,
            keycloak_jwks_cache_seconds=int(os.getenv("KEYCLOAK_JWKS_CACHE_SECONDS", "600")),
        )


def codec_config_from_legacy(options: dict[str, Any], base: AuthConfig | None = None) -> AuthConfig:
    """Map legacy token-generator options onto an AuthConfig.

    Older call sites construct the generator with ``secretKey``,
    ``accessTokenExpiry``, ``refreshTokenExpiry``, ``issuer`` and ``audience``.
    ``secretKey`` is ignored: the algorithm and secret come from ``base``.
    Missing or falsy values keep the ``base`` defaults.
    """
    base = base or AuthConfig()
    overrides: dict[str, Any] = {}
    if options.get("accessTokenExpiry"):
        overrides["access_token_ttl"] = int(options["accessTokenExpiry"])
    if options.get("refreshTokenExpiry"):
        overrides["refresh_token_ttl"] = int(options["refreshTokenExpiry"])
    if options.get("issuer"):
        overrides["jwt_issuer"] = str(options["issuer"])
    if options.get("audience"):
        overrides["jwt_audience"] = str(options["audience"])
    return replace(base, **overrides)


__all__ = ["AuthConfig", "codec_config_from_legacy", "DEVELOPMENT_ENVIRONMENTS"]
