"""Keycloak access/ID token verification against the realm JWKS.

Security:
- JWKS caching with kid rollover (one forced refresh on an unknown kid)
- Algorithm pinning: RS256 only, regardless of the token header
- Claim validation: iss (realm URL), aud (client id), exp, sub, email
"""

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
import jwt
from jwt.algorithms import RSAAlgorithm

from libs.unified_auth.config import AuthConfig
from libs.unified_auth.exceptions import KeycloakClaimsError, KeycloakVerificationError

logger = logging.getLogger(__name__)


class KeycloakVerifier:
    """Verifies tokens issued by the configured Keycloak realm."""

    def __init__(
        self,
        config: AuthConfig,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 5.0,
    ) -> None:
        """Initialize verifier.

        Args:
            config: Authentication configuration with keycloak_url, keycloak_realm
                and keycloak_client_id set
            http_client: Shared client (tests inject one); a short-lived client
                is created per fetch otherwise
            timeout: JWKS fetch timeout in seconds

        Raises:
            KeycloakVerificationError: If Keycloak is not configured
        """
        issuer = config.keycloak_issuer
        if issuer is None or not config.keycloak_client_id:
            raise KeycloakVerificationError(
                "Keycloak not configured: set KEYCLOAK_URL, KEYCLOAK_REALM and KEYCLOAK_CLIENT_ID"
            )
        self.issuer = issuer
        self.audience = config.keycloak_client_id
        self.jwks_url = f"{issuer}/protocol/openid-connect/certs"
        self.cache_ttl = timedelta(seconds=config.keycloak_jwks_cache_seconds)
        self.leeway = config.clock_skew_seconds
        self._http_client = http_client
        self._timeout = timeout

        self._jwks_cache: dict[str, Any] | None = None
        self._cache_expires_at: datetime | None = None

    async def _fetch_jwks(self) -> dict[str, Any]:
        if self._http_client is not None:
            response = await self._http_client.get(self.jwks_url, timeout=self._timeout)
            response.raise_for_status()
            return response.json()  # type: ignore[no-any-return]
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.get(self.jwks_url)
            response.raise_for_status()
            return response.json()  # type: ignore[no-any-return]

    async def get_jwks(self, force_refresh: bool = False) -> dict[str, Any]:
        """Realm JWKS, cached for ``keycloak_jwks_cache_seconds``.

        Raises:
            KeycloakVerificationError: If the JWKS endpoint cannot be reached
        """
        now = datetime.now(UTC)
        if not force_refresh and self._jwks_cache and self._cache_expires_at:
            if now < self._cache_expires_at:
                return self._jwks_cache

        try:
            self._jwks_cache = await self._fetch_jwks()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(
                "keycloak_jwks_fetch_failed",
                extra={"jwks_url": self.jwks_url, "error": str(e)},
            )
            raise KeycloakVerificationError("Unable to fetch Keycloak signing keys") from e
        self._cache_expires_at = now + self.cache_ttl

        logger.info(
            "keycloak_jwks_cached",
            extra={
                "jwks_url": self.jwks_url,
                "keys": len(self._jwks_cache.get("keys", [])),
                "expires_at": self._cache_expires_at.isoformat(),
            },
        )
        return self._jwks_cache

    @staticmethod
    def _find_key(jwks: dict[str, Any], kid: str | None) -> dict[str, Any] | None:
        for key in jwks.get("keys", []):
            if key.get("kid") == kid:
                return key  # type: ignore[no-any-return]
        return None

    async def verify(self, token: str) -> dict[str, Any]:
        """Verify a Keycloak token and return its claims.

        Raises:
            KeycloakVerificationError: Signature, issuer, audience or expiry failure
            KeycloakClaimsError: Verified token lacks ``sub`` or ``email``
        """
        try:
            header = jwt.get_unverified_header(token)
        except jwt.DecodeError as e:
            raise KeycloakVerificationError("Malformed Keycloak token") from e

        kid = header.get("kid")
        jwk = self._find_key(await self.get_jwks(), kid)
        if jwk is None:
            # Key rotation: refresh once before giving up
            logger.warning("keycloak_kid_not_cached", extra={"kid": kid})
            jwk = self._find_key(await self.get_jwks(force_refresh=True), kid)
        if jwk is None:
            raise KeycloakVerificationError(f"Signing key with kid={kid} not found in JWKS")

        try:
            signing_key = RSAAlgorithm.from_jwk(jwk)
            claims: dict[str, Any] = jwt.decode(
                token,
                key=signing_key,
                algorithms=["RS256"],
                audience=self.audience,
                issuer=self.issuer,
                leeway=self.leeway,
            )
        except jwt.ExpiredSignatureError as e:
            logger.warning("keycloak_token_expired", extra={"kid": kid})
            raise KeycloakVerificationError("Keycloak token expired") from e
        except (jwt.PyJWTError, ValueError, TypeError) as e:
            logger.warning("keycloak_token_invalid", extra={"kid": kid, "error": str(e)})
            raise KeycloakVerificationError(f"Invalid Keycloak token: {e}") from e

        if not claims.get("sub") or not claims.get("email"):
            raise KeycloakClaimsError("Invalid token: missing sub or email")

        logger.info(
            "keycloak_token_verified",
            extra={"user_id": claims.get("sub"), "kid": kid},
        )
        return claims


__all__ = ["KeycloakVerifier"]
