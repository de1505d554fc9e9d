"""Token signing and verification (RS256 with HS256 fallback)."""

import logging
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt

from libs.unified_auth.claims import INTERNAL_CLAIMS, TokenType, UnifiedClaims
from libs.unified_auth.config import AuthConfig
from libs.unified_auth.exceptions import SigningError
from libs.unified_auth.key_manager import KeyManager
from libs.unified_auth.metrics import token_verifications_total, tokens_issued_total

logger = logging.getLogger(__name__)

TOKEN_EXPIRED = "Token expired"
INVALID_TOKEN = "Invalid token"
HS256_SECRET_MISSING = "JWT secret not configured for HS256 fallback"


@dataclass(frozen=True)
class TokenPair:
    """Access/refresh pair returned to clients."""

    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "Bearer"

    def to_dict(self) -> dict[str, Any]:
        return {
            "accessToken": self.access_token,
            "refreshToken": self.refresh_token,
            "expiresIn": self.expires_in,
            "tokenType": self.token_type,
        }


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of a verification attempt.

    ``payload`` is the raw verified payload; ``claims`` is the same payload
    parsed into UnifiedClaims. Both are None when ``valid`` is False.
    """

    valid: bool
    claims: UnifiedClaims | None = None
    payload: dict[str, Any] | None = None
    error: str | None = None
    algorithm: str | None = None


@dataclass(frozen=True)
class TokenMetadata:
    header: dict[str, Any]
    payload: dict[str, Any] = field(default_factory=dict)
    algorithm: str | None = None
    key_id: str | None = None


@dataclass(frozen=True)
class ExpirationInfo:
    is_expired: bool
    seconds_remaining: int


@dataclass(frozen=True)
class _AttemptFailure:
    error: str
    algorithm_mismatch: bool


class TokenCodec:
    """Signs and verifies compact JWTs for the unified claim set.

    The signing algorithm is fixed by ``config.rs256_enabled``: RS256 with the
    KeyManager's key (``kid`` header set) or HS256 with ``config.hs256_secret``.

    Verification tries RS256 first when enabled, then falls back to HS256 so
    tokens issued before a switch of signing scheme keep working. Each attempt
    pins its own algorithm list; the token header never selects the algorithm.

    Security Features:
    - NEVER logs full tokens (jti, user id and session id only)
    - Caller-supplied exp/iat/jti/type are stripped before signing
    - Issuer and audience are pinned on every verification
    """

    def __init__(self, config: AuthConfig, key_manager: KeyManager | None = None) -> None:
        """Initialize the codec.

        Args:
            config: Authentication configuration (algorithm policy, issuer,
                audience, default lifetimes, HS256 secret)
            key_manager: RSA key holder; required for RS256 signing
        """
        self.config = config
        self.key_manager = key_manager

        logger.info(
            "TokenCodec initialized",
            extra={
                "algorithm": self.algorithm,
                "key_id": self.key_id,
                "hs256_fallback": bool(config.hs256_secret),
                "access_ttl": config.access_token_ttl,
                "refresh_ttl": config.refresh_token_ttl,
            },
        )

    @property
    def algorithm(self) -> str:
        return self.config.signing_algorithm

    @property
    def key_id(self) -> str | None:
        if self.config.rs256_enabled and self.key_manager is not None:
            return self.key_manager.get_key_id()
        return None

    # ------------------------------------------------------------------
    # Signing
    # ------------------------------------------------------------------

    def sign(
        self,
        claims: UnifiedClaims | Mapping[str, Any],
        token_type: TokenType | str,
        expires_in: int | None = None,
        issued_at: datetime | None = None,
    ) -> str:
        """Sign a claim set as a token of the given type.

        Args:
            claims: Identity claims; exp/iat/jti/type supplied here are ignored
            token_type: "access" or "refresh"
            expires_in: Lifetime in seconds (defaults from config per type)
            issued_at: Override for the issue time, used for backdated tokens

        Returns:
            Compact signed token

        Raises:
            SigningError: No usable signing key for the configured algorithm
            ValueError: Claims without ``sub`` or a non-positive lifetime
        """
        token_type = TokenType(token_type)
        payload = claims.to_dict() if isinstance(claims, UnifiedClaims) else dict(claims)
        for key in INTERNAL_CLAIMS:
            payload.pop(key, None)

        if not payload.get("sub"):
            raise ValueError("Cannot sign claims without a subject")

        if expires_in is None:
            expires_in = (
                self.config.access_token_ttl
                if token_type is TokenType.ACCESS
                else self.config.refresh_token_ttl
            )
        if expires_in <= 0:
            raise ValueError(f"Token lifetime must be positive, got {expires_in}")

        now = issued_at or datetime.now(UTC)
        jti = str(uuid.uuid4())
        payload.update(
            {
                "iss": self.config.jwt_issuer,
                "aud": self.config.jwt_audience,
                "type": token_type.value,
                "iat": int(now.timestamp()),
                "jti": jti,
                "exp": int((now + timedelta(seconds=expires_in)).timestamp()),
            }
        )

        key, headers = self._signing_material()
        token = jwt.encode(payload, key, algorithm=self.algorithm, headers=headers)

        tokens_issued_total.labels(type=token_type.value, algorithm=self.algorithm).inc()
        logger.info(
            f"{token_type.value}_token_signed",
            extra={
                "user_id": payload["sub"],
                "session_id": payload.get("session_id"),
                "jti": jti,
                "algorithm": self.algorithm,
                "exp": payload["exp"],
            },
        )
        return token

    def sign_pair(
        self,
        claims: UnifiedClaims | Mapping[str, Any],
        access_expires_in: int | None = None,
        refresh_expires_in: int | None = None,
    ) -> TokenPair:
        """Sign an access token and a refresh token for the same identity."""
        access_ttl = self.config.access_token_ttl if access_expires_in is None else access_expires_in
        return TokenPair(
            access_token=self.sign(claims, TokenType.ACCESS, access_ttl),
            refresh_token=self.sign(claims, TokenType.REFRESH, refresh_expires_in),
            expires_in=access_ttl,
        )

    def _signing_material(self) -> tuple[Any, dict[str, str] | None]:
        if self.config.rs256_enabled:
            if self.key_manager is None:
                raise SigningError("RS256 enabled but no key manager configured")
            return self.key_manager.get_private_key(), {"kid": self.key_manager.get_key_id()}
        if not self.config.hs256_secret:
            raise SigningError("HS256 signing requires JWT_SECRET")
        return self.config.hs256_secret, None

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify(self, token: str) -> VerificationResult:
        """Verify signature, expiry, issuer and audience.

        Ordinary failures are returned as ``valid=False`` with a classified
        error: "Token expired", "Invalid token", or the underlying message
        (for example an issuer or audience mismatch).
        """
        failures: list[_AttemptFailure] = []

        if self.config.rs256_enabled and self.key_manager is not None:
            outcome = self._attempt(token, self.key_manager.get_public_key(), "RS256")
            if isinstance(outcome, dict):
                return self._success(outcome, "RS256")
            failures.append(outcome)

        if self.config.hs256_secret:
            outcome = self._attempt(token, self.config.hs256_secret, "HS256")
            if isinstance(outcome, dict):
                return self._success(outcome, "HS256")
            failures.append(outcome)
        elif all(failure.algorithm_mismatch for failure in failures):
            failures.append(_AttemptFailure(HS256_SECRET_MISSING, algorithm_mismatch=False))

        error = _pick_error(failures)
        token_verifications_total.labels(result="invalid", algorithm="none").inc()
        logger.warning("token_verification_failed", extra={"error": error})
        return VerificationResult(valid=False, error=error)

    def verify_type(self, token: str, expected_type: TokenType | str) -> VerificationResult:
        """Verify and require an embedded ``type`` claim."""
        expected = TokenType(expected_type)
        result = self.verify(token)
        if not result.valid or result.payload is None:
            return result
        if result.payload.get("type") != expected.value:
            logger.warning(
                "token_wrong_type",
                extra={
                    "expected": expected.value,
                    "actual": result.payload.get("type"),
                    "jti": result.payload.get("jti"),
                },
            )
            return VerificationResult(valid=False, error=f"Token is not a {expected.value} token")
        return result

    def _attempt(self, token: str, key: Any, algorithm: str) -> dict[str, Any] | _AttemptFailure:
        try:
            payload = jwt.decode(
                token,
                key,
                algorithms=[algorithm],
                issuer=self.config.jwt_issuer,
                audience=self.config.jwt_audience,
                options={"require": ["exp", "iat", "sub"]},
                leeway=self.config.clock_skew_seconds,
            )
        except jwt.ExpiredSignatureError:
            return _AttemptFailure(TOKEN_EXPIRED, algorithm_mismatch=False)
        except jwt.InvalidAlgorithmError:
            return _AttemptFailure(INVALID_TOKEN, algorithm_mismatch=True)
        except jwt.DecodeError:
            # Malformed segments and signature mismatches
            return _AttemptFailure(INVALID_TOKEN, algorithm_mismatch=False)
        except jwt.InvalidTokenError as e:
            return _AttemptFailure(str(e) or INVALID_TOKEN, algorithm_mismatch=False)
        return payload  # type: ignore[no-any-return]

    def _success(self, payload: dict[str, Any], algorithm: str) -> VerificationResult:
        token_verifications_total.labels(result="valid", algorithm=algorithm).inc()
        logger.debug(
            "token_verified",
            extra={
                "jti": payload.get("jti"),
                "type": payload.get("type"),
                "user_id": payload.get("sub"),
                "algorithm": algorithm,
            },
        )
        return VerificationResult(
            valid=True,
            claims=UnifiedClaims.from_dict(payload),
            payload=payload,
            algorithm=algorithm,
        )

    # ------------------------------------------------------------------
    # Diagnostics (never use for authorization)
    # ------------------------------------------------------------------

    def decode(self, token: str) -> dict[str, Any] | None:
        """Decode a token WITHOUT validation.

        Warning:
            This does NOT validate signature or expiration.
            Use verify() for security-critical operations.
        """
        try:
            return jwt.decode(token, options={"verify_signature": False})  # type: ignore[no-any-return]
        except jwt.DecodeError:
            return None

    def extract_metadata(self, token: str) -> TokenMetadata | None:
        """Unverified header and payload, for routing and diagnostics."""
        try:
            header = jwt.get_unverified_header(token)
        except jwt.DecodeError:
            return None
        payload = self.decode(token)
        if payload is None:
            return None
        return TokenMetadata(
            header=header,
            payload=payload,
            algorithm=header.get("alg"),
            key_id=header.get("kid"),
        )

    def is_rs256_token(self, token: str) -> bool:
        metadata = self.extract_metadata(token)
        return metadata is not None and metadata.algorithm == "RS256"

    def is_hs256_token(self, token: str) -> bool:
        metadata = self.extract_metadata(token)
        return metadata is not None and metadata.algorithm == "HS256"

    def expiration_info(self, token: str) -> ExpirationInfo | None:
        """Expiry state derived from a full verify.

        Returns None for tokens that are invalid for any reason other than expiry.
        """
        result = self.verify(token)
        if result.valid and result.payload is not None:
            remaining = int(result.payload["exp"]) - int(datetime.now(UTC).timestamp())
            return ExpirationInfo(is_expired=False, seconds_remaining=max(remaining, 0))
        if result.error == TOKEN_EXPIRED:
            return ExpirationInfo(is_expired=True, seconds_remaining=0)
        return None


def _pick_error(failures: list[_AttemptFailure]) -> str:
    # An algorithm mismatch only says the other attempt was the relevant one.
    for failure in failures:
        if not failure.algorithm_mismatch:
            return failure.error
    return INVALID_TOKEN


__all__ = [
    "ExpirationInfo",
    "HS256_SECRET_MISSING",
    "INVALID_TOKEN",
    "TOKEN_EXPIRED",
    "TokenCodec",
    "TokenMetadata",
    "TokenPair",
    "VerificationResult",
]
