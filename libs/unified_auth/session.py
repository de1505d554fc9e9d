"""Session lifecycle: create, validate, refresh (atomic rotation), revoke."""

import logging
from collections.abc import Iterator, Mapping
from contextlib import AbstractContextManager, contextmanager
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Any

from libs.unified_auth.claims import TokenType, UnifiedClaims
from libs.unified_auth.config import AuthConfig
from libs.unified_auth.exceptions import SessionNotFoundError, SessionStoreError, TranslationError
from libs.unified_auth.metrics import session_operations_total
from libs.unified_auth.session_store import Session, SessionStore
from libs.unified_auth.token_codec import TOKEN_EXPIRED, TokenCodec, TokenPair
from libs.unified_auth.translator import translate_verified

logger = logging.getLogger(__name__)

SESSION_NOT_FOUND = "Session not found"
SESSION_INACTIVE = "Session inactive or expired"
INVALID_TOKEN_TYPE = "Invalid token type"
INVALID_SESSION = "Invalid session"
UNKNOWN = "unknown"


@dataclass(frozen=True)
class ClientContext:
    """Client details recorded on a session."""

    user_agent: str = UNKNOWN
    ip_address: str = UNKNOWN

    @classmethod
    def from_headers(cls, headers: Mapping[str, str], remote_addr: str | None = None) -> "ClientContext":
        """Build from request headers.

        IP precedence: first hop of X-Forwarded-For, X-Real-IP, X-Client-IP,
        then the socket address. Lookups are case-insensitive.
        """
        lowered = {key.lower(): value for key, value in headers.items()}
        ip_address = UNKNOWN
        forwarded = lowered.get("x-forwarded-for", "")
        if forwarded.split(",")[0].strip():
            ip_address = forwarded.split(",")[0].strip()
        elif lowered.get("x-real-ip"):
            ip_address = lowered["x-real-ip"].strip()
        elif lowered.get("x-client-ip"):
            ip_address = lowered["x-client-ip"].strip()
        elif remote_addr:
            ip_address = remote_addr
        return cls(user_agent=lowered.get("user-agent") or UNKNOWN, ip_address=ip_address)


@dataclass(frozen=True)
class IssuedSession:
    tokens: TokenPair
    session: Session

    def to_response(self) -> dict[str, Any]:
        """Session-bearing response body for login and sign-in."""
        return {**self.tokens.to_dict(), "session": self.session.summary()}


@dataclass(frozen=True)
class SessionValidation:
    valid: bool
    session: Session | None = None
    claims: UnifiedClaims | None = None
    error: str | None = None


@dataclass(frozen=True)
class RefreshResult:
    valid: bool
    access_token: str | None = None
    refresh_token: str | None = None
    expires_in: int | None = None
    session: Session | None = None
    error: str | None = None

    def to_response(self) -> dict[str, Any]:
        return {
            "accessToken": self.access_token,
            "refreshToken": self.refresh_token,
            "expiresIn": self.expires_in,
            "tokenType": "Bearer",
            "session": self.session.summary() if self.session else None,
        }


def _session_expiry(claims: UnifiedClaims, refresh_token: str, codec: TokenCodec) -> datetime:
    # A session lives as long as its refresh token
    payload = codec.decode(refresh_token) if refresh_token else None
    exp = int(payload["exp"]) if payload and payload.get("exp") else claims.exp
    return datetime.fromtimestamp(exp, UTC)


class SessionManager:
    """Manages sessions bound to unified token pairs.

    Features:
    - Session creation bound to an access/refresh pair
    - Validation: token signature/claims plus session liveness
    - Single-use refresh tokens with atomic rotation in the store
    - Revocation of one session or all sessions of a user
    - Expired session cleanup (safe to run concurrently)

    Ordinary authentication failures are returned as results with an error
    string. Store failures raise SessionStoreError and are never retried.
    """

    def __init__(self, store: SessionStore, codec: TokenCodec, config: AuthConfig) -> None:
        """Initialize session manager.

        Args:
            store: Session persistence (Redis in production)
            codec: Token codec for signing and verification
            config: Authentication configuration
        """
        self.store = store
        self.codec = codec
        self.config = config

        logger.info(
            "SessionManager initialized",
            extra={
                "algorithm": codec.algorithm,
                "access_ttl": config.access_token_ttl,
                "refresh_ttl": config.refresh_token_ttl,
            },
        )

    def create(
        self,
        claims: UnifiedClaims,
        access_token: str,
        refresh_token: str,
        client: ClientContext | None = None,
        session_id: str | None = None,
    ) -> Session:
        """Persist a new active session for an already signed pair.

        Raises:
            SessionStoreError: Store I/O failure
        """
        client = client or ClientContext()
        now = datetime.now(UTC)
        session = Session(
            id=session_id or claims.session_id or Session.new_id(),
            user_id=claims.sub,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=_session_expiry(claims, refresh_token, self.codec),
            last_accessed_at=now,
            created_at=now,
            updated_at=now,
            user_agent=client.user_agent,
            ip_address=client.ip_address,
            is_active=True,
        )
        with self._track("create"):
            self.store.save(session)

        logger.info(
            "session_created",
            extra={
                "user_id": session.user_id,
                "session_id": session.id,
                "ip": session.ip_address,
                "expires_at": session.expires_at.isoformat(),
            },
        )
        return session

    def issue(self, claims: UnifiedClaims, client: ClientContext | None = None) -> IssuedSession:
        """Sign a pair for ``claims`` and create the session bound to it.

        The session id is allocated first and embedded in both tokens.
        """
        session_id = Session.new_id()
        bound = replace(claims, session_id=session_id)
        tokens = self.codec.sign_pair(bound)
        session = self.create(bound, tokens.access_token, tokens.refresh_token, client, session_id)
        return IssuedSession(tokens=tokens, session=session)

    def validate(self, token: str, expected_type: TokenType | None = None) -> SessionValidation:
        """Validate a token and the liveness of its session.

        The session is looked up by access token, or by refresh token when the
        caller explicitly expects a refresh token. With ``expected_type`` set,
        a token of another type fails with "Invalid token type".

        Raises:
            SessionStoreError: Store I/O failure during lookup
        """
        verification = self.codec.verify(token)
        if not verification.valid or verification.payload is None:
            session_operations_total.labels(operation="validate", result="invalid_token").inc()
            return SessionValidation(valid=False, error=verification.error or "Invalid token")

        try:
            claims = translate_verified(verification.payload)
        except TranslationError as e:
            logger.warning("session_validation_translation_failed", extra={"error": str(e)})
            return SessionValidation(valid=False, error="Invalid token")

        if claims.exp and claims.exp < int(datetime.now(UTC).timestamp()):
            return SessionValidation(valid=False, error=TOKEN_EXPIRED)

        if expected_type is not None and claims.type is not expected_type:
            session_operations_total.labels(operation="validate", result="wrong_type").inc()
            return SessionValidation(valid=False, claims=claims, error=INVALID_TOKEN_TYPE)

        with self._track("validate"):
            if expected_type is TokenType.REFRESH:
                session = self.store.find_by_refresh_token(token)
            else:
                session = self.store.find_by_access_token(token)

        if session is None:
            logger.info("session_not_found", extra={"user_id": claims.sub, "jti": claims.jti})
            session_operations_total.labels(operation="validate", result="not_found").inc()
            return SessionValidation(valid=False, error=SESSION_NOT_FOUND)

        if not session.is_valid():
            logger.info(
                "session_inactive",
                extra={"session_id": session.id, "user_id": session.user_id},
            )
            session_operations_total.labels(operation="validate", result="inactive").inc()
            return SessionValidation(valid=False, error=SESSION_INACTIVE)

        now = datetime.now(UTC)
        try:
            self.store.touch(session.id, now)
            session = replace(session, last_accessed_at=now, updated_at=now)
        except SessionStoreError:
            logger.warning("session_touch_failed", extra={"session_id": session.id})

        logger.debug(
            "session_validated",
            extra={"user_id": claims.sub, "session_id": session.id, "jti": claims.jti},
        )
        return SessionValidation(valid=True, session=session, claims=claims)

    def refresh(self, refresh_token: str, client: ClientContext | None = None) -> RefreshResult:
        """Exchange a refresh token for a new pair and a new session row.

        The old session is deactivated in the same store transaction that
        writes the new one; a refresh token can succeed at most once.

        Raises:
            SessionStoreError: Store I/O failure
        """
        verification = self.codec.verify(refresh_token)
        if not verification.valid or verification.payload is None:
            session_operations_total.labels(operation="refresh", result="invalid_token").inc()
            return RefreshResult(valid=False, error=verification.error or "Invalid token")

        if verification.payload.get("type") != TokenType.REFRESH.value:
            logger.warning(
                "refresh_wrong_token_type",
                extra={"type": verification.payload.get("type"), "jti": verification.payload.get("jti")},
            )
            session_operations_total.labels(operation="refresh", result="wrong_type").inc()
            return RefreshResult(valid=False, error=INVALID_TOKEN_TYPE)

        with self._track("refresh"):
            old_session = self.store.find_by_refresh_token(refresh_token)
        if old_session is None or not old_session.is_valid():
            logger.warning(
                "refresh_session_invalid",
                extra={
                    "jti": verification.payload.get("jti"),
                    "session_id": old_session.id if old_session else None,
                },
            )
            session_operations_total.labels(operation="refresh", result="invalid_session").inc()
            return RefreshResult(valid=False, error=INVALID_SESSION)

        try:
            identity = translate_verified(verification.payload)
        except TranslationError:
            return RefreshResult(valid=False, error="Invalid token")

        new_session_id = Session.new_id()
        identity = replace(identity, session_id=new_session_id)
        tokens = self.codec.sign_pair(identity)

        client = client or ClientContext(
            user_agent=old_session.user_agent or UNKNOWN,
            ip_address=old_session.ip_address or UNKNOWN,
        )
        now = datetime.now(UTC)
        new_session = Session(
            id=new_session_id,
            user_id=old_session.user_id,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            expires_at=_session_expiry(identity, tokens.refresh_token, self.codec),
            last_accessed_at=now,
            created_at=now,
            updated_at=now,
            user_agent=client.user_agent,
            ip_address=client.ip_address,
            is_active=True,
        )

        with self._track("refresh"):
            rotated = self.store.rotate(old_session.id, new_session)
        if not rotated:
            logger.warning(
                "refresh_token_reuse_rejected",
                extra={"session_id": old_session.id, "user_id": old_session.user_id},
            )
            session_operations_total.labels(operation="refresh", result="conflict").inc()
            return RefreshResult(valid=False, error=INVALID_SESSION)

        session_operations_total.labels(operation="refresh", result="success").inc()
        logger.info(
            "session_refreshed",
            extra={
                "user_id": new_session.user_id,
                "old_session_id": old_session.id,
                "session_id": new_session.id,
            },
        )
        return RefreshResult(
            valid=True,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            expires_in=tokens.expires_in,
            session=new_session,
        )

    def revoke(self, session_id: str) -> bool:
        """Deactivate one session. Idempotent; returns True if it was active."""
        with self._track("revoke"):
            revoked = self.store.deactivate(session_id)
        logger.info("session_revoked", extra={"session_id": session_id, "changed": revoked})
        return revoked

    def revoke_all_for_user(self, user_id: str, exclude_session_id: str | None = None) -> int:
        """Deactivate every active session of ``user_id`` except ``exclude_session_id``.

        Returns:
            Number of sessions that were active and are now revoked
        """
        with self._track("revoke_all"):
            sessions = self.store.list_for_user(user_id)
            count = 0
            for session in sessions:
                if session.id == exclude_session_id or not session.is_active:
                    continue
                if self.store.deactivate(session.id):
                    count += 1

        logger.info(
            "user_sessions_revoked",
            extra={"user_id": user_id, "count": count, "excluded": exclude_session_id},
        )
        return count

    def logout(self, refresh_token: str) -> bool:
        """Deactivate the session bound to ``refresh_token``.

        Returns:
            True if the session was active, False if it was already logged out

        Raises:
            SessionNotFoundError: No session is bound to the token
        """
        with self._track("logout"):
            session = self.store.find_by_refresh_token(refresh_token)
        if session is None:
            raise SessionNotFoundError(SESSION_NOT_FOUND)
        if not session.is_active:
            logger.info("session_already_logged_out", extra={"session_id": session.id})
            return False
        return self.revoke(session.id)

    def list_active_sessions(self, user_id: str) -> list[Session]:
        with self._track("list"):
            sessions = self.store.list_for_user(user_id)
        return [session for session in sessions if session.is_valid()]

    def cleanup_expired(self) -> int:
        """Delete expired sessions that are still marked active.

        Safe to run repeatedly and concurrently; each row is deleted once.
        """
        with self._track("cleanup"):
            removed = self.store.delete_expired(datetime.now(UTC))
        logger.info("expired_sessions_cleaned", extra={"count": removed})
        return removed

    def get_session_cookie_params(self) -> dict[str, Any]:
        """Access-token cookie parameters (Secure, HttpOnly, SameSite, etc.)."""
        return {
            "secure": self.config.cookie_secure,
            "httponly": self.config.cookie_httponly,
            "samesite": self.config.cookie_samesite.lower(),
            "domain": self.config.cookie_domain,
            "path": self.config.cookie_path,
            "max_age": self.config.access_token_ttl,
        }

    def _track(self, operation: str) -> AbstractContextManager[None]:
        return _count_store_errors(operation)


@contextmanager
def _count_store_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except SessionStoreError:
        session_operations_total.labels(operation=operation, result="store_error").inc()
        raise


__all__ = [
    "ClientContext",
    "IssuedSession",
    "RefreshResult",
    "Session",
    "SessionManager",
    "SessionValidation",
]
