"""Session records and the Redis-backed session store.

Redis layout (all keys carry ``config.redis_key_prefix``):

- ``session:{id}``            hash with the session row
- ``access:{sha256(token)}``  session id bound to an access token
- ``refresh:{sha256(token)}`` session id bound to a refresh token
- ``user:{user_id}``          set of the user's session ids
- ``active_expiry``           sorted set of ACTIVE session ids scored by expiry

Token strings are only stored inside the session hash; index keys use their
SHA-256 digest. Rows and indexes expire ``session_retention_seconds`` after
the session itself so deactivated sessions stay visible for audit.
"""

from __future__ import annotations

import hashlib
import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol, cast

from redis import Redis
from redis.exceptions import RedisError, WatchError

from libs.unified_auth.config import AuthConfig
from libs.unified_auth.exceptions import SessionStoreError

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class Session:
    """Server-side record binding a token pair to a user and a liveness window."""

    id: str
    user_id: str
    access_token: str
    refresh_token: str
    expires_at: datetime
    last_accessed_at: datetime = field(default_factory=_utcnow)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    user_agent: str | None = None
    ip_address: str | None = None
    is_active: bool = True

    @staticmethod
    def new_id() -> str:
        return str(uuid.uuid4())

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or _utcnow()) >= self.expires_at

    def is_valid(self, now: datetime | None = None) -> bool:
        return self.is_active and not self.is_expired(now)

    def is_expiring_soon(self, minutes: int = 15, now: datetime | None = None) -> bool:
        """True when the session is still valid but expires within ``minutes``."""
        now = now or _utcnow()
        return self.is_valid(now) and self.expires_at - now <= timedelta(minutes=minutes)

    def to_public_dict(self) -> dict[str, Any]:
        """Session fields safe to return to clients (no token strings)."""
        return {
            "id": self.id,
            "userId": self.user_id,
            "userAgent": self.user_agent,
            "ipAddress": self.ip_address,
            "isActive": self.is_active,
            "expiresAt": self.expires_at.isoformat(),
            "lastAccessedAt": self.last_accessed_at.isoformat(),
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "expiresAt": self.expires_at.isoformat(),
            "lastAccessedAt": self.last_accessed_at.isoformat(),
        }


class SessionStore(Protocol):
    """Persistence boundary used by SessionManager.

    Implementations raise SessionStoreError for any I/O failure or timeout.
    """

    def save(self, session: Session) -> None: ...

    def get(self, session_id: str) -> Session | None: ...

    def find_by_access_token(self, token: str) -> Session | None: ...

    def find_by_refresh_token(self, token: str) -> Session | None: ...

    def touch(self, session_id: str, accessed_at: datetime) -> None: ...

    def deactivate(self, session_id: str) -> bool: ...

    def rotate(self, old_session_id: str, new_session: Session) -> bool: ...

    def list_for_user(self, user_id: str) -> list[Session]: ...

    def delete_expired(self, now: datetime) -> int: ...


def token_digest(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def _text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode()
    return str(value)


def _ts(value: datetime) -> str:
    return repr(value.timestamp())


def _from_ts(value: Any) -> datetime:
    return datetime.fromtimestamp(float(_text(value)), UTC)


class RedisSessionStore:
    """Session store on a synchronous Redis client.

    Works with clients created with or without ``decode_responses``. The
    client's ``socket_timeout`` is the deadline for every call; timeouts and
    connection errors surface as SessionStoreError and are never retried here.

    Refresh rotation is an optimistic transaction: the old session hash is
    WATCHed, checked for ``is_active``, then deactivated together with the
    write of the new session in one MULTI/EXEC. A concurrent write to the old
    row aborts the EXEC and the check is re-run, so at most one rotation per
    session succeeds.
    """

    def __init__(self, redis_client: Redis, config: AuthConfig) -> None:
        self.redis = redis_client
        self.prefix = config.redis_key_prefix
        self.retention_seconds = config.session_retention_seconds

    # Key helpers

    def _session_key(self, session_id: str) -> str:
        return f"{self.prefix}session:{session_id}"

    def _access_key(self, token: str) -> str:
        return f"{self.prefix}access:{token_digest(token)}"

    def _refresh_key(self, token: str) -> str:
        return f"{self.prefix}refresh:{token_digest(token)}"

    def _user_key(self, user_id: str) -> str:
        return f"{self.prefix}user:{user_id}"

    @property
    def _expiry_key(self) -> str:
        return f"{self.prefix}active_expiry"

    @contextmanager
    def _store_errors(self, operation: str, **context: Any) -> Iterator[None]:
        try:
            yield
        except RedisError as e:
            logger.error(
                "session_store_failed",
                extra={"operation": operation, "error": str(e), **context},
            )
            raise SessionStoreError() from e

    # Serialization

    def _to_mapping(self, session: Session) -> dict[str, str]:
        return {
            "id": session.id,
            "user_id": session.user_id,
            "access_token": session.access_token,
            "refresh_token": session.refresh_token,
            "expires_at": _ts(session.expires_at),
            "last_accessed_at": _ts(session.last_accessed_at),
            "created_at": _ts(session.created_at),
            "updated_at": _ts(session.updated_at),
            "user_agent": session.user_agent or "",
            "ip_address": session.ip_address or "",
            "is_active": "1" if session.is_active else "0",
        }

    def _from_mapping(self, raw: dict[Any, Any]) -> Session | None:
        if not raw:
            return None
        data = {_text(key): _text(value) for key, value in raw.items()}
        try:
            return Session(
                id=data["id"],
                user_id=data["user_id"],
                access_token=data["access_token"],
                refresh_token=data["refresh_token"],
                expires_at=_from_ts(data["expires_at"]),
                last_accessed_at=_from_ts(data["last_accessed_at"]),
                created_at=_from_ts(data["created_at"]),
                updated_at=_from_ts(data["updated_at"]),
                user_agent=data.get("user_agent") or None,
                ip_address=data.get("ip_address") or None,
                is_active=data.get("is_active") == "1",
            )
        except (KeyError, ValueError) as e:
            # Partially deleted rows read as missing
            logger.warning("session_row_unreadable", extra={"error": str(e)})
            return None

    def _queue_save(self, pipe: Any, session: Session) -> None:
        expire_at = int(session.expires_at.timestamp()) + self.retention_seconds
        session_key = self._session_key(session.id)
        access_key = self._access_key(session.access_token)
        refresh_key = self._refresh_key(session.refresh_token)
        user_key = self._user_key(session.user_id)

        pipe.hset(session_key, mapping=self._to_mapping(session))
        pipe.set(access_key, session.id)
        pipe.set(refresh_key, session.id)
        pipe.sadd(user_key, session.id)
        for key in (session_key, access_key, refresh_key, user_key):
            pipe.expireat(key, expire_at)
        if session.is_active:
            pipe.zadd(self._expiry_key, {session.id: session.expires_at.timestamp()})

    # Operations

    def save(self, session: Session) -> None:
        with self._store_errors("save", session_id=session.id):
            pipe = self.redis.pipeline(transaction=True)
            self._queue_save(pipe, session)
            pipe.execute()

    def get(self, session_id: str) -> Session | None:
        with self._store_errors("get", session_id=session_id):
            raw = self.redis.hgetall(self._session_key(session_id))
        return self._from_mapping(cast(dict[Any, Any], raw))

    def _find_by_index(self, index_key: str, operation: str) -> Session | None:
        with self._store_errors(operation):
            session_id = self.redis.get(index_key)
        if session_id is None:
            return None
        return self.get(_text(session_id))

    def find_by_access_token(self, token: str) -> Session | None:
        session = self._find_by_index(self._access_key(token), "find_by_access_token")
        if session is not None and session.access_token != token:
            return None
        return session

    def find_by_refresh_token(self, token: str) -> Session | None:
        session = self._find_by_index(self._refresh_key(token), "find_by_refresh_token")
        if session is not None and session.refresh_token != token:
            return None
        return session

    def touch(self, session_id: str, accessed_at: datetime) -> None:
        """Record an access time. Best effort: a write that races another writer is dropped."""
        session_key = self._session_key(session_id)
        with self._store_errors("touch", session_id=session_id):
            with self.redis.pipeline() as pipe:
                try:
                    pipe.watch(session_key)
                    # Do not resurrect a row deleted by cleanup
                    if not pipe.exists(session_key):
                        pipe.unwatch()
                        return
                    pipe.multi()
                    pipe.hset(
                        session_key,
                        mapping={
                            "last_accessed_at": _ts(accessed_at),
                            "updated_at": _ts(accessed_at),
                        },
                    )
                    pipe.execute()
                except WatchError:
                    logger.debug("session_touch_skipped", extra={"session_id": session_id})

    def deactivate(self, session_id: str) -> bool:
        """Flip ``is_active`` off. Returns False when missing or already inactive."""
        session_key = self._session_key(session_id)
        with self._store_errors("deactivate", session_id=session_id):
            with self.redis.pipeline() as pipe:
                while True:
                    try:
                        pipe.watch(session_key)
                        is_active = pipe.hget(session_key, "is_active")
                        if is_active is None or _text(is_active) != "1":
                            pipe.unwatch()
                            return False
                        pipe.multi()
                        pipe.hset(
                            session_key,
                            mapping={"is_active": "0", "updated_at": _ts(_utcnow())},
                        )
                        pipe.zrem(self._expiry_key, session_id)
                        pipe.execute()
                        return True
                    except WatchError:
                        # Row changed underneath us; re-read and decide again
                        continue

    def rotate(self, old_session_id: str, new_session: Session) -> bool:
        """Deactivate ``old_session_id`` and save ``new_session`` atomically.

        Returns False when the old session is missing, inactive or expired;
        nothing is written in that case. A concurrent write to the old row
        (an access-time touch, a competing rotation) restarts the check, so
        of several rotations of one session only the first to commit wins.
        """
        old_key = self._session_key(old_session_id)
        with self._store_errors("rotate", session_id=old_session_id):
            with self.redis.pipeline() as pipe:
                while True:
                    try:
                        pipe.watch(old_key)
                        is_active, expires_at = pipe.hmget(old_key, ["is_active", "expires_at"])
                        if (
                            is_active is None
                            or _text(is_active) != "1"
                            or expires_at is None
                            or _from_ts(expires_at) <= _utcnow()
                        ):
                            pipe.unwatch()
                            return False
                        pipe.multi()
                        pipe.hset(
                            old_key,
                            mapping={"is_active": "0", "updated_at": _ts(new_session.created_at)},
                        )
                        pipe.zrem(self._expiry_key, old_session_id)
                        self._queue_save(pipe, new_session)
                        pipe.execute()
                        return True
                    except WatchError:
                        logger.info(
                            "session_rotation_retry",
                            extra={"session_id": old_session_id, "new_session_id": new_session.id},
                        )
                        continue

    def list_for_user(self, user_id: str) -> list[Session]:
        user_key = self._user_key(user_id)
        with self._store_errors("list_for_user", user_id=user_id):
            session_ids = self.redis.smembers(user_key)
        sessions = []
        for session_id in sorted(_text(sid) for sid in cast(set[Any], session_ids)):
            session = self.get(session_id)
            if session is None:
                # Row expired or was cleaned up; drop the dangling index entry
                with self._store_errors("list_for_user", user_id=user_id):
                    self.redis.srem(user_key, session_id)
                continue
            sessions.append(session)
        return sessions

    def delete_expired(self, now: datetime) -> int:
        """Delete active sessions past expiry.

        Each id is claimed with ZREM before deletion, so concurrent sweepers
        never delete the same row twice.
        """
        deleted = 0
        with self._store_errors("delete_expired"):
            candidates = self.redis.zrangebyscore(self._expiry_key, 0, now.timestamp())
            for raw_id in cast(list[Any], candidates):
                session_id = _text(raw_id)
                if not self.redis.zrem(self._expiry_key, session_id):
                    continue
                session = self._from_mapping(
                    cast(dict[Any, Any], self.redis.hgetall(self._session_key(session_id)))
                )
                pipe = self.redis.pipeline(transaction=True)
                pipe.delete(self._session_key(session_id))
                if session is not None:
                    pipe.delete(self._access_key(session.access_token))
                    pipe.delete(self._refresh_key(session.refresh_token))
                    pipe.srem(self._user_key(session.user_id), session_id)
                pipe.execute()
                deleted += 1
        return deleted


__all__ = ["RedisSessionStore", "Session", "SessionStore", "token_digest"]
