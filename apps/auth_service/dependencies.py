"""Component wiring for the auth service.

``build_components`` is the composition root: it turns an AuthConfig and a
Redis client into the key manager, codec, session store, session manager and
request middleware. ``get_components`` builds the default set from the
environment once per process. Routes read the set bound to the running app
from ``app.state.components``.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Protocol

import redis
from fastapi import Request

from libs.unified_auth.config import AuthConfig
from libs.unified_auth.key_manager import KeyManager
from libs.unified_auth.keycloak import KeycloakVerifier
from libs.unified_auth.middleware import AuthMiddleware
from libs.unified_auth.session import SessionManager
from libs.unified_auth.session_store import RedisSessionStore
from libs.unified_auth.token_codec import TokenCodec

logger = logging.getLogger(__name__)


class UserLookup(Protocol):
    """Credential check supplied by the user directory.

    Returns a first-party claim mapping (``sub``, ``email``, ``name``,
    ``role``, ...) for valid credentials, otherwise None.
    """

    def authenticate(self, email: str, password: str) -> Mapping[str, Any] | None: ...


@dataclass
class AuthComponents:
    config: AuthConfig
    key_manager: KeyManager | None
    codec: TokenCodec
    store: RedisSessionStore
    sessions: SessionManager
    middleware: AuthMiddleware
    user_lookup: UserLookup | None = None
    keycloak_verifier: KeycloakVerifier | None = None


def build_components(
    config: AuthConfig,
    redis_client: redis.Redis,
    user_lookup: UserLookup | None = None,
    keycloak_verifier: KeycloakVerifier | None = None,
) -> AuthComponents:
    """Construct every auth component from explicit configuration.

    A Keycloak verifier is created from ``config`` when Keycloak is configured
    and none is passed in.

    Raises:
        KeyConfigurationError: No usable signing scheme, or RS256 keys missing
            outside development
    """
    config.validate()
    key_manager = KeyManager(config) if config.rs256_enabled else None
    codec = TokenCodec(config, key_manager)
    store = RedisSessionStore(redis_client, config)
    sessions = SessionManager(store, codec, config)
    middleware = AuthMiddleware(sessions, cookie_name=config.auth_cookie_name)

    if keycloak_verifier is None and config.keycloak_issuer and config.keycloak_client_id:
        keycloak_verifier = KeycloakVerifier(config)

    logger.info(
        "auth_components_built",
        extra={
            "algorithm": codec.algorithm,
            "key_id": codec.key_id,
            "password_login": user_lookup is not None,
            "keycloak_sign_in": keycloak_verifier is not None,
        },
    )
    return AuthComponents(
        config=config,
        key_manager=key_manager,
        codec=codec,
        store=store,
        sessions=sessions,
        middleware=middleware,
        user_lookup=user_lookup,
        keycloak_verifier=keycloak_verifier,
    )


@lru_cache
def get_redis_client() -> redis.Redis:
    """Redis client singleton for sessions (socket timeout bounds every store call)."""
    config = AuthConfig.from_env()
    return redis.Redis(
        host=os.getenv("REDIS_HOST", "redis"),
        port=int(os.getenv("REDIS_PORT", "6379")),
        db=int(os.getenv("REDIS_SESSION_DB", "1")),
        socket_timeout=config.session_store_timeout,
        socket_connect_timeout=config.session_store_timeout,
        decode_responses=False,
    )


@lru_cache
def get_components() -> AuthComponents:
    """Components built from environment variables (process singleton)."""
    return build_components(AuthConfig.from_env(), get_redis_client())


def components_from_request(request: Request) -> AuthComponents:
    """FastAPI dependency returning the components bound to the running app."""
    return request.app.state.components  # type: ignore[no-any-return]
