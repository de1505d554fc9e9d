"""FastAPI auth service for unified token and session endpoints.

This service exposes the unified auth library over HTTP:
- /auth/.well-known/jwks.json, /auth/public-key, /auth/keys/validate: key publication
- /auth/login: Password login through the injected user directory
- /auth/refresh: Single-use refresh token rotation
- /auth/logout: Session deactivation
- /auth/sign-in/keycloak: Keycloak JWT to unified session
- /auth/sessions, /auth/me: Session listing/revocation and identity
- /metrics: Prometheus metrics

Runs on port 8001 (``python -m apps.auth_service.main``).
"""

import logging
import os

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from apps.auth_service.dependencies import AuthComponents, get_components
from apps.auth_service.routes import keycloak, keys, login, logout, refresh, sessions
from libs.common.logging import add_request_id_middleware, configure_logging
from libs.unified_auth.exceptions import SessionStoreError

logger = logging.getLogger(__name__)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Flatten structured ``{"error", "message"}`` details into the response body."""
    content = exc.detail if isinstance(exc.detail, dict) else {"error": exc.detail}
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


async def session_store_error_handler(request: Request, exc: SessionStoreError) -> JSONResponse:
    """Store outages answer 503 so clients can retry; nothing is retried server-side."""
    logger.error(
        "session_store_unavailable",
        extra={"path": request.url.path, "error": str(exc)},
    )
    return JSONResponse(
        status_code=503,
        content={"error": "Service unavailable", "message": "Session store unavailable"},
    )


def create_app(components: AuthComponents | None = None) -> FastAPI:
    """Build the auth service app.

    Args:
        components: Pre-built components (tests inject these); built from the
            environment when omitted

    Returns:
        Configured FastAPI application
    """
    if components is None:
        configure_logging(
            service_name="auth_service",
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )
        components = get_components()

    app = FastAPI(
        title="Auth Service",
        description="Unified token issuance, verification and session endpoints",
        version="1.0.0",
    )
    app.state.components = components
    app.state.auth_middleware = components.middleware

    add_request_id_middleware(app)
    app.add_exception_handler(HTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(SessionStoreError, session_store_error_handler)  # type: ignore[arg-type]

    app.include_router(keys.router, tags=["keys"])
    app.include_router(login.router, tags=["auth"])
    app.include_router(refresh.router, tags=["auth"])
    app.include_router(logout.router, tags=["auth"])
    app.include_router(keycloak.router, tags=["auth"])
    app.include_router(sessions.router, tags=["sessions"])

    app.mount("/metrics", make_asgi_app())

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "healthy", "service": "auth_service"}

    logger.info(
        "Auth service created",
        extra={
            "algorithm": components.codec.algorithm,
            "environment": components.config.environment,
        },
    )
    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "apps.auth_service.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8001")),
    )
