"""Token refresh endpoint with single-use refresh tokens."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from apps.auth_service.dependencies import AuthComponents, components_from_request
from apps.auth_service.routes.cookies import set_access_cookie
from apps.auth_service.routes.login import client_context

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth")


class RefreshRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    refresh_token: str = Field(alias="refreshToken", min_length=1)


@router.post("/refresh")
def refresh_token(
    body: RefreshRequest,
    request: Request,
    components: AuthComponents = Depends(components_from_request),
) -> JSONResponse:
    """Rotate the session bound to a refresh token.

    The presented refresh token is consumed: replaying it, or racing a second
    refresh with it, fails with 401.

    Raises:
        HTTPException: 401 if the token or its session is invalid
    """
    result = components.sessions.refresh(body.refresh_token, client_context(request))
    if not result.valid or result.access_token is None:
        # Specific reason stays in the logs
        logger.warning("token_refresh_rejected", extra={"reason": result.error})
        raise HTTPException(
            status_code=401,
            detail={"error": "Authentication failed", "message": "Refresh failed"},
        )

    logger.info(
        "tokens_refreshed",
        extra={
            "user_id": result.session.user_id if result.session else None,
            "session_id": result.session.id if result.session else None,
        },
    )
    response = JSONResponse(content=result.to_response())
    set_access_cookie(response, components, result.access_token)
    return response
