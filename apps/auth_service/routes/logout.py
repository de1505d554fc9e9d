"""Logout endpoint: deactivates the session and clears the access cookie."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from apps.auth_service.dependencies import AuthComponents, components_from_request
from apps.auth_service.routes.cookies import clear_access_cookie
from libs.unified_auth.exceptions import SessionNotFoundError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth")


class LogoutRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    refresh_token: str = Field(alias="refreshToken", min_length=1)


@router.post("/logout")
def logout(
    body: LogoutRequest,
    components: AuthComponents = Depends(components_from_request),
) -> JSONResponse:
    """Log out the session bound to the refresh token.

    Logging out twice succeeds with a different message.

    Raises:
        HTTPException: 404 if no session is bound to the token
    """
    try:
        changed = components.sessions.logout(body.refresh_token)
    except SessionNotFoundError as e:
        raise HTTPException(
            status_code=404,
            detail={"error": "Session not found", "message": "Logout failed"},
        ) from e

    message = "Successfully logged out" if changed else "Session already logged out"
    response = JSONResponse(content={"success": True, "message": message})
    clear_access_cookie(response, components)
    return response
