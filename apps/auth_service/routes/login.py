"""Password login endpoint issuing a unified session."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from apps.auth_service.dependencies import AuthComponents, components_from_request
from apps.auth_service.routes.cookies import set_access_cookie
from libs.unified_auth.exceptions import TranslationError
from libs.unified_auth.session import ClientContext
from libs.unified_auth.translator import first_party_to_unified

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth")


class LoginRequest(BaseModel):
    email: str = Field(min_length=1)
    password: str = Field(min_length=1)


def client_context(request: Request) -> ClientContext:
    return ClientContext.from_headers(
        request.headers, request.client.host if request.client else None
    )


@router.post("/login")
def login(
    body: LoginRequest,
    request: Request,
    components: AuthComponents = Depends(components_from_request),
) -> JSONResponse:
    """Check credentials with the user directory and issue a token pair + session.

    Raises:
        HTTPException: 401 for bad credentials, 503 when no user directory is wired
    """
    if components.user_lookup is None:
        raise HTTPException(
            status_code=503,
            detail={"error": "Unavailable", "message": "Password login is not configured"},
        )

    user_claims = components.user_lookup.authenticate(body.email, body.password)
    if user_claims is None:
        logger.info("login_rejected", extra={"reason": "invalid_credentials"})
        raise HTTPException(
            status_code=401,
            detail={"error": "Authentication failed", "message": "Invalid email or password"},
        )

    try:
        claims = first_party_to_unified(user_claims)
    except TranslationError as e:
        logger.error("login_user_claims_invalid", extra={"error": str(e)})
        raise HTTPException(
            status_code=500,
            detail={"error": "Login failed", "message": "User record is incomplete"},
        ) from e

    issued = components.sessions.issue(claims, client_context(request))

    logger.info(
        "login_succeeded",
        extra={"user_id": claims.sub, "session_id": issued.session.id},
    )
    response = JSONResponse(content=issued.to_response())
    set_access_cookie(response, components, issued.tokens.access_token)
    return response
