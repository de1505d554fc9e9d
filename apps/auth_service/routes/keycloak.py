"""Keycloak sign-in: exchange a verified Keycloak token for a unified session."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from apps.auth_service.dependencies import AuthComponents, components_from_request
from apps.auth_service.routes.cookies import set_access_cookie
from apps.auth_service.routes.login import client_context
from libs.unified_auth.claims import AuthProvider
from libs.unified_auth.exceptions import KeycloakClaimsError, KeycloakVerificationError
from libs.unified_auth.translator import oauth_to_unified

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth")


@router.post("/sign-in/keycloak")
async def sign_in_keycloak(
    request: Request,
    components: AuthComponents = Depends(components_from_request),
) -> JSONResponse:
    """Verify the Bearer Keycloak JWT against the realm JWKS and issue a session.

    Raises:
        HTTPException: 401 missing/invalid token, 400 token without sub or
            email, 503 when Keycloak is not configured
    """
    verifier = components.keycloak_verifier
    if verifier is None:
        raise HTTPException(
            status_code=503,
            detail={"error": "Unavailable", "message": "Keycloak sign-in is not configured"},
        )

    scheme, _, keycloak_jwt = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not keycloak_jwt.strip():
        raise HTTPException(
            status_code=401,
            detail={"error": "Authentication failed", "message": "Authorization token required"},
        )

    try:
        payload = await verifier.verify(keycloak_jwt.strip())
    except KeycloakClaimsError as e:
        raise HTTPException(
            status_code=400,
            detail={"error": "Invalid token", "message": "Token is missing sub or email"},
        ) from e
    except KeycloakVerificationError as e:
        logger.warning("keycloak_sign_in_rejected", extra={"reason": str(e)})
        raise HTTPException(
            status_code=401,
            detail={"error": "Authentication failed", "message": "Invalid Keycloak token"},
        ) from e

    claims = oauth_to_unified(payload, AuthProvider.KEYCLOAK)
    issued = await run_in_threadpool(components.sessions.issue, claims, client_context(request))

    logger.info(
        "keycloak_sign_in_succeeded",
        extra={"user_id": claims.sub, "session_id": issued.session.id, "role": claims.role.value},
    )
    response = JSONResponse(content=issued.to_response())
    set_access_cookie(response, components, issued.tokens.access_token)
    return response
