"""Session listing, bulk revocation and identity endpoints."""

import logging
from typing import Any

from fastapi import APIRouter, Depends

from apps.auth_service.dependencies import AuthComponents, components_from_request
from libs.unified_auth.middleware import AuthenticatedPrincipal, optional_auth, require_auth

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth")


@router.get("/sessions")
def list_sessions(
    principal: AuthenticatedPrincipal = Depends(require_auth()),
    components: AuthComponents = Depends(components_from_request),
) -> dict[str, Any]:
    """Active sessions of the caller; the calling session is flagged ``current``."""
    sessions = components.sessions.list_active_sessions(principal.user_id)
    return {
        "sessions": [
            {**session.to_public_dict(), "current": session.id == principal.session_id}
            for session in sessions
        ]
    }


@router.delete("/sessions")
def revoke_other_sessions(
    principal: AuthenticatedPrincipal = Depends(require_auth()),
    components: AuthComponents = Depends(components_from_request),
) -> dict[str, Any]:
    """Revoke every session of the caller except the current one."""
    revoked = components.sessions.revoke_all_for_user(
        principal.user_id, exclude_session_id=principal.session_id
    )
    logger.info(
        "other_sessions_revoked",
        extra={"user_id": principal.user_id, "count": revoked},
    )
    return {"success": True, "revoked": revoked}


@router.get("/me")
def me(principal: AuthenticatedPrincipal | None = Depends(optional_auth())) -> dict[str, Any]:
    if principal is None:
        return {"authenticated": False}
    return {"authenticated": True, "user": principal.to_dict()}
