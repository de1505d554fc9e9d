"""Public key publication endpoints (JWKS, PEM, key diagnostics)."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from apps.auth_service.dependencies import AuthComponents, components_from_request
from libs.unified_auth.jwks import (
    PUBLIC_KEY_CACHE_CONTROL,
    build_jwks,
    build_key_validation_document,
    build_public_key_document,
)
from libs.unified_auth.key_manager import KeyManager

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth")


def _require_key_manager(components: AuthComponents) -> KeyManager:
    if components.key_manager is None:
        raise HTTPException(
            status_code=404,
            detail={"error": "Not found", "message": "RS256 signing is not enabled"},
        )
    return components.key_manager


@router.get("/.well-known/jwks.json")
def jwks(components: AuthComponents = Depends(components_from_request)) -> JSONResponse:
    """JWKS for external RS256 verifiers."""
    key_manager = _require_key_manager(components)
    return JSONResponse(
        content=build_jwks(key_manager),
        headers={"Cache-Control": PUBLIC_KEY_CACHE_CONTROL},
    )


@router.get("/public-key")
def public_key(components: AuthComponents = Depends(components_from_request)) -> JSONResponse:
    key_manager = _require_key_manager(components)
    return JSONResponse(
        content=build_public_key_document(key_manager),
        headers={"Cache-Control": PUBLIC_KEY_CACHE_CONTROL},
    )


@router.get("/keys/validate")
def validate_keys(components: AuthComponents = Depends(components_from_request)) -> JSONResponse:
    """Re-run the key pair self-check. Answers 500 when the pair no longer matches."""
    key_manager = _require_key_manager(components)
    document = build_key_validation_document(key_manager)
    if not document["valid"]:
        logger.error("key_validation_failed", extra={"key_id": document["keyId"]})
        return JSONResponse(content=document, status_code=500)
    return JSONResponse(content=document)
