"""Public key publication documents (JWKS, PEM, key diagnostics).

External verifiers fetch these to validate RS256 tokens without access to the
private key. Responses are cacheable for an hour (``PUBLIC_KEY_CACHE_CONTROL``).
"""

import json
from typing import Any

from jwt.algorithms import RSAAlgorithm

from libs.unified_auth.key_manager import KeyManager

PUBLIC_KEY_CACHE_CONTROL = "public, max-age=3600"


def build_jwks(key_manager: KeyManager) -> dict[str, list[dict[str, Any]]]:
    """JWKS document with the active public key.

    Each key carries the RSA modulus/exponent plus ``kid``, ``alg`` and ``use``.
    """
    jwk: dict[str, Any] = json.loads(RSAAlgorithm.to_jwk(key_manager.get_public_key()))
    jwk.update({"kid": key_manager.get_key_id(), "alg": "RS256", "use": "sig"})
    return {"keys": [jwk]}


def build_public_key_document(key_manager: KeyManager) -> dict[str, str]:
    return {
        "keyId": key_manager.get_key_id(),
        "publicKey": key_manager.get_public_key_pem(),
        "algorithm": "RS256",
        "format": "PEM",
    }


def build_key_validation_document(key_manager: KeyManager) -> dict[str, object]:
    return key_manager.check_keys().to_dict()


__all__ = [
    "PUBLIC_KEY_CACHE_CONTROL",
    "build_jwks",
    "build_key_validation_document",
    "build_public_key_document",
]
