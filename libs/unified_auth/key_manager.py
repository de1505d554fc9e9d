"""RSA key management for RS256 token signing."""

import base64
import binascii
import logging
from dataclasses import dataclass

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from libs.unified_auth.config import AuthConfig
from libs.unified_auth.exceptions import KeyConfigurationError

logger = logging.getLogger(__name__)

DEV_KEY_ID = "temp-dev-key"
SELF_CHECK_MESSAGE = b"test-key-validation"


@dataclass(frozen=True)
class KeyValidationReport:
    """Result of re-running the key pair self-check (diagnostic endpoint payload)."""

    valid: bool
    key_id: str
    algorithm: str
    has_public_key: bool
    has_private_key: bool
    keys_match: bool
    error: str | None = None

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "valid": self.valid,
            "keyId": self.key_id,
            "algorithm": self.algorithm,
            "hasPublicKey": self.has_public_key,
            "hasPrivateKey": self.has_private_key,
            "keysMatch": self.keys_match,
        }
        if self.error:
            payload["error"] = self.error
        return payload


class KeyManager:
    """Holds the RSA key pair and key id used for RS256 tokens.

    Keys come from base64-encoded PEM material in AuthConfig. When no keys are
    configured a fresh 2048-bit pair is generated, but only in a development
    environment: tokens signed with an ephemeral key cannot be verified by any
    other instance, so production startup fails instead.

    The pair is validated by signing and verifying a fixed message. Instances are
    immutable after construction and safe to share across threads.
    """

    def __init__(self, config: AuthConfig) -> None:
        """Load or generate the RSA key pair.

        Args:
            config: Authentication configuration

        Raises:
            KeyConfigurationError: If keys are missing outside development,
                cannot be decoded, or do not form a matching pair
        """
        private_b64 = config.rs256_private_key_b64
        public_b64 = config.rs256_public_key_b64

        if not private_b64 or not public_b64:
            if not config.is_development:
                raise KeyConfigurationError(
                    "RS256 keys not configured: set JWT_RS256_PRIVATE_KEY_BASE64 and "
                    "JWT_RS256_PUBLIC_KEY_BASE64 (ephemeral keys are only allowed "
                    "when AUTH_ENVIRONMENT=development)"
                )
            logger.warning(
                "rs256_ephemeral_keys_generated",
                extra={
                    "key_id": DEV_KEY_ID,
                    "environment": config.environment,
                    "reason": "keys not configured; tokens will not verify on other instances",
                },
            )
            private_pem, public_pem = self.generate_key_pair()
            key_id = DEV_KEY_ID
            self.ephemeral = True
        else:
            private_pem = _decode_base64_key(private_b64, "private")
            public_pem = _decode_base64_key(public_b64, "public")
            key_id = config.rs256_key_id or "default"
            self.ephemeral = False

        self._private_key, self._public_key = _load_pair(private_pem, public_pem)
        self._key_id = key_id
        self._verify_pair()

        logger.info(
            "KeyManager initialized",
            extra={"key_id": self._key_id, "ephemeral": self.ephemeral},
        )

    @classmethod
    def from_pem(cls, private_pem: str, public_pem: str, key_id: str = "default") -> "KeyManager":
        """Build a KeyManager directly from PEM strings (tools and tests)."""
        private_b64, public_b64 = keys_to_base64(private_pem, public_pem)
        config = AuthConfig(
            rs256_enabled=True,
            rs256_private_key_b64=private_b64,
            rs256_public_key_b64=public_b64,
            rs256_key_id=key_id,
        )
        return cls(config)

    def get_private_key(self) -> rsa.RSAPrivateKey:
        """Private key for signing tokens."""
        return self._private_key

    def get_public_key(self) -> rsa.RSAPublicKey:
        """Public key for verifying tokens."""
        return self._public_key

    def get_key_id(self) -> str:
        """Key id embedded as the ``kid`` header."""
        return self._key_id

    def get_public_key_pem(self) -> str:
        return self._public_key.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode()

    def check_keys(self) -> KeyValidationReport:
        """Re-run the sign/verify self-check without raising."""
        try:
            self._verify_pair()
        except KeyConfigurationError as exc:
            return KeyValidationReport(
                valid=False,
                key_id=self._key_id,
                algorithm="RS256",
                has_public_key=self._public_key is not None,
                has_private_key=self._private_key is not None,
                keys_match=False,
                error=str(exc),
            )
        return KeyValidationReport(
            valid=True,
            key_id=self._key_id,
            algorithm="RS256",
            has_public_key=True,
            has_private_key=True,
            keys_match=True,
        )

    def _verify_pair(self) -> None:
        signature = self._private_key.sign(SELF_CHECK_MESSAGE, padding.PKCS1v15(), hashes.SHA256())
        try:
            self._public_key.verify(signature, SELF_CHECK_MESSAGE, padding.PKCS1v15(), hashes.SHA256())
        except InvalidSignature as exc:
            raise KeyConfigurationError(
                "Key validation failed: private and public keys do not match"
            ) from exc

    @staticmethod
    def generate_key_pair() -> tuple[str, str]:
        """Generate a 2048-bit RSA pair as (private PKCS8 PEM, public SPKI PEM)."""
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        private_pem = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode()
        public_pem = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode()
        return private_pem, public_pem


def keys_to_base64(private_pem: str, public_pem: str) -> tuple[str, str]:
    """Encode PEM keys for the JWT_RS256_*_KEY_BASE64 environment variables."""
    return (
        base64.b64encode(private_pem.encode()).decode(),
        base64.b64encode(public_pem.encode()).decode(),
    )


def _decode_base64_key(encoded: str, kind: str) -> bytes:
    try:
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise KeyConfigurationError(f"Failed to decode base64 {kind} key: {exc}") from exc


def _load_pair(private_pem: str | bytes, public_pem: str | bytes) -> tuple[rsa.RSAPrivateKey, rsa.RSAPublicKey]:
    if isinstance(private_pem, str):
        private_pem = private_pem.encode()
    if isinstance(public_pem, str):
        public_pem = public_pem.encode()

    try:
        private_key = serialization.load_pem_private_key(private_pem, password=None)
    except (ValueError, TypeError) as exc:
        raise KeyConfigurationError(f"Invalid private key format: {exc}") from exc
    if not isinstance(private_key, rsa.RSAPrivateKey):
        raise KeyConfigurationError(f"Expected RSA private key, got {type(private_key).__name__}")

    try:
        public_key = serialization.load_pem_public_key(public_pem)
    except (ValueError, TypeError) as exc:
        raise KeyConfigurationError(f"Invalid public key format: {exc}") from exc
    if not isinstance(public_key, rsa.RSAPublicKey):
        raise KeyConfigurationError(f"Expected RSA public key, got {type(public_key).__name__}")

    return private_key, public_key


__all__ = ["KeyManager", "KeyValidationReport", "keys_to_base64", "DEV_KEY_ID"]
