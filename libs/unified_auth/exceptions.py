"""Authentication exceptions for the unified auth library.

Ordinary authentication failures (bad signature, expired token, revoked
session) are reported as structured results by the codec and the session
manager. The exceptions below cover configuration errors, programmer errors
and session store I/O failures.
"""


class AuthError(Exception):
    """Base exception for all authentication errors."""


class KeyConfigurationError(AuthError):
    """Raised when RSA key material is missing, malformed or mismatched."""


class SigningError(AuthError):
    """Raised when no usable signing key is available for a token."""


class TranslationError(AuthError):
    """Raised when a provider payload lacks a field required for translation."""


class SessionError(AuthError):
    """Base exception for session lifecycle errors."""


class SessionNotFoundError(SessionError):
    """Raised when no session row matches the presented token or id."""


class SessionStoreError(SessionError):
    """Raised when the session store fails (I/O error or timeout).

    The manager never retries; callers decide whether to try again.
    """

    def __init__(self, message: str = "session operation failed") -> None:
        super().__init__(message)


class KeycloakVerificationError(AuthError):
    """Raised when a Keycloak-issued token cannot be verified."""


class KeycloakClaimsError(KeycloakVerificationError):
    """Raised when a verified Keycloak token lacks sub or email."""


__all__ = [
    "AuthError",
    "KeyConfigurationError",
    "SigningError",
    "TranslationError",
    "SessionError",
    "SessionNotFoundError",
    "SessionStoreError",
    "KeycloakVerificationError",
    "KeycloakClaimsError",
]
