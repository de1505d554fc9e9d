"""
Shared fixtures for the unified auth test suites.

RSA key generation is slow, so one throwaway pair is generated per test
session and shared by every suite that needs RS256 material.
"""

import pytest
from fakeredis import FakeRedis

from libs.unified_auth.config import AuthConfig
from libs.unified_auth.key_manager import KeyManager, keys_to_base64

HS256_TEST_SECRET = "test-hs256-secret-with-at-least-32-bytes!!"
TEST_KEY_ID = "test-key-1"


@pytest.fixture(scope="session")
def rsa_pem_pair() -> tuple[str, str]:
    """Throwaway (private PEM, public PEM) pair."""
    return KeyManager.generate_key_pair()


@pytest.fixture(scope="session")
def other_rsa_pem_pair() -> tuple[str, str]:
    """A second, unrelated pair for mismatch and foreign-signature tests."""
    return KeyManager.generate_key_pair()


@pytest.fixture()
def rs256_config(rsa_pem_pair: tuple[str, str]) -> AuthConfig:
    """RS256 signing with HS256 verification fallback."""
    private_b64, public_b64 = keys_to_base64(*rsa_pem_pair)
    return AuthConfig(
        environment="test",
        rs256_enabled=True,
        rs256_private_key_b64=private_b64,
        rs256_public_key_b64=public_b64,
        rs256_key_id=TEST_KEY_ID,
        hs256_secret=HS256_TEST_SECRET,
        cookie_secure=False,
    )


@pytest.fixture()
def hs256_config() -> AuthConfig:
    """HS256-only signing and verification."""
    return AuthConfig(
        environment="test",
        rs256_enabled=False,
        hs256_secret=HS256_TEST_SECRET,
        cookie_secure=False,
    )


@pytest.fixture()
def fake_redis() -> FakeRedis:
    return FakeRedis()
