"""Tests for AuthConfig loading and validation."""

import pytest

from libs.unified_auth.config import AuthConfig, codec_config_from_legacy
from libs.unified_auth.exceptions import KeyConfigurationError


class TestDefaults:
    def test_secure_defaults(self):
        config = AuthConfig()

        assert config.environment == "production"
        assert config.is_development is False
        assert config.signing_algorithm == "HS256"
        assert config.access_token_ttl == 3 * 60 * 60
        assert config.refresh_token_ttl == 7 * 24 * 60 * 60
        assert config.cookie_secure is True
        assert config.cookie_httponly is True
        assert config.cookie_samesite == "Strict"

    @pytest.mark.parametrize(
        ("environment", "expected"),
        [("development", True), ("Dev", True), ("test", True), ("staging", False)],
    )
    def test_is_development(self, environment, expected):
        assert AuthConfig(environment=environment).is_development is expected

    def test_keycloak_issuer(self):
        config = AuthConfig(keycloak_url="https://kc.example.com/", keycloak_realm="main")

        assert config.keycloak_issuer == "https://kc.example.com/realms/main"
        assert AuthConfig(keycloak_url="https://kc.example.com").keycloak_issuer is None


class TestValidate:
    def test_no_signing_scheme(self):
        with pytest.raises(KeyConfigurationError, match="No signing key"):
            AuthConfig(rs256_enabled=False, hs256_secret=None).validate()

    def test_rs256_without_secret_is_valid(self):
        AuthConfig(rs256_enabled=True).validate()

    def test_non_positive_lifetime(self):
        with pytest.raises(KeyConfigurationError, match="positive"):
            AuthConfig(hs256_secret="s", access_token_ttl=0).validate()


class TestFromEnv:
    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("AUTH_ENVIRONMENT", "staging")
        monkeypatch.setenv("ENABLE_RS256_TOKENS", "true")
        monkeypatch.setenv("JWT_RS256_KEY_ID", "key-2026")
        monkeypatch.setenv("JWT_SECRET", "env-secret")
        monkeypatch.setenv("ACCESS_TOKEN_TTL", "600")
        monkeypatch.setenv("COOKIE_SECURE", "false")
        monkeypatch.setenv("COOKIE_SAMESITE", "Lax")
        monkeypatch.setenv("AUTH_SESSION_STORE_TIMEOUT", "2.5")
        monkeypatch.setenv("KEYCLOAK_URL", "https://kc.example.com")
        monkeypatch.setenv("KEYCLOAK_REALM", "main")
        monkeypatch.setenv("KEYCLOAK_CLIENT_ID", "backend")

        config = AuthConfig.from_env()

        assert config.environment == "staging"
        assert config.rs256_enabled is True
        assert config.rs256_key_id == "key-2026"
        assert config.hs256_secret == "env-secret"
        assert config.access_token_ttl == 600
        assert config.cookie_secure is False
        assert config.cookie_samesite == "Lax"
        assert config.session_store_timeout == 2.5
        assert config.keycloak_issuer == "https://kc.example.com/realms/main"

    def test_empty_values_become_none(self, monkeypatch):
        monkeypatch.setenv("JWT_SECRET", "")
        monkeypatch.setenv("JWT_RS256_PRIVATE_KEY_BASE64", "")
        monkeypatch.delenv("ENABLE_RS256_TOKENS", raising=False)

        config = AuthConfig.from_env()

        assert config.hs256_secret is None
        assert config.rs256_private_key_b64 is None
        assert config.rs256_enabled is False


class TestLegacyOptions:
    def test_maps_known_options(self):
        base = AuthConfig(hs256_secret="base-secret")

        config = codec_config_from_legacy(
            {
                "secretKey": "ignored",
                "accessTokenExpiry": 900,
                "refreshTokenExpiry": "86400",
                "issuer": "legacy-issuer",
                "audience": "legacy-audience",
            },
            base,
        )

        assert config.access_token_ttl == 900
        assert config.refresh_token_ttl == 86400
        assert config.jwt_issuer == "legacy-issuer"
        assert config.jwt_audience == "legacy-audience"
        assert config.hs256_secret == "base-secret"

    def test_missing_options_keep_base(self):
        base = AuthConfig(access_token_ttl=1234)

        config = codec_config_from_legacy({"accessTokenExpiry": 0}, base)

        assert config == base
