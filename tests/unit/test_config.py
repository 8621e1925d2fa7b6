"""
Unit tests for Settings validation
"""

import pytest
from pydantic import ValidationError

from secure_credentials.core.config import Settings


class TestSettings:
    """Test environment parsing and validators"""

    def test_defaults(self):
        settings = Settings()
        assert settings.CHALLENGE_TTL_SECONDS == 300
        assert settings.DEVICE_REGISTRATION_TTL_SECONDS == 300
        assert settings.RATELIMIT_LOGIN_ATTEMPTS == 5

    def test_mechanism_is_normalized(self):
        assert Settings(TWO_FACTOR_MECHANISM="SIGNED_CHALLENGE").TWO_FACTOR_MECHANISM == "signed_challenge"

    def test_unknown_mechanism_rejected(self):
        with pytest.raises(ValidationError):
            Settings(TWO_FACTOR_MECHANISM="sms")

    def test_cors_origins_from_env(self, monkeypatch):
        monkeypatch.setenv("CORS_ALLOWED_ORIGINS", "http://a.example, http://b.example")
        assert Settings().CORS_ALLOWED_ORIGINS == ["http://a.example", "http://b.example"]

    def test_log_level(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "debug")
        assert Settings().LOG_LEVEL == "DEBUG"

        with pytest.raises(ValidationError):
            Settings(LOG_LEVEL="chatty")

    def test_ttl_from_env(self, monkeypatch):
        monkeypatch.setenv("CHALLENGE_TTL_SECONDS", "120")
        assert Settings().CHALLENGE_TTL_SECONDS == 120
