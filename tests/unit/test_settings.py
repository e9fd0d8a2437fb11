"""
Unit tests for configuration management.
"""

import pytest
from pydantic import ValidationError

from sesame.config.settings import (
    CredentialSettings,
    EngineSettings,
    LoggingSettings,
    Settings,
    get_settings,
)


@pytest.mark.unit
class TestCredentialSettings:
    """Test cases for per-platform credential lookup."""

    def test_for_platform(self):
        settings = CredentialSettings(linkedin_email="me@example.com", linkedin_password="pw")

        credentials = settings.for_platform("linkedin")
        assert credentials.identifier == "me@example.com"
        assert credentials.secret == "pw"
        assert credentials.username is None

    def test_variant_flow_uses_base_platform_credentials(self):
        settings = CredentialSettings(upwork_email="me@example.com", upwork_password="pw")

        assert settings.for_platform("upwork-google").identifier == "me@example.com"

    def test_missing_password_yields_none(self):
        settings = CredentialSettings(indeed_email="me@example.com", indeed_password=None)

        assert settings.for_platform("indeed") is None

    def test_unknown_platform_yields_none(self):
        assert CredentialSettings().for_platform("myspace") is None

    def test_username_is_carried(self):
        settings = CredentialSettings(
            freelancer_email="me@example.com",
            freelancer_password="pw",
            freelancer_username="me123",
        )

        assert settings.for_platform("freelancer").username == "me123"

    def test_read_from_environment(self, monkeypatch):
        monkeypatch.setenv("GLASSDOOR_EMAIL", "env@example.com")
        monkeypatch.setenv("GLASSDOOR_PASSWORD", "env-pw")

        assert CredentialSettings().for_platform("glassdoor").secret == "env-pw"


@pytest.mark.unit
class TestEngineSettings:
    def test_defaults(self):
        engine = EngineSettings()

        assert engine.navigation_wait_until == "domcontentloaded"
        assert engine.relaxed_wait_until == "commit"
        assert engine.element_retries == 3

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("ENGINE_ELEMENT_RETRIES", "5")
        monkeypatch.setenv("ENGINE_COOLDOWN_SECONDS", "2.5")

        engine = EngineSettings()
        assert engine.element_retries == 5
        assert engine.cooldown_seconds == 2.5

    def test_invalid_wait_condition(self):
        with pytest.raises(ValidationError):
            EngineSettings(navigation_wait_until="whenever")

    def test_retry_budget_must_be_positive(self):
        with pytest.raises(ValidationError):
            EngineSettings(element_retries=0)


@pytest.mark.unit
class TestSettings:
    def test_log_level_is_normalised(self):
        assert LoggingSettings(level="debug").level == "DEBUG"

    def test_invalid_log_level(self):
        with pytest.raises(ValidationError):
            LoggingSettings(level="chatty")

    def test_invalid_environment(self):
        with pytest.raises(ValidationError):
            Settings(environment="moon")

    def test_testing_environment(self):
        assert get_settings().is_testing()

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()
