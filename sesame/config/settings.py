"""
Configuration management for Sesame.

This module provides centralized configuration management using Pydantic
for validation and type safety. Every bounded wait used by the engine is
configured here so that timeouts surface as explicit failure kinds.
"""

from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from sesame.core.models import Credentials


WAIT_CONDITIONS = {"commit", "domcontentloaded", "load", "networkidle"}


class BrowserSettings(BaseSettings):
    """Browser engine configuration settings."""

    headless: bool = Field(default=True, description="Run the browser without a window")
    timeout_ms: int = Field(default=30000, description="Default Playwright timeout")
    viewport_width: int = Field(default=1280)
    viewport_height: int = Field(default=720)
    slow_mo_ms: int = Field(default=0)
    user_agent: str = Field(
        default=(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
        ),
    )
    launch_args: List[str] = Field(
        default_factory=lambda: [
            "--no-sandbox",
            "--disable-setuid-sandbox",
            "--disable-dev-shm-usage",
            "--disable-blink-features=AutomationControlled",
        ]
    )

    model_config = SettingsConfigDict(env_prefix="BROWSER_", extra="ignore")


class EngineSettings(BaseSettings):
    """Step sequencer timing and retry budgets."""

    navigation_wait_until: str = Field(default="domcontentloaded")
    relaxed_wait_until: str = Field(default="commit")
    navigation_timeout_ms: int = Field(default=25000)
    element_retries: int = Field(default=3, ge=1)
    retry_backoff_seconds: float = Field(default=1.5, ge=0)
    typing_delay_ms: int = Field(default=60, ge=0)
    click_delay_ms: int = Field(default=120, ge=0)
    reveal_timeout_seconds: float = Field(default=20.0, gt=0)
    reveal_poll_seconds: float = Field(default=1.0, gt=0)
    reveal_retry_every: int = Field(default=5, ge=1)
    delegated_window_timeout_seconds: float = Field(default=10.0, ge=0)
    delegated_completion_timeout_seconds: float = Field(default=60.0, gt=0)
    cooldown_seconds: float = Field(default=30.0, ge=0)

    @field_validator("navigation_wait_until", "relaxed_wait_until")
    @classmethod
    def validate_wait_condition(cls, v: str) -> str:
        """Validate navigation wait condition."""
        if v not in WAIT_CONDITIONS:
            raise ValueError(f"Wait condition must be one of: {WAIT_CONDITIONS}")
        return v

    model_config = SettingsConfigDict(env_prefix="ENGINE_", extra="ignore")


class ChallengeSettings(BaseSettings):
    """Anti-automation challenge remediation budgets."""

    max_attempts: int = Field(default=3, ge=1)
    clear_timeout_seconds: float = Field(default=8.0, gt=0)
    poll_seconds: float = Field(default=0.5, gt=0)
    settle_seconds: float = Field(default=0.5, ge=0)
    image_min_fraction: float = Field(default=0.08, ge=0, le=1)

    model_config = SettingsConfigDict(env_prefix="CHALLENGE_", extra="ignore")


class WindowSettings(BaseSettings):
    """Window correlation settings."""

    blank_grace_seconds: float = Field(default=5.0, ge=0)
    poll_seconds: float = Field(default=0.25, gt=0)

    model_config = SettingsConfigDict(env_prefix="WINDOWS_", extra="ignore")


class VerifierSettings(BaseSettings):
    """Authentication verifier polling settings."""

    timeout_seconds: float = Field(default=45.0, gt=0)
    poll_interval_seconds: float = Field(default=1.0, gt=0)

    model_config = SettingsConfigDict(env_prefix="VERIFIER_", extra="ignore")


class DiagnosticsSettings(BaseSettings):
    """Diagnostics recorder settings."""

    screenshot_dir: Optional[Path] = Field(default=None)

    model_config = SettingsConfigDict(env_prefix="DIAGNOSTICS_", extra="ignore")


class LoggingSettings(BaseSettings):
    """Logging configuration settings."""

    level: str = Field(default="INFO")
    file: Optional[Path] = Field(default=None)
    structured: bool = Field(default=False)

    @field_validator("level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()

    model_config = SettingsConfigDict(env_prefix="LOG_", extra="ignore")


class CredentialSettings(BaseSettings):
    """Per-platform credentials, read from the environment or a .env file."""

    upwork_email: Optional[str] = None
    upwork_password: Optional[str] = None
    freelancer_email: Optional[str] = None
    freelancer_password: Optional[str] = None
    freelancer_username: Optional[str] = None
    hireline_email: Optional[str] = None
    hireline_password: Optional[str] = None
    indeed_email: Optional[str] = None
    indeed_password: Optional[str] = None
    braintrust_email: Optional[str] = None
    braintrust_password: Optional[str] = None
    glassdoor_email: Optional[str] = None
    glassdoor_password: Optional[str] = None
    linkedin_email: Optional[str] = None
    linkedin_password: Optional[str] = None

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def for_platform(self, platform: str) -> Optional[Credentials]:
        """
        Build credentials for a platform.

        Args:
            platform: Registered flow name (e.g. "upwork" or "upwork-google")

        Returns:
            Credentials, or None when the email or password is missing
        """
        key = platform.lower().split("-")[0]
        email = getattr(self, f"{key}_email", None)
        password = getattr(self, f"{key}_password", None)
        if not email or not password:
            return None
        return Credentials(
            identifier=email,
            secret=password,
            username=getattr(self, f"{key}_username", None),
        )


class Settings(BaseSettings):
    """Main application settings combining all configuration sections."""

    environment: str = Field(default="development")
    debug: bool = Field(default=False)

    browser: BrowserSettings = Field(default_factory=BrowserSettings)
    engine: EngineSettings = Field(default_factory=EngineSettings)
    challenge: ChallengeSettings = Field(default_factory=ChallengeSettings)
    windows: WindowSettings = Field(default_factory=WindowSettings)
    verifier: VerifierSettings = Field(default_factory=VerifierSettings)
    diagnostics: DiagnosticsSettings = Field(default_factory=DiagnosticsSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    credentials: CredentialSettings = Field(default_factory=CredentialSettings)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment setting."""
        valid_envs = {"development", "testing", "staging", "production"}
        if v.lower() not in valid_envs:
            raise ValueError(f"Environment must be one of: {valid_envs}")
        return v.lower()

    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    def is_testing(self) -> bool:
        """Check if running in testing mode."""
        return self.environment == "testing"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns:
        Settings: The application configuration
    """
    return Settings()
