# src/config/settings.py — v3
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for provider toggles, credential access preferences,
secure store backend, timeouts and logging. The core only ever reads it.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from quotabar.core.models import ALL_PROVIDERS


class ConfigurationError(Exception):
    """Raised when configuration is internally inconsistent."""


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === Providers ===
    enabled_providers: str = "codex,claude,ollama,openrouter,zai"
    refresh_interval_s: int = 300
    provider_timeout_s: float = 60.0

    # === Credential access ===
    keychain_access_disabled: bool = False
    claude_keychain_read_strategy: Literal["legacy", "experimental"] = "legacy"
    claude_keychain_prompt_policy: Literal[
        "never", "only_on_user_action", "always"
    ] = "only_on_user_action"
    claude_keychain_service: str = "Claude Code-credentials"
    keychain_read_timeout_s: float = 1.5
    keychain_prompt_timeout_s: float = 30.0
    security_binary: Path = Path("/usr/bin/security")

    # === Secure store ===
    secure_store_backend: Literal["keychain", "encrypted_file", "memory"] = "keychain"
    secure_store_service: str = "com.quotabar.cache"
    secure_store_root: Path = Path("~/.quotabar/secure")
    secure_store_key_file: Path = Path("~/.quotabar/secure/.key")
    legacy_cookie_dir: Path = Path("~/Library/Application Support/QuotaBar")

    # === Per-provider credentials ===
    claude_oauth_token: str = ""
    claude_credentials_path: Path = Path("~/.claude/.credentials.json")
    claude_usage_url: str = "https://api.anthropic.com/api/oauth/usage"
    codex_cookie_header: str = ""
    codex_dashboard_url: str = "https://chatgpt.com/codex/settings/usage"
    ollama_cookie_header: str = ""
    ollama_settings_url: str = "https://ollama.com/settings"
    ollama_browser_import: bool = False
    openrouter_api_key: str = ""
    openrouter_api_url: str = "https://openrouter.ai/api/v1"
    zai_api_key: str = ""
    zai_api_host: str = ""

    # === Network ===
    http_timeout_s: float = 15.0
    openrouter_key_timeout_s: float = 1.0
    daily_breakdown_max_days: int = 30

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "text"
    log_file: Path | None = Path("~/.quotabar/logs/quotabar.log")
    log_rotation: str = "10MB"
    log_retention: int = 5

    # --- Validators ---

    @field_validator("refresh_interval_s")
    @classmethod
    def validate_refresh_interval(cls, v: int) -> int:
        """Polling faster than every 30 seconds hammers provider dashboards."""
        if v < 30:
            raise ValueError("refresh_interval_s must be >= 30")
        return v

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Validate cross-field consistency rules."""
        errors: list[str] = []

        unknown = [p for p in self.enabled_providers_list if p not in ALL_PROVIDERS]
        if unknown:
            errors.append(f"ENABLED_PROVIDERS has unknown providers: {', '.join(unknown)}")

        if min(self.keychain_read_timeout_s, self.keychain_prompt_timeout_s, self.http_timeout_s) <= 0:
            errors.append("Timeouts must be positive")

        if self.provider_timeout_s < self.http_timeout_s:
            errors.append("PROVIDER_TIMEOUT_S must be >= HTTP_TIMEOUT_S")

        if self.keychain_prompt_timeout_s > self.provider_timeout_s:
            errors.append("KEYCHAIN_PROMPT_TIMEOUT_S must be <= PROVIDER_TIMEOUT_S")

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self

    # --- Helpers ---

    @property
    def enabled_providers_list(self) -> list[str]:
        """Parse comma-separated enabled providers."""
        return [p.strip() for p in self.enabled_providers.split(",") if p.strip()]

    def is_enabled(self, provider: str) -> bool:
        return provider in self.enabled_providers_list


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Args:
        **overrides: Field-level overrides (for testing or the CLI).

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
