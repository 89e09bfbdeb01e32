"""
Global settings from environment variables.
"""

from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class DeckrunSettings(BaseSettings):
    """
    Global configuration loaded from environment variables.

    Environment variables should be prefixed with DECKRUN_
    Example: DECKRUN_MAX_PASSES=5, DECKRUN_DEFAULT_MODEL=openai/gpt-4o-mini
    """

    model_config = SettingsConfigDict(
        env_prefix="DECKRUN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        protected_namespaces=(),
    )

    # Core settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_json: bool = False

    # Guardrail defaults, overridable per deck
    max_depth: int = Field(default=3, ge=0)
    max_passes: int = Field(default=10, ge=1)
    timeout_ms: int = Field(default=120_000, ge=1)

    # Busy/idle handler delay when a handler declares none
    status_delay_ms: int = Field(default=800, ge=0)

    # Model routing
    default_model: str | None = None
    default_provider: str | None = None

    # Model Provider Settings
    # OpenAI
    openai_api_key: SecretStr | None = None
    openai_base_url: str | None = None

    # Anthropic
    anthropic_api_key: SecretStr | None = None
    anthropic_base_url: str | None = None


# Global settings instance (singleton)
settings = DeckrunSettings()


__all__ = ["DeckrunSettings", "settings"]
