"""Application settings with YAML defaults and .env overrides."""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from personal_historian.config.loader import get_yaml_defaults

logger = logging.getLogger(__name__)

# Get flattened defaults from YAML config
_yaml_defaults = get_yaml_defaults()


def _yaml_field(key: str, default, alias: str | None = None):
    """Create a Pydantic Field with YAML default.

    Args:
        key: Flattened YAML key (e.g., "CHECKIN_POLL_SECONDS").
        default: Fallback default if not in YAML.
        alias: Optional field alias.

    Returns:
        Pydantic Field with appropriate default.
    """
    yaml_value = _yaml_defaults.get(key.upper(), default)
    return Field(default=yaml_value, alias=alias)


class Settings(BaseSettings):
    """Application settings loaded from YAML defaults + environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ============================================================================
    # LLM Configuration
    # ============================================================================

    DEFAULT_LLM_PROVIDER: Literal["openai", "anthropic", "ollama"] = _yaml_field(
        "LLM_DEFAULT_PROVIDER", "openai"
    )
    DEFAULT_LLM_MODEL: str | None = _yaml_field("LLM_DEFAULT_MODEL", None)

    # Provider-Specific Model Overrides (higher priority)
    OPENAI_DEFAULT_MODEL: str | None = _yaml_field(
        "LLM_OPENAI_DEFAULT_MODEL", "gpt-4o-mini"
    )
    ANTHROPIC_DEFAULT_MODEL: str | None = _yaml_field(
        "LLM_ANTHROPIC_DEFAULT_MODEL", None
    )
    OLLAMA_DEFAULT_MODEL: str | None = _yaml_field("LLM_OLLAMA_DEFAULT_MODEL", None)
    OLLAMA_BASE_URL: str = _yaml_field("LLM_OLLAMA_BASE_URL", "http://localhost:11434")

    # API Keys (secrets - must be in .env)
    OPENAI_API_KEY: str | None = None
    ANTHROPIC_API_KEY: str | None = None

    LLM_TEMPERATURE: float = _yaml_field("LLM_TEMPERATURE", 0.7)
    LLM_TIMEOUT_SECONDS: float = _yaml_field("LLM_TIMEOUT_SECONDS", 30.0)

    # ============================================================================
    # Telegram Configuration
    # ============================================================================

    TELEGRAM_BOT_TOKEN: str | None = None  # Secret
    # Comma-separated Telegram user ids; empty allows everyone
    TELEGRAM_ALLOWED_USER_IDS: str = _yaml_field("TELEGRAM_ALLOWED_USER_IDS", "")
    TRANSPORT_TIMEOUT_SECONDS: float = _yaml_field("TELEGRAM_TIMEOUT_SECONDS", 15.0)

    # ============================================================================
    # Storage Paths
    # ============================================================================

    DATA_ROOT: Path = _yaml_field("STORAGE_DATA_ROOT", Path("./data"))
    STATE_DB_PATH: Path = _yaml_field("STORAGE_STATE_DB_PATH", Path("./data/state.db"))
    STORAGE_TIMEOUT_SECONDS: float = _yaml_field("STORAGE_TIMEOUT_SECONDS", 15.0)

    # ============================================================================
    # Check-in Scheduling
    # ============================================================================

    DEFAULT_TIMEZONE: str = _yaml_field("CHECKIN_DEFAULT_TIMEZONE", "America/Los_Angeles")
    CHECKIN_POLL_SECONDS: int = _yaml_field("CHECKIN_POLL_SECONDS", 60)
    CHECKIN_DEFAULT_MINUTES: int = _yaml_field("CHECKIN_DEFAULT_MINUTES", 60)
    CHECKIN_RETRY_MINUTES: int = _yaml_field("CHECKIN_RETRY_MINUTES", 5)
    CHECKIN_MIN_MINUTES: int = _yaml_field("CHECKIN_MIN_MINUTES", 5)
    CHECKIN_MAX_MINUTES: int = _yaml_field("CHECKIN_MAX_MINUTES", 1440)

    # Logging
    LOG_LEVEL: str = _yaml_field("LOGGING_LEVEL", "INFO")
    LOG_FILE: str | None = _yaml_field("LOGGING_FILE", None)
    LOG_MAX_BYTES: int = _yaml_field("LOGGING_MAX_BYTES", 10 * 1024 * 1024)
    LOG_BACKUP_COUNT: int = _yaml_field("LOGGING_BACKUP_COUNT", 7)

    @field_validator("DATA_ROOT", "STATE_DB_PATH", mode="before")
    @classmethod
    def resolve_path(cls, v: str | Path) -> Path:
        """Resolve storage paths to absolute paths."""
        return Path(v).expanduser().resolve()

    @field_validator("LOG_FILE", "DEFAULT_LLM_MODEL", mode="before")
    @classmethod
    def empty_string_to_none(cls, v: str | None) -> str | None:
        """Convert empty strings to None for optional fields."""
        return v or None

    @property
    def allowed_user_ids(self) -> set[str]:
        """Parsed TELEGRAM_ALLOWED_USER_IDS."""
        raw = self.TELEGRAM_ALLOWED_USER_IDS or ""
        return {item.strip() for item in str(raw).split(",") if item.strip()}


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Singleton instance
settings = get_settings()
