"""
Configuration management for Dojo.
Loads from config/dojo.yaml and environment variables.
"""

from pathlib import Path
from typing import Optional, Dict, Any
import yaml
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class MasteryConfig(BaseSettings):
    """Mastery engine tuning."""
    max_update_retries: int = Field(default=5, ge=1)
    retry_base_delay: float = Field(default=0.02, ge=0.0)  # seconds, doubled per attempt
    promotion_retries: int = Field(default=3, ge=1)
    reinforcement_limit: int = Field(default=5, ge=1)
    stale_after_days: int = Field(default=14)
    weak_mastery_threshold: float = Field(default=0.5, ge=0.0, le=1.0)

    model_config = SettingsConfigDict(env_prefix="MASTERY_", extra="ignore", populate_by_name=True)


class SessionConfig(BaseSettings):
    """Training session configuration."""
    busy_retry_after_seconds: int = Field(default=2, alias="SESSION_BUSY_RETRY_AFTER")

    model_config = SettingsConfigDict(env_prefix="SESSION_", extra="ignore", populate_by_name=True)


class ApiConfig(BaseSettings):
    """API server configuration."""
    host: str = Field(default="0.0.0.0", alias="API_HOST")
    port: int = Field(default=8000, alias="API_PORT")
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:5173"])

    model_config = SettingsConfigDict(env_prefix="API_", extra="ignore", populate_by_name=True)


class DojoSettings(BaseSettings):
    """Main Dojo configuration."""
    env: str = Field(default="dev", alias="DOJO_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_file: Optional[Path] = Field(default=Path("logs/dojo.log"), alias="LOG_FILE")
    database_path: Path = Field(default=Path("data/dojo.sqlite"), alias="DOJO_DATABASE_PATH")

    # Sub-configurations
    api: ApiConfig = Field(default_factory=ApiConfig)
    mastery: MasteryConfig = Field(default_factory=MasteryConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="allow"
    )

    @classmethod
    def load_from_yaml(cls, config_path: Optional[Path] = None) -> "DojoSettings":
        """Load settings from YAML file and merge with environment variables."""
        if config_path is None:
            config_path = Path("config/dojo.yaml")

        config_dict: Dict[str, Any] = {}

        if config_path.exists():
            with open(config_path, "r", encoding="utf-8") as f:
                yaml_data = yaml.safe_load(f) or {}
                config_dict = yaml_data.get("dojo", {})

        return cls(**config_dict)


# Global settings instance
_settings: Optional[DojoSettings] = None


def get_settings() -> DojoSettings:
    """Get or create global settings instance."""
    global _settings
    if _settings is None:
        _settings = DojoSettings.load_from_yaml()
    return _settings


# Alias for convenience
settings = get_settings()
