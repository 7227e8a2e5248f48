"""
Configuration management for the Erection Readiness engine.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # Application
    app_name: str = Field(default="Erection Readiness Engine")
    debug: bool = Field(default=False)
    environment: str = Field(default="development")

    # API
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000)
    api_workers: int = Field(default=1)

    # Database
    database_url: str = Field(default="sqlite:///./erection_readiness.db")
    db_pool_size: int = Field(default=20)
    db_max_overflow: int = Field(default=30)
    db_echo: bool = Field(default=False)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(
        default="json",
        description="'json' for log aggregation, 'console' for local development.",
    )

    # Risk scoring thresholds (inclusive upper bounds)
    risk_low_max: int = Field(default=20)
    risk_medium_max: int = Field(default=40)
    risk_high_max: int = Field(default=70)

    # Cascade
    cascade_on_direct_writes: bool = Field(
        default=True,
        description="Recompute the project after area hold/release, sequence "
        "shifts and predecessor edits made through the API.",
    )
    system_actor_id: str = Field(default="readiness-engine")


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings."""
    return settings
