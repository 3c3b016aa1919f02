"""Settings base shared by server-manager processes.

Values come from the environment (case-insensitive) and an optional
``.env`` file; unknown variables are ignored.

Usage:
    from shared.config import BaseSettings, url_field

    class Settings(BaseSettings):
        redis_url: str | None = url_field("Redis connection URL", "redis://redis:6379/0")

    settings = Settings()
    settings.configure_logging()
"""

from typing import Literal, TextIO

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings as PydanticBaseSettings, SettingsConfigDict

from .logging import setup_logging

LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


class BaseSettings(PydanticBaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    service_name: str = Field(default="unknown", description="Bound as `service` on every log record")
    log_format: Literal["json", "console"] = "console"
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"Invalid log level: {v}. Must be one of {sorted(LOG_LEVELS)}")
        return level

    def configure_logging(self, level: str | None = None, stream: TextIO | None = None) -> None:
        """Apply these settings to structlog; ``level`` overrides ``log_level``."""
        setup_logging(self.service_name, self.log_format, level or self.log_level, stream=stream)


def url_field(description: str, example: str):
    """Optional connection URL; ``None`` switches the dependent component off."""
    return Field(default=None, description=description, examples=[example])
