"""Online consultation settings.

OpenAI model for consultation summaries and consultation defaults.
"""

import logging
from functools import lru_cache
from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_env_path = Path(__file__).parent.parent.parent / "config" / ".env"
load_dotenv(_env_path)


class ConsultationSettings(BaseSettings):
    """Consultation settings mapped from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    OPENAI_API_KEY: str = Field(
        default="",
        description="OpenAI API key; summaries are skipped when empty"
    )

    SUMMARY_MODEL: str = Field(
        default="gpt-4o-mini",
        description="LLM used for consultation summaries",
        validation_alias="CONSULTATION_SUMMARY_MODEL"
    )

    SUMMARY_TIMEOUT: int = Field(
        default=60,
        description="Summary request timeout (seconds)",
        validation_alias="CONSULTATION_SUMMARY_TIMEOUT"
    )

    DEFAULT_DURATION_MINUTES: int = Field(
        default=30,
        description="Scheduled length of a new consultation",
        validation_alias="CONSULTATION_DEFAULT_DURATION_MINUTES"
    )

    @field_validator('DEFAULT_DURATION_MINUTES')
    @classmethod
    def validate_duration(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("CONSULTATION_DEFAULT_DURATION_MINUTES must be positive")
        return v

    @property
    def summary_enabled(self) -> bool:
        return bool(self.OPENAI_API_KEY)


@lru_cache()
def get_consultation_settings() -> ConsultationSettings:
    """Return the settings singleton."""
    return ConsultationSettings()


consultation_settings = get_consultation_settings()

logger.info(f"[Consultation Config] .env path: {_env_path} (exists: {_env_path.exists()})")
logger.info(f"[Consultation Config] summary model: {consultation_settings.SUMMARY_MODEL} "
            f"(enabled: {consultation_settings.summary_enabled})")
