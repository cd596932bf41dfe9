"""Application settings and configuration management."""
from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or defaults."""

    DB_PATH: str = Field(default="data/coaching.db")

    DEFAULT_PASS_THRESHOLD: float = Field(default=70.0, ge=0.0, le=100.0)
    SCORE_PRECISION: int = Field(default=2, ge=0)
    ENFORCE_WEIGHT_TOTAL: bool = True
    WEIGHT_TOTAL_TOLERANCE: float = 0.01

    SCORECARD_FONT_PATH: str = "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf"
    SCORECARD_FONT_BOLD_PATH: str = "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf"

    CORS_ORIGINS: str = "*"

    model_config = SettingsConfigDict(env_file=".env", validate_assignment=True)


settings = Settings()
