# config.py
"""Runtime settings loaded from environment variables and ``.env``."""

import sys
from functools import lru_cache
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from loguru import logger
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="CARDS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # OCR
    ocr_engine: Literal["mock", "openai"] = "mock"
    openai_model: str = "gpt-4o"
    ocr_timeout: float = Field(default=60.0, gt=0)
    mock_ocr_delay: float = Field(default=2.0, ge=0)
    low_confidence_threshold: float = Field(default=0.5, ge=0.0, le=1.0)

    # 一覧・エクスポート
    page_size: int = Field(default=10, ge=1)
    export_locale: Literal["ja", "en"] = "ja"
    timezone: str = "Asia/Tokyo"

    log_level: str = "INFO"

    # 認証（固定の資格情報）
    auth_email: str = "admin@example.com"
    auth_password: SecretStr = SecretStr("password123")
    auth_user_id: str = "user-001"
    auth_display_name: str = "管理者 太郎"

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone: {value}") from exc
        return value

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def configure_logging(level: str | None = None) -> None:
    """Replace loguru's default sink with one at the configured level."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=(level or get_settings().log_level).upper(),
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
    )
