"""
Centralized configuration management.
All environment variables and settings are defined here.
"""
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings


def _env(key: str) -> AliasChoices:
    """Accept the bare key plus the frontend-style prefixed variants."""
    return AliasChoices(key, f"VITE_{key}", f"NEXT_PUBLIC_{key}")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = Field(default="RateGuard FX", alias="APP_NAME")
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000)
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Extraction providers (all optional, missing keys degrade to fallbacks)
    gemini_api_key: Optional[str] = Field(default=None, validation_alias=_env("GEMINI_API_KEY"))
    gemini_api_base: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        alias="GEMINI_API_BASE",
    )
    gemini_ocr_model: str = Field(default="gemini-3-flash-preview", alias="GEMINI_OCR_MODEL")
    gemini_extraction_model: str = Field(default="gemini-3-pro-preview", alias="GEMINI_EXTRACTION_MODEL")
    zhipu_api_key: Optional[str] = Field(default=None, validation_alias=_env("ZHIPUAI_API_KEY"))
    zhipu_api_url: str = Field(
        default="https://open.bigmodel.cn/api/paas/v4/chat/completions",
        alias="ZHIPUAI_API_URL",
    )
    zhipu_model: str = Field(default="glm-4v", alias="ZHIPUAI_MODEL")
    extraction_webhook_url: Optional[str] = Field(
        default=None, validation_alias=_env("EXTRACTION_WEBHOOK_URL")
    )
    llm_timeout: int = Field(default=60, alias="LLM_TIMEOUT")
    llm_max_retries: int = Field(default=3, alias="LLM_MAX_RETRIES")

    # Market data
    massive_api_key: Optional[str] = Field(default=None, validation_alias=_env("MASSIVE_API_KEY"))
    massive_api_base: str = Field(default="https://api.massive-fx.com/v1", alias="MASSIVE_API_BASE")
    serpapi_api_key: Optional[str] = Field(default=None, validation_alias=_env("SERPAPI_API_KEY"))
    rate_fetch_timeout: int = Field(default=5, alias="RATE_FETCH_TIMEOUT")
    rate_sync_interval_minutes: int = Field(default=0, alias="RATE_SYNC_INTERVAL_MINUTES")

    # Processing
    max_upload_bytes: int = Field(default=1_000_000, alias="MAX_UPLOAD_BYTES")
    min_ocr_text_length: int = Field(default=5, alias="MIN_OCR_TEXT_LENGTH")
    dispute_spread_threshold_pct: float = Field(default=1.0, alias="DISPUTE_SPREAD_THRESHOLD_PCT")
    industry_average_spread_pct: float = Field(default=2.5, alias="INDUSTRY_AVERAGE_SPREAD_PCT")

    # Accounts
    free_plan_credits: int = Field(default=5, alias="FREE_PLAN_CREDITS")
    free_plan_max_seats: int = Field(default=3, alias="FREE_PLAN_MAX_SEATS")
    enterprise_max_seats: int = Field(default=50, alias="ENTERPRISE_MAX_SEATS")

    # Storage
    temp_storage_path: str = Field(default="files", alias="STORAGE_PATH")
    database_path: str = Field(default="rateguard.db", alias="DATABASE_PATH")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level is one of the standard levels."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v_upper

    @field_validator("port")
    @classmethod
    def validate_port(cls, v):
        """Validate port is in valid range."""
        if not (1 <= v <= 65535):
            raise ValueError("Port must be between 1 and 65535")
        return v

    @field_validator("max_upload_bytes")
    @classmethod
    def validate_upload_ceiling(cls, v):
        """Document DB rows hold the base64 copy, keep the ceiling sane."""
        if v < 1024:
            raise ValueError("Max upload size must be at least 1 KB")
        if v > 5_000_000:
            raise ValueError("Max upload size should not exceed 5 MB")
        return v

    @field_validator("dispute_spread_threshold_pct", "industry_average_spread_pct")
    @classmethod
    def validate_percentages(cls, v):
        """Thresholds are percentages, not fractions."""
        if v <= 0 or v >= 100:
            raise ValueError("Percentage thresholds must be between 0 and 100")
        return v

    @field_validator("llm_max_retries")
    @classmethod
    def validate_retries(cls, v):
        """Validate retry setting."""
        if v < 1:
            raise ValueError("LLM retries must be at least 1")
        if v > 10:
            raise ValueError("LLM retries should not exceed 10")
        return v

    class Config:
        """Pydantic configuration."""
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"

    @property
    def demo_mode(self) -> bool:
        """True when no extraction provider is configured at all."""
        return not (self.gemini_api_key or self.zhipu_api_key or self.extraction_webhook_url)

    def ensure_directories(self) -> None:
        """Ensure required directories exist."""
        Path(self.temp_storage_path).mkdir(parents=True, exist_ok=True)


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get application settings singleton.

    Returns:
        Settings instance
    """
    global _settings
    if _settings is None:
        _settings = Settings()
        _settings.ensure_directories()
    return _settings


def reset_settings() -> None:
    """Reset settings singleton (useful for testing)."""
    global _settings
    _settings = None
