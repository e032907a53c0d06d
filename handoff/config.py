from __future__ import annotations

from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SUBSCRIBER_NAME = "QR Handoff"
_PROD_ENV_NAMES = {"prod", "production"}


class Settings(BaseSettings):
    app_name: str = Field(default="QR Handoff")
    app_env: str = Field(default="dev")
    app_version: str = Field(default="0.1.0")

    database_url: str = Field(default="")

    log_level: str = Field(default="INFO")
    log_file: str = Field(default="data/app.log")
    log_db_queries: bool = Field(default=True)
    log_db_query_params: bool = Field(default=False)
    log_sql_max_length: int = Field(default=400)

    server_host: str = Field(default="0.0.0.0")
    server_port: int = Field(default=8000)
    metrics_enabled: bool = Field(default=True)

    subscriber_name: str = Field(default=DEFAULT_SUBSCRIBER_NAME)
    upload_dir: str = Field(default="data/uploads")
    upload_max_file_bytes: int = Field(default=10 * 1024 * 1024)
    upload_token_ttl_seconds: int = Field(default=780)
    upload_display_margin_seconds: int = Field(default=180)

    public_origin: str = Field(default="http://localhost:8000")
    poll_initial_delay_seconds: float = Field(default=5.0)
    poll_interval_seconds: float = Field(default=60.0)
    poll_max_attempts: int = Field(default=10)
    countdown_tick_seconds: float = Field(default=1.0)
    generator_auto_close_seconds: float = Field(default=2.0)
    qr_image_size: int = Field(default=280)

    camera_index: int = Field(default=0)
    camera_facing: str = Field(default="environment")
    camera_width: int = Field(default=1920)
    camera_height: int = Field(default=1080)
    capture_jpeg_quality: int = Field(default=90)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_settings(self) -> "Settings":
        if not self.database_url:
            raise ValueError("DATABASE_URL must be set in .env or environment variables.")
        issues: list[str] = []
        if self.upload_token_ttl_seconds <= 0:
            issues.append("UPLOAD_TOKEN_TTL_SECONDS must be positive.")
        if self.upload_display_margin_seconds < 0:
            issues.append("UPLOAD_DISPLAY_MARGIN_SECONDS must not be negative.")
        if self.upload_display_margin_seconds >= self.upload_token_ttl_seconds:
            issues.append(
                "UPLOAD_DISPLAY_MARGIN_SECONDS must be smaller than UPLOAD_TOKEN_TTL_SECONDS."
            )
        if self.poll_max_attempts < 1:
            issues.append("POLL_MAX_ATTEMPTS must be at least 1.")
        if not 1 <= self.capture_jpeg_quality <= 100:
            issues.append("CAPTURE_JPEG_QUALITY must be between 1 and 100.")
        if self.app_env.strip().lower() in _PROD_ENV_NAMES:
            if self.subscriber_name == DEFAULT_SUBSCRIBER_NAME:
                issues.append("SUBSCRIBER_NAME must not use the default placeholder in production.")
            if not self.public_origin.startswith("https://"):
                issues.append("PUBLIC_ORIGIN must use https in production.")
        if issues:
            raise ValueError(" ".join(issues))
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()
