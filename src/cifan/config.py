from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "CIFAN Submissions"
    app_env: str = "development"
    app_host: str = "127.0.0.1"
    app_port: int = 8787
    log_level: str = "INFO"
    secret_key: str = "change-me"
    default_language: str = "th"

    database_url: str = "sqlite:///./data/cifan.db"
    data_dir: Path = Path("./data")
    storage_dir: Path = Path("./data/storage")
    storage_public_base_url: str = "http://127.0.0.1:8787/files"
    storage_chunk_size: int = 1024 * 1024
    ffprobe_path: str = "ffprobe"

    session_ttl_min: int = 720
    email_verification_required: bool = True
    email_verification_ttl_hours: int = 48
    email_verification_url: str = "http://127.0.0.1:8787/verify-email"
    admin_emails: str = ""

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_from: str = "no-reply@cifan.local"
    smtp_use_tls: bool = True

    recent_submission_days: int = 7
    recommended_duration_min: int = 5
    recommended_duration_max: int = 10
    large_film_warning_bytes: int = 400 * 1024 * 1024

    web_ui_enabled: bool = True
    cors_origins: str = "http://127.0.0.1:8787"

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, value: str) -> str:
        allowed = {"development", "staging", "production", "test"}
        if value not in allowed:
            raise ValueError(f"app_env must be one of {sorted(allowed)}")
        return value

    @field_validator("default_language")
    @classmethod
    def validate_language(cls, value: str) -> str:
        if value not in {"th", "en"}:
            raise ValueError("default_language must be 'th' or 'en'")
        return value

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def admin_email_list(self) -> list[str]:
        return [email.strip().lower() for email in self.admin_emails.split(",") if email.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
