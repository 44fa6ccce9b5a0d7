from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    database_url: str = "sqlite:///./fintrack.db"
    secret_key: str
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 30
    log_level: str = "INFO"

    # SMTP settings for sync failure notifications
    smtp_host: str = "localhost"
    smtp_port: int = 465
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_from: str = ""
    mail_enabled: bool = False
    mail_subject_prefix: str = "[Fintrack]"

    # Sync defaults, overridable at runtime through the admin settings row
    sync_enabled: bool = True
    sync_interval_ms: int = 3_600_000
    crypto_sync_interval_ms: int = 900_000
    sync_poll_interval_seconds: int = 60
    sync_workers: int = 4
    sync_queue_size: int = 100
    sync_run_timeout_seconds: float = 600.0

    # AI categorization (Gemini)
    ai_enabled: bool = False
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.0-flash"
    gemini_base_url: str = "https://generativelanguage.googleapis.com"
    ai_request_timeout_seconds: float = 30.0
    ai_min_request_spacing_seconds: float = 2.0

    class Config:
        env_file = ".env"


@lru_cache()
def get_settings():
    return Settings()
