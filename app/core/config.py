"""
Configuration module - loads all env vars using pydantic-settings.
This is the SINGLE SOURCE OF TRUTH for all config values.
"""

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # MongoDB
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_db: str = "jobboard"

    # JWT Auth
    access_secret: str = "change-this-access-secret"
    refresh_secret: str = "change-this-refresh-secret"
    token_issuer: str = "jobboard"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 15
    refresh_token_expire_days: int = 7
    refresh_cookie_name: str = "refresh_token"
    refresh_cookie_path: str = "/api/users/session"

    # Passwords and OTPs
    bcrypt_rounds: int = 12
    verify_otp_expires_min: int = 10
    reset_otp_expires_min: int = 10
    resend_verify_minutes: int = 5
    resend_reset_minutes: int = 5

    # Rate limiting (per client IP)
    rate_limit_enabled: bool = True
    rate_limit_storage_uri: str = "memory://"
    global_rate_limit: int = 300
    global_rate_limit_window_minutes: int = 15
    auth_rate_limit: int = 10
    auth_rate_limit_window_minutes: int = 15
    # Only behind a proxy that sets X-Forwarded-For
    trust_proxy_headers: bool = False

    # Listing
    max_page_limit: int = 100

    # Cloudinary
    cloudinary_cloud_name: str = ""
    cloudinary_api_key: str = ""
    cloudinary_api_secret: str = ""
    cloudinary_folder: str = "jobportal"
    max_upload_size_bytes: int = 2_000_000

    # SMTP
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    from_name: str = "Job Board"
    from_email: str = "no-reply@example.com"
    email_suppress_send: bool = False

    # App
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    # Pydantic v2 config
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
