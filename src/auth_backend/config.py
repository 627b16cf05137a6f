"""Auth backend — configuration loaded from environment."""

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide settings, loaded from .env or environment variables."""

    # ── Database ──────────────────────────────────────────
    database_url: str = "sqlite+aiosqlite:///./auth_backend.db"

    # ── Session credentials ───────────────────────────────
    token_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    access_ttl_minutes: int = Field(default=30, gt=0)
    refresh_ttl_days: int = Field(default=30, gt=0)

    # ── One-time codes ────────────────────────────────────
    otp_ttl_minutes: int = Field(default=10, gt=0)
    otp_max_requests: int = Field(default=5, gt=0)
    otp_requests_window_minutes: int = Field(default=10, gt=0)
    otp_base_cooldown_minutes: int = Field(default=1, ge=0)
    otp_extended_cooldown_minutes: int = Field(default=60, gt=0)
    # bcrypt cost factor for stored one-time codes
    otp_hash_rounds: int = Field(default=10, ge=4, le=31)

    # ── Accounts ──────────────────────────────────────────
    admin_secret: str = ""

    # ── Email (SMTP) ──────────────────────────────────────
    smtp_host: str = "localhost"
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    email_from: str = "no-reply@example.com"

    # ── SMS (Twilio) ──────────────────────────────────────
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_base_url: str = "https://api.twilio.com/2010-04-01"
    message_from: str = ""

    # ── App ───────────────────────────────────────────────
    app_name: str = "Auth Backend"
    debug: bool = False

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


# Singleton settings instance (process bootstrap only)
settings = Settings()
