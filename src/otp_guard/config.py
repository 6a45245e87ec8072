"""OTP Guard — configuration loaded from environment."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide settings, loaded from .env or environment variables."""

    # ── App ───────────────────────────────────────────────
    app_name: str = "OTP Guard"
    debug: bool = False

    # ── Persistence ───────────────────────────────────────
    store_backend: str = "memory"  # "memory" | "sql"
    database_url: str = "sqlite+aiosqlite:///./otp_guard.db"
    store_timeout_seconds: float = 2.0

    # ── OTP policy ────────────────────────────────────────
    otp_length: int = 6
    otp_ttl_seconds: float = 300.0
    otp_max_attempts: int = 5

    # ── Rate limits (events per sliding window) ───────────
    generation_rate_limit: int = 5
    generation_window_seconds: float = 900.0
    verification_rate_limit: int = 10
    verification_window_seconds: float = 900.0

    # ── Lockout ───────────────────────────────────────────
    lockout_threshold: int = 5
    lockout_base_seconds: float = 300.0
    lockout_max_seconds: float = 86400.0
    lockout_reset_seconds: float = 86400.0

    # Every verification response takes at least this long
    verification_floor_seconds: float = 0.25

    # Background sweep of expired codes, idle limiter keys and lockout states
    purge_interval_seconds: float = 60.0

    # ── Delivery ──────────────────────────────────────────
    delivery_backend: str = "console"  # "console" | "smtp" | "webhook"
    smtp_host: str = "localhost"
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    email_from: str = "no-reply@example.com"
    delivery_webhook_url: str = ""
    delivery_webhook_token: str = ""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


# Singleton settings instance
settings = Settings()
