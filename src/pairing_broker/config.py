"""Pairing Broker — configuration loaded from environment."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide settings, loaded from .env or environment variables."""

    # ── Account / database gateway ────────────────────────
    gateway_backend: str = "supabase"  # "supabase" or "sql"
    supabase_url: str = ""
    supabase_service_role_key: str = ""
    database_url: str = "sqlite+aiosqlite:///./pairing_broker.db"
    http_timeout_seconds: float = 10.0

    # ── Mail (OTP delivery) ───────────────────────────────
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = False
    email_from: str = "no-reply@example.com"

    # ── Codes ─────────────────────────────────────────────
    otp_ttl_seconds: int = 300
    connection_code_ttl_minutes: int = 15
    sweep_interval_seconds: float = 60.0

    # ── App ───────────────────────────────────────────────
    app_name: str = "Pairing Broker"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 4012
    allowed_origins: list[str] = ["http://localhost:5173"]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


# Singleton settings instance
settings = Settings()
