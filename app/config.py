from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # ── Database (store endpoint + service credential) ────────
    database_hostname: str
    database_port: str = "5432"
    database_password: str
    database_name: str
    database_username: str
    database_connect_timeout: int = 5          # seconds
    database_statement_timeout_ms: int = 5000

    # ── Bearer tokens issued by the auth provider ─────────────
    jwt_secret: str
    jwt_algorithm: str = "HS256"
    jwt_audience: str = "authenticated"

    # ── Email (Resend SMTP relay: username "resend", API key as password) ──
    mail_username: str = "resend"
    mail_password: str = ""
    mail_from: str = "no-reply@example.com"
    mail_server: str = "smtp.resend.com"
    mail_port: int = 587
    mail_timeout_seconds: int = 10
    mail_suppress_send: bool = False

    # ── OTP ───────────────────────────────────────────────────
    otp_pepper: str = ""
    admin_otp_email: str = ""
    admin_otp_logo_url: str = ""
    otp_rate_limit: str = "10/minute"
    rate_limit_enabled: bool = True

    # ── App ───────────────────────────────────────────────────
    app_name: str = "Ecommerce"
    cors_origins: str = "*"
    log_level: str = "INFO"

    @property
    def cors_origins_list(self) -> list[str]:
        """Split comma-separated origins into a list, stripping whitespace."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def admin_email(self) -> str:
        return self.admin_otp_email.strip().lower()

    @property
    def database_url(self) -> str:
        return (
            f"postgresql://{self.database_username}:{self.database_password}"
            f"@{self.database_hostname}:{self.database_port}/{self.database_name}"
        )

    class Config:
        env_file = ".env"
        # Case-insensitive so OTP_PEPPER and otp_pepper both work
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """
    Cached settings loader — reads .env once and reuses.
    Routers receive it through Depends(get_settings) and pass it into services.
    """
    return Settings()


# Module-level singleton for import-time wiring (engine, limiter, CORS)
settings = get_settings()
