import warnings
from typing import Optional
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ── Known insecure default keys (must never be used in production) ──
_INSECURE_KEYS = {
    "change_this",
    "change_this_to_a_secure_random_string",
    "secret",
}


class Settings(BaseSettings):
    APP_NAME: str = "Gallery Admin"
    APP_ENV: str = "development"
    API_V1_STR: str = "/api/v1"

    # CORS (admin console origins, comma separated)
    BACKEND_CORS_ORIGINS: str = ""

    # Database
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_DB: str = "gallery_admin"
    DATABASE_URL: Optional[str] = None  # full override, e.g. sqlite:// in tests

    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800            # 30 min
    DB_STATEMENT_TIMEOUT_MS: int = 5000    # per-statement bound, PostgreSQL only
    SLOW_QUERY_THRESHOLD_MS: int = 500
    DB_ECHO: bool = False

    # Identity provider tokens (issued externally, verified here)
    IDENTITY_TOKEN_SECRET: str = "change_this"
    IDENTITY_TOKEN_ALGORITHM: str = "HS256"
    IDENTITY_TOKEN_AUDIENCE: Optional[str] = None

    # Proxies allowed to set X-Forwarded-For / X-Real-IP
    TRUSTED_PROXY_IPS: str = "127.0.0.1,::1"

    # Feature flags
    FLAG_UPDATE_MAX_RETRIES: int = 3
    FLAG_HISTORY_DEFAULT_LIMIT: int = 50

    # Audit log queries
    AUDIT_PAGE_SIZE_DEFAULT: int = 50
    AUDIT_PAGE_SIZE_MAX: int = 200
    AUDIT_DISTINCT_SCAN_LIMIT: int = 1000

    # Seed data (scripts/initial_data.py)
    FIRST_SUPER_ADMIN_EMAIL: str = "admin@example.com"
    FIRST_SUPER_ADMIN_EXTERNAL_ID: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True
    )

    @model_validator(mode="after")
    def _validate_production_security(self) -> "Settings":
        """Block startup if critical secrets are insecure in production / staging."""
        if self.APP_ENV in ("production", "staging"):
            if (
                self.IDENTITY_TOKEN_SECRET in _INSECURE_KEYS
                or len(self.IDENTITY_TOKEN_SECRET) < 32
            ):
                raise ValueError(
                    f"IDENTITY_TOKEN_SECRET is insecure ('{self.IDENTITY_TOKEN_SECRET[:8]}…'). "
                    "Set the identity provider's signing secret (≥ 32 chars) in .env or environment."
                )
            if self.DATABASE_URL is None and self.POSTGRES_PASSWORD in ("postgres", ""):
                raise ValueError(
                    "POSTGRES_PASSWORD is set to default 'postgres'. "
                    "Set a strong password in .env or environment."
                )
            if self.BACKEND_CORS_ORIGINS.strip() == "*":
                warnings.warn(
                    "BACKEND_CORS_ORIGINS is '*'. The admin console should list explicit origins.",
                    UserWarning,
                    stacklevel=2,
                )
        return self

    @property
    def SQLALCHEMY_DATABASE_URI(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_SERVER}/{self.POSTGRES_DB}"
        )

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "production"

    @property
    def is_staging(self) -> bool:
        return self.APP_ENV == "staging"

    @property
    def is_development(self) -> bool:
        return self.APP_ENV == "development"

settings = Settings()
