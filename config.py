"""
Runtime configuration for the finance tracker API.

Everything is read from environment variables (or a local .env file) so the
same build runs locally, in CI and in production.
"""

from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SECRET_KEY = "super-secret-key-change"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Database
    database_url: str = Field(default="mongodb://localhost:27017", description="MongoDB connection string")
    database_name: str = Field(default="finance_tracker")
    use_transactions: bool = Field(
        default=False,
        validation_alias="MONGO_TRANSACTIONS",
        description="Run the category rename cascade in a transaction (needs a replica set)",
    )

    # Sessions and passwords
    secret_key: str = Field(default=DEFAULT_SECRET_KEY)
    algorithm: str = "HS256"
    session_expire_minutes: int = Field(default=60 * 24 * 7, ge=1)
    session_cookie_name: str = "session"
    cookie_secure: bool = False
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)
    reset_token_ttl_minutes: int = 60

    # Web client
    app_url: str = Field(default="http://localhost:3000", description="Base URL used in reset links")
    cors_origins: str = Field(default="http://localhost:3000", description="Comma-separated list of origins")

    # Mail
    smtp_host: str = "localhost"
    smtp_port: int = 587
    smtp_secure: bool = False
    smtp_user: str = ""
    smtp_pass: str = ""
    smtp_from: str = "noreply@expensetracker.com"

    log_level: str = "INFO"

    @property
    def cors_origin_list(self) -> List[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def uses_default_secret(self) -> bool:
        return self.secret_key == DEFAULT_SECRET_KEY


@lru_cache()
def get_settings() -> Settings:
    """Settings are loaded once; call ``get_settings.cache_clear()`` to reload."""
    return Settings()
