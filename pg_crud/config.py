"""
Configuration settings for the pg-crud service.

Uses Pydantic Settings to load environment variables for database connections,
pool sizing, the HTTP server, and logging. A single `DATABASE_URL` takes
precedence over the individual `DB_*` fields when present.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Database
    database_url: Optional[str] = Field(None, alias="DATABASE_URL")
    db_host: str = Field("localhost", alias="DB_HOST")
    db_port: int = Field(5432, alias="DB_PORT")
    db_user: str = Field("postgres", alias="DB_USER")
    db_password: str = Field("postgres", alias="DB_PASSWORD")
    db_name: str = Field("crud", alias="DB_NAME")
    db_connect_retries: int = Field(5, alias="DB_CONNECT_RETRIES")
    statement_timeout_ms: int = Field(0, alias="DB_STATEMENT_TIMEOUT_MS")

    # Pool
    pool_min_size: int = Field(1, alias="POOL_MIN_SIZE")
    pool_max_size: int = Field(10, alias="POOL_MAX_SIZE")
    pool_timeout_seconds: float = Field(5.0, alias="POOL_TIMEOUT_SECONDS")

    # HTTP server
    server_host: str = Field("0.0.0.0", alias="SERVER_HOST")
    server_port: int = Field(8080, alias="SERVER_PORT")

    # Application
    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def dsn(self) -> str:
        """Connection string for psycopg; `DATABASE_URL` wins when set."""
        if self.database_url:
            return self.database_url
        return (
            f"postgresql://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    def masked_dsn(self) -> str:
        """DSN with the password hidden, for display and logs."""
        if self.database_url:
            scheme, sep, rest = self.database_url.partition("://")
            creds, at, host = rest.rpartition("@")
            if sep and at and ":" in creds:
                user = creds.split(":", 1)[0]
                return f"{scheme}://{user}:***@{host}"
            return self.database_url
        return f"postgresql://{self.db_user}:***@{self.db_host}:{self.db_port}/{self.db_name}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


__all__ = ["Settings", "get_settings"]
