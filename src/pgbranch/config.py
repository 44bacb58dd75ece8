"""
Process settings, read from the environment (and a ``.env`` file if present).

    PGBRANCH_DATABASE_URL   full SQLAlchemy URL; otherwise assembled from
                            POSTGRES_USER / POSTGRES_PASSWORD / POSTGRES_HOST /
                            POSTGRES_PORT / POSTGRES_DB
    PGBRANCH_TABLE          records table, may be ``schema.table``
    PGBRANCH_BRANCH         branch bound at start-up
    PGBRANCH_USE_CACHE      cache + preload in the record gateway
    PGBRANCH_LOG_LEVEL
    PGBRANCH_HOST / PGBRANCH_PORT   HTTP surface
"""

from __future__ import annotations

from typing import Optional

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy import create_engine as sa_create_engine
from sqlalchemy.engine import URL, Engine

from .errors import ConfigError


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="PGBRANCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_url: Optional[str] = Field(None, description="SQLAlchemy database URL")
    table: str = Field("cache_records", description="Records table, optionally schema-qualified")
    branch: str = Field("main", description="Branch bound at start-up")
    use_cache: bool = Field(True, description="Cache and preload records in the gateway")
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = Field(8000, ge=1, le=65535)

    # unprefixed, shared with the postgres container
    postgres_user: Optional[str] = Field(None, validation_alias="POSTGRES_USER")
    postgres_password: Optional[SecretStr] = Field(None, validation_alias="POSTGRES_PASSWORD")
    postgres_host: str = Field("localhost", validation_alias="POSTGRES_HOST")
    postgres_port: int = Field(5432, validation_alias="POSTGRES_PORT")
    postgres_db: Optional[str] = Field(None, validation_alias="POSTGRES_DB")

    @model_validator(mode="after")
    def _resolve_database_url(self) -> "Settings":
        if self.database_url:
            return self
        if not (self.postgres_user and self.postgres_password is not None and self.postgres_db):
            raise ConfigError("PGBRANCH_DATABASE_URL or POSTGRES_USER/PASSWORD/DB required")
        url = URL.create(
            drivername="postgresql",
            username=self.postgres_user,
            password=self.postgres_password.get_secret_value(),
            host=self.postgres_host,
            port=self.postgres_port,
            database=self.postgres_db,
        )
        self.database_url = url.render_as_string(hide_password=False)
        return self

    def create_engine(self, **kwargs) -> Engine:
        return sa_create_engine(self.database_url, pool_pre_ping=True, **kwargs)
