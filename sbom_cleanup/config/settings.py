"""Worker settings using Pydantic BaseSettings."""

from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import URL

_ASYNC_DRIVERS = {
    "postgresql://": "postgresql+asyncpg://",
    "postgres://": "postgresql+asyncpg://",
    "sqlite://": "sqlite+aiosqlite://",
}

# Npgsql-style keywords (Host=...;Username=...;Password=...;Database=...)
_KEYVALUE_FIELDS = {
    "host": "host",
    "server": "host",
    "port": "port",
    "username": "username",
    "user id": "username",
    "userid": "username",
    "user": "username",
    "password": "password",
    "database": "database",
}


def keyvalue_to_url(value: str) -> Optional[str]:
    """Convert an Npgsql key/value connection string to a SQLAlchemy URL.

    Returns None when ``value`` is not in key/value form or names no host.
    Unknown keywords are ignored.
    """
    if "://" in value or "=" not in value:
        return None
    parts: dict = {}
    for pair in value.split(";"):
        if not pair.strip():
            continue
        key, sep, raw = pair.partition("=")
        if not sep:
            return None
        name = _KEYVALUE_FIELDS.get(key.strip().lower())
        if name:
            parts[name] = raw.strip()
    if not parts.get("host"):
        return None
    port = parts.get("port")
    if port is not None:
        if not port.isdigit():
            return None
        port = int(port)
    url = URL.create(
        "postgresql+asyncpg",
        username=parts.get("username") or None,
        password=parts.get("password") or None,
        host=parts["host"],
        port=port,
        database=parts.get("database") or None,
    )
    return url.render_as_string(hide_password=False)


class Settings(BaseSettings):
    """Worker configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Logging
    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=True)
    log_file: Optional[str] = Field(default=None)

    # Store
    # Required. The legacy service name (SbomDbConnectionString) is still honoured.
    sbom_db_connection_string: str = Field(
        default="",
        validation_alias=AliasChoices("SBOM_DB_CONNECTION_STRING", "SbomDbConnectionString"),
    )
    database_echo: bool = Field(default=False)

    # Release API (activity oracle)
    release_api_token: str = Field(default="")
    release_api_base_url: str = Field(default="https://vsrm.dev.azure.com")
    release_api_version: str = Field(default="7.1")
    # "basic" sends the token as an Azure DevOps PAT, "bearer" as an OAuth token.
    release_api_auth_scheme: str = Field(default="basic")
    release_api_timeout_seconds: float = Field(default=30.0)
    # Releases requested per page ($top) and pages followed per lookup.
    release_api_page_size: int = Field(default=100)
    release_api_max_pages: int = Field(default=50)

    # Reconcile loop
    reconcile_interval_hours: float = Field(default=24.0)
    reconcile_max_concurrency: int = Field(default=4)
    reconcile_dry_run: bool = Field(default=False)

    @property
    def effective_database_url(self) -> str:
        """Connection string as an async SQLAlchemy URL.

        Bare schemes get an async driver; Npgsql key/value strings are converted.
        """
        url = (self.sbom_db_connection_string or "").strip()
        converted = keyvalue_to_url(url)
        if converted is not None:
            return converted
        for prefix, replacement in _ASYNC_DRIVERS.items():
            if url.startswith(prefix):
                return replacement + url[len(prefix):]
        return url

    @property
    def reconcile_interval_seconds(self) -> float:
        return self.reconcile_interval_hours * 3600

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return upper

    @field_validator("release_api_auth_scheme")
    @classmethod
    def validate_auth_scheme(cls, v: str) -> str:
        vv = (v or "").strip().lower()
        if vv not in {"basic", "bearer"}:
            raise ValueError("RELEASE_API_AUTH_SCHEME must be one of: basic, bearer")
        return vv

    @field_validator("reconcile_interval_hours")
    @classmethod
    def validate_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("RECONCILE_INTERVAL_HOURS must be greater than 0")
        return v

    @field_validator("release_api_page_size", "release_api_max_pages")
    @classmethod
    def validate_paging(cls, v: int) -> int:
        if v < 1:
            raise ValueError("RELEASE_API_PAGE_SIZE and RELEASE_API_MAX_PAGES must be at least 1")
        return v

    @field_validator("reconcile_max_concurrency")
    @classmethod
    def validate_concurrency(cls, v: int) -> int:
        if v < 1:
            raise ValueError("RECONCILE_MAX_CONCURRENCY must be at least 1")
        return v


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
