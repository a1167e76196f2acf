"""Startup configuration checks.

The worker refuses to start without a store connection string and a
release API token. All violations are collected before failing.
"""

from typing import List

from pydantic import ValidationError
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

from sbom_cleanup.config import Settings, get_settings
from sbom_cleanup.core.exceptions import ConfigurationError
from sbom_cleanup.core.logging import get_logger

logger = get_logger(__name__)


def validate_runtime_settings(settings: Settings) -> List[str]:
    """Validate the settings the worker cannot run without.

    Returns a list of error messages (empty if valid).
    """
    errors: List[str] = []

    if not (settings.sbom_db_connection_string or "").strip():
        errors.append("SBOM_DB_CONNECTION_STRING is not set")
    else:
        try:
            make_url(settings.effective_database_url)
        except ArgumentError:
            errors.append(
                "SBOM_DB_CONNECTION_STRING is neither a database URL nor a "
                "Host=...;Username=...;Password=...;Database=... connection string"
            )

    if not (settings.release_api_token or "").strip():
        errors.append("RELEASE_API_TOKEN is not set")

    base_url = (settings.release_api_base_url or "").strip()
    if not base_url.startswith(("http://", "https://")):
        errors.append(
            f"RELEASE_API_BASE_URL must be an http(s) URL (current: '{base_url}')"
        )

    return errors


def run_startup_validations(settings: Settings) -> None:
    """Raise ConfigurationError if required settings are missing."""
    errors = validate_runtime_settings(settings)
    if errors:
        for error in errors:
            logger.error("Configuration error", data={"error": error})
        raise ConfigurationError(
            "Worker configuration is incomplete: " + "; ".join(errors),
            errors=errors,
        )
    logger.info(
        "Configuration validated",
        data={
            "release_api_base_url": settings.release_api_base_url,
            "interval_hours": settings.reconcile_interval_hours,
            "max_concurrency": settings.reconcile_max_concurrency,
            "dry_run": settings.reconcile_dry_run,
        },
    )


def load_settings() -> Settings:
    """Load settings, turning malformed values into a ConfigurationError."""
    try:
        return get_settings()
    except ValidationError as exc:
        errors = [
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
            for err in exc.errors(include_url=False)
        ]
        raise ConfigurationError("Worker settings are invalid", errors=errors) from exc
