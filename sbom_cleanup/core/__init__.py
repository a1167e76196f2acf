"""Core module with logging, startup checks and the error taxonomy."""

from sbom_cleanup.core.exceptions import (
    ConfigurationError,
    DataAccessError,
    RemoteQueryError,
    SbomCleanupError,
    SerializationError,
)
from sbom_cleanup.core.logging import cycle_context, get_logger, setup_logging

__all__ = [
    "get_logger",
    "setup_logging",
    "cycle_context",
    "SbomCleanupError",
    "ConfigurationError",
    "DataAccessError",
    "RemoteQueryError",
    "SerializationError",
]
