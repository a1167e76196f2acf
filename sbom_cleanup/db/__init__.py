"""Database module for the SBOM cleanup worker."""

from sbom_cleanup.db.database import (
    Base,
    dispose_engine,
    get_engine,
    get_session_factory,
    make_engine,
    make_session_factory,
    verify_database_connection,
)
from sbom_cleanup.db.models import SbomRecord

__all__ = [
    # Database infrastructure
    "Base",
    "get_engine",
    "get_session_factory",
    "make_engine",
    "make_session_factory",
    "dispose_engine",
    "verify_database_connection",
    # Entities
    "SbomRecord",
]
