"""SQLAlchemy ORM models."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, String, UniqueConstraint, false, func
from sqlalchemy.orm import Mapped, mapped_column

from sbom_cleanup.core.time import utcnow
from sbom_cleanup.db.database import Base


class SbomRecord(Base):
    """One tracked build artifact (SBOM inventory row)."""

    __tablename__ = "sbom_table"
    __table_args__ = (
        UniqueConstraint("collection_id", "project_id", "build_number", name="uq_sbom_identity"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    collection_id: Mapped[str] = mapped_column(String(255), nullable=False)
    project_id: Mapped[str] = mapped_column(String(255), nullable=False)
    build_number: Mapped[str] = mapped_column(String(255), nullable=False)
    archived: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false(), index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<SbomRecord {self.collection_id}/{self.project_id}#{self.build_number}>"


# At most one live (unarchived) record per (collection, project).
Index(
    "uq_sbom_live_project",
    SbomRecord.collection_id,
    SbomRecord.project_id,
    unique=True,
    postgresql_where=SbomRecord.archived.is_(False),
    sqlite_where=SbomRecord.archived.is_(False),
)
