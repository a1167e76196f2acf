"""Record source: reads pending SBOM records and applies archive updates."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, Sequence, runtime_checkable

from pydantic import BaseModel, ConfigDict, ValidationError
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sbom_cleanup.core.exceptions import DataAccessError, SerializationError
from sbom_cleanup.core.logging import get_logger
from sbom_cleanup.core.time import utcnow
from sbom_cleanup.db.models import SbomRecord

logger = get_logger(__name__)


class InventoryRecord(BaseModel):
    """Immutable snapshot of one SBOM inventory row."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    collection_id: str
    project_id: str
    build_number: str
    archived: bool = False
    updated_at: datetime | None = None

    @property
    def identity(self) -> tuple[str, str, str]:
        return (self.collection_id, self.project_id, self.build_number)

    def log_data(self) -> dict[str, str]:
        return {
            "collection_id": self.collection_id,
            "project_id": self.project_id,
            "build_number": self.build_number,
        }


@runtime_checkable
class RecordSource(Protocol):
    async def fetch_pending(self) -> Sequence[InventoryRecord]: ...
    async def mark_archived(self, collection_id: str, project_id: str, build_number: str) -> int: ...


class SqlRecordSource:
    """SQLAlchemy-backed record source.

    Every call opens its own session and releases it before returning, so
    no connection is held while the release API is being queried.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def fetch_pending(self) -> list[InventoryRecord]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(SbomRecord).where(SbomRecord.archived.is_(False))
                )
                rows = list(result.scalars().all())
        except SQLAlchemyError as exc:
            raise DataAccessError(
                "Failed to fetch pending SBOM records",
                details={"error": str(exc)},
            ) from exc

        records = []
        for row in rows:
            try:
                records.append(InventoryRecord.model_validate(row))
            except ValidationError as exc:
                raise SerializationError(
                    "SBOM row could not be read as an inventory record",
                    details={"row_id": row.id, "errors": exc.errors(include_url=False)},
                ) from exc
        return records

    async def mark_archived(self, collection_id: str, project_id: str, build_number: str) -> int:
        """Archive the single row matching the identity triple.

        Only unarchived rows match, so repeated calls affect zero rows.
        """
        stmt = (
            update(SbomRecord)
            .where(
                SbomRecord.collection_id == collection_id,
                SbomRecord.project_id == project_id,
                SbomRecord.build_number == build_number,
                SbomRecord.archived.is_(False),
            )
            .values(archived=True, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(stmt)
        except SQLAlchemyError as exc:
            raise DataAccessError(
                "Failed to archive SBOM record",
                details={
                    "collection_id": collection_id,
                    "project_id": project_id,
                    "build_number": build_number,
                    "error": str(exc),
                },
            ) from exc
        return result.rowcount or 0
