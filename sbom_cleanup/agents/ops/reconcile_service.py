"""SBOM archive reconciliation: one cycle engine plus its periodic scheduler."""

from __future__ import annotations

import asyncio
import time
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from sbom_cleanup.core.exceptions import DataAccessError, RemoteQueryError, SerializationError
from sbom_cleanup.core.logging import cycle_context, get_logger
from sbom_cleanup.core.time import utcnow
from sbom_cleanup.providers.base import ActivityOracle
from sbom_cleanup.services.record_source import InventoryRecord, RecordSource

logger = get_logger(__name__)

DEFAULT_INTERVAL_SECONDS = 24 * 60 * 60
DEFAULT_STOP_GRACE_SECONDS = 30.0


class RecordOutcome(str, Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"
    # Update matched no unarchived row (already archived elsewhere).
    ALREADY_ARCHIVED = "already_archived"
    WOULD_ARCHIVE = "would_archive"
    LOOKUP_FAILED = "lookup_failed"
    ARCHIVE_FAILED = "archive_failed"
    NOT_EVALUATED = "not_evaluated"


@dataclass
class RecordResult:
    record: InventoryRecord
    outcome: RecordOutcome
    rows_archived: int = 0


@dataclass
class CycleReport:
    """Counters for a single reconcile cycle."""

    cycle_id: str
    started_at: datetime
    dry_run: bool = False
    fetch_failed: bool = False
    pending: int = 0
    rows_archived: int = 0
    outcomes: Counter = field(default_factory=Counter)
    duration_ms: int = 0

    def count(self, outcome: RecordOutcome) -> int:
        return self.outcomes.get(outcome, 0)

    def as_log_data(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "pending": self.pending,
            "rows_archived": self.rows_archived,
            "duration_ms": self.duration_ms,
            "dry_run": self.dry_run,
            "fetch_failed": self.fetch_failed,
        }
        for outcome in RecordOutcome:
            data[outcome.value] = self.count(outcome)
        return data


class SbomReconciler:
    """Archives pending SBOM records whose build no longer appears in any release."""

    def __init__(
        self,
        source: RecordSource,
        oracle: ActivityOracle,
        *,
        max_concurrency: int = 4,
        dry_run: bool = False,
    ):
        self.source = source
        self.oracle = oracle
        self.max_concurrency = max(1, int(max_concurrency))
        self.dry_run = dry_run

    async def evaluate_record(self, record: InventoryRecord) -> RecordResult:
        """Query the oracle for one record and archive it if its build is gone."""
        try:
            active = await self.oracle.is_build_active(
                record.collection_id, record.project_id, record.build_number
            )
        except RemoteQueryError as exc:
            logger.warning(
                "Release lookup failed, record left pending",
                data={**record.log_data(), "status_code": exc.status_code, "body": exc.body},
            )
            return RecordResult(record, RecordOutcome.LOOKUP_FAILED)
        except SerializationError as exc:
            logger.warning(
                "Release response unreadable, record left pending",
                data={**record.log_data(), "error": exc.message, "details": exc.details},
            )
            return RecordResult(record, RecordOutcome.LOOKUP_FAILED)

        if active:
            logger.info("Build still active", data=record.log_data())
            return RecordResult(record, RecordOutcome.ACTIVE)

        if self.dry_run:
            logger.info("Build inactive, would archive (dry run)", data=record.log_data())
            return RecordResult(record, RecordOutcome.WOULD_ARCHIVE)

        try:
            affected = await self.source.mark_archived(
                record.collection_id, record.project_id, record.build_number
            )
        except DataAccessError as exc:
            logger.error(
                "Archive update failed, record left pending",
                data={**record.log_data(), "error": exc.message, "details": exc.details},
            )
            return RecordResult(record, RecordOutcome.ARCHIVE_FAILED)

        if affected == 0:
            logger.info("Record was already archived", data=record.log_data())
            return RecordResult(record, RecordOutcome.ALREADY_ARCHIVED)

        logger.info("Build inactive, record archived", data={**record.log_data(), "rows": affected})
        return RecordResult(record, RecordOutcome.ARCHIVED, rows_archived=affected)

    async def _evaluate_bounded(
        self,
        record: InventoryRecord,
        semaphore: asyncio.Semaphore,
        stop_event: Optional[asyncio.Event],
    ) -> RecordResult:
        if stop_event is not None and stop_event.is_set():
            return RecordResult(record, RecordOutcome.NOT_EVALUATED)
        async with semaphore:
            if stop_event is not None and stop_event.is_set():
                return RecordResult(record, RecordOutcome.NOT_EVALUATED)
            return await self.evaluate_record(record)

    async def run_cycle(self, stop_event: Optional[asyncio.Event] = None) -> CycleReport:
        """Run one fetch-evaluate-archive pass and return its counters.

        Store fetch failures are logged and reported via ``fetch_failed``.
        Any other unexpected exception propagates once every started record
        evaluation has finished.
        """
        report = CycleReport(
            cycle_id=uuid.uuid4().hex,
            started_at=utcnow(),
            dry_run=self.dry_run,
        )
        token = cycle_context.set({"cycle_id": report.cycle_id})
        start = time.perf_counter()
        try:
            logger.info("Reconcile cycle started", data={"dry_run": self.dry_run})
            await self._run(report, stop_event)
        finally:
            report.duration_ms = int((time.perf_counter() - start) * 1000)
            logger.info("Reconcile cycle finished", data=report.as_log_data())
            cycle_context.reset(token)
        return report

    async def _run(self, report: CycleReport, stop_event: Optional[asyncio.Event]) -> None:
        if stop_event is not None and stop_event.is_set():
            return

        try:
            records = await self.source.fetch_pending()
        except DataAccessError as exc:
            report.fetch_failed = True
            logger.error(
                "Failed to fetch pending SBOM records",
                data={"code": exc.code, "error": exc.message, "details": exc.details},
            )
            return

        report.pending = len(records)
        if not records:
            logger.info("No pending SBOM records")
            return
        logger.info("Fetched pending SBOM records", data={"count": report.pending})

        semaphore = asyncio.Semaphore(self.max_concurrency)
        results = await asyncio.gather(
            *(self._evaluate_bounded(record, semaphore, stop_event) for record in records),
            return_exceptions=True,
        )

        unexpected: list[BaseException] = []
        for result in results:
            if isinstance(result, BaseException):
                unexpected.append(result)
                continue
            report.outcomes[result.outcome] += 1
            report.rows_archived += result.rows_archived

        if unexpected:
            raise unexpected[0]


class ReconcileScheduler:
    """Runs reconcile cycles back to back, waiting ``interval_seconds`` between them."""

    def __init__(
        self,
        reconciler: SbomReconciler,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
    ):
        self.reconciler = reconciler
        self.interval_seconds = interval_seconds
        self.last_report: CycleReport | None = None
        self.cycles_completed = 0
        self._task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop(), name="sbom-reconcile-scheduler")

    def request_stop(self) -> None:
        """Signal the loop to exit at the next check point (signal-handler safe)."""
        self._stop_event.set()

    async def wait(self) -> None:
        if self._task is not None:
            await self._task

    async def stop(self, grace_seconds: float = DEFAULT_STOP_GRACE_SECONDS) -> None:
        """Request a stop and wait for the in-flight cycle; cancel it after the grace period."""
        if not self._task:
            return
        self._stop_event.set()
        try:
            await asyncio.wait_for(self._task, timeout=grace_seconds)
        except asyncio.TimeoutError:
            logger.warning("Reconcile cycle did not stop in time, cancelled", data={"grace_seconds": grace_seconds})
        except asyncio.CancelledError:
            # Absorb the loop task being cancelled, never the caller being cancelled.
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
        finally:
            self._task = None

    async def _run_loop(self) -> None:
        logger.info(
            "SBOM cleanup worker started",
            data={"interval_seconds": self.interval_seconds, "started_at": utcnow().isoformat()},
        )
        while not self._stop_event.is_set():
            try:
                self.last_report = await self.reconciler.run_cycle(self._stop_event)
            except Exception as exc:
                logger.error(
                    "Reconcile cycle failed",
                    data={"error": f"{type(exc).__name__}: {exc}"},
                    exc_info=True,
                )
            self.cycles_completed += 1

            if self._stop_event.is_set():
                break
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue
        logger.info("SBOM cleanup worker stopping", data={"stopped_at": utcnow().isoformat()})
