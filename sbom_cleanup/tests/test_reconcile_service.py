import asyncio

import pytest

from sbom_cleanup.agents.ops.reconcile_service import (
    ReconcileScheduler,
    RecordOutcome,
    SbomReconciler,
)
from sbom_cleanup.core.exceptions import DataAccessError, RemoteQueryError, SerializationError
from sbom_cleanup.tests.helpers import FakeOracle, FakeRecordSource, failing_source

pytestmark = pytest.mark.asyncio

ACTIVE = ("C1", "P1", "10")
GONE = ("C1", "P2", "11")


async def test_active_build_stays_unarchived():
    source = FakeRecordSource([ACTIVE])
    oracle = FakeOracle({ACTIVE: True})

    report = await SbomReconciler(source, oracle).run_cycle()

    assert source.is_archived(ACTIVE) is False
    assert source.archive_calls == []
    assert report.count(RecordOutcome.ACTIVE) == 1
    assert report.rows_archived == 0


async def test_inactive_build_is_archived_once():
    source = FakeRecordSource([GONE])
    oracle = FakeOracle({GONE: False})
    reconciler = SbomReconciler(source, oracle)

    first = await reconciler.run_cycle()
    assert source.is_archived(GONE) is True
    assert first.rows_archived == 1

    second = await reconciler.run_cycle()
    assert source.is_archived(GONE) is True
    assert second.pending == 0
    assert second.rows_archived == 0
    # Archived records drop out of the pending set, so no second lookup.
    assert oracle.calls == [GONE]


async def test_end_to_end_mixed_records():
    source = FakeRecordSource([ACTIVE, GONE])
    oracle = FakeOracle({ACTIVE: True, GONE: False})

    report = await SbomReconciler(source, oracle).run_cycle()

    assert source.is_archived(ACTIVE) is False
    assert source.is_archived(GONE) is True
    assert report.pending == 2
    assert report.rows_archived == 1


@pytest.mark.parametrize(
    "error",
    [
        RemoteQueryError("Release API returned HTTP 500", status_code=500, body="boom"),
        RemoteQueryError("Release API request failed: ConnectError", status_code=None),
        SerializationError("Release artifact has no version identifier"),
    ],
)
async def test_oracle_failure_never_archives(error):
    source = FakeRecordSource([ACTIVE, GONE])
    oracle = FakeOracle({ACTIVE: error, GONE: False})
    reconciler = SbomReconciler(source, oracle)

    report = await reconciler.run_cycle()

    assert source.is_archived(ACTIVE) is False
    assert source.is_archived(GONE) is True
    assert report.count(RecordOutcome.LOOKUP_FAILED) == 1
    assert report.rows_archived == 1
    pending = [r.identity for r in await source.fetch_pending()]
    assert pending == [ACTIVE]


async def test_already_archived_records_are_not_queried():
    source = FakeRecordSource([GONE], archived=[ACTIVE])
    oracle = FakeOracle({GONE: False})

    await SbomReconciler(source, oracle).run_cycle()

    assert ACTIVE not in oracle.calls
    assert oracle.calls == [GONE]


async def test_fetch_failure_skips_cycle():
    source = failing_source()
    oracle = FakeOracle()

    report = await SbomReconciler(source, oracle).run_cycle()

    assert report.fetch_failed is True
    assert report.pending == 0
    assert oracle.calls == []


async def test_empty_pending_set_is_not_an_error():
    oracle = FakeOracle()

    report = await SbomReconciler(FakeRecordSource(), oracle).run_cycle()

    assert report.fetch_failed is False
    assert report.pending == 0
    assert report.rows_archived == 0
    assert oracle.calls == []


async def test_archive_failure_is_record_scoped():
    other = ("C2", "P9", "7")
    source = FakeRecordSource([GONE, other])
    source.archive_errors[GONE] = DataAccessError("deadlock detected")
    oracle = FakeOracle()

    report = await SbomReconciler(source, oracle).run_cycle()

    assert source.is_archived(GONE) is False
    assert source.is_archived(other) is True
    assert report.count(RecordOutcome.ARCHIVE_FAILED) == 1
    assert report.rows_archived == 1


async def test_zero_affected_rows_counted_as_already_archived():
    class RacingSource(FakeRecordSource):
        async def mark_archived(self, collection_id, project_id, build_number):
            return 0

    report = await SbomReconciler(RacingSource([GONE]), FakeOracle()).run_cycle()

    assert report.count(RecordOutcome.ALREADY_ARCHIVED) == 1
    assert report.rows_archived == 0


async def test_dry_run_never_writes():
    source = FakeRecordSource([GONE])

    report = await SbomReconciler(source, FakeOracle(), dry_run=True).run_cycle()

    assert source.archive_calls == []
    assert source.is_archived(GONE) is False
    assert report.count(RecordOutcome.WOULD_ARCHIVE) == 1
    assert report.dry_run is True


async def test_concurrency_is_bounded():
    identities = [(f"C{i}", "P", str(i)) for i in range(10)]
    source = FakeRecordSource(identities)
    oracle = FakeOracle(delay=0.01)

    report = await SbomReconciler(source, oracle, max_concurrency=3).run_cycle()

    assert oracle.max_in_flight <= 3
    assert report.rows_archived == 10


async def test_stop_signal_leaves_remaining_records_untouched():
    source = FakeRecordSource([ACTIVE, GONE])
    stop = asyncio.Event()
    stop.set()

    report = await SbomReconciler(source, FakeOracle()).run_cycle(stop)

    assert report.rows_archived == 0
    assert source.archive_calls == []


async def test_stop_mid_cycle_stops_further_records():
    identities = [(f"C{i}", "P", str(i)) for i in range(5)]
    source = FakeRecordSource(identities)
    stop = asyncio.Event()

    class StoppingOracle(FakeOracle):
        async def is_build_active(self, collection_id, project_id, build_number):
            stop.set()
            return await super().is_build_active(collection_id, project_id, build_number)

    oracle = StoppingOracle()
    report = await SbomReconciler(source, oracle, max_concurrency=1).run_cycle(stop)

    assert len(oracle.calls) == 1
    assert report.rows_archived == 1
    assert report.count(RecordOutcome.NOT_EVALUATED) == 4


async def test_unexpected_error_escapes_cycle():
    source = FakeRecordSource([ACTIVE, GONE])
    oracle = FakeOracle({ACTIVE: RuntimeError("bug")})

    with pytest.raises(RuntimeError):
        await SbomReconciler(source, oracle).run_cycle()
    # The healthy record still completed before the error surfaced.
    assert source.is_archived(GONE) is True


async def test_scheduler_survives_failing_cycles_and_stops_promptly():
    source = FakeRecordSource([ACTIVE])
    oracle = FakeOracle({ACTIVE: RuntimeError("bug")})
    scheduler = ReconcileScheduler(SbomReconciler(source, oracle), interval_seconds=0.01)

    await scheduler.start()
    for _ in range(200):
        if scheduler.cycles_completed >= 3:
            break
        await asyncio.sleep(0.01)
    await scheduler.stop(grace_seconds=1)

    assert scheduler.cycles_completed >= 3
    assert scheduler.running is False


async def test_scheduler_wait_interval_honours_stop():
    source = FakeRecordSource([GONE])
    scheduler = ReconcileScheduler(SbomReconciler(source, FakeOracle()), interval_seconds=3600)

    await scheduler.start()
    for _ in range(200):
        if scheduler.cycles_completed >= 1:
            break
        await asyncio.sleep(0.01)
    scheduler.request_stop()
    await asyncio.wait_for(scheduler.wait(), timeout=1)

    assert scheduler.cycles_completed == 1
    assert scheduler.last_report is not None
    assert scheduler.last_report.rows_archived == 1


class _BlockingReconciler:
    """Cycle that ignores the stop event until cancelled."""

    def __init__(self):
        self.entered = asyncio.Event()

    async def run_cycle(self, stop_event=None):
        self.entered.set()
        await asyncio.Event().wait()


async def test_stop_propagates_caller_cancellation():
    reconciler = _BlockingReconciler()
    scheduler = ReconcileScheduler(reconciler, interval_seconds=3600)
    await scheduler.start()
    await asyncio.wait_for(reconciler.entered.wait(), timeout=1)

    stopper = asyncio.create_task(scheduler.stop(grace_seconds=10))
    await asyncio.sleep(0.01)
    stopper.cancel()

    with pytest.raises(asyncio.CancelledError):
        await stopper
    assert scheduler.running is False


async def test_stop_absorbs_cancelled_loop_task():
    reconciler = _BlockingReconciler()
    scheduler = ReconcileScheduler(reconciler, interval_seconds=3600)
    await scheduler.start()
    await asyncio.wait_for(reconciler.entered.wait(), timeout=1)

    scheduler._task.cancel()
    await scheduler.stop(grace_seconds=1)

    assert scheduler.running is False
