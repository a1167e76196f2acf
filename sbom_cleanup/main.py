"""
SBOM cleanup worker.

Long-running process that archives SBOM records whose build no longer
appears in any release. Runs until SIGINT/SIGTERM.
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from typing import Optional, Sequence

from sbom_cleanup.agents.ops.reconcile_service import ReconcileScheduler, SbomReconciler
from sbom_cleanup.config import Settings
from sbom_cleanup.core import ConfigurationError, get_logger, setup_logging
from sbom_cleanup.core.startup_checks import load_settings, run_startup_validations
from sbom_cleanup.db import dispose_engine, get_session_factory, verify_database_connection
from sbom_cleanup.providers.azure_releases import AzureReleaseClient
from sbom_cleanup.services.record_source import SqlRecordSource

logger = get_logger(__name__)


def build_reconciler(settings: Settings) -> tuple[SbomReconciler, AzureReleaseClient]:
    """Wire the record source and release client into a reconciler."""
    oracle = AzureReleaseClient.from_settings(settings)
    source = SqlRecordSource(get_session_factory(settings))
    reconciler = SbomReconciler(
        source,
        oracle,
        max_concurrency=settings.reconcile_max_concurrency,
        dry_run=settings.reconcile_dry_run,
    )
    return reconciler, oracle


def _install_signal_handlers(scheduler: ReconcileScheduler) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, scheduler.request_stop)
        except NotImplementedError:
            # Windows event loops lack add_signal_handler; KeyboardInterrupt still applies.
            pass


async def run(settings: Settings, *, once: bool = False) -> int:
    """Run the worker. Returns the process exit status."""
    if await verify_database_connection(settings):
        logger.info("Database connection verified")

    reconciler, oracle = build_reconciler(settings)
    try:
        if once:
            report = await reconciler.run_cycle()
            return 1 if report.fetch_failed else 0

        scheduler = ReconcileScheduler(reconciler, interval_seconds=settings.reconcile_interval_seconds)
        _install_signal_handlers(scheduler)
        await scheduler.start()
        try:
            await scheduler.wait()
        finally:
            await scheduler.stop()
        return 0
    finally:
        await oracle.aclose()
        await dispose_engine()


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="sbom-cleanup",
        description="Archive SBOM records whose build is no longer in any release",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single reconcile cycle and exit",
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    try:
        settings = load_settings()
    except ConfigurationError as exc:
        setup_logging()
        logger.critical("Worker not started", data={"errors": exc.errors})
        return 2

    setup_logging(
        level=settings.log_level,
        json_output=settings.log_json,
        log_file=settings.log_file or None,
    )
    try:
        run_startup_validations(settings)
    except ConfigurationError as exc:
        logger.critical("Worker not started", data={"errors": exc.errors})
        return 2

    try:
        return asyncio.run(run(settings, once=args.once))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 0


if __name__ == "__main__":
    sys.exit(main())
