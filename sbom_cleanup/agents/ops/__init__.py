"""Background ops agents."""

from sbom_cleanup.agents.ops.reconcile_service import (
    CycleReport,
    ReconcileScheduler,
    RecordOutcome,
    SbomReconciler,
)

__all__ = ["CycleReport", "ReconcileScheduler", "RecordOutcome", "SbomReconciler"]
