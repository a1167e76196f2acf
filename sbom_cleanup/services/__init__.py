"""Services."""

from sbom_cleanup.services.record_source import InventoryRecord, RecordSource, SqlRecordSource

__all__ = ["InventoryRecord", "RecordSource", "SqlRecordSource"]
