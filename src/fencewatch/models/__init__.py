"""Data models for fencewatch."""

from fencewatch.models._base import FenceModel, UtcTimestamp, parse_timestamp
from fencewatch.models.gps import GpsFix
from fencewatch.models.reports import (
    IngestOutcome,
    IngestStatus,
    PurgeReport,
    RecordOutcome,
    RecordStatus,
    ScanReport,
)
from fencewatch.models.violation import (
    NotificationState,
    UnreadableViolation,
    VehicleOwnership,
    Violation,
    new_violation_id,
    read_violation,
)

__all__ = [
    "FenceModel",
    "GpsFix",
    "IngestOutcome",
    "IngestStatus",
    "NotificationState",
    "PurgeReport",
    "RecordOutcome",
    "RecordStatus",
    "ScanReport",
    "UnreadableViolation",
    "UtcTimestamp",
    "VehicleOwnership",
    "Violation",
    "new_violation_id",
    "parse_timestamp",
    "read_violation",
]
