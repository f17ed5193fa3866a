"""fencewatch - Geofence violation pipeline for vehicle GPS fixes."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("fencewatch")
except PackageNotFoundError:
    __version__ = "0+local"
from fencewatch.config import FenceWatchConfig
from fencewatch.exceptions import (
    FenceWatchConfigError,
    FenceWatchError,
    InvalidFixError,
    NotificationError,
    OperationTimeoutError,
    StoreError,
    TransientError,
)
from fencewatch.geofence import CircleGeofence, Geofence, PolygonGeofence, load_geofence
from fencewatch.ingestion import FixConsumer
from fencewatch.jobs import NotificationScanner, PurgeSweeper
from fencewatch.models import (
    GpsFix,
    IngestOutcome,
    IngestStatus,
    NotificationState,
    PurgeReport,
    RecordOutcome,
    RecordStatus,
    ScanReport,
    VehicleOwnership,
    Violation,
)
from fencewatch.resources import Resources
from fencewatch.service import FenceWatchService

__all__ = [
    "__version__",
    "CircleGeofence",
    "FenceWatchConfig",
    "FenceWatchConfigError",
    "FenceWatchError",
    "FenceWatchService",
    "FixConsumer",
    "Geofence",
    "GpsFix",
    "IngestOutcome",
    "IngestStatus",
    "InvalidFixError",
    "NotificationError",
    "NotificationScanner",
    "NotificationState",
    "OperationTimeoutError",
    "PolygonGeofence",
    "PurgeReport",
    "PurgeSweeper",
    "RecordOutcome",
    "RecordStatus",
    "Resources",
    "ScanReport",
    "StoreError",
    "TransientError",
    "VehicleOwnership",
    "Violation",
    "load_geofence",
]
