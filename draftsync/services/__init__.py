"""Business logic services."""

from .analytics_worker import AnalyticsWorker, InvalidJobInputError, UnsupportedJobTypeError
from .autosave_coordinator import (
    AutosaveConflictError,
    AutosaveCoordinator,
    AutosaveStatus,
    AutosaveTransport,
    AutosaveTransportError,
    ConflictResolution,
    HttpAutosaveTransport,
    ServerDocumentState,
)
from .autosave_service import autosave_document
from .fingerprint import MalformedContentError, compute_fingerprint
from .job_queue import (
    JobCancelledError,
    JobFailedError,
    JobNotCancellableError,
    JobNotFoundError,
    JobQueue,
    JobTimeoutError,
)
from .snapshot_diff import SnapshotDiff, compare_snapshots, find_significant_snapshots, get_snapshot_statistics
from .snapshot_store import (
    ContentSnapshot,
    SnapshotFormatError,
    SnapshotSource,
    SnapshotStore,
    SnapshotStoreRegistry,
    get_snapshot_store,
    reset_snapshot_stores,
)

__all__ = [
    # Analytics worker
    "AnalyticsWorker",
    "InvalidJobInputError",
    "UnsupportedJobTypeError",
    # Autosave
    "AutosaveConflictError",
    "AutosaveCoordinator",
    "AutosaveStatus",
    "AutosaveTransport",
    "AutosaveTransportError",
    "ConflictResolution",
    "HttpAutosaveTransport",
    "ServerDocumentState",
    "autosave_document",
    # Fingerprint
    "MalformedContentError",
    "compute_fingerprint",
    # Job queue
    "JobCancelledError",
    "JobFailedError",
    "JobNotCancellableError",
    "JobNotFoundError",
    "JobQueue",
    "JobTimeoutError",
    # Snapshots
    "ContentSnapshot",
    "SnapshotDiff",
    "SnapshotFormatError",
    "SnapshotSource",
    "SnapshotStore",
    "SnapshotStoreRegistry",
    "compare_snapshots",
    "find_significant_snapshots",
    "get_snapshot_statistics",
    "get_snapshot_store",
    "reset_snapshot_stores",
]
