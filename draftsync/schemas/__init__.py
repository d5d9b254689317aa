"""Pydantic schemas package for request/response validation."""

from .analytics_job import (
    AnalyticsJobCreate,
    AnalyticsJobCreated,
    AnalyticsJobOutput,
    AnalyticsJobRecord,
    AnalyticsJobType,
    JobOutcome,
    JobPriority,
    JobStatus,
    WorkerRunRequest,
    WorkerRunResult,
)
from .autosave import (
    AutosaveConflictDetail,
    AutosaveRequest,
    AutosaveResponse,
    ConflictDocument,
)
from .snapshot import (
    SnapshotComparisonResponse,
    SnapshotExportDocument,
    SnapshotExportItem,
    SnapshotListResponse,
    SnapshotResponse,
)

__all__ = [
    # Analytics jobs
    "AnalyticsJobCreate",
    "AnalyticsJobCreated",
    "AnalyticsJobOutput",
    "AnalyticsJobRecord",
    "AnalyticsJobType",
    "JobOutcome",
    "JobPriority",
    "JobStatus",
    "WorkerRunRequest",
    "WorkerRunResult",
    # Autosave
    "AutosaveConflictDetail",
    "AutosaveRequest",
    "AutosaveResponse",
    "ConflictDocument",
    # Snapshots
    "SnapshotComparisonResponse",
    "SnapshotExportDocument",
    "SnapshotExportItem",
    "SnapshotListResponse",
    "SnapshotResponse",
]
