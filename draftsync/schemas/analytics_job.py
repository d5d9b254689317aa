"""Pydantic schemas for analytics jobs: submission, status and worker results."""

from datetime import date, datetime
from enum import Enum, IntEnum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .snapshot import as_naive_utc


class AnalyticsJobType(str, Enum):
    """Supported analytics job types."""

    SNAPSHOT_ANALYSIS = "snapshot_analysis"
    SNAPSHOT_COMPARISON = "snapshot_comparison"
    WRITING_VELOCITY = "writing_velocity"
    STRUCTURE_ANALYSIS = "structure_analysis"
    SESSION_SUMMARY = "session_summary"
    DAILY_SUMMARY = "daily_summary"
    WEEKLY_SUMMARY = "weekly_summary"


class JobStatus(str, Enum):
    """Job lifecycle states."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class JobPriority(IntEnum):
    """Job priority; higher values are claimed first."""

    LOW = 0
    NORMAL = 1
    HIGH = 2
    URGENT = 3


# ============================================================================
# Per-type job inputs
# ============================================================================


class SnapshotAnalysisInput(BaseModel):
    snapshot_id: UUID


class SnapshotComparisonInput(BaseModel):
    from_snapshot_id: UUID
    to_snapshot_id: UUID


class WritingVelocityInput(BaseModel):
    start_time: datetime
    end_time: datetime

    @field_validator("start_time", "end_time")
    @classmethod
    def _normalize_time(cls, value: datetime) -> datetime:
        return as_naive_utc(value)

    @model_validator(mode="after")
    def _check_window(self) -> "WritingVelocityInput":
        if self.end_time < self.start_time:
            raise ValueError("end_time must not be before start_time")
        return self


class StructureAnalysisInput(BaseModel):
    snapshot_id: UUID


class SessionSummaryInput(BaseModel):
    session_id: str = Field(..., min_length=1)
    snapshot_ids: list[UUID] = Field(..., min_length=1)


class DailySummaryInput(BaseModel):
    date: date
    daily_goal_words: Optional[int] = Field(None, ge=1)


class WeeklySummaryInput(BaseModel):
    start_date: date
    end_date: date

    @model_validator(mode="after")
    def _check_range(self) -> "WeeklySummaryInput":
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


JOB_INPUT_MODELS: dict[AnalyticsJobType, type[BaseModel]] = {
    AnalyticsJobType.SNAPSHOT_ANALYSIS: SnapshotAnalysisInput,
    AnalyticsJobType.SNAPSHOT_COMPARISON: SnapshotComparisonInput,
    AnalyticsJobType.WRITING_VELOCITY: WritingVelocityInput,
    AnalyticsJobType.STRUCTURE_ANALYSIS: StructureAnalysisInput,
    AnalyticsJobType.SESSION_SUMMARY: SessionSummaryInput,
    AnalyticsJobType.DAILY_SUMMARY: DailySummaryInput,
    AnalyticsJobType.WEEKLY_SUMMARY: WeeklySummaryInput,
}


# ============================================================================
# Submission / status
# ============================================================================


class AnalyticsJobCreate(BaseModel):
    """Schema for enqueueing an analytics job."""

    user_id: UUID
    document_id: UUID
    job_type: AnalyticsJobType
    priority: JobPriority = JobPriority.NORMAL
    input: dict[str, Any] = Field(default_factory=dict)
    max_attempts: Optional[int] = Field(None, ge=1, le=10)

    @model_validator(mode="after")
    def _validate_input(self) -> "AnalyticsJobCreate":
        # Normalize to the JSON form stored on the job row
        parsed = JOB_INPUT_MODELS[self.job_type].model_validate(self.input)
        self.input = parsed.model_dump(mode="json")
        return self


class AnalyticsJobRecord(BaseModel):
    """Full job record as stored."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    document_id: UUID
    job_type: str
    status: JobStatus
    priority: int
    input: dict[str, Any]
    output: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    attempts: int
    max_attempts: int
    scheduled_for: Optional[datetime] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    updated_at: datetime


class AnalyticsJobCreated(BaseModel):
    """Response for an enqueued job."""

    id: UUID
    status: JobStatus


# ============================================================================
# Worker
# ============================================================================


class AnalyticsJobOutput(BaseModel):
    """Payload written to a completed job's output column."""

    job_type: str
    success: bool
    metrics: dict[str, Any]
    processing_time_ms: float
    completed_at: datetime


class JobOutcome(BaseModel):
    """Outcome of one job within a worker batch."""

    job_id: UUID
    job_type: str
    success: bool
    error: Optional[str] = None
    processing_time_ms: float


class WorkerRunRequest(BaseModel):
    """Schema for triggering one worker batch."""

    batch_size: Optional[int] = Field(None, ge=1)


class WorkerRunResult(BaseModel):
    """Summary of one worker batch."""

    processed: int
    succeeded: int
    failed: int
    results: list[JobOutcome]
