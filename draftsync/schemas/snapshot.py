"""Pydantic schemas for snapshots: export documents and API responses."""

from datetime import datetime, timezone
from typing import Any, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


SnapshotSourceName = Literal["manual", "autosave", "preview", "analytics", "export"]

# Format version written by export and required by import
EXPORT_FORMAT_VERSION = "1.0.0"


def as_naive_utc(value: datetime) -> datetime:
    """Timestamps are compared as naive UTC throughout the pipeline."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class SnapshotContentSchema(BaseModel):
    """Editable content captured by a snapshot."""

    html: str = ""
    structure: Any = None
    anchor_ids: list[str] = Field(default_factory=list)


class SnapshotExportItem(BaseModel):
    """One snapshot inside an export document."""

    id: str = Field(..., min_length=1)
    timestamp: datetime
    source: SnapshotSourceName
    label: Optional[str] = None
    fingerprint: str = Field(..., min_length=64, max_length=64)
    word_count: int = Field(..., ge=0)
    scene_count: int = Field(..., ge=0)
    content: SnapshotContentSchema

    @field_validator("timestamp")
    @classmethod
    def _normalize_timestamp(cls, value: datetime) -> datetime:
        return as_naive_utc(value)


class SnapshotExportDocument(BaseModel):
    """Self-describing export of a snapshot collection."""

    version: str = EXPORT_FORMAT_VERSION
    exported_at: datetime
    snapshots: list[SnapshotExportItem]


class SnapshotResponse(BaseModel):
    """Durable snapshot metadata returned by the API (content omitted)."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    document_id: UUID
    source: str
    label: Optional[str] = None
    fingerprint: str
    word_count: int
    scene_count: int
    created_at: datetime


class SnapshotListResponse(BaseModel):
    """Snapshots of one document, newest first."""

    items: list[SnapshotResponse]
    total: int


class WordDiffResponse(BaseModel):
    """Word-level diff statistics."""

    additions: int
    deletions: int
    unchanged: int
    total_changes: int
    change_percentage: float


class SnapshotComparisonResponse(BaseModel):
    """Result of comparing two snapshots."""

    from_id: str
    to_id: str
    is_identical: bool
    has_content_changes: bool
    has_structure_changes: bool
    word_count_delta: int
    scene_count_delta: int
    time_delta_seconds: float
    writing_velocity: float
    word_diff: WordDiffResponse
    summary: str
