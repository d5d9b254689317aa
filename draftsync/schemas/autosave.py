"""Pydantic schemas for the autosave persistence boundary."""

from datetime import datetime
from typing import Any, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field


AUTOSAVE_CONFLICT_CODE = "AUTOSAVE_CONFLICT"


class AutosaveRequest(BaseModel):
    """Schema for one autosave attempt."""

    html: str = Field(
        "",
        description="Serialized rich-text body",
    )
    structure: Any = Field(
        None,
        description="Outline: list of chapters, each with a list of scenes",
    )
    anchor_ids: Optional[list[str]] = Field(
        None,
        description="Scene anchor ids in the body (extracted from html when omitted)",
    )
    word_count: Optional[int] = Field(
        None,
        ge=0,
        description="Client word count (computed from html when omitted)",
    )
    base_fingerprint: Optional[str] = Field(
        None,
        min_length=64,
        max_length=64,
        description="Fingerprint the client believes is persisted; null skips the conflict check",
    )
    snapshot_only: bool = Field(
        False,
        description="Record a snapshot without updating the document",
    )
    label: Optional[str] = Field(
        None,
        max_length=255,
    )


class AutosaveResponse(BaseModel):
    """Schema for an accepted autosave."""

    status: Literal["saved", "snapshot"]
    fingerprint: str
    snapshot_id: UUID
    word_count: int


class ConflictDocument(BaseModel):
    """Server-side document content carried by a conflict."""

    html: str
    structure: Any = None
    word_count: int
    updated_at: Optional[datetime] = None


class AutosaveConflictDetail(BaseModel):
    """Body of a 409 autosave response."""

    code: Literal["AUTOSAVE_CONFLICT"] = AUTOSAVE_CONFLICT_CODE
    message: str = "Document changed on the server since it was last loaded"
    fingerprint: str
    document: ConflictDocument
