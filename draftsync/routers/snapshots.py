"""Document snapshot history API endpoints."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..models.document import Document
from ..schemas.snapshot import (
    SnapshotComparisonResponse,
    SnapshotListResponse,
    SnapshotResponse,
)
from ..services.snapshot_diff import compare_snapshots
from ..services.snapshot_repository import count_snapshots, get_snapshots, list_snapshots, to_content_snapshot

router = APIRouter(
    prefix="/documents",
    tags=["snapshots"],
)


async def _require_document(db: AsyncSession, document_id: UUID) -> Document:
    document = await db.get(Document, document_id)
    if document is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Document {document_id} not found",
        )
    return document


@router.get("/{document_id}/snapshots", response_model=SnapshotListResponse)
async def list_document_snapshots(
    document_id: UUID,
    limit: int = Query(50, ge=1, le=200, description="Page size"),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
) -> SnapshotListResponse:
    """List a document's snapshots, newest first (content omitted)."""
    await _require_document(db, document_id)
    rows = await list_snapshots(db, document_id, limit=limit, offset=offset)
    total = await count_snapshots(db, document_id)
    return SnapshotListResponse(
        items=[SnapshotResponse.model_validate(row) for row in rows],
        total=total,
    )


@router.get("/{document_id}/snapshots/compare", response_model=SnapshotComparisonResponse)
async def compare_document_snapshots(
    document_id: UUID,
    from_id: UUID = Query(..., description="Older snapshot"),
    to_id: UUID = Query(..., description="Newer snapshot"),
    db: AsyncSession = Depends(get_db),
) -> SnapshotComparisonResponse:
    """Word-level and structural diff between two snapshots of a document."""
    await _require_document(db, document_id)
    rows = await get_snapshots(db, [from_id, to_id], document_id)

    missing: Optional[UUID] = next((sid for sid in (from_id, to_id) if sid not in rows), None)
    if missing is not None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Snapshot {missing} not found",
        )

    diff = compare_snapshots(to_content_snapshot(rows[from_id]), to_content_snapshot(rows[to_id]))
    return SnapshotComparisonResponse.model_validate(diff.to_dict())
