"""Durable snapshot reads.

Loads DocumentSnapshot rows and converts them into ContentSnapshot values
for the diff engine and analytics. Stored fingerprints and counts are kept
as recorded, never recomputed.
"""

from datetime import datetime
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.document_snapshot import DocumentSnapshot
from .snapshot_store import ContentSnapshot, SnapshotContent, SnapshotSource


def to_content_snapshot(row: DocumentSnapshot) -> ContentSnapshot:
    """Convert a stored row into an immutable ContentSnapshot."""
    return ContentSnapshot(
        id=str(row.id),
        timestamp=row.created_at,
        source=SnapshotSource(row.source),
        fingerprint=row.fingerprint,
        word_count=row.word_count,
        scene_count=row.scene_count,
        content=SnapshotContent.build(row.html, row.structure, row.anchor_ids or []),
        label=row.label,
    )


async def get_snapshot(
    db: AsyncSession,
    snapshot_id: UUID,
    document_id: Optional[UUID] = None,
) -> Optional[DocumentSnapshot]:
    """Fetch one snapshot, optionally scoped to a document."""
    query = select(DocumentSnapshot).where(DocumentSnapshot.id == snapshot_id)
    if document_id is not None:
        query = query.where(DocumentSnapshot.document_id == document_id)
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def get_snapshots(
    db: AsyncSession,
    snapshot_ids: Iterable[UUID],
    document_id: Optional[UUID] = None,
) -> dict[UUID, DocumentSnapshot]:
    """Fetch several snapshots keyed by id; missing ids are absent from the result."""
    ids = list(snapshot_ids)
    if not ids:
        return {}
    query = select(DocumentSnapshot).where(DocumentSnapshot.id.in_(ids))
    if document_id is not None:
        query = query.where(DocumentSnapshot.document_id == document_id)
    result = await db.execute(query)
    return {row.id: row for row in result.scalars().all()}


async def list_snapshots(
    db: AsyncSession,
    document_id: UUID,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: Optional[int] = None,
    offset: int = 0,
) -> list[DocumentSnapshot]:
    """
    A document's snapshots, newest first.

    Args:
        start: Inclusive lower bound on created_at
        end: Inclusive upper bound on created_at
    """
    query = select(DocumentSnapshot).where(DocumentSnapshot.document_id == document_id)
    if start is not None:
        query = query.where(DocumentSnapshot.created_at >= start)
    if end is not None:
        query = query.where(DocumentSnapshot.created_at <= end)
    query = query.order_by(DocumentSnapshot.created_at.desc()).offset(offset)
    if limit is not None:
        query = query.limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())


async def count_snapshots(db: AsyncSession, document_id: UUID) -> int:
    result = await db.execute(
        select(func.count()).select_from(DocumentSnapshot).where(DocumentSnapshot.document_id == document_id)
    )
    return result.scalar_one()
