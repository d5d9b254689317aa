"""Server half of the autosave protocol.

An autosave is accepted when the client's base fingerprint matches the
document's stored fingerprint (or the client sends none). Every accepted
save records a durable snapshot and prunes the document's history to the
retention limit. The document row is locked FOR UPDATE for the duration
of the check-and-write so concurrent saves to one document serialize.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..models.document import Document
from ..models.document_snapshot import DocumentSnapshot
from ..schemas.autosave import AutosaveRequest
from .autosave_coordinator import AutosaveConflictError, ServerDocumentState
from .content_converter import count_scenes, extract_anchor_ids, html_word_count
from .fingerprint import compute_fingerprint, normalize_structure
from .snapshot_store import SnapshotSource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AutosaveResult:
    status: str
    fingerprint: str
    snapshot_id: UUID
    word_count: int


def server_fingerprint(document: Document) -> str:
    """Fingerprint of a document's stored content."""
    if document.content_fingerprint:
        return document.content_fingerprint
    return compute_fingerprint(
        document.html or "",
        document.structure,
        extract_anchor_ids(document.html),
    )


async def prune_snapshots(db: AsyncSession, document_id: UUID, keep: int) -> int:
    """
    Delete a document's snapshots beyond the newest `keep`.

    Returns:
        Number of snapshots deleted
    """
    result = await db.execute(
        select(DocumentSnapshot.id)
        .where(DocumentSnapshot.document_id == document_id)
        .order_by(DocumentSnapshot.created_at.desc(), DocumentSnapshot.id.desc())
        .offset(keep)
    )
    stale_ids = list(result.scalars().all())
    if not stale_ids:
        return 0

    await db.execute(delete(DocumentSnapshot).where(DocumentSnapshot.id.in_(stale_ids)))
    logger.debug(f"Pruned {len(stale_ids)} snapshots of document {document_id}")
    return len(stale_ids)


async def autosave_document(
    document_id: UUID,
    request: AutosaveRequest,
    db: AsyncSession,
    retention_limit: Optional[int] = None,
) -> AutosaveResult:
    """
    Apply one autosave attempt.

    Args:
        document_id: UUID of the document being saved
        request: Content plus the client's base fingerprint
        db: Database session (committed by the caller)
        retention_limit: Snapshots kept per document (defaults to settings)

    Returns:
        AutosaveResult with the new fingerprint and the recorded snapshot id

    Raises:
        HTTPException: 404 if the document does not exist
        AutosaveConflictError: If the base fingerprint is stale
        MalformedContentError: If the content cannot be fingerprinted
    """
    # Fingerprint BEFORE taking the row lock
    structure = normalize_structure(request.structure)
    anchor_ids = request.anchor_ids if request.anchor_ids is not None else extract_anchor_ids(request.html)
    fingerprint = compute_fingerprint(request.html, structure, anchor_ids)
    word_count = request.word_count if request.word_count is not None else html_word_count(request.html)

    result = await db.execute(
        select(Document).where(Document.id == document_id).with_for_update()
    )
    document = result.scalar_one_or_none()
    if document is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Document {document_id} not found",
        )

    current = server_fingerprint(document)
    if request.base_fingerprint and request.base_fingerprint != current and not request.snapshot_only:
        logger.warning(f"Autosave conflict on document {document_id}")
        raise AutosaveConflictError(
            ServerDocumentState(
                html=document.html or "",
                structure=normalize_structure(document.structure),
                word_count=document.word_count,
                updated_at=document.updated_at,
                fingerprint=current,
            )
        )

    snapshot = DocumentSnapshot(
        document_id=document_id,
        source=SnapshotSource.AUTOSAVE.value,
        label=request.label,
        fingerprint=fingerprint,
        word_count=word_count,
        scene_count=count_scenes(structure),
        html=request.html,
        structure=structure,
        anchor_ids=sorted(set(anchor_ids)),
        created_at=datetime.utcnow(),
    )
    db.add(snapshot)
    await db.flush()

    limit = settings.snapshot_retention_limit if retention_limit is None else retention_limit
    await prune_snapshots(db, document_id, limit)

    if not request.snapshot_only and (fingerprint != current or request.html != document.html):
        document.html = request.html
        document.structure = structure
        document.word_count = word_count
        document.content_fingerprint = fingerprint
        document.updated_at = datetime.utcnow()
        await db.flush()

    return AutosaveResult(
        status="snapshot" if request.snapshot_only else "saved",
        fingerprint=fingerprint,
        snapshot_id=snapshot.id,
        word_count=word_count,
    )
