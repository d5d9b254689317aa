"""Document autosave API endpoint.

The persistence side of the autosave protocol: accepts content when the
client's base fingerprint is current and answers 409 with the server's
content when it is stale.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..schemas.autosave import (
    AutosaveConflictDetail,
    AutosaveRequest,
    AutosaveResponse,
    ConflictDocument,
)
from ..services.autosave_coordinator import AutosaveConflictError
from ..services.autosave_service import autosave_document
from ..services.fingerprint import MalformedContentError

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/documents",
    tags=["autosave"],
)


@router.post(
    "/{document_id}/autosave",
    response_model=AutosaveResponse,
    responses={
        404: {"description": "Document not found"},
        409: {"description": "Base fingerprint is stale", "model": AutosaveConflictDetail},
    },
)
async def autosave(
    document_id: UUID,
    body: AutosaveRequest,
    db: AsyncSession = Depends(get_db),
) -> AutosaveResponse:
    """
    Save document content if the client's base fingerprint is current.

    A null base_fingerprint skips the conflict check. Every accepted save
    records a snapshot; snapshot_only records the snapshot without
    touching the document.
    """
    try:
        result = await autosave_document(document_id, body, db)
    except AutosaveConflictError as e:
        server = e.server_state
        detail = AutosaveConflictDetail(
            fingerprint=server.fingerprint,
            document=ConflictDocument(
                html=server.html,
                structure=server.structure,
                word_count=server.word_count,
                updated_at=server.updated_at,
            ),
        )
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail.model_dump(mode="json"),
        )
    except MalformedContentError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        )

    return AutosaveResponse(
        status=result.status,
        fingerprint=result.fingerprint,
        snapshot_id=result.snapshot_id,
        word_count=result.word_count,
    )
