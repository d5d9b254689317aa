"""DocumentSnapshot SQLAlchemy model for durable version history.

Autosave records one row per accepted save; the analytics worker reads
these rows back as ContentSnapshot values.
"""

import uuid
from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import relationship

from ..database import Base


class DocumentSnapshot(Base):
    """
    DocumentSnapshot model for storing point-in-time document content.

    Rows are immutable once written; retention pruning deletes the oldest
    rows of a document beyond the configured limit.

    Attributes:
        id: Unique identifier (UUID)
        document_id: FK to the parent document
        source: Provenance (manual, autosave, preview, analytics, export)
        label: Optional human-readable annotation
        fingerprint: Content fingerprint at capture time
        word_count: Word count at capture time
        scene_count: Scene count of the outline at capture time
        html: Captured HTML body
        structure: Captured outline
        anchor_ids: Captured scene anchor ids
        created_at: Timestamp when snapshot was created
    """

    __tablename__ = "DocumentSnapshots"
    __allow_unmapped__ = True

    __table_args__ = (
        Index("ix_document_snapshots_document_created", "document_id", "created_at"),
    )

    # Primary key
    id = Column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        nullable=False,
    )

    # Parent document
    document_id = Column(
        Uuid,
        ForeignKey("Documents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Snapshot metadata
    source = Column(
        String(20),
        nullable=False,
        default="autosave",
    )

    label = Column(
        String(255),
        nullable=True,
    )

    fingerprint = Column(
        String(64),
        nullable=False,
    )

    word_count = Column(
        Integer,
        nullable=False,
        default=0,
    )

    scene_count = Column(
        Integer,
        nullable=False,
        default=0,
    )

    # Snapshot content
    html = Column(
        Text,
        nullable=False,
        default="",
    )

    structure = Column(
        JSON,
        nullable=True,
    )

    anchor_ids = Column(
        JSON,
        nullable=False,
        default=list,
    )

    created_at = Column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )

    # Relationships
    document = relationship(
        "Document",
        back_populates="snapshots",
        lazy="noload",
    )

    def __repr__(self) -> str:
        """String representation of DocumentSnapshot."""
        return f"<DocumentSnapshot(id={self.id}, document_id={self.document_id}, source={self.source})>"
