"""Document SQLAlchemy model.

A document holds the latest persisted editor state: the HTML body, the
chapter/scene outline and the content fingerprint the autosave protocol
compares against. Column types are backend-neutral (generic Uuid and JSON)
so the same model runs on PostgreSQL and SQLite.
"""

import uuid
from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text, Uuid
from sqlalchemy.orm import relationship

from ..database import Base


class Document(Base):
    """
    Document model representing one manuscript's current content.

    Attributes:
        id: Unique identifier (UUID)
        user_id: Owner (opaque id; users live outside this service)
        title: Document title
        html: Serialized rich-text body
        structure: Outline, a list of chapters each with a list of scenes
        word_count: Word count reported with the last save
        content_fingerprint: Fingerprint of html + structure + anchors at last save
        created_at: Timestamp when document was created
        updated_at: Timestamp when content was last saved
    """

    __tablename__ = "Documents"
    __allow_unmapped__ = True

    # Primary key
    id = Column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        nullable=False,
    )

    user_id = Column(
        Uuid,
        nullable=True,
        index=True,
    )

    title = Column(
        String(255),
        nullable=False,
        default="Untitled",
    )

    # Content
    html = Column(
        Text,
        nullable=False,
        default="",
    )

    structure = Column(
        JSON,
        nullable=True,
    )

    word_count = Column(
        Integer,
        nullable=False,
        default=0,
    )

    # Null until the first save; a null fingerprint never conflicts
    content_fingerprint = Column(
        String(64),
        nullable=True,
    )

    # Timestamps
    created_at = Column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )

    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    # Relationships
    snapshots = relationship(
        "DocumentSnapshot",
        back_populates="document",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="noload",
    )

    def __repr__(self) -> str:
        """String representation of Document."""
        return f"<Document(id={self.id}, title={self.title}, words={self.word_count})>"
