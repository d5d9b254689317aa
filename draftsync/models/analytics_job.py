"""AnalyticsJob SQLAlchemy model for the deferred analytics queue.

Jobs move queued -> running -> completed | failed | cancelled. A failed
attempt below max_attempts goes back to queued with scheduled_for pushed
into the future. Terminal rows are never mutated again.
"""

import uuid
from datetime import datetime

from sqlalchemy import JSON, CheckConstraint, Column, DateTime, Index, Integer, String, Text, Uuid

from ..database import Base


class AnalyticsJob(Base):
    """
    AnalyticsJob model, one unit of deferred analytics work.

    Attributes:
        id: Unique identifier (UUID)
        user_id: Requesting user (opaque id)
        document_id: Document the job analyzes
        job_type: Analytics job type
        status: queued, running, completed, failed or cancelled
        priority: 0 (low) to 3 (urgent); higher is claimed first
        input: Job-type specific parameters
        output: Result payload once completed
        error: Last failure message
        attempts: Claims so far (incremented on dequeue)
        max_attempts: Attempt budget; reaching it fails the job permanently
        scheduled_for: Earliest time the job may be claimed
        created_at: Timestamp when the job was enqueued
        started_at: Timestamp of the latest claim
        completed_at: Timestamp the job reached a terminal state
        updated_at: Timestamp of the last status change
    """

    __tablename__ = "AnalyticsJobs"
    __allow_unmapped__ = True

    __table_args__ = (
        CheckConstraint("attempts <= max_attempts", name="ck_analytics_jobs_attempts"),
        CheckConstraint("priority >= 0 AND priority <= 3", name="ck_analytics_jobs_priority"),
        # Dequeue scan: eligible queued jobs by priority then age
        Index("ix_analytics_jobs_dequeue", "status", "priority", "created_at"),
        Index("ix_analytics_jobs_document", "document_id", "created_at"),
    )

    # Primary key
    id = Column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        nullable=False,
    )

    user_id = Column(
        Uuid,
        nullable=False,
        index=True,
    )

    document_id = Column(
        Uuid,
        nullable=False,
    )

    job_type = Column(
        String(50),
        nullable=False,
    )

    status = Column(
        String(20),
        nullable=False,
        default="queued",
    )

    priority = Column(
        Integer,
        nullable=False,
        default=1,
    )

    # Payloads
    input = Column(
        JSON,
        nullable=False,
        default=dict,
    )

    output = Column(
        JSON,
        nullable=True,
    )

    error = Column(
        Text,
        nullable=True,
    )

    # Retry accounting
    attempts = Column(
        Integer,
        nullable=False,
        default=0,
    )

    max_attempts = Column(
        Integer,
        nullable=False,
        default=3,
    )

    # Timestamps
    scheduled_for = Column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )

    created_at = Column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )

    started_at = Column(
        DateTime,
        nullable=True,
    )

    completed_at = Column(
        DateTime,
        nullable=True,
    )

    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        """String representation of AnalyticsJob."""
        return f"<AnalyticsJob(id={self.id}, type={self.job_type}, status={self.status}, attempts={self.attempts})>"
