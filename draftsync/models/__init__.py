"""SQLAlchemy ORM models package."""

from .analytics_job import AnalyticsJob
from .document import Document
from .document_snapshot import DocumentSnapshot

__all__ = [
    "AnalyticsJob",
    "Document",
    "DocumentSnapshot",
]
