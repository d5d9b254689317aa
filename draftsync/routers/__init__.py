"""API routers package.

This package contains all FastAPI routers for the application.
Each router handles a specific domain of the API.
"""

from .analytics import router as analytics_router
from .autosave import router as autosave_router
from .snapshots import router as snapshots_router

__all__ = [
    "analytics_router",
    "autosave_router",
    "snapshots_router",
]
