"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import TimeoutError as SQLAlchemyTimeoutError

from .config import settings
from .database import warmup_connection_pool
from .routers import analytics_router, autosave_router, snapshots_router
from .services.snapshot_store import reset_snapshot_stores

# Configure logging to show errors
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown tasks."""
    # Startup
    logger.info("Warming up database connection pool...")
    await warmup_connection_pool()
    logger.info("Database connection pool ready")

    yield

    # Shutdown
    logger.info("Dropping in-memory snapshot stores...")
    reset_snapshot_stores()


# Create FastAPI application
app = FastAPI(
    title="DraftSync API",
    description="Document autosave, snapshot history and writing analytics",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# CORS Middleware - required for editor client requests
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Database pool exhaustion handler - return 503 so clients can retry
@app.exception_handler(SQLAlchemyTimeoutError)
async def db_pool_exhausted_handler(request: Request, exc: SQLAlchemyTimeoutError):
    """Handle database connection pool exhaustion with 503 Service Unavailable."""
    logger.warning(
        f"Database pool exhausted on {request.method} {request.url}: {exc}"
    )
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "detail": "Service temporarily unavailable. Please retry.",
            "retry_after": 5,
        },
        headers={"Retry-After": "5"},
    )


# Global exception handler to log errors
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Log all unhandled exceptions with full traceback."""
    logger.error(
        f"Unhandled {type(exc).__name__} on {request.method} {request.url}: {exc}",
        exc_info=exc,
    )
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


# Include API routers
app.include_router(autosave_router)
app.include_router(snapshots_router)
app.include_router(analytics_router)


@app.get("/")
async def root():
    """Root endpoint - health check."""
    return {
        "status": "healthy",
        "service": "DraftSync API",
        "version": "1.0.0",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint for monitoring."""
    return {
        "status": "healthy",
        "snapshots": {
            "max_per_document": settings.snapshot_max_count,
            "retention_limit": settings.snapshot_retention_limit,
        },
        "analytics_queue": {
            "max_attempts": settings.job_max_attempts,
            "batch_size": settings.job_batch_size,
        },
    }

