"""Shared pytest fixtures for backend tests."""

import os
import sys
from datetime import datetime
from typing import AsyncGenerator
from uuid import uuid4

# Point the application at SQLite BEFORE importing it
os.environ.setdefault("DATABASE_URL_OVERRIDE", "sqlite+aiosqlite:///:memory:")

# Add project root to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from draftsync.database import Base, get_db, get_session_maker
from draftsync.main import app
from draftsync.models import Document, DocumentSnapshot
from draftsync.services.content_converter import count_scenes, extract_anchor_ids, html_word_count
from draftsync.services.fingerprint import compute_fingerprint
from draftsync.services.snapshot_store import reset_snapshot_stores


SAMPLE_HTML = (
    '<p><span data-scene-anchor="true" data-scene-id="scene-1"></span>'
    "The rain fell on the quiet harbor town.</p>"
    '<p>"Where were you?" she asked.</p>'
)
SAMPLE_STRUCTURE = [
    {"id": "chapter-1", "title": "Arrival", "scenes": [{"id": "scene-1", "title": "Harbor"}]},
]


@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path):
    """Create a test database engine backed by a temporary SQLite file."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")

    # Enable foreign key support for SQLite
    @event.listens_for(engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Clean up
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture(scope="function")
def session_maker(engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_maker() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(session_maker) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with database dependency overrides."""

    async def override_get_db():
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_maker] = lambda: session_maker

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def _reset_snapshot_stores():
    yield
    reset_snapshot_stores()


async def _create_document(
    db: AsyncSession,
    html: str = SAMPLE_HTML,
    structure=None,
    with_fingerprint: bool = True,
) -> Document:
    """Insert a document whose stored fingerprint matches its content."""
    structure = SAMPLE_STRUCTURE if structure is None else structure
    document = Document(
        id=uuid4(),
        user_id=uuid4(),
        title="Harbor Lights",
        html=html,
        structure=structure,
        word_count=html_word_count(html),
        content_fingerprint=(
            compute_fingerprint(html, structure, extract_anchor_ids(html)) if with_fingerprint else None
        ),
    )
    db.add(document)
    await db.commit()
    await db.refresh(document)
    return document


async def _create_snapshot_row(
    db: AsyncSession,
    document: Document,
    html: str,
    created_at: datetime,
    structure=None,
    source: str = "autosave",
) -> DocumentSnapshot:
    """Insert a durable snapshot row for a document."""
    structure = SAMPLE_STRUCTURE if structure is None else structure
    anchor_ids = extract_anchor_ids(html)
    snapshot = DocumentSnapshot(
        id=uuid4(),
        document_id=document.id,
        source=source,
        fingerprint=compute_fingerprint(html, structure, anchor_ids),
        word_count=html_word_count(html),
        scene_count=count_scenes(structure),
        html=html,
        structure=structure,
        anchor_ids=sorted(set(anchor_ids)),
        created_at=created_at,
    )
    db.add(snapshot)
    await db.commit()
    await db.refresh(snapshot)
    return snapshot


@pytest_asyncio.fixture
async def test_document(db_session: AsyncSession) -> Document:
    """Create a test document with a current content fingerprint."""
    return await _create_document(db_session)


@pytest.fixture
def make_document(db_session: AsyncSession):
    """Factory for documents: await make_document(html=..., structure=...)."""

    async def factory(**kwargs) -> Document:
        return await _create_document(db_session, **kwargs)

    return factory


@pytest.fixture
def make_snapshot(db_session: AsyncSession):
    """Factory for snapshot rows: await make_snapshot(document, html, created_at)."""

    async def factory(document: Document, html: str, created_at: datetime, **kwargs) -> DocumentSnapshot:
        return await _create_snapshot_row(db_session, document, html, created_at, **kwargs)

    return factory
