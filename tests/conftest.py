"""Pytest configuration and shared fixtures."""

import os
import pytest

# Set required environment variables for testing BEFORE importing the app;
# engines are built at import time.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("STAGING_DATABASE_URL", "sqlite+aiosqlite://")

from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from doclink.core.database import Base, StagingBase
from doclink.core.status import ProcessingStatus
from doclink.database.models import DocumentFile
from doclink.database.staging_models import StagingKind
from doclink.main import app
from doclink.repositories.staging_repository import StagingRepository


def sqlite_engine(path):
    """File-backed aiosqlite engine with working SAVEPOINT support.

    pysqlite's own transaction handling does not emit BEGIN, which breaks
    ``begin_nested()``. Taking over BEGIN fixes that.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{path}")

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


@pytest.fixture
async def content_engine(tmp_path):
    engine = sqlite_engine(tmp_path / "content.db")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def staging_engine(tmp_path):
    engine = sqlite_engine(tmp_path / "staging.db")
    async with engine.begin() as conn:
        await conn.run_sync(StagingBase.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def content_sessions(content_engine) -> async_sessionmaker:
    return async_sessionmaker(content_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def staging_sessions(staging_engine) -> async_sessionmaker:
    return async_sessionmaker(staging_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(content_sessions):
    async with content_sessions() as session:
        yield session


@pytest.fixture
async def staging_session(staging_sessions):
    async with staging_sessions() as session:
        yield session


@pytest.fixture
def make_document_file(content_sessions):
    """Create a committed DocumentFile and return its ID."""

    async def _make(
        source_file_path: str = "/data/pdfs/report.pdf",
        doc_status: ProcessingStatus = ProcessingStatus.PROCESSING,
        links_status: ProcessingStatus = ProcessingStatus.PROCESSING,
    ) -> int:
        async with content_sessions() as session:
            document_file = DocumentFile(
                label=os.path.basename(source_file_path),
                source_file_path=source_file_path,
                doc_status=doc_status,
                links_status=links_status,
            )
            session.add(document_file)
            await session.commit()
            return document_file.id

    return _make


@pytest.fixture
def stage(staging_sessions):
    """Insert a committed staging row and return its ID."""

    async def _stage(kind: StagingKind, **fields) -> int:
        async with staging_sessions() as session:
            row = await StagingRepository(session).insert(kind, **fields)
            await session.commit()
            return row.id

    return _stage


@pytest.fixture
def test_client() -> TestClient:
    """Create FastAPI test client.

    Returns:
        TestClient: FastAPI test client instance
    """
    return TestClient(app)


@pytest.fixture(autouse=True)
def clear_dependency_overrides():
    """Ensure FastAPI dependency overrides are reset between tests."""
    app.dependency_overrides = {}
    yield
    app.dependency_overrides = {}


@pytest.fixture
def sample_pdf_content() -> bytes:
    """Minimal valid PDF header."""
    return b"%PDF-1.4\n%\xe2\xe3\xcf\xd3\n1 0 obj\n<<\n/Type /Catalog\n/Pages 2 0 R\n>>\nendobj\n"
