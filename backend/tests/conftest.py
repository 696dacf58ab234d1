"""Shared pytest fixtures for the workflow engine test suite.

Provides:
- File-backed async SQLite application database (no server needed)
- AsyncSession factory
- Temporary SQLite databases used as query sources, transfer destinations
  and the response workspace
- Tabular backend and httpx mock transport helpers
"""

import os
from typing import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

# Override settings BEFORE any app imports
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_FORMAT", "text")
os.environ.setdefault("STEP_RETRY_BASE_DELAY", "0")
os.environ.setdefault("WEB_SERVICE_RETRY_BASE_DELAY", "0")

from db.base import Base  # noqa: E402
from db.database import close_db, create_db_engine, create_session_factory, init_db  # noqa: E402
from services.http_transport import HttpTransport  # noqa: E402
from services.tabular_backend import TabularBackend  # noqa: E402
from support import RecordingHandler, sqlite_url  # noqa: E402


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """Application database with every table created."""
    engine = create_db_engine(sqlite_url(tmp_path / "app.db"))
    await init_db(engine)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await close_db(engine)


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Provide a DB session that commits so store adapters can read the data."""
    async with session_factory() as session:
        yield session
        await session.commit()


# ---------------------------------------------------------------------------
# Tabular targets
# ---------------------------------------------------------------------------

@pytest.fixture
def source_url(tmp_path) -> str:
    return sqlite_url(tmp_path / "source.db")


@pytest.fixture
def destination_url(tmp_path) -> str:
    return sqlite_url(tmp_path / "destination.db")


@pytest.fixture
def workspace_url(tmp_path) -> str:
    return sqlite_url(tmp_path / "workspace.db")


@pytest_asyncio.fixture
async def backend() -> AsyncGenerator[TabularBackend, None]:
    tabular = TabularBackend()
    yield tabular
    await tabular.dispose()


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------

@pytest.fixture
def http_handler() -> RecordingHandler:
    return RecordingHandler()


@pytest.fixture
def make_transport():
    """Build an HttpTransport around a RecordingHandler."""
    def _make(handler: RecordingHandler, block_private_networks: bool = False) -> HttpTransport:
        return HttpTransport(
            transport=httpx.MockTransport(handler),
            block_private_networks=block_private_networks,
        )
    return _make
