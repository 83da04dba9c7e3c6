"""Pytest configuration and shared fixtures.

Usage Guide:
- For ORM rows: import factories from tests.factories
- For GitLab payloads: import builders from tests.fixtures.gitlab_responses
- For importer tests: use the ``gitlab`` stub and the ``ctx`` fixture
"""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from story_mirror.config import get_settings
from story_mirror.db.models import Base
from story_mirror.db.repositories import RepoRepository
from story_mirror.gitlab.sync import ImportContext
from tests.factories import make_project, make_repo, make_server
from tests.fixtures.gitlab_responses import GITLAB_PROJECT_ID, GitLabStub


@pytest.fixture(autouse=True)
def _fresh_settings():
    """Drop cached settings so environment changes made by a test stay local."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# -----------------------------------------------------------------------------
# Database Fixtures
# -----------------------------------------------------------------------------
@pytest.fixture
async def test_engine():
    """Create an in-memory SQLite engine for tests.

    Each test gets a fresh database with all tables created.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(test_engine):
    """Create an async session with auto-rollback.

    Changes are rolled back after each test to ensure isolation.
    """
    session_factory = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with session_factory() as session:
        yield session
        await session.rollback()


# -----------------------------------------------------------------------------
# GitLab Fixtures
# -----------------------------------------------------------------------------
@pytest.fixture
async def server(db_session):
    """A GitLab server mapping regular accounts to regular users."""
    server = make_server(db_session)
    await db_session.flush()
    return server


@pytest.fixture
async def repo(db_session, server):
    """Repo document linked to GitLab project 99."""
    row = make_repo(db_session, server, gl_project_id=GITLAB_PROJECT_ID)
    await db_session.flush()
    return await RepoRepository(db_session).get_document(row.id)


@pytest.fixture
async def project(db_session, repo):
    """Project fed by ``repo``."""
    project = make_project(db_session, repo_ids=[repo["id"]])
    await db_session.flush()
    return project


@pytest.fixture
def gitlab():
    """Programmable stand-in for the GitLab REST API."""
    return GitLabStub()


@pytest.fixture
async def transport(server, gitlab):
    """Real transport talking to the stub."""
    transport = gitlab.transport(server)
    yield transport
    await transport.close()


@pytest.fixture
def ctx(db_session, transport):
    """Import context of a run against the stub."""
    return ImportContext(db_session, transport)
