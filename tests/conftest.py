"""
Pytest fixtures for testing
"""
from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from nodescore.application.taxonomy import TaxonomyStore
from nodescore.config import Settings
from nodescore.infrastructure.db.session import Base
from nodescore.infrastructure.db import models  # noqa: F401  (registers tables)


def _enable_foreign_keys(engine) -> None:
    # SQLite ignores ON DELETE CASCADE unless foreign keys are switched on per connection
    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


@pytest.fixture
def db_engine():
    """In-memory SQLite engine shared by all connections (TestClient runs in another thread)."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    _enable_foreign_keys(engine)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def file_engine(tmp_path):
    """File-backed SQLite engine: real separate connections (concurrency tests)."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'nodescore.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    _enable_foreign_keys(engine)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine) -> Session:
    """Create database session for tests"""
    SessionLocal = sessionmaker(bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def sample_account_id():
    """Sample account ID for tests"""
    return 1


@pytest.fixture
def settings():
    """Settings independent of the environment / .env"""
    return Settings(
        _env_file=None,
        DATABASE_URL="sqlite://",
        SCORING_STRATEGY="average",
        SCORING_MEASURE="x",
        SCORING_REVENUE_MEASURE=None,
        ENABLE_ADVISORY_LOCKS=True,
    )


@pytest.fixture
def t0():
    return datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def node(db_session, sample_account_id):
    """Root taxonomy node of the sample account"""
    return TaxonomyStore(db_session).create_node(
        account_id=sample_account_id,
        title="Running shoes",
        path="/shoes/running",
        url="https://shop.example.com/shoes/running",
    )
