"""Pytest configuration and fixtures."""
from __future__ import annotations

import os
import sys
from datetime import date
from pathlib import Path
from typing import Any, Callable, Dict
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

# Set test environment
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("DRY_RUN", "true")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-for-ci")
os.environ.setdefault("ALLOWED_ORIGINS", "http://localhost:3000")

from core.auth import create_access_token
from core.db import Base, configure_sqlite
from core.models import Loop, User, UserRole
from core.utils import utcnow


# Use in-memory SQLite for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(scope="session")
def engine():
    """Create a test database engine with foreign keys and SAVEPOINT support."""
    engine = create_engine(
        SQLALCHEMY_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    configure_sqlite(engine, wal=False)
    return engine


@pytest.fixture(scope="session")
def tables(engine):
    """Create all tables for testing."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session(engine, tables) -> Session:
    """
    Returns a SQLAlchemy session for testing.

    Each test gets a fresh transaction that is rolled back after the test.
    """
    connection = engine.connect()
    transaction = connection.begin()

    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=connection)
    session = SessionLocal()

    yield session

    session.close()
    transaction.rollback()
    connection.close()


# =============================================================================
# Model Fixtures
# =============================================================================


def _add_user(session: Session, name: str, email: str, role: UserRole, **kwargs) -> User:
    user = User(name=name, email=email, role=role.value, **kwargs)
    session.add(user)
    session.flush()
    return user


@pytest.fixture
def admin_user(db_session) -> User:
    """An admin."""
    return _add_user(db_session, "Alice Admin", "alice@example.com", UserRole.ADMIN)


@pytest.fixture
def agent_user(db_session) -> User:
    """An agent."""
    return _add_user(db_session, "Bob Agent", "bob@example.com", UserRole.AGENT)


@pytest.fixture
def other_agent(db_session) -> User:
    """A second agent who owns nothing of agent_user's."""
    return _add_user(db_session, "Carol Agent", "carol@example.com", UserRole.AGENT)


@pytest.fixture
def make_loop(db_session) -> Callable[..., Loop]:
    """Factory inserting loops directly, bypassing service validation."""

    def _make(creator: User, **fields: Any) -> Loop:
        now = fields.pop("created_at", utcnow())
        values: Dict[str, Any] = {
            "type": "Listing",
            "property_address": "123 Main St",
            "status": "active",
            "compliance_status": "none",
            "archived": False,
        }
        values.update(fields)
        loop = Loop(creator_id=creator.id, created_at=now, updated_at=now, **values)
        db_session.add(loop)
        db_session.flush()
        return loop

    return _make


@pytest.fixture
def today() -> date:
    """Fixed reference date for deadline tests."""
    return date(2025, 6, 15)


# =============================================================================
# API Fixtures
# =============================================================================


@pytest.fixture
def auth_headers() -> Callable[[User], Dict[str, str]]:
    """Builds a bearer header for a user."""

    def _headers(user: User) -> Dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}

    return _headers


@pytest.fixture
def notifier() -> MagicMock:
    """Stand-in for the admin email notifier."""
    return MagicMock()


@pytest.fixture
def client(db_session, tmp_path, notifier):
    """TestClient sharing the test session, with uploads under tmp_path."""
    from fastapi.testclient import TestClient

    from api.app import app
    from api.deps import get_db, get_notifier, get_storage
    from services.storage import UploadStorage

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage] = lambda: UploadStorage(str(tmp_path))
    app.dependency_overrides[get_notifier] = lambda: notifier
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
