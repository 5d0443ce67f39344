"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os
from datetime import UTC, datetime

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of agora.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# SQLite doesn't support JSONB natively, but SQLAlchemy's JSON type works.
# We register a custom type compiler so SQLite renders JSONB as TEXT.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB  # noqa: E402
from sqlalchemy.ext.compiler import compiles  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from agora.config import config_from_dict  # noqa: E402
from agora.database.models import Base, User  # noqa: E402
from agora.database.seed import seed_defaults  # noqa: E402
from agora.engine.rules import RuleBook  # noqa: E402


@compiles(PG_JSONB, "sqlite")
def _compile_jsonb_as_text(type_, compiler, **kw):
    return "TEXT"


# A fixed instant well away from midnight so "today" is unambiguous.
NOW = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all Agora tables.

    JSONB columns are transparently mapped to TEXT for SQLite compatibility.
    Uses StaticPool so all threads share the same in-memory database
    (TestClient runs sync routes and background tasks on worker threads).
    """
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def seeded_engine(db_engine: Engine) -> Engine:
    """``db_engine`` plus the default badge / task / tag catalogue."""
    seed_defaults(db_engine)
    return db_engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a transactional session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


@pytest.fixture
def rules() -> RuleBook:
    return RuleBook()


@pytest.fixture
def now() -> datetime:
    return NOW


def make_user(engine: Engine, username: str = "alice", **fields) -> int:
    """Insert a user and return its id.  Usable from any test."""
    with Session(engine) as session:
        user = User(username=username, **fields)
        session.add(user)
        session.commit()
        return user.id


def get_user(engine: Engine, user_id: int) -> User:
    with Session(engine, expire_on_commit=False) as session:
        user = session.get(User, user_id)
        session.expunge(user)
        return user


def make_token(user_id: int, username: str = "alice", role: str = "user") -> str:
    from agora.api.deps import create_access_token

    return create_access_token(user_id, username, role)


def auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client(db_engine: Engine, rules: RuleBook):
    """FastAPI TestClient bound to the in-memory engine.

    The lifespan is not entered, so no background loops start.
    """
    from fastapi.testclient import TestClient

    from agora.api.deps import get_config, get_engine, get_rules
    from agora.api.main import app

    cfg = config_from_dict({"community_name": "Test Forum"})
    app.dependency_overrides[get_engine] = lambda: db_engine
    app.dependency_overrides[get_config] = lambda: cfg
    app.dependency_overrides[get_rules] = lambda: rules
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
