"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of sundaypoints.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from sundaypoints.config import PointsConfig  # noqa: E402
from sundaypoints.database.models import Base  # noqa: E402
from sundaypoints.services import config_service  # noqa: E402

CHURCH_ID = "st-mark"


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all ledger tables.

    Uses StaticPool so all threads share the same in-memory database
    (FastAPI runs sync handlers on a worker thread).
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
def db_session(db_engine: Engine):
    """Provide a session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


@pytest.fixture
def church(db_engine: Engine) -> str:
    """Onboard ``st-mark`` with the default points config; returns its id."""
    config_service.ensure_default_config(db_engine, CHURCH_ID)
    return CHURCH_ID


@pytest.fixture
def points_config() -> PointsConfig:
    return PointsConfig(portal_name="Test Portal", api_port=8000, leaderboard_limit=10)


def make_token(sub: str = "staff-1", role: str = "teacher") -> str:
    """Create a staff JWT.  Usable as both a fixture helper and a factory."""
    import jwt

    from sundaypoints.api.deps import JWT_ALGORITHM, JWT_SECRET

    return jwt.encode({"sub": sub, "role": role}, JWT_SECRET, algorithm=JWT_ALGORITHM)


@pytest.fixture
def teacher_token() -> str:
    return make_token("teacher-1", "teacher")


@pytest.fixture
def admin_token() -> str:
    return make_token("admin-1", "church_admin")


@pytest.fixture
def client(db_engine: Engine, points_config: PointsConfig):
    """FastAPI TestClient wired to the in-memory engine."""
    from fastapi.testclient import TestClient

    from sundaypoints.api.main import app
    # Routes hold the dependency objects from import time; a reload of
    # sundaypoints.api.deps (JWT secret tests) must not break overrides.
    from sundaypoints.api.routes.points import get_config, get_engine

    app.dependency_overrides[get_engine] = lambda: db_engine
    app.dependency_overrides[get_config] = lambda: points_config
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
