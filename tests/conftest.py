# tests/conftest.py
"""
Pytest configuration and fixtures.
"""

import os
import uuid
from datetime import UTC, datetime, timedelta

import pytest

# Set test environment before app modules read it
os.environ.setdefault("TESTING", "1")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("ADMIN_API_KEY", "test-api-key")
os.environ.setdefault("SNAPSHOT_SOURCE", "memory")
os.environ.setdefault("LOG_JSON", "false")


# Fixed evaluation instant shared by lifecycle tests
NOW = datetime(2025, 6, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def db_session():
    """Fresh in-memory SQLite database per test."""
    from sqlalchemy.orm import sessionmaker

    from app import models  # noqa: F401
    from app.database import Base, build_engine

    engine = build_engine("sqlite:///:memory:")
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(bind=engine, autoflush=False, future=True)()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def org_id():
    return uuid.uuid4()


@pytest.fixture
def source():
    from app.snapshots.memory_source import InMemorySnapshotSource

    return InMemorySnapshotSource()


@pytest.fixture
def make_snapshot(now):
    """Build a Snapshot aged `age_days` relative to NOW."""
    from app.models import ClassificationLevel
    from app.snapshots.base import Snapshot

    def _make(
        snapshot_id: str,
        age_days: int,
        level=ClassificationLevel.INTERNAL,
        size_bytes: int = 1000,
        repository_id: str | None = None,
        schedule_id: str | None = None,
        data_types=(),
    ):
        return Snapshot(
            id=snapshot_id,
            classification_level=level,
            created_at=now - timedelta(days=age_days),
            size_bytes=size_bytes,
            repository_id=repository_id,
            schedule_id=schedule_id,
            data_types=tuple(data_types),
        )

    return _make


@pytest.fixture
def internal_rules():
    """Rule rows: internal kept 30 days, deleted at 365."""
    return [
        {
            "level": "internal",
            "retention": {"min_days": 30, "max_days": 365},
            "data_type_overrides": [],
        }
    ]


@pytest.fixture
def make_policy(db_session, org_id, internal_rules):
    """Create a persisted policy (active by default)."""
    from app.services.lifecycle.policy_service import create_policy

    def _make(rules=None, status="active", **kwargs):
        return create_policy(
            db_session,
            org_id=kwargs.pop("org_id", org_id),
            name=kwargs.pop("name", "Snapshot retention"),
            rules=rules if rules is not None else internal_rules,
            status=status,
            **kwargs,
        )

    return _make
