"""Shared test fixtures."""

import os

os.environ.setdefault("SQLALCHEMY_DATABASE_URL", "sqlite://")

from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import readsync.db.models  # noqa: F401  registers tables
from readsync.db.base import Base
from tests.fakes import create_user

OVERRIDE_VARS = [
    "READWISE_SYNC_MAX_REQUESTS_OVERRIDE",
    "READWISE_SYNC_PAGE_SIZE_OVERRIDE",
    "READWISE_SYNC_LOCATION_OVERRIDE",
    "READWISE_SYNC_STALE_LOCK_SECONDS",
    "SYNC_API_KEY",
]

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in OVERRIDE_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_user(db):
    def _make(**kwargs):
        return create_user(db, **kwargs)
    return _make

