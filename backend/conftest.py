"""
Shared pytest fixtures.

Every test gets a fresh in-memory SQLite database. StaticPool keeps one
connection alive so the schema survives across sessions and worker threads.
"""

from datetime import datetime, timedelta
from itertools import count

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from spamguard.config import EngineSettings
from spamguard.database import Base, get_db
from spamguard import models  # noqa: F401  Register tables on Base.metadata
from spamguard.services.messages import register_message


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def settings():
    """Default engine settings with retries that never sleep long."""
    return EngineSettings(retry_initial_delay=0.0, retry_max_delay=0.0)


@pytest.fixture
def add_message(db):
    """Ingest a pending message; each call gets a unique phone and timestamp."""
    sequence = count(1)
    base_time = datetime(2025, 10, 1, 12, 0, 0)

    def _add(text, brand=None, created_at=None, status=None):
        n = next(sequence)
        message = register_message(
            db,
            phone=f"+1555{n:07d}",
            text=text,
            received_at=base_time + timedelta(seconds=n),
            brand=brand,
            created_at=created_at or base_time + timedelta(seconds=n),
        )
        if status:
            message.status = status
            db.commit()
            db.refresh(message)
        return message

    return _add


@pytest.fixture
def client(session_factory):
    from spamguard.main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    # Not used as a context manager, so startup seeding against the real database never runs
    yield TestClient(app)
    app.dependency_overrides.clear()
