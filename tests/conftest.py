# tests/conftest.py

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from tasks_app.main import app
from tasks_app.tools import ensure_predefined_tags


@pytest.fixture()
def engine():
    """Fresh in-memory SQLite database per test, shared across threads."""
    db_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(db_engine)
    yield db_engine
    db_engine.dispose()


@pytest.fixture()
def session(engine):
    """Session over a store where the predefined tags already exist."""
    with Session(engine) as db_session:
        ensure_predefined_tags(db_session)
        yield db_session


@pytest.fixture()
def bare_session(engine):
    """Session over a store where startup bootstrap never ran."""
    with Session(engine) as db_session:
        yield db_session


@pytest.fixture()
def client(engine):
    """
    TestClient running the real app (lifespan included) against the test engine.

    Server exceptions are turned into 500 responses instead of being re-raised,
    so the catch-all handler can be asserted on.
    """
    original = app.state.engine
    app.state.engine = engine
    try:
        with TestClient(app, raise_server_exceptions=False) as test_client:
            yield test_client
    finally:
        app.state.engine = original
