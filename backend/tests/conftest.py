"""Test configuration and fixtures for IdeaCollabHub backend tests."""

import asyncio
import os
import sys
import pathlib
import datetime
import pytest
from unittest.mock import patch


from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel, create_engine
from sqlmodel.pool import StaticPool

BACKEND_DIR = pathlib.Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

# Set test environment before importing backend modules
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["SESSION_SECRET_KEY"] = "test_secret_key"
os.environ["TESTING_MODE"] = "True"
os.environ["SLACK_TOKEN"] = ""
os.environ["FEED_RETRY_ATTEMPTS"] = "3"
os.environ["RECONCILE_INTERVAL_SECONDS"] = "0"

T0 = datetime.datetime(2024, 5, 1, 12, 0, tzinfo=datetime.timezone.utc)


@pytest.fixture(autouse=True)
def test_engine():
    """Create a test database engine."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    # Ensure models are imported so tables are registered in SQLModel.metadata
    import models  # noqa: F401

    SQLModel.metadata.create_all(engine)
    return engine


@pytest.fixture
def test_session(test_engine):
    """Create a test database session."""
    with Session(test_engine, expire_on_commit=False) as session:
        yield session


@pytest.fixture
def feed():
    """A change feed private to the test."""
    from services.change_feed import ChangeFeed

    return ChangeFeed(queue_size=64)


@pytest.fixture
def local_backend(test_engine, feed):
    from client.local_backend import LocalBackend

    return LocalBackend(test_engine, feed=feed)


@pytest.fixture
def profiles(test_session):
    """Alice, Bob and Carol; Carol never filled her name."""
    from models.profile import Profile

    alice = Profile(id="alice", full_name="Alice Liddell", title="Founder")
    bob = Profile(id="bob", full_name="Bob Marley", title="Designer")
    carol = Profile(id="carol")
    for profile in (alice, bob, carol):
        test_session.add(profile)
    test_session.commit()
    return alice, bob, carol


@pytest.fixture
def record_factory():
    """Build connection records without a database."""
    from models.connection import ConnectionRecord, ConnectionStatus

    def _make(
        id="c1",
        requester_id="alice",
        recipient_id="bob",
        status=ConnectionStatus.pending,
        seconds=0,
    ):
        when = T0 + datetime.timedelta(seconds=seconds)
        return ConnectionRecord(
            id=id,
            requester_id=requester_id,
            recipient_id=recipient_id,
            status=status,
            created_at=T0,
            updated_at=when,
        )

    return _make


@pytest.fixture
def override_get_session(test_session):
    """Override the get_session dependency for testing."""

    def _override_get_session():
        yield test_session

    return _override_get_session


@pytest.fixture
def test_app(override_get_session, feed):
    """Create a test FastAPI application."""
    # Patch update_database to skip the table creation in tests
    with patch("app.update_database"):
        from app import create_app

        app = create_app()
    from models.common import get_session
    from routes.connection_route import get_change_feed

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_change_feed] = lambda: feed
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(test_app):
    """Create a test client."""
    with TestClient(test_app) as client:
        yield client


@pytest.fixture
def login(test_app):
    """Act as the given profile in the following requests."""
    from routes.deps import get_current_user

    def _login(profile):
        test_app.dependency_overrides[get_current_user] = lambda: profile

    return _login


@pytest.fixture
def eventually():
    """Wait until a condition holds, the feed delivers asynchronously."""
    async def _eventually(condition, timeout=2.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not condition():
            if loop.time() > deadline:
                raise AssertionError("Condition not met in time")
            await asyncio.sleep(0.01)

    return _eventually
