import pytest
import os
import tempfile
from datetime import datetime, timedelta, timezone
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from authguard.auth.security import CallerIdentity, create_access_token
from authguard.database import get_db
from authguard.main import app
from authguard.models.base import Base


TENANT_ID = "tenant-1"
USER_ID = "test-user-123"
USER_EMAIL = "test@example.com"


class FixedClock:
    """Deterministic clock that tests can move forward."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture(scope="function")
def session_factory():
    """Create a temporary database and return a session factory bound to it"""
    # Create a temporary file for the test database
    db_fd, db_path = tempfile.mkstemp(suffix=".db")
    test_database_url = f"sqlite:///{db_path}"

    # Create test engine and session
    engine = create_engine(test_database_url, connect_args={"check_same_thread": False, "timeout": 5})
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    # Create all tables
    Base.metadata.create_all(bind=engine)

    yield TestingSessionLocal

    # Cleanup
    engine.dispose()
    os.close(db_fd)
    os.unlink(db_path)


@pytest.fixture(scope="function")
def test_db(session_factory):
    """Create a session for the test"""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    """Clock pinned 15 seconds into a 30 second TOTP step"""
    return FixedClock(datetime(2026, 1, 15, 12, 0, 15, tzinfo=timezone.utc))


@pytest.fixture
def identity():
    return CallerIdentity(user_id=USER_ID, tenant_id=TENANT_ID, email=USER_EMAIL)


def make_token(user_id: str = USER_ID, tenant_id: str = TENANT_ID, email: str = USER_EMAIL) -> str:
    return create_access_token(user_id, tenant_id, email=email)


@pytest.fixture
def token_for():
    """Factory for bearer tokens of arbitrary users"""
    return make_token


@pytest.fixture
def auth_headers():
    """Bearer headers for the default test user"""
    return {"Authorization": f"Bearer {make_token()}"}


@pytest.fixture
def client(session_factory):
    """Test client whose requests use the temporary database"""
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()
