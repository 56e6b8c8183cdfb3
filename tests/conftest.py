"""
pytest Fixtures for Bookshare API Tests

Shared fixtures used across all test files.

For database tests, we use:
- session scope for engine (expensive to create)
- function scope for sessions (isolation between tests)

Outbound calls (OAuth providers, the ranking model) are never made:
tests mock httpx or swap in a fake RankingClient.
"""

# =============================================================================
# TEST ENVIRONMENT SETUP
# =============================================================================
# IMPORTANT: Set environment variables BEFORE importing the app
import os

os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["CACHE_ENABLED"] = "false"
os.environ["SECRET_KEY"] = "test-secret-key-for-unit-tests-at-least-32-characters-long"
os.environ["REFRESH_SECRET_KEY"] = "test-refresh-key-for-unit-tests-at-least-32-characters"
os.environ["GEMINI_API_KEY"] = "test-gemini-api-key"

from collections.abc import Generator
from datetime import UTC, datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from bookshare.database import Base, get_db
from bookshare.main import app
from bookshare.models import Post, User
from bookshare.services.rate_limiter import get_search_rate_limiter
from bookshare.services.security import hash_password

TEST_PASSWORD = "SecurePass123"


# =============================================================================
# DATABASE FIXTURES
# =============================================================================
# SQLite in-memory: fast, isolated, no external database needed.
# StaticPool keeps the single connection alive for the whole session.


@pytest.fixture(scope="session")
def engine():
    """Create a SQLite in-memory database engine with all tables."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(engine) -> Generator[Session, None, None]:
    """
    Create a fresh database session for each test.

    The session is wrapped in a transaction that's rolled back,
    ensuring test isolation without needing to recreate tables.
    """
    TestSessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine,
    )

    connection = engine.connect()
    transaction = connection.begin()
    session = TestSessionLocal(bind=connection)

    yield session

    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """
    Create a test client with the test database.

    We override the get_db dependency to use our test session.
    """

    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Session cleanup handled by db_session fixture

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def reset_search_rate_limiter():
    """The search limiter is process-wide; start every test with no windows."""
    get_search_rate_limiter().reset()
    yield
    get_search_rate_limiter().reset()


# =============================================================================
# SAMPLE DATA FIXTURES
# =============================================================================


@pytest.fixture
def sample_user(db_session: Session) -> User:
    """Create a sample local user for testing."""
    user = User(
        email="testuser@example.com",
        username="testuser",
        hashed_password=hash_password(TEST_PASSWORD),
        full_name="Test User",
        is_active=True,
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def second_user(db_session: Session) -> User:
    """Create a second user (rate-limit isolation, ownership scenarios)."""
    user = User(
        email="seconduser@example.com",
        username="seconduser",
        hashed_password=hash_password("SecurePass456"),
        full_name="Second User",
        is_active=True,
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def sample_posts(db_session: Session, sample_user: User) -> list[Post]:
    """Three posts, oldest first, one minute apart."""
    start = datetime.now(UTC) - timedelta(minutes=10)
    contents = [
        "Loved the worldbuilding in Dune, especially the desert ecology.",
        "Pride and Prejudice is the perfect comfort reread.",
        "Arrakis and the spice trade make Dune feel like real history.",
    ]
    posts = []
    for offset, content in enumerate(contents):
        post = Post(
            user_id=sample_user.id,
            content=content,
            created_at=start + timedelta(minutes=offset),
        )
        db_session.add(post)
        posts.append(post)

    db_session.commit()
    for post in posts:
        db_session.refresh(post)
    return posts


# =============================================================================
# AUTH HELPERS
# =============================================================================


def login(client: TestClient, email: str, password: str = TEST_PASSWORD) -> dict:
    """Log in and return the response's token pair."""
    response = client.post(
        "/api/v1/auth/login",
        json={"email": email, "password": password},
    )
    assert response.status_code == 200, response.text
    return response.json()["tokens"]


def bearer(access_token: str) -> dict:
    return {"Authorization": f"Bearer {access_token}"}


@pytest.fixture
def auth_tokens(client: TestClient, sample_user: User) -> dict:
    """Token pair for sample_user, obtained through the login endpoint."""
    return login(client, sample_user.email)


@pytest.fixture
def auth_headers(auth_tokens: dict) -> dict:
    return bearer(auth_tokens["access_token"])
