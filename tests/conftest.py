"""Shared test fixtures for the auth test suite."""

import os
from pathlib import Path
from unittest.mock import Mock
from uuid import UUID, uuid4

import pytest
from dotenv import load_dotenv

# Load .env file BEFORE any other imports that might use env vars
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

# Reset vault client singleton to pick up env vars
import clients.vault_client as vault_module
vault_module._vault_client_instance = None
vault_module._secret_cache.clear()

from auth.config import AuthConfig
from auth.types import Role, User
from auth.security_logger import SecurityLogger
from utils.timezone import now_utc
from utils.user_context import user_context, clear_current_user_id

SCHEMA_PATH = Path(__file__).parent.parent / "auth" / "schema.sql"


# =============================================================================
# TEST USER CONSTANTS
# =============================================================================

TEST_USER_ID = UUID("00000000-0000-0000-0000-000000000001")
TEST_USER_EMAIL = "testuser@example.com"

TEST_USER_B_ID = UUID("00000000-0000-0000-0000-000000000002")
TEST_USER_B_EMAIL = "testuser-b@example.com"


# =============================================================================
# USER CONTEXT FIXTURES
# =============================================================================


@pytest.fixture(autouse=True)
def reset_user_context():
    """Ensure clean user context before and after each test."""
    clear_current_user_id()
    yield
    clear_current_user_id()


@pytest.fixture
def test_user_id() -> UUID:
    return TEST_USER_ID


@pytest.fixture
def test_user_b_id() -> UUID:
    return TEST_USER_B_ID


@pytest.fixture
def authenticated_context(test_user_id):
    """Provide an authenticated user context for the primary test user."""
    with user_context(test_user_id):
        yield test_user_id


# =============================================================================
# DOMAIN FIXTURES
# =============================================================================


@pytest.fixture
def config() -> AuthConfig:
    return AuthConfig(
        rate_limit_attempts=3,
        rate_limit_window_minutes=5,
        app_base_url="https://test.example.com",
    )


@pytest.fixture
def make_user():
    """Factory for User rows. Defaults to a verified teacher."""

    def _make(**overrides) -> User:
        fields = {
            "id": TEST_USER_ID,
            "email": TEST_USER_EMAIL,
            "email_verified": True,
            "role": Role.TEACHER,
            "created_at": now_utc(),
        }
        fields.update(overrides)
        return User(**fields)

    return _make


@pytest.fixture
def mock_security_logger():
    """Security logger that writes nowhere."""
    return Mock(spec=SecurityLogger)


# =============================================================================
# VALKEY FIXTURES
# =============================================================================


@pytest.fixture
def valkey(monkeypatch):
    """ValkeyClient backed by an in-process fake server."""
    import fakeredis
    import redis

    from clients.valkey_client import ValkeyClient

    server = fakeredis.FakeServer()
    monkeypatch.setattr(
        redis,
        "from_url",
        lambda url, **kwargs: fakeredis.FakeRedis(server=server, **kwargs),
    )
    client = ValkeyClient("redis://fake:6379/0")
    yield client
    client.close()


# =============================================================================
# DATABASE FIXTURES
# =============================================================================


@pytest.fixture(scope="session")
def db():
    """Session-scoped PostgresClient against TEST_DATABASE_URL.

    Integration tests are skipped when no test database is configured.
    """
    database_url = os.getenv("TEST_DATABASE_URL")
    if not database_url:
        pytest.skip("TEST_DATABASE_URL not set")

    from clients.postgres_client import PostgresClient

    client = PostgresClient(database_url, minconn=1, maxconn=5)
    client.execute(SCHEMA_PATH.read_text())
    yield client
    client.close()


@pytest.fixture
def clean_db(db):
    """Empty auth tables before each integration test."""
    db.execute("TRUNCATE users, security_events")
    yield db


@pytest.fixture
def new_email():
    """Unique email per call so integration tests never collide."""
    return lambda: f"user-{uuid4().hex[:12]}@example.com"
