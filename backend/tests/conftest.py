"""
Pytest configuration and fixtures for backend tests.
"""

import os
import sys
from pathlib import Path

import pyotp
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Add backend directory to path for imports
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

# Set test environment variables before importing config
os.environ["ENVIRONMENT"] = "test"
os.environ["SECRET_KEY"] = "test-secret-key-for-testing-only"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["CORS_ORIGINS"] = '["http://localhost:3000"]'
# Generate a valid Fernet key for TOTP encryption (base64-encoded 32 bytes)
os.environ["TOTP_ENCRYPTION_KEY"] = "P0LYDU58oBna0xcCcu-fgUPuS02-HzzJRarCoSA1ySA="
# Minimum bcrypt cost keeps recovery code hashing fast in tests
os.environ["RECOVERY_CODE_BCRYPT_ROUNDS"] = "4"

from authentication.auth import create_access_token, get_password_hash  # noqa: E402
from repositories.database import Base, get_db  # noqa: E402
import repositories.db_models as db_models  # noqa: E402
from services.rate_limit_service import RateLimitService  # noqa: E402
from services.two_factor_service import TwoFactorService  # noqa: E402

TEST_PASSWORD = "testpassword123"

# Test database engine (in-memory SQLite)
TEST_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(autouse=True)
def reset_attempt_limits():
    """Per-account failure counters are process-global; clear them per test."""
    RateLimitService.reset_all()
    yield
    RateLimitService.reset_all()


@pytest.fixture(scope="function")
def db_session():
    """Create a fresh in-memory database session for each test."""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db_session):
    """Create a test client with overridden database dependency."""
    from main import app
    from helpers.rate_limiter import limiter

    # Reset rate limiter storage before each test to prevent rate limit errors
    limiter.reset()

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def make_user(db_session, email: str, display_name: str = "Test User") -> db_models.User:
    user = db_models.User(
        email=email,
        display_name=display_name,
        hashed_password=get_password_hash(TEST_PASSWORD),
        is_active=True,
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def test_user(db_session) -> db_models.User:
    """Create a test user without 2FA."""
    return make_user(db_session, "test@example.com")


@pytest.fixture
def other_user(db_session) -> db_models.User:
    """Create a second user."""
    return make_user(db_session, "other@example.com", "Other User")


@pytest.fixture
def auth_headers(test_user) -> dict[str, str]:
    """Bearer headers for test_user."""
    token = create_access_token(data={"sub": str(test_user.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def enrolled_user(db_session, test_user):
    """
    test_user with 2FA enabled through the service.

    Returns:
        (user, base32 secret, plain recovery codes)
    """
    setup = TwoFactorService.begin_setup(db_session, str(test_user.id))
    enabled = TwoFactorService.confirm_setup(
        db_session, str(test_user.id), pyotp.TOTP(setup.secret).now()
    )
    db_session.refresh(test_user)
    return test_user, setup.secret, enabled.recovery_codes
