"""Pytest configuration and fixtures."""

import os
from datetime import UTC, datetime, timedelta
from typing import AsyncGenerator

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set DATABASE_URL for tests BEFORE importing mailbench.db
# This prevents the module from creating a database file
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["MAILBENCH_ENV"] = "development"
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret-key-for-mailbench-tests"
os.environ["API_KEY_ENCRYPTION_SECRET"] = "test-encryption-secret"
os.environ["GOOGLE_CLIENT_ID"] = "test-client-id.apps.googleusercontent.com"
os.environ["GOOGLE_CLIENT_SECRET"] = "test-client-secret"
os.environ.pop("GOOGLE_REDIRECT_URI", None)

from mailbench.db import Base  # noqa: E402
from mailbench.models import *  # noqa: E402,F401,F403 - register all tables
from mailbench.models.user import User  # noqa: E402
from mailbench.services.auth import create_access_token, hash_password  # noqa: E402
from mailbench.services.credential_store import CredentialStore  # noqa: E402
from mailbench.services.google_oauth import GoogleOAuthClient  # noqa: E402
from mailbench.utils.encryption import EncryptionService  # noqa: E402

TEST_PASSWORD = "Password123"


class MockProvider:
    """Canned responses for outbound HTTP calls (Google, Gmail, AI providers).

    Routes are keyed by method and URL without the query string. Every
    request is recorded so tests can assert on what was (or was not) sent.

    Usage:
        mock_provider.add("POST", TOKEN_ENDPOINT, json={"access_token": "..."})
        mock_provider.add("GET", url, handler=lambda request: httpx.Response(200, json={}))
    """

    def __init__(self):
        self.routes = {}
        self.requests: list[httpx.Request] = []

    def add(self, method, url, status_code=200, json=None, handler=None):
        if handler is None:
            def handler(request, status_code=status_code, json=json):
                return httpx.Response(status_code, json=json if json is not None else {})
        self.routes[(method.upper(), url)] = handler

    def fail(self, method, url, exc_class=httpx.ConnectError):
        """Make requests to ``url`` raise a transport error."""
        def handler(request):
            raise exc_class("connection failed", request=request)
        self.routes[(method.upper(), url)] = handler

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = f"{request.url.scheme}://{request.url.host}{request.url.path}"
        handler = self.routes.get((request.method, url))
        if handler is None:
            return httpx.Response(404, json={"error": "not_found", "url": url})
        return handler(request)

    def requests_to(self, url):
        return [
            request
            for request in self.requests
            if f"{request.url.scheme}://{request.url.host}{request.url.path}" == url
        ]


@pytest.fixture(scope="function")
async def db_engine():
    """Create a test database engine."""
    # Use in-memory SQLite for testing
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Cleanup
    await engine.dispose()


@pytest.fixture(scope="function")
async def db(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async_session_maker = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with async_session_maker() as session:
        yield session
        # Rollback any uncommitted changes
        await session.rollback()


@pytest.fixture(scope="session")
def encryption():
    """Encryption service shared by the whole session (key derivation is slow)."""
    return EncryptionService(master_secret="test-encryption-secret")


@pytest.fixture
def mock_provider():
    return MockProvider()


@pytest.fixture
async def http_client(mock_provider):
    """httpx client whose requests are answered by ``mock_provider``."""
    async with httpx.AsyncClient(transport=httpx.MockTransport(mock_provider.handle)) as client:
        yield client


@pytest.fixture
def oauth_client(http_client):
    return GoogleOAuthClient(
        client_id="test-client-id.apps.googleusercontent.com",
        client_secret="test-client-secret",
        http_client=http_client,
    )


@pytest.fixture
def store(db, encryption):
    return CredentialStore(db, encryption)


@pytest.fixture
def make_user(db):
    """Factory fixture to create registered users.

    Usage:
        owner = await make_user("owner@example.com", display_name="Owner")
    """
    password_hash = hash_password(TEST_PASSWORD)

    async def _make_user(email, display_name=None):
        user = User(email=email.strip().lower(), display_name=display_name, password_hash=password_hash)
        db.add(user)
        await db.commit()
        await db.refresh(user)
        return user

    return _make_user


@pytest.fixture
async def owner(make_user):
    return await make_user("owner@example.com", display_name="Account Owner")


@pytest.fixture
async def viewer(make_user):
    return await make_user("viewer@example.com", display_name="Team Viewer")


@pytest.fixture
def make_account(store):
    """Factory fixture to connect a Gmail account through the credential store.

    Tokens default to ``access-<email>`` / ``refresh-<email>`` and expire in an hour.
    """
    async def _make_account(user, email="inbox@gmail.com", expires_in=timedelta(hours=1), **kwargs):
        expires_at = datetime.now(UTC) + expires_in if expires_in is not None else None
        return await store.store_tokens(
            user.id,
            email,
            kwargs.get("access_token", f"access-{email}"),
            kwargs.get("refresh_token", f"refresh-{email}"),
            expires_at,
        )

    return _make_account


def auth_headers_for(user) -> dict:
    token = create_access_token({"sub": user.id, "email": user.email})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers():
    """Build Authorization headers for a user: ``auth_headers(owner)``."""
    return auth_headers_for


@pytest.fixture
async def app():
    """Create FastAPI app for testing."""
    from mailbench.main import app as application
    return application


@pytest.fixture
async def client(app, db, http_client, encryption):
    """Create async test client wired to the test database and mock provider."""
    from httpx import ASGITransport, AsyncClient

    from mailbench.db import get_db
    from mailbench.dependencies import get_http_client
    from mailbench.utils.encryption import get_encryption_service

    # Override get_db dependency to use test database
    async def override_get_db():
        yield db

    async def override_get_http_client():
        yield http_client

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_http_client] = override_get_http_client
    app.dependency_overrides[get_encryption_service] = lambda: encryption

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
async def authenticated_client(client, owner):
    """AsyncClient logged in as ``owner`` via a bearer token."""
    client.headers.update(auth_headers_for(owner))
    return client
