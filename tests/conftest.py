"""
Test fixtures and configuration.
"""
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from zapsocial.config import Settings, get_settings
from zapsocial.database import Base, get_db
from zapsocial.main import app
from zapsocial.models.integration import Integration
from zapsocial.models.user import User
from zapsocial.services.http import get_http_client
from zapsocial.utils.security import get_password_hash, create_access_token

# Test database
TEST_DATABASE_URL = "sqlite+aiosqlite:///./test_zapsocial.db"

FACEBOOK_APP_SECRET = "test-facebook-secret"


class FakeProvider:
    """
    Scripted platform API behind ``httpx.MockTransport``.

    Responses are queued per URL path and served in order; the last one
    queued for a path keeps being served.
    """

    def __init__(self):
        self.responses: dict[str, list[tuple[int, Any]]] = {}
        self.requests: list[httpx.Request] = []

    def add(self, path: str, status_code: int, json: Any) -> None:
        self.responses.setdefault(path, []).append((status_code, json))

    def calls(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.responses.get(request.url.path)
        if not queue:
            return httpx.Response(404, json={"error": {"message": f"No route for {request.url.path}"}})
        status_code, body = queue.pop(0) if len(queue) > 1 else queue[0]
        return httpx.Response(status_code, json=body)


@pytest.fixture
def settings() -> Settings:
    """Settings with platform credentials and no retry delay."""
    return Settings(
        _env_file=None,
        app_url="http://app.test",
        facebook_app_id="test-facebook-app",
        facebook_app_secret=FACEBOOK_APP_SECRET,
        linkedin_client_id="test-linkedin-client",
        linkedin_client_secret="test-linkedin-secret",
        cron_secret="",
        retry_delay_ms=0,
    )


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest_asyncio.fixture(scope="function")
async def http_client(provider: FakeProvider) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Outbound client wired to the fake provider."""
    async with httpx.AsyncClient(transport=httpx.MockTransport(provider.handler)) as client:
        yield client


@pytest_asyncio.fixture(scope="function")
async def db() -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database for each test."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with session_factory() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def client(
    db: AsyncSession,
    http_client: httpx.AsyncClient,
    settings: Settings,
) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with database, HTTP client and settings overrides."""
    async def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_http_client] = lambda: http_client
    app.dependency_overrides[get_settings] = lambda: settings

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


async def create_user(db: AsyncSession, email: str = "test@example.com") -> User:
    user = User(
        email=email,
        full_name="Test User",
        hashed_password=get_password_hash("testpassword123"),
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


async def create_integration(db: AsyncSession, user: User, **fields: Any) -> Integration:
    values: dict[str, Any] = {
        "platform": "facebook",
        "access_token": "current-token",
        "token_expires_at": datetime.now(timezone.utc) + timedelta(days=30),
        "meta": {},
    }
    values.update(fields)
    integration = Integration(user_id=user.id, **values)
    db.add(integration)
    await db.commit()
    return integration


@pytest_asyncio.fixture(scope="function")
async def test_user(db: AsyncSession) -> User:
    """Create a test user."""
    return await create_user(db)


@pytest_asyncio.fixture(scope="function")
async def auth_headers(test_user: User) -> dict:
    """Create auth headers for test user."""
    token = create_access_token(data={"sub": test_user.id})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_user(db: AsyncSession):
    """Factory for additional users."""
    async def factory(email: str) -> User:
        return await create_user(db, email=email)
    return factory


@pytest.fixture
def make_integration(db: AsyncSession, test_user: User):
    """Factory for integrations, owned by the test user unless ``user`` is given."""
    async def factory(user: User | None = None, **fields: Any) -> Integration:
        return await create_integration(db, user or test_user, **fields)
    return factory
