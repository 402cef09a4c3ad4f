# tests/conftest.py
from __future__ import annotations

import os

# settings are read at import time, so the environment has to be in place first
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["OPENAI_API_KEY"] = ""
os.environ.setdefault("SECRET", "test-secret-0123456789abcdefghijklmnopqrstuvwxyz")
os.environ.setdefault("FORUMMS_API_URL", "https://forum.test/api/v1")
os.environ.setdefault("FORUMMS_API_KEY", "test-api-key")
os.environ.setdefault("DEMO_SCHOOL_ID", "demo")

import httpx
import pytest
from httpx import AsyncClient, ASGITransport

from memory_rooms.database import Base, async_session_maker, engine
from memory_rooms.errors import NotAuthenticated
from memory_rooms.forum.client import ForumClient, get_forum_client
from memory_rooms.forum.repository import Author, ForumRepository
from memory_rooms.models import User
from memory_rooms.utils import require_authenticated_user
from tests.fake_forum import FakeForum


# Make anyio run on asyncio (so our async fixtures work everywhere)
@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    async with async_session_maker() as session:
        yield session


@pytest.fixture
def fake_forum() -> FakeForum:
    return FakeForum()


@pytest.fixture
async def forum_client(fake_forum):
    client = ForumClient("https://forum.test/api/v1", "test-api-key", transport=fake_forum.transport())
    yield client
    await client.aclose()


@pytest.fixture
def repo(forum_client) -> ForumRepository:
    return ForumRepository(forum_client)


@pytest.fixture
def author(fake_forum) -> Author:
    user = fake_forum.add_user("ada")
    return Author(id=user["id"], name="ada")


async def create_user(email: str, *, username: str | None = None, superuser: bool = False) -> User:
    """Insert a local account in its own session; the returned instance is detached."""
    async with async_session_maker() as session:
        user = User(
            email=email,
            username=username or email.split("@", 1)[0],
            hashed_password="x",
            is_active=True,
            is_superuser=superuser,
            is_verified=True,
        )
        session.add(user)
        await session.commit()
        return user


class ApiClient:
    """AsyncClient bound to the app with a switchable signed-in user."""

    def __init__(self, client: AsyncClient):
        self.http = client
        self.user: User | None = None

    def act_as(self, user: User | None) -> None:
        self.user = user

    async def get(self, url: str, **kw) -> httpx.Response:
        return await self.http.get(url, **kw)

    async def post(self, url: str, **kw) -> httpx.Response:
        return await self.http.post(url, **kw)

    async def patch(self, url: str, **kw) -> httpx.Response:
        return await self.http.patch(url, **kw)

    async def delete(self, url: str, **kw) -> httpx.Response:
        return await self.http.delete(url, **kw)


@pytest.fixture
async def api(db, forum_client):
    from memory_rooms.main import app

    holder: dict = {}

    async def _current_user():
        user = holder["api"].user
        if user is None:
            raise NotAuthenticated()
        return user

    app.dependency_overrides[require_authenticated_user] = _current_user
    app.dependency_overrides[get_forum_client] = lambda: forum_client
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        holder["api"] = ApiClient(client)
        yield holder["api"]
    app.dependency_overrides.clear()
