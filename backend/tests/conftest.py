import os

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
from app.main import app
from app.ai.client import get_ai_client
from app.core.security import create_access_token
from app.db.database import Base, get_db, get_session_factory
from app.db.models import User
from app.realtime.feed import ChangeFeed, get_change_feed
from app.storage import set_storage
from app.storage.local import LocalStorage


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture(scope="session")
async def test_engine():
    # On-disk file so every request session sees the same database
    engine = create_async_engine(
        "sqlite+aiosqlite:///./test_syncora.db",
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def test_session(test_engine, clean_tables):
    async_session = sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)
    async with async_session() as session:
        yield session


@pytest.fixture(scope="session")
async def override_get_db_for_app(test_engine):
    """Point the app's database dependencies at the session-scoped test engine.

    Yields the session factory the WebSocket streams use.
    """
    async_session = sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)

    async def _override_get_db():
        async with async_session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_session_factory] = lambda: async_session
    yield async_session
    app.dependency_overrides.pop(get_db, None)
    app.dependency_overrides.pop(get_session_factory, None)


@pytest.fixture
async def clean_tables(test_engine):
    """Empty every table before each test, keeping the schema."""
    async with test_engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            await conn.execute(table.delete())
    yield


@pytest.fixture
def feed():
    """A private change feed wired into the app for one test."""
    test_feed = ChangeFeed(queue_size=16)
    app.dependency_overrides[get_change_feed] = lambda: test_feed
    yield test_feed
    app.dependency_overrides.pop(get_change_feed, None)


@pytest.fixture
def local_storage(tmp_path):
    storage = LocalStorage(str(tmp_path / "uploads"))
    set_storage(storage)
    yield storage
    set_storage(None)


class FakeAIClient:
    """Records calls instead of reaching the AI backend."""

    def __init__(self, result: str = "fake result"):
        self.result = result
        self.calls = []

    async def run_task(self, task, content):
        self.calls.append(("task", str(getattr(task, "value", task)), content))
        return self.result

    async def run_action(self, action, messages, conversation_id=None):
        self.calls.append(("action", str(getattr(action, "value", action)), messages))
        return self.result


@pytest.fixture
def fake_ai():
    fake = FakeAIClient()
    app.dependency_overrides[get_ai_client] = lambda: fake
    yield fake
    app.dependency_overrides.pop(get_ai_client, None)


@pytest.fixture
async def client(override_get_db_for_app, clean_tables):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


def auth_headers(user_id: int) -> dict:
    token = create_access_token({"sub": str(user_id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_user(test_session):
    counter = {"n": 0}

    async def _make_user(username: str = None, full_name: str = None, is_active: bool = True) -> User:
        counter["n"] += 1
        username = username or f"user{counter['n']}"
        user = User(
            username=username,
            email=f"{username}@example.com",
            full_name=full_name or username.title(),
            is_active=is_active,
        )
        test_session.add(user)
        await test_session.commit()
        await test_session.refresh(user)
        return user

    return _make_user


@pytest.fixture
async def owner(make_user):
    return await make_user("owner", "Group Owner")


@pytest.fixture
async def group(client, owner):
    """A freshly created group owned by `owner`, as returned by the API."""
    resp = await client.post("/api/groups/", json={"name": "Syncora Team"}, headers=auth_headers(owner.id))
    assert resp.status_code == 201, resp.text
    return resp.json()


@pytest.fixture
async def roles_by_name(client, group, owner):
    resp = await client.get(f"/api/groups/{group['id']}/roles", headers=auth_headers(owner.id))
    assert resp.status_code == 200, resp.text
    return {r["name"]: r for r in resp.json()}


@pytest.fixture
def add_member(client, group, owner):
    """Add a user to `group` through the API, optionally with explicit role ids."""

    async def _add_member(user: User, role_ids=None) -> dict:
        body = {"user_id": user.id}
        if role_ids is not None:
            body["role_ids"] = role_ids
        resp = await client.post(
            f"/api/groups/{group['id']}/members", json=body, headers=auth_headers(owner.id)
        )
        assert resp.status_code == 201, resp.text
        return resp.json()

    return _add_member


@pytest.fixture
def headers_for():
    """`headers_for(user)` -> Authorization header for that user."""
    return lambda user: auth_headers(user.id)


@pytest.fixture
def session_factory(override_get_db_for_app, clean_tables):
    """Session factory bound to the test database, as the WebSocket streams receive it."""
    return override_get_db_for_app
