import os

# Must be set before murmur.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("OTEL_ENABLED", "false")

import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from murmur import models  # noqa: F401
from murmur.clients import redis_client
from murmur.clients.oidc_client import get_introspector
from murmur.clients.storage_client import get_storage
from murmur.database import Base, get_db
from murmur.main import app
from murmur.services.post_updates import PostUpdates


class FakeStorage:
    """In-memory stand-in for the object store."""

    def __init__(self):
        self.objects = {}
        self.deleted = []

    def public_url_for(self, name):
        return f"https://storage.test/murmur-media/{name}"

    async def upload(self, name, content_type, data):
        self.objects[name] = (content_type, data)
        return self.public_url_for(name)

    async def delete_if_possible(self, name):
        self.deleted.append(name)
        self.objects.pop(name, None)


class FakeIntrospector:
    """Maps bearer tokens to introspection claims."""

    def __init__(self):
        self.tokens = {}
        self.calls = 0

    def register(self, token, sub, username, given_name="Test", family_name="User"):
        self.tokens[token] = {
            "active": True,
            "sub": sub,
            "preferred_username": username,
            "given_name": given_name,
            "family_name": family_name,
        }

    async def introspect(self, token):
        self.calls += 1
        claims = self.tokens.get(token)
        return dict(claims) if claims else None


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, _record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def introspector():
    fake = FakeIntrospector()
    fake.register("token-alice", "alice-id", "alice", "Alice", "Anderson")
    fake.register("token-bob", "bob-id", "bob", "Bob", "Brown")
    fake.register("token-carol", "carol-id", "carol", "Carol", "Clark")
    return fake


@pytest_asyncio.fixture
async def fake_redis():
    client = FakeRedis(decode_responses=True)
    redis_client.set_redis(client)
    try:
        yield client
    finally:
        await client.flushall()
        redis_client.set_redis(None)


@pytest.fixture
def post_updates():
    updates = PostUpdates(queue_size=10)
    app.state.post_updates = updates
    return updates


@pytest_asyncio.fixture
async def api_client(session_factory, storage, introspector, fake_redis, post_updates):
    async def _get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_introspector] = lambda: introspector

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client

    app.dependency_overrides.clear()


def auth(user):
    return {"Authorization": f"Bearer token-{user}"}


@pytest.fixture
def alice():
    return auth("alice")


@pytest.fixture
def bob():
    return auth("bob")


@pytest.fixture
def carol():
    return auth("carol")
