import json
import time

import pytest
from sqlalchemy import select

from murmur.clients import redis_client
from murmur.models import User


@pytest.mark.asyncio
async def test_first_login_creates_user(api_client, session_factory, alice):
    async with session_factory() as session:
        assert await session.get(User, "alice-id") is None

    response = await api_client.get("/posts", headers=alice)
    assert response.status_code == 200

    async with session_factory() as session:
        user = await session.get(User, "alice-id")
    assert user.username == "alice"
    assert user.firstname == "Alice"
    assert user.lastname == "Anderson"
    assert user.avatar_url is None


@pytest.mark.asyncio
async def test_first_login_with_taken_username(api_client, introspector, alice):
    response = await api_client.patch("/users", json={"username": "dave"}, headers=alice)
    assert response.status_code == 204

    introspector.register("token-dave", "dave-id", "dave", "Dave", "Davis")
    dave = {"Authorization": "Bearer token-dave"}

    profile = await api_client.get("/users/dave-id", headers=dave)
    assert profile.status_code == 200
    assert profile.json()["username"] == "dave-id"
    assert profile.json()["displayName"] == "Dave Davis"

    post = await api_client.post("/posts", data={"text": "made it"}, headers=dave)
    assert post.status_code == 200
    assert post.json()["creator"]["id"] == "dave-id"

    alice_profile = (await api_client.get("/users/alice-id")).json()
    assert alice_profile["username"] == "dave"


@pytest.mark.asyncio
async def test_introspection_result_is_cached(api_client, introspector, fake_redis, alice):
    await api_client.get("/posts", headers=alice)
    await api_client.get("/posts", headers=alice)
    await api_client.get("/users", headers=alice)

    assert introspector.calls == 1
    keys = await fake_redis.keys("introspection:*")
    assert len(keys) == 1
    # The raw token never ends up in a key
    assert "token-alice" not in keys[0]


@pytest.mark.asyncio
async def test_invalid_token(api_client, introspector, fake_redis):
    headers = {"Authorization": "Bearer bogus"}

    read = await api_client.get("/users", headers=headers)
    assert read.status_code == 200
    assert read.json()["count"] == 0

    write = await api_client.post("/posts", data={"text": "nope"}, headers=headers)
    assert write.status_code == 401
    assert write.headers["www-authenticate"] == "Bearer"

    assert await fake_redis.keys("introspection:*") == []


@pytest.mark.asyncio
async def test_cached_claims_skip_user_upsert(api_client, session_factory, introspector, fake_redis):
    # A cache hit trusts the stored claims and does not touch the users table
    await redis_client.cache_claims("token-dave", {"sub": "dave-id", "active": True})

    response = await api_client.get("/users", headers={"Authorization": "Bearer token-dave"})
    assert response.status_code == 200
    assert introspector.calls == 0

    async with session_factory() as session:
        rows = (await session.execute(select(User))).scalars().all()
    assert rows == []


@pytest.mark.asyncio
async def test_cache_ttl_honours_token_expiry(fake_redis):
    await redis_client.cache_claims("short", {"sub": "x", "exp": int(time.time()) + 30})
    ttl = await fake_redis.ttl(redis_client._token_key("short"))
    assert 0 < ttl <= 30

    await redis_client.cache_claims("expired", {"sub": "x", "exp": int(time.time()) - 1})
    assert await redis_client.get_cached_claims("expired") is None

    await redis_client.cache_claims("long", {"sub": "y"})
    assert await redis_client.get_cached_claims("long") == {"sub": "y"}
    raw = await fake_redis.get(redis_client._token_key("long"))
    assert json.loads(raw) == {"sub": "y"}
