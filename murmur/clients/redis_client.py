"""
Redis client wrapper.

Responsibilities:
  • Introspection cache — STRING (JSON claims) keyed by introspection:{sha256(token)}
                           TTL = min(oidc_cache_ttl, token exp - now)

Tokens are never stored in clear text; only their SHA-256 digest is used
as a key. Inactive tokens are not cached.
"""
import hashlib
import json
import logging
import time
from typing import Optional

import redis.asyncio as aioredis

from murmur.config import settings

logger = logging.getLogger(__name__)

_redis: Optional[aioredis.Redis] = None


async def init_redis() -> None:
    global _redis
    _redis = aioredis.Redis.from_url(settings.redis_url, decode_responses=True)
    await _redis.ping()
    logger.info("Redis connected at %s", settings.redis_url)


async def stop_redis() -> None:
    if _redis is not None:
        await _redis.aclose()


def get_redis() -> aioredis.Redis:
    if _redis is None:
        raise RuntimeError("Redis not initialised — call init_redis() at startup")
    return _redis


def set_redis(client: Optional[aioredis.Redis]) -> None:
    global _redis
    _redis = client


# ─────────────────────── Introspection Cache ──────────────────────────────

def _token_key(token: str) -> str:
    return "introspection:" + hashlib.sha256(token.encode("utf-8")).hexdigest()


async def get_cached_claims(token: str) -> dict | None:
    r = get_redis()
    raw = await r.get(_token_key(token))
    if raw:
        return json.loads(raw)
    return None


async def cache_claims(token: str, claims: dict) -> None:
    ttl = settings.oidc_cache_ttl
    exp = claims.get("exp")
    if isinstance(exp, (int, float)):
        ttl = min(ttl, int(exp - time.time()))
    if ttl <= 0:
        return
    r = get_redis()
    await r.set(_token_key(token), json.dumps(claims), ex=ttl)
