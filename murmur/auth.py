"""
Authentication dependencies for FastAPI endpoints.

  get_optional_user_id — viewer identity or None (anonymous, invalid token)
  get_user_id          — viewer identity or 401

Bearer tokens are introspected at the identity provider; active results are
cached in Redis. The first fresh introspection of a subject creates its
user row.
"""
import logging
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from murmur.clients.oidc_client import OidcIntrospectionClient, get_introspector
from murmur.clients.redis_client import cache_claims, get_cached_claims
from murmur.database import get_db
from murmur.services.users import ensure_user

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)


async def _cached(token: str) -> dict | None:
    try:
        return await get_cached_claims(token)
    except Exception as exc:
        logger.warning("Introspection cache read failed: %s", exc)
        return None


async def _store(token: str, claims: dict) -> None:
    try:
        await cache_claims(token, claims)
    except Exception as exc:
        logger.warning("Introspection cache write failed: %s", exc)


async def get_optional_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
    introspector: OidcIntrospectionClient = Depends(get_introspector),
    db: AsyncSession = Depends(get_db),
) -> Optional[str]:
    if credentials is None:
        return None
    token = credentials.credentials

    claims = await _cached(token)
    if claims is None:
        claims = await introspector.introspect(token)
        if claims is None:
            return None
        await ensure_user(db, claims)
        await _store(token, claims)

    return claims["sub"]


async def get_user_id(user_id: Optional[str] = Depends(get_optional_user_id)) -> str:
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_id
