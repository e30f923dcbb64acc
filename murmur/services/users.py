"""
User service: profiles, avatars and the follow graph.

Users are never created through the API directly; `ensure_user` inserts
the profile the first time an access token of that subject is introspected.
"""
import logging
import uuid
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from murmur.clients.storage_client import MediaUpload, ObjectStorage
from murmur.database import insert_ignore, is_foreign_key_violation, is_unique_violation
from murmur.errors import UsernameTakenError, UserNotFoundError
from murmur.models import Follow, User
from murmur.services.posts import clamp_limit
from murmur.telemetry import MEDIA_UPLOADS_TOTAL

logger = logging.getLogger(__name__)


async def ensure_user(db: AsyncSession, claims: dict) -> bool:
    """
    Upsert-on-login: create the user described by introspection claims
    unless it already exists. Returns True when a new row was written.

    When the preferred username is held by another user the row is created
    with the subject id as username; the user can rename later.
    """
    user_id = claims["sub"]
    username = claims.get("preferred_username") or claims.get("username") or user_id
    values = {
        "id": user_id,
        "firstname": claims.get("given_name") or username,
        "lastname": claims.get("family_name") or username,
    }
    try:
        created = await insert_ignore(db, User, username=username, **values)
    except IntegrityError as exc:
        await db.rollback()
        if not is_unique_violation(exc) or username == user_id:
            raise
        logger.warning("Username %s is taken, creating user %s under its id", username, user_id)
        username = user_id
        created = await insert_ignore(db, User, username=username, **values)
    await db.commit()
    if created:
        logger.info("Created user %s (id=%s) on first login", username, user_id)
    return created


class UserService:
    def __init__(self, db: AsyncSession, storage: Optional[ObjectStorage] = None) -> None:
        self.db = db
        self.storage = storage

    async def _page(self, query, offset: int, limit: int) -> tuple[list[User], int]:
        total = (
            await self.db.execute(select(func.count()).select_from(query.subquery()))
        ).scalar_one()
        rows = await self.db.execute(
            query.order_by(User.id).offset(offset).limit(clamp_limit(limit))
        )
        return list(rows.scalars().all()), total

    async def list_users(self, offset: int, limit: int) -> tuple[list[User], int]:
        return await self._page(select(User), offset, limit)

    async def get_by_id(self, user_id: str) -> Optional[User]:
        return await self.db.get(User, user_id)

    async def update_profile(
        self,
        user_id: str,
        firstname: Optional[str] = None,
        lastname: Optional[str] = None,
        username: Optional[str] = None,
    ) -> User:
        """Partial update; None leaves a field unchanged."""
        user = await self.db.get(User, user_id)
        if user is None:
            raise UserNotFoundError()

        if username is not None and username != user.username:
            taken = await self.db.execute(
                select(User.id).where(User.username == username, User.id != user_id)
            )
            if taken.first() is not None:
                raise UsernameTakenError()

        user.firstname = firstname if firstname is not None else user.firstname
        user.lastname = lastname if lastname is not None else user.lastname
        user.username = username if username is not None else user.username

        try:
            await self.db.commit()
        except IntegrityError as exc:
            await self.db.rollback()
            if is_unique_violation(exc):
                raise UsernameTakenError() from exc
            raise
        logger.info("Updated profile of user %s", user_id)
        return user

    async def update_avatar(self, user_id: str, media: Optional[MediaUpload] = None) -> Optional[str]:
        """Replace (or remove, when `media` is None) the avatar. Returns the new URL."""
        user = await self.db.get(User, user_id)
        if user is None:
            raise UserNotFoundError()

        if user.avatar_id is not None:
            await self.storage.delete_if_possible(user.avatar_id)

        user.avatar_url = user.avatar_media_type = None
        if media is not None:
            user.avatar_url = await self.storage.upload(
                str(uuid.uuid4()), media.content_type, media.data
            )
            user.avatar_media_type = media.content_type
            MEDIA_UPLOADS_TOTAL.labels(kind="avatar").inc()

        await self.db.commit()
        return user.avatar_url

    async def follow(self, user_id: str, followee_id: str) -> None:
        """Idempotent. An unknown followee surfaces as a foreign key violation."""
        try:
            created = await insert_ignore(
                self.db, Follow, follower_id=user_id, followee_id=followee_id
            )
            await self.db.commit()
        except IntegrityError as exc:
            await self.db.rollback()
            if is_foreign_key_violation(exc):
                raise UserNotFoundError() from exc
            raise
        if created:
            logger.info("%s followed %s", user_id, followee_id)

    async def unfollow(self, user_id: str, followee_id: str) -> None:
        """Removing a missing edge is a no-op; an unknown followee is not."""
        if await self.db.get(User, followee_id) is None:
            raise UserNotFoundError()

        await self.db.execute(
            delete(Follow).where(
                Follow.follower_id == user_id,
                Follow.followee_id == followee_id,
            )
        )
        await self.db.commit()

    async def followers(self, user_id: str, offset: int, limit: int) -> tuple[list[User], int]:
        """Users following `user_id`. An unknown id yields an empty page."""
        query = (
            select(User)
            .join(Follow, Follow.follower_id == User.id)
            .where(Follow.followee_id == user_id)
        )
        return await self._page(query, offset, limit)

    async def followees(self, user_id: str, offset: int, limit: int) -> tuple[list[User], int]:
        """Users that `user_id` follows. An unknown id yields an empty page."""
        query = (
            select(User)
            .join(Follow, Follow.followee_id == User.id)
            .where(Follow.follower_id == user_id)
        )
        return await self._page(query, offset, limit)
