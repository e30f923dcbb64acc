"""
Post service: business rules for posts, replies and likes.

Every operation works on one request-scoped session and commits before it
returns, so callers may broadcast events knowing the write is durable.

Invariants enforced here (and mirrored by check constraints in the schema):
  • a post always has text or media
  • replies are one level deep: a reply cannot have replies
  • only the creator may change or delete a post
  • soft-deleted posts are invisible to every read
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Select, delete, func, literal, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from murmur.clients.storage_client import MediaUpload, ObjectStorage
from murmur.database import insert_ignore
from murmur.errors import (
    PostInvalidError,
    PostIsAReplyError,
    PostNotFoundError,
    ensure_owner,
)
from murmur.models import Like, Post, PostState, not_deleted
from murmur.telemetry import MEDIA_UPLOADS_TOTAL

logger = logging.getLogger(__name__)

MAX_LIMIT = 1000


def clamp_limit(limit: int) -> int:
    return max(0, min(limit, MAX_LIMIT))


@dataclass
class PostRecord:
    """A post plus the aggregates computed for one viewer."""
    post: Post
    likes: int = 0
    replies: int = 0
    liked_by_viewer: bool = False


@dataclass
class PostSearch:
    offset: int = 0
    limit: int = 100
    newer_than: Optional[str] = None
    older_than: Optional[str] = None
    text: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    creators: list[str] = field(default_factory=list)
    liked_by: list[str] = field(default_factory=list)


def _record_query(viewer_id: Optional[str]) -> Select:
    """SELECT post, like count, reply count, liked-by-viewer flag."""
    likes = (
        select(func.count())
        .select_from(Like)
        .where(Like.post_id == Post.id)
        .correlate(Post)
        .scalar_subquery()
    )
    reply = aliased(Post)
    replies = (
        select(func.count())
        .select_from(reply)
        .where(reply.parent_id == Post.id, not_deleted(reply))
        .correlate(Post)
        .scalar_subquery()
    )
    if viewer_id is None:
        liked = literal(False)
    else:
        liked = (
            select(Like.post_id)
            .where(Like.post_id == Post.id, Like.user_id == viewer_id)
            .correlate(Post)
            .exists()
        )
    return select(Post, likes, replies, liked)


def _to_record(row) -> PostRecord:
    post, likes, replies, liked = row
    return PostRecord(post=post, likes=likes or 0, replies=replies or 0, liked_by_viewer=bool(liked))


def _search_filters(search: PostSearch) -> list:
    filters = [Post.parent_id.is_(None), not_deleted()]
    if search.newer_than is not None:
        filters.append(Post.id > search.newer_than)
    if search.older_than is not None:
        filters.append(Post.id < search.older_than)
    if search.text is not None:
        filters.append(Post.text.icontains(search.text, autoescape=True))
    if search.creators:
        filters.append(Post.creator_id.in_(search.creators))
    if search.tags:
        filters.append(
            or_(*(Post.text.icontains(f"#{tag}", autoescape=True) for tag in search.tags))
        )
    if search.liked_by:
        filters.append(
            Post.id.in_(select(Like.post_id).where(Like.user_id.in_(search.liked_by)))
        )
    return filters


class PostService:
    def __init__(self, db: AsyncSession, storage: ObjectStorage) -> None:
        self.db = db
        self.storage = storage

    # ── Reads ─────────────────────────────────────────────────────────────

    async def _page(
        self, filters: list, offset: int, limit: int, viewer_id: Optional[str]
    ) -> tuple[list[PostRecord], int]:
        count_query = select(func.count()).select_from(Post).where(*filters)
        total = (await self.db.execute(count_query)).scalar_one()

        query = (
            _record_query(viewer_id)
            .where(*filters)
            .order_by(Post.id.desc())
            .offset(offset)
            .limit(clamp_limit(limit))
        )
        rows = (await self.db.execute(query)).all()
        return [_to_record(row) for row in rows], total

    async def search(
        self, search: PostSearch, viewer_id: Optional[str] = None
    ) -> tuple[list[PostRecord], int]:
        """Top-level posts matching the filters, newest first, plus total count."""
        return await self._page(_search_filters(search), search.offset, search.limit, viewer_id)

    async def get_by_id(self, post_id: str, viewer_id: Optional[str] = None) -> PostRecord:
        """A single top-level post; replies are not returned by this lookup."""
        query = _record_query(viewer_id).where(
            Post.id == post_id, Post.parent_id.is_(None), not_deleted()
        )
        row = (await self.db.execute(query)).first()
        if row is None:
            raise PostNotFoundError()
        return _to_record(row)

    async def get_replies(
        self, post_id: str, offset: int, limit: int, viewer_id: Optional[str] = None
    ) -> tuple[list[PostRecord], int]:
        await self._thread_parent(post_id)
        filters = [Post.parent_id == post_id, not_deleted()]
        return await self._page(filters, offset, limit, viewer_id)

    async def _thread_parent(self, post_id: str) -> Post:
        """A post that may have replies: active and top-level."""
        parent = await self.db.get(Post, post_id)
        if parent is None or parent.state is PostState.DELETED:
            raise PostNotFoundError()
        if parent.is_reply:
            raise PostIsAReplyError()
        return parent

    async def _record(self, post_id: str, viewer_id: Optional[str]) -> PostRecord:
        query = (
            _record_query(viewer_id)
            .where(Post.id == post_id)
            .execution_options(populate_existing=True)
        )
        return _to_record((await self.db.execute(query)).one())

    async def _active_post(self, post_id: str) -> Post:
        query = select(Post).where(Post.id == post_id, not_deleted())
        post = (await self.db.execute(query)).scalar_one_or_none()
        if post is None:
            raise PostNotFoundError()
        return post

    async def _owned_post(self, user_id: str, post_id: str) -> Post:
        post = await self._active_post(post_id)
        ensure_owner(user_id, post.creator_id)
        return post

    # ── Media ─────────────────────────────────────────────────────────────

    async def _attach_media(self, post: Post, media: Optional[MediaUpload]) -> None:
        """Delete the current media object (if any), then upload the new one."""
        if post.media_id is not None:
            await self.storage.delete_if_possible(post.media_id)
        post.clear_media()
        if media is not None:
            post.media_url = await self.storage.upload(
                str(uuid.uuid4()), media.content_type, media.data
            )
            post.media_type = media.content_type
            MEDIA_UPLOADS_TOTAL.labels(kind="post").inc()

    # ── Writes ────────────────────────────────────────────────────────────

    async def create(
        self,
        user_id: str,
        parent_id: Optional[str] = None,
        text: Optional[str] = None,
        media: Optional[MediaUpload] = None,
    ) -> PostRecord:
        if text is None and media is None:
            raise PostInvalidError()

        if parent_id is not None:
            await self._thread_parent(parent_id)

        post = Post(creator_id=user_id, parent_id=parent_id, text=text)
        if media is not None:
            await self._attach_media(post, media)

        self.db.add(post)
        await self.db.commit()
        logger.info("Post created: %s by user %s (parent=%s)", post.id, user_id, parent_id)
        return await self._record(post.id, user_id)

    async def replace(
        self,
        user_id: str,
        post_id: str,
        text: Optional[str] = None,
        media: Optional[MediaUpload] = None,
    ) -> PostRecord:
        """Replace text and media; old media is removed even if none is given."""
        if text is None and media is None:
            raise PostInvalidError()

        post = await self._owned_post(user_id, post_id)
        post.text = text
        await self._attach_media(post, media)

        await self.db.commit()
        logger.info("Post replaced: %s", post_id)
        return await self._record(post_id, user_id)

    async def patch_text(self, user_id: str, post_id: str, text: str) -> PostRecord:
        """Update only the text. Empty or blank text removes it."""
        post = await self._owned_post(user_id, post_id)

        new_text = text if text and text.strip() else None
        if new_text is None and post.media_url is None:
            raise PostInvalidError()
        post.text = new_text

        await self.db.commit()
        logger.info("Post text updated: %s", post_id)
        return await self._record(post_id, user_id)

    async def replace_media(
        self, user_id: str, post_id: str, media: Optional[MediaUpload] = None
    ) -> PostRecord:
        """Replace the media, or remove it when `media` is None."""
        post = await self._owned_post(user_id, post_id)
        if post.text is None and media is None:
            raise PostInvalidError()

        await self._attach_media(post, media)

        await self.db.commit()
        logger.info("Post media %s: %s", "replaced" if media else "removed", post_id)
        return await self._record(post_id, user_id)

    async def delete(self, user_id: str, post_id: str) -> None:
        """Soft delete. Likes and replies stay in place but become unreachable."""
        post = await self._owned_post(user_id, post_id)
        post.deleted_at = datetime.now(timezone.utc)
        await self.db.commit()
        logger.info("Post deleted: %s", post_id)

    async def like(self, user_id: str, post_id: str) -> bool:
        """Idempotent. Returns True only when a new like was stored."""
        await self._active_post(post_id)
        changed = await insert_ignore(self.db, Like, post_id=post_id, user_id=user_id)
        await self.db.commit()
        return changed

    async def unlike(self, user_id: str, post_id: str) -> bool:
        """Idempotent. Returns True only when an existing like was removed."""
        await self._active_post(post_id)
        result = await self.db.execute(
            delete(Like).where(Like.post_id == post_id, Like.user_id == user_id)
        )
        await self.db.commit()
        return result.rowcount > 0
