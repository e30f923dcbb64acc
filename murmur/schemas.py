"""
Pydantic request / response schemas for the API layer.
Kept separate from ORM models to avoid coupling transport to storage.

All payloads are camelCase on the wire. Response shape depends on the
viewer: projections take the viewer id explicitly and never look it up
from ambient request state.
"""
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from murmur.models import User as UserEntity

T = TypeVar("T")


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


# ──────────────────────────── Users ───────────────────────────────────────

class PublicUser(CamelModel):
    """Publicly available user information."""
    id: str
    username: str
    avatar_url: Optional[str] = None


class User(PublicUser):
    """Full profile, only returned to authenticated callers."""
    firstname: str
    lastname: str
    display_name: str


class Creator(PublicUser):
    display_name: Optional[str] = None


class UpdateUserData(CamelModel):
    # Omitted (None) fields are left unchanged; empty strings are rejected
    firstname: Optional[str] = None
    lastname: Optional[str] = None
    username: Optional[str] = None


def user_view(user: UserEntity, authenticated: bool) -> PublicUser:
    if authenticated:
        return User.model_validate(user)
    return PublicUser.model_validate(user)


# ──────────────────────────── Posts ───────────────────────────────────────

class PostBase(CamelModel):
    id: str
    creator: Creator
    text: Optional[str] = None
    media_url: Optional[str] = None
    media_type: Optional[str] = None
    likes: int = 0
    # None for anonymous callers and in broadcast events
    liked_by_self: Optional[bool] = None


class Post(PostBase):
    replies: int = 0

    @classmethod
    def from_record(cls, record, viewer_id: Optional[str] = None) -> "Post":
        return cls(
            **_base_fields(record, viewer_id),
            replies=record.replies,
        )


class Reply(PostBase):
    parent_id: str

    @classmethod
    def from_record(cls, record, viewer_id: Optional[str] = None) -> "Reply":
        return cls(
            **_base_fields(record, viewer_id),
            parent_id=record.post.parent_id,
        )


def _base_fields(record, viewer_id: Optional[str]) -> dict:
    post = record.post
    return {
        "id": post.id,
        "creator": Creator.model_validate(post.creator),
        "text": post.text,
        "media_url": post.media_url,
        "media_type": post.media_type,
        "likes": record.likes,
        "liked_by_self": None if viewer_id is None else record.liked_by_viewer,
    }


class UpdatePostData(CamelModel):
    # None → text untouched; "" → text removed
    text: Optional[str] = None


# ──────────────────────────── Events ──────────────────────────────────────

class PostDeletedEvent(CamelModel):
    id: str


class PostLikeEvent(CamelModel):
    user_id: str
    post_id: str


# ──────────────────────────── Pagination ──────────────────────────────────

class PaginatedResult(CamelModel, Generic[T]):
    """A page of results plus links to the neighbouring pages (or null)."""
    count: int
    data: list[T]
    next: Optional[str] = None
    previous: Optional[str] = None
