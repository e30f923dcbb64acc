"""
SQLAlchemy ORM models.

Tables:
  users   — profiles, keyed by the identity provider's subject id
  posts   — posts and replies (parent_id set), soft-deleted via deleted_at
  likes   — user × post engagement, one row per pair
  follows — social graph edges (follower → followee)

Cascades are declared on the foreign keys (ON DELETE CASCADE) and are only
triggered by a physical delete of the parent row. Posts are never physically
deleted through the API, so their likes and replies stay in place.
"""
import enum
from datetime import datetime
from typing import Optional

import ulid
from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from murmur.database import Base


def new_post_id() -> str:
    return ulid.new().str


def object_name(url: Optional[str]) -> Optional[str]:
    """Storage object name of a public media URL (its last path segment)."""
    if not url:
        return None
    return url.rstrip("/").rsplit("/", 1)[-1]


class PostState(str, enum.Enum):
    ACTIVE = "Active"
    DELETED = "Deleted"


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    username: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    firstname: Mapped[str] = mapped_column(String(255), nullable=False)
    lastname: Mapped[str] = mapped_column(String(255), nullable=False)
    avatar_url: Mapped[Optional[str]] = mapped_column(Text)
    avatar_media_type: Mapped[Optional[str]] = mapped_column(String(255))

    __table_args__ = (
        CheckConstraint("username <> ''", name="chk_username_not_empty"),
        CheckConstraint("firstname <> ''", name="chk_firstname_not_empty"),
        CheckConstraint("lastname <> ''", name="chk_lastname_not_empty"),
        CheckConstraint(
            "(avatar_url is null and avatar_media_type is null) "
            "or (avatar_url is not null and avatar_media_type is not null)",
            name="chk_avatar_type",
        ),
    )

    @property
    def avatar_id(self) -> Optional[str]:
        return object_name(self.avatar_url)

    @property
    def display_name(self) -> str:
        return f"{self.firstname} {self.lastname}".strip()


class Post(Base):
    __tablename__ = "posts"

    # ULID: lexicographic order equals creation order
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=new_post_id)
    creator_id: Mapped[str] = mapped_column(
        String(255), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    text: Mapped[Optional[str]] = mapped_column(Text)
    media_url: Mapped[Optional[str]] = mapped_column(Text)
    media_type: Mapped[Optional[str]] = mapped_column(String(255))
    parent_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("posts.id", ondelete="CASCADE")
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    creator = relationship("User", lazy="joined", passive_deletes=True)

    __table_args__ = (
        CheckConstraint(
            "(media_url is null and media_type is null) "
            "or (media_url is not null and media_type is not null)",
            name="chk_media_data",
        ),
        CheckConstraint(
            "(media_url is not null and media_type is not null) or text is not null",
            name="chk_post_content",
        ),
        Index("idx_posts_creator", "creator_id"),
        Index("idx_posts_parent", "parent_id"),
    )

    @property
    def media_id(self) -> Optional[str]:
        return object_name(self.media_url)

    @property
    def state(self) -> PostState:
        return PostState.DELETED if self.deleted_at is not None else PostState.ACTIVE

    @property
    def is_reply(self) -> bool:
        return self.parent_id is not None

    def clear_media(self) -> None:
        self.media_url = self.media_type = None


def not_deleted(model=Post):
    """Filter clause shared by every read: soft-deleted rows are invisible."""
    return model.deleted_at.is_(None)


class Like(Base):
    __tablename__ = "likes"

    post_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("posts.id", ondelete="CASCADE"), primary_key=True
    )
    user_id: Mapped[str] = mapped_column(
        String(255), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )

    __table_args__ = (Index("idx_likes_user", "user_id"),)


class Follow(Base):
    __tablename__ = "follows"

    follower_id: Mapped[str] = mapped_column(
        String(255), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    followee_id: Mapped[str] = mapped_column(
        String(255), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )

    __table_args__ = (
        # "who follows user X?"
        Index("idx_follows_followee", "followee_id"),
    )
