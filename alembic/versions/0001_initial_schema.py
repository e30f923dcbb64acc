"""initial schema: users, posts, likes, follows

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19
"""
import sqlalchemy as sa
from alembic import op

revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=255), primary_key=True, nullable=False),
        sa.Column("username", sa.String(length=255), nullable=False),
        sa.Column("firstname", sa.String(length=255), nullable=False),
        sa.Column("lastname", sa.String(length=255), nullable=False),
        sa.Column("avatar_url", sa.Text(), nullable=True),
        sa.Column("avatar_media_type", sa.String(length=255), nullable=True),
        sa.UniqueConstraint("username", name="uq_users_username"),
        sa.CheckConstraint("username <> ''", name="chk_username_not_empty"),
        sa.CheckConstraint("firstname <> ''", name="chk_firstname_not_empty"),
        sa.CheckConstraint("lastname <> ''", name="chk_lastname_not_empty"),
        sa.CheckConstraint(
            "(avatar_url is null and avatar_media_type is null) "
            "or (avatar_url is not null and avatar_media_type is not null)",
            name="chk_avatar_type",
        ),
    )

    op.create_table(
        "posts",
        sa.Column("id", sa.String(length=26), primary_key=True, nullable=False),
        sa.Column(
            "creator_id",
            sa.String(length=255),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("text", sa.Text(), nullable=True),
        sa.Column("media_url", sa.Text(), nullable=True),
        sa.Column("media_type", sa.String(length=255), nullable=True),
        sa.Column(
            "parent_id",
            sa.String(length=26),
            sa.ForeignKey("posts.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "(media_url is null and media_type is null) "
            "or (media_url is not null and media_type is not null)",
            name="chk_media_data",
        ),
        sa.CheckConstraint(
            "(media_url is not null and media_type is not null) or text is not null",
            name="chk_post_content",
        ),
    )
    op.create_index("idx_posts_creator", "posts", ["creator_id"], unique=False)
    op.create_index("idx_posts_parent", "posts", ["parent_id"], unique=False)

    op.create_table(
        "likes",
        sa.Column(
            "post_id",
            sa.String(length=26),
            sa.ForeignKey("posts.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "user_id",
            sa.String(length=255),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            primary_key=True,
        ),
    )
    op.create_index("idx_likes_user", "likes", ["user_id"], unique=False)

    op.create_table(
        "follows",
        sa.Column(
            "follower_id",
            sa.String(length=255),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "followee_id",
            sa.String(length=255),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            primary_key=True,
        ),
    )
    op.create_index("idx_follows_followee", "follows", ["followee_id"], unique=False)


def downgrade() -> None:
    raise NotImplementedError("migrations are forward-only")
