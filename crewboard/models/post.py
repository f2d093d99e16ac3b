"""
Post models for Crewboard: posts, comments, reposts, likes and bookmarks.

A comment is a Post with ``parent_post_id`` set; a repost is a Post with
``re_post_id`` set. Deleting a post removes its comments, reposts, likes and
bookmarks at the database level.
"""

from typing import TYPE_CHECKING

from sqlalchemy import Boolean, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from crewboard.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin

if TYPE_CHECKING:
    from crewboard.models.user import User

MAX_POST_LENGTH = 140


class Post(TimestampMixin, Base):
    """Short post, comment or repost."""

    __tablename__ = "posts"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )
    user_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Content
    desc: Mapped[str | None] = mapped_column(
        String(MAX_POST_LENGTH),
        nullable=True,
    )
    img: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
        comment="Image path on the media CDN",
    )
    img_height: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )
    video: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
        comment="Video path on the media CDN",
    )
    is_sensitive: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )

    # Threading
    re_post_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("posts.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    parent_post_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("posts.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )

    # Relationships
    user: Mapped["User"] = relationship("User")
    re_post: Mapped["Post | None"] = relationship(
        "Post",
        remote_side="Post.id",
        foreign_keys=[re_post_id],
    )

    __table_args__ = (
        # One repost per user per post
        UniqueConstraint("user_id", "re_post_id", name="uix_post_user_repost"),
    )

    def __repr__(self) -> str:
        return f"<Post(id={self.id}, user_id={self.user_id})>"


class Like(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "likes"

    user_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    post_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("posts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    __table_args__ = (
        UniqueConstraint("user_id", "post_id", name="uix_like_pair"),
    )


class SavedPost(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A user's bookmark on a post."""

    __tablename__ = "saved_posts"

    user_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    post_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("posts.id", ondelete="CASCADE"),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("user_id", "post_id", name="uix_saved_post_pair"),
    )
