"""
Social graph models for Crewboard: follows and reputation votes.
"""

from enum import Enum

from sqlalchemy import ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from crewboard.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class VoteType(str, Enum):
    """Reputation vote direction."""

    UPVOTE = "upvote"
    DOWNVOTE = "downvote"


class Follow(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Directed follow edge between two users."""

    __tablename__ = "follows"

    follower_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    following_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    __table_args__ = (
        UniqueConstraint("follower_id", "following_id", name="uix_follow_pair"),
    )


class ReputationVote(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """One voter's standing vote on another user's reputation."""

    __tablename__ = "reputation_votes"

    voter_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    target_user_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    vote_type: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        comment="upvote or downvote",
    )

    __table_args__ = (
        UniqueConstraint("voter_id", "target_user_id", name="uix_reputation_vote_pair"),
    )
