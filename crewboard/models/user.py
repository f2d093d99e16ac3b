"""
User model for Crewboard.

Rows are keyed by the identity provider's opaque user id and kept in sync by
the identity webhook.
"""

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from crewboard.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from crewboard.models.team import Team, TeamMember


class User(TimestampMixin, Base):
    """User model representing platform members."""

    __tablename__ = "users"

    # Identity (issued by the identity provider)
    id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
    )
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        index=True,
        nullable=False,
    )
    username: Mapped[str] = mapped_column(
        String(50),
        unique=True,
        index=True,
        nullable=False,
    )

    # Profile
    display_name: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )
    img: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
        comment="Avatar URL on the image CDN",
    )
    bio: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    location: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )
    rank: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
        comment="Free-text in-game rank",
    )
    cover: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
        comment="Cover image URL on the image CDN",
    )

    # Missions & reputation
    points: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )
    reputation: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )
    last_hourly_claim: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    last_daily_claim: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    team_reward_claimed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    daily_reward_claimed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Last daily reputation reward, on a rolling 24 hour cooldown",
    )

    # Relationships
    membership: Mapped["TeamMember | None"] = relationship(
        "TeamMember",
        back_populates="user",
        uselist=False,
        passive_deletes=True,
    )
    led_team: Mapped["Team | None"] = relationship(
        "Team",
        back_populates="leader",
        uselist=False,
        foreign_keys="Team.leader_id",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username={self.username})>"
