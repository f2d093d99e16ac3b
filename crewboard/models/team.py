"""
Team models for Crewboard.

A Team owns its TeamMember, TeamInvitation and TeamWhitelistEntry rows;
deleting the team removes them at the database level.
"""

import uuid
from enum import Enum
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, ForeignKey, Index, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from crewboard.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin

if TYPE_CHECKING:
    from crewboard.models.user import User


class InvitationStatus(str, Enum):
    """Lifecycle of a team invitation."""

    PENDING = "pending"
    ACCEPTED = "accepted"


class Team(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Team led by exactly one user."""

    __tablename__ = "teams"

    name: Mapped[str] = mapped_column(
        String(50),
        unique=True,
        index=True,
        nullable=False,
    )

    # Leader (immutable after creation)
    leader_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )

    # Legacy self-join path
    is_whitelisted: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
        comment="Allow whitelisted usernames to join without an invitation",
    )

    # Relationships
    leader: Mapped["User"] = relationship(
        "User",
        back_populates="led_team",
        foreign_keys=[leader_id],
    )
    members: Mapped[list["TeamMember"]] = relationship(
        "TeamMember",
        back_populates="team",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="TeamMember.created_at",
    )
    invitations: Mapped[list["TeamInvitation"]] = relationship(
        "TeamInvitation",
        back_populates="team",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    whitelist_entries: Mapped[list["TeamWhitelistEntry"]] = relationship(
        "TeamWhitelistEntry",
        back_populates="team",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("ix_teams_created_at_id", "created_at", "id"),
    )

    def __repr__(self) -> str:
        return f"<Team(id={self.id}, name={self.name}, leader_id={self.leader_id})>"


class TeamMember(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Membership of one user in one team."""

    __tablename__ = "team_members"

    team_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("teams.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # One team per user, globally
    user_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )

    team: Mapped["Team"] = relationship("Team", back_populates="members")
    user: Mapped["User"] = relationship("User", back_populates="membership")

    def __repr__(self) -> str:
        return f"<TeamMember(team_id={self.team_id}, user_id={self.user_id})>"


class TeamInvitation(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Offer from a team's leader to a specific user."""

    __tablename__ = "team_invitations"

    team_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("teams.id", ondelete="CASCADE"),
        nullable=False,
    )
    invited_user_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    invited_by_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(
        String(20),
        default=InvitationStatus.PENDING.value,
        nullable=False,
        comment="pending or accepted",
    )

    team: Mapped["Team"] = relationship("Team", back_populates="invitations")
    invited_user: Mapped["User"] = relationship(
        "User",
        foreign_keys=[invited_user_id],
    )

    __table_args__ = (
        UniqueConstraint(
            "team_id",
            "invited_user_id",
            name="uix_team_invitation_team_user",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<TeamInvitation(team_id={self.team_id}, "
            f"invited_user_id={self.invited_user_id}, status={self.status})>"
        )


class TeamWhitelistEntry(UUIDPrimaryKeyMixin, Base):
    """Username allowed to join a whitelisted team without an invitation."""

    __tablename__ = "team_whitelist_entries"

    team_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("teams.id", ondelete="CASCADE"),
        nullable=False,
    )
    username: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    team: Mapped["Team"] = relationship("Team", back_populates="whitelist_entries")

    __table_args__ = (
        UniqueConstraint("team_id", "username", name="uix_team_whitelist_username"),
    )
