"""
Crewboard Models Package

All SQLAlchemy models for the Crewboard platform.
"""

from crewboard.models.base import Base
from crewboard.models.post import Like, Post, SavedPost
from crewboard.models.social import Follow, ReputationVote, VoteType
from crewboard.models.team import (
    InvitationStatus,
    Team,
    TeamInvitation,
    TeamMember,
    TeamWhitelistEntry,
)
from crewboard.models.user import User

__all__ = [
    # Base
    "Base",
    # Users
    "User",
    # Teams
    "Team",
    "TeamMember",
    "TeamInvitation",
    "TeamWhitelistEntry",
    "InvitationStatus",
    # Social
    "Follow",
    "ReputationVote",
    "VoteType",
    # Posts
    "Post",
    "Like",
    "SavedPost",
]
