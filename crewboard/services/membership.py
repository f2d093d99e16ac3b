"""
Membership Enforcer for Crewboard.

Owns every legal membership/invitation transition:

    [none]   --leader creates team-->        MEMBER (leader)
    [none]   --leader sends invitation-->    INVITED (pending)
    INVITED  --invited user joins-->         MEMBER, invitation ACCEPTED
    INVITED  --leader drops from roster-->   [none] (invitation deleted)
    MEMBER   --team deleted-->               [none] (cascade)

Capacity, leadership and the one-team-per-user rule are checked here and
nowhere else.
"""

import logging
import uuid
from collections.abc import Collection

from fastapi import status

from crewboard.core.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
)
from crewboard.models.team import InvitationStatus, Team, TeamInvitation, TeamMember
from crewboard.services.team_repository import TeamRepository

logger = logging.getLogger(__name__)

MAX_TEAM_MEMBERS = 6

# Legal invitation status transitions
INVITATION_TRANSITIONS: dict[InvitationStatus, frozenset[InvitationStatus]] = {
    InvitationStatus.PENDING: frozenset({InvitationStatus.ACCEPTED}),
    InvitationStatus.ACCEPTED: frozenset(),
}


def transition_invitation(invitation: TeamInvitation, target: InvitationStatus) -> None:
    """Move an invitation to ``target`` if the transition is legal."""
    current = InvitationStatus(invitation.status)
    if target not in INVITATION_TRANSITIONS[current]:
        raise ConflictError(
            f"Invitation cannot move from {current.value} to {target.value}"
        )
    invitation.status = target.value


def accept_invitation(invitation: TeamInvitation) -> None:
    transition_invitation(invitation, InvitationStatus.ACCEPTED)


# ============== Eligibility predicates ==============


def has_pending_invitation(invitation: TeamInvitation | None) -> bool:
    return invitation is not None and invitation.status == InvitationStatus.PENDING.value


def is_whitelisted(team: Team, username: str, whitelist: Collection[str]) -> bool:
    """Legacy self-join path: whitelisted team and the caller is on its list."""
    return bool(team.is_whitelisted) and username in whitelist


class MembershipEnforcer:
    """Validates and applies membership state changes."""

    def __init__(self, repository: TeamRepository):
        self.repository = repository

    def ensure_leader(self, team: Team, user_id: str) -> None:
        if team.leader_id != user_id:
            raise ForbiddenError("Only the team leader can modify this team")

    async def ensure_free_agent(self, user_id: str) -> None:
        """Reject users who already lead or belong to a team."""
        if await self.repository.get_membership_by_user(user_id) is not None:
            raise ConflictError("User is already part of a team")
        if await self.repository.get_led_team(user_id) is not None:
            raise ConflictError("User is already part of a team")

    async def seed_leader(self, team: Team) -> TeamMember:
        """The leader is always the team's first member."""
        return await self.repository.add_member(team.id, team.leader_id)

    async def join(self, team_id: uuid.UUID, user_id: str, username: str | None) -> TeamMember:
        """
        Add a user to a team through an invitation or the whitelist.

        Preconditions are checked in order and the first failure wins. Must
        run inside the caller's ``atomic()`` block.

        Args:
            team_id: Team to join
            user_id: Joining user
            username: Joining user's username (needed for the whitelist path)

        Returns:
            The new TeamMember row

        Raises:
            UnauthorizedError: Caller has no username
            ConflictError: Already on a team, or the team is full
            NotFoundError: Team does not exist
            ForbiddenError: Neither invited nor whitelisted
        """
        if not username:
            raise UnauthorizedError("Unauthorized")

        existing = await self.repository.get_membership_by_user(user_id)
        if existing is not None:
            if existing.team_id == team_id:
                raise ConflictError("User already in this team", status.HTTP_400_BAD_REQUEST)
            raise ConflictError("User already in another team", status.HTTP_400_BAD_REQUEST)

        # Lock the team row so concurrent joins count members one at a time
        team = await self.repository.get_team(team_id, for_update=True)
        if team is None:
            raise NotFoundError("Team not found")

        member_count = await self.repository.count_members(team_id)
        if member_count >= MAX_TEAM_MEMBERS:
            raise ConflictError(
                f"Team is full (max {MAX_TEAM_MEMBERS} members)",
                status.HTTP_400_BAD_REQUEST,
            )

        invitation = await self.repository.get_invitation(team_id, user_id)
        invited = has_pending_invitation(invitation)
        whitelisted = False
        if not invited:
            whitelist = await self.repository.whitelist_usernames(team_id)
            whitelisted = is_whitelisted(team, username, whitelist)

        if not (invited or whitelisted):
            logger.warning(f"User {user_id} tried to join team {team_id} without an invitation")
            raise ForbiddenError("You need an invitation to join this team")

        member = await self.repository.add_member(team_id, user_id)
        if invited:
            accept_invitation(invitation)

        logger.info(
            f"User {user_id} joined team {team_id} via "
            f"{'invitation' if invited else 'whitelist'}"
        )
        return member
