"""
Team Service for Crewboard.

Command handler for the team feature: create, edit, whitelist, join, delete,
list and search. Input shape is validated before storage is touched; every
mutation runs as one atomic unit of work and storage failures are translated
into the application error taxonomy.
"""

import logging
import uuid
from collections.abc import Sequence
from typing import Any

from fastapi import status
from sqlalchemy.ext.asyncio import AsyncSession

from crewboard.core.exceptions import (
    ConflictError,
    InternalFailureError,
    NotFoundError,
    ValidationFailedError,
)
from crewboard.models.team import Team, TeamInvitation, TeamMember
from crewboard.services.invitation_manager import (
    MAX_INVITEES,
    InvitationManager,
    InvitationResult,
)
from crewboard.services.membership import MAX_TEAM_MEMBERS, MembershipEnforcer
from crewboard.services.team_repository import (
    ForeignKeyViolation,
    RepositoryError,
    RepositoryNotFound,
    TeamRepository,
    UniqueConstraintViolation,
)
from crewboard.services.user_service import UserDirectory, user_summary

logger = logging.getLogger(__name__)


def serialize_team(team: Team) -> dict[str, Any]:
    """Convert a team loaded with leader, members and whitelist to a dict."""
    members = [
        {
            **user_summary(member.user),
            "joined_at": member.created_at.isoformat() if member.created_at else None,
        }
        for member in team.members
    ]
    return {
        "id": str(team.id),
        "name": team.name,
        "leader_id": team.leader_id,
        "leader": user_summary(team.leader) if team.leader else None,
        "is_whitelisted": team.is_whitelisted,
        "whitelist": sorted(entry.username for entry in team.whitelist_entries),
        "members": members,
        "member_count": len(members),
        "max_members": MAX_TEAM_MEMBERS,
        "created_at": team.created_at.isoformat() if team.created_at else None,
        "updated_at": team.updated_at.isoformat() if team.updated_at else None,
    }


def serialize_invitation(invitation: TeamInvitation) -> dict[str, Any]:
    team = invitation.team
    return {
        "id": str(invitation.id),
        "team_id": str(invitation.team_id),
        "team_name": team.name if team else None,
        "invited_by": user_summary(team.leader) if team and team.leader else None,
        "status": invitation.status,
        "created_at": invitation.created_at.isoformat() if invitation.created_at else None,
    }


def serialize_membership(member: TeamMember) -> dict[str, Any]:
    return {
        "id": str(member.id),
        "team_id": str(member.team_id),
        "user_id": member.user_id,
        "joined_at": member.created_at.isoformat() if member.created_at else None,
    }


class TeamService:
    """Orchestrates the team workflow."""

    MIN_TEAM_NAME_LENGTH = 3
    MAX_TEAM_NAME_LENGTH = 50
    DEFAULT_PAGE_SIZE = 10
    MAX_PAGE_SIZE = 50
    MAX_SEARCH_RESULTS = 20

    def __init__(self, session: AsyncSession):
        self.session = session
        self.repository = TeamRepository(session)
        self.directory = UserDirectory(session)
        self.invitations = InvitationManager(self.repository, self.directory)
        self.membership = MembershipEnforcer(self.repository)

    # ==================== Validation ====================

    def _validate_name(self, name: str) -> str:
        name = (name or "").strip()
        if len(name) < self.MIN_TEAM_NAME_LENGTH:
            raise ValidationFailedError(
                f"Team name must be at least {self.MIN_TEAM_NAME_LENGTH} characters long"
            )
        if len(name) > self.MAX_TEAM_NAME_LENGTH:
            raise ValidationFailedError(
                f"Team name must be {self.MAX_TEAM_NAME_LENGTH} characters or less"
            )
        return name

    def _validate_usernames(self, usernames: Sequence[str], limit: int | None) -> list[str]:
        if limit is not None and len(usernames) > limit:
            raise ValidationFailedError(f"You can invite up to {limit} users")
        cleaned = []
        for username in usernames:
            username = username.strip()
            if not username:
                raise ValidationFailedError("Username cannot be empty")
            cleaned.append(username)
        return cleaned

    # ==================== Commands ====================

    async def create_team(
        self,
        leader_id: str,
        name: str,
        invite_usernames: Sequence[str] = (),
    ) -> tuple[Team, InvitationResult]:
        """
        Create a team led by ``leader_id`` and invite the given users.

        Returns:
            Tuple of (team with members loaded, invitation report)

        Raises:
            ValidationFailedError: Bad name or invitee list
            ConflictError: Name taken, or the leader is already on a team
        """
        name = self._validate_name(name)
        invite_usernames = self._validate_usernames(invite_usernames, MAX_INVITEES)

        try:
            async with self.repository.atomic():
                if await self.repository.name_taken(name):
                    raise ConflictError("Team name already taken")
                await self.membership.ensure_free_agent(leader_id)

                team = await self.repository.add_team(
                    Team(name=name, leader_id=leader_id, is_whitelisted=False)
                )
                await self.membership.seed_leader(team)
                report = await self.invitations.reconcile(team, invite_usernames)
        except RepositoryError as exc:
            raise self._translate(exc) from exc

        logger.info(f"Team {team.id} ({name}) created by {leader_id}")
        return await self._reload(team.id), report

    async def edit_team(
        self,
        leader_id: str,
        team_id: uuid.UUID,
        name: str,
        invite_usernames: Sequence[str] | None = None,
        is_whitelisted: bool | None = None,
    ) -> tuple[Team, InvitationResult | None]:
        """
        Rename a team, toggle its whitelist flag and/or re-sync its invitees.

        ``invite_usernames=None`` leaves invitations alone; an empty list
        retracts every pending invitation.

        Raises:
            ValidationFailedError: Bad name or invitee list
            NotFoundError: Team does not exist
            ForbiddenError: Caller is not the leader
            ConflictError: Name taken by another team
        """
        name = self._validate_name(name)
        if invite_usernames is not None:
            invite_usernames = self._validate_usernames(invite_usernames, MAX_INVITEES)

        report = None
        try:
            async with self.repository.atomic():
                team = await self._get_team_or_404(team_id)
                self.membership.ensure_leader(team, leader_id)

                if name != team.name and await self.repository.name_taken(name, team.id):
                    raise ConflictError("Team name already taken")

                team.name = name
                if is_whitelisted is not None:
                    team.is_whitelisted = is_whitelisted
                if invite_usernames is not None:
                    report = await self.invitations.reconcile(team, invite_usernames)
        except RepositoryError as exc:
            raise self._translate(exc) from exc

        logger.info(f"Team {team_id} edited by leader {leader_id}")
        return await self._reload(team_id), report

    async def update_whitelist(
        self,
        leader_id: str,
        team_id: uuid.UUID,
        usernames: Sequence[str],
    ) -> Team:
        """Replace the usernames allowed to self-join a whitelisted team."""
        usernames = self._validate_usernames(usernames, None)

        try:
            async with self.repository.atomic():
                team = await self._get_team_or_404(team_id)
                self.membership.ensure_leader(team, leader_id)
                await self.repository.replace_whitelist(team_id, usernames)
        except RepositoryError as exc:
            raise self._translate(exc) from exc

        logger.info(f"Team {team_id} whitelist updated ({len(set(usernames))} entries)")
        return await self._reload(team_id)

    async def join_team(
        self,
        user_id: str,
        username: str | None,
        team_id: uuid.UUID,
    ) -> TeamMember:
        """Join a team through a pending invitation or the whitelist."""
        try:
            async with self.repository.atomic():
                member = await self.membership.join(team_id, user_id, username)
        except UniqueConstraintViolation as exc:
            # Lost a race against another join by the same user
            raise ConflictError(
                "User already in another team", status.HTTP_400_BAD_REQUEST
            ) from exc
        except RepositoryError as exc:
            raise self._translate(exc) from exc
        return member

    async def delete_team(self, leader_id: str, team_id: uuid.UUID) -> None:
        """Delete a team; only its leader may do this."""
        try:
            async with self.repository.atomic():
                team = await self._get_team_or_404(team_id)
                self.membership.ensure_leader(team, leader_id)
                await self.repository.delete_team(team)
        except RepositoryError as exc:
            raise self._translate(exc) from exc

        logger.info(f"Team {team_id} deleted by leader {leader_id}")

    # ==================== Queries ====================

    async def get_team(self, team_id: uuid.UUID) -> Team:
        team = await self.repository.get_team_detail(team_id)
        if team is None:
            raise NotFoundError("Team not found")
        return team

    async def list_teams(
        self,
        cursor: str | None = None,
        limit: int | None = None,
    ) -> tuple[list[Team], str | None]:
        """List teams newest first, ``limit`` per page."""
        limit = self.DEFAULT_PAGE_SIZE if limit is None else limit
        if limit <= 0 or limit > self.MAX_PAGE_SIZE:
            raise ValidationFailedError("Invalid limit parameter")

        cursor_id = None
        if cursor:
            try:
                cursor_id = uuid.UUID(cursor)
            except ValueError as exc:
                raise ValidationFailedError("Invalid cursor") from exc

        try:
            teams, next_cursor = await self.repository.list_teams(cursor_id, limit)
        except RepositoryNotFound as exc:
            raise ValidationFailedError("Invalid cursor") from exc
        return teams, str(next_cursor) if next_cursor else None

    async def search_teams(self, query: str | None) -> list[Team]:
        if not query or not query.strip():
            raise ValidationFailedError('Search query parameter "q" is required')
        return await self.repository.search_teams(query.strip(), self.MAX_SEARCH_RESULTS)

    async def get_my_team(self, user_id: str) -> dict[str, Any]:
        """
        The caller's team (led or joined) and their open invitations.

        Membership is derived on every call rather than cached on the user.
        """
        team = None
        membership = await self.repository.get_membership_by_user(user_id)
        if membership is not None:
            team = await self.repository.get_team_detail(membership.team_id)
        else:
            led = await self.repository.get_led_team(user_id)
            if led is not None:
                team = await self.repository.get_team_detail(led.id)

        invitations = await self.repository.pending_invitations_for_user(user_id)
        return {
            "team": serialize_team(team) if team else None,
            "is_leader": bool(team and team.leader_id == user_id),
            "pending_invitations": [serialize_invitation(inv) for inv in invitations],
        }

    # ==================== Helpers ====================

    async def _get_team_or_404(self, team_id: uuid.UUID) -> Team:
        team = await self.repository.get_team(team_id)
        if team is None:
            raise NotFoundError("Team not found")
        return team

    async def _reload(self, team_id: uuid.UUID) -> Team:
        team = await self.repository.get_team_detail(team_id)
        if team is None:
            raise InternalFailureError("Team vanished after commit")
        return team

    @staticmethod
    def _translate(exc: RepositoryError) -> Exception:
        if isinstance(exc, UniqueConstraintViolation):
            if any(key in exc.message for key in ("teams.name", "ix_teams_name", "(name)")):
                return ConflictError("Team name already taken")
            return ConflictError("User is already part of a team")
        if isinstance(exc, (ForeignKeyViolation, RepositoryNotFound)):
            return NotFoundError("Referenced user or team not found")
        logger.error(f"Unexpected storage failure: {exc.message}")
        return InternalFailureError("Internal Server Error")
