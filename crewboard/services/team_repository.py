"""
Team Repository for Crewboard.

Data access for Team, TeamMember, TeamInvitation and whitelist rows. All
multi-row writes of one logical operation run inside ``atomic()`` so they
commit or roll back together.
"""

import logging
import uuid
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager

from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from crewboard.models.base import LIKE_ESCAPE, contains_pattern
from crewboard.models.team import (
    InvitationStatus,
    Team,
    TeamInvitation,
    TeamMember,
    TeamWhitelistEntry,
)

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Base storage error."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class RepositoryNotFound(RepositoryError):
    pass


class UniqueConstraintViolation(RepositoryError):
    pass


class ForeignKeyViolation(RepositoryError):
    pass


def translate_integrity_error(exc: IntegrityError) -> RepositoryError:
    """Map a driver-level integrity error onto a repository failure kind."""
    text = str(exc.orig).lower() if exc.orig is not None else str(exc).lower()
    if "foreign key" in text:
        return ForeignKeyViolation(text)
    if "unique" in text or "duplicate key" in text:
        return UniqueConstraintViolation(text)
    return RepositoryError(text)


class TeamRepository:
    """Storage access for the team aggregate."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # ==================== Transactions ====================

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator[None]:
        """Commit everything done inside the block, or nothing at all."""
        try:
            yield
            await self.session.commit()
        except IntegrityError as exc:
            await self.session.rollback()
            raise translate_integrity_error(exc) from exc
        except Exception:
            await self.session.rollback()
            raise

    # ==================== Teams ====================

    async def get_team(self, team_id: uuid.UUID, for_update: bool = False) -> Team | None:
        query = select(Team).where(Team.id == team_id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_team_detail(self, team_id: uuid.UUID) -> Team | None:
        """Load a team with leader, members and whitelist, bypassing stale state."""
        result = await self.session.execute(
            self._detail_query()
            .where(Team.id == team_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_team_by_name(self, name: str) -> Team | None:
        result = await self.session.execute(select(Team).where(Team.name == name))
        return result.scalar_one_or_none()

    async def name_taken(self, name: str, exclude_team_id: uuid.UUID | None = None) -> bool:
        query = select(Team.id).where(Team.name == name)
        if exclude_team_id is not None:
            query = query.where(Team.id != exclude_team_id)
        result = await self.session.execute(query)
        return result.first() is not None

    async def get_led_team(self, user_id: str) -> Team | None:
        result = await self.session.execute(select(Team).where(Team.leader_id == user_id))
        return result.scalar_one_or_none()

    async def add_team(self, team: Team) -> Team:
        self.session.add(team)
        await self.session.flush()
        return team

    async def delete_team(self, team: Team) -> None:
        # Members, invitations and whitelist rows go with it (ON DELETE CASCADE)
        await self.session.delete(team)
        await self.session.flush()

    async def list_teams(
        self,
        cursor: uuid.UUID | None,
        limit: int,
    ) -> tuple[list[Team], uuid.UUID | None]:
        """
        Page through teams, newest first.

        Args:
            cursor: Id of the first team of the requested page
            limit: Page size

        Returns:
            Tuple of (teams, id of the first team of the next page or None)

        Raises:
            RepositoryNotFound: If the cursor does not name an existing team
        """
        query = self._detail_query()

        if cursor is not None:
            anchor = await self.session.execute(
                select(Team.created_at, Team.id).where(Team.id == cursor)
            )
            row = anchor.first()
            if row is None:
                raise RepositoryNotFound("Unknown cursor")
            anchor_created_at, anchor_id = row
            query = query.where(
                or_(
                    Team.created_at < anchor_created_at,
                    and_(Team.created_at == anchor_created_at, Team.id <= anchor_id),
                )
            )

        # One extra row tells us whether there is a next page
        query = query.order_by(Team.created_at.desc(), Team.id.desc()).limit(limit + 1)
        result = await self.session.execute(query)
        teams = list(result.scalars().all())

        next_cursor = None
        if len(teams) > limit:
            next_cursor = teams.pop().id
        return teams, next_cursor

    async def search_teams(self, query: str, limit: int) -> list[Team]:
        pattern = contains_pattern(query)
        result = await self.session.execute(
            self._detail_query()
            .where(func.lower(Team.name).like(pattern, escape=LIKE_ESCAPE))
            .order_by(Team.name.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    def _detail_query(self):
        return select(Team).options(
            selectinload(Team.leader),
            selectinload(Team.members).selectinload(TeamMember.user),
            selectinload(Team.whitelist_entries),
        )

    # ==================== Members ====================

    async def count_members(self, team_id: uuid.UUID) -> int:
        result = await self.session.execute(
            select(func.count(TeamMember.id)).where(TeamMember.team_id == team_id)
        )
        return result.scalar() or 0

    async def member_user_ids(self, team_id: uuid.UUID) -> set[str]:
        result = await self.session.execute(
            select(TeamMember.user_id).where(TeamMember.team_id == team_id)
        )
        return {row[0] for row in result.all()}

    async def get_membership_by_user(self, user_id: str) -> TeamMember | None:
        result = await self.session.execute(
            select(TeamMember).where(TeamMember.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def add_member(self, team_id: uuid.UUID, user_id: str) -> TeamMember:
        member = TeamMember(team_id=team_id, user_id=user_id)
        self.session.add(member)
        await self.session.flush()
        return member

    # ==================== Invitations ====================

    async def get_invitation(self, team_id: uuid.UUID, user_id: str) -> TeamInvitation | None:
        result = await self.session.execute(
            select(TeamInvitation)
            .where(TeamInvitation.team_id == team_id)
            .where(TeamInvitation.invited_user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def pending_invitations_for_team(self, team_id: uuid.UUID) -> list[TeamInvitation]:
        result = await self.session.execute(
            select(TeamInvitation)
            .options(selectinload(TeamInvitation.invited_user))
            .where(TeamInvitation.team_id == team_id)
            .where(TeamInvitation.status == InvitationStatus.PENDING.value)
            .order_by(TeamInvitation.created_at.asc())
        )
        return list(result.scalars().all())

    async def pending_invitations_for_user(self, user_id: str) -> list[TeamInvitation]:
        result = await self.session.execute(
            select(TeamInvitation)
            .options(selectinload(TeamInvitation.team).selectinload(Team.leader))
            .where(TeamInvitation.invited_user_id == user_id)
            .where(TeamInvitation.status == InvitationStatus.PENDING.value)
            .order_by(TeamInvitation.created_at.desc())
        )
        return list(result.scalars().all())

    async def add_invitation(
        self,
        team_id: uuid.UUID,
        user_id: str,
        invited_by_id: str,
    ) -> bool:
        """
        Create a pending invitation unless one already exists for the pair.

        Runs in a SAVEPOINT so a concurrent duplicate only skips this row
        instead of aborting the surrounding transaction.

        Returns:
            True if a row was created, False if it was skipped
        """
        if await self.get_invitation(team_id, user_id) is not None:
            return False

        # Write out the caller's pending changes first; only the SAVEPOINT
        # insert below may be treated as a duplicate
        await self.session.flush()
        try:
            async with self.session.begin_nested():
                self.session.add(
                    TeamInvitation(
                        team_id=team_id,
                        invited_user_id=user_id,
                        invited_by_id=invited_by_id,
                        status=InvitationStatus.PENDING.value,
                    )
                )
        except IntegrityError as exc:
            error = translate_integrity_error(exc)
            if not isinstance(error, UniqueConstraintViolation):
                raise error from exc
            logger.info(f"Skipping duplicate invitation for user {user_id} on team {team_id}")
            return False
        return True

    async def delete_invitations(self, invitation_ids: Iterable[uuid.UUID]) -> int:
        ids = list(invitation_ids)
        if not ids:
            return 0
        result = await self.session.execute(
            delete(TeamInvitation).where(TeamInvitation.id.in_(ids))
        )
        return result.rowcount or 0

    # ==================== Whitelist ====================

    async def whitelist_usernames(self, team_id: uuid.UUID) -> set[str]:
        result = await self.session.execute(
            select(TeamWhitelistEntry.username).where(TeamWhitelistEntry.team_id == team_id)
        )
        return {row[0] for row in result.all()}

    async def replace_whitelist(self, team_id: uuid.UUID, usernames: Iterable[str]) -> None:
        await self.session.execute(
            delete(TeamWhitelistEntry).where(TeamWhitelistEntry.team_id == team_id)
        )
        for username in sorted(set(usernames)):
            self.session.add(TeamWhitelistEntry(team_id=team_id, username=username))
        await self.session.flush()
