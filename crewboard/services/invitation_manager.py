"""
Invitation Manager for Crewboard.

Reconciles the invitee roster a leader submits against the team's current
pending invitations. The diff is idempotent and independent of submission
order; applying it never fails the batch on a duplicate.
"""

import logging
import uuid
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field

from crewboard.models.team import Team
from crewboard.services.team_repository import TeamRepository
from crewboard.services.user_service import UserDirectory

logger = logging.getLogger(__name__)

MAX_INVITEES = 5


@dataclass(frozen=True)
class InvitationDiff:
    """Invitations to create (user ids) and to delete (invitation ids)."""

    to_create: list[str] = field(default_factory=list)
    to_delete: list[uuid.UUID] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.to_create and not self.to_delete


@dataclass
class InvitationResult:
    """Outcome of a roster reconciliation, reported back to the leader."""

    created: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    unresolved: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, list[str]]:
        return {
            "created": self.created,
            "deleted": self.deleted,
            "skipped": self.skipped,
            "unresolved_usernames": self.unresolved,
        }


def compute_diff(
    resolved_user_ids: Iterable[str],
    leader_id: str,
    member_ids: Iterable[str],
    pending: Mapping[str, uuid.UUID],
) -> InvitationDiff:
    """
    Compute the minimal invitation diff for a desired invitee set.

    Args:
        resolved_user_ids: User ids the leader wants invited
        leader_id: The team leader, never invited
        member_ids: Users already on the team, never invited
        pending: Current pending invitations, invited user id -> invitation id

    Returns:
        InvitationDiff with sorted, de-duplicated entries
    """
    excluded = set(member_ids) | {leader_id}
    desired = set(resolved_user_ids) - excluded

    to_create = sorted(user_id for user_id in desired if user_id not in pending)
    to_delete = sorted(
        (invitation_id for user_id, invitation_id in pending.items() if user_id not in desired),
        key=str,
    )
    return InvitationDiff(to_create=to_create, to_delete=to_delete)


class InvitationManager:
    """Creates and retracts pending invitations as a team's roster intent changes."""

    def __init__(self, repository: TeamRepository, directory: UserDirectory):
        self.repository = repository
        self.directory = directory

    async def resolve_usernames(
        self,
        usernames: Sequence[str],
    ) -> tuple[dict[str, str], list[str]]:
        """
        Resolve usernames to user ids.

        Returns:
            Tuple of (user id -> username for resolved names, unresolved names)
        """
        resolved: dict[str, str] = {}
        unresolved: list[str] = []
        seen: set[str] = set()

        for raw in usernames:
            username = raw.strip()
            if not username or username in seen:
                continue
            seen.add(username)

            user = await self.directory.find_user_by_username(username)
            if user is None:
                unresolved.append(username)
                continue
            resolved[user.id] = user.username

        return resolved, unresolved

    async def reconcile(self, team: Team, usernames: Sequence[str]) -> InvitationResult:
        """
        Bring the team's pending invitations in line with ``usernames``.

        Must run inside the caller's ``atomic()`` block: nothing is committed
        here, so a later failure rolls the roster back untouched.
        """
        resolved, unresolved = await self.resolve_usernames(usernames)

        pending_invitations = await self.repository.pending_invitations_for_team(team.id)
        pending = {inv.invited_user_id: inv.id for inv in pending_invitations}
        pending_names = {
            inv.id: inv.invited_user.username if inv.invited_user else inv.invited_user_id
            for inv in pending_invitations
        }
        member_ids = await self.repository.member_user_ids(team.id)

        diff = compute_diff(resolved.keys(), team.leader_id, member_ids, pending)
        result = InvitationResult(unresolved=unresolved)

        for user_id in diff.to_create:
            created = await self.repository.add_invitation(team.id, user_id, team.leader_id)
            if created:
                result.created.append(resolved[user_id])
            else:
                result.skipped.append(resolved[user_id])

        await self.repository.delete_invitations(diff.to_delete)
        result.deleted = sorted(pending_names[invitation_id] for invitation_id in diff.to_delete)

        if unresolved:
            logger.info(
                f"Team {team.id}: dropped unresolved invitees {', '.join(unresolved)}"
            )
        if not diff.is_empty:
            logger.info(
                f"Team {team.id}: {len(result.created)} invitations created, "
                f"{len(result.deleted)} retracted"
            )
        return result
