"""
Team Service Tests for Crewboard.

Tests for:
- Team creation and validation
- Leader-only edits and deletion
- Listing, search and "my team"
"""

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select, update

from crewboard.core.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationFailedError,
)
from crewboard.models.team import InvitationStatus, Team, TeamInvitation, TeamMember
from crewboard.services.team_repository import TeamRepository
from crewboard.services.team_service import TeamService, serialize_team


async def _count(session, model, team_id) -> int:
    result = await session.execute(select(func.count(model.id)).where(model.team_id == team_id))
    return result.scalar()


# ============== Creation Tests ==============

class TestCreateTeam:
    """Tests for team creation."""

    @pytest.mark.asyncio
    async def test_leader_is_first_member(self, session, make_user):
        await make_user("alice")

        team, _ = await TeamService(session).create_team("user_alice", "  Falcons  ")
        data = serialize_team(team)

        assert data["name"] == "Falcons"
        assert data["leader_id"] == "user_alice"
        assert data["member_count"] == 1
        assert data["members"][0]["username"] == "alice"
        assert data["max_members"] == 6
        assert data["is_whitelisted"] is False

        found = await TeamRepository(session).get_team_by_name("Falcons")
        assert found.id == team.id

    @pytest.mark.parametrize("name", ["", "ab", "   ab   ", "x" * 51])
    @pytest.mark.asyncio
    async def test_name_length_is_validated(self, session, make_user, name):
        await make_user("alice")

        with pytest.raises(ValidationFailedError):
            await TeamService(session).create_team("user_alice", name)

    @pytest.mark.asyncio
    async def test_too_many_invitees(self, session, make_user):
        await make_user("alice")

        with pytest.raises(ValidationFailedError) as exc_info:
            await TeamService(session).create_team(
                "user_alice", "Falcons", ["a", "b", "c", "d", "e", "f"]
            )

        assert exc_info.value.message == "You can invite up to 5 users"

    @pytest.mark.asyncio
    async def test_blank_invitee_is_rejected(self, session, make_user):
        await make_user("alice")

        with pytest.raises(ValidationFailedError):
            await TeamService(session).create_team("user_alice", "Falcons", ["bob", "  "])

    @pytest.mark.asyncio
    async def test_duplicate_name_conflicts(self, session, make_user):
        await make_user("alice")
        await make_user("bob")

        service = TeamService(session)
        await service.create_team("user_alice", "Falcons")

        with pytest.raises(ConflictError) as exc_info:
            await service.create_team("user_bob", "Falcons")

        assert exc_info.value.message == "Team name already taken"

    @pytest.mark.asyncio
    async def test_user_on_a_team_cannot_create_another(self, session, make_user):
        await make_user("alice")

        service = TeamService(session)
        await service.create_team("user_alice", "Falcons")

        with pytest.raises(ConflictError) as exc_info:
            await service.create_team("user_alice", "Hawks")

        assert exc_info.value.message == "User is already part of a team"

    @pytest.mark.asyncio
    async def test_taken_name_reported_before_membership(self, session, make_user):
        """A leader reusing their own team's name hears about the name first."""
        await make_user("alice")

        service = TeamService(session)
        await service.create_team("user_alice", "Falcons")

        with pytest.raises(ConflictError) as exc_info:
            await service.create_team("user_alice", "Falcons")

        assert exc_info.value.message == "Team name already taken"


# ============== Edit & Delete Tests ==============

class TestEditTeam:
    @pytest.mark.asyncio
    async def test_non_leader_cannot_edit(self, session, make_user):
        await make_user("alice")
        await make_user("bob")

        service = TeamService(session)
        team, _ = await service.create_team("user_alice", "Falcons")
        team_id = team.id

        with pytest.raises(ForbiddenError):
            await service.edit_team("user_bob", team_id, "Hijacked")

        reloaded = await service.get_team(team_id)
        assert reloaded.name == "Falcons"

    @pytest.mark.asyncio
    async def test_rename_to_taken_name_conflicts(self, session, make_user):
        await make_user("alice")
        await make_user("bob")

        service = TeamService(session)
        await service.create_team("user_alice", "Falcons")
        hawks, _ = await service.create_team("user_bob", "Hawks")
        hawks_id = hawks.id

        with pytest.raises(ConflictError):
            await service.edit_team("user_bob", hawks_id, "Falcons")

    @pytest.mark.asyncio
    async def test_lost_rename_race_keeps_invitations(self, session, make_user, monkeypatch):
        """A rename that only fails at the unique index rolls back the whole edit."""
        for username in ("alice", "bob", "carol", "dave"):
            await make_user(username)

        service = TeamService(session)
        await service.create_team("user_alice", "Falcons")
        hawks, _ = await service.create_team("user_bob", "Hawks", ["carol"])
        hawks_id = hawks.id

        pending_query = select(TeamInvitation.id).where(
            TeamInvitation.team_id == hawks_id,
            TeamInvitation.status == InvitationStatus.PENDING.value,
        )
        before = set((await session.execute(pending_query)).scalars().all())
        assert len(before) == 1

        # Another request claims the name between the check and the write
        async def name_free(self, name, exclude_team_id=None):
            return False

        monkeypatch.setattr(TeamRepository, "name_taken", name_free)

        with pytest.raises(ConflictError) as exc_info:
            await service.edit_team("user_bob", hawks_id, "Falcons", invite_usernames=["dave"])

        assert exc_info.value.message == "Team name already taken"

        after = set((await session.execute(pending_query)).scalars().all())
        assert after == before
        reloaded = await service.get_team(hawks_id)
        assert reloaded.name == "Hawks"

    @pytest.mark.asyncio
    async def test_edit_unknown_team(self, session, make_user):
        await make_user("alice")

        with pytest.raises(NotFoundError):
            await TeamService(session).edit_team("user_alice", uuid.uuid4(), "Falcons")

    @pytest.mark.asyncio
    async def test_whitelist_replaced_by_leader(self, session, make_user):
        await make_user("alice")

        service = TeamService(session)
        team, _ = await service.create_team("user_alice", "Falcons")
        team_id = team.id

        await service.update_whitelist("user_alice", team_id, ["bob", "carol", "bob"])
        updated = await service.update_whitelist("user_alice", team_id, ["dave", "carol"])

        assert serialize_team(updated)["whitelist"] == ["carol", "dave"]

    @pytest.mark.asyncio
    async def test_non_leader_cannot_edit_whitelist(self, session, make_user):
        await make_user("alice")
        await make_user("bob")

        service = TeamService(session)
        team, _ = await service.create_team("user_alice", "Falcons")

        with pytest.raises(ForbiddenError):
            await service.update_whitelist("user_bob", team.id, ["bob"])


class TestDeleteTeam:
    @pytest.mark.asyncio
    async def test_non_leader_delete_is_forbidden(self, session, make_user):
        """A rejected delete leaves the team, its members and invitations in place."""
        for username in ("alice", "bob", "carol"):
            await make_user(username)

        service = TeamService(session)
        team, _ = await service.create_team("user_alice", "Falcons", ["bob", "carol"])
        team_id = team.id
        await service.join_team("user_bob", "bob", team_id)

        with pytest.raises(ForbiddenError):
            await service.delete_team("user_bob", team_id)

        assert (await service.get_team(team_id)).name == "Falcons"
        assert await _count(session, TeamMember, team_id) == 2
        assert await _count(session, TeamInvitation, team_id) == 2

    @pytest.mark.asyncio
    async def test_leader_delete_cascades(self, session, make_user):
        for username in ("alice", "bob", "carol"):
            await make_user(username)

        service = TeamService(session)
        team, _ = await service.create_team("user_alice", "Falcons", ["bob", "carol"])
        team_id = team.id
        await service.join_team("user_bob", "bob", team_id)

        await service.delete_team("user_alice", team_id)

        with pytest.raises(NotFoundError):
            await service.get_team(team_id)
        assert await _count(session, TeamMember, team_id) == 0
        assert await _count(session, TeamInvitation, team_id) == 0

        # Both users are free agents again
        hawks, _ = await service.create_team("user_bob", "Hawks")
        assert hawks.leader_id == "user_bob"

    @pytest.mark.asyncio
    async def test_delete_unknown_team(self, session, make_user):
        await make_user("alice")

        with pytest.raises(NotFoundError):
            await TeamService(session).delete_team("user_alice", uuid.uuid4())


# ============== Query Tests ==============

class TestListAndSearch:
    @pytest.mark.asyncio
    async def test_pagination_walks_newest_first(self, session, make_user):
        service = TeamService(session)
        names = []
        base = datetime(2026, 1, 1, tzinfo=timezone.utc)
        for i in range(5):
            await make_user(f"leader{i}")
            team, _ = await service.create_team(f"user_leader{i}", f"Team {i}")
            await session.execute(
                update(Team).where(Team.id == team.id).values(created_at=base + timedelta(minutes=i))
            )
            await session.commit()
            names.append(f"Team {i}")

        first_page, cursor = await service.list_teams(limit=2)
        second_page, cursor2 = await service.list_teams(cursor=cursor, limit=2)
        third_page, cursor3 = await service.list_teams(cursor=cursor2, limit=2)

        seen = [team.name for team in first_page + second_page + third_page]
        assert seen == list(reversed(names))
        assert cursor is not None and cursor2 is not None
        assert cursor3 is None

    @pytest.mark.parametrize("limit", [0, -1, 51])
    @pytest.mark.asyncio
    async def test_invalid_limit(self, session, limit):
        with pytest.raises(ValidationFailedError) as exc_info:
            await TeamService(session).list_teams(limit=limit)

        assert exc_info.value.message == "Invalid limit parameter"

    @pytest.mark.parametrize("cursor", ["not-a-uuid", str(uuid.uuid4())])
    @pytest.mark.asyncio
    async def test_invalid_cursor(self, session, cursor):
        with pytest.raises(ValidationFailedError) as exc_info:
            await TeamService(session).list_teams(cursor=cursor)

        assert exc_info.value.message == "Invalid cursor"

    @pytest.mark.asyncio
    async def test_search_is_case_insensitive_substring(self, session, make_user):
        service = TeamService(session)
        for username, name in (("alice", "Falcons"), ("bob", "Hawks"), ("carol", "Night Falcon")):
            await make_user(username)
            await service.create_team(f"user_{username}", name)

        teams = await service.search_teams("falc")

        assert [team.name for team in teams] == ["Falcons", "Night Falcon"]

    @pytest.mark.asyncio
    async def test_search_treats_wildcards_literally(self, session, make_user):
        await make_user("alice")
        await TeamService(session).create_team("user_alice", "Falcons")

        assert await TeamService(session).search_teams("%") == []

    @pytest.mark.asyncio
    async def test_search_requires_query(self, session):
        with pytest.raises(ValidationFailedError):
            await TeamService(session).search_teams("   ")


class TestMyTeam:
    @pytest.mark.asyncio
    async def test_leader_sees_own_team(self, session, make_user):
        await make_user("alice")
        await TeamService(session).create_team("user_alice", "Falcons")

        data = await TeamService(session).get_my_team("user_alice")

        assert data["team"]["name"] == "Falcons"
        assert data["is_leader"] is True
        assert data["pending_invitations"] == []

    @pytest.mark.asyncio
    async def test_invitee_sees_pending_invitations(self, session, make_user):
        await make_user("alice")
        await make_user("bob")
        await TeamService(session).create_team("user_alice", "Falcons", ["bob"])

        data = await TeamService(session).get_my_team("user_bob")

        assert data["team"] is None
        assert data["is_leader"] is False
        [invitation] = data["pending_invitations"]
        assert invitation["team_name"] == "Falcons"
        assert invitation["invited_by"]["username"] == "alice"
        assert invitation["status"] == "pending"
