"""
Team API Endpoints for Crewboard.

Create, edit, join, delete, list and search teams.
"""

import uuid
from typing import Any

from fastapi import APIRouter, Query, Request, Response, status
from pydantic import BaseModel, Field

from crewboard.core.dependencies import CurrentUser, DbSession
from crewboard.middleware.rate_limit import rate_limit_search
from crewboard.services.team_service import (
    TeamService,
    serialize_membership,
    serialize_team,
)

router = APIRouter(prefix="/teams", tags=["Teams"])


# ============== Request/Response Models ==============


class TeamCreateRequest(BaseModel):
    """Create a team; the caller becomes its leader."""

    name: str = Field(..., description="Team name, 3-50 characters")
    invited_usernames: list[str] = Field(
        default_factory=list, description="Up to 5 usernames to invite"
    )


class TeamUpdateRequest(BaseModel):
    """Edit a team. Omitting ``invited_usernames`` leaves invitations alone."""

    name: str
    invited_usernames: list[str] | None = None
    is_whitelisted: bool | None = None


class WhitelistUpdateRequest(BaseModel):
    whitelist: list[str] = Field(default_factory=list)


class UserSummary(BaseModel):
    id: str
    username: str
    display_name: str | None = None
    img: str | None = None


class TeamMemberResponse(UserSummary):
    joined_at: str | None = None


class TeamResponse(BaseModel):
    """Team with its roster."""

    id: str
    name: str
    leader_id: str
    leader: UserSummary | None
    is_whitelisted: bool
    whitelist: list[str]
    members: list[TeamMemberResponse]
    member_count: int
    max_members: int
    created_at: str | None
    updated_at: str | None


class InvitationReport(BaseModel):
    created: list[str]
    deleted: list[str]
    skipped: list[str]
    unresolved_usernames: list[str]


class TeamMutationResponse(BaseModel):
    team: TeamResponse
    invitations: InvitationReport | None = None


class TeamListResponse(BaseModel):
    teams: list[TeamResponse]
    next_cursor: str | None


class TeamSearchResponse(BaseModel):
    teams: list[TeamResponse]


class JoinTeamResponse(BaseModel):
    message: str
    membership: dict[str, Any]


# ============== Endpoints ==============


@router.post("", response_model=TeamMutationResponse, status_code=status.HTTP_201_CREATED)
async def create_team(
    data: TeamCreateRequest,
    session: DbSession,
    user: CurrentUser,
) -> TeamMutationResponse:
    """
    Create a new team led by the caller.

    Usernames that match no user are reported back in
    ``unresolved_usernames`` rather than failing the request.
    """
    service = TeamService(session)
    team, report = await service.create_team(user.id, data.name, data.invited_usernames)
    return TeamMutationResponse(
        team=TeamResponse(**serialize_team(team)),
        invitations=InvitationReport(**report.to_dict()),
    )


@router.get("", response_model=TeamListResponse)
async def list_teams(
    session: DbSession,
    cursor: str | None = Query(None, description="next_cursor from the previous page"),
    limit: int | None = Query(None, description="Page size, 1-50"),
) -> TeamListResponse:
    """List teams, newest first."""
    teams, next_cursor = await TeamService(session).list_teams(cursor, limit)
    return TeamListResponse(
        teams=[TeamResponse(**serialize_team(team)) for team in teams],
        next_cursor=next_cursor,
    )


@router.get("/search", response_model=TeamSearchResponse)
@rate_limit_search()
async def search_teams(
    request: Request,
    session: DbSession,
    q: str | None = Query(None, description="Case-insensitive name substring"),
) -> TeamSearchResponse:
    teams = await TeamService(session).search_teams(q)
    return TeamSearchResponse(teams=[TeamResponse(**serialize_team(team)) for team in teams])


@router.get("/{team_id}", response_model=TeamResponse)
async def get_team(team_id: uuid.UUID, session: DbSession) -> TeamResponse:
    team = await TeamService(session).get_team(team_id)
    return TeamResponse(**serialize_team(team))


@router.put("/{team_id}", response_model=TeamMutationResponse)
async def update_team(
    team_id: uuid.UUID,
    data: TeamUpdateRequest,
    session: DbSession,
    user: CurrentUser,
) -> TeamMutationResponse:
    """Rename a team, toggle its whitelist flag, or re-sync its invitations."""
    team, report = await TeamService(session).edit_team(
        user.id,
        team_id,
        data.name,
        invite_usernames=data.invited_usernames,
        is_whitelisted=data.is_whitelisted,
    )
    return TeamMutationResponse(
        team=TeamResponse(**serialize_team(team)),
        invitations=InvitationReport(**report.to_dict()) if report else None,
    )


@router.put("/{team_id}/whitelist", response_model=TeamResponse)
async def update_whitelist(
    team_id: uuid.UUID,
    data: WhitelistUpdateRequest,
    session: DbSession,
    user: CurrentUser,
) -> TeamResponse:
    team = await TeamService(session).update_whitelist(user.id, team_id, data.whitelist)
    return TeamResponse(**serialize_team(team))


@router.post("/{team_id}/join", response_model=JoinTeamResponse)
async def join_team(
    team_id: uuid.UUID,
    session: DbSession,
    user: CurrentUser,
) -> JoinTeamResponse:
    """
    Join a team.

    Requires a pending invitation, or a whitelisted team that lists the
    caller's username.
    """
    member = await TeamService(session).join_team(user.id, user.username, team_id)
    return JoinTeamResponse(
        message="Successfully joined team",
        membership=serialize_membership(member),
    )


@router.delete("/{team_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_team(
    team_id: uuid.UUID,
    session: DbSession,
    user: CurrentUser,
) -> Response:
    await TeamService(session).delete_team(user.id, team_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
