"""
User API Endpoints for Crewboard.

The caller's own team, points, missions, profile and bookmarks, user search,
public profiles and timelines, follows and reputation votes.
"""

from typing import Any

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel, Field

from crewboard.api.posts import FeedResponse, PostResponse
from crewboard.core.dependencies import CurrentUser, DbSession, OptionalUser
from crewboard.middleware.rate_limit import rate_limit_search
from crewboard.services.mission_service import MissionService
from crewboard.services.post_service import PostService
from crewboard.services.reputation_service import ReputationService
from crewboard.services.team_service import TeamService
from crewboard.services.user_service import UserDirectory, UserService, user_summary

router = APIRouter(prefix="/users", tags=["Users"])


# ============== Request/Response Models ==============


class MyTeamResponse(BaseModel):
    """The caller's team, if any, and the invitations waiting on them."""

    team: dict[str, Any] | None
    is_leader: bool
    pending_invitations: list[dict[str, Any]]


class PointsResponse(BaseModel):
    points: int


class MissionStatusResponse(BaseModel):
    points: int
    reputation: int
    last_hourly_claim: str | None
    last_daily_claim: str | None
    hourly_available: bool
    daily_available: bool
    next_hourly_claim_at: str | None
    next_daily_claim_at: str | None
    team_reward_claimed: bool
    reputation_reward_available: bool
    next_reputation_claim_at: str | None


class UserSearchResponse(BaseModel):
    users: list[dict[str, Any]]


class FollowResponse(BaseModel):
    following: bool


class ReputationVoteRequest(BaseModel):
    vote_type: str = Field(..., description='"upvote" or "downvote"')


class ReputationVoteResponse(BaseModel):
    success: bool
    new_reputation: int
    vote_status: str


class ProfileUpdateRequest(BaseModel):
    """Omitted fields are left unchanged; an empty string clears a field."""

    display_name: str | None = Field(None, description="Up to 100 characters")
    bio: str | None = Field(None, description="Up to 255 characters")
    location: str | None = Field(None, description="Up to 100 characters")
    rank: str | None = Field(None, description="Up to 50 characters")
    img: str | None = Field(None, description="Avatar URL, already uploaded to the CDN")
    cover: str | None = Field(None, description="Cover URL, already uploaded to the CDN")


class SavedPostsResponse(BaseModel):
    posts: list[PostResponse]


# ============== Endpoints ==============


@router.get("/me/team", response_model=MyTeamResponse)
async def get_my_team(session: DbSession, user: CurrentUser) -> MyTeamResponse:
    data = await TeamService(session).get_my_team(user.id)
    return MyTeamResponse(**data)


@router.get("/me/points", response_model=PointsResponse)
async def get_my_points(session: DbSession, user: CurrentUser) -> PointsResponse:
    points = await MissionService(session).get_points(user.id)
    return PointsResponse(points=points)


@router.get("/me/mission-status", response_model=MissionStatusResponse)
async def get_mission_status(session: DbSession, user: CurrentUser) -> MissionStatusResponse:
    """Points, last claims and when each mission can next be claimed."""
    data = await MissionService(session).get_mission_status(user.id)
    return MissionStatusResponse(**data)


@router.put("/me/profile")
async def update_profile(
    data: ProfileUpdateRequest,
    session: DbSession,
    user: CurrentUser,
) -> dict[str, Any]:
    """Edit the caller's profile and return it."""
    return await UserService(session).update_profile(user.id, **data.model_dump())


@router.get("/me/saved", response_model=SavedPostsResponse)
async def get_saved_posts(session: DbSession, user: CurrentUser) -> SavedPostsResponse:
    posts = await PostService(session).get_saved_posts(user.id)
    return SavedPostsResponse(posts=[PostResponse(**post) for post in posts])


@router.get("/search", response_model=UserSearchResponse)
@rate_limit_search()
async def search_users(
    request: Request,
    session: DbSession,
    query: str = Query("", description="Substring of a username or display name"),
) -> UserSearchResponse:
    users = await UserDirectory(session).search_users(query)
    return UserSearchResponse(users=[user_summary(user) for user in users])


@router.get("/{username}")
async def get_profile(
    username: str,
    session: DbSession,
    viewer: OptionalUser,
) -> dict[str, Any]:
    """
    Public profile for a username.

    When the request is authenticated, ``is_followed`` reflects whether the
    viewer follows this user.
    """
    return await UserService(session).get_profile(username, viewer.id if viewer else None)


@router.get("/{username}/posts", response_model=FeedResponse)
async def get_user_posts(
    username: str,
    session: DbSession,
    viewer: OptionalUser,
    cursor: str | None = Query(None, description="next_cursor from the previous page"),
    limit: int | None = Query(None, description="Page size, 1-50"),
) -> FeedResponse:
    """A user's posts and reposts, newest first."""
    posts, next_cursor = await PostService(session).get_user_posts(
        username, viewer.id if viewer else None, cursor, limit
    )
    return FeedResponse(posts=[PostResponse(**post) for post in posts], next_cursor=next_cursor)


@router.post("/{user_id}/follow", response_model=FollowResponse)
async def toggle_follow(
    user_id: str,
    session: DbSession,
    user: CurrentUser,
) -> FollowResponse:
    following = await UserService(session).toggle_follow(user.id, user_id)
    return FollowResponse(following=following)


@router.post("/{user_id}/reputation", response_model=ReputationVoteResponse)
async def vote_reputation(
    user_id: str,
    data: ReputationVoteRequest,
    session: DbSession,
    user: CurrentUser,
) -> ReputationVoteResponse:
    """Upvote or downvote a user; repeating the same vote withdraws it."""
    result = await ReputationService(session).vote(user.id, user_id, data.vote_type)
    return ReputationVoteResponse(**result)
