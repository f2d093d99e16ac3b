"""
Mission API Endpoints for Crewboard.

Claim the hourly, daily, team and daily reputation rewards.
"""

from fastapi import APIRouter, Request
from pydantic import BaseModel

from crewboard.core.dependencies import CurrentUser, DbSession
from crewboard.middleware.rate_limit import rate_limit_claims
from crewboard.services.mission_service import MissionService

router = APIRouter(prefix="/missions", tags=["Missions"])


class PointsClaimResponse(BaseModel):
    success: bool
    message: str
    updated_points: int
    new_claim_timestamp: str | None


class ReputationRewardResponse(BaseModel):
    success: bool
    message: str
    new_reputation: int


@router.post("/claim/hourly", response_model=PointsClaimResponse)
@rate_limit_claims()
async def claim_hourly(
    request: Request,
    session: DbSession,
    user: CurrentUser,
) -> PointsClaimResponse:
    """Claim the hourly points reward. Returns 429 while on cooldown."""
    result = await MissionService(session).claim_hourly(user.id)
    return PointsClaimResponse(**result)


@router.post("/claim/daily", response_model=PointsClaimResponse)
@rate_limit_claims()
async def claim_daily(
    request: Request,
    session: DbSession,
    user: CurrentUser,
) -> PointsClaimResponse:
    """Claim the daily points reward, once per UTC day."""
    result = await MissionService(session).claim_daily(user.id)
    return PointsClaimResponse(**result)


@router.post("/claim/team", response_model=ReputationRewardResponse)
@rate_limit_claims()
async def claim_team_reward(
    request: Request,
    session: DbSession,
    user: CurrentUser,
) -> ReputationRewardResponse:
    result = await MissionService(session).claim_team_reward(user.id)
    return ReputationRewardResponse(**result)


@router.post("/claim/reputation", response_model=ReputationRewardResponse)
@rate_limit_claims()
async def claim_daily_reputation(
    request: Request,
    session: DbSession,
    user: CurrentUser,
) -> ReputationRewardResponse:
    """Claim the daily reputation reward. Returns 429 within 24 hours of the last claim."""
    result = await MissionService(session).claim_daily_reputation(user.id)
    return ReputationRewardResponse(**result)
