"""
Mission Service for Crewboard.

Time-windowed point and reputation rewards:
- hourly claim: rolling one-hour cooldown
- daily claim: once per UTC calendar day
- team reward: once per user, only while on a team
- daily reputation reward: rolling 24 hour cooldown

Each claim is a single conditional UPDATE whose WHERE clause carries the
cooldown predicate, so two racing claims award at most once.
"""

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from crewboard.core.exceptions import ConflictError, CooldownActiveError, NotFoundError
from crewboard.models.base import as_utc
from crewboard.models.team import TeamMember
from crewboard.models.user import User

logger = logging.getLogger(__name__)

HOURLY_COOLDOWN = timedelta(hours=1)
HOURLY_POINTS_REWARD = 5
DAILY_POINTS_REWARD = 25
TEAM_REPUTATION_REWARD = 20
DAILY_REPUTATION_REWARD = 10
REPUTATION_COOLDOWN = timedelta(hours=24)


def start_of_day(moment: datetime) -> datetime:
    moment = moment.astimezone(timezone.utc)
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def hourly_available_at(last_claim: datetime | None) -> datetime | None:
    """When the next hourly claim opens, or None if it is open already."""
    last_claim = as_utc(last_claim)
    return last_claim + HOURLY_COOLDOWN if last_claim else None


def daily_available_at(last_claim: datetime | None) -> datetime | None:
    """The daily claim reopens at the start of the UTC day after the last claim."""
    last_claim = as_utc(last_claim)
    return start_of_day(last_claim) + timedelta(days=1) if last_claim else None


def reputation_available_at(last_claim: datetime | None) -> datetime | None:
    last_claim = as_utc(last_claim)
    return last_claim + REPUTATION_COOLDOWN if last_claim else None


def is_hourly_eligible(last_claim: datetime | None, now: datetime) -> bool:
    available_at = hourly_available_at(last_claim)
    return available_at is None or now > available_at


def is_daily_eligible(last_claim: datetime | None, now: datetime) -> bool:
    available_at = daily_available_at(last_claim)
    return available_at is None or start_of_day(now) >= available_at


def _now(now: datetime | None) -> datetime:
    return as_utc(now) if now else datetime.now(timezone.utc)


class MissionService:
    """Claims and status for mission rewards."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _get_user(self, user_id: str) -> User:
        result = await self.session.execute(select(User).where(User.id == user_id))
        user = result.scalar_one_or_none()
        if not user:
            raise NotFoundError("User not found")
        return user

    async def claim_hourly(self, user_id: str, now: datetime | None = None) -> dict[str, Any]:
        """
        Award the hourly reward.

        Raises:
            NotFoundError: Unknown user
            CooldownActiveError: Claimed less than an hour ago
        """
        now = _now(now)
        user = await self._get_user(user_id)

        result = await self.session.execute(
            update(User)
            .where(User.id == user_id)
            .where(
                or_(
                    User.last_hourly_claim.is_(None),
                    User.last_hourly_claim < now - HOURLY_COOLDOWN,
                )
            )
            .values(points=User.points + HOURLY_POINTS_REWARD, last_hourly_claim=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.session.rollback()
            await self.session.refresh(user)
            logger.warning(f"Hourly claim rejected for {user_id}: cooldown active")
            raise CooldownActiveError(
                "Hourly claim cooldown active.",
                retry_at=hourly_available_at(user.last_hourly_claim),
            )

        await self.session.commit()
        await self.session.refresh(user)
        logger.info(f"User {user_id} claimed hourly reward (+{HOURLY_POINTS_REWARD})")
        return self._claim_response(HOURLY_POINTS_REWARD, user.points, user.last_hourly_claim)

    async def claim_daily(self, user_id: str, now: datetime | None = None) -> dict[str, Any]:
        """
        Award the daily reward, once per UTC day.

        Raises:
            NotFoundError: Unknown user
            CooldownActiveError: Already claimed today
        """
        now = _now(now)
        user = await self._get_user(user_id)

        result = await self.session.execute(
            update(User)
            .where(User.id == user_id)
            .where(
                or_(
                    User.last_daily_claim.is_(None),
                    User.last_daily_claim < start_of_day(now),
                )
            )
            .values(points=User.points + DAILY_POINTS_REWARD, last_daily_claim=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.session.rollback()
            await self.session.refresh(user)
            logger.warning(f"Daily claim rejected for {user_id}: cooldown active")
            raise CooldownActiveError(
                "Daily claim cooldown active. Try again tomorrow.",
                retry_at=daily_available_at(user.last_daily_claim),
            )

        await self.session.commit()
        await self.session.refresh(user)
        logger.info(f"User {user_id} claimed daily reward (+{DAILY_POINTS_REWARD})")
        return self._claim_response(DAILY_POINTS_REWARD, user.points, user.last_daily_claim)

    async def claim_team_reward(self, user_id: str, now: datetime | None = None) -> dict[str, Any]:
        """
        Award the one-time team reputation bonus.

        Raises:
            NotFoundError: Unknown user
            ConflictError: Not on a team, or already claimed
        """
        now = _now(now)
        user = await self._get_user(user_id)

        membership = await self.session.execute(
            select(TeamMember.id).where(TeamMember.user_id == user_id)
        )
        if membership.first() is None:
            raise ConflictError("Must be in a team to claim this reward.")

        result = await self.session.execute(
            update(User)
            .where(User.id == user_id)
            .where(User.team_reward_claimed_at.is_(None))
            .values(
                reputation=User.reputation + TEAM_REPUTATION_REWARD,
                team_reward_claimed_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.session.rollback()
            raise ConflictError("Team reward already claimed.")

        await self.session.commit()
        await self.session.refresh(user)
        logger.info(f"User {user_id} claimed team reward (+{TEAM_REPUTATION_REWARD} reputation)")
        return {
            "success": True,
            "message": f"Successfully claimed {TEAM_REPUTATION_REWARD} reputation!",
            "new_reputation": user.reputation,
        }

    async def claim_daily_reputation(
        self, user_id: str, now: datetime | None = None
    ) -> dict[str, Any]:
        """
        Award the daily reputation reward, once per rolling 24 hours.

        Raises:
            NotFoundError: Unknown user
            CooldownActiveError: Claimed less than 24 hours ago
        """
        now = _now(now)
        user = await self._get_user(user_id)

        result = await self.session.execute(
            update(User)
            .where(User.id == user_id)
            .where(
                or_(
                    User.daily_reward_claimed_at.is_(None),
                    User.daily_reward_claimed_at <= now - REPUTATION_COOLDOWN,
                )
            )
            .values(
                reputation=User.reputation + DAILY_REPUTATION_REWARD,
                daily_reward_claimed_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.session.rollback()
            await self.session.refresh(user)
            retry_at = reputation_available_at(user.daily_reward_claimed_at)
            hours = max(1, math.ceil((retry_at - now).total_seconds() / 3600)) if retry_at else 1
            logger.warning(f"Daily reputation claim rejected for {user_id}: cooldown active")
            raise CooldownActiveError(
                f"Daily reward already claimed. Try again in {hours} hour(s).",
                retry_at=retry_at,
            )

        await self.session.commit()
        await self.session.refresh(user)
        logger.info(
            f"User {user_id} claimed daily reputation reward (+{DAILY_REPUTATION_REWARD})"
        )
        return {
            "success": True,
            "message": f"Successfully claimed {DAILY_REPUTATION_REWARD} reputation!",
            "new_reputation": user.reputation,
        }

    async def get_mission_status(self, user_id: str, now: datetime | None = None) -> dict[str, Any]:
        now = _now(now)
        user = await self._get_user(user_id)
        last_hourly = as_utc(user.last_hourly_claim)
        last_daily = as_utc(user.last_daily_claim)
        hourly_at = hourly_available_at(last_hourly)
        daily_at = daily_available_at(last_daily)
        reputation_at = reputation_available_at(user.daily_reward_claimed_at)

        return {
            "points": user.points,
            "reputation": user.reputation,
            "last_hourly_claim": last_hourly.isoformat() if last_hourly else None,
            "last_daily_claim": last_daily.isoformat() if last_daily else None,
            "hourly_available": is_hourly_eligible(last_hourly, now),
            "daily_available": is_daily_eligible(last_daily, now),
            "next_hourly_claim_at": hourly_at.isoformat() if hourly_at and hourly_at >= now else None,
            "next_daily_claim_at": daily_at.isoformat() if daily_at and daily_at > now else None,
            "team_reward_claimed": user.team_reward_claimed_at is not None,
            "reputation_reward_available": reputation_at is None or now >= reputation_at,
            "next_reputation_claim_at": (
                reputation_at.isoformat() if reputation_at and reputation_at > now else None
            ),
        }

    async def get_points(self, user_id: str) -> int:
        user = await self._get_user(user_id)
        return user.points

    @staticmethod
    def _claim_response(reward: int, points: int, claimed_at: datetime | None) -> dict[str, Any]:
        claimed_at = as_utc(claimed_at)
        return {
            "success": True,
            "message": f"Successfully claimed {reward} points!",
            "updated_points": points,
            "new_claim_timestamp": claimed_at.isoformat() if claimed_at else None,
        }
