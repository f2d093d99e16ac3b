"""
User Service for Crewboard.

User directory lookups (used to resolve invitees), user search, public
profiles, profile editing and the follow graph.
"""

import logging
from typing import Any

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from crewboard.core.exceptions import NotFoundError, ValidationFailedError
from crewboard.models.base import LIKE_ESCAPE, contains_pattern
from crewboard.models.social import Follow
from crewboard.models.team import Team, TeamMember
from crewboard.models.user import User

logger = logging.getLogger(__name__)

USER_SEARCH_LIMIT = 10

PROFILE_FIELD_LIMITS = {
    "display_name": 100,
    "bio": 255,
    "location": 100,
    "rank": 50,
    "img": 500,
    "cover": 500,
}


def user_summary(user: User) -> dict[str, Any]:
    """Public fields shown wherever a user is referenced."""
    return {
        "id": user.id,
        "username": user.username,
        "display_name": user.display_name,
        "img": user.img,
    }


class UserDirectory:
    """Read access to synced users."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_user(self, user_id: str) -> User | None:
        result = await self.session.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def find_user_by_username(self, username: str) -> User | None:
        result = await self.session.execute(select(User).where(User.username == username))
        return result.scalar_one_or_none()

    async def search_users(self, query: str, limit: int = USER_SEARCH_LIMIT) -> list[User]:
        """
        Search users by username or display name.

        Args:
            query: Substring to look for (case-insensitive)
            limit: Maximum number of users returned

        Returns:
            Matching users ordered by username
        """
        query = query.strip()
        if not query:
            raise ValidationFailedError("Query parameter is required")

        pattern = contains_pattern(query)
        result = await self.session.execute(
            select(User)
            .where(
                or_(
                    func.lower(User.username).like(pattern, escape=LIKE_ESCAPE),
                    func.lower(User.display_name).like(pattern, escape=LIKE_ESCAPE),
                )
            )
            .order_by(User.username.asc())
            .limit(limit)
        )
        return list(result.scalars().all())


class UserService:
    """Profiles and follows."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.directory = UserDirectory(session)

    async def toggle_follow(self, follower_id: str, target_id: str) -> bool:
        """
        Follow or unfollow a user.

        Returns:
            True if the caller now follows the target, False if unfollowed

        Raises:
            ValidationFailedError: On a self-follow
            NotFoundError: If the target does not exist
        """
        if follower_id == target_id:
            raise ValidationFailedError("You cannot follow yourself")

        if await self.directory.get_user(target_id) is None:
            raise NotFoundError("User not found")

        result = await self.session.execute(
            select(Follow)
            .where(Follow.follower_id == follower_id)
            .where(Follow.following_id == target_id)
        )
        existing = result.scalar_one_or_none()

        if existing:
            await self.session.execute(delete(Follow).where(Follow.id == existing.id))
            following = False
        else:
            self.session.add(Follow(follower_id=follower_id, following_id=target_id))
            following = True

        await self.session.commit()
        logger.info(f"User {follower_id} {'followed' if following else 'unfollowed'} {target_id}")
        return following

    async def update_profile(
        self,
        user_id: str,
        display_name: str | None = None,
        bio: str | None = None,
        location: str | None = None,
        rank: str | None = None,
        img: str | None = None,
        cover: str | None = None,
    ) -> dict[str, Any]:
        """
        Update the caller's profile fields.

        ``None`` leaves a field untouched; an empty string clears it.

        Raises:
            NotFoundError: Unknown user
            ValidationFailedError: A field is too long
        """
        user = await self.directory.get_user(user_id)
        if not user:
            raise NotFoundError("User not found")

        fields = {
            "display_name": display_name,
            "bio": bio,
            "location": location,
            "rank": rank,
            "img": img,
            "cover": cover,
        }
        changes = {name: value.strip() for name, value in fields.items() if value is not None}
        for name, value in changes.items():
            max_length = PROFILE_FIELD_LIMITS[name]
            if len(value) > max_length:
                label = name.replace("_", " ").capitalize()
                raise ValidationFailedError(f"{label} must be at most {max_length} characters")

        for name, value in changes.items():
            setattr(user, name, value or None)

        if changes:
            await self.session.commit()
            logger.info(f"User {user_id} updated profile fields: {', '.join(changes)}")
        return await self.get_profile(user.username, viewer_id=user_id)

    async def get_profile(self, username: str, viewer_id: str | None = None) -> dict[str, Any]:
        """
        Build the public profile for a username.

        Raises:
            NotFoundError: If no user has this username
        """
        result = await self.session.execute(
            select(User)
            .options(selectinload(User.membership).selectinload(TeamMember.team))
            .where(User.username == username)
        )
        user = result.scalar_one_or_none()
        if not user:
            raise NotFoundError("User not found")

        followers = await self.session.execute(
            select(func.count(Follow.id)).where(Follow.following_id == user.id)
        )
        following = await self.session.execute(
            select(func.count(Follow.id)).where(Follow.follower_id == user.id)
        )

        is_followed = False
        if viewer_id and viewer_id != user.id:
            edge = await self.session.execute(
                select(Follow.id)
                .where(Follow.follower_id == viewer_id)
                .where(Follow.following_id == user.id)
            )
            is_followed = edge.first() is not None

        team: Team | None = user.membership.team if user.membership else None

        return {
            **user_summary(user),
            "bio": user.bio,
            "location": user.location,
            "rank": user.rank,
            "cover": user.cover,
            "points": user.points,
            "reputation": user.reputation,
            "followers_count": followers.scalar() or 0,
            "following_count": following.scalar() or 0,
            "is_followed": is_followed,
            "team": (
                {
                    "id": str(team.id),
                    "name": team.name,
                    "is_leader": team.leader_id == user.id,
                }
                if team
                else None
            ),
            "created_at": user.created_at.isoformat() if user.created_at else None,
        }
