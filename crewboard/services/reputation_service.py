"""
Reputation Service for Crewboard.

Each user holds at most one standing vote on another user. Voting the same
way twice removes the vote; voting the other way flips it.
"""

import logging
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from crewboard.core.exceptions import NotFoundError, ValidationFailedError
from crewboard.models.social import ReputationVote, VoteType
from crewboard.models.user import User

logger = logging.getLogger(__name__)

VOTE_WEIGHT = {VoteType.UPVOTE: 1, VoteType.DOWNVOTE: -1}


def reputation_delta(previous: VoteType | None, submitted: VoteType) -> tuple[int, VoteType | None]:
    """
    Reputation change and resulting vote for a submitted vote.

    Returns:
        Tuple of (delta to apply, standing vote afterwards or None if removed)
    """
    if previous is None:
        return VOTE_WEIGHT[submitted], submitted
    if previous == submitted:
        return -VOTE_WEIGHT[submitted], None
    return VOTE_WEIGHT[submitted] - VOTE_WEIGHT[previous], submitted


class ReputationService:
    """Applies reputation votes."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def vote(self, voter_id: str, target_user_id: str, vote_type: str) -> dict[str, Any]:
        """
        Cast, flip or withdraw a vote on another user's reputation.

        Args:
            voter_id: Voting user
            target_user_id: User being voted on
            vote_type: "upvote" or "downvote"

        Returns:
            Dict with the target's new reputation and the vote status
            ("upvote", "downvote" or "removed")

        Raises:
            ValidationFailedError: Self vote or unknown vote type
            NotFoundError: Unknown target
        """
        if voter_id == target_user_id:
            raise ValidationFailedError("Cannot vote on your own reputation")

        try:
            submitted = VoteType(vote_type.lower())
        except (ValueError, AttributeError) as exc:
            raise ValidationFailedError("Invalid vote type provided") from exc

        target = await self.session.execute(select(User).where(User.id == target_user_id))
        user = target.scalar_one_or_none()
        if not user:
            raise NotFoundError("User not found")

        try:
            result = await self.session.execute(
                select(ReputationVote)
                .where(ReputationVote.voter_id == voter_id)
                .where(ReputationVote.target_user_id == target_user_id)
            )
            existing = result.scalar_one_or_none()
            previous = VoteType(existing.vote_type) if existing else None

            delta, standing = reputation_delta(previous, submitted)

            if existing is None:
                self.session.add(
                    ReputationVote(
                        voter_id=voter_id,
                        target_user_id=target_user_id,
                        vote_type=submitted.value,
                    )
                )
            elif standing is None:
                await self.session.execute(
                    delete(ReputationVote).where(ReputationVote.id == existing.id)
                )
            else:
                existing.vote_type = standing.value

            await self.session.execute(
                update(User)
                .where(User.id == target_user_id)
                .values(reputation=User.reputation + delta)
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        await self.session.refresh(user)
        logger.info(
            f"User {voter_id} voted {submitted.value} on {target_user_id} "
            f"(delta {delta:+d})"
        )
        return {
            "success": True,
            "new_reputation": user.reputation,
            "vote_status": standing.value if standing else "removed",
        }
