"""
Identity Webhook Service for Crewboard.

Keeps the local ``users`` table in step with the identity provider by
applying ``user.created``, ``user.updated`` and ``user.deleted`` events.
"""

import logging
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from crewboard.core.exceptions import ConflictError, NotFoundError, ValidationFailedError
from crewboard.models.user import User

logger = logging.getLogger(__name__)


def _primary_email(data: dict[str, Any]) -> str | None:
    addresses = data.get("email_addresses") or []
    if not addresses:
        return None
    return addresses[0].get("email_address")


class IdentitySyncService:
    """Applies identity provider user events."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def handle_event(self, event_type: str, data: dict[str, Any]) -> str:
        """
        Dispatch one webhook event.

        Returns:
            Short outcome string: "created", "updated", "deleted" or "ignored"
        """
        logger.info(f"Received identity webhook {event_type} for {data.get('id')}")

        if event_type == "user.created":
            return await self.user_created(data)
        if event_type == "user.updated":
            return await self.user_updated(data)
        if event_type == "user.deleted":
            return await self.user_deleted(data)
        return "ignored"

    async def user_created(self, data: dict[str, Any]) -> str:
        user_id = data.get("id")
        email = _primary_email(data)
        username = data.get("username")

        if not user_id:
            raise ValidationFailedError("Missing user ID")
        if not email:
            raise ValidationFailedError("Missing email address")
        if not username:
            raise ValidationFailedError("Missing username")

        self.session.add(
            User(
                id=user_id,
                email=email,
                username=username,
                display_name=data.get("first_name") or None,
                img=data.get("image_url") or None,
            )
        )
        try:
            await self.session.commit()
            logger.info(f"Created user {user_id} ({username})")
            return "created"
        except IntegrityError:
            await self.session.rollback()

        # A user with this email already exists (e.g. re-signup): re-key it
        logger.warning(f"User {user_id} clashes with an existing row, re-keying by email")
        result = await self.session.execute(select(User).where(User.email == email))
        existing = result.scalar_one_or_none()
        if existing is None:
            raise ConflictError("Username or user ID already in use")

        existing.id = user_id
        existing.username = username
        existing.img = data.get("image_url") or None
        try:
            await self.session.commit()
        except IntegrityError as exc:
            await self.session.rollback()
            raise ConflictError("Username or user ID already in use") from exc
        logger.info(f"Re-keyed existing user {email} to {user_id}")
        return "updated"

    async def user_updated(self, data: dict[str, Any]) -> str:
        user_id = data.get("id")
        result = await self.session.execute(select(User).where(User.id == user_id))
        user = result.scalar_one_or_none()
        if not user:
            logger.warning(f"User {user_id} not found for update")
            raise NotFoundError("User not found")

        email = _primary_email(data)
        if email:
            user.email = email
        if data.get("username"):
            user.username = data["username"]
        user.img = data.get("image_url") or None

        try:
            await self.session.commit()
        except IntegrityError as exc:
            await self.session.rollback()
            raise ConflictError("Email or username already in use") from exc
        logger.info(f"Updated user {user_id}")
        return "updated"

    async def user_deleted(self, data: dict[str, Any]) -> str:
        user_id = data.get("id")
        if not user_id:
            raise ValidationFailedError("Missing user ID")

        result = await self.session.execute(delete(User).where(User.id == user_id))
        if not result.rowcount:
            await self.session.rollback()
            logger.warning(f"User {user_id} not found for deletion")
            raise NotFoundError("User not found")

        await self.session.commit()
        logger.info(f"Deleted user {user_id}")
        return "deleted"
