"""
FastAPI Dependencies for Crewboard.

Reusable dependencies for database sessions and caller identity.
"""

from typing import Annotated, AsyncGenerator

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from crewboard.core.database import get_db
from crewboard.core.exceptions import UnauthorizedError
from crewboard.models.user import User
from crewboard.services.auth_service import user_id_from_token

# Security scheme for API documentation
security = HTTPBearer(auto_error=False)


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting database sessions."""
    async for session in get_db():
        yield session


DbSession = Annotated[AsyncSession, Depends(get_db_session)]


async def get_current_user(
    session: DbSession,
    authorization: Annotated[HTTPAuthorizationCredentials | None, Depends(security)] = None,
) -> User:
    """
    Get the currently authenticated user.

    The bearer token is issued by the identity provider; its ``sub`` claim is
    the id of a user already synced through the identity webhook.

    Args:
        session: Database session
        authorization: Bearer token from Authorization header

    Returns:
        Authenticated User object

    Raises:
        UnauthorizedError: Missing or invalid token, or unknown user
    """
    if not authorization or not authorization.credentials:
        raise UnauthorizedError("Authentication required")

    user_id = user_id_from_token(authorization.credentials)
    result = await session.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user:
        raise UnauthorizedError("User not found")
    return user


CurrentUser = Annotated[User, Depends(get_current_user)]


async def get_optional_user(
    session: DbSession,
    authorization: Annotated[HTTPAuthorizationCredentials | None, Depends(security)] = None,
) -> User | None:
    """
    Get the currently authenticated user, or None if not authenticated.

    Used by public endpoints that personalise their response for a signed-in
    viewer.
    """
    try:
        return await get_current_user(session, authorization)
    except UnauthorizedError:
        return None


OptionalUser = Annotated[User | None, Depends(get_optional_user)]
