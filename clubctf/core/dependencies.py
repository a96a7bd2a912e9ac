"""
FastAPI Dependencies for the ClubCTF engine.

Reusable dependencies for database sessions, caller identity and the engine
services.
"""

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from clubctf.core.database import get_db
from clubctf.services.auth_service import AuthError, Identity, identity_from_token
from clubctf.services.invite_service import InviteManager, get_invite_manager
from clubctf.services.leaderboard import LeaderboardService, get_leaderboard_service
from clubctf.services.submission_service import SubmissionProcessor, get_submission_processor
from clubctf.services.team_service import TeamRegistry, get_team_registry

# Security scheme for API documentation
security = HTTPBearer(auto_error=False)


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting database sessions."""
    async for session in get_db():
        yield session


DbSession = Annotated[AsyncSession, Depends(get_db_session)]


async def get_current_user(
    authorization: Annotated[HTTPAuthorizationCredentials | None, Depends(security)] = None,
) -> Identity:
    """
    Get the caller identity from the Bearer token.

    Raises:
        HTTPException: If no valid token is presented
    """
    if authorization is None or not authorization.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return identity_from_token(authorization.credentials)
    except AuthError as e:
        raise HTTPException(
            status_code=e.status_code,
            detail=e.message,
            headers={"WWW-Authenticate": "Bearer"},
        ) from e


CurrentUser = Annotated[Identity, Depends(get_current_user)]


async def require_privileged(user: CurrentUser) -> Identity:
    """
    Require an officer or admin.

    Raises:
        HTTPException: If user is not privileged
    """
    if not user.is_privileged:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Officer access required",
        )
    return user


AdminUser = Annotated[Identity, Depends(require_privileged)]

Teams = Annotated[TeamRegistry, Depends(get_team_registry)]
Invites = Annotated[InviteManager, Depends(get_invite_manager)]
Submissions = Annotated[SubmissionProcessor, Depends(get_submission_processor)]
Leaderboard = Annotated[LeaderboardService, Depends(get_leaderboard_service)]
