"""
Orchestra - API Dependencies
============================

Shared dependencies for FastAPI endpoints. Tokens are issued elsewhere;
this service only verifies them.
"""

from datetime import datetime, timedelta, timezone
from typing import Annotated, Optional
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from orchestra.core.config import settings
from orchestra.core.database import get_db
from orchestra.core.integrations.cursor_agent import CursorAgentClient
from orchestra.core.models import User
from orchestra.core.orchestration.dispatch import LauncherFactory
from orchestra.core.orchestration.notifications import EpicBroadcaster, get_broadcaster
from orchestra.core.orchestration.queue import JobQueue, create_job_queue


# ==========================================================================
# Security
# ==========================================================================

security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


# ==========================================================================
# Token Utilities
# ==========================================================================

def create_access_token(
    user_id: UUID,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create an access token for ``user_id``.

    Used by operator tooling and tests; the login flow lives elsewhere.
    """
    import secrets

    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "exp": now + expires_delta,
        "iat": now,
        "type": "access",
        "jti": secrets.token_hex(16),
    }

    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> dict:
    """
    Decode and validate a JWT token.

    Raises:
        HTTPException: If token is invalid or expired
    """
    try:
        return jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM],
        )
    except JWTError as e:
        raise _unauthorized("Invalid or expired token") from e


async def user_from_token(token: str, db: AsyncSession) -> User:
    """Resolve an access token to its user."""
    payload = decode_token(token)

    if payload.get("type") != "access":
        raise _unauthorized("Invalid token type")

    user_id_str = payload.get("sub")
    if user_id_str is None:
        raise _unauthorized("Invalid token payload")

    try:
        user_id = UUID(user_id_str)
    except ValueError as e:
        raise _unauthorized("Invalid user ID in token") from e

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise _unauthorized("User not found")

    return user


# ==========================================================================
# User Dependencies
# ==========================================================================

async def get_current_user(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """
    Get the current authenticated user.

    Raises:
        HTTPException: If not authenticated or user not found
    """
    if credentials is None:
        raise _unauthorized("Not authenticated")

    return await user_from_token(credentials.credentials, db)


# ==========================================================================
# Orchestration Dependencies
# ==========================================================================

def get_job_queue(request: Request) -> JobQueue:
    """The application's job queue, created on first use."""
    queue = getattr(request.app.state, "job_queue", None)
    if queue is None:
        queue = create_job_queue()
        request.app.state.job_queue = queue
    return queue


def get_notifier() -> EpicBroadcaster:
    return get_broadcaster()


def get_launcher_factory() -> LauncherFactory:
    return CursorAgentClient


# ==========================================================================
# Type Aliases for Dependency Injection
# ==========================================================================

CurrentUser = Annotated[User, Depends(get_current_user)]
DbSession = Annotated[AsyncSession, Depends(get_db)]
Queue = Annotated[JobQueue, Depends(get_job_queue)]
Broadcaster = Annotated[EpicBroadcaster, Depends(get_notifier)]
Launcher = Annotated[LauncherFactory, Depends(get_launcher_factory)]
