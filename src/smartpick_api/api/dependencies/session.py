"""Session-aware dependencies resolving the calling customer, partner or admin."""

from __future__ import annotations

from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from smartpick_api.db.session import get_session
from smartpick_api.models.user import User, UserRoleEnum, UserStatusEnum
from smartpick_api.services.messages import resolve_locale


async def require_session_user(
    session_user: str | None = Header(None, alias="X-Session-User"),
    db: AsyncSession = Depends(get_session),
) -> User:
    """Resolve the authenticated user from forwarded session headers."""

    if not session_user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing session user context",
        )

    try:
        user_id = UUID(session_user)
    except ValueError as error:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid session user identifier",
        ) from error

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session user not found",
        )
    if user.status == UserStatusEnum.BLOCKED:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User is blocked")

    return user


async def require_partner_user(user: User = Depends(require_session_user)) -> User:
    if user.role not in (UserRoleEnum.PARTNER, UserRoleEnum.ADMIN):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Partner role required")
    return user


async def require_admin_user(user: User = Depends(require_session_user)) -> User:
    if user.role != UserRoleEnum.ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin role required")
    return user


async def request_locale(accept_language: str | None = Header(None, alias="Accept-Language")) -> str:
    return resolve_locale(accept_language)
