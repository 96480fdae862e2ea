from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from smartpick_api.api.dependencies.session import request_locale, require_admin_user, require_session_user
from smartpick_api.api.errors import raise_for_err
from smartpick_api.db.session import get_session
from smartpick_api.models.user import User
from smartpick_api.services.cooldown import CooldownService
from smartpick_api.services.messages import render_message
from smartpick_api.services.results import Err


router = APIRouter(prefix="/cooldown", tags=["Cooldown"])


class CooldownStatusResponse(BaseModel):
    inCooldown: bool
    cancellationCount: int
    threshold: int
    unlockAt: Optional[datetime]
    liftedToday: bool


class CooldownLiftResponse(BaseModel):
    success: bool
    message: str
    pointsSpent: int
    alreadyLifted: bool = False
    balance: Optional[int] = None


class CooldownResetResponse(BaseModel):
    success: bool
    cleared: int


@router.get("", response_model=CooldownStatusResponse)
async def get_cooldown_status(
    user: User = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
) -> CooldownStatusResponse:
    snapshot = await CooldownService(db).get_cooldown_status(user.id)
    return CooldownStatusResponse(
        inCooldown=snapshot.in_cooldown,
        cancellationCount=snapshot.count,
        threshold=snapshot.threshold,
        unlockAt=snapshot.unlock_at,
        liftedToday=snapshot.lifted_today,
    )


@router.post("/lift", response_model=CooldownLiftResponse)
async def lift_cooldown(
    user: User = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
    locale: str = Depends(request_locale),
) -> CooldownLiftResponse:
    """Pay to clear the cooldown; a second lift on the same local day is refused without charge."""

    result = await CooldownService(db).lift_cooldown_with_points(user.id)
    if isinstance(result, Err):
        await db.rollback()
        raise_for_err(result)
    await db.commit()
    outcome = result.value
    return CooldownLiftResponse(
        success=outcome.success,
        message=render_message(outcome.message_key, locale, points_spent=outcome.points_spent),
        pointsSpent=outcome.points_spent,
        alreadyLifted=outcome.already_lifted,
        balance=outcome.new_balance,
    )


@router.post("/users/{user_id}/reset", response_model=CooldownResetResponse)
async def reset_cooldown(
    user_id: UUID,
    _: User = Depends(require_admin_user),
    db: AsyncSession = Depends(get_session),
) -> CooldownResetResponse:
    cleared = await CooldownService(db).reset_cooldown(user_id)
    await db.commit()
    return CooldownResetResponse(success=True, cleared=cleared)
