from __future__ import annotations

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from smartpick_api.api.dependencies.session import require_session_user
from smartpick_api.api.errors import raise_for_err
from smartpick_api.db.session import get_session
from smartpick_api.models.user import User
from smartpick_api.services.referrals import ReferralService
from smartpick_api.services.results import Err


router = APIRouter(prefix="/referrals", tags=["Referrals"])


class ReferralCodeResponse(BaseModel):
    code: str


class ReferralApplyRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=16)


class ReferralApplyResponse(BaseModel):
    success: bool
    referrerId: UUID
    bonusPoints: int
    unlockedAchievements: List[str] = Field(default_factory=list)


@router.get("/code", response_model=ReferralCodeResponse)
async def get_referral_code(
    user: User = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
) -> ReferralCodeResponse:
    code = await ReferralService(db).ensure_referral_code(user)
    await db.commit()
    return ReferralCodeResponse(code=code)


@router.post("/apply", response_model=ReferralApplyResponse)
async def apply_referral_code(
    payload: ReferralApplyRequest,
    user: User = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
) -> ReferralApplyResponse:
    """Attach the caller to a referrer and pay the referrer's bonus."""

    result = await ReferralService(db).apply_referral_code(user.id, payload.code)
    if isinstance(result, Err):
        await db.rollback()
        raise_for_err(result)
    await db.commit()
    outcome = result.value
    return ReferralApplyResponse(
        success=True,
        referrerId=outcome.referrer_id,
        bonusPoints=outcome.bonus_points,
        unlockedAchievements=[unlock.achievement_id for unlock in outcome.unlocked],
    )
