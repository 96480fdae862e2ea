"""Achievement catalog with the caller's progress, reward claims and viewed markers."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from smartpick_api.api.dependencies.session import require_session_user
from smartpick_api.api.errors import raise_for_err
from smartpick_api.db.session import get_session
from smartpick_api.models.achievement import AchievementRequirementType, AchievementTier
from smartpick_api.models.user import User
from smartpick_api.services.achievements import AchievementService, user_level
from smartpick_api.services.results import Err


router = APIRouter(prefix="/achievements", tags=["Achievements"])


class AchievementResponse(BaseModel):
    id: str
    name: str
    description: Optional[str]
    category: str
    tier: str
    requirementType: str
    target: float
    progress: float
    rewardPoints: int
    unlocked: bool
    unlockedAt: Optional[datetime]
    isNew: bool
    rewardClaimed: bool


class AchievementOverviewResponse(BaseModel):
    level: str
    totalReservations: int
    currentStreakDays: int
    achievements: List[AchievementResponse]


class ClaimResponse(BaseModel):
    success: bool
    alreadyClaimed: bool
    awardedNow: bool
    rewardPoints: int
    balance: int


class ViewedResponse(BaseModel):
    success: bool
    viewedAt: Optional[datetime]


@router.get("", response_model=AchievementOverviewResponse)
async def list_achievements(
    user: User = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
) -> AchievementOverviewResponse:
    service = AchievementService(db)
    stats = await service.get_stats(user.id)
    progress = await service.list_user_progress(user.id)
    total = stats.total_reservations if stats else 0
    return AchievementOverviewResponse(
        level=user_level(total),
        totalReservations=total,
        currentStreakDays=stats.current_streak_days if stats else 0,
        achievements=[
            AchievementResponse(
                id=item.definition.id,
                name=item.definition.name,
                description=item.definition.description,
                category=item.definition.category,
                tier=AchievementTier(item.definition.tier).value,
                requirementType=AchievementRequirementType(item.definition.requirement_type).value,
                target=float(item.definition.requirement_target),
                progress=float(item.progress),
                rewardPoints=item.definition.reward_points,
                unlocked=item.unlocked is not None,
                unlockedAt=item.unlocked.unlocked_at if item.unlocked else None,
                isNew=bool(item.unlocked.is_new) if item.unlocked else False,
                rewardClaimed=bool(item.unlocked.reward_claimed) if item.unlocked else False,
            )
            for item in progress
        ],
    )


@router.post("/{achievement_id}/claim", response_model=ClaimResponse)
async def claim_achievement(
    achievement_id: str,
    user: User = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
) -> ClaimResponse:
    """Pay the reward once; repeat claims report ``alreadyClaimed`` with no credit."""

    result = await AchievementService(db).claim_reward(user.id, achievement_id)
    if isinstance(result, Err):
        await db.rollback()
        raise_for_err(result)
    await db.commit()
    outcome = result.value
    return ClaimResponse(
        success=True,
        alreadyClaimed=outcome.already_claimed,
        awardedNow=outcome.awarded_now,
        rewardPoints=outcome.reward_points,
        balance=outcome.new_balance,
    )


@router.post("/{achievement_id}/viewed", response_model=ViewedResponse)
async def mark_viewed(
    achievement_id: str,
    user: User = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
) -> ViewedResponse:
    result = await AchievementService(db).mark_viewed(user.id, achievement_id)
    if isinstance(result, Err):
        raise_for_err(result)
    await db.commit()
    return ViewedResponse(success=True, viewedAt=result.value.viewed_at)
