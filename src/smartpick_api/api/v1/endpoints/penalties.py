"""Penalty status, acknowledgement, paid lifts and forgiveness requests."""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from smartpick_api.api.dependencies.session import request_locale, require_admin_user, require_session_user
from smartpick_api.api.errors import raise_for_err
from smartpick_api.db.session import get_session
from smartpick_api.models.penalty import ForgivenessStatus, PenaltyOffense
from smartpick_api.models.user import User
from smartpick_api.services.forgiveness import ForgivenessService
from smartpick_api.services.messages import render_message
from smartpick_api.services.penalties import PenaltyService
from smartpick_api.services.results import Err, ErrorKind, err


router = APIRouter(prefix="/penalties", tags=["Penalties"])


class OffenseResponse(BaseModel):
    id: UUID
    offenseNumber: int
    tier: str
    suspendedUntil: Optional[datetime]
    liftCostPoints: Optional[int]
    acknowledgedAt: Optional[datetime]
    liftedAt: Optional[datetime]
    forgivenAt: Optional[datetime]
    createdAt: datetime

    @classmethod
    def from_model(cls, offense: PenaltyOffense) -> "OffenseResponse":
        return cls(
            id=offense.id,
            offenseNumber=offense.offense_number,
            tier=offense.tier,
            suspendedUntil=offense.suspended_until,
            liftCostPoints=offense.lift_cost_points,
            acknowledgedAt=offense.acknowledged_at,
            liftedAt=offense.lifted_at,
            forgivenAt=offense.forgiven_at,
            createdAt=offense.created_at,
        )


class PenaltyStatusResponse(BaseModel):
    penaltyId: Optional[UUID]
    noShowCount: int
    isSuspended: bool
    suspendedUntil: Optional[datetime]
    tier: Optional[str]
    activeOffense: Optional[OffenseResponse]


class LiftResponse(BaseModel):
    success: bool
    message: str
    pointsSpent: int
    balance: int


class ForgivenessCreateRequest(BaseModel):
    message: str = Field(..., max_length=2000)


class ForgivenessCreateResponse(BaseModel):
    requestId: UUID
    status: str
    expiresAt: datetime


class ResetResponse(BaseModel):
    success: bool
    noShowCount: int


@router.get("/me", response_model=PenaltyStatusResponse)
async def get_my_penalty(
    user: User = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
) -> PenaltyStatusResponse:
    snapshot = await PenaltyService(db).get_penalty_status(user.id)
    return PenaltyStatusResponse(
        penaltyId=snapshot.penalty_id,
        noShowCount=snapshot.no_show_count,
        isSuspended=snapshot.is_suspended,
        suspendedUntil=snapshot.suspended_until,
        tier=snapshot.tier,
        activeOffense=OffenseResponse.from_model(snapshot.active_offense) if snapshot.active_offense else None,
    )


@router.post("/offenses/{offense_id}/acknowledge", response_model=OffenseResponse)
async def acknowledge_offense(
    offense_id: UUID,
    user: User = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
) -> OffenseResponse:
    result = await PenaltyService(db).acknowledge_offense(user.id, offense_id)
    if isinstance(result, Err):
        await db.rollback()
        raise_for_err(result)
    await db.commit()
    return OffenseResponse.from_model(result.value)


@router.post("/lift", response_model=LiftResponse)
async def lift_suspension(
    user: User = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
    locale: str = Depends(request_locale),
) -> LiftResponse:
    """Spend points to end the active suspension immediately."""

    result = await PenaltyService(db).lift_suspension_with_points(user.id)
    if isinstance(result, Err):
        await db.rollback()
        raise_for_err(result)
    await db.commit()
    outcome = result.value
    return LiftResponse(
        success=True,
        message=render_message("penalty_lifted", locale, points_spent=outcome.points_spent),
        pointsSpent=outcome.points_spent,
        balance=outcome.new_balance,
    )


@router.post(
    "/{penalty_id}/forgiveness",
    response_model=ForgivenessCreateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def request_forgiveness(
    penalty_id: UUID,
    payload: ForgivenessCreateRequest,
    user: User = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
) -> ForgivenessCreateResponse:
    result = await ForgivenessService(db).request_forgiveness(penalty_id, user.id, payload.message)
    if isinstance(result, Err):
        await db.rollback()
        raise_for_err(result)
    await db.commit()
    request = result.value
    return ForgivenessCreateResponse(requestId=request.id, status=ForgivenessStatus(request.status).value, expiresAt=request.expires_at)


@router.post("/users/{user_id}/reset", response_model=ResetResponse)
async def reset_penalty(
    user_id: UUID,
    _: User = Depends(require_admin_user),
    db: AsyncSession = Depends(get_session),
) -> ResetResponse:
    penalty = await PenaltyService(db).reset_penalty(user_id)
    if penalty is None:
        raise_for_err(err(ErrorKind.NOT_FOUND, "penalty_not_found", user_id=str(user_id)))
    await db.commit()
    return ResetResponse(success=True, noShowCount=penalty.no_show_count)
