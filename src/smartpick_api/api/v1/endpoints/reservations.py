"""Reservation lifecycle endpoints for customers and partners."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from smartpick_api.api.dependencies.session import require_partner_user, require_session_user
from smartpick_api.api.errors import raise_for_err
from smartpick_api.db.session import get_session
from smartpick_api.models.reservation import Reservation, ReservationStatus
from smartpick_api.models.user import User, UserRoleEnum
from smartpick_api.services.reservations import ReservationService
from smartpick_api.services.results import Err, ErrorKind, err


router = APIRouter(prefix="/reservations", tags=["Reservations"])


class ReservationCreateRequest(BaseModel):
    offerId: UUID
    quantity: int = Field(1, description="Units to reserve")


class ReservationResponse(BaseModel):
    id: UUID
    customerId: UUID
    partnerId: UUID
    offerId: UUID
    status: str
    quantity: int
    pointsSpent: int
    totalPrice: Decimal
    qrCode: str
    expiresAt: datetime
    pickedUpAt: Optional[datetime]
    cancelledAt: Optional[datetime]
    createdAt: Optional[datetime]

    @classmethod
    def from_model(cls, reservation: Reservation) -> "ReservationResponse":
        return cls(
            id=reservation.id,
            customerId=reservation.customer_id,
            partnerId=reservation.partner_id,
            offerId=reservation.offer_id,
            status=ReservationStatus(reservation.status).value,
            quantity=reservation.quantity,
            pointsSpent=reservation.points_spent,
            totalPrice=Decimal(reservation.total_price),
            qrCode=reservation.qr_code,
            expiresAt=reservation.expires_at,
            pickedUpAt=reservation.picked_up_at,
            cancelledAt=reservation.cancelled_at,
            createdAt=reservation.created_at,
        )


class PickupRequest(BaseModel):
    qrCode: str = Field(..., min_length=1)


class PickupResponse(BaseModel):
    success: bool
    alreadyProcessed: bool
    reservation: ReservationResponse
    unlockedAchievements: List[str] = Field(default_factory=list)


class TransitionResponse(BaseModel):
    success: bool
    reservation: ReservationResponse
    pointsReleased: int
    suspendedUntil: Optional[datetime] = None


@router.post("", response_model=ReservationResponse, status_code=status.HTTP_201_CREATED)
async def create_reservation(
    payload: ReservationCreateRequest,
    user: User = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
) -> ReservationResponse:
    result = await ReservationService(db).create_reservation(user, payload.offerId, payload.quantity)
    if isinstance(result, Err):
        await db.rollback()
        raise_for_err(result)
    await db.commit()
    return ReservationResponse.from_model(result.value)


@router.get("/active", response_model=List[ReservationResponse])
async def list_active_reservations(
    user: User = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
) -> List[ReservationResponse]:
    reservations = await ReservationService(db).list_active_reservations(user.id)
    return [ReservationResponse.from_model(reservation) for reservation in reservations]


@router.get("/{reservation_id}", response_model=ReservationResponse)
async def get_reservation(
    reservation_id: UUID,
    user: User = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
) -> ReservationResponse:
    service = ReservationService(db)
    reservation = await service.get_reservation(reservation_id)
    if reservation is None:
        raise_for_err(err(ErrorKind.NOT_FOUND, "reservation_not_found"))
    if reservation.customer_id != user.id and user.role != UserRoleEnum.ADMIN:
        partner = await service.partner_for_user(user.id)
        if partner is None or partner.id != reservation.partner_id:
            raise_for_err(err(ErrorKind.FORBIDDEN, "not_reservation_owner"))
    return ReservationResponse.from_model(reservation)


@router.post("/confirm-pickup", response_model=PickupResponse)
async def confirm_pickup(
    payload: PickupRequest,
    partner_user: User = Depends(require_partner_user),
    db: AsyncSession = Depends(get_session),
) -> PickupResponse:
    """Scan a QR code at the counter; repeated scans report ``alreadyProcessed``."""

    result = await ReservationService(db).confirm_pickup(partner_user, payload.qrCode)
    if isinstance(result, Err):
        await db.rollback()
        raise_for_err(result)
    await db.commit()
    outcome = result.value
    return PickupResponse(
        success=True,
        alreadyProcessed=outcome.already_processed,
        reservation=ReservationResponse.from_model(outcome.reservation),
        unlockedAchievements=[unlock.achievement_id for unlock in outcome.unlocked],
    )


@router.post("/{reservation_id}/picked-up", response_model=PickupResponse)
async def mark_picked_up(
    reservation_id: UUID,
    partner_user: User = Depends(require_partner_user),
    db: AsyncSession = Depends(get_session),
) -> PickupResponse:
    result = await ReservationService(db).mark_picked_up(partner_user, reservation_id)
    if isinstance(result, Err):
        await db.rollback()
        raise_for_err(result)
    await db.commit()
    outcome = result.value
    return PickupResponse(
        success=True,
        alreadyProcessed=outcome.already_processed,
        reservation=ReservationResponse.from_model(outcome.reservation),
        unlockedAchievements=[unlock.achievement_id for unlock in outcome.unlocked],
    )


@router.post("/{reservation_id}/cancel", response_model=TransitionResponse)
async def cancel_reservation(
    reservation_id: UUID,
    user: User = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
) -> TransitionResponse:
    result = await ReservationService(db).cancel_reservation(user, reservation_id)
    if isinstance(result, Err):
        await db.rollback()
        raise_for_err(result)
    await db.commit()
    outcome = result.value
    return TransitionResponse(
        success=True,
        reservation=ReservationResponse.from_model(outcome.reservation),
        pointsReleased=outcome.hold.hold.points if outcome.hold else 0,
    )


@router.post("/{reservation_id}/no-show", response_model=TransitionResponse)
async def mark_no_show(
    reservation_id: UUID,
    partner_user: User = Depends(require_partner_user),
    db: AsyncSession = Depends(get_session),
) -> TransitionResponse:
    result = await ReservationService(db).mark_no_show(partner_user, reservation_id)
    if isinstance(result, Err):
        await db.rollback()
        raise_for_err(result)
    await db.commit()
    outcome = result.value
    return TransitionResponse(
        success=True,
        reservation=ReservationResponse.from_model(outcome.reservation),
        pointsReleased=outcome.hold.hold.points if outcome.hold else 0,
        suspendedUntil=outcome.no_show.suspended_until if outcome.no_show else None,
    )
