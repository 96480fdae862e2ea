from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from smartpick_api.api.dependencies.session import require_session_user
from smartpick_api.api.errors import raise_for_err
from smartpick_api.core.settings import settings
from smartpick_api.db.session import get_session
from smartpick_api.models.user import User
from smartpick_api.services.results import Err
from smartpick_api.services.slots import SlotService


router = APIRouter(prefix="/slots", tags=["Slots"])


class SlotStatusResponse(BaseModel):
    currentLimit: int
    maxLimit: int
    nextCost: Optional[int]


class SlotPurchaseResponse(BaseModel):
    success: bool
    newLimit: int
    pointsSpent: int
    balance: int
    nextCost: Optional[int]


@router.get("", response_model=SlotStatusResponse)
async def get_slot_status(user: User = Depends(require_session_user)) -> SlotStatusResponse:
    current = user.max_reservation_quantity or settings.default_reservation_quantity_limit
    return SlotStatusResponse(
        currentLimit=current,
        maxLimit=settings.max_reservation_quantity_limit,
        nextCost=SlotService.cost_for(current + 1),
    )


@router.post("/purchase", response_model=SlotPurchaseResponse)
async def purchase_slot(
    user: User = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
) -> SlotPurchaseResponse:
    result = await SlotService(db).purchase_slot(user.id)
    if isinstance(result, Err):
        await db.rollback()
        raise_for_err(result)
    await db.commit()
    purchase = result.value
    return SlotPurchaseResponse(
        success=True,
        newLimit=purchase.new_limit,
        pointsSpent=purchase.points_spent,
        balance=purchase.new_balance,
        nextCost=purchase.next_cost,
    )
