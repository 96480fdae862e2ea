"""Partner inbox for forgiveness requests."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from smartpick_api.api.dependencies.session import require_partner_user
from smartpick_api.api.errors import raise_for_err
from smartpick_api.db.session import get_session
from smartpick_api.models.penalty import ForgivenessRequest, ForgivenessStatus
from smartpick_api.models.user import User
from smartpick_api.services.forgiveness import ForgivenessService
from smartpick_api.services.reservations import ReservationService
from smartpick_api.services.results import Err, ErrorKind, err


router = APIRouter(prefix="/forgiveness", tags=["Forgiveness"])


class ForgivenessRequestResponse(BaseModel):
    id: UUID
    penaltyId: UUID
    offenseId: UUID
    userId: UUID
    message: str
    status: str
    requestedAt: datetime
    expiresAt: datetime

    @classmethod
    def from_model(cls, request: ForgivenessRequest) -> "ForgivenessRequestResponse":
        return cls(
            id=request.id,
            penaltyId=request.penalty_id,
            offenseId=request.offense_id,
            userId=request.user_id,
            message=request.message,
            status=ForgivenessStatus(request.status).value,
            requestedAt=request.requested_at,
            expiresAt=request.expires_at,
        )


class ForgivenessResolveRequest(BaseModel):
    granted: bool
    message: Optional[str] = Field(None, max_length=2000)


class ForgivenessResolveResponse(BaseModel):
    success: bool
    granted: bool
    alreadyResolved: bool
    status: str
    noShowCount: Optional[int] = None


@router.get("/pending", response_model=List[ForgivenessRequestResponse])
async def list_pending_requests(
    partner_user: User = Depends(require_partner_user),
    db: AsyncSession = Depends(get_session),
) -> List[ForgivenessRequestResponse]:
    partner = await ReservationService(db).partner_for_user(partner_user.id)
    if partner is None:
        raise_for_err(err(ErrorKind.FORBIDDEN, "partner_required"))
    requests = await ForgivenessService(db).list_pending_for_partner(partner.id)
    return [ForgivenessRequestResponse.from_model(request) for request in requests]


@router.post("/{request_id}/resolve", response_model=ForgivenessResolveResponse)
async def resolve_request(
    request_id: UUID,
    payload: ForgivenessResolveRequest,
    resolver: User = Depends(require_partner_user),
    db: AsyncSession = Depends(get_session),
) -> ForgivenessResolveResponse:
    """Grant or deny; resolving an already-resolved request reports its final state."""

    result = await ForgivenessService(db).resolve_forgiveness(
        request_id,
        resolver,
        granted=payload.granted,
        message=payload.message,
    )
    if isinstance(result, Err):
        if result.persist:
            await db.commit()
        else:
            await db.rollback()
        raise_for_err(result)
    await db.commit()
    outcome = result.value
    return ForgivenessResolveResponse(
        success=True,
        granted=outcome.granted,
        alreadyResolved=outcome.already_resolved,
        status=ForgivenessStatus(outcome.request.status).value,
        noShowCount=outcome.penalty.no_show_count if outcome.penalty is not None else None,
    )
