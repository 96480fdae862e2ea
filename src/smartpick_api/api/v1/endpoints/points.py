"""Points balance, transaction history and administrative adjustments."""

from __future__ import annotations

import binascii
from datetime import datetime
from typing import Any, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from smartpick_api.api.dependencies.security import require_internal_api_key
from smartpick_api.api.dependencies.session import require_admin_user, require_session_user
from smartpick_api.api.errors import raise_for_err
from smartpick_api.db.session import get_session
from smartpick_api.models.partner import Partner
from smartpick_api.models.points import AccountOwnerType, LedgerReason, PointsAccount
from smartpick_api.models.user import User, UserRoleEnum
from smartpick_api.services.ledger import LedgerService, decode_time_uuid_cursor, encode_time_uuid_cursor
from smartpick_api.services.results import Err


router = APIRouter(prefix="/points", tags=["Points"])


class BalanceResponse(BaseModel):
    accountId: UUID
    ownerType: str
    balance: int


class TransactionResponse(BaseModel):
    id: UUID
    delta: int
    reason: str
    balanceAfter: int
    reservationId: Optional[UUID]
    metadata: dict[str, Any] = Field(default_factory=dict)
    createdAt: datetime


class TransactionWindowResponse(BaseModel):
    transactions: List[TransactionResponse]
    nextCursor: Optional[str]


class AdjustmentRequest(BaseModel):
    ownerType: AccountOwnerType = AccountOwnerType.CUSTOMER
    ownerId: UUID
    delta: int = Field(..., description="Signed points change; must not be zero")
    note: Optional[str] = Field(None, max_length=500)


class AdjustmentResponse(BaseModel):
    transactionId: UUID
    accountId: UUID
    delta: int
    balance: int


class ReconciliationResponse(BaseModel):
    accountId: UUID
    balance: int
    ledgerSum: int
    transactionCount: int
    drift: int


async def _caller_account(db: AsyncSession, ledger: LedgerService, user: User) -> PointsAccount:
    if user.role == UserRoleEnum.PARTNER:
        partner = (await db.execute(select(Partner).where(Partner.user_id == user.id))).scalar_one_or_none()
        if partner is not None:
            return await ledger.ensure_account(AccountOwnerType.PARTNER, partner.id)
    return await ledger.ensure_account(AccountOwnerType.CUSTOMER, user.id)


@router.get("/balance", response_model=BalanceResponse)
async def get_balance(
    user: User = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
) -> BalanceResponse:
    """Balance of the caller's customer account, or the partner account for partners."""

    ledger = LedgerService(db)
    account = await _caller_account(db, ledger, user)
    await db.commit()
    return BalanceResponse(accountId=account.id, ownerType=AccountOwnerType(account.owner_type).value, balance=account.balance)


@router.get("/transactions", response_model=TransactionWindowResponse)
async def list_transactions(
    limit: int = Query(50, ge=1, le=200),
    cursor: Optional[str] = Query(None),
    reason: Optional[List[LedgerReason]] = Query(None),
    user: User = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
) -> TransactionWindowResponse:
    decoded = None
    if cursor:
        try:
            decoded = decode_time_uuid_cursor(cursor)
        except (ValueError, binascii.Error) as error:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid cursor") from error

    ledger = LedgerService(db)
    account = await _caller_account(db, ledger, user)
    await db.commit()
    rows, next_cursor = await ledger.list_transactions(account.id, limit=limit, cursor=decoded, reasons=reason)
    return TransactionWindowResponse(
        transactions=[
            TransactionResponse(
                id=row.id,
                delta=row.delta,
                reason=LedgerReason(row.reason).value,
                balanceAfter=row.balance_after,
                reservationId=row.reservation_id,
                metadata=dict(row.metadata_json or {}),
                createdAt=row.created_at,
            )
            for row in rows
        ],
        nextCursor=encode_time_uuid_cursor(*next_cursor) if next_cursor else None,
    )


@router.post(
    "/adjustments",
    response_model=AdjustmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_adjustment(
    payload: AdjustmentRequest,
    admin: User = Depends(require_admin_user),
    db: AsyncSession = Depends(get_session),
) -> AdjustmentResponse:
    """Apply an ``admin-adjustment`` to any account; never drives a balance below zero."""

    ledger = LedgerService(db)
    account = await ledger.ensure_account(payload.ownerType, payload.ownerId)
    result = await ledger.apply_transaction(
        account.id,
        payload.delta,
        LedgerReason.ADMIN_ADJUSTMENT,
        metadata={"note": payload.note, "actor_id": str(admin.id)},
    )
    if isinstance(result, Err):
        await db.rollback()
        raise_for_err(result)
    await db.commit()
    transaction = result.value
    return AdjustmentResponse(
        transactionId=transaction.transaction_id,
        accountId=transaction.account_id,
        delta=transaction.delta,
        balance=transaction.new_balance,
    )


@router.get(
    "/accounts/{account_id}/reconciliation",
    response_model=ReconciliationResponse,
    dependencies=[Depends(require_internal_api_key)],
)
async def reconcile_account(
    account_id: UUID,
    db: AsyncSession = Depends(get_session),
) -> ReconciliationResponse:
    result = await LedgerService(db).reconcile(account_id)
    if isinstance(result, Err):
        raise_for_err(result)
    report = result.value
    return ReconciliationResponse(
        accountId=report.account_id,
        balance=report.balance,
        ledgerSum=report.ledger_sum,
        transactionCount=report.transaction_count,
        drift=report.drift,
    )
