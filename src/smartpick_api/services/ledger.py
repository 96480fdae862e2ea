"""Authoritative points balances and the append-only transaction log."""

from __future__ import annotations

import base64
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Sequence, Tuple
from uuid import UUID, uuid4

from loguru import logger
from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from smartpick_api.core.clock import BusinessClock, get_clock
from smartpick_api.models.points import AccountOwnerType, LedgerReason, LedgerTransaction, PointsAccount
from smartpick_api.observability.engine import get_engine_store
from smartpick_api.services.results import ErrorKind, Ok, Result, err


@dataclass
class TransactionResult:
    transaction_id: UUID
    account_id: UUID
    delta: int
    reason: LedgerReason
    new_balance: int


@dataclass
class ReconciliationReport:
    account_id: UUID
    balance: int
    ledger_sum: int
    transaction_count: int

    @property
    def drift(self) -> int:
        return self.balance - self.ledger_sum


class LedgerService:
    """Apply balance mutations under an exclusive lock on the account row.

    Every mutation locks the account, validates the resulting balance, appends exactly one
    ``LedgerTransaction`` and updates the materialized balance inside the caller's
    transaction. The caller owns the commit.
    """

    def __init__(self, db_session: AsyncSession, *, clock: BusinessClock | None = None) -> None:
        self._db = db_session
        self._clock = clock or get_clock()
        self._observability = get_engine_store()

    async def get_account(self, owner_type: AccountOwnerType, owner_id: UUID) -> PointsAccount | None:
        stmt = select(PointsAccount).where(
            PointsAccount.owner_type == owner_type,
            PointsAccount.owner_id == owner_id,
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def ensure_account(self, owner_type: AccountOwnerType, owner_id: UUID) -> PointsAccount:
        """Fetch or create the account for an owner; safe under concurrent creation."""

        account = await self.get_account(owner_type, owner_id)
        if account is not None:
            return account

        account = PointsAccount(id=uuid4(), owner_type=owner_type, owner_id=owner_id, balance=0)
        try:
            async with self._db.begin_nested():
                self._db.add(account)
        except IntegrityError:
            self._observability.record_race_lost("ledger.ensure_account")
            logger.warning("Detected race when creating points account", owner_type=owner_type.value, owner_id=str(owner_id))
            existing = await self.get_account(owner_type, owner_id)
            if existing is None:
                raise
            return existing

        logger.info("Created points account", owner_type=owner_type.value, owner_id=str(owner_id), account_id=str(account.id))
        return account

    async def lock_account(self, account_id: UUID) -> PointsAccount | None:
        stmt = (
            select(PointsAccount)
            .where(PointsAccount.id == account_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_balance(self, account_id: UUID) -> Result[int]:
        account = await self._db.get(PointsAccount, account_id, populate_existing=True)
        if account is None:
            return err(ErrorKind.NOT_FOUND, "account_not_found", account_id=str(account_id))
        return Ok(account.balance)

    async def apply_transaction(
        self,
        account_id: UUID,
        delta: int,
        reason: LedgerReason | str,
        *,
        metadata: dict[str, Any] | None = None,
        reservation_id: UUID | None = None,
    ) -> Result[TransactionResult]:
        """Atomically apply ``delta`` to the account balance and log it."""

        reason = LedgerReason(reason)
        if delta == 0:
            return err(ErrorKind.VALIDATION, "zero_delta")

        account = await self.lock_account(account_id)
        if account is None:
            return err(ErrorKind.NOT_FOUND, "account_not_found", account_id=str(account_id))

        new_balance = account.balance + delta
        if new_balance < 0:
            self._observability.record_rejection(ErrorKind.INSUFFICIENT_BALANCE.value)
            logger.info(
                "Rejected points transaction for insufficient balance",
                account_id=str(account_id),
                balance=account.balance,
                delta=delta,
                reason=reason.value,
            )
            return err(
                ErrorKind.INSUFFICIENT_BALANCE,
                "insufficient_balance",
                balance=account.balance,
                required=-delta,
                shortfall=-new_balance,
            )

        now = self._clock.now()
        transaction = LedgerTransaction(
            id=uuid4(),
            account_id=account.id,
            delta=delta,
            reason=reason,
            reservation_id=reservation_id,
            balance_after=new_balance,
            metadata_json=metadata or {},
            created_at=now,
        )
        self._db.add(transaction)
        account.balance = new_balance
        account.updated_at = now
        await self._db.flush()

        self._observability.record_ledger_transaction(reason.value, delta)
        logger.info(
            "Applied points transaction",
            account_id=str(account_id),
            transaction_id=str(transaction.id),
            delta=delta,
            reason=reason.value,
            balance=new_balance,
        )
        return Ok(
            TransactionResult(
                transaction_id=transaction.id,
                account_id=account.id,
                delta=delta,
                reason=reason,
                new_balance=new_balance,
            )
        )

    async def list_transactions(
        self,
        account_id: UUID,
        *,
        limit: int = 50,
        cursor: Tuple[datetime, UUID] | None = None,
        reasons: Sequence[LedgerReason] | None = None,
    ) -> Tuple[list[LedgerTransaction], Tuple[datetime, UUID] | None]:
        """Return transactions newest first with a keyset cursor for the next page."""

        stmt = select(LedgerTransaction).where(LedgerTransaction.account_id == account_id)
        if reasons:
            stmt = stmt.where(LedgerTransaction.reason.in_(list(reasons)))
        if cursor:
            cursor_time, cursor_id = cursor
            stmt = stmt.where(
                or_(
                    LedgerTransaction.created_at < cursor_time,
                    and_(
                        LedgerTransaction.created_at == cursor_time,
                        LedgerTransaction.id < cursor_id,
                    ),
                )
            )
        stmt = stmt.order_by(LedgerTransaction.created_at.desc(), LedgerTransaction.id.desc()).limit(limit + 1)

        result = await self._db.execute(stmt)
        rows = list(result.scalars().all())
        next_cursor: Tuple[datetime, UUID] | None = None
        if len(rows) > limit:
            rows = rows[:limit]
            tail = rows[-1]
            next_cursor = (tail.created_at, tail.id)
        return rows, next_cursor

    async def reconcile(self, account_id: UUID) -> Result[ReconciliationReport]:
        """Compare the materialized balance against the sum of its transactions."""

        account = await self._db.get(PointsAccount, account_id, populate_existing=True)
        if account is None:
            return err(ErrorKind.NOT_FOUND, "account_not_found", account_id=str(account_id))

        stmt = select(
            func.coalesce(func.sum(LedgerTransaction.delta), 0),
            func.count(LedgerTransaction.id),
        ).where(LedgerTransaction.account_id == account_id)
        ledger_sum, count = (await self._db.execute(stmt)).one()
        report = ReconciliationReport(
            account_id=account_id,
            balance=account.balance,
            ledger_sum=int(ledger_sum),
            transaction_count=int(count),
        )
        if report.drift:
            logger.error("Points account drifted from its ledger", account_id=str(account_id), drift=report.drift)
        return Ok(report)


def encode_time_uuid_cursor(timestamp: datetime, identifier: UUID) -> str:
    """Encode pagination cursor for chronological queries."""

    payload = f"{timestamp.isoformat()}|{identifier}".encode("utf-8")
    return base64.urlsafe_b64encode(payload).decode("utf-8")


def decode_time_uuid_cursor(cursor: str) -> Tuple[datetime, UUID]:
    """Decode pagination cursor into datetime and UUID parts."""

    raw = base64.urlsafe_b64decode(cursor.encode("utf-8")).decode("utf-8")
    timestamp_str, identifier_str = raw.split("|", 1)
    return datetime.fromisoformat(timestamp_str), UUID(identifier_str)


__all__ = [
    "LedgerService",
    "ReconciliationReport",
    "TransactionResult",
    "decode_time_uuid_cursor",
    "encode_time_uuid_cursor",
]
