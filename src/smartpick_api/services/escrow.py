"""Escrow holds backing active reservations."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from uuid import UUID, uuid4

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from smartpick_api.core.clock import BusinessClock, get_clock
from smartpick_api.models.escrow import EscrowHold, EscrowHoldStatus
from smartpick_api.models.points import LedgerReason
from smartpick_api.observability.engine import get_engine_store
from smartpick_api.services.ledger import LedgerService
from smartpick_api.services.results import Err, ErrorKind, Ok, Result, err


@dataclass
class HoldResolution:
    hold: EscrowHold
    already_resolved: bool
    new_balance: int | None = None


class EscrowService:
    """Open, release and capture holds. Resolution is terminal and idempotent."""

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        ledger: LedgerService | None = None,
        clock: BusinessClock | None = None,
    ) -> None:
        self._db = db_session
        self._clock = clock or get_clock()
        self._ledger = ledger or LedgerService(db_session, clock=self._clock)
        self._observability = get_engine_store()

    async def open_hold(
        self,
        reservation_id: UUID,
        customer_account_id: UUID,
        points: int,
        *,
        metadata: dict[str, Any] | None = None,
    ) -> Result[EscrowHold]:
        """Debit the customer and park the points against ``reservation_id``."""

        if points <= 0:
            return err(ErrorKind.VALIDATION, "zero_delta")

        debit = await self._ledger.apply_transaction(
            customer_account_id,
            -points,
            LedgerReason.RESERVATION_PAYMENT,
            metadata={"reservation_id": str(reservation_id), **(metadata or {})},
            reservation_id=reservation_id,
        )
        if isinstance(debit, Err):
            return debit

        hold = EscrowHold(
            id=uuid4(),
            reservation_id=reservation_id,
            customer_account_id=customer_account_id,
            points=points,
            status=EscrowHoldStatus.OPEN,
            opened_at=self._clock.now(),
        )
        self._db.add(hold)
        await self._db.flush()
        logger.info(
            "Opened escrow hold",
            hold_id=str(hold.id),
            reservation_id=str(reservation_id),
            points=points,
        )
        return Ok(hold)

    async def get_hold_for_reservation(self, reservation_id: UUID) -> EscrowHold | None:
        stmt = select(EscrowHold).where(EscrowHold.reservation_id == reservation_id)
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def release_hold(self, hold_id: UUID) -> Result[HoldResolution]:
        """Refund the held points to the customer."""

        hold = await self._lock_hold(hold_id)
        if hold is None:
            return err(ErrorKind.NOT_FOUND, "hold_not_found", hold_id=str(hold_id))
        if hold.status != EscrowHoldStatus.OPEN:
            return Ok(self._already_resolved(hold, "release"))

        refund = await self._ledger.apply_transaction(
            hold.customer_account_id,
            hold.points,
            LedgerReason.REFUND,
            metadata={"hold_id": str(hold.id)},
            reservation_id=hold.reservation_id,
        )
        if isinstance(refund, Err):
            return refund

        hold.status = EscrowHoldStatus.RELEASED
        hold.resolved_at = self._clock.now()
        await self._db.flush()
        logger.info("Released escrow hold", hold_id=str(hold.id), reservation_id=str(hold.reservation_id), points=hold.points)
        return Ok(HoldResolution(hold=hold, already_resolved=False, new_balance=refund.value.new_balance))

    async def capture_hold(self, hold_id: UUID, partner_account_id: UUID) -> Result[HoldResolution]:
        """Transfer the held points to the partner."""

        hold = await self._lock_hold(hold_id)
        if hold is None:
            return err(ErrorKind.NOT_FOUND, "hold_not_found", hold_id=str(hold_id))
        if hold.status != EscrowHoldStatus.OPEN:
            return Ok(self._already_resolved(hold, "capture"))

        transfer = await self._ledger.apply_transaction(
            partner_account_id,
            hold.points,
            LedgerReason.PICKUP_TRANSFER,
            metadata={"hold_id": str(hold.id)},
            reservation_id=hold.reservation_id,
        )
        if isinstance(transfer, Err):
            return transfer

        hold.status = EscrowHoldStatus.CAPTURED
        hold.partner_account_id = partner_account_id
        hold.resolved_at = self._clock.now()
        await self._db.flush()
        logger.info(
            "Captured escrow hold",
            hold_id=str(hold.id),
            reservation_id=str(hold.reservation_id),
            partner_account_id=str(partner_account_id),
            points=hold.points,
        )
        return Ok(HoldResolution(hold=hold, already_resolved=False, new_balance=transfer.value.new_balance))

    async def _lock_hold(self, hold_id: UUID) -> EscrowHold | None:
        stmt = (
            select(EscrowHold)
            .where(EscrowHold.id == hold_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    def _already_resolved(self, hold: EscrowHold, attempted: str) -> HoldResolution:
        self._observability.record_idempotent_outcome(f"escrow.{attempted}.already_resolved")
        logger.info(
            "Escrow hold already resolved",
            hold_id=str(hold.id),
            status=hold.status.value,
            attempted=attempted,
        )
        return HoldResolution(hold=hold, already_resolved=True)


__all__ = ["EscrowService", "HoldResolution"]
