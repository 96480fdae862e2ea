from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from smartpick_api.core.clock import BusinessClock, get_clock
from smartpick_api.core.settings import settings
from smartpick_api.models.points import AccountOwnerType, LedgerReason
from smartpick_api.models.user import User
from smartpick_api.services.ledger import LedgerService
from smartpick_api.services.results import Err, ErrorKind, Ok, Result, err


@dataclass
class SlotPurchase:
    new_limit: int
    points_spent: int
    new_balance: int
    next_cost: int | None


class SlotService:
    """Progressively priced increases of a customer's per-reservation quantity limit."""

    def __init__(self, db_session: AsyncSession, *, ledger: LedgerService | None = None, clock: BusinessClock | None = None) -> None:
        self._db = db_session
        self._clock = clock or get_clock()
        self._ledger = ledger or LedgerService(db_session, clock=self._clock)

    @staticmethod
    def cost_for(slot: int) -> int | None:
        if slot > settings.max_reservation_quantity_limit:
            return None
        return settings.slot_unlock_costs.get(slot)

    async def purchase_slot(self, user_id: UUID) -> Result[SlotPurchase]:
        account = await self._ledger.ensure_account(AccountOwnerType.CUSTOMER, user_id)
        await self._ledger.lock_account(account.id)

        stmt = select(User).where(User.id == user_id).with_for_update().execution_options(populate_existing=True)
        user = (await self._db.execute(stmt)).scalar_one_or_none()
        if user is None:
            return err(ErrorKind.NOT_FOUND, "account_not_found", user_id=str(user_id))

        current = user.max_reservation_quantity or settings.default_reservation_quantity_limit
        target = current + 1
        cost = self.cost_for(target)
        if cost is None:
            return err(ErrorKind.LIMIT_REACHED, "slot_limit_reached", limit=current)

        debit = await self._ledger.apply_transaction(
            account.id,
            -cost,
            LedgerReason.SLOT_PURCHASE,
            metadata={"slot": target},
        )
        if isinstance(debit, Err):
            return debit

        user.max_reservation_quantity = target
        await self._db.flush()
        logger.info("Purchased reservation slot", user_id=str(user_id), new_limit=target, points_spent=cost)
        return Ok(
            SlotPurchase(
                new_limit=target,
                points_spent=cost,
                new_balance=debit.value.new_balance,
                next_cost=self.cost_for(target + 1),
            )
        )


__all__ = ["SlotPurchase", "SlotService"]
