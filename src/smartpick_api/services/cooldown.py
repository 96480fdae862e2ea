"""Short-window cancellation cooldown with a once-per-day paid lift."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID, uuid4

from loguru import logger
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from smartpick_api.core.clock import BusinessClock, ensure_aware, get_clock
from smartpick_api.core.settings import settings
from smartpick_api.models.cooldown import CancellationEvent, CooldownLift
from smartpick_api.models.points import AccountOwnerType, LedgerReason
from smartpick_api.observability.engine import get_engine_store
from smartpick_api.services.ledger import LedgerService
from smartpick_api.services.results import Err, ErrorKind, Ok, Result, err


@dataclass
class CooldownStatus:
    in_cooldown: bool
    count: int
    threshold: int
    unlock_at: datetime | None
    lifted_today: bool


@dataclass
class CooldownLiftOutcome:
    success: bool
    message_key: str
    points_spent: int
    already_lifted: bool = False
    new_balance: int | None = None


class CooldownService:
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
        self._window = timedelta(minutes=settings.cooldown_window_minutes)
        self._duration = timedelta(minutes=settings.cooldown_duration_minutes)
        self._threshold = settings.cooldown_threshold
        self._lift_cost = settings.cooldown_lift_cost_points
        self._observability = get_engine_store()

    async def record_cancellation(
        self,
        user_id: UUID,
        *,
        reservation_id: UUID | None = None,
        at: datetime | None = None,
    ) -> CancellationEvent:
        event = CancellationEvent(
            id=uuid4(),
            user_id=user_id,
            reservation_id=reservation_id,
            cancelled_at=at or self._clock.now(),
        )
        self._db.add(event)
        await self._db.flush()
        return event

    async def get_cooldown_status(self, user_id: UUID) -> CooldownStatus:
        """Count cancellations in the rolling window that happened after the last lift."""

        now = self._clock.now()
        since = now - self._window
        last_lift = await self._latest_lift_at(user_id)
        if last_lift is not None and last_lift > since:
            since = last_lift

        stmt = (
            select(CancellationEvent.cancelled_at)
            .where(
                CancellationEvent.user_id == user_id,
                CancellationEvent.cancelled_at > since,
                CancellationEvent.cancelled_at <= now,
            )
            .order_by(CancellationEvent.cancelled_at.asc())
        )
        timestamps = [ensure_aware(value) for value in (await self._db.execute(stmt)).scalars().all()]
        count = len(timestamps)

        unlock_at: datetime | None = None
        in_cooldown = False
        if count >= self._threshold:
            unlock_at = timestamps[0] + self._duration
            in_cooldown = now < unlock_at

        return CooldownStatus(
            in_cooldown=in_cooldown,
            count=count,
            threshold=self._threshold,
            unlock_at=unlock_at if in_cooldown else None,
            lifted_today=await self._lift_exists(user_id, self._clock.local_date(now)),
        )

    async def lift_cooldown_with_points(self, user_id: UUID) -> Result[CooldownLiftOutcome]:
        """Spend points to clear the cooldown; at most one lift per business-local day."""

        now = self._clock.now()
        today = self._clock.local_date(now)

        account = await self._ledger.ensure_account(AccountOwnerType.CUSTOMER, user_id)
        account = await self._ledger.lock_account(account.id)

        if await self._lift_exists(user_id, today):
            return Ok(self._already_lifted(user_id, "cooldown.lift.already_lifted"))

        status = await self.get_cooldown_status(user_id)
        if not status.in_cooldown:
            return Ok(CooldownLiftOutcome(success=False, message_key="cooldown_not_needed", points_spent=0))

        if account.balance < self._lift_cost:
            return err(
                ErrorKind.INSUFFICIENT_BALANCE,
                "insufficient_balance",
                balance=account.balance,
                required=self._lift_cost,
                shortfall=self._lift_cost - account.balance,
            )

        lift = CooldownLift(id=uuid4(), user_id=user_id, lift_date=today, points_spent=self._lift_cost, lifted_at=now)
        try:
            async with self._db.begin_nested():
                self._db.add(lift)
        except IntegrityError:
            self._observability.record_race_lost("cooldown.lift")
            return Ok(self._already_lifted(user_id, "cooldown.lift.race_lost"))

        debit = await self._ledger.apply_transaction(
            account.id,
            -self._lift_cost,
            LedgerReason.COOLDOWN_LIFT,
            metadata={"lift_date": today.isoformat()},
        )
        if isinstance(debit, Err):
            await self._db.delete(lift)
            await self._db.flush()
            return debit

        logger.info("Cooldown lifted with points", user_id=str(user_id), lift_date=today.isoformat(), points_spent=self._lift_cost)
        return Ok(
            CooldownLiftOutcome(
                success=True,
                message_key="cooldown_lifted",
                points_spent=self._lift_cost,
                new_balance=debit.value.new_balance,
            )
        )

    async def reset_cooldown(self, user_id: UUID) -> int:
        """Administrative reset: drop the cancellations inside the current window."""

        now = self._clock.now()
        stmt = delete(CancellationEvent).where(
            CancellationEvent.user_id == user_id,
            CancellationEvent.cancelled_at > now - self._window,
        )
        result = await self._db.execute(stmt)
        logger.warning("Cooldown reset by administrator", user_id=str(user_id), cleared=result.rowcount)
        return int(result.rowcount or 0)

    async def _lift_exists(self, user_id: UUID, day) -> bool:
        stmt = select(CooldownLift.id).where(CooldownLift.user_id == user_id, CooldownLift.lift_date == day)
        return (await self._db.execute(stmt)).first() is not None

    async def _latest_lift_at(self, user_id: UUID) -> datetime | None:
        stmt = select(func.max(CooldownLift.lifted_at)).where(CooldownLift.user_id == user_id)
        value = (await self._db.execute(stmt)).scalar_one_or_none()
        return ensure_aware(value) if value is not None else None

    def _already_lifted(self, user_id: UUID, outcome: str) -> CooldownLiftOutcome:
        self._observability.record_idempotent_outcome(outcome)
        logger.info("Cooldown already lifted today", user_id=str(user_id))
        return CooldownLiftOutcome(
            success=False,
            message_key="cooldown_already_lifted",
            points_spent=0,
            already_lifted=True,
        )


__all__ = ["CooldownLiftOutcome", "CooldownService", "CooldownStatus"]
