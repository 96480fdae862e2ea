"""Escalating no-show penalties."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Sequence
from uuid import UUID, uuid4

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from smartpick_api.core.clock import BusinessClock, ensure_aware, get_clock
from smartpick_api.core.settings import PenaltyTier, settings
from smartpick_api.models.penalty import Penalty, PenaltyOffense
from smartpick_api.models.points import AccountOwnerType, LedgerReason
from smartpick_api.observability.engine import get_engine_store
from smartpick_api.services.ledger import LedgerService
from smartpick_api.services.results import Err, ErrorKind, Ok, Result, err


@dataclass
class NoShowOutcome:
    penalty_id: UUID
    offense_id: UUID
    offense_number: int
    tier: str
    suspended_until: datetime | None
    lift_cost_points: int | None


@dataclass
class PenaltyStatus:
    penalty_id: UUID | None
    no_show_count: int
    suspended_until: datetime | None
    is_suspended: bool
    tier: str | None
    active_offense: PenaltyOffense | None


@dataclass
class SuspensionLiftOutcome:
    offense_id: UUID
    points_spent: int
    new_balance: int


def resolve_tier(count: int, tiers: Sequence[PenaltyTier]) -> PenaltyTier | None:
    """Map a no-show count to the highest tier whose ``offense`` does not exceed it."""

    matched: PenaltyTier | None = None
    for tier in tiers:
        if tier.offense <= count:
            matched = tier
    return matched


class PenaltyService:
    def __init__(
        self,
        db_session: AsyncSession,
        *,
        ledger: LedgerService | None = None,
        clock: BusinessClock | None = None,
        tiers: Sequence[PenaltyTier] | None = None,
    ) -> None:
        self._db = db_session
        self._clock = clock or get_clock()
        self._ledger = ledger or LedgerService(db_session, clock=self._clock)
        self._tiers = sorted(tiers or settings.penalty_tiers, key=lambda tier: tier.offense)
        self._observability = get_engine_store()

    async def get_penalty(self, user_id: UUID) -> Penalty | None:
        stmt = select(Penalty).where(Penalty.user_id == user_id)
        result = await self._db.execute(stmt.execution_options(populate_existing=True))
        return result.scalar_one_or_none()

    async def lock_penalty(self, penalty_id: UUID) -> Penalty | None:
        stmt = (
            select(Penalty)
            .where(Penalty.id == penalty_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def _lock_user_penalty(self, user_id: UUID) -> Penalty | None:
        stmt = (
            select(Penalty)
            .where(Penalty.user_id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def _lock_or_create_penalty(self, user_id: UUID) -> Penalty:
        penalty = await self._lock_user_penalty(user_id)
        if penalty is not None:
            return penalty

        penalty = Penalty(id=uuid4(), user_id=user_id, no_show_count=0)
        try:
            async with self._db.begin_nested():
                self._db.add(penalty)
        except IntegrityError:
            self._observability.record_race_lost("penalty.create")
            logger.warning("Detected race when creating penalty record", user_id=str(user_id))
            existing = await self._lock_user_penalty(user_id)
            if existing is None:
                raise
            return existing
        return penalty

    async def record_no_show(
        self,
        user_id: UUID,
        *,
        reservation_id: UUID | None = None,
        partner_id: UUID | None = None,
    ) -> Result[NoShowOutcome]:
        """Increment the user's no-show count and apply the matching suspension tier."""

        now = self._clock.now()
        penalty = await self._lock_or_create_penalty(user_id)
        penalty.no_show_count = (penalty.no_show_count or 0) + 1
        tier = resolve_tier(penalty.no_show_count, self._tiers)
        tier_name = tier.name if tier else "none"

        offense_until: datetime | None = None
        if tier is not None and tier.suspension_minutes > 0:
            offense_until = now + timedelta(minutes=tier.suspension_minutes)
            current = ensure_aware(penalty.suspended_until) if penalty.suspended_until else None
            if current is None or current < offense_until:
                penalty.suspended_until = offense_until
        penalty.last_offense_at = now
        penalty.updated_at = now

        offense = PenaltyOffense(
            id=uuid4(),
            penalty_id=penalty.id,
            user_id=user_id,
            reservation_id=reservation_id,
            partner_id=partner_id,
            offense_number=penalty.no_show_count,
            tier=tier_name,
            suspended_until=offense_until,
            lift_cost_points=tier.lift_cost_points if tier and offense_until else None,
            created_at=now,
        )
        self._db.add(offense)
        await self._db.flush()

        logger.info(
            "Recorded no-show",
            user_id=str(user_id),
            reservation_id=str(reservation_id) if reservation_id else None,
            offense_number=offense.offense_number,
            tier=tier_name,
            suspended_until=offense_until.isoformat() if offense_until else None,
        )
        return Ok(
            NoShowOutcome(
                penalty_id=penalty.id,
                offense_id=offense.id,
                offense_number=offense.offense_number,
                tier=tier_name,
                suspended_until=offense_until,
                lift_cost_points=offense.lift_cost_points,
            )
        )

    async def is_suspended(self, user_id: UUID, *, now: datetime | None = None) -> bool:
        penalty = await self.get_penalty(user_id)
        return self._suspension_active(penalty, now or self._clock.now())

    async def get_penalty_status(self, user_id: UUID) -> PenaltyStatus:
        now = self._clock.now()
        penalty = await self.get_penalty(user_id)
        if penalty is None:
            return PenaltyStatus(
                penalty_id=None,
                no_show_count=0,
                suspended_until=None,
                is_suspended=False,
                tier=None,
                active_offense=None,
            )

        suspended = self._suspension_active(penalty, now)
        tier = resolve_tier(penalty.no_show_count, self._tiers)
        return PenaltyStatus(
            penalty_id=penalty.id,
            no_show_count=penalty.no_show_count,
            suspended_until=ensure_aware(penalty.suspended_until) if suspended else None,
            is_suspended=suspended,
            tier=tier.name if tier else None,
            active_offense=await self._active_offense(penalty.id, now) if suspended else None,
        )

    async def latest_open_offense(self, penalty_id: UUID) -> PenaltyOffense | None:
        """Most recent offense that was neither forgiven nor lifted."""

        stmt = (
            select(PenaltyOffense)
            .where(
                PenaltyOffense.penalty_id == penalty_id,
                PenaltyOffense.forgiven_at.is_(None),
            )
            .order_by(PenaltyOffense.created_at.desc(), PenaltyOffense.offense_number.desc())
            .limit(1)
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def acknowledge_offense(self, user_id: UUID, offense_id: UUID) -> Result[PenaltyOffense]:
        offense = await self._db.get(PenaltyOffense, offense_id)
        if offense is None or offense.user_id != user_id:
            return err(ErrorKind.NOT_FOUND, "offense_not_found", offense_id=str(offense_id))
        if offense.acknowledged_at is None:
            offense.acknowledged_at = self._clock.now()
            await self._db.flush()
        return Ok(offense)

    async def lift_suspension_with_points(self, user_id: UUID) -> Result[SuspensionLiftOutcome]:
        """Pay the active offense's lift cost to end the suspension early."""

        now = self._clock.now()
        account = await self._ledger.ensure_account(AccountOwnerType.CUSTOMER, user_id)
        await self._ledger.lock_account(account.id)

        penalty = await self._lock_user_penalty(user_id)
        if penalty is None or not self._suspension_active(penalty, now):
            return err(ErrorKind.VALIDATION, "no_active_suspension")

        offense = await self._active_offense(penalty.id, now)
        if offense is None or not offense.lift_cost_points:
            return err(ErrorKind.VALIDATION, "suspension_not_liftable")

        cost = int(offense.lift_cost_points)
        debit = await self._ledger.apply_transaction(
            account.id,
            -cost,
            LedgerReason.PENALTY_LIFT,
            metadata={"offense_id": str(offense.id), "offense_number": offense.offense_number},
        )
        if isinstance(debit, Err):
            return debit

        penalty.suspended_until = None
        penalty.updated_at = now
        offense.lifted_at = now
        await self._db.flush()
        logger.info("Lifted suspension with points", user_id=str(user_id), offense_id=str(offense.id), points_spent=cost)
        return Ok(SuspensionLiftOutcome(offense_id=offense.id, points_spent=cost, new_balance=debit.value.new_balance))

    async def forgive_offense(self, penalty: Penalty, offense: PenaltyOffense) -> Penalty:
        """Reverse one offense: decrement the count and clear any active suspension.

        ``penalty`` must already be locked by the caller.
        """

        now = self._clock.now()
        penalty.no_show_count = max((penalty.no_show_count or 0) - 1, 0)
        penalty.suspended_until = None
        penalty.updated_at = now
        offense.forgiven_at = now
        await self._db.flush()
        logger.info(
            "Forgave penalty offense",
            user_id=str(penalty.user_id),
            offense_id=str(offense.id),
            no_show_count=penalty.no_show_count,
        )
        return penalty

    async def reset_penalty(self, user_id: UUID) -> Penalty | None:
        """Administrative override clearing the count and suspension."""

        penalty = await self._lock_user_penalty(user_id)
        if penalty is None:
            return None
        penalty.no_show_count = 0
        penalty.suspended_until = None
        penalty.updated_at = self._clock.now()
        await self._db.flush()
        logger.warning("Penalty reset by administrator", user_id=str(user_id))
        return penalty

    async def _active_offense(self, penalty_id: UUID, now: datetime) -> PenaltyOffense | None:
        stmt = (
            select(PenaltyOffense)
            .where(
                PenaltyOffense.penalty_id == penalty_id,
                PenaltyOffense.suspended_until.is_not(None),
                PenaltyOffense.suspended_until > now,
                PenaltyOffense.lifted_at.is_(None),
                PenaltyOffense.forgiven_at.is_(None),
            )
            .order_by(PenaltyOffense.suspended_until.desc())
            .limit(1)
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    def _suspension_active(penalty: Penalty | None, now: datetime) -> bool:
        if penalty is None or penalty.suspended_until is None:
            return False
        return ensure_aware(penalty.suspended_until) > now


__all__ = [
    "NoShowOutcome",
    "PenaltyService",
    "PenaltyStatus",
    "SuspensionLiftOutcome",
    "resolve_tier",
]
