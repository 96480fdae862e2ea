"""Achievement unlocks, reward claims and the activity stats behind them."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, Sequence
from uuid import UUID, uuid4

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from smartpick_api.core.clock import BusinessClock, get_clock
from smartpick_api.models.achievement import (
    AchievementDefinition,
    AchievementRequirementType,
    AchievementTier,
    UserAchievement,
    UserStats,
)
from smartpick_api.models.points import AccountOwnerType, LedgerReason
from smartpick_api.observability.engine import get_engine_store
from smartpick_api.services.ledger import LedgerService
from smartpick_api.services.results import Err, ErrorKind, Ok, Result, err


@dataclass(frozen=True)
class AchievementSeed:
    id: str
    name: str
    description: str
    category: str
    tier: AchievementTier
    requirement_type: AchievementRequirementType
    target: int
    reward_points: int
    requirement_category: str | None = None


DEFAULT_ACHIEVEMENTS: tuple[AchievementSeed, ...] = (
    AchievementSeed("first_pick", "First Pick", "Complete your first pickup.", "milestone", AchievementTier.BRONZE, AchievementRequirementType.RESERVATIONS, 1, 10),
    AchievementSeed("regular_picker", "Regular Picker", "Complete 10 pickups.", "milestone", AchievementTier.SILVER, AchievementRequirementType.RESERVATIONS, 10, 50),
    AchievementSeed("smart_saver", "Smart Saver", "Save 50 GEL on pickups.", "savings", AchievementTier.SILVER, AchievementRequirementType.MONEY_SAVED, 50, 50),
    AchievementSeed("savings_master", "Savings Master", "Save 250 GEL on pickups.", "savings", AchievementTier.GOLD, AchievementRequirementType.MONEY_SAVED, 250, 150),
    AchievementSeed("bakery_lover", "Bakery Lover", "Pick up 5 bakery offers.", "engagement", AchievementTier.BRONZE, AchievementRequirementType.CATEGORY, 5, 25, "bakery"),
    AchievementSeed("explorer", "Explorer", "Visit 5 different partners.", "engagement", AchievementTier.SILVER, AchievementRequirementType.UNIQUE_PARTNERS, 5, 40),
    AchievementSeed("loyal_customer", "Loyal Customer", "Visit the same partner 5 times.", "engagement", AchievementTier.SILVER, AchievementRequirementType.PARTNER_LOYALTY, 5, 40),
    AchievementSeed("on_a_roll", "On a Roll", "Pick up on 3 consecutive days.", "engagement", AchievementTier.BRONZE, AchievementRequirementType.STREAK, 3, 20),
    AchievementSeed("week_streak", "Week Streak", "Pick up on 7 consecutive days.", "engagement", AchievementTier.GOLD, AchievementRequirementType.STREAK, 7, 75),
    AchievementSeed("friend_magnet", "Friend Magnet", "Refer 3 friends.", "social", AchievementTier.SILVER, AchievementRequirementType.REFERRALS, 3, 60),
)

USER_LEVELS: tuple[tuple[int, str], ...] = (
    (0, "Newcomer"),
    (5, "Explorer"),
    (15, "Regular"),
    (30, "VIP"),
    (50, "Legend"),
)


def user_level(total_reservations: int) -> str:
    level = USER_LEVELS[0][1]
    for threshold, name in USER_LEVELS:
        if total_reservations >= threshold:
            level = name
    return level


@dataclass
class ClaimOutcome:
    achievement_id: str
    already_claimed: bool
    awarded_now: bool
    reward_points: int
    new_balance: int


@dataclass
class AchievementProgress:
    definition: AchievementDefinition
    progress: Decimal
    unlocked: UserAchievement | None


class AchievementService:
    """Evaluate unlock conditions against ``UserStats`` and pay rewards exactly once."""

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

    async def sync_catalog(self, seeds: Iterable[AchievementSeed] = DEFAULT_ACHIEVEMENTS) -> int:
        """Insert or refresh catalog definitions; returns the number of new rows."""

        created = 0
        for seed in seeds:
            definition = await self._db.get(AchievementDefinition, seed.id)
            if definition is None:
                definition = AchievementDefinition(id=seed.id)
                self._db.add(definition)
                created += 1
            definition.name = seed.name
            definition.description = seed.description
            definition.category = seed.category
            definition.tier = seed.tier
            definition.requirement_type = seed.requirement_type
            definition.requirement_target = Decimal(seed.target)
            definition.requirement_category = seed.requirement_category
            definition.reward_points = seed.reward_points
            definition.is_active = True
        await self._db.flush()
        if created:
            logger.info("Synchronized achievement catalog", created=created)
        return created

    async def get_stats(self, user_id: UUID) -> UserStats | None:
        return await self._db.get(UserStats, user_id, populate_existing=True)

    async def _lock_or_create_stats(self, user_id: UUID) -> UserStats:
        stmt = (
            select(UserStats)
            .where(UserStats.user_id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        stats = (await self._db.execute(stmt)).scalar_one_or_none()
        if stats is not None:
            return stats

        stats = UserStats(
            user_id=user_id,
            total_reservations=0,
            total_money_saved=Decimal("0"),
            current_streak_days=0,
            longest_streak_days=0,
            total_referrals=0,
            category_counts={},
            partner_visit_counts={},
            unique_partners_visited=0,
        )
        try:
            async with self._db.begin_nested():
                self._db.add(stats)
        except IntegrityError:
            self._observability.record_race_lost("achievements.stats")
            stats = (await self._db.execute(stmt)).scalar_one()
        return stats

    async def record_pickup(
        self,
        user_id: UUID,
        *,
        partner_id: UUID,
        category: str | None,
        money_saved: Decimal,
        at: datetime | None = None,
    ) -> UserStats:
        """Fold one completed pickup into the user's stats."""

        stats = await self._lock_or_create_stats(user_id)
        today = self._clock.local_date(at or self._clock.now())

        stats.total_reservations = (stats.total_reservations or 0) + 1
        stats.total_money_saved = Decimal(stats.total_money_saved or 0) + max(Decimal(money_saved), Decimal("0"))

        category_counts = dict(stats.category_counts or {})
        category_key = category or "other"
        category_counts[category_key] = int(category_counts.get(category_key, 0)) + 1
        stats.category_counts = category_counts

        visits = dict(stats.partner_visit_counts or {})
        partner_key = str(partner_id)
        visits[partner_key] = int(visits.get(partner_key, 0)) + 1
        stats.partner_visit_counts = visits
        stats.unique_partners_visited = len(visits)

        last = stats.last_activity_date
        if last == today:
            stats.current_streak_days = max(stats.current_streak_days or 0, 1)
        elif last is not None and last == today - timedelta(days=1):
            stats.current_streak_days = (stats.current_streak_days or 0) + 1
        else:
            stats.current_streak_days = 1
        stats.last_activity_date = today
        stats.longest_streak_days = max(stats.longest_streak_days or 0, stats.current_streak_days)

        await self._db.flush()
        return stats

    async def record_referral(self, user_id: UUID) -> UserStats:
        stats = await self._lock_or_create_stats(user_id)
        stats.total_referrals = (stats.total_referrals or 0) + 1
        await self._db.flush()
        return stats

    @staticmethod
    def progress_for(definition: AchievementDefinition, stats: UserStats | None) -> Decimal:
        if stats is None:
            return Decimal("0")
        requirement = AchievementRequirementType(definition.requirement_type)
        if requirement == AchievementRequirementType.RESERVATIONS:
            return Decimal(stats.total_reservations or 0)
        if requirement == AchievementRequirementType.MONEY_SAVED:
            return Decimal(stats.total_money_saved or 0)
        if requirement == AchievementRequirementType.CATEGORY:
            counts = stats.category_counts or {}
            return Decimal(int(counts.get(definition.requirement_category or "", 0)))
        if requirement == AchievementRequirementType.UNIQUE_PARTNERS:
            return Decimal(stats.unique_partners_visited or 0)
        if requirement == AchievementRequirementType.PARTNER_LOYALTY:
            visits = stats.partner_visit_counts or {}
            return Decimal(max((int(count) for count in visits.values()), default=0))
        if requirement == AchievementRequirementType.STREAK:
            return Decimal(stats.current_streak_days or 0)
        if requirement == AchievementRequirementType.REFERRALS:
            return Decimal(stats.total_referrals or 0)
        return Decimal("0")

    async def evaluate_and_unlock(self, user_id: UUID) -> list[UserAchievement]:
        """Unlock every active definition the user now qualifies for.

        Returns only the rows created by this call; a concurrent evaluation that already
        inserted the same (user, achievement) pair is treated as a no-op.
        """

        stats = await self.get_stats(user_id)
        if stats is None:
            return []

        already = set(
            (
                await self._db.execute(
                    select(UserAchievement.achievement_id).where(UserAchievement.user_id == user_id)
                )
            ).scalars().all()
        )
        definitions = (
            await self._db.execute(
                select(AchievementDefinition)
                .where(AchievementDefinition.is_active.is_(True))
                .order_by(AchievementDefinition.id)
            )
        ).scalars().all()

        unlocked: list[UserAchievement] = []
        for definition in definitions:
            if definition.id in already:
                continue
            if self.progress_for(definition, stats) < Decimal(definition.requirement_target):
                continue
            row = await self._insert_unlock(user_id, definition)
            if row is not None:
                unlocked.append(row)

        if unlocked:
            logger.info(
                "Unlocked achievements",
                user_id=str(user_id),
                achievements=[row.achievement_id for row in unlocked],
            )
        return unlocked

    async def _insert_unlock(self, user_id: UUID, definition: AchievementDefinition) -> UserAchievement | None:
        row = UserAchievement(
            id=uuid4(),
            user_id=user_id,
            achievement_id=definition.id,
            unlocked_at=self._clock.now(),
            is_new=True,
            reward_claimed=False,
            points_awarded=0,
        )
        try:
            async with self._db.begin_nested():
                self._db.add(row)
        except IntegrityError:
            self._observability.record_race_lost("achievements.unlock")
            logger.info("Achievement unlock lost race", user_id=str(user_id), achievement_id=definition.id)
            return None
        return row

    async def claim_reward(self, user_id: UUID, achievement_id: str) -> Result[ClaimOutcome]:
        """Pay the reward for an unlocked achievement at most once."""

        stmt = (
            select(UserAchievement)
            .where(
                UserAchievement.user_id == user_id,
                UserAchievement.achievement_id == achievement_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        unlock = (await self._db.execute(stmt)).scalar_one_or_none()
        if unlock is None:
            return err(ErrorKind.NOT_FOUND, "achievement_not_unlocked", achievement_id=achievement_id)

        account = await self._ledger.ensure_account(AccountOwnerType.CUSTOMER, user_id)
        if unlock.reward_claimed:
            self._observability.record_idempotent_outcome("achievements.claim.already_claimed")
            balance = await self._ledger.get_balance(account.id)
            return Ok(
                ClaimOutcome(
                    achievement_id=achievement_id,
                    already_claimed=True,
                    awarded_now=False,
                    reward_points=unlock.points_awarded,
                    new_balance=balance.value if isinstance(balance, Ok) else account.balance,
                )
            )

        definition = await self._db.get(AchievementDefinition, achievement_id)
        reward = int(definition.reward_points or 0) if definition else 0
        new_balance = account.balance
        if reward > 0:
            credit = await self._ledger.apply_transaction(
                account.id,
                reward,
                LedgerReason.ACHIEVEMENT_REWARD,
                metadata={"achievement_id": achievement_id},
            )
            if isinstance(credit, Err):
                return credit
            new_balance = credit.value.new_balance

        now = self._clock.now()
        unlock.reward_claimed = True
        unlock.reward_claimed_at = now
        unlock.points_awarded = reward
        unlock.is_new = False
        if unlock.viewed_at is None:
            unlock.viewed_at = now
        await self._db.flush()

        logger.info("Claimed achievement reward", user_id=str(user_id), achievement_id=achievement_id, reward_points=reward)
        return Ok(
            ClaimOutcome(
                achievement_id=achievement_id,
                already_claimed=False,
                awarded_now=True,
                reward_points=reward,
                new_balance=new_balance,
            )
        )

    async def mark_viewed(self, user_id: UUID, achievement_id: str) -> Result[UserAchievement]:
        stmt = select(UserAchievement).where(
            UserAchievement.user_id == user_id,
            UserAchievement.achievement_id == achievement_id,
        )
        unlock = (await self._db.execute(stmt)).scalar_one_or_none()
        if unlock is None:
            return err(ErrorKind.NOT_FOUND, "achievement_not_unlocked", achievement_id=achievement_id)
        if unlock.is_new:
            unlock.is_new = False
            unlock.viewed_at = self._clock.now()
            await self._db.flush()
        return Ok(unlock)

    async def list_user_progress(self, user_id: UUID) -> Sequence[AchievementProgress]:
        stats = await self.get_stats(user_id)
        unlocks = {
            row.achievement_id: row
            for row in (
                await self._db.execute(select(UserAchievement).where(UserAchievement.user_id == user_id))
            ).scalars().all()
        }
        definitions = (
            await self._db.execute(
                select(AchievementDefinition)
                .where(AchievementDefinition.is_active.is_(True))
                .order_by(AchievementDefinition.category, AchievementDefinition.requirement_target)
            )
        ).scalars().all()
        return [
            AchievementProgress(
                definition=definition,
                progress=self.progress_for(definition, stats),
                unlocked=unlocks.get(definition.id),
            )
            for definition in definitions
        ]


__all__ = [
    "AchievementProgress",
    "AchievementSeed",
    "AchievementService",
    "ClaimOutcome",
    "DEFAULT_ACHIEVEMENTS",
    "USER_LEVELS",
    "user_level",
]
