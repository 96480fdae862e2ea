from __future__ import annotations

import secrets
import string
from dataclasses import dataclass
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from smartpick_api.core.clock import BusinessClock, get_clock
from smartpick_api.core.settings import settings
from smartpick_api.models.achievement import UserAchievement
from smartpick_api.models.points import AccountOwnerType, LedgerReason
from smartpick_api.models.user import User
from smartpick_api.services.achievements import AchievementService
from smartpick_api.services.ledger import LedgerService
from smartpick_api.services.results import Err, ErrorKind, Ok, Result, err

_CODE_ALPHABET = string.ascii_uppercase + string.digits


@dataclass
class ReferralOutcome:
    referrer_id: UUID
    bonus_points: int
    unlocked: list[UserAchievement]


class ReferralService:
    def __init__(self, db_session: AsyncSession, *, clock: BusinessClock | None = None) -> None:
        self._db = db_session
        self._clock = clock or get_clock()
        self._ledger = LedgerService(db_session, clock=self._clock)
        self._achievements = AchievementService(db_session, ledger=self._ledger, clock=self._clock)

    async def ensure_referral_code(self, user: User) -> str:
        if user.referral_code:
            return user.referral_code
        while True:
            candidate = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(8))
            exists = await self._db.execute(select(User.id).where(User.referral_code == candidate))
            if exists.first() is None:
                user.referral_code = candidate
                await self._db.flush()
                return candidate

    async def apply_referral_code(self, new_user_id: UUID, code: str) -> Result[ReferralOutcome]:
        """Credit the referrer and count the referral toward their achievements."""

        stmt = select(User).where(User.id == new_user_id).with_for_update().execution_options(populate_existing=True)
        new_user = (await self._db.execute(stmt)).scalar_one_or_none()
        if new_user is None:
            return err(ErrorKind.NOT_FOUND, "account_not_found", user_id=str(new_user_id))
        if new_user.referred_by_id is not None:
            return err(ErrorKind.ALREADY_CLAIMED, "referral_already_applied")

        normalized = (code or "").strip().upper()
        referrer = (
            await self._db.execute(select(User).where(User.referral_code == normalized))
        ).scalar_one_or_none() if normalized else None
        if referrer is None:
            return err(ErrorKind.NOT_FOUND, "referral_code_invalid")
        if referrer.id == new_user.id:
            return err(ErrorKind.VALIDATION, "referral_self")

        bonus = settings.referral_bonus_points
        account = await self._ledger.ensure_account(AccountOwnerType.CUSTOMER, referrer.id)
        credit = await self._ledger.apply_transaction(
            account.id,
            bonus,
            LedgerReason.REFERRAL_BONUS,
            metadata={"referred_user_id": str(new_user.id)},
        )
        if isinstance(credit, Err):
            return credit

        new_user.referred_by_id = referrer.id
        await self._achievements.record_referral(referrer.id)
        unlocked = await self._achievements.evaluate_and_unlock(referrer.id)
        await self._db.flush()

        logger.info("Applied referral code", referrer_id=str(referrer.id), referred_user_id=str(new_user.id), bonus=bonus)
        return Ok(ReferralOutcome(referrer_id=referrer.id, bonus_points=bonus, unlocked=unlocked))


__all__ = ["ReferralOutcome", "ReferralService"]
