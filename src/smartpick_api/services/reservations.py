"""Reservation lifecycle state machine.

``ACTIVE`` is the only non-terminal status. Every transition locks the reservation row,
resolves the escrow hold, and then applies its own side effects:

* ``PICKED_UP``: capture to the partner, bump claimed quantity, update stats, evaluate achievements
* ``CANCELLED``: release to the customer, restore availability, feed the cooldown window
* ``EXPIRED``: release, restore availability, optionally count as a no-show
* ``FAILED_PICKUP``: release, restore availability, record a no-show
"""

from __future__ import annotations

import secrets
import string
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from uuid import UUID, uuid4

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from smartpick_api.core.clock import BusinessClock, ensure_aware, get_clock
from smartpick_api.core.settings import settings
from smartpick_api.models.achievement import UserAchievement
from smartpick_api.models.escrow import EscrowHold
from smartpick_api.models.partner import Offer, OfferStatus, Partner
from smartpick_api.models.points import AccountOwnerType
from smartpick_api.models.reservation import Reservation, ReservationStatus
from smartpick_api.models.user import User
from smartpick_api.observability.engine import get_engine_store
from smartpick_api.services.achievements import AchievementService
from smartpick_api.services.cooldown import CooldownService
from smartpick_api.services.escrow import EscrowService, HoldResolution
from smartpick_api.services.ledger import LedgerService
from smartpick_api.services.penalties import NoShowOutcome, PenaltyService
from smartpick_api.services.results import Err, ErrorKind, Ok, Result, err

QR_CODE_PREFIX = "SP-"
_BASE36 = string.digits + string.ascii_uppercase


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def generate_qr_code(at: datetime) -> str:
    millis = int(ensure_aware(at).timestamp() * 1000)
    return f"{QR_CODE_PREFIX}{_to_base36(millis)}-{secrets.token_hex(8).upper()}"


def is_valid_qr_code(code: str | None) -> bool:
    return bool(code) and code.startswith(QR_CODE_PREFIX) and len(code) >= 8


@dataclass
class PickupOutcome:
    reservation: Reservation
    already_processed: bool
    unlocked: list[UserAchievement] = field(default_factory=list)


@dataclass
class TransitionOutcome:
    reservation: Reservation
    hold: HoldResolution | None
    no_show: NoShowOutcome | None = None


class ReservationService:
    def __init__(
        self,
        db_session: AsyncSession,
        *,
        clock: BusinessClock | None = None,
        expired_counts_as_no_show: bool | None = None,
    ) -> None:
        self._db = db_session
        self._clock = clock or get_clock()
        self._ledger = LedgerService(db_session, clock=self._clock)
        self._escrow = EscrowService(db_session, ledger=self._ledger, clock=self._clock)
        self._penalties = PenaltyService(db_session, ledger=self._ledger, clock=self._clock)
        self._cooldown = CooldownService(db_session, ledger=self._ledger, clock=self._clock)
        self._achievements = AchievementService(db_session, ledger=self._ledger, clock=self._clock)
        if expired_counts_as_no_show is None:
            expired_counts_as_no_show = settings.expired_counts_as_no_show
        self._expired_counts_as_no_show = expired_counts_as_no_show
        self._observability = get_engine_store()

    # -- creation -------------------------------------------------------------------------

    async def create_reservation(self, customer: User, offer_id: UUID, quantity: int) -> Result[Reservation]:
        now = self._clock.now()

        # Serializes concurrent reservation attempts by the same customer.
        account = await self._ledger.ensure_account(AccountOwnerType.CUSTOMER, customer.id)
        await self._ledger.lock_account(account.id)

        penalty_status = await self._penalties.get_penalty_status(customer.id)
        if penalty_status.is_suspended:
            return self._reject(
                ErrorKind.SUSPENDED,
                "user_suspended",
                suspended_until=penalty_status.suspended_until.isoformat(),
            )

        cooldown = await self._cooldown.get_cooldown_status(customer.id)
        if cooldown.in_cooldown:
            return self._reject(ErrorKind.IN_COOLDOWN, "user_in_cooldown", unlock_at=cooldown.unlock_at.isoformat())

        active_count = await self._count_active(customer.id)
        if active_count >= settings.max_active_reservations:
            return self._reject(ErrorKind.LIMIT_REACHED, "active_reservation_limit", limit=settings.max_active_reservations)

        quantity_limit = customer.max_reservation_quantity or settings.default_reservation_quantity_limit
        if quantity < 1 or quantity > quantity_limit:
            return self._reject(ErrorKind.VALIDATION, "quantity_invalid", limit=quantity_limit)

        offer = await self._lock_offer(offer_id)
        if offer is None:
            return self._reject(ErrorKind.NOT_FOUND, "offer_not_found", offer_id=str(offer_id))
        if offer.status != OfferStatus.ACTIVE or offer.quantity_available <= 0:
            return self._reject(ErrorKind.INVALID_STATE_TRANSITION, "offer_unavailable")
        if offer.pickup_end is not None and ensure_aware(offer.pickup_end) <= now:
            return self._reject(ErrorKind.INVALID_STATE_TRANSITION, "offer_pickup_window_closed")
        if quantity > offer.quantity_available:
            return self._reject(ErrorKind.VALIDATION, "quantity_unavailable", available=offer.quantity_available)

        reservation_id = uuid4()
        points = int(offer.points_cost) * quantity
        hold = await self._escrow.open_hold(
            reservation_id,
            account.id,
            points,
            metadata={"offer_id": str(offer.id), "quantity": quantity},
        )
        if isinstance(hold, Err):
            self._observability.record_rejection(hold.kind.value)
            return hold

        expires_at = now + timedelta(minutes=settings.reservation_hold_minutes)
        if offer.pickup_end is not None:
            expires_at = min(expires_at, ensure_aware(offer.pickup_end))

        reservation = Reservation(
            id=reservation_id,
            customer_id=customer.id,
            partner_id=offer.partner_id,
            offer_id=offer.id,
            status=ReservationStatus.ACTIVE,
            quantity=quantity,
            points_spent=points,
            total_price=Decimal(offer.smart_price) * quantity,
            qr_code=generate_qr_code(now),
            expires_at=expires_at,
            created_at=now,
        )
        self._db.add(reservation)

        offer.quantity_available -= quantity
        if offer.quantity_available <= 0:
            offer.status = OfferStatus.SOLD_OUT
        await self._db.flush()

        self._observability.record_transition(ReservationStatus.ACTIVE.value)
        logger.info(
            "Reservation created",
            reservation_id=str(reservation.id),
            customer_id=str(customer.id),
            offer_id=str(offer.id),
            quantity=quantity,
            points_spent=points,
        )
        return Ok(reservation)

    # -- reads ----------------------------------------------------------------------------

    async def get_reservation(self, reservation_id: UUID) -> Reservation | None:
        return await self._db.get(Reservation, reservation_id, populate_existing=True)

    async def list_active_reservations(self, customer_id: UUID) -> list[Reservation]:
        stmt = (
            select(Reservation)
            .where(Reservation.customer_id == customer_id, Reservation.status == ReservationStatus.ACTIVE)
            .order_by(Reservation.created_at.desc())
        )
        return list((await self._db.execute(stmt)).scalars().all())

    async def partner_for_user(self, user_id: UUID) -> Partner | None:
        stmt = select(Partner).where(Partner.user_id == user_id)
        return (await self._db.execute(stmt)).scalar_one_or_none()

    # -- ACTIVE -> PICKED_UP ----------------------------------------------------------------

    async def confirm_pickup(self, partner_user: User, qr_code: str) -> Result[PickupOutcome]:
        """Validate a scanned code against the calling partner's reservation and complete it."""

        code = (qr_code or "").strip()
        if not is_valid_qr_code(code):
            return self._reject(ErrorKind.VALIDATION, "qr_code_invalid")

        partner = await self.partner_for_user(partner_user.id)
        if partner is None:
            return self._reject(ErrorKind.FORBIDDEN, "partner_required")

        stmt = (
            select(Reservation)
            .where(Reservation.qr_code == code)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        reservation = (await self._db.execute(stmt)).scalar_one_or_none()
        if reservation is None:
            return self._reject(ErrorKind.NOT_FOUND, "reservation_not_found")
        return await self._complete_pickup(partner, reservation)

    async def mark_picked_up(self, partner_user: User, reservation_id: UUID) -> Result[PickupOutcome]:
        partner = await self.partner_for_user(partner_user.id)
        if partner is None:
            return self._reject(ErrorKind.FORBIDDEN, "partner_required")
        reservation = await self._lock_reservation(reservation_id)
        if reservation is None:
            return self._reject(ErrorKind.NOT_FOUND, "reservation_not_found")
        return await self._complete_pickup(partner, reservation)

    async def _complete_pickup(self, partner: Partner, reservation: Reservation) -> Result[PickupOutcome]:
        now = self._clock.now()
        if reservation.partner_id != partner.id:
            return self._reject(ErrorKind.FORBIDDEN, "not_reservation_partner")
        if reservation.status == ReservationStatus.PICKED_UP:
            self._observability.record_idempotent_outcome("reservation.pickup.already_processed")
            return Ok(PickupOutcome(reservation=reservation, already_processed=True))
        invalid = self._require_active(reservation)
        if invalid is not None:
            return invalid
        if ensure_aware(reservation.expires_at) <= now:
            return self._reject(ErrorKind.INVALID_STATE_TRANSITION, "reservation_expired")

        hold = await self._hold_for(reservation)
        if hold is None:
            return err(ErrorKind.NOT_FOUND, "hold_not_found", reservation_id=str(reservation.id))
        partner_account = await self._ledger.ensure_account(AccountOwnerType.PARTNER, partner.id)
        capture = await self._escrow.capture_hold(hold.id, partner_account.id)
        if isinstance(capture, Err):
            return capture

        reservation.status = ReservationStatus.PICKED_UP
        reservation.picked_up_at = now
        reservation.resolved_at = now

        offer = await self._lock_offer(reservation.offer_id)
        money_saved = Decimal("0")
        category: str | None = None
        if offer is not None:
            offer.quantity_claimed = (offer.quantity_claimed or 0) + reservation.quantity
            money_saved = (Decimal(offer.original_price) - Decimal(offer.smart_price)) * reservation.quantity
            category = offer.category
        await self._db.flush()

        await self._achievements.record_pickup(
            reservation.customer_id,
            partner_id=reservation.partner_id,
            category=category,
            money_saved=money_saved,
            at=now,
        )
        unlocked = await self._achievements.evaluate_and_unlock(reservation.customer_id)

        self._observability.record_transition(ReservationStatus.PICKED_UP.value)
        logger.info(
            "Reservation picked up",
            reservation_id=str(reservation.id),
            partner_id=str(partner.id),
            points=hold.points,
            unlocked=len(unlocked),
        )
        return Ok(PickupOutcome(reservation=reservation, already_processed=False, unlocked=unlocked))

    # -- ACTIVE -> CANCELLED ----------------------------------------------------------------

    async def cancel_reservation(self, customer: User, reservation_id: UUID) -> Result[TransitionOutcome]:
        now = self._clock.now()
        reservation = await self._lock_reservation(reservation_id)
        if reservation is None:
            return self._reject(ErrorKind.NOT_FOUND, "reservation_not_found")
        if reservation.customer_id != customer.id:
            return self._reject(ErrorKind.FORBIDDEN, "not_reservation_owner")
        invalid = self._require_active(reservation)
        if invalid is not None:
            return invalid
        if ensure_aware(reservation.expires_at) <= now:
            return self._reject(ErrorKind.INVALID_STATE_TRANSITION, "reservation_expired")

        released = await self._release(reservation)
        if isinstance(released, Err):
            return released

        reservation.status = ReservationStatus.CANCELLED
        reservation.cancelled_at = now
        reservation.resolved_at = now
        await self._restore_availability(reservation)
        await self._cooldown.record_cancellation(customer.id, reservation_id=reservation.id, at=now)

        self._observability.record_transition(ReservationStatus.CANCELLED.value)
        logger.info("Reservation cancelled", reservation_id=str(reservation.id), customer_id=str(customer.id))
        return Ok(TransitionOutcome(reservation=reservation, hold=released.value))

    # -- ACTIVE -> FAILED_PICKUP ------------------------------------------------------------

    async def mark_no_show(self, partner_user: User, reservation_id: UUID) -> Result[TransitionOutcome]:
        partner = await self.partner_for_user(partner_user.id)
        if partner is None:
            return self._reject(ErrorKind.FORBIDDEN, "partner_required")
        reservation = await self._lock_reservation(reservation_id)
        if reservation is None:
            return self._reject(ErrorKind.NOT_FOUND, "reservation_not_found")
        if reservation.partner_id != partner.id:
            return self._reject(ErrorKind.FORBIDDEN, "not_reservation_partner")
        invalid = self._require_active(reservation)
        if invalid is not None:
            return invalid

        released = await self._release(reservation)
        if isinstance(released, Err):
            return released

        now = self._clock.now()
        reservation.status = ReservationStatus.FAILED_PICKUP
        reservation.resolved_at = now
        await self._restore_availability(reservation)
        no_show = await self._penalties.record_no_show(
            reservation.customer_id,
            reservation_id=reservation.id,
            partner_id=reservation.partner_id,
        )

        self._observability.record_transition(ReservationStatus.FAILED_PICKUP.value)
        logger.info("Reservation marked as no-show", reservation_id=str(reservation.id), partner_id=str(partner.id))
        return Ok(TransitionOutcome(reservation=reservation, hold=released.value, no_show=no_show.value))

    # -- ACTIVE -> EXPIRED ------------------------------------------------------------------

    async def expire_reservation(self, reservation_id: UUID) -> Result[TransitionOutcome]:
        now = self._clock.now()
        reservation = await self._lock_reservation(reservation_id)
        if reservation is None:
            return self._reject(ErrorKind.NOT_FOUND, "reservation_not_found")
        invalid = self._require_active(reservation)
        if invalid is not None:
            return invalid
        if ensure_aware(reservation.expires_at) > now:
            return self._reject(ErrorKind.INVALID_STATE_TRANSITION, "reservation_not_due")

        released = await self._release(reservation)
        if isinstance(released, Err):
            return released

        reservation.status = ReservationStatus.EXPIRED
        reservation.resolved_at = now
        await self._restore_availability(reservation)

        no_show: NoShowOutcome | None = None
        if self._expired_counts_as_no_show:
            recorded = await self._penalties.record_no_show(
                reservation.customer_id,
                reservation_id=reservation.id,
                partner_id=reservation.partner_id,
            )
            no_show = recorded.value

        self._observability.record_transition(ReservationStatus.EXPIRED.value)
        logger.info(
            "Reservation expired",
            reservation_id=str(reservation.id),
            counted_as_no_show=no_show is not None,
        )
        return Ok(TransitionOutcome(reservation=reservation, hold=released.value, no_show=no_show))

    async def expire_overdue(self, *, limit: int = 100) -> list[TransitionOutcome]:
        """Expire every ACTIVE reservation whose ``expires_at`` has passed."""

        now = self._clock.now()
        stmt = (
            select(Reservation.id)
            .where(Reservation.status == ReservationStatus.ACTIVE, Reservation.expires_at <= now)
            .order_by(Reservation.expires_at.asc())
            .limit(limit)
        )
        reservation_ids = list((await self._db.execute(stmt)).scalars().all())
        outcomes: list[TransitionOutcome] = []
        for reservation_id in reservation_ids:
            result = await self.expire_reservation(reservation_id)
            if isinstance(result, Ok):
                outcomes.append(result.value)
        return outcomes

    # -- helpers --------------------------------------------------------------------------

    async def _lock_reservation(self, reservation_id: UUID) -> Reservation | None:
        stmt = (
            select(Reservation)
            .where(Reservation.id == reservation_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return (await self._db.execute(stmt)).scalar_one_or_none()

    async def _lock_offer(self, offer_id: UUID) -> Offer | None:
        stmt = (
            select(Offer)
            .where(Offer.id == offer_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return (await self._db.execute(stmt)).scalar_one_or_none()

    async def _count_active(self, customer_id: UUID) -> int:
        stmt = select(func.count(Reservation.id)).where(
            Reservation.customer_id == customer_id,
            Reservation.status == ReservationStatus.ACTIVE,
        )
        return int((await self._db.execute(stmt)).scalar_one())

    async def _hold_for(self, reservation: Reservation) -> EscrowHold | None:
        return await self._escrow.get_hold_for_reservation(reservation.id)

    async def _release(self, reservation: Reservation) -> Result[HoldResolution]:
        hold = await self._hold_for(reservation)
        if hold is None:
            return err(ErrorKind.NOT_FOUND, "hold_not_found", reservation_id=str(reservation.id))
        return await self._escrow.release_hold(hold.id)

    async def _restore_availability(self, reservation: Reservation) -> None:
        offer = await self._lock_offer(reservation.offer_id)
        if offer is None:
            return
        offer.quantity_available = min(offer.quantity_available + reservation.quantity, offer.quantity_total)
        if offer.status == OfferStatus.SOLD_OUT and offer.quantity_available > 0:
            offer.status = OfferStatus.ACTIVE
        await self._db.flush()

    def _require_active(self, reservation: Reservation) -> Err | None:
        if reservation.status == ReservationStatus.ACTIVE:
            return None
        return self._reject(
            ErrorKind.INVALID_STATE_TRANSITION,
            "invalid_state_transition",
            status=ReservationStatus(reservation.status).value,
            reservation_id=str(reservation.id),
        )

    def _reject(self, kind: ErrorKind, key: str, **params) -> Err:
        self._observability.record_rejection(kind.value)
        return err(kind, key, **params)


__all__ = [
    "PickupOutcome",
    "QR_CODE_PREFIX",
    "ReservationService",
    "TransitionOutcome",
    "generate_qr_code",
    "is_valid_qr_code",
]
