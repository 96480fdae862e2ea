from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import select

from smartpick_api.core.clock import ensure_aware
from smartpick_api.models.escrow import EscrowHold, EscrowHoldStatus
from smartpick_api.models.partner import Offer, OfferStatus
from smartpick_api.models.points import AccountOwnerType
from smartpick_api.models.reservation import ReservationStatus
from smartpick_api.services.penalties import PenaltyService
from smartpick_api.services.reservations import QR_CODE_PREFIX, ReservationService, is_valid_qr_code
from smartpick_api.services.results import Err, ErrorKind, Ok


async def _reserve(session_factory, clock, customer, offer_id, quantity=1, **kwargs):
    async with session_factory() as session:
        result = await ReservationService(session, clock=clock, **kwargs).create_reservation(customer, offer_id, quantity)
        if isinstance(result, Ok):
            await session.commit()
    return result


async def _load_offer(session_factory, offer_id) -> Offer:
    async with session_factory() as session:
        return await session.get(Offer, offer_id)


@pytest.mark.asyncio
async def test_create_reservation_holds_points_and_claims_stock(session_factory, seed, clock) -> None:
    customer = await seed.customer(points=20)
    _, partner = await seed.partner()
    offer = await seed.offer(partner, points_cost=5, quantity=3)

    result = await _reserve(session_factory, clock, customer, offer.id, quantity=2)

    assert isinstance(result, Ok)
    reservation = result.value
    assert reservation.status == ReservationStatus.ACTIVE
    assert reservation.points_spent == 10
    assert reservation.qr_code.startswith(QR_CODE_PREFIX)
    assert is_valid_qr_code(reservation.qr_code)
    assert ensure_aware(reservation.expires_at) == clock.now() + timedelta(minutes=60)
    assert await seed.balance(customer.id) == 10

    stored_offer = await _load_offer(session_factory, offer.id)
    assert stored_offer.quantity_available == 1
    async with session_factory() as session:
        hold = (
            await session.execute(select(EscrowHold).where(EscrowHold.reservation_id == reservation.id))
        ).scalar_one()
    assert hold.status == EscrowHoldStatus.OPEN
    assert hold.points == 10


@pytest.mark.asyncio
async def test_expiry_is_capped_by_pickup_window(session_factory, seed, clock) -> None:
    customer = await seed.customer(points=20)
    _, partner = await seed.partner()
    offer = await seed.offer(partner, pickup_end=clock.now() + timedelta(minutes=20))

    result = await _reserve(session_factory, clock, customer, offer.id)

    assert ensure_aware(result.value.expires_at) == clock.now() + timedelta(minutes=20)


@pytest.mark.asyncio
async def test_insufficient_points_leaves_no_trace(session_factory, seed, clock) -> None:
    customer = await seed.customer(points=4)
    _, partner = await seed.partner()
    offer = await seed.offer(partner, points_cost=5)

    result = await _reserve(session_factory, clock, customer, offer.id)

    assert isinstance(result, Err)
    assert result.kind == ErrorKind.INSUFFICIENT_BALANCE
    assert await seed.balance(customer.id) == 4
    assert (await _load_offer(session_factory, offer.id)).quantity_available == 5


@pytest.mark.asyncio
async def test_reservation_guards(session_factory, seed, clock) -> None:
    customer = await seed.customer(points=100)
    _, partner = await seed.partner()
    offer = await seed.offer(partner, quantity=2)
    paused = await seed.offer(partner, status=OfferStatus.PAUSED)
    closed = await seed.offer(partner, pickup_end=clock.now() - timedelta(minutes=1))

    too_many = await _reserve(session_factory, clock, customer, offer.id, quantity=4)
    not_enough_stock = await _reserve(session_factory, clock, customer, offer.id, quantity=3)
    missing = await _reserve(session_factory, clock, customer, uuid4())
    unavailable = await _reserve(session_factory, clock, customer, paused.id)
    window_closed = await _reserve(session_factory, clock, customer, closed.id)

    assert too_many.kind == ErrorKind.VALIDATION and too_many.key == "quantity_invalid"
    assert not_enough_stock.kind == ErrorKind.VALIDATION and not_enough_stock.key == "quantity_unavailable"
    assert missing.kind == ErrorKind.NOT_FOUND
    assert unavailable.kind == ErrorKind.INVALID_STATE_TRANSITION
    assert window_closed.key == "offer_pickup_window_closed"
    assert await seed.balance(customer.id) == 100


@pytest.mark.asyncio
async def test_single_active_reservation_limit(session_factory, seed, clock) -> None:
    customer = await seed.customer(points=100)
    _, partner = await seed.partner()
    offer = await seed.offer(partner)

    first = await _reserve(session_factory, clock, customer, offer.id)
    second = await _reserve(session_factory, clock, customer, offer.id)

    assert isinstance(first, Ok)
    assert isinstance(second, Err)
    assert second.kind == ErrorKind.LIMIT_REACHED


@pytest.mark.asyncio
async def test_last_unit_marks_offer_sold_out(session_factory, seed, clock) -> None:
    customer = await seed.customer(points=100)
    _, partner = await seed.partner()
    offer = await seed.offer(partner, quantity=1)

    result = await _reserve(session_factory, clock, customer, offer.id)

    assert isinstance(result, Ok)
    stored = await _load_offer(session_factory, offer.id)
    assert stored.quantity_available == 0
    assert stored.status == OfferStatus.SOLD_OUT


@pytest.mark.asyncio
async def test_pickup_transfers_points_and_unlocks_first_pick(session_factory, seed, clock) -> None:
    await seed.catalog()
    customer = await seed.customer(points=20)
    partner_user, partner = await seed.partner()
    offer = await seed.offer(partner, points_cost=5)
    reservation = (await _reserve(session_factory, clock, customer, offer.id)).value

    async with session_factory() as session:
        result = await ReservationService(session, clock=clock).confirm_pickup(partner_user, f"  {reservation.qr_code} ")
        await session.commit()

    assert isinstance(result, Ok)
    assert not result.value.already_processed
    assert result.value.reservation.status == ReservationStatus.PICKED_UP
    assert [row.achievement_id for row in result.value.unlocked] == ["first_pick"]
    assert await seed.balance(customer.id) == 15
    assert await seed.balance(partner.id, owner_type=AccountOwnerType.PARTNER) == 5
    assert (await _load_offer(session_factory, offer.id)).quantity_claimed == 1

    async with session_factory() as session:
        repeat = await ReservationService(session, clock=clock).mark_picked_up(partner_user, reservation.id)
        await session.commit()

    assert isinstance(repeat, Ok)
    assert repeat.value.already_processed
    assert repeat.value.unlocked == []
    assert await seed.balance(partner.id, owner_type=AccountOwnerType.PARTNER) == 5


@pytest.mark.asyncio
async def test_other_partner_cannot_confirm_pickup(session_factory, seed, clock) -> None:
    customer = await seed.customer(points=20)
    _, partner = await seed.partner()
    other_user, _ = await seed.partner()
    offer = await seed.offer(partner)
    reservation = (await _reserve(session_factory, clock, customer, offer.id)).value

    async with session_factory() as session:
        service = ReservationService(session, clock=clock)
        wrong_partner = await service.confirm_pickup(other_user, reservation.qr_code)
        not_a_partner = await service.confirm_pickup(customer, reservation.qr_code)
        bad_code = await service.confirm_pickup(other_user, "nope")

    assert wrong_partner.kind == ErrorKind.FORBIDDEN
    assert not_a_partner.kind == ErrorKind.FORBIDDEN
    assert bad_code.kind == ErrorKind.VALIDATION


@pytest.mark.asyncio
async def test_pickup_after_expiry_is_rejected(session_factory, seed, clock) -> None:
    customer = await seed.customer(points=20)
    partner_user, partner = await seed.partner()
    offer = await seed.offer(partner)
    reservation = (await _reserve(session_factory, clock, customer, offer.id)).value

    clock.advance(minutes=61)
    async with session_factory() as session:
        result = await ReservationService(session, clock=clock).confirm_pickup(partner_user, reservation.qr_code)

    assert isinstance(result, Err)
    assert result.key == "reservation_expired"


@pytest.mark.asyncio
async def test_cancel_refunds_and_restores_stock(session_factory, seed, clock) -> None:
    customer = await seed.customer(points=20)
    _, partner = await seed.partner()
    offer = await seed.offer(partner, quantity=1)
    reservation = (await _reserve(session_factory, clock, customer, offer.id)).value

    async with session_factory() as session:
        service = ReservationService(session, clock=clock)
        cancelled = await service.cancel_reservation(customer, reservation.id)
        await session.commit()
    async with session_factory() as session:
        again = await ReservationService(session, clock=clock).cancel_reservation(customer, reservation.id)

    assert isinstance(cancelled, Ok)
    assert cancelled.value.reservation.status == ReservationStatus.CANCELLED
    assert cancelled.value.hold.new_balance == 20
    assert isinstance(again, Err)
    assert again.kind == ErrorKind.INVALID_STATE_TRANSITION
    stored = await _load_offer(session_factory, offer.id)
    assert stored.quantity_available == 1
    assert stored.status == OfferStatus.ACTIVE
    assert await seed.balance(customer.id) == 20


@pytest.mark.asyncio
async def test_only_owner_can_cancel_and_not_after_expiry(session_factory, seed, clock) -> None:
    customer = await seed.customer(points=20)
    stranger = await seed.customer()
    _, partner = await seed.partner()
    offer = await seed.offer(partner)
    reservation = (await _reserve(session_factory, clock, customer, offer.id)).value

    async with session_factory() as session:
        forbidden = await ReservationService(session, clock=clock).cancel_reservation(stranger, reservation.id)
    clock.advance(hours=2)
    async with session_factory() as session:
        expired = await ReservationService(session, clock=clock).cancel_reservation(customer, reservation.id)

    assert forbidden.kind == ErrorKind.FORBIDDEN
    assert expired.key == "reservation_expired"


@pytest.mark.asyncio
async def test_third_cancellation_starts_cooldown(session_factory, seed, clock) -> None:
    customer = await seed.customer(points=100)
    _, partner = await seed.partner()
    offer = await seed.offer(partner)

    for _ in range(3):
        reservation = (await _reserve(session_factory, clock, customer, offer.id)).value
        clock.advance(minutes=1)
        async with session_factory() as session:
            await ReservationService(session, clock=clock).cancel_reservation(customer, reservation.id)
            await session.commit()

    blocked = await _reserve(session_factory, clock, customer, offer.id)
    assert isinstance(blocked, Err)
    assert blocked.kind == ErrorKind.IN_COOLDOWN

    clock.advance(minutes=30)
    assert isinstance(await _reserve(session_factory, clock, customer, offer.id), Ok)


@pytest.mark.asyncio
async def test_no_show_refunds_and_records_offense(session_factory, seed, clock) -> None:
    customer = await seed.customer(points=20)
    partner_user, partner = await seed.partner()
    offer = await seed.offer(partner)
    reservation = (await _reserve(session_factory, clock, customer, offer.id)).value

    async with session_factory() as session:
        result = await ReservationService(session, clock=clock).mark_no_show(partner_user, reservation.id)
        await session.commit()

    assert isinstance(result, Ok)
    assert result.value.reservation.status == ReservationStatus.FAILED_PICKUP
    assert result.value.no_show.offense_number == 1
    assert result.value.no_show.tier == "warning"
    assert await seed.balance(customer.id) == 20
    async with session_factory() as session:
        status = await PenaltyService(session, clock=clock).get_penalty_status(customer.id)
    assert status.no_show_count == 1
    assert not status.is_suspended


@pytest.mark.parametrize("counts_as_no_show", [True, False])
@pytest.mark.asyncio
async def test_expire_reservation_honours_no_show_policy(session_factory, seed, clock, counts_as_no_show) -> None:
    customer = await seed.customer(points=20)
    _, partner = await seed.partner()
    offer = await seed.offer(partner)
    reservation = (await _reserve(session_factory, clock, customer, offer.id)).value

    async with session_factory() as session:
        early = await ReservationService(session, clock=clock).expire_reservation(reservation.id)
    assert early.key == "reservation_not_due"

    clock.advance(minutes=60)
    async with session_factory() as session:
        service = ReservationService(session, clock=clock, expired_counts_as_no_show=counts_as_no_show)
        result = await service.expire_reservation(reservation.id)
        await session.commit()

    assert isinstance(result, Ok)
    assert result.value.reservation.status == ReservationStatus.EXPIRED
    assert (result.value.no_show is not None) is counts_as_no_show
    assert await seed.balance(customer.id) == 20
    assert (await _load_offer(session_factory, offer.id)).quantity_available == 5
