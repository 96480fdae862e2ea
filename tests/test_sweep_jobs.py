import pytest

from smartpick_api.core.settings import settings
from smartpick_api.jobs import expire_overdue_reservations
from smartpick_api.models.reservation import Reservation, ReservationStatus
from smartpick_api.services.penalties import PenaltyService
from smartpick_api.services.reservations import ReservationService


async def _reserve(session_factory, clock, customer, offer_id):
    async with session_factory() as session:
        result = await ReservationService(session, clock=clock).create_reservation(customer, offer_id, 1)
        await session.commit()
    return result.value


@pytest.mark.asyncio
async def test_expiry_sweep_releases_overdue_reservations(session_factory, seed, clock) -> None:
    first = await seed.customer(points=20)
    second = await seed.customer(points=20)
    _, partner = await seed.partner()
    offer = await seed.offer(partner, points_cost=7)
    overdue = await _reserve(session_factory, clock, first, offer.id)
    clock.advance(minutes=30)
    fresh = await _reserve(session_factory, clock, second, offer.id)

    clock.advance(minutes=31)
    summary = await expire_overdue_reservations(session_factory=session_factory, clock=clock)

    assert summary == {"expired": 1, "no_shows_recorded": 1, "points_released": 7}
    async with session_factory() as session:
        expired_row = await session.get(Reservation, overdue.id)
        fresh_row = await session.get(Reservation, fresh.id)
        status = await PenaltyService(session, clock=clock).get_penalty_status(first.id)
    assert expired_row.status == ReservationStatus.EXPIRED
    assert fresh_row.status == ReservationStatus.ACTIVE
    assert status.no_show_count == 1
    assert await seed.balance(first.id) == 20
    assert await seed.balance(second.id) == 13

    repeat = await expire_overdue_reservations(session_factory=session_factory, clock=clock)
    assert repeat["expired"] == 0
    assert await seed.balance(first.id) == 20


@pytest.mark.asyncio
async def test_expiry_sweep_can_skip_no_show(session_factory, seed, clock, monkeypatch) -> None:
    monkeypatch.setattr(settings, "expired_counts_as_no_show", False)
    customer = await seed.customer(points=20)
    _, partner = await seed.partner()
    offer = await seed.offer(partner)
    await _reserve(session_factory, clock, customer, offer.id)

    clock.advance(hours=2)
    summary = await expire_overdue_reservations(session_factory=session_factory, clock=clock, limit=10)

    assert summary["expired"] == 1
    assert summary["no_shows_recorded"] == 0
    async with session_factory() as session:
        status = await PenaltyService(session, clock=clock).get_penalty_status(customer.id)
    assert status.no_show_count == 0
