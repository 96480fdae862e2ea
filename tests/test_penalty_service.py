from datetime import timedelta

import pytest

from smartpick_api.core.settings import PenaltyTier
from smartpick_api.services.penalties import PenaltyService, resolve_tier
from smartpick_api.services.reservations import ReservationService
from smartpick_api.services.results import Err, ErrorKind, Ok


async def _record_no_shows(session_factory, clock, user_id, count):
    outcomes = []
    async with session_factory() as session:
        service = PenaltyService(session, clock=clock)
        for _ in range(count):
            outcomes.append((await service.record_no_show(user_id)).value)
        await session.commit()
    return outcomes


def test_resolve_tier_uses_highest_reached_offense() -> None:
    tiers = [
        PenaltyTier(offense=1, name="warning"),
        PenaltyTier(offense=3, name="long", suspension_minutes=90, lift_cost_points=90),
    ]

    assert resolve_tier(0, tiers) is None
    assert resolve_tier(2, tiers).name == "warning"
    assert resolve_tier(7, tiers).name == "long"


@pytest.mark.asyncio
async def test_no_show_escalation_follows_tiers(session_factory, seed, clock) -> None:
    customer = await seed.customer()

    outcomes = await _record_no_shows(session_factory, clock, customer.id, 5)

    assert [outcome.offense_number for outcome in outcomes] == [1, 2, 3, 4, 5]
    assert [outcome.tier for outcome in outcomes] == ["warning", "short", "long", "day", "day"]
    assert outcomes[0].suspended_until is None
    assert outcomes[0].lift_cost_points is None
    assert outcomes[1].suspended_until == clock.now() + timedelta(minutes=30)
    assert [outcome.lift_cost_points for outcome in outcomes[1:]] == [30, 90, 500, 500]
    assert outcomes[3].suspended_until == clock.now() + timedelta(days=1)

    async with session_factory() as session:
        status = await PenaltyService(session, clock=clock).get_penalty_status(customer.id)
    assert status.no_show_count == 5
    assert status.is_suspended
    assert status.tier == "day"
    assert status.active_offense is not None


@pytest.mark.asyncio
async def test_suspension_blocks_new_reservations_until_it_ends(session_factory, seed, clock) -> None:
    customer = await seed.customer(points=50)
    _, partner = await seed.partner()
    offer = await seed.offer(partner)
    await _record_no_shows(session_factory, clock, customer.id, 2)

    async with session_factory() as session:
        blocked = await ReservationService(session, clock=clock).create_reservation(customer, offer.id, 1)
    assert isinstance(blocked, Err)
    assert blocked.kind == ErrorKind.SUSPENDED

    clock.advance(minutes=31)
    async with session_factory() as session:
        allowed = await ReservationService(session, clock=clock).create_reservation(customer, offer.id, 1)
        await session.commit()
    assert isinstance(allowed, Ok)


@pytest.mark.asyncio
async def test_lift_suspension_spends_tier_cost(session_factory, seed, clock) -> None:
    customer = await seed.customer(points=35)
    await _record_no_shows(session_factory, clock, customer.id, 2)

    async with session_factory() as session:
        lifted = await PenaltyService(session, clock=clock).lift_suspension_with_points(customer.id)
        await session.commit()

    assert isinstance(lifted, Ok)
    assert lifted.value.points_spent == 30
    assert lifted.value.new_balance == 5

    async with session_factory() as session:
        service = PenaltyService(session, clock=clock)
        status = await service.get_penalty_status(customer.id)
        again = await service.lift_suspension_with_points(customer.id)

    assert not status.is_suspended
    assert status.no_show_count == 2
    assert isinstance(again, Err)
    assert again.key == "no_active_suspension"


@pytest.mark.asyncio
async def test_lift_without_enough_points_keeps_suspension(session_factory, seed, clock) -> None:
    customer = await seed.customer(points=10)
    await _record_no_shows(session_factory, clock, customer.id, 3)

    async with session_factory() as session:
        service = PenaltyService(session, clock=clock)
        result = await service.lift_suspension_with_points(customer.id)
        await session.commit()

    assert isinstance(result, Err)
    assert result.kind == ErrorKind.INSUFFICIENT_BALANCE
    assert await seed.balance(customer.id) == 10
    async with session_factory() as session:
        assert await PenaltyService(session, clock=clock).is_suspended(customer.id)


@pytest.mark.asyncio
async def test_warning_tier_is_not_liftable(session_factory, seed, clock) -> None:
    customer = await seed.customer(points=100)
    await _record_no_shows(session_factory, clock, customer.id, 1)

    async with session_factory() as session:
        result = await PenaltyService(session, clock=clock).lift_suspension_with_points(customer.id)

    assert isinstance(result, Err)
    assert result.kind == ErrorKind.VALIDATION


@pytest.mark.asyncio
async def test_acknowledge_offense_is_owner_only(session_factory, seed, clock) -> None:
    customer = await seed.customer()
    stranger = await seed.customer()
    outcome = (await _record_no_shows(session_factory, clock, customer.id, 1))[0]

    async with session_factory() as session:
        service = PenaltyService(session, clock=clock)
        foreign = await service.acknowledge_offense(stranger.id, outcome.offense_id)
        acknowledged = await service.acknowledge_offense(customer.id, outcome.offense_id)
        await session.commit()

    assert isinstance(foreign, Err) and foreign.kind == ErrorKind.NOT_FOUND
    assert isinstance(acknowledged, Ok)
    assert acknowledged.value.acknowledged_at is not None


@pytest.mark.asyncio
async def test_admin_reset_clears_count_and_suspension(session_factory, seed, clock) -> None:
    customer = await seed.customer()
    await _record_no_shows(session_factory, clock, customer.id, 4)

    async with session_factory() as session:
        penalty = await PenaltyService(session, clock=clock).reset_penalty(customer.id)
        await session.commit()

    assert penalty.no_show_count == 0
    async with session_factory() as session:
        status = await PenaltyService(session, clock=clock).get_penalty_status(customer.id)
    assert not status.is_suspended

    outcome = (await _record_no_shows(session_factory, clock, customer.id, 1))[0]
    assert outcome.tier == "warning"
