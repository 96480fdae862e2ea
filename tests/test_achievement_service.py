import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from smartpick_api.models.achievement import UserAchievement
from smartpick_api.services.achievements import DEFAULT_ACHIEVEMENTS, AchievementService, user_level
from smartpick_api.services.results import Err, ErrorKind, Ok


async def _pickup(session_factory, clock, user_id, partner_id, *, category="bakery", saved="4.00"):
    async with session_factory() as session:
        service = AchievementService(session, clock=clock)
        await service.record_pickup(user_id, partner_id=partner_id, category=category, money_saved=Decimal(saved))
        unlocked = await service.evaluate_and_unlock(user_id)
        await session.commit()
    return [row.achievement_id for row in unlocked]


def test_user_level_thresholds() -> None:
    assert user_level(0) == "Newcomer"
    assert user_level(5) == "Explorer"
    assert user_level(29) == "Regular"
    assert user_level(50) == "Legend"


@pytest.mark.asyncio
async def test_sync_catalog_is_idempotent(session_factory, clock) -> None:
    async with session_factory() as session:
        created = await AchievementService(session, clock=clock).sync_catalog()
        await session.commit()
    async with session_factory() as session:
        repeated = await AchievementService(session, clock=clock).sync_catalog()
        await session.commit()

    assert created == len(DEFAULT_ACHIEVEMENTS)
    assert repeated == 0


@pytest.mark.asyncio
async def test_unlocks_happen_once(session_factory, seed, clock) -> None:
    await seed.catalog()
    customer = await seed.customer()
    _, partner = await seed.partner()

    first = await _pickup(session_factory, clock, customer.id, partner.id)
    second = await _pickup(session_factory, clock, customer.id, partner.id)

    assert first == ["first_pick"]
    assert second == []


@pytest.mark.asyncio
async def test_streak_counts_business_days(session_factory, seed, clock) -> None:
    await seed.catalog()
    customer = await seed.customer()
    _, partner = await seed.partner()

    unlocked: list[str] = []
    for _ in range(3):
        unlocked += await _pickup(session_factory, clock, customer.id, partner.id)
        clock.advance(days=1)

    assert "on_a_roll" in unlocked
    async with session_factory() as session:
        stats = await AchievementService(session, clock=clock).get_stats(customer.id)
    assert stats.current_streak_days == 3
    assert stats.longest_streak_days == 3

    clock.advance(days=2)
    await _pickup(session_factory, clock, customer.id, partner.id)
    async with session_factory() as session:
        stats = await AchievementService(session, clock=clock).get_stats(customer.id)
    assert stats.current_streak_days == 1
    assert stats.longest_streak_days == 3


@pytest.mark.asyncio
async def test_category_and_partner_progress(session_factory, seed, clock) -> None:
    await seed.catalog()
    customer = await seed.customer()
    partners = [(await seed.partner())[1] for _ in range(5)]

    unlocked: list[str] = []
    for partner in partners:
        unlocked += await _pickup(session_factory, clock, customer.id, partner.id, saved="11.00")

    assert {"first_pick", "bakery_lover", "explorer", "smart_saver"} <= set(unlocked)
    assert "loyal_customer" not in unlocked

    async with session_factory() as session:
        progress = {
            item.definition.id: item
            for item in await AchievementService(session, clock=clock).list_user_progress(customer.id)
        }
    assert progress["savings_master"].progress == Decimal("55")
    assert progress["savings_master"].unlocked is None
    assert progress["explorer"].unlocked is not None


@pytest.mark.asyncio
async def test_claim_reward_pays_exactly_once(session_factory, seed, clock) -> None:
    await seed.catalog()
    customer = await seed.customer(points=3)
    _, partner = await seed.partner()
    await _pickup(session_factory, clock, customer.id, partner.id)

    async with session_factory() as session:
        first = await AchievementService(session, clock=clock).claim_reward(customer.id, "first_pick")
        await session.commit()
    async with session_factory() as session:
        second = await AchievementService(session, clock=clock).claim_reward(customer.id, "first_pick")
        await session.commit()

    assert isinstance(first, Ok)
    assert first.value.awarded_now
    assert first.value.reward_points == 10
    assert first.value.new_balance == 13
    assert isinstance(second, Ok)
    assert second.value.already_claimed
    assert not second.value.awarded_now
    assert second.value.new_balance == 13
    assert await seed.balance(customer.id) == 13


@pytest.mark.asyncio
async def test_claim_requires_unlock(session_factory, seed, clock) -> None:
    await seed.catalog()
    customer = await seed.customer()

    async with session_factory() as session:
        result = await AchievementService(session, clock=clock).claim_reward(customer.id, "week_streak")

    assert isinstance(result, Err)
    assert result.kind == ErrorKind.NOT_FOUND


@pytest.mark.asyncio
async def test_mark_viewed_clears_new_flag(session_factory, seed, clock) -> None:
    await seed.catalog()
    customer = await seed.customer()
    _, partner = await seed.partner()
    await _pickup(session_factory, clock, customer.id, partner.id)

    clock.advance(minutes=5)
    async with session_factory() as session:
        result = await AchievementService(session, clock=clock).mark_viewed(customer.id, "first_pick")
        await session.commit()

    assert isinstance(result, Ok)
    assert result.value.is_new is False
    assert result.value.viewed_at is not None
    assert result.value.viewed_at == clock.now()


@pytest.mark.asyncio
async def test_concurrent_evaluations_unlock_once(session_factory, seed, clock) -> None:
    await seed.catalog()
    customer = await seed.customer()
    _, partner = await seed.partner()
    async with session_factory() as session:
        await AchievementService(session, clock=clock).record_pickup(
            customer.id, partner_id=partner.id, category="bakery", money_saved=Decimal("4.00")
        )
        await session.commit()

    async def evaluate():
        async with session_factory() as session:
            unlocked = await AchievementService(session, clock=clock).evaluate_and_unlock(customer.id)
            await session.commit()
        return [row.achievement_id for row in unlocked]

    results = await asyncio.gather(*(evaluate() for _ in range(4)))

    assert sorted(results) == [[], [], [], ["first_pick"]]
    async with session_factory() as session:
        rows = await session.scalar(
            select(func.count()).select_from(UserAchievement).where(UserAchievement.user_id == customer.id)
        )
    assert rows == 1


@pytest.mark.asyncio
async def test_concurrent_claims_pay_once(session_factory, seed, clock) -> None:
    await seed.catalog()
    customer = await seed.customer()
    _, partner = await seed.partner()
    await _pickup(session_factory, clock, customer.id, partner.id)

    async def claim():
        async with session_factory() as session:
            result = await AchievementService(session, clock=clock).claim_reward(customer.id, "first_pick")
            await session.commit()
        return result.value

    outcomes = await asyncio.gather(claim(), claim())

    assert sorted(outcome.awarded_now for outcome in outcomes) == [False, True]
    assert {outcome.new_balance for outcome in outcomes} == {10}
    assert await seed.balance(customer.id) == 10
