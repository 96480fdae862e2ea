from datetime import date, datetime, timedelta, timezone

from smartpick_api.core.clock import BusinessClock, FrozenClock, ensure_aware


def test_local_date_follows_business_timezone() -> None:
    clock = BusinessClock("Asia/Tbilisi")

    assert clock.local_date(datetime(2026, 10, 18, 19, 59, tzinfo=timezone.utc)) == date(2026, 10, 18)
    assert clock.local_date(datetime(2026, 10, 18, 20, 0, tzinfo=timezone.utc)) == date(2026, 10, 19)


def test_local_day_bounds_are_utc_instants() -> None:
    clock = BusinessClock("Asia/Tbilisi")

    start, end = clock.local_day_bounds(date(2026, 10, 19))

    assert start == datetime(2026, 10, 18, 20, 0, tzinfo=timezone.utc)
    assert end - start == timedelta(days=1)


def test_ensure_aware_treats_naive_values_as_utc() -> None:
    naive = datetime(2026, 10, 18, 8, 0)
    shifted = datetime(2026, 10, 18, 12, 0, tzinfo=timezone(timedelta(hours=4)))

    assert ensure_aware(naive) == datetime(2026, 10, 18, 8, 0, tzinfo=timezone.utc)
    assert ensure_aware(shifted).tzinfo == timezone.utc
    assert ensure_aware(shifted) == ensure_aware(naive)


def test_frozen_clock_advances_explicitly() -> None:
    clock = FrozenClock(datetime(2026, 10, 18, 8, 0))

    assert clock.now().tzinfo == timezone.utc
    assert clock.advance(hours=12) == datetime(2026, 10, 18, 20, 0, tzinfo=timezone.utc)
    assert clock.local_date() == date(2026, 10, 19)
