"""Business-local calendar helpers.

Daily limits and streaks are evaluated against the business's local calendar day rather than
UTC midnight. Services accept a ``BusinessClock`` so tests can pin time with ``FrozenClock``.
"""

from __future__ import annotations

import datetime as dt
from zoneinfo import ZoneInfo

from smartpick_api.core.settings import settings


def ensure_aware(value: dt.datetime) -> dt.datetime:
    """Normalize database timestamps (naive on SQLite) to aware UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


class BusinessClock:
    """Wall clock bound to the business timezone."""

    def __init__(self, timezone: str | None = None) -> None:
        self._tz = ZoneInfo(timezone or settings.business_timezone)

    @property
    def tz(self) -> ZoneInfo:
        return self._tz

    def now(self) -> dt.datetime:
        return dt.datetime.now(dt.timezone.utc)

    def local_date(self, at: dt.datetime | None = None) -> dt.date:
        moment = ensure_aware(at) if at is not None else self.now()
        return moment.astimezone(self._tz).date()

    def local_day_bounds(self, day: dt.date) -> tuple[dt.datetime, dt.datetime]:
        """Return the UTC instants of local midnight and the following local midnight."""

        start_local = dt.datetime.combine(day, dt.time.min, tzinfo=self._tz)
        end_local = dt.datetime.combine(day + dt.timedelta(days=1), dt.time.min, tzinfo=self._tz)
        return start_local.astimezone(dt.timezone.utc), end_local.astimezone(dt.timezone.utc)


class FrozenClock(BusinessClock):
    """Clock pinned to a fixed instant; advance it explicitly."""

    def __init__(self, at: dt.datetime, timezone: str | None = None) -> None:
        super().__init__(timezone)
        self._now = ensure_aware(at)

    def now(self) -> dt.datetime:
        return self._now

    def set(self, at: dt.datetime) -> None:
        self._now = ensure_aware(at)

    def advance(self, **delta: float) -> dt.datetime:
        self._now = self._now + dt.timedelta(**delta)
        return self._now


_DEFAULT_CLOCK: BusinessClock | None = None


def get_clock() -> BusinessClock:
    global _DEFAULT_CLOCK
    if _DEFAULT_CLOCK is None:
        _DEFAULT_CLOCK = BusinessClock()
    return _DEFAULT_CLOCK


__all__ = ["BusinessClock", "FrozenClock", "ensure_aware", "get_clock"]
