"""Sweep that expires overdue reservations and releases their escrow."""

from __future__ import annotations

from typing import Any, Dict

from loguru import logger

from smartpick_api.core.clock import BusinessClock
from smartpick_api.services.reservations import ReservationService

from ._session import SessionFactory, open_session


async def expire_overdue_reservations(
    *,
    session_factory: SessionFactory,
    limit: int = 200,
    clock: BusinessClock | None = None,
) -> Dict[str, Any]:
    session = await open_session(session_factory)
    async with session as managed_session:
        service = ReservationService(managed_session, clock=clock)
        outcomes = await service.expire_overdue(limit=limit)
        await managed_session.commit()

    summary = {
        "expired": len(outcomes),
        "no_shows_recorded": sum(1 for outcome in outcomes if outcome.no_show is not None),
        "points_released": sum(outcome.reservation.points_spent for outcome in outcomes),
    }
    logger.bind(summary=summary).info("Reservation expiry sweep completed")
    return summary


__all__ = ["expire_overdue_reservations"]
