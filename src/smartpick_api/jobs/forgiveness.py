"""Sweep that auto-denies forgiveness requests nobody answered in time."""

from __future__ import annotations

from typing import Any, Dict

from loguru import logger

from smartpick_api.core.clock import BusinessClock
from smartpick_api.services.forgiveness import ForgivenessService

from ._session import SessionFactory, open_session


async def auto_deny_stale_forgiveness(
    *,
    session_factory: SessionFactory,
    limit: int = 500,
    clock: BusinessClock | None = None,
) -> Dict[str, Any]:
    session = await open_session(session_factory)
    async with session as managed_session:
        service = ForgivenessService(managed_session, clock=clock)
        expired = await service.expire_stale_requests(limit=limit)
        await managed_session.commit()

    summary = {"auto_denied": len(expired), "request_ids": [str(request.id) for request in expired]}
    logger.bind(summary=summary).info("Forgiveness auto-deny sweep completed")
    return summary


__all__ = ["auto_deny_stale_forgiveness"]
