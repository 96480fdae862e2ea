"""On-demand triggers for the scheduled sweeps (internal callers only)."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, Query

from smartpick_api.api.dependencies.security import require_internal_api_key
from smartpick_api.db.session import get_session_factory
from smartpick_api.jobs import auto_deny_stale_forgiveness, expire_overdue_reservations


router = APIRouter(
    prefix="/system",
    tags=["System"],
    dependencies=[Depends(require_internal_api_key)],
)


@router.post("/sweeps/expired-reservations")
async def run_expiry_sweep(
    limit: int = Query(200, ge=1, le=1000),
    session_factory=Depends(get_session_factory),
) -> Dict[str, Any]:
    return await expire_overdue_reservations(session_factory=session_factory, limit=limit)


@router.post("/sweeps/forgiveness")
async def run_forgiveness_sweep(
    limit: int = Query(500, ge=1, le=5000),
    session_factory=Depends(get_session_factory),
) -> Dict[str, Any]:
    return await auto_deny_stale_forgiveness(session_factory=session_factory, limit=limit)
