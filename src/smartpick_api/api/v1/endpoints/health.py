from __future__ import annotations

from typing import Dict, Literal

from fastapi import APIRouter, Depends, Request
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from smartpick_api.core.settings import settings
from smartpick_api.db.session import get_session
from smartpick_api.observability.scheduler import get_scheduler_store


router = APIRouter()


class ComponentStatus(BaseModel):
    status: Literal["ready", "starting", "disabled", "error"]
    detail: str | None = Field(default=None, description="Human readable status detail")


class ReadinessPayload(BaseModel):
    status: Literal["ready", "degraded", "error"]
    components: Dict[str, ComponentStatus]


@router.get("/healthz", summary="Service health check")
async def service_health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz", summary="Service readiness", response_model=ReadinessPayload)
async def service_readiness(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> ReadinessPayload:
    components: Dict[str, ComponentStatus] = {}
    overall: Literal["ready", "degraded", "error"] = "ready"

    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError as error:
        logger.warning("Readiness database probe failed", error=str(error))
        components["database"] = ComponentStatus(status="error", detail=str(error))
        overall = "error"
    else:
        components["database"] = ComponentStatus(status="ready")

    scheduler = getattr(request.app.state, "job_scheduler", None)
    if settings.job_scheduler_enabled and scheduler is not None:
        running = bool(getattr(scheduler, "is_running", False))
        component: Literal["ready", "starting", "disabled", "error"] = "ready" if running else "starting"
        detail = None if running else "Sweep scheduler not running"
        failing = [
            job_id
            for job_id, job in get_scheduler_store().snapshot().jobs.items()
            if job.totals.get("consecutive_failures", 0) > 0
        ]
        if failing:
            component = "error"
            detail = f"Jobs failing: {', '.join(failing)}"
            overall = "error"
        elif not running and overall == "ready":
            overall = "degraded"
        components["sweep_scheduler"] = ComponentStatus(status=component, detail=detail)
    else:
        components["sweep_scheduler"] = ComponentStatus(
            status="disabled",
            detail="Sweep scheduler disabled via settings",
        )

    return ReadinessPayload(status=overall, components=components)
