"""Observability snapshots for the points engine and its sweeps."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from smartpick_api.api.dependencies.security import require_internal_api_key
from smartpick_api.observability.engine import get_engine_store
from smartpick_api.observability.scheduler import get_scheduler_store


router = APIRouter(
    prefix="/observability",
    tags=["Observability"],
    dependencies=[Depends(require_internal_api_key)],
)


@router.get("/engine", summary="Engine and scheduler metric snapshot")
async def get_engine_snapshot() -> dict[str, object]:
    return {
        "engine": get_engine_store().snapshot().as_dict(),
        "scheduler": get_scheduler_store().snapshot().as_dict(),
    }


def _format_metric(name: str, description: str, value: int | float, labels: dict[str, str] | None = None) -> list[str]:
    label_fragment = ""
    if labels:
        formatted = ",".join(f'{key}="{val}"' for key, val in sorted(labels.items()))
        label_fragment = f"{{{formatted}}}"
    return [
        f"# HELP {name} {description}",
        f"# TYPE {name} counter",
        f"{name}{label_fragment} {value}",
    ]


@router.get("/prometheus", summary="Prometheus-formatted engine counters", response_class=PlainTextResponse)
async def get_prometheus_metrics() -> PlainTextResponse:
    engine = get_engine_store().snapshot()
    scheduler = get_scheduler_store().snapshot()
    lines: list[str] = []

    for key, value in sorted(engine.ledger.items()):
        kind, _, reason = key.partition(":")
        name = "smartpick_ledger_transactions_total" if kind == "count" else "smartpick_ledger_points_total"
        lines.extend(_format_metric(name, "Ledger activity by reason", value, {"reason": reason}))
    for status, value in sorted(engine.transitions.items()):
        lines.extend(_format_metric("smartpick_reservation_transitions_total", "Reservation transitions", value, {"status": status}))
    for outcome, value in sorted(engine.idempotent_outcomes.items()):
        lines.extend(_format_metric("smartpick_idempotent_outcomes_total", "Benign repeated operations", value, {"outcome": outcome}))
    for component, value in sorted(engine.races_lost.items()):
        lines.extend(_format_metric("smartpick_races_lost_total", "Uniqueness races lost", value, {"component": component}))
    for kind, value in sorted(engine.rejections.items()):
        lines.extend(_format_metric("smartpick_rejections_total", "Rejected operations", value, {"kind": kind}))
    for job_id, state in sorted(scheduler.jobs.items()):
        for metric, value in state.totals.items():
            lines.extend(_format_metric(f"smartpick_scheduler_{metric}", "Sweep scheduler counters", value, {"job": job_id}))

    return PlainTextResponse("\n".join(lines) + "\n")
