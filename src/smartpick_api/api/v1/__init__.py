from fastapi import APIRouter

from .endpoints import (
    achievements,
    cooldown,
    forgiveness,
    health,
    observability,
    penalties,
    points,
    referrals,
    reservations,
    slots,
    system,
)

router = APIRouter()
router.include_router(health.router, tags=["Health"])
router.include_router(points.router)
router.include_router(reservations.router)
router.include_router(penalties.router)
router.include_router(forgiveness.router)
router.include_router(cooldown.router)
router.include_router(achievements.router)
router.include_router(slots.router)
router.include_router(referrals.router)
router.include_router(system.router)
router.include_router(observability.router)
