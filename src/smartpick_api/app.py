from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from loguru import logger

from smartpick_api import __version__
from smartpick_api.core.settings import settings
from smartpick_api.db.session import async_session
from .api.errors import install_error_handlers
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing
from .scheduling import SweepScheduler
from .services.achievements import AchievementService


APP_VERSION = __version__


def _session_factory():
    return async_session()


def _schedule_path() -> Path:
    path = Path(settings.job_schedule_path)
    if not path.is_absolute():
        path = Path(__file__).resolve().parents[2] / path
    return path


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.achievement_catalog_sync_enabled:
        async with async_session() as session:
            synced = await AchievementService(session).sync_catalog()
            await session.commit()
        logger.info("Achievement catalog synced", definitions=synced)

    schedule_path = _schedule_path()
    job_scheduler = SweepScheduler(session_factory=_session_factory, config_path=schedule_path)
    app.state.job_scheduler = job_scheduler

    scheduler_enabled = settings.job_scheduler_enabled
    if scheduler_enabled:
        try:
            job_scheduler.start()
        except FileNotFoundError as exc:
            logger.exception("Sweep scheduler failed to start", error=str(exc))
        else:
            logger.info("Sweep scheduler enabled", schedule_path=str(schedule_path))
    else:
        logger.info("Sweep scheduler disabled", reason="job_scheduler_enabled is false")

    try:
        yield
    finally:
        if job_scheduler.is_running:
            await job_scheduler.stop()


def create_app() -> FastAPI:
    """Application factory for the SmartPick engine service."""
    configure_logging(
        service_name="smartpick-api",
        environment=settings.environment,
        version=APP_VERSION,
    )

    app = FastAPI(
        title="SmartPick API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    configure_tracing(
        app,
        service_name="smartpick-api",
        service_version=APP_VERSION,
        environment=settings.environment,
    )

    install_error_handlers(app)
    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": APP_VERSION,
        }

    return app
