"""APScheduler runtime for the reservation and forgiveness sweeps."""

from __future__ import annotations

import asyncio
import inspect
import time
from importlib import import_module
from pathlib import Path
from typing import Any, Awaitable, Callable
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from loguru import logger

from smartpick_api.observability.scheduler import get_scheduler_store

from .config import JobDefinition, ScheduleConfig, load_job_definitions

SessionFactory = Callable[[], Awaitable[Any]] | Callable[[], Any]
JobCallable = Callable[..., Awaitable[Any]]


class SweepScheduler:
    """Run configured sweeps on cron triggers with retry and backoff."""

    def __init__(self, *, session_factory: SessionFactory, config_path: Path) -> None:
        self._session_factory = session_factory
        self._config_path = config_path
        self._config: ScheduleConfig | None = None
        self._scheduler: AsyncIOScheduler | None = None
        self._store = get_scheduler_store()

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> None:
        config = load_job_definitions(self._config_path)
        timezone = ZoneInfo(config.timezone)
        scheduler = AsyncIOScheduler(timezone=timezone)
        for job in config.jobs:
            scheduler.add_job(
                self.build_runner(resolve_task(job.task), job),
                trigger=CronTrigger.from_crontab(job.cron, timezone=timezone),
                id=job.id,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
            logger.info("Registered sweep job", job_id=job.id, task=job.task, cron=job.cron)

        scheduler.start()
        self._config = config
        self._scheduler = scheduler
        logger.info("Sweep scheduler started", jobs=len(config.jobs), timezone=config.timezone)

    async def stop(self) -> None:
        if self._scheduler is None:
            return
        result = self._scheduler.shutdown(wait=False)
        if inspect.isawaitable(result):
            await result
        self._scheduler = None
        logger.info("Sweep scheduler stopped")

    def build_runner(self, func: JobCallable, job: JobDefinition) -> Callable[[], Awaitable[Any]]:
        """Wrap ``func`` so each trigger retries per ``job`` and reports to the store."""

        async def _run() -> Any:
            self._store.record_dispatch(job.id, job.task)
            started = time.perf_counter()
            attempt = 0
            while True:
                attempt += 1
                try:
                    result = await func(session_factory=self._session_factory, **job.kwargs)
                except Exception as exc:
                    message = str(exc)
                    self._store.record_attempt_failure(job.id, job.task, attempts=attempt, error=message)
                    if attempt >= job.max_attempts:
                        self._store.record_run_failure(
                            job.id,
                            job.task,
                            runtime_seconds=time.perf_counter() - started,
                            attempts=attempt,
                            error=message,
                        )
                        logger.exception("Sweep job failed after retries", job_id=job.id, attempts=attempt, error=message)
                        return None
                    delay = job.retry_delay(attempt)
                    self._store.record_retry(job.id, job.task, delay_seconds=delay, attempts=attempt + 1)
                    logger.warning("Sweep job retrying", job_id=job.id, attempt=attempt + 1, delay_seconds=delay)
                    if delay:
                        await asyncio.sleep(delay)
                    continue

                runtime = time.perf_counter() - started
                self._store.record_success(job.id, job.task, runtime_seconds=runtime, attempts=attempt)
                logger.info("Sweep job completed", job_id=job.id, attempts=attempt, runtime_seconds=runtime)
                return result

        return _run

    def health(self) -> dict[str, object]:
        snapshot = self._store.snapshot()
        jobs = self._config.jobs if self._config else []
        return {
            "running": self.is_running,
            "configured_jobs": len(jobs),
            "totals": snapshot.totals,
            "jobs": [
                {
                    "id": job.id,
                    "task": job.task,
                    "cron": job.cron,
                    "max_attempts": job.max_attempts,
                    "metrics": snapshot.jobs[job.id].as_dict() if job.id in snapshot.jobs else None,
                }
                for job in jobs
            ],
        }


def resolve_task(path: str) -> JobCallable:
    module_name, _, attr = path.rpartition(".")
    if not module_name:
        raise ValueError(f"Invalid task path: {path}")
    func = getattr(import_module(module_name), attr, None)
    if func is None:
        raise AttributeError(f"Task {path} not found")
    if not inspect.iscoroutinefunction(func):
        raise TypeError(f"Task {path} must be an async function")
    return func


__all__ = ["SweepScheduler", "resolve_task"]
