from pathlib import Path

import pytest

from smartpick_api.observability.scheduler import get_scheduler_store
from smartpick_api.scheduling.config import JobDefinition, load_job_definitions
from smartpick_api.scheduling.runner import SweepScheduler, resolve_task


def _job(job_id: str, max_attempts: int) -> JobDefinition:
    return JobDefinition(
        id=job_id,
        task="tests.sweep",
        cron="* * * * *",
        kwargs={},
        max_attempts=max_attempts,
        base_backoff_seconds=0.0,
        backoff_multiplier=1.0,
        max_backoff_seconds=0.0,
        jitter_seconds=0.0,
    )


@pytest.mark.asyncio
async def test_scheduler_retries_and_records_metrics(tmp_path: Path) -> None:
    store = get_scheduler_store()
    scheduler = SweepScheduler(session_factory=lambda: None, config_path=tmp_path / "noop.toml")

    attempts = 0

    async def flaky_sweep(*, session_factory) -> dict:
        nonlocal attempts
        attempts += 1
        if attempts < 2:
            raise RuntimeError("database is locked")
        return {"expired": 3}

    job = _job("sweep-alpha", max_attempts=3)
    result = await scheduler.build_runner(flaky_sweep, job)()

    assert result == {"expired": 3}
    snapshot = store.snapshot()
    assert snapshot.totals["runs"] == 1
    assert snapshot.totals["success"] == 1
    assert snapshot.totals["attempt_failures"] == 1
    assert snapshot.totals["retries"] == 1
    job_snapshot = snapshot.jobs[job.id]
    assert job_snapshot.last_success_at is not None
    assert job_snapshot.last_error is None
    assert job_snapshot.totals["consecutive_failures"] == 0
    assert attempts == 2


@pytest.mark.asyncio
async def test_scheduler_records_final_failure(tmp_path: Path) -> None:
    store = get_scheduler_store()
    scheduler = SweepScheduler(session_factory=lambda: None, config_path=tmp_path / "noop.toml")

    async def failing_sweep(*, session_factory) -> None:
        raise RuntimeError("boom")

    job = _job("sweep-failure", max_attempts=2)
    assert await scheduler.build_runner(failing_sweep, job)() is None

    snapshot = store.snapshot()
    assert snapshot.totals["run_failures"] == 1
    job_snapshot = snapshot.jobs[job.id]
    assert job_snapshot.totals["consecutive_failures"] == 2
    assert job_snapshot.last_error == "boom"

    health = scheduler.health()
    assert health["running"] is False
    assert health["configured_jobs"] == 0


def test_load_job_definitions_parses_retry_policy(tmp_path: Path) -> None:
    config_path = tmp_path / "schedules.toml"
    config_path.write_text(
        """
timezone = "Asia/Tbilisi"

[jobs.expire]
task = "smartpick_api.jobs.expire_overdue_reservations"
cron = "* * * * *"
max_attempts = 3
base_backoff_seconds = 2
backoff_multiplier = 3
max_backoff_seconds = 10
jitter_seconds = 0
kwargs = { limit = 50 }

[jobs.broken]
cron = "* * * * *"
"""
    )

    config = load_job_definitions(config_path)

    assert config.timezone == "Asia/Tbilisi"
    assert [job.id for job in config.jobs] == ["expire"]
    job = config.jobs[0]
    assert job.kwargs == {"limit": 50}
    assert [job.retry_delay(attempt) for attempt in (1, 2, 3)] == [2.0, 6.0, 10.0]


def test_load_job_definitions_requires_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_job_definitions(tmp_path / "missing.toml")


def test_bundled_schedule_resolves_to_sweeps() -> None:
    config = load_job_definitions(Path(__file__).resolve().parents[1] / "config" / "schedules.toml")

    tasks = {job.id: resolve_task(job.task) for job in config.jobs}

    assert set(tasks) == {"expire_overdue_reservations", "auto_deny_stale_forgiveness"}
    with pytest.raises(TypeError):
        resolve_task("smartpick_api.services.reservations.generate_qr_code")
