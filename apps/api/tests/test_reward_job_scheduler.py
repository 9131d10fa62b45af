from pathlib import Path

import pytest

from patisserie_api.jobs.rewards import prune_free_product_claims, reset_free_product_rewards
from patisserie_api.observability.scheduler import get_reward_scheduler_store
from patisserie_api.scheduling.config import JobDefinition, ScheduleConfig, load_job_definitions
from patisserie_api.scheduling.runner import RewardJobScheduler

SCHEDULE_PATH = Path(__file__).resolve().parents[1] / "config" / "schedules.toml"


def _job(job_id: str, *, max_attempts: int = 1) -> JobDefinition:
    return JobDefinition(
        id=job_id,
        task=f"tests.{job_id}",
        cron="* * * * *",
        kwargs={},
        max_attempts=max_attempts,
        base_backoff_seconds=0.0,
        backoff_multiplier=1.0,
        max_backoff_seconds=0.0,
        jitter_seconds=0.0,
    )


@pytest.mark.asyncio
async def test_scheduler_retries_and_records_result(tmp_path: Path) -> None:
    store = get_reward_scheduler_store()
    scheduler = RewardJobScheduler(session_factory=lambda: None, config_path=tmp_path / "noop.toml")

    attempts = 0

    async def flaky_reset(*, session_factory) -> dict[str, object]:
        nonlocal attempts
        attempts += 1
        if attempts < 2:
            raise RuntimeError("database is locked")
        return {"month_key": "2025-12", "users_reset": 4}

    job = _job("monthly-reset", max_attempts=3)
    result = await scheduler._wrap_callable(flaky_reset, job)()

    assert result == {"month_key": "2025-12", "users_reset": 4}
    snapshot = store.snapshot()
    assert snapshot.totals["runs"] == 1
    assert snapshot.totals["success"] == 1
    assert snapshot.totals["attempt_failures"] == 1
    assert snapshot.totals["retries"] == 1
    job_snapshot = snapshot.jobs[job.id]
    assert job_snapshot.last_result == {"month_key": "2025-12", "users_reset": 4}
    assert job_snapshot.last_attempts == 2
    assert job_snapshot.last_error is None


@pytest.mark.asyncio
async def test_scheduler_records_final_failure(tmp_path: Path) -> None:
    store = get_reward_scheduler_store()
    scheduler = RewardJobScheduler(session_factory=lambda: None, config_path=tmp_path / "noop.toml")

    async def failing_job(*, session_factory) -> None:
        raise RuntimeError("boom")

    job = _job("claim-retention", max_attempts=2)
    result = await scheduler._wrap_callable(failing_job, job)()

    assert result is None
    snapshot = store.snapshot()
    assert snapshot.totals["run_failures"] == 1
    job_snapshot = snapshot.jobs[job.id]
    assert job_snapshot.totals["consecutive_failures"] == 2
    assert job_snapshot.last_error == "boom"
    assert job_snapshot.last_error_at is not None


@pytest.mark.asyncio
async def test_scheduler_health_snapshot(tmp_path: Path) -> None:
    scheduler = RewardJobScheduler(session_factory=lambda: None, config_path=tmp_path / "noop.toml")

    async def successful_job(*, session_factory) -> dict[str, object]:
        return {"skipped": True, "claims_removed": 0}

    job = _job("health")
    await scheduler._wrap_callable(successful_job, job)()

    scheduler._config = ScheduleConfig(timezone="Asia/Kolkata", jobs=[job])
    scheduler._is_running = True

    health = scheduler.health()
    assert health["running"] is True
    assert health["configured_jobs"] == 1
    assert health["totals"]["runs"] == 1
    metrics = health["jobs"][0]["metrics"]
    assert metrics["totals"]["runs"] == 1
    assert metrics["last_success_at"] is not None
    assert metrics["last_result"] == {"skipped": True, "claims_removed": 0}


def test_load_job_definitions_parses_retry_fields(tmp_path: Path) -> None:
    config_path = tmp_path / "schedules.toml"
    config_path.write_text(
        """
        timezone = "UTC"

        [jobs.sample]
        task = "module.task"
        cron = "*/5 * * * *"
        max_attempts = 5
        base_backoff_seconds = 2
        backoff_multiplier = 3
        max_backoff_seconds = 30
        jitter_seconds = 1.5

        [jobs.disabled]
        task = "module.other"
        cron = "0 0 1 * *"
        enabled = false

        [jobs.broken]
        cron = "0 0 1 * *"
        """
    )

    config = load_job_definitions(config_path)
    assert config.timezone == "UTC"
    assert [job.id for job in config.jobs] == ["sample", "disabled"]
    assert [job.id for job in config.enabled_jobs] == ["sample"]
    job = config.jobs[0]
    assert job.max_attempts == 5
    assert job.base_backoff_seconds == 2.0
    assert job.backoff_multiplier == 3.0
    assert job.max_backoff_seconds == 30.0
    assert job.jitter_seconds == 1.5


def test_missing_schedule_file_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_job_definitions(tmp_path / "missing.toml")


def test_shipped_schedule_resolves_reward_jobs(tmp_path: Path) -> None:
    config = load_job_definitions(SCHEDULE_PATH)
    assert config.timezone == "Asia/Kolkata"
    jobs = {job.id: job for job in config.jobs}
    assert jobs["free_product_monthly_reset"].cron == "1 0 * * *"
    assert jobs["free_product_claim_retention"].cron == "5 0 1 * *"

    scheduler = RewardJobScheduler(session_factory=lambda: None, config_path=SCHEDULE_PATH)
    assert scheduler._resolve_callable(jobs["free_product_monthly_reset"]) is reset_free_product_rewards
    assert scheduler._resolve_callable(jobs["free_product_claim_retention"]) is prune_free_product_claims


def test_resolve_callable_rejects_bad_tasks(tmp_path: Path) -> None:
    scheduler = RewardJobScheduler(session_factory=lambda: None, config_path=tmp_path / "noop.toml")

    with pytest.raises(ValueError):
        scheduler._resolve_callable(JobDefinition(id="bad", task="no_module", cron="* * * * *"))
    with pytest.raises(AttributeError):
        scheduler._resolve_callable(
            JobDefinition(id="missing", task="patisserie_api.jobs.rewards.does_not_exist", cron="* * * * *")
        )
    with pytest.raises(TypeError):
        scheduler._resolve_callable(
            JobDefinition(id="sync", task="patisserie_api.scheduling.config.load_job_definitions", cron="* * * * *")
        )
