"""Tests for scheduler service lifecycle."""

from __future__ import annotations

import pytest

from url_indexing_pipeline.services.scheduler import SchedulerService


async def _noop_job() -> None:
    return None


@pytest.mark.asyncio
async def test_scheduler_service_runs_interval_jobs_in_memory() -> None:
    scheduler = SchedulerService(enabled=True)

    scheduler.add_interval_job(
        job_id="interval-job", func=_noop_job, seconds=60, name="Noop"
    )
    scheduler.add_interval_job(job_id="interval-job", func=_noop_job, seconds=30)

    await scheduler.start()
    try:
        assert scheduler.running is True
        jobs = scheduler.list_jobs()
        assert [job.job_id for job in jobs] == ["interval-job"]
        assert "interval" in jobs[0].trigger.lower()
        assert jobs[0].paused is False

        scheduler.pause()
        assert scheduler.paused is True
        scheduler.resume()
        assert scheduler.paused is False
    finally:
        await scheduler.shutdown()

    assert scheduler.running is False


@pytest.mark.asyncio
async def test_scheduler_service_rejects_operations_when_disabled() -> None:
    scheduler = SchedulerService(enabled=False)

    await scheduler.start()

    assert scheduler.running is False
    assert scheduler.list_jobs() == []
    with pytest.raises(RuntimeError, match="disabled"):
        scheduler.pause()
    with pytest.raises(RuntimeError, match="disabled"):
        scheduler.add_interval_job(job_id="job", func=_noop_job, seconds=60)


@pytest.mark.asyncio
async def test_scheduler_service_validates_interval_and_running_state() -> None:
    scheduler = SchedulerService(enabled=True)

    with pytest.raises(ValueError, match="greater than zero"):
        scheduler.add_interval_job(job_id="job", func=_noop_job, seconds=0)
    with pytest.raises(RuntimeError, match="not running"):
        scheduler.resume()
