"""Tests for persisted job logs and progress notifications."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from uuid import UUID, uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from url_indexing_pipeline.models import Base, IndexingJob, JobSourceKind
from url_indexing_pipeline.services.job_log_service import JobLogService
from url_indexing_pipeline.services.notifier import (
    BroadcastJobNotifier,
    CompositeJobNotifier,
    JobProgressEvent,
    LoggingJobNotifier,
    UrlStatusEvent,
)


def _event(processed: int, *, status: str = "running") -> JobProgressEvent:
    return JobProgressEvent(
        status=status,
        progress_percentage=processed * 50.0,
        processed_urls=processed,
        successful_urls=processed,
        failed_urls=0,
        total_urls=2,
    )


@pytest.mark.asyncio
async def test_job_log_service_appends_and_lists_newest_first(tmp_path: Path) -> None:
    database_url = f"sqlite+aiosqlite:///{tmp_path / 'job-logs.sqlite'}"
    engine = create_async_engine(database_url)
    session_factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,
    )

    @asynccontextmanager
    async def scoped_session() -> AsyncIterator[AsyncSession]:
        session = session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)

    async with scoped_session() as session:
        job = IndexingJob(
            user_id=uuid4(),
            name="Logged job",
            source_kind=JobSourceKind.MANUAL,
            source_payload={"urls": []},
        )
        session.add(job)
        await session.flush()
        job_id = job.id

    service = JobLogService(session_factory=scoped_session)
    await service.log(job_id, event_type="job_started", message="Job started")
    await asyncio.sleep(1.1)
    await service.log(
        job_id,
        event_type="job_failed",
        message="x" * 2000,
        level="error",
        metadata={"error": "boom"},
    )

    logs = await service.list_logs(job_id)
    assert [log.event_type for log in logs] == ["job_failed", "job_started"]
    assert logs[0].level == "error"
    assert len(logs[0].message) == 1024
    assert logs[0].metadata_json == {"error": "boom"}
    assert len(await service.list_logs(job_id, limit=1)) == 1
    assert await service.list_logs(uuid4()) == []

    await engine.dispose()


@pytest.mark.asyncio
async def test_broadcast_notifier_delivers_to_user_subscribers_only() -> None:
    notifier = BroadcastJobNotifier()
    user_id, other_user_id, job_id = uuid4(), uuid4(), uuid4()
    queue = notifier.subscribe(user_id)
    other_queue = notifier.subscribe(other_user_id)

    await notifier.notify(user_id, job_id, _event(1))

    message = queue.get_nowait()
    assert message["type"] == "job_progress"
    assert message["job_id"] == str(job_id)
    assert message["processed_urls"] == 1
    assert other_queue.empty()

    notifier.unsubscribe(user_id, queue)
    assert notifier.subscriber_count(user_id) == 0
    notifier.unsubscribe(user_id, queue)


@pytest.mark.asyncio
async def test_broadcast_notifier_drops_events_for_full_queues() -> None:
    notifier = BroadcastJobNotifier(queue_size=1)
    user_id, job_id = uuid4(), uuid4()
    queue = notifier.subscribe(user_id)

    await notifier.notify(user_id, job_id, _event(1))
    await notifier.notify(user_id, job_id, _event(2))

    assert queue.qsize() == 1
    assert queue.get_nowait()["processed_urls"] == 1


@pytest.mark.asyncio
async def test_composite_notifier_forwards_to_every_notifier() -> None:
    received: list[tuple[UUID, UUID, JobProgressEvent]] = []
    url_received: list[UrlStatusEvent] = []

    class _Recorder:
        async def notify(
            self, user_id: UUID, job_id: UUID, event: JobProgressEvent
        ) -> None:
            received.append((user_id, job_id, event))

        async def notify_url_status(
            self, user_id: UUID, job_id: UUID, event: UrlStatusEvent
        ) -> None:
            url_received.append(event)

    composite = CompositeJobNotifier([LoggingJobNotifier(), _Recorder()])
    user_id, job_id = uuid4(), uuid4()

    await composite.notify(user_id, job_id, _event(2, status="completed"))

    assert received == [(user_id, job_id, _event(2, status="completed"))]

    url_event = UrlStatusEvent(
        submission_id=uuid4(), url="https://example.com/a", status="submitted"
    )
    await composite.notify_url_status(user_id, job_id, url_event)
    assert url_received == [url_event]


@pytest.mark.asyncio
async def test_broadcast_notifier_sends_url_status_changes() -> None:
    notifier = BroadcastJobNotifier()
    user_id, job_id, submission_id, account_id = uuid4(), uuid4(), uuid4(), uuid4()
    queue = notifier.subscribe(user_id)

    await notifier.notify_url_status(
        user_id,
        job_id,
        UrlStatusEvent(
            submission_id=submission_id,
            url="https://example.com/a",
            status="failed",
            service_account_id=account_id,
            error_message="Quota exceeded",
        ),
    )

    assert queue.get_nowait() == {
        "type": "url_status_change",
        "job_id": str(job_id),
        "submission_id": str(submission_id),
        "url": "https://example.com/a",
        "status": "failed",
        "service_account_id": str(account_id),
        "error_message": "Quota exceeded",
    }
