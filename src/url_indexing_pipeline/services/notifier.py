"""Fire-and-forget job progress notifications."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import asdict, dataclass
from typing import Any, Protocol
from uuid import UUID

DEFAULT_SUBSCRIBER_QUEUE_SIZE = 100

_notifier_logger = logging.getLogger("url_indexing_pipeline.notifier")


@dataclass(slots=True, frozen=True)
class JobProgressEvent:
    """Snapshot of a job's progress sent to observers."""

    status: str
    progress_percentage: float
    processed_urls: int
    successful_urls: int
    failed_urls: int
    total_urls: int
    error_message: str | None = None
    current_url: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True, frozen=True)
class UrlStatusEvent:
    """Outcome of one URL submission."""

    submission_id: UUID
    url: str
    status: str
    service_account_id: UUID | None = None
    error_message: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "submission_id": str(self.submission_id),
            "url": self.url,
            "status": self.status,
            "service_account_id": (
                str(self.service_account_id) if self.service_account_id else None
            ),
            "error_message": self.error_message,
        }


class JobEventNotifier(Protocol):
    """Delivers job events to whoever is watching a user's jobs."""

    async def notify(
        self, user_id: UUID, job_id: UUID, event: JobProgressEvent
    ) -> None: ...

    async def notify_url_status(
        self, user_id: UUID, job_id: UUID, event: UrlStatusEvent
    ) -> None: ...


class LoggingJobNotifier:
    """Write job events to the application log."""

    async def notify(self, user_id: UUID, job_id: UUID, event: JobProgressEvent) -> None:
        _notifier_logger.debug(
            "job_progress",
            extra={
                "user_id": str(user_id),
                "job_id": str(job_id),
                "status": event.status,
                "processed_urls": event.processed_urls,
                "total_urls": event.total_urls,
            },
        )

    async def notify_url_status(
        self, user_id: UUID, job_id: UUID, event: UrlStatusEvent
    ) -> None:
        _notifier_logger.debug(
            "url_status_changed",
            extra={
                "user_id": str(user_id),
                "job_id": str(job_id),
                "url": event.url,
                "status": event.status,
            },
        )


class BroadcastJobNotifier:
    """Fan job events out to per-user subscriber queues.

    Slow subscribers lose events rather than block the submission loop.
    """

    def __init__(self, *, queue_size: int = DEFAULT_SUBSCRIBER_QUEUE_SIZE) -> None:
        self._queue_size = queue_size
        self._subscribers: defaultdict[UUID, set[asyncio.Queue[dict[str, Any]]]] = (
            defaultdict(set)
        )

    def subscribe(self, user_id: UUID) -> asyncio.Queue[dict[str, Any]]:
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers[user_id].add(queue)
        return queue

    def unsubscribe(self, user_id: UUID, queue: asyncio.Queue[dict[str, Any]]) -> None:
        queues = self._subscribers.get(user_id)
        if queues is None:
            return
        queues.discard(queue)
        if not queues:
            del self._subscribers[user_id]

    def subscriber_count(self, user_id: UUID) -> int:
        return len(self._subscribers.get(user_id, ()))

    async def notify(self, user_id: UUID, job_id: UUID, event: JobProgressEvent) -> None:
        self._publish(
            user_id,
            job_id,
            {"type": "job_progress", "job_id": str(job_id), **event.to_payload()},
        )

    async def notify_url_status(
        self, user_id: UUID, job_id: UUID, event: UrlStatusEvent
    ) -> None:
        self._publish(
            user_id,
            job_id,
            {"type": "url_status_change", "job_id": str(job_id), **event.to_payload()},
        )

    def _publish(self, user_id: UUID, job_id: UUID, message: dict[str, Any]) -> None:
        for queue in tuple(self._subscribers.get(user_id, ())):
            try:
                queue.put_nowait(message)
            except asyncio.QueueFull:
                _notifier_logger.warning(
                    "job_event_dropped",
                    extra={"user_id": str(user_id), "job_id": str(job_id)},
                )


class CompositeJobNotifier:
    """Forward every event to several notifiers."""

    def __init__(self, notifiers: Sequence[JobEventNotifier]) -> None:
        self._notifiers = tuple(notifiers)

    async def notify(self, user_id: UUID, job_id: UUID, event: JobProgressEvent) -> None:
        for notifier in self._notifiers:
            await notifier.notify(user_id, job_id, event)

    async def notify_url_status(
        self, user_id: UUID, job_id: UUID, event: UrlStatusEvent
    ) -> None:
        for notifier in self._notifiers:
            await notifier.notify_url_status(user_id, job_id, event)


__all__ = [
    "BroadcastJobNotifier",
    "CompositeJobNotifier",
    "JobEventNotifier",
    "JobProgressEvent",
    "LoggingJobNotifier",
    "UrlStatusEvent",
]
