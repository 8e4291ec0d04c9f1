"""WebSocket stream of a user's job progress events."""

from __future__ import annotations

import asyncio
import logging
from typing import Any
from uuid import UUID

from fastapi import APIRouter, WebSocket, status

from url_indexing_pipeline.services.notifier import BroadcastJobNotifier

router = APIRouter(tags=["notifications"])

_notifications_logger = logging.getLogger("url_indexing_pipeline.notifications")


async def _forward_events(
    websocket: WebSocket, queue: asyncio.Queue[dict[str, Any]]
) -> None:
    while True:
        message = await queue.get()
        await websocket.send_json(message)


async def _wait_for_disconnect(websocket: WebSocket) -> int | None:
    # Client frames carry no commands and are discarded.
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            code = message.get("code")
            return int(code) if code is not None else None


@router.websocket("/ws/jobs/{user_id}")
async def job_events(websocket: WebSocket, user_id: UUID) -> None:
    broadcaster = getattr(websocket.app.state, "job_broadcaster", None)
    if not isinstance(broadcaster, BroadcastJobNotifier):
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return

    await websocket.accept()
    queue = broadcaster.subscribe(user_id)
    _notifications_logger.info(
        "job_events_subscribed",
        extra={
            "user_id": str(user_id),
            "count": broadcaster.subscriber_count(user_id),
        },
    )
    forwarder: asyncio.Task[None] | None = None
    try:
        await websocket.send_json({"type": "subscribed", "user_id": str(user_id)})
        forwarder = asyncio.create_task(_forward_events(websocket, queue))
        close_code = await _wait_for_disconnect(websocket)
        _notifications_logger.debug(
            "job_events_client_disconnected",
            extra={"user_id": str(user_id), "status_code": close_code},
        )
    finally:
        if forwarder is not None:
            forwarder.cancel()
            await asyncio.gather(forwarder, return_exceptions=True)
        broadcaster.unsubscribe(user_id, queue)
        _notifications_logger.info(
            "job_events_unsubscribed", extra={"user_id": str(user_id)}
        )
