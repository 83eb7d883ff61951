"""Server-sent events for migration progress."""

import asyncio
import json
import logging
from typing import Any, Dict, List

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse

from ..storage import migration_storage

logger = logging.getLogger(__name__)

router = APIRouter()

KEEPALIVE_SECONDS = 15.0
# Snapshots held per subscriber; a slow client loses the oldest first
SUBSCRIBER_QUEUE_SIZE = 100


class ProgressBroadcaster:
    """Fans progress snapshots out to the subscribers of each run."""

    def __init__(self, queue_size: int = SUBSCRIBER_QUEUE_SIZE):
        self.queue_size = queue_size
        self._subscribers: Dict[str, List[asyncio.Queue]] = {}

    def subscribe(self, run_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers.setdefault(run_id, []).append(queue)
        return queue

    def unsubscribe(self, run_id: str, queue: asyncio.Queue):
        queues = self._subscribers.get(run_id, [])
        if queue in queues:
            queues.remove(queue)
        if not queues:
            self._subscribers.pop(run_id, None)

    def subscriber_count(self, run_id: str) -> int:
        return len(self._subscribers.get(run_id, []))

    def publish(self, run_id: str, snapshot: Dict[str, Any], event: str = "progress"):
        """Push a snapshot to every subscriber without waiting."""
        for queue in self._subscribers.get(run_id, []):
            if queue.full():
                queue.get_nowait()
            queue.put_nowait({"event": event, "data": snapshot})


migration_progress = ProgressBroadcaster()


def format_sse(event: str, data: Dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(data, default=str)}\n\n"


@router.get("/{run_id}")
async def stream_progress(run_id: str, request: Request):
    """Stream progress snapshots of a run until it finishes."""
    run = migration_storage.get(run_id)
    if not run:
        raise HTTPException(status_code=404, detail="Migration not found")

    queue = migration_progress.subscribe(run_id)

    async def event_stream():
        try:
            yield format_sse("progress", run.orchestrator.snapshot())
            if run.status.is_terminal:
                yield format_sse("complete", run.orchestrator.snapshot())
                return

            while True:
                if await request.is_disconnected():
                    logger.debug(f"Progress subscriber for {run_id} disconnected")
                    break
                try:
                    message = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue

                yield format_sse(message["event"], message["data"])
                if message["event"] == "complete":
                    break
        finally:
            migration_progress.unsubscribe(run_id, queue)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
