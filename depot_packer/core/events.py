"""
Typed event channels between the external runner and the control loop.

Producers publish on per-category methods; all categories feed one FIFO inbox
so events from a single process keep their emission order even when they
cross categories (e.g. a final log line followed by an exit status).
"""

import asyncio
import logging
from typing import Optional

from depot_packer.models.events import (
    ConflictEvent,
    EventSource,
    LogEvent,
    ProgressEvent,
    RunnerEvent,
    StatusEvent,
    Stream,
)

log = logging.getLogger(__name__)


class EventBus:
    """Single-consumer inbox for runner notifications."""

    def __init__(self):
        self._inbox: asyncio.Queue[Optional[RunnerEvent]] = asyncio.Queue()

    def publish_log(
        self,
        line: str,
        stream: Stream = Stream.STDOUT,
        job_id: str | None = None,
        source: EventSource = EventSource.DOWNLOAD,
    ) -> None:
        self._inbox.put_nowait(LogEvent(line, stream, job_id, source))

    def publish_status(
        self,
        status: str,
        code: int | None = None,
        job_id: str | None = None,
        source: EventSource = EventSource.DOWNLOAD,
    ) -> None:
        self._inbox.put_nowait(StatusEvent(status, code, job_id, source))

    def publish_progress(self, percent: float, job_id: str | None = None) -> None:
        self._inbox.put_nowait(ProgressEvent(percent, job_id))

    def publish_conflict(self, job_id: str, output_name: str, output_path: str) -> None:
        self._inbox.put_nowait(ConflictEvent(job_id, output_name, output_path))

    def publish(self, event: RunnerEvent) -> None:
        self._inbox.put_nowait(event)

    def close(self) -> None:
        """Wakes the consumer with an end-of-stream marker."""
        self._inbox.put_nowait(None)

    def pending(self) -> int:
        return self._inbox.qsize()

    async def next(self) -> Optional[RunnerEvent]:
        return await self._inbox.get()
