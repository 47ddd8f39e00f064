"""
Bounded per-job console log with coalesced flushing.

Appends never render synchronously. They mark the buffer dirty and schedule a
single flush on the running event loop; a flush hands either the new lines
(incremental) or the whole retained log (full) to the attached sink. Once the
log grows past `cap + margin` lines, the oldest lines are dropped down to
`cap` in one batch and the next flush is forced to be a full render.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

log = logging.getLogger(__name__)

LOG_LINE_CAP = 10000
LOG_TRIM_MARGIN = 1000
CONSOLE_FLUSH_INTERVAL = 0.12


@dataclass(frozen=True)
class ConsoleFlush:
    job_id: str | None
    lines: list[str]
    full: bool


ConsoleSink = Callable[[ConsoleFlush], None]


class ConsoleLogBuffer:
    """Append-only log lines for one job, plus its render bookkeeping."""

    def __init__(
        self,
        cap: int = LOG_LINE_CAP,
        margin: int = LOG_TRIM_MARGIN,
        flush_interval: float = CONSOLE_FLUSH_INTERVAL,
        job_id: str | None = None,
    ):
        self.cap = cap
        self.margin = margin
        self.flush_interval = flush_interval
        self.job_id = job_id
        self._lines: list[str] = []
        self._rendered = 0
        self._needs_full_render = True
        self._dirty = False
        self._sink: Optional[ConsoleSink] = None
        self._timer: Optional[asyncio.TimerHandle] = None

    def __len__(self) -> int:
        return len(self._lines)

    @property
    def lines(self) -> list[str]:
        return list(self._lines)

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def needs_full_render(self) -> bool:
        return self._needs_full_render

    @property
    def flush_scheduled(self) -> bool:
        return self._timer is not None

    def append(self, line: str) -> bool:
        """Appends a line. Returns True if older lines were dropped."""
        self._lines.append(line)
        trimmed = self._trim()
        if trimmed:
            self._needs_full_render = True
        self._dirty = True
        self._schedule_flush()
        return trimmed

    def _trim(self) -> bool:
        if len(self._lines) <= self.cap + self.margin:
            return False
        drop = len(self._lines) - self.cap
        del self._lines[:drop]
        log.debug(f"Dropped {drop} console lines for job {self.job_id}")
        return True

    def attach(self, sink: ConsoleSink) -> None:
        """Routes flushes to `sink`; the first flush after attaching is full."""
        self._sink = sink
        self._needs_full_render = True
        self._dirty = True
        self._schedule_flush()

    def detach(self) -> None:
        self._sink = None
        self._cancel_timer()

    def _schedule_flush(self) -> None:
        if self._sink is None or self.flush_scheduled:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._timer = loop.call_later(self.flush_interval, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        self.flush()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def flush(self) -> Optional[ConsoleFlush]:
        """
        Produces the pending render and delivers it to the sink, if any.
        Returns None when there is nothing new to render.
        """
        self._cancel_timer()
        if self._rendered > len(self._lines):
            self._needs_full_render = True

        if self._needs_full_render:
            chunk = ConsoleFlush(self.job_id, list(self._lines), full=True)
        elif self._rendered < len(self._lines):
            chunk = ConsoleFlush(self.job_id, self._lines[self._rendered :], full=False)
        else:
            self._dirty = False
            return None

        self._rendered = len(self._lines)
        self._needs_full_render = False
        self._dirty = False
        if self._sink is not None:
            self._sink(chunk)
        return chunk
