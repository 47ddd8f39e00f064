"""
Wires the queue components together and runs the single control loop that
consumes runner events.
"""

import logging
from typing import Optional

from depot_packer.core.auth import AuthChallengeCoordinator
from depot_packer.core.conflict import OutputConflictResolver
from depot_packer.core.context import OrchestratorContext
from depot_packer.core.events import EventBus
from depot_packer.core.presenter import Presenter
from depot_packer.core.scheduler import QueueScheduler
from depot_packer.models.config import AppConfig
from depot_packer.models.events import (
    ConflictEvent,
    LogEvent,
    ProgressEvent,
    RunnerEvent,
    StatusEvent,
)
from depot_packer.models.stats import QueueStats
from depot_packer.runner.base import ExternalRunner

log = logging.getLogger(__name__)


class QueueSession:
    """
    One queue run: the orchestrator context, the event inbox and the
    components acting on it.

    All state mutation happens inside `dispatch`, which is only ever called
    from the loop in `run_until_idle` (or `drain` in tests), so handlers never
    interleave with each other.
    """

    def __init__(
        self,
        runner: ExternalRunner,
        bus: EventBus,
        config: Optional[AppConfig] = None,
        presenter: Optional[Presenter] = None,
    ):
        self.bus = bus
        self.runner = runner
        self.presenter = presenter or Presenter()
        self.context = OrchestratorContext(config=config or AppConfig())
        self.auth = AuthChallengeCoordinator(self.context, runner, self.presenter)
        self.conflicts = OutputConflictResolver(self.context, runner, self.presenter)
        self.scheduler = QueueScheduler(
            self.context, runner, self.auth, self.conflicts, self.presenter
        )

    @property
    def registry(self):
        return self.context.registry

    @property
    def stats(self) -> QueueStats:
        return self.context.stats

    async def dispatch(self, event: RunnerEvent) -> None:
        if isinstance(event, LogEvent):
            await self.scheduler.on_log(event)
        elif isinstance(event, StatusEvent):
            await self.scheduler.on_status(event)
        elif isinstance(event, ProgressEvent):
            await self.scheduler.on_progress(event)
        elif isinstance(event, ConflictEvent):
            await self.scheduler.on_conflict(event)
        else:
            log.debug(f"Dropping unknown event {event!r}")

    async def drain(self) -> int:
        """Processes every event already in the inbox. Returns how many ran."""
        handled = 0
        while self.bus.pending():
            event = await self.bus.next()
            if event is None:
                break
            await self.dispatch(event)
            handled += 1
        return handled

    async def run_until_idle(self) -> QueueStats:
        """
        Consumes events until no job holds the running slot and the inbox is
        empty, or the bus is closed.
        """
        while self.registry.is_running or self.bus.pending():
            event = await self.bus.next()
            if event is None:
                log.debug("Event bus closed, leaving control loop.")
                break
            await self.dispatch(event)
        self.flush_console()
        return self.stats

    def flush_console(self) -> None:
        job = self.registry.selected_job()
        if job is not None:
            job.log.flush()
