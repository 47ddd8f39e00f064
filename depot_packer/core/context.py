"""
The orchestrator context: the single owner of queue-wide mutable state.
"""

import logging
from dataclasses import dataclass, field

from depot_packer.core.log_buffer import ConsoleLogBuffer
from depot_packer.core.registry import JobRegistry
from depot_packer.models.config import AppConfig
from depot_packer.models.job import Job, JobSpec
from depot_packer.models.stats import QueueStats

log = logging.getLogger(__name__)


@dataclass
class OrchestratorContext:
    """
    State shared by the scheduler, the auth coordinator and the conflict resolver.

    Lifetimes:
    - `remembered_username`: set on a successful QR login, cleared when the
      queue becomes idle (nothing running, nothing queued).
    - `retry_job_id`: the single-flight email retry guard; set when a retry
      is requested, cleared when the retried job has been restarted or the
      cancellation backing the retry fails.
    """

    config: AppConfig = field(default_factory=AppConfig)
    registry: JobRegistry = field(default_factory=JobRegistry)
    stats: QueueStats = field(default_factory=QueueStats)
    remembered_username: str | None = None
    retry_job_id: str | None = None

    @property
    def retry_in_flight(self) -> bool:
        return self.retry_job_id is not None

    def push_log(self, job: Job | None, message: str) -> None:
        """Appends an engine message to a job log and mirrors it to the debug log."""
        if job is None:
            log.debug(message)
            return
        job.log.append(message)
        log.debug(f"[{job.id[:8]}] {message}")

    def new_job(self, spec: JobSpec) -> Job:
        buffer = ConsoleLogBuffer(
            cap=self.config.log_line_cap,
            margin=self.config.log_trim_margin,
            flush_interval=self.config.flush_interval,
        )
        return self.registry.add(Job.from_spec(spec, log=buffer))

    def forget_if_idle(self) -> bool:
        """Drops the remembered QR login once the queue has nothing left to do."""
        if self.registry.is_running or self.registry.has_queued():
            return False
        if self.remembered_username is not None:
            log.debug("Queue idle, forgetting remembered QR login.")
        self.remembered_username = None
        return True
