"""
Dataclass for tracking queue session statistics.
"""

import time
from dataclasses import dataclass, field


@dataclass
class QueueStats:
    """Tracks job outcomes for a queue session."""

    jobs_started: int = 0
    jobs_done: int = 0
    jobs_failed: int = 0
    start_failures: int = 0
    email_retries: int = 0
    cancellations: int = 0
    _started_at: float = field(default_factory=time.monotonic, repr=False)

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self._started_at

    @property
    def jobs_finished(self) -> int:
        return self.jobs_done + self.jobs_failed
