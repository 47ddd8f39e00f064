"""
Job registry: ordered job ids, the id-to-job map, selection and the running slot.
"""

import logging
from typing import Iterator, Optional

from depot_packer.models.job import Job, JobStatus

log = logging.getLogger(__name__)


class JobRegistry:
    """
    Owns job entities and their run/display order.

    The order list and the job map always hold exactly the same ids. At most
    one job occupies the running slot. Mutations that are not allowed while
    the queue runs return False instead of raising.
    """

    def __init__(self):
        self._order: list[str] = []
        self._jobs: dict[str, Job] = {}
        self.selected_id: Optional[str] = None
        self._running_id: Optional[str] = None

    def __len__(self) -> int:
        return len(self._order)

    def __iter__(self) -> Iterator[Job]:
        return (self._jobs[job_id] for job_id in self._order)

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._jobs

    @property
    def order(self) -> list[str]:
        return list(self._order)

    @property
    def running_id(self) -> Optional[str]:
        return self._running_id

    @property
    def is_running(self) -> bool:
        return self._running_id is not None

    def get(self, job_id: Optional[str]) -> Optional[Job]:
        if job_id is None:
            return None
        return self._jobs.get(job_id)

    def add(self, job: Job) -> Job:
        if job.id in self._jobs:
            raise ValueError(f"Duplicate job id: {job.id}")
        self._jobs[job.id] = job
        self._order.append(job.id)
        return job

    def running_job(self) -> Optional[Job]:
        return self.get(self._running_id)

    def selected_job(self) -> Optional[Job]:
        return self.get(self.selected_id)

    def find_by_correlation_id(self, correlation_id: Optional[str]) -> Optional[Job]:
        if not correlation_id:
            return None
        for job in self._jobs.values():
            if job.correlation_id == correlation_id:
                return job
        return None

    def next_queued(self) -> Optional[Job]:
        """The earliest job in registry order whose status is queued."""
        for job in self:
            if job.status is JobStatus.QUEUED:
                return job
        return None

    def has_queued(self) -> bool:
        return self.next_queued() is not None

    def claim_running(self, job: Job) -> None:
        """Gives `job` the running slot; at most one job may be active at a time."""
        if self._running_id is not None:
            raise RuntimeError(f"Running slot already held by {self._running_id}")
        if self.active_count():
            raise RuntimeError("Another job is still running or compressing")
        self._running_id = job.id

    def release_running(self) -> None:
        self._running_id = None

    def move(self, job_id: str, delta: int) -> bool:
        if self.is_running or job_id == self._running_id:
            return False
        if job_id not in self._jobs:
            return False
        index = self._order.index(job_id)
        target = index + delta
        if delta == 0 or target < 0 or target >= len(self._order):
            return False
        self._order.insert(target, self._order.pop(index))
        return True

    def remove(self, job_id: str) -> bool:
        if self.is_running or job_id == self._running_id:
            return False
        if job_id not in self._jobs:
            return False
        index = self._order.index(job_id)
        del self._order[index]
        del self._jobs[job_id]
        if self.selected_id == job_id:
            if self._order:
                self.selected_id = self._order[min(index, len(self._order) - 1)]
            else:
                self.selected_id = None
        return True

    def clear(self) -> bool:
        if self.is_running:
            return False
        self._order.clear()
        self._jobs.clear()
        self.selected_id = None
        return True

    def active_count(self) -> int:
        return sum(1 for job in self if job.status.is_active)
