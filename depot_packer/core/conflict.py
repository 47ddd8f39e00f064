"""
Sequential resolution of "output already exists" conflicts raised by the runner.
"""

import logging
from collections import deque
from dataclasses import dataclass
from typing import Optional

from depot_packer.core import messages
from depot_packer.core.context import OrchestratorContext
from depot_packer.core.presenter import Presenter
from depot_packer.exceptions import ConflictError, RunnerInvocationError
from depot_packer.models.events import ConflictChoice, ConflictEvent
from depot_packer.runner.base import ExternalRunner

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutputConflict:
    job_id: str
    output_name: str
    output_path: str

    @classmethod
    def from_event(cls, event: ConflictEvent) -> "OutputConflict":
        return cls(event.job_id, event.output_name, event.output_path)

    @property
    def display_name(self) -> str:
        return self.output_name or self.output_path or "Output already exists"

    @property
    def choices(self) -> tuple[ConflictChoice, ...]:
        return tuple(ConflictChoice)


class OutputConflictResolver:
    """
    Presents one conflict at a time and forwards the user's choice to the runner.

    Conflicts that arrive while another one is awaiting a choice wait in FIFO
    order. An unanswered conflict stays active indefinitely.
    """

    def __init__(
        self,
        context: OrchestratorContext,
        runner: ExternalRunner,
        presenter: Presenter | None = None,
    ):
        self.context = context
        self.runner = runner
        self.presenter = presenter or Presenter()
        self._active: Optional[OutputConflict] = None
        self._waiting: deque[OutputConflict] = deque()
        self._busy = False

    @property
    def active(self) -> Optional[OutputConflict]:
        return self._active

    @property
    def waiting(self) -> list[OutputConflict]:
        return list(self._waiting)

    def submit(self, conflict: OutputConflict) -> bool:
        """Queues a conflict; returns True if it became the active one."""
        if self._active is not None and self._active.job_id == conflict.job_id:
            log.debug(f"Conflict already pending for {conflict.job_id}, ignoring")
            return False
        if any(waiting.job_id == conflict.job_id for waiting in self._waiting):
            return False
        if self._active is not None:
            self._waiting.append(conflict)
            return False
        self._present(conflict)
        return True

    def _present(self, conflict: OutputConflict) -> None:
        self._active = conflict
        self.presenter.conflict_presented(conflict)

    async def resolve(self, choice: ConflictChoice | str) -> None:
        """
        Forwards `choice` for the active conflict, then presents the next one.

        Raises:
            ConflictError: If there is no active conflict, the choice is not
            one of overwrite/copy/cancel, or a resolution is already in flight.
            RunnerInvocationError: If the runner rejects the response. The
            conflict is closed either way, matching a dismissed prompt.
        """
        conflict = self._active
        if conflict is None:
            raise ConflictError("No output conflict is awaiting a choice.")
        try:
            choice = ConflictChoice(choice)
        except ValueError as e:
            raise ConflictError(
                f"Invalid conflict choice '{choice}'. Use overwrite, copy or cancel."
            ) from e
        if self._busy:
            raise ConflictError("A conflict resolution is already being sent.")

        job = (
            self.context.registry.find_by_correlation_id(conflict.job_id)
            or self.context.registry.running_job()
        )
        self._busy = True
        try:
            await self.runner.resolve_output_conflict(conflict.job_id, choice)
        except Exception as e:
            self.context.push_log(job, messages.CONFLICT_RESOLVE_ERROR.format(error=e))
            raise RunnerInvocationError(f"Output conflict response failed: {e}") from e
        else:
            self.context.push_log(job, messages.CONFLICT_CHOICE[choice.value])
        finally:
            self._busy = False
            self._close()

    def _close(self) -> None:
        self._active = None
        self.presenter.conflict_closed()
        if self._waiting:
            self._present(self._waiting.popleft())
