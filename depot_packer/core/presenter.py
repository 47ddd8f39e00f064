"""
Notification hooks towards whatever displays the queue.

The engine calls these after it has applied a state change; a presenter only
reads state and must not block. The base class ignores every notification so
front ends override just what they display.
"""

from depot_packer.core.log_buffer import ConsoleFlush
from depot_packer.models.job import Job


class Presenter:
    def queue_changed(self) -> None:
        pass

    def console_flushed(self, chunk: ConsoleFlush) -> None:
        pass

    def qr_changed(self, job: Job) -> None:
        pass

    def hardware_token_changed(self, job: Job) -> None:
        pass

    def email_prompt_changed(self, job: Job) -> None:
        pass

    def conflict_presented(self, conflict) -> None:
        pass

    def conflict_closed(self) -> None:
        pass

    def advisory(self, message: str) -> None:
        pass
