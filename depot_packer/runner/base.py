"""
The request/response surface of the external runner.

The runner owns the download engine and the archiver processes. It pushes
notifications (log, status, progress, conflict) into an `EventBus` and answers
the requests below. Any exception raised by these calls is treated as an
invocation failure by the caller.
"""

from typing import Protocol, runtime_checkable

from depot_packer.models.events import ConflictChoice
from depot_packer.models.job import RunRequest


@runtime_checkable
class ExternalRunner(Protocol):
    async def run_download(self, request: RunRequest) -> str:
        """Starts a job and returns its correlation id."""
        ...

    async def cancel_download(self) -> None: ...

    async def cancel_compression(self) -> None: ...

    async def submit_email_code(self, code: str) -> None: ...

    async def resolve_output_conflict(
        self, job_id: str, choice: ConflictChoice
    ) -> None: ...

    async def get_output_folder(self) -> str | None: ...
