"""
Renders a running queue in the terminal: the selected job's console, login
prompts, output conflicts and a Rich progress bar while a job is compressing.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional

from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)

from depot_packer.core.log_buffer import ConsoleFlush
from depot_packer.core.presenter import Presenter
from depot_packer.core.registry import JobRegistry
from depot_packer.models.job import EmailState, Job, JobStatus, QrState, TokenState

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class PromptRequest:
    """Something the user has to answer: an email code or a conflict choice."""

    kind: str
    job: Optional[Job] = None
    conflict: Any = None


class ProgressManager(Presenter):
    """
    Console presenter for `depot-packer run`.

    Output is printed above a Rich progress bar. Questions for the user are
    never asked here; they are queued on `requests` for the prompt loop.
    """

    def __init__(self, console: Console, show_console: bool = True):
        self.console = console
        self.show_console = show_console
        self.registry: Optional[JobRegistry] = None
        self.requests: asyncio.Queue[PromptRequest] = asyncio.Queue()

        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}", justify="left"),
            BarColumn(bar_width=30),
            "[progress.percentage]{task.percentage:>3.0f}%",
            "•",
            TimeElapsedColumn(),
            console=console,
            transient=True,
        )
        self._tasks: dict[str, TaskID] = {}
        self._console_job_id: Optional[str] = None
        self._shown_qr: dict[str, str] = {}
        self._started = False

    def bind(self, registry: JobRegistry) -> None:
        self.registry = registry

    # --- Presenter hooks -----------------------------------------------------

    def console_flushed(self, chunk: ConsoleFlush) -> None:
        if not self.show_console:
            return
        if chunk.full and chunk.job_id == self._console_job_id:
            # Already printed; a full render here only follows a trim.
            self.console.print(
                f"[dim]… console trimmed to the last {len(chunk.lines)} lines[/dim]"
            )
            return
        self._console_job_id = chunk.job_id
        for line in chunk.lines:
            self.console.print(line, markup=False, highlight=False)

    def queue_changed(self) -> None:
        if self.registry is None:
            return
        for job in self.registry:
            self._sync_progress(job)

    def _sync_progress(self, job: Job) -> None:
        task_id = self._tasks.get(job.id)
        if job.status is JobStatus.COMPRESSING:
            if task_id is None:
                task_id = self.progress.add_task(
                    f"Compressing AppID {job.app_id}", total=100
                )
                self._tasks[job.id] = task_id
            self.progress.update(task_id, completed=job.compression_progress or 0)
        elif task_id is not None:
            self.progress.remove_task(task_id)
            del self._tasks[job.id]

    def qr_changed(self, job: Job) -> None:
        if job.qr_state is not QrState.DISPLAYING or not job.qr_text:
            return
        if self._shown_qr.get(job.id) == job.qr_text:
            return
        self._shown_qr[job.id] = job.qr_text
        self.console.print(
            Panel(
                job.qr_text,
                title="[bold]Scan with the Steam mobile app[/bold]",
                border_style="cyan",
                expand=False,
            ),
            markup=False,
            highlight=False,
        )

    def hardware_token_changed(self, job: Job) -> None:
        if job.token_state is TokenState.PENDING:
            self.console.print(
                "[yellow]📱 Confirm the login in the Steam mobile app.[/yellow]"
            )
        else:
            self.console.print("[green]✓ Mobile app confirmation received.[/green]")

    def email_prompt_changed(self, job: Job) -> None:
        if job.email_state is EmailState.PENDING:
            provider = f" ({job.email_provider})" if job.email_provider else ""
            self.console.print(
                f"[yellow]✉ Steam Guard sent a code to your email{provider}.[/yellow]"
            )
            self.requests.put_nowait(PromptRequest("email", job=job))
        elif job.email_state is EmailState.RETRY_IN_FLIGHT:
            self.console.print(
                "[yellow]Incorrect email code, restarting AppID "
                f"{job.app_id}...[/yellow]"
            )

    def conflict_presented(self, conflict) -> None:
        self.console.print(
            f"[yellow]⚠ Output already exists:[/yellow] {conflict.display_name}"
        )
        self.requests.put_nowait(PromptRequest("conflict", conflict=conflict))

    def advisory(self, message: str) -> None:
        self.console.print(f"[yellow]⚠ {message}[/yellow]")

    # --- Lifecycle -----------------------------------------------------------

    async def __aenter__(self):
        self.progress.start()
        self._started = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._started:
            await asyncio.sleep(0.1)
            self.progress.stop()
            self._started = False
