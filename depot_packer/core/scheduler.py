"""
The queue scheduler: starts jobs one at a time and folds runner events back
into job state.
"""

import logging
from typing import Optional

from depot_packer.core import messages
from depot_packer.core.auth import AuthChallengeCoordinator
from depot_packer.core.classifier import SignalKind, classify_line, map_status
from depot_packer.core.conflict import OutputConflict, OutputConflictResolver
from depot_packer.core.context import OrchestratorContext
from depot_packer.core.presenter import Presenter
from depot_packer.exceptions import (
    NoQueuedJobsError,
    QueueBusyError,
    QueueIdleError,
    RunnerInvocationError,
)
from depot_packer.models.events import (
    ConflictEvent,
    EventSource,
    LogEvent,
    ProgressEvent,
    StatusEvent,
)
from depot_packer.models.job import Job, JobSpec, JobStatus

log = logging.getLogger(__name__)


class QueueScheduler:
    """
    Owns the running slot and every job status transition.

    Events are matched to jobs by correlation id. Untagged events (the
    archiver never tags its output) belong to the running job.
    """

    def __init__(
        self,
        context: OrchestratorContext,
        runner,
        auth: AuthChallengeCoordinator,
        conflicts: OutputConflictResolver,
        presenter: Presenter | None = None,
    ):
        self.context = context
        self.runner = runner
        self.auth = auth
        self.conflicts = conflicts
        self.presenter = presenter or Presenter()

    @property
    def registry(self):
        return self.context.registry

    # --- Queue editing -------------------------------------------------------

    def enqueue(self, spec: JobSpec) -> str:
        job = self.context.new_job(spec)
        if self.registry.selected_id is None:
            self.select(job.id)
        log.debug(f"Queued AppID {job.app_id} ({job.os}, {job.branch}) as {job.id}")
        self.presenter.queue_changed()
        return job.id

    def reorder(self, job_id: str, delta: int) -> bool:
        if self.registry.is_running:
            self.presenter.advisory(messages.NO_REORDER_WHILE_RUNNING)
            return False
        moved = self.registry.move(job_id, delta)
        if moved:
            self.presenter.queue_changed()
        return moved

    def remove(self, job_id: str) -> bool:
        if self.registry.is_running:
            self.presenter.advisory(messages.NO_REORDER_WHILE_RUNNING)
            return False
        was_selected = self.registry.selected_id == job_id
        job = self.registry.get(job_id)
        if not self.registry.remove(job_id):
            return False
        if job is not None:
            job.log.detach()
        if was_selected:
            self.select(self.registry.selected_id)
        self.presenter.queue_changed()
        return True

    def clear(self) -> None:
        """
        Empties the queue.

        Raises:
            QueueBusyError: If a job is running.
        """
        if not self.registry.clear():
            raise QueueBusyError(messages.CLEAR_WHILE_RUNNING)
        self.context.forget_if_idle()
        self.presenter.queue_changed()

    def select(self, job_id: Optional[str]) -> Optional[Job]:
        """Shows `job_id` on the console; the new selection gets a full render."""
        previous = self.registry.selected_job()
        job = self.registry.get(job_id)
        if previous is not None and previous is not job:
            previous.log.detach()
        self.registry.selected_id = job.id if job else None
        if job is not None:
            job.log.attach(self.presenter.console_flushed)
        return job

    # --- Running -------------------------------------------------------------

    async def start(self) -> str:
        """
        Starts the earliest queued job.

        Returns:
            The correlation id assigned by the runner.

        Raises:
            QueueBusyError: If a job already holds the running slot.
            NoQueuedJobsError: If no job is queued.
            RunnerInvocationError: If the runner refused to start the job. The
            job is marked failed and the slot released first.
        """
        if self.registry.is_running:
            raise QueueBusyError(messages.QUEUE_RUNNING)
        job = self.registry.next_queued()
        if job is None:
            raise NoQueuedJobsError(messages.NO_QUEUED_JOBS)

        self.registry.claim_running(job)
        job.set_status(JobStatus.RUNNING)
        self.select(job.id)
        self.auth.apply_remembered_login(job)
        self.presenter.queue_changed()

        try:
            folder = await self.runner.get_output_folder()
        except Exception as e:
            self.context.push_log(job, messages.OUTPUT_DIR_ERROR.format(error=e))
        else:
            if folder:
                self.context.push_log(job, messages.OUTPUT_DIR.format(path=folder))
        self.context.push_log(job, messages.SELECTED_OS.format(os=job.os))
        self.context.push_log(job, messages.STARTING.format(app_id=job.app_id))

        config = self.context.config
        request = job.run_request(
            skip_compression=config.skip_compression,
            compression_password=config.effective_compression_password,
        )
        try:
            correlation_id = await self.runner.run_download(request)
        except Exception as e:
            self.context.push_log(job, messages.START_FAILED.format(error=e))
            job.set_status(JobStatus.FAILED)
            self.registry.release_running()
            self.auth.reset(job)
            self.context.stats.start_failures += 1
            self.presenter.queue_changed()
            log.warning(f"[yellow]AppID {job.app_id} failed to start: {e}[/yellow]")
            raise RunnerInvocationError(f"Failed to start AppID {job.app_id}: {e}") from e

        if correlation_id and not job.adopt_correlation_id(correlation_id):
            log.debug(
                f"Runner returned id {correlation_id} but job {job.id} "
                f"already tracks {job.correlation_id}"
            )
        self.context.stats.jobs_started += 1
        log.info(f"[cyan]Started AppID {job.app_id} ({job.os})[/cyan]")
        return job.correlation_id or correlation_id

    async def advance(self) -> Optional[str]:
        """Starts queued jobs until one is accepted or the queue runs dry."""
        while self.registry.has_queued() and not self.registry.is_running:
            try:
                return await self.start()
            except RunnerInvocationError as e:
                log.debug(f"Auto-start skipped a job: {e}")
        self.context.forget_if_idle()
        return None

    async def cancel(self) -> None:
        """
        Asks the runner to stop the running job. The resulting status event
        settles the job; nothing is marked here.

        Raises:
            QueueIdleError: If no job is running.
            RunnerInvocationError: If the runner could not cancel.
        """
        job = self.registry.running_job()
        if job is None:
            raise QueueIdleError("No job is running.")
        self.context.push_log(job, messages.CANCELING)
        try:
            if job.status is JobStatus.COMPRESSING:
                await self.runner.cancel_compression()
            else:
                await self.runner.cancel_download()
        except Exception as e:
            self.context.push_log(job, messages.CANCEL_FAILED.format(error=e))
            raise RunnerInvocationError(f"Cancel failed: {e}") from e
        self.context.stats.cancellations += 1
        self.context.push_log(job, messages.CANCELLED)

    # --- Event handling ------------------------------------------------------

    def _resolve_job(self, job_id: Optional[str]) -> Optional[Job]:
        running = self.registry.running_job()
        if not job_id:
            return running
        job = self.registry.find_by_correlation_id(job_id)
        if job is not None:
            if job.status.is_terminal and job is not running:
                log.debug(f"Discarding stale event for finished job {job_id}")
                return None
            return job
        if running is not None and running.adopt_correlation_id(job_id):
            return running
        log.debug(f"No job matches event id {job_id}, discarding")
        return None

    async def on_status(self, event: StatusEvent) -> None:
        job = self._resolve_job(event.job_id)
        if job is None:
            return
        if event.source is EventSource.COMPRESSION:
            job.log.append(messages.ARCHIVER_STATUS.format(status=event.status))
            return

        new_status = map_status(event.status, event.code)
        if new_status is None:
            log.debug(f"Unrecognised runner status '{event.status}', ignoring")
            return
        ends_run = new_status.is_terminal and job.id == self.registry.running_id
        if ends_run and self.context.retry_job_id == job.id:
            await self._restart_for_retry(job)
            return
        if new_status is job.status:
            return
        job.set_status(new_status)
        self.presenter.queue_changed()

        if ends_run:
            await self._finish(job)

    async def _restart_for_retry(self, job: Job) -> None:
        """The cancelled run of an email-code retry is not an outcome; start over."""
        self.registry.release_running()
        self.auth.reset(job)
        job.reset_for_retry()
        self.context.retry_job_id = None
        self.presenter.email_prompt_changed(job)
        self.presenter.queue_changed()
        try:
            await self.start()
            return
        except RunnerInvocationError as e:
            log.debug(f"Email retry restart failed: {e}")
        await self.advance()
        self.presenter.queue_changed()

    async def _finish(self, job: Job) -> None:
        self.registry.release_running()
        self.auth.reset(job)
        stats = self.context.stats
        if job.status is JobStatus.DONE:
            stats.jobs_done += 1
            log.info(f"[green]✓ AppID {job.app_id} finished[/green]")
        else:
            stats.jobs_failed += 1
            log.info(f"[red]✗ AppID {job.app_id} failed[/red]")

        await self.advance()
        self.presenter.queue_changed()

    async def on_log(self, event: LogEvent) -> None:
        job = self._resolve_job(event.job_id)
        if job is None:
            return
        if event.source is EventSource.COMPRESSION:
            job.log.append(f"[7z:{event.stream.value}] {event.line}")
        else:
            job.log.append(f"[{event.stream.value}] {event.line}")

        signals = classify_line(event.line, event.stream)
        for signal in signals:
            if signal.kind is SignalKind.PROGRESS:
                self._apply_progress(job, signal.percent)
            elif signal.kind is SignalKind.MISSING_DEPOTS_WARNING:
                job.log.append(messages.NO_DEPOTS)
                self.presenter.advisory(messages.NO_DEPOTS)
        await self.auth.observe(job, event, signals)

    async def on_progress(self, event: ProgressEvent) -> None:
        job = self._resolve_job(event.job_id)
        if job is None:
            return
        if not 0 <= event.percent <= 100:
            log.debug(f"Ignoring out-of-range progress {event.percent}")
            return
        self._apply_progress(job, int(event.percent))

    def _apply_progress(self, job: Job, percent: Optional[int]) -> None:
        if percent is None or job.status is not JobStatus.COMPRESSING:
            return
        if job.compression_progress != percent:
            job.compression_progress = percent
            self.presenter.queue_changed()

    async def on_conflict(self, event: ConflictEvent) -> None:
        job = self._resolve_job(event.job_id)
        target = event.output_path or event.output_name
        self.context.push_log(job, messages.CONFLICT_LOG.format(path=target))
        self.conflicts.submit(OutputConflict.from_event(event))
