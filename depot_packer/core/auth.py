"""
Tracks the login challenges raised by the downloader for each job.

Three independent sub-states live on the job: QR capture, hardware-token
(mobile app) confirmation and email-code confirmation. They only change in
response to classified signals, plus the explicit email-code submission.
"""

import logging

from depot_packer.core import messages
from depot_packer.core.classifier import Signal, SignalKind, is_blank
from depot_packer.core.context import OrchestratorContext
from depot_packer.core.presenter import Presenter
from depot_packer.exceptions import ChallengeError, RunnerInvocationError
from depot_packer.models.events import LogEvent, Stream
from depot_packer.models.job import EmailState, Job, QrState, TokenState
from depot_packer.runner.base import ExternalRunner

log = logging.getLogger(__name__)


class AuthChallengeCoordinator:
    """Applies login-related signals to jobs and runs the email retry cycle."""

    def __init__(
        self,
        context: OrchestratorContext,
        runner: ExternalRunner,
        presenter: Presenter | None = None,
    ):
        self.context = context
        self.runner = runner
        self.presenter = presenter or Presenter()

    async def observe(self, job: Job, event: LogEvent, signals: list[Signal]) -> None:
        """Feeds one classified log line into the job's challenge state."""
        kinds = {signal.kind for signal in signals}
        for signal in signals:
            if signal.kind is SignalKind.QR_PROMPT_START:
                self._start_qr_capture(job)
            elif signal.kind is SignalKind.QR_ART_LINE:
                self._capture_qr_line(job, event.line)
            elif signal.kind is SignalKind.QR_LOGIN_SUCCESS:
                self._on_qr_login_success(job, signal.text)
            elif signal.kind is SignalKind.HARDWARE_TOKEN_PROMPT:
                job.token_state = TokenState.PENDING
                self.presenter.hardware_token_changed(job)
            elif signal.kind is SignalKind.HARDWARE_TOKEN_CONFIRMED:
                if job.token_state is TokenState.PENDING:
                    job.token_state = TokenState.IDLE
                    self.presenter.hardware_token_changed(job)
            elif signal.kind is SignalKind.EMAIL_PROMPT:
                job.email_state = EmailState.PENDING
                job.email_provider = signal.text
                self.presenter.email_prompt_changed(job)
            elif signal.kind is SignalKind.EMAIL_NO_CODE_PROVIDED:
                self._close_email_prompt(job)
            elif signal.kind is SignalKind.EMAIL_INVALID_CODE:
                await self.request_email_retry(job)

        if (
            event.stream is Stream.STDOUT
            and job.qr_state is QrState.CAPTURING
            and job.qr_lines
            and SignalKind.QR_ART_LINE not in kinds
            and SignalKind.QR_PROMPT_START not in kinds
            and not is_blank(event.line)
        ):
            job.qr_state = QrState.DISPLAYING
            self.presenter.qr_changed(job)

    # --- QR login ------------------------------------------------------------

    def _start_qr_capture(self, job: Job) -> None:
        if not job.qr_enabled or job.qr_state is QrState.CAPTURING:
            return
        job.qr_state = QrState.CAPTURING
        job.qr_lines = []
        self.presenter.qr_changed(job)

    def _capture_qr_line(self, job: Job, line: str) -> None:
        if job.qr_state is not QrState.CAPTURING:
            return
        job.qr_lines.append(line)
        trimmed = list(job.qr_lines)
        while trimmed and not trimmed[0].strip():
            trimmed.pop(0)
        while trimmed and not trimmed[-1].strip():
            trimmed.pop()
        job.qr_text = "\n".join(trimmed)
        self.presenter.qr_changed(job)

    def _on_qr_login_success(self, job: Job, username: str | None) -> None:
        if not job.qr_enabled:
            return
        if job.qr_state is not QrState.IDLE:
            job.qr_state = QrState.IDLE
            self.presenter.qr_changed(job)
        if not username:
            return
        self.context.remembered_username = username
        job.username = username
        job.remember_password = True
        log.info(f"[green]✓ QR login remembered for {username}[/green]")

    def apply_remembered_login(self, job: Job) -> bool:
        """Switches a QR job to the remembered username so it skips re-scanning."""
        username = self.context.remembered_username
        if not job.qr_enabled or not username:
            return False
        job.qr_enabled = False
        job.username = username
        job.password = ""
        job.remember_password = True
        self.context.push_log(job, messages.REUSE_QR.format(username=username))
        return True

    # --- Email code ----------------------------------------------------------

    def _close_email_prompt(self, job: Job) -> None:
        if job.email_state is EmailState.PENDING:
            job.email_state = EmailState.IDLE
            self.presenter.email_prompt_changed(job)

    async def submit_email_code(self, code: str, job: Job | None = None) -> None:
        """
        Forwards an email code to the runner for `job` (default: the running job).

        Raises:
            ChallengeError: If the code is empty.
            RunnerInvocationError: If the runner rejects the submission. The
            failure is also logged on the job; its status is left untouched.
        """
        code = code.strip()
        if not code:
            raise ChallengeError("Enter the email code before submitting.")
        job = job or self.context.registry.running_job()
        try:
            await self.runner.submit_email_code(code)
        except Exception as e:
            self.context.push_log(job, messages.EMAIL_FAILED.format(error=e))
            raise RunnerInvocationError(f"Email code submission failed: {e}") from e
        self.context.push_log(job, messages.EMAIL_SENT)
        if job is not None:
            self._close_email_prompt(job)

    async def request_email_retry(self, job: Job) -> bool:
        """
        Starts the single guarded cancel-and-restart cycle after an incorrect
        email code. Returns False if a retry is already in flight.
        """
        if self.context.retry_in_flight:
            log.debug(
                f"Email retry already in flight for {self.context.retry_job_id}, "
                f"ignoring request from {job.id}"
            )
            return False
        self.context.retry_job_id = job.id
        self.context.stats.email_retries += 1
        job.email_state = EmailState.RETRY_IN_FLIGHT
        self.context.push_log(job, messages.EMAIL_INCORRECT)
        self.presenter.email_prompt_changed(job)
        try:
            await self.runner.cancel_download()
        except Exception as e:
            self.context.push_log(job, messages.CANCEL_FAILED.format(error=e))
            self.context.retry_job_id = None
            job.email_state = EmailState.IDLE
            self.presenter.email_prompt_changed(job)
            return False
        return True

    def reset(self, job: Job) -> None:
        """Closes every open challenge for a job leaving the running slot."""
        changed_qr = job.qr_state is not QrState.IDLE
        changed_token = job.token_state is not TokenState.IDLE
        changed_email = job.email_state is not EmailState.IDLE
        job.reset_challenges()
        if changed_qr:
            self.presenter.qr_changed(job)
        if changed_token:
            self.presenter.hardware_token_changed(job)
        if changed_email:
            self.presenter.email_prompt_changed(job)
