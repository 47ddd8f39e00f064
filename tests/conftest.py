"""Shared test fixtures."""

import pytest

from depot_packer.core.events import EventBus
from depot_packer.core.presenter import Presenter
from depot_packer.core.session import QueueSession
from depot_packer.exceptions import RunnerInvocationError
from depot_packer.models.config import AppConfig


class FakeRunner:
    """Records every request; failures are switched on per call type."""

    def __init__(self, return_ids: bool = True):
        self.return_ids = return_ids
        self.requests = []
        self.cancel_download_calls = 0
        self.cancel_compression_calls = 0
        self.codes: list[str] = []
        self.resolved: list[tuple[str, str]] = []
        self.fail_app_ids: set[str] = set()
        self.cancel_error: Exception | None = None
        self.submit_error: Exception | None = None
        self.resolve_error: Exception | None = None
        self.output_folder: str | None = "/srv/depots"
        self._counter = 0

    async def run_download(self, request):
        self.requests.append(request)
        if request.app_id in self.fail_app_ids:
            raise RunnerInvocationError("DepotDownloader not found")
        self._counter += 1
        return f"cid-{self._counter}" if self.return_ids else ""

    async def cancel_download(self):
        self.cancel_download_calls += 1
        if self.cancel_error:
            raise self.cancel_error

    async def cancel_compression(self):
        self.cancel_compression_calls += 1
        if self.cancel_error:
            raise self.cancel_error

    async def submit_email_code(self, code):
        if self.submit_error:
            raise self.submit_error
        self.codes.append(code)

    async def resolve_output_conflict(self, job_id, choice):
        if self.resolve_error:
            raise self.resolve_error
        self.resolved.append((job_id, choice.value))

    async def get_output_folder(self):
        return self.output_folder


class RecordingPresenter(Presenter):
    def __init__(self):
        self.calls: list[tuple[str, object]] = []
        self.flushes = []
        self.advisories: list[str] = []

    def queue_changed(self):
        self.calls.append(("queue_changed", None))

    def console_flushed(self, chunk):
        self.flushes.append(chunk)

    def qr_changed(self, job):
        self.calls.append(("qr_changed", job.qr_state))

    def hardware_token_changed(self, job):
        self.calls.append(("hardware_token_changed", job.token_state))

    def email_prompt_changed(self, job):
        self.calls.append(("email_prompt_changed", job.email_state))

    def conflict_presented(self, conflict):
        self.calls.append(("conflict_presented", conflict))

    def conflict_closed(self):
        self.calls.append(("conflict_closed", None))

    def advisory(self, message):
        self.advisories.append(message)

    def names(self) -> list[str]:
        return [name for name, _ in self.calls]


@pytest.fixture()
def config() -> AppConfig:
    return AppConfig(output_dir="/srv/depots", console_flush_interval_ms=10)


@pytest.fixture()
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture()
def bus() -> EventBus:
    return EventBus()


@pytest.fixture()
def presenter() -> RecordingPresenter:
    return RecordingPresenter()


@pytest.fixture()
def session(runner, bus, config, presenter) -> QueueSession:
    return QueueSession(runner, bus, config, presenter)
