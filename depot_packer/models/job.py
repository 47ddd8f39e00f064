"""
Job entities, their state machine enums and the request snapshot handed to the runner.
"""

import uuid
from dataclasses import dataclass, field
from enum import Enum

from pydantic import BaseModel, field_validator

from depot_packer.core.log_buffer import ConsoleLogBuffer

# OS selector -> (downloader -os, downloader -osarch, platform label for output names)
OS_TARGETS: dict[str, tuple[str, str, str]] = {
    "Windows x64": ("windows", "64", "Win64"),
    "Windows x86": ("windows", "32", "Win32"),
    "Linux": ("linux", "64", "Linux64"),
    "macOS x64": ("macos", "64", "MacOS64"),
    "macOS arm64": ("macos", "arm64", "MacOSArm64"),
    "macOS": ("macos", "64", "MacOS64"),
}
DEFAULT_OS = "Windows x64"


def os_target(os_name: str) -> tuple[str, str, str]:
    """Resolves an OS selector, falling back to Windows x64 for unknown values."""
    return OS_TARGETS.get(os_name, OS_TARGETS[DEFAULT_OS])


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPRESSING = "compressing"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.DONE, JobStatus.FAILED)

    @property
    def is_active(self) -> bool:
        return self in (JobStatus.RUNNING, JobStatus.COMPRESSING)


class QrState(str, Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    DISPLAYING = "displaying"


class TokenState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"


class EmailState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    RETRY_IN_FLIGHT = "retry_in_flight"


class JobSpec(BaseModel):
    """User input for a new queue entry."""

    app_id: str
    os: str = DEFAULT_OS
    branch: str = "public"
    username: str = ""
    password: str = ""
    qr_enabled: bool = False

    class Config:
        """Pydantic model configuration."""

        str_strip_whitespace = True

    @field_validator("app_id")
    @classmethod
    def validate_app_id(cls, v: str) -> str:
        if not v.isdigit():
            raise ValueError(f"App ID must be numeric, but got: '{v}'")
        return v

    @field_validator("os")
    @classmethod
    def validate_os(cls, v: str) -> str:
        if v not in OS_TARGETS:
            raise ValueError(
                f"Unknown OS '{v}'. Choose one of: {', '.join(OS_TARGETS)}."
            )
        return v

    @field_validator("branch")
    @classmethod
    def default_branch(cls, v: str) -> str:
        return v or "public"


@dataclass(frozen=True)
class RunRequest:
    """Credential and compression snapshot handed to the external runner."""

    app_id: str
    os: str
    branch: str
    username: str
    password: str
    qr_enabled: bool
    remember_password: bool
    skip_compression: bool = False
    compression_password: str | None = None


@dataclass
class Job:
    """A single download-then-compress unit of work and its live state."""

    app_id: str
    os: str
    branch: str
    username: str = ""
    password: str = ""
    qr_enabled: bool = False
    remember_password: bool = False
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: JobStatus = JobStatus.QUEUED
    log: ConsoleLogBuffer = field(default_factory=ConsoleLogBuffer, repr=False)
    compression_progress: int | None = None
    qr_text: str | None = None
    qr_state: QrState = QrState.IDLE
    qr_lines: list[str] = field(default_factory=list, repr=False)
    token_state: TokenState = TokenState.IDLE
    email_state: EmailState = EmailState.IDLE
    email_provider: str | None = None
    correlation_id: str | None = None
    staging_dir: str | None = None

    def __post_init__(self):
        self.log.job_id = self.id

    @classmethod
    def from_spec(cls, spec: JobSpec, log: ConsoleLogBuffer | None = None) -> "Job":
        job = cls(
            app_id=spec.app_id,
            os=spec.os,
            branch=spec.branch,
            username=spec.username,
            password=spec.password,
            qr_enabled=spec.qr_enabled,
        )
        if log is not None:
            log.job_id = job.id
            job.log = log
        return job

    def adopt_correlation_id(self, correlation_id: str) -> bool:
        """
        Sets the correlation id if none is set yet. Returns False when a
        different id is already assigned; the existing id is kept.
        """
        if self.correlation_id is None:
            self.correlation_id = correlation_id
            return True
        return self.correlation_id == correlation_id

    def set_status(self, status: JobStatus) -> None:
        """Applies a status, keeping compression progress scoped to compressing."""
        self.status = status
        if status is JobStatus.COMPRESSING:
            if self.compression_progress is None:
                self.compression_progress = 0
        else:
            self.compression_progress = None

    def reset_challenges(self) -> None:
        self.qr_state = QrState.IDLE
        self.qr_lines = []
        self.token_state = TokenState.IDLE
        self.email_state = EmailState.IDLE
        self.email_provider = None

    def reset_for_retry(self) -> None:
        """Returns the job to a fresh queued state so it can be started again."""
        self.status = JobStatus.QUEUED
        self.correlation_id = None
        self.staging_dir = None
        self.compression_progress = None
        self.qr_text = None
        self.reset_challenges()

    def run_request(
        self, skip_compression: bool = False, compression_password: str | None = None
    ) -> RunRequest:
        return RunRequest(
            app_id=self.app_id,
            os=self.os,
            branch=self.branch,
            username=self.username,
            password=self.password,
            qr_enabled=self.qr_enabled,
            remember_password=self.remember_password,
            skip_compression=skip_compression,
            compression_password=compression_password,
        )
