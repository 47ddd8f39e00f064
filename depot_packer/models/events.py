"""
Notification payloads pushed by the external runner.

Each payload carries the runner-assigned correlation id (`job_id`) once it is
known; compression events from the archiver are never tagged.
"""

from dataclasses import dataclass
from enum import Enum


class Stream(str, Enum):
    STDOUT = "stdout"
    STDERR = "stderr"
    SYSTEM = "system"


class EventSource(str, Enum):
    DOWNLOAD = "download"
    COMPRESSION = "compression"


class ConflictChoice(str, Enum):
    OVERWRITE = "overwrite"
    COPY = "copy"
    CANCEL = "cancel"


@dataclass(frozen=True)
class LogEvent:
    line: str
    stream: Stream = Stream.STDOUT
    job_id: str | None = None
    source: EventSource = EventSource.DOWNLOAD


@dataclass(frozen=True)
class StatusEvent:
    status: str
    code: int | None = None
    job_id: str | None = None
    source: EventSource = EventSource.DOWNLOAD


@dataclass(frozen=True)
class ProgressEvent:
    percent: float
    job_id: str | None = None


@dataclass(frozen=True)
class ConflictEvent:
    job_id: str
    output_name: str
    output_path: str


RunnerEvent = LogEvent | StatusEvent | ProgressEvent | ConflictEvent
