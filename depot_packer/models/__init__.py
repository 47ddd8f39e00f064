"""
Data Models Layer.

This package contains the Pydantic models and dataclasses that define the core
data structures used throughout the application, such as configuration, jobs,
runner events and templates.
"""

from .config import AppConfig
from .events import ConflictChoice, ConflictEvent, LogEvent, ProgressEvent, StatusEvent
from .job import Job, JobSpec, JobStatus, RunRequest
from .stats import QueueStats

__all__ = [
    "AppConfig",
    "ConflictChoice",
    "ConflictEvent",
    "Job",
    "JobSpec",
    "JobStatus",
    "LogEvent",
    "ProgressEvent",
    "QueueStats",
    "RunRequest",
    "StatusEvent",
]
