"""
Helper functions for formatting data into human-readable strings.
"""

from depot_packer.models.job import Job, JobStatus


def format_duration(seconds: float) -> str:
    """
    Formats a duration in seconds into a human-readable string (e.g., '2h 34m 12s').
    """
    s = int(seconds)
    hours, remainder = divmod(s, 3600)
    minutes, secs = divmod(remainder, 60)
    parts = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    if secs > 0 or not parts:
        parts.append(f"{secs}s")
    return " ".join(parts)


def format_job_status(job: Job) -> str:
    """Status label for queue listings, e.g. 'compressing (42%)'."""
    if job.status is JobStatus.COMPRESSING and job.compression_progress is not None:
        return f"{job.status.value} ({job.compression_progress}%)"
    return job.status.value


def mask_secret(value: str) -> str:
    return "*" * 8 if value else ""
