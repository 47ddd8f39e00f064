"""
Utilities for naming job ids, staging directories and output paths.
"""

import secrets
import string
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pathvalidate import sanitize_filename

STAGING_DIR_NAME = ".staging"
ARCHIVE_SUFFIX = ".7z"
MAX_COPY_SUFFIX = 9999

_SHORT_ID_ALPHABET = string.digits + string.ascii_lowercase


def generate_job_id(now: Optional[datetime] = None) -> str:
    """A sortable unique id such as `2026-01-05T11-30-02Z_a1b2c3`."""
    now = now or datetime.now(timezone.utc)
    short_id = "".join(secrets.choice(_SHORT_ID_ALPHABET) for _ in range(6))
    return f"{now.strftime('%Y-%m-%dT%H-%M-%SZ')}_{short_id}"


def create_dir(directory_path: Path) -> None:
    """Creates a directory if it does not already exist."""
    directory_path.mkdir(parents=True, exist_ok=True)


def staging_dir_for(output_root: Path, job_id: str) -> Path:
    return Path(output_root) / STAGING_DIR_NAME / sanitize_filename(job_id)


def capitalize_first(value: str) -> str:
    return value[:1].upper() + value[1:]


def output_folder_name(game_name: str, build_id: str, platform: str, branch: str) -> str:
    """`<GameName>.Build.<BuildId>.<Platform>.<Branch>`, safe on every platform."""
    safe_name = sanitize_filename(game_name, replacement_text="_", platform="universal")
    folder = f"{safe_name or 'app'}.Build.{build_id}.{platform}.{branch}"
    return sanitize_filename(folder, platform="universal")


def archive_path_for(output_path: Path) -> Path:
    """The archive written for an output folder: the folder path plus `.7z`."""
    output_path = Path(output_path)
    return output_path.with_name(output_path.name + ARCHIVE_SUFFIX)


def copy_output_path(base_path: Path, compression_enabled: bool) -> Path:
    """
    First free `<name> (n)` sibling of `base_path`; when compressing, the
    matching archive name must be free as well.
    """
    base_path = Path(base_path)
    for suffix in range(1, MAX_COPY_SUFFIX + 1):
        candidate = base_path.with_name(f"{base_path.name} ({suffix})")
        if candidate.exists():
            continue
        if compression_enabled and archive_path_for(candidate).exists():
            continue
        return candidate
    raise FileExistsError("Unable to find available output copy name")
