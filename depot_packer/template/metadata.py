"""
The `job.json` record written into a job's staging directory, and its
conversion into the values a release template renders against.
"""

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional

import aiofiles
from pydantic import BaseModel, Field, ValidationError

from depot_packer.exceptions import NoMetadataError
from depot_packer.models.template import TemplateDepot, TemplateMetadata

log = logging.getLogger(__name__)

METADATA_VERSION = "1.0.0"
METADATA_FILENAME = "job.json"

MONTH_NAMES = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)


class BuildIdSource(str, Enum):
    APP_BUILDID = "app_buildid"
    PRIMARY_MANIFEST_ID = "primary_manifest_id"


class DepotInfo(BaseModel):
    depot_id: str
    depot_name: str
    manifest_id: str
    manifest_id_used: Optional[str] = None


class JobMetadataFile(BaseModel):
    """Build facts collected while a job downloads. Not used for resuming."""

    job_id: str
    appid: str
    branch: str = "public"
    platform: str
    primary_depot_id: str = ""
    game_name: str
    build_id: str
    build_id_source: BuildIdSource = BuildIdSource.PRIMARY_MANIFEST_ID
    build_datetime_utc: Optional[datetime] = None
    depots: list[DepotInfo] = Field(default_factory=list)
    appinfo_fetched_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    metadata_version: Optional[str] = METADATA_VERSION

    @property
    def build_timestamp(self) -> datetime:
        """The build time, or when app info was fetched if the build time is unknown."""
        timestamp = self.build_datetime_utc or self.appinfo_fetched_at
        if timestamp.tzinfo is None:
            return timestamp.replace(tzinfo=timezone.utc)
        return timestamp.astimezone(timezone.utc)

    def to_json(self) -> str:
        return self.model_dump_json(indent=2, exclude_none=True)

    @classmethod
    def from_json(cls, content: str) -> "JobMetadataFile":
        try:
            return cls.model_validate_json(content)
        except ValidationError as e:
            raise NoMetadataError(f"Failed to parse {METADATA_FILENAME}: {e}") from e

    async def write_to_dir(self, staging_dir: Path) -> Path:
        path = Path(staging_dir) / METADATA_FILENAME
        async with aiofiles.open(path, "w", encoding="utf-8") as f:
            await f.write(self.to_json())
        return path

    @classmethod
    async def read_from_dir(cls, staging_dir: Path) -> "JobMetadataFile":
        return await cls.read_file(Path(staging_dir) / METADATA_FILENAME)

    @classmethod
    async def read_file(cls, path: Path) -> "JobMetadataFile":
        """
        Raises:
            NoMetadataError: If the file is missing or not valid job metadata.
        """
        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                content = await f.read()
        except OSError as e:
            raise NoMetadataError(f"Failed to read {path}: {e}") from e
        return cls.from_json(content)


def format_build_datetime(timestamp: datetime) -> str:
    """Formats a UTC timestamp as e.g. 'February 24, 2025 - 22:02:36 UTC'."""
    return (
        f"{MONTH_NAMES[timestamp.month - 1]} {timestamp.day}, {timestamp.year} - "
        f"{timestamp.hour:02d}:{timestamp.minute:02d}:{timestamp.second:02d} UTC"
    )


def template_metadata_from_job(metadata: JobMetadataFile) -> TemplateMetadata:
    return TemplateMetadata(
        game_name=metadata.game_name,
        os=metadata.platform,
        branch=metadata.branch,
        build_datetime_utc=format_build_datetime(metadata.build_timestamp),
        build_id=metadata.build_id,
        depots=[
            TemplateDepot(
                depot_id=depot.depot_id,
                depot_name=depot.depot_name,
                manifest_id=depot.manifest_id,
            )
            for depot in metadata.depots
        ],
    )


def load_metadata_json(content: str) -> TemplateMetadata:
    """
    Accepts either a full `job.json` record or an already-flattened template
    metadata object.
    """
    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise NoMetadataError(f"Metadata is not valid JSON: {e}") from e
    if not isinstance(data, dict) or not data:
        raise NoMetadataError("No job metadata available. Run a job to preview.")
    if "appid" in data:
        return template_metadata_from_job(JobMetadataFile.from_json(content))
    try:
        return TemplateMetadata.model_validate(data)
    except ValidationError as e:
        raise NoMetadataError(f"Invalid template metadata: {e}") from e
