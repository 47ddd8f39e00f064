"""
Release-text templates.

Renders the BBCode description that accompanies a packaged build from the
metadata gathered while the job ran.
"""

from .metadata import JobMetadataFile, load_metadata_json, template_metadata_from_job
from .renderer import (
    EXAMPLE_METADATA,
    default_template,
    parse_template_payload,
    render_template,
    serialize_template,
    template_output_path,
    write_template_file,
)

__all__ = [
    "EXAMPLE_METADATA",
    "JobMetadataFile",
    "default_template",
    "load_metadata_json",
    "parse_template_payload",
    "render_template",
    "serialize_template",
    "template_metadata_from_job",
    "template_output_path",
    "write_template_file",
]
