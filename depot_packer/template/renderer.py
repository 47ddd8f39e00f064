"""
Renders release-text templates (BBCode) from job metadata.

A template is an ordered list of blocks. Text blocks may only reference the
single-value fields; the depot list renders one line per depot from the depot
fields and wraps them in a spoiler. Rendering either returns the whole text
or raises a `TemplateValidationError`; it never returns partial output.
"""

import logging
import re
from pathlib import Path
from typing import Any, Iterable, Optional, Sequence

import aiofiles

from depot_packer.exceptions import (
    DepotLimitError,
    InvalidTemplateError,
    NoDepotsError,
    NoMetadataError,
    OutputLengthError,
    TemplateError,
    UnsupportedFieldError,
)
from depot_packer.models.template import (
    DepotListBlock,
    DepotListConfig,
    FreeTextBlock,
    FreeTextConfig,
    TemplateBlock,
    TemplateDepot,
    TemplateMetadata,
    TemplatePayload,
    TextTemplateConfig,
    TitleBlock,
    UploadedVersionBlock,
    VersionBlock,
)

log = logging.getLogger(__name__)

TEMPLATE_MAX_DEPOTS = 100
TEMPLATE_MAX_LENGTH = 200000
SINGLE_FIELDS = ("game_name", "os", "branch", "build_datetime_utc", "build_id")
DEPOT_FIELDS = ("depot_id", "depot_name", "manifest_id")
TOKEN_PATTERN = re.compile(r"\{\{([^}]+)\}\}")

DEFAULT_TITLE = (
    "[url=][color=white][b]{{game_name}} [{{os}}] [Branch: {{branch}}] "
    "(Clean Steam Files)[/b][/color][/url]"
)
DEFAULT_VERSION = (
    "[size=85][color=white][b]Version:[/b] [i]{{build_datetime_utc}} "
    "[Build {{build_id}}][/i][/color][/size]"
)
DEFAULT_DEPOT_TITLE = '"[color=white]Depots & Manifests[/color]"'
DEFAULT_DEPOT_LINE = "{{depot_id}} - {{depot_name}} [Manifest {{manifest_id}}]"
DEFAULT_UPLOADED_VERSION = (
    "[color=white][b]Uploaded version:[/b] [i]{{build_datetime_utc}} "
    "[Build {{build_id}}][/i][/color]"
)
DEFAULT_FOOTER = (
    "Made using [url=https://github.com/elgreams/OmniPacker]OmniPacker[/url]"
)

# Per-type defaults used when a saved block is missing a config field.
BLOCK_DEFAULTS: dict[str, dict[str, Any]] = {
    "title": {"template": DEFAULT_TITLE},
    "version": {"template": DEFAULT_VERSION},
    "depot_list": {
        "title": DEFAULT_DEPOT_TITLE,
        "lineTemplate": DEFAULT_DEPOT_LINE,
        "useCodeBlock": True,
    },
    "free_text": {"text": ""},
    "uploaded_version": {"template": DEFAULT_UPLOADED_VERSION},
}

EXAMPLE_METADATA = TemplateMetadata(
    game_name="Balatro",
    os="Win64",
    branch="Public",
    build_datetime_utc="February 24, 2025 - 22:02:36 UTC",
    build_id="4851806656204679952",
    depots=[
        TemplateDepot(
            depot_id="228989",
            depot_name="Steamworks Shared",
            manifest_id="7206221393165260579",
        ),
        TemplateDepot(
            depot_id="2379781",
            depot_name="Balatro",
            manifest_id="4851806656204679952",
        ),
    ],
)


def default_template() -> list[TemplateBlock]:
    """The stock five-block release layout."""
    return [
        TitleBlock(config=TextTemplateConfig(template=DEFAULT_TITLE)),
        VersionBlock(config=TextTemplateConfig(template=DEFAULT_VERSION)),
        DepotListBlock(
            config=DepotListConfig(
                title=DEFAULT_DEPOT_TITLE,
                line_template=DEFAULT_DEPOT_LINE,
                use_code_block=True,
            )
        ),
        UploadedVersionBlock(config=TextTemplateConfig(template=DEFAULT_UPLOADED_VERSION)),
        FreeTextBlock(config=FreeTextConfig(text=DEFAULT_FOOTER)),
    ]


def find_tokens(template: str) -> list[str]:
    return [match.strip() for match in TOKEN_PATTERN.findall(template)]


def render_template_string(
    template: str, allowed_fields: Iterable[str], values: dict[str, str]
) -> str:
    """
    Substitutes `{{field}}` tokens (whitespace inside the braces is ignored).

    Raises:
        UnsupportedFieldError: Listing each distinct token outside `allowed_fields`.
    """
    allowed = set(allowed_fields)
    invalid = [token for token in find_tokens(template) if token not in allowed]
    if invalid:
        raise UnsupportedFieldError(list(dict.fromkeys(invalid)))
    return TOKEN_PATTERN.sub(lambda m: str(values.get(m.group(1).strip(), "")), template)


def _render_depot_list(config: DepotListConfig, depots: Sequence[TemplateDepot]) -> str:
    if not depots:
        raise NoDepotsError("No depots available for preview.")
    if len(depots) > TEMPLATE_MAX_DEPOTS:
        raise DepotLimitError(f"Depot count exceeds limit of {TEMPLATE_MAX_DEPOTS}.")

    lines = [
        render_template_string(config.line_template, DEPOT_FIELDS, depot.model_dump())
        for depot in depots
    ]
    body = "\n".join(lines)
    if config.use_code_block:
        body = f"[code=text]{body}[/code]"
    return f"[spoiler={config.title or 'Depots'}]\n{body}\n[/spoiler]"


def _separator(current: str, following: str) -> str:
    if current == "version" and following == "depot_list":
        return "\n\n"
    if current == "depot_list" and following == "uploaded_version":
        return ""
    return "\n"


def render_template(blocks: Sequence, metadata: Optional[TemplateMetadata]) -> str:
    """
    Renders `blocks` against `metadata`.

    Raises:
        NoMetadataError: If `metadata` is None.
        UnsupportedFieldError: If any block references an unknown field.
        NoDepotsError: If a depot list is rendered without depots.
        DepotLimitError: If there are more than 100 depots.
        OutputLengthError: If the result exceeds 200,000 characters.
    """
    if metadata is None:
        raise NoMetadataError("No job metadata available. Run a job to preview.")

    values = metadata.single_values()
    parts: list[str] = []
    for block in blocks:
        if block.type == "depot_list":
            parts.append(_render_depot_list(block.config, metadata.depots))
        elif block.type == "free_text":
            parts.append(render_template_string(block.config.text, SINGLE_FIELDS, values))
        else:
            parts.append(
                render_template_string(block.config.template, SINGLE_FIELDS, values)
            )

    output = ""
    for index, part in enumerate(parts):
        output += part
        if index + 1 < len(parts):
            output += _separator(blocks[index].type, blocks[index + 1].type)

    if len(output) > TEMPLATE_MAX_LENGTH:
        raise OutputLengthError(
            f"Rendered output exceeds {TEMPLATE_MAX_LENGTH} characters."
        )
    return output


# --- Persistence format ------------------------------------------------------

_BLOCK_CLASSES = {
    "title": TitleBlock,
    "version": VersionBlock,
    "depot_list": DepotListBlock,
    "free_text": FreeTextBlock,
    "uploaded_version": UploadedVersionBlock,
}


def _pick(config: dict, key: str, expected: type, block_type: str) -> Any:
    value = config.get(key)
    if isinstance(value, expected):
        return value
    return BLOCK_DEFAULTS[block_type][key]


def _sanitize_block(raw: Any):
    if not isinstance(raw, dict) or not isinstance(raw.get("type"), str):
        raise InvalidTemplateError("Invalid template file.")
    block_type = raw["type"]
    if block_type not in _BLOCK_CLASSES:
        raise InvalidTemplateError("Invalid template file.")
    config = raw.get("config")
    if not isinstance(config, dict):
        config = {}

    if block_type == "depot_list":
        return DepotListBlock(
            config=DepotListConfig(
                title=_pick(config, "title", str, block_type),
                line_template=_pick(config, "lineTemplate", str, block_type),
                use_code_block=_pick(config, "useCodeBlock", bool, block_type),
            )
        )
    if block_type == "free_text":
        return FreeTextBlock(
            config=FreeTextConfig(text=_pick(config, "text", str, block_type))
        )
    return _BLOCK_CLASSES[block_type](
        config=TextTemplateConfig(template=_pick(config, "template", str, block_type))
    )


def parse_template_payload(payload: Any) -> list[TemplateBlock]:
    """
    Validates a saved template payload and fills missing or mistyped config
    fields with the per-type defaults.

    Raises:
        InvalidTemplateError: If `blocks` is missing, empty, or holds a block
        without a known type.
    """
    if not isinstance(payload, dict) or not isinstance(payload.get("blocks"), list):
        raise InvalidTemplateError("Invalid template file.")
    blocks = [_sanitize_block(raw) for raw in payload["blocks"]]
    if not blocks:
        raise InvalidTemplateError("Invalid template file.")
    return blocks


def serialize_template(blocks: Sequence[TemplateBlock]) -> dict:
    return TemplatePayload(blocks=list(blocks)).model_dump(by_alias=True)


# --- Output file -------------------------------------------------------------


def template_output_path(output_path: Path) -> Path:
    """
    The release-text file written next to a job's output: `<dir>.txt` beside
    an output folder, or the archive path with a `.txt` suffix.

    Raises:
        TemplateError: If the output is neither a directory nor a `.7z` file.
    """
    output_path = Path(output_path)
    if output_path.is_dir():
        if not output_path.name:
            raise TemplateError("Invalid output path")
        return output_path.with_name(f"{output_path.name}.txt")
    if output_path.suffix == ".7z":
        return output_path.with_suffix(".txt")
    raise TemplateError("Output path must be a directory or .7z file")


async def write_template_file(
    output_path: Path,
    metadata: Optional[TemplateMetadata],
    blocks: Optional[Sequence] = None,
) -> Path:
    """Renders the template (or the default one) and writes it beside `output_path`."""
    text = render_template(blocks or default_template(), metadata)
    txt_path = template_output_path(output_path)
    try:
        async with aiofiles.open(txt_path, "w", encoding="utf-8") as f:
            await f.write(text)
    except OSError as e:
        raise TemplateError(f"Failed to write template file: {e}") from e
    log.debug(f"Wrote release text to {txt_path}")
    return txt_path
