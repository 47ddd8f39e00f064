"""
Persistence of the user's release template as `template.json`.
"""

import json
import logging
from pathlib import Path
from typing import Optional, Sequence

import aiofiles

from depot_packer.exceptions import InvalidTemplateError, TemplateError
from depot_packer.template.renderer import parse_template_payload, serialize_template

log = logging.getLogger(__name__)

TEMPLATE_FILE_NAME = "template.json"


class TemplateStore:
    def __init__(self, config_dir: Path, file_name: str = TEMPLATE_FILE_NAME):
        self.path = Path(config_dir) / file_name

    async def load(self) -> Optional[list]:
        """
        Returns the saved blocks, or None when no template has been saved.

        Raises:
            InvalidTemplateError: If the file exists but is not a valid template.
        """
        if not self.path.is_file():
            return None
        try:
            async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
                content = await f.read()
        except OSError as e:
            raise TemplateError(f"Failed to load template: {e}") from e
        try:
            payload = json.loads(content)
        except json.JSONDecodeError as e:
            raise InvalidTemplateError("Invalid template file.") from e
        return parse_template_payload(payload)

    async def save(self, blocks: Sequence) -> Path:
        content = json.dumps(serialize_template(blocks), indent=2)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(self.path, "w", encoding="utf-8") as f:
                await f.write(content)
        except OSError as e:
            raise TemplateError(f"Failed to save template: {e}") from e
        log.debug(f"Saved template with {len(blocks)} blocks to {self.path}")
        return self.path
