"""
Pydantic models for release-text templates and the metadata they render against.
"""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

BlockType = Literal["title", "version", "depot_list", "free_text", "uploaded_version"]


class TemplateDepot(BaseModel):
    depot_id: str = ""
    depot_name: str = ""
    manifest_id: str = ""


class TemplateMetadata(BaseModel):
    """Values available to template placeholders."""

    game_name: str = ""
    os: str = ""
    branch: str = ""
    build_datetime_utc: str = ""
    build_id: str = ""
    depots: list[TemplateDepot] = Field(default_factory=list)

    def single_values(self) -> dict[str, str]:
        return {
            "game_name": self.game_name,
            "os": self.os,
            "branch": self.branch,
            "build_datetime_utc": self.build_datetime_utc,
            "build_id": self.build_id,
        }


class TextTemplateConfig(BaseModel):
    template: str = ""


class FreeTextConfig(BaseModel):
    text: str = ""


class DepotListConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str | None = None
    line_template: str = Field("", alias="lineTemplate")
    use_code_block: bool = Field(False, alias="useCodeBlock")


class TitleBlock(BaseModel):
    type: Literal["title"] = "title"
    config: TextTemplateConfig = Field(default_factory=TextTemplateConfig)


class VersionBlock(BaseModel):
    type: Literal["version"] = "version"
    config: TextTemplateConfig = Field(default_factory=TextTemplateConfig)


class UploadedVersionBlock(BaseModel):
    type: Literal["uploaded_version"] = "uploaded_version"
    config: TextTemplateConfig = Field(default_factory=TextTemplateConfig)


class FreeTextBlock(BaseModel):
    type: Literal["free_text"] = "free_text"
    config: FreeTextConfig = Field(default_factory=FreeTextConfig)


class DepotListBlock(BaseModel):
    type: Literal["depot_list"] = "depot_list"
    config: DepotListConfig = Field(default_factory=DepotListConfig)


TemplateBlock = Annotated[
    Union[TitleBlock, VersionBlock, DepotListBlock, FreeTextBlock, UploadedVersionBlock],
    Field(discriminator="type"),
]


class TemplatePayload(BaseModel):
    """On-disk template format: a schema version and the ordered blocks."""

    version: int = 1
    blocks: list[TemplateBlock] = Field(default_factory=list)
