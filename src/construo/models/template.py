"""Certificate template scene graph.

The wire format is the canvas editor's JSON: camelCase attribute names and a
``type`` tag per object. Attributes this model does not know about are kept
as extras so that a load/save cycle never drops editor state.
"""

from __future__ import annotations

import json
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

PAGE_BACKGROUND_ID = "page-bg"
PAGE_SHADOW_ID = "page-shadow"
SCAFFOLDING_IDS = frozenset({PAGE_BACKGROUND_ID, PAGE_SHADOW_ID})

TEXT_TYPES = ("textbox", "text", "i-text")


class PlaceholderKind(StrEnum):
    PARTICIPANT_NAME = "name"
    EVENT_NAME = "event"
    COLLEGE_NAME = "college"


PLACEHOLDER_TOKENS: dict[PlaceholderKind, str] = {
    PlaceholderKind.PARTICIPANT_NAME: "{Participant Name}",
    PlaceholderKind.EVENT_NAME: "{Event Name}",
    PlaceholderKind.COLLEGE_NAME: "{College Name}",
}


class _Element(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    id: str | None = None
    left: float = 0
    top: float = 0
    width: float = 0
    height: float = 0
    scale_x: float = 1
    scale_y: float = 1
    angle: float = 0
    opacity: float = 1
    fill: Any = "rgb(0,0,0)"
    stroke: Any = None
    stroke_width: float = 1
    visible: bool = True

    @property
    def scaled_width(self) -> float:
        return self.width * self.scale_x

    @property
    def scaled_height(self) -> float:
        return self.height * self.scale_y

    @property
    def is_scaffolding(self) -> bool:
        return self.id in SCAFFOLDING_IDS


class TextElement(_Element):
    type: Literal["textbox", "text", "i-text"] = "textbox"
    text: str = ""
    font_size: float = 40
    font_family: str = "Times New Roman"
    font_weight: str | int = "normal"
    font_style: str = "normal"
    text_align: str = "left"
    line_height: float = 1.16
    placeholder_kind: PlaceholderKind | None = Field(default=None, alias="data_type")


class RectElement(_Element):
    type: Literal["rect"] = "rect"
    rx: float = 0
    ry: float = 0


class CircleElement(_Element):
    type: Literal["circle"] = "circle"
    radius: float = 0


class TriangleElement(_Element):
    type: Literal["triangle"] = "triangle"


class LineElement(_Element):
    type: Literal["line"] = "line"
    x1: float = 0
    y1: float = 0
    x2: float = 0
    y2: float = 0


class ImageElement(_Element):
    type: Literal["image"] = "image"
    src: str = ""


VisualElement = Annotated[
    TextElement | RectElement | CircleElement | TriangleElement | LineElement | ImageElement,
    Field(discriminator="type"),
]


class TemplateDocument(BaseModel):
    model_config = ConfigDict(extra="allow")

    version: str | None = None
    objects: list[VisualElement] = []
    background: str | None = None

    @field_validator("objects")
    @classmethod
    def drop_scaffolding(cls, v: list[Any]) -> list[Any]:
        return [o for o in v if not o.is_scaffolding]

    def text_elements(self) -> list[TextElement]:
        return [o for o in self.objects if isinstance(o, TextElement)]

    def to_dict(self) -> dict[str, Any]:
        """Serialise for storage. Scaffolding never leaves the editor."""
        data = self.model_dump(mode="json", by_alias=True)
        data["objects"] = [
            obj.model_dump(mode="json", by_alias=True)
            for obj in self.objects
            if not obj.is_scaffolding
        ]
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, raw: str | dict[str, Any]) -> TemplateDocument:
        if isinstance(raw, str):
            return cls.model_validate_json(raw)
        return cls.model_validate(raw)
