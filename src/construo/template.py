"""Loading, saving and building certificate templates.

Templates are stored inside the site configuration under
``settings.certificate_template``. A legacy top-level ``certificate_template``
field is still honoured when reading but is never written.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError

from construo.errors import ConstruoError, ErrorCode
from construo.models.template import (
    PAGE_BACKGROUND_ID,
    PAGE_SHADOW_ID,
    PLACEHOLDER_TOKENS,
    CircleElement,
    ImageElement,
    LineElement,
    PlaceholderKind,
    RectElement,
    TemplateDocument,
    TextElement,
    TriangleElement,
)

if TYPE_CHECKING:
    from construo.gateway import Gateway

log = structlog.get_logger()

PAGE_WIDTH = 1123
PAGE_HEIGHT = 794

_PLACEHOLDER_COLORS = {
    PlaceholderKind.PARTICIPANT_NAME: "#000000",
    PlaceholderKind.EVENT_NAME: "#555555",
    PlaceholderKind.COLLEGE_NAME: "#555555",
}


def load_template(site_config: Mapping[str, Any] | None) -> TemplateDocument | None:
    """Extract the stored template from a site configuration row.

    Returns None when no template has been saved. Raises ``ConstruoError``
    with ``TEMPLATE_INVALID`` when the stored JSON does not parse.
    """
    if not site_config:
        return None
    settings = site_config.get("settings") or {}
    raw = settings.get("certificate_template") or site_config.get("certificate_template")
    if not raw:
        return None
    try:
        if isinstance(raw, str):
            raw = json.loads(raw)
        return TemplateDocument.from_json(raw)
    except (ValueError, ValidationError) as exc:
        raise ConstruoError(
            ErrorCode.TEMPLATE_INVALID,
            f"Stored certificate template is malformed: {exc}",
        ) from exc


async def save_template(
    gateway: Gateway,
    document: TemplateDocument,
    updated_by: str | None = None,
) -> dict[str, Any]:
    """Store ``document`` under settings.certificate_template, keeping other settings."""
    current = await gateway.fetch_site_config()
    settings = dict(current.get("settings") or {})
    settings["certificate_template"] = document.to_dict()
    row = await gateway.update_site_config_section("settings", settings, updated_by)
    log.info("certificate_template_saved", objects=len(document.objects))
    return row


def prepare_document(template: TemplateDocument, background: str = "#ffffff") -> TemplateDocument:
    """Fresh deep copy ready for one render: no scaffolding, opaque background."""
    copy = template.model_copy(deep=True)
    copy.objects = [o for o in copy.objects if not o.is_scaffolding]
    if not copy.background:
        copy.background = background
    return copy


# ----------------------------------------------------------------------
# Element factories (editor defaults)
# ----------------------------------------------------------------------


def new_text(text: str = "New Text") -> TextElement:
    return TextElement(
        text=text, left=100, top=100, width=300, font_size=40, font_family="Arial", fill="#333333"
    )


def new_placeholder(kind: PlaceholderKind) -> TextElement:
    return TextElement(
        text=PLACEHOLDER_TOKENS[kind],
        left=200,
        top=200,
        width=400,
        font_size=40,
        font_family="Arial",
        fill=_PLACEHOLDER_COLORS[kind],
        text_align="center",
        placeholder_kind=kind,
    )


def new_rect() -> RectElement:
    return RectElement(left=100, top=100, width=200, height=100, fill="#cccccc")


def new_circle() -> CircleElement:
    return CircleElement(left=100, top=100, radius=50, width=100, height=100, fill="#cccccc")


def new_triangle() -> TriangleElement:
    return TriangleElement(left=100, top=100, width=100, height=100, fill="#cccccc")


def new_line() -> LineElement:
    return LineElement(
        left=100, top=100, x1=0, y1=0, x2=200, y2=0, width=200, stroke="#000000", stroke_width=2
    )


def new_image(src: str, width: float, height: float, max_width: float = 600) -> ImageElement:
    scale = max_width / width if width > max_width else 1
    return ImageElement(
        src=src, left=100, top=100, width=width, height=height, scale_x=scale, scale_y=scale
    )


def page_scaffolding() -> list[RectElement]:
    """The editor-only page shadow and page background, bottom-most first."""
    shadow = RectElement(
        id=PAGE_SHADOW_ID,
        left=12,
        top=12,
        width=PAGE_WIDTH,
        height=PAGE_HEIGHT,
        fill="rgba(0,0,0,0.45)",
        rx=2,
        ry=2,
    )
    page = RectElement(
        id=PAGE_BACKGROUND_ID,
        left=0,
        top=0,
        width=PAGE_WIDTH,
        height=PAGE_HEIGHT,
        fill="#ffffff",
        stroke="#e0e0e0",
        stroke_width=1,
    )
    return [shadow, page]
