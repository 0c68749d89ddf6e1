"""Off-screen rasterisation of template documents with Pillow.

Each element is drawn on its own transparent page-sized layer so that
opacity and rotation (about the element's top-left corner, clockwise in
degrees) apply per element before the layer is composited onto the page.
"""

from __future__ import annotations

import base64
import binascii
import io
import re
from functools import lru_cache
from typing import Any

import structlog
from PIL import Image, ImageColor, ImageDraw, ImageFont, UnidentifiedImageError

from construo.models.template import (
    CircleElement,
    ImageElement,
    LineElement,
    RectElement,
    TemplateDocument,
    TextElement,
    TriangleElement,
)

log = structlog.get_logger()

RGBA = tuple[int, int, int, int]

_RGBA_FUNC = re.compile(
    r"rgba?\(\s*([\d.]+)\s*,\s*([\d.]+)\s*,\s*([\d.]+)\s*(?:,\s*([\d.]+)\s*)?\)",
    re.IGNORECASE,
)
_DATA_URL = re.compile(r"^data:[^;,]*(;base64)?,(.*)$", re.DOTALL)


def parse_color(value: Any) -> RGBA | None:
    """CSS colour to RGBA; None for transparent, gradients, or anything unparseable."""
    if not isinstance(value, str):
        return None
    value = value.strip()
    if not value or value.lower() in ("transparent", "none"):
        return None
    match = _RGBA_FUNC.fullmatch(value)
    if match:
        r, g, b = (int(float(c)) for c in match.groups()[:3])
        alpha = match.group(4)
        a = round(float(alpha) * 255) if alpha is not None else 255
        return (r, g, b, max(0, min(255, a)))
    try:
        rgb = ImageColor.getrgb(value)
    except ValueError:
        log.debug("render_unknown_color", value=value)
        return None
    if len(rgb) == 4:
        return rgb  # type: ignore[return-value]
    return (*rgb, 255)  # type: ignore[return-value]


def _font_candidates(family: str, bold: bool, italic: bool) -> list[str]:
    base = family.strip().strip("'\"")
    compact = base.replace(" ", "")
    suffixes = []
    if bold and italic:
        suffixes += ["-BoldItalic", "bi", " Bold Italic"]
    elif bold:
        suffixes += ["-Bold", "bd", " Bold"]
    elif italic:
        suffixes += ["-Italic", "i", " Italic"]
    names = [f"{compact}{s}.ttf" for s in suffixes] + [f"{base}{s}.ttf" for s in suffixes]
    names += [f"{compact}.ttf", f"{base}.ttf", f"{base.lower()}.ttf"]
    if bold:
        names.append("DejaVuSans-Bold.ttf")
    names.append("DejaVuSans.ttf")
    return names


@lru_cache(maxsize=64)
def load_font(
    family: str, size: int, bold: bool = False, italic: bool = False
) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    for name in _font_candidates(family, bold, italic):
        try:
            return ImageFont.truetype(name, size)
        except OSError:
            continue
    return ImageFont.load_default(size=size)


def decode_image_source(src: str) -> Image.Image | None:
    """Decode an inline ``data:`` image. Remote URLs are not fetched."""
    match = _DATA_URL.match(src or "")
    if not match or not match.group(1):
        log.warning("render_image_unsupported_source", src=(src or "")[:64])
        return None
    try:
        raw = base64.b64decode(match.group(2), validate=False)
        image = Image.open(io.BytesIO(raw))
        image.load()
    except (binascii.Error, UnidentifiedImageError, OSError):
        log.warning("render_image_decode_failed", exc_info=True)
        return None
    return image.convert("RGBA")


def wrap_text(
    text: str,
    font: ImageFont.FreeTypeFont | ImageFont.ImageFont,
    max_width: float | None,
    draw: ImageDraw.ImageDraw,
) -> list[str]:
    """Greedy word wrap; explicit newlines always break."""
    lines: list[str] = []
    for paragraph in text.split("\n"):
        if not max_width or max_width <= 0:
            lines.append(paragraph)
            continue
        current = ""
        for word in paragraph.split(" "):
            candidate = f"{current} {word}" if current else word
            if current and draw.textlength(candidate, font=font) > max_width:
                lines.append(current)
                current = word
            else:
                current = candidate
        lines.append(current)
    return lines


class RenderSurface:
    """A reusable off-screen page. Not safe for concurrent use."""

    def __init__(self, width: int = 1123, height: int = 794) -> None:
        self.width = width
        self.height = height
        self.document: TemplateDocument | None = None

    def load(self, document: TemplateDocument) -> None:
        self.document = document

    def rasterize(self, multiplier: float = 1.0) -> Image.Image:
        """Render the loaded document to an RGB bitmap ``multiplier`` times the page size."""
        if self.document is None:
            raise RuntimeError("No document loaded on the render surface")
        size = (round(self.width * multiplier), round(self.height * multiplier))
        background = parse_color(self.document.background) or (255, 255, 255, 255)
        page = Image.new("RGBA", size, background)

        for element in self.document.objects:
            if not element.visible or element.opacity <= 0:
                continue
            layer = Image.new("RGBA", size, (0, 0, 0, 0))
            draw = ImageDraw.Draw(layer)
            self._draw_element(element, layer, draw, multiplier)
            if element.opacity < 1:
                alpha = layer.getchannel("A").point(lambda a: round(a * element.opacity))
                layer.putalpha(alpha)
            if element.angle:
                pivot = (element.left * multiplier, element.top * multiplier)
                layer = layer.rotate(
                    -element.angle, center=pivot, resample=Image.Resampling.BICUBIC
                )
            page.alpha_composite(layer)

        return page.convert("RGB")

    def _draw_element(
        self,
        element: Any,
        layer: Image.Image,
        draw: ImageDraw.ImageDraw,
        m: float,
    ) -> None:
        x0, y0 = element.left * m, element.top * m
        x1 = x0 + element.scaled_width * m
        y1 = y0 + element.scaled_height * m
        fill = parse_color(element.fill)
        stroke = parse_color(element.stroke)
        stroke_width = max(1, round(element.stroke_width * m)) if stroke else 0

        if isinstance(element, TextElement):
            self._draw_text(element, draw, m)
        elif isinstance(element, RectElement):
            radius = max(element.rx, element.ry) * m
            if radius > 0:
                draw.rounded_rectangle(
                    (x0, y0, x1, y1), radius=radius, fill=fill, outline=stroke, width=stroke_width
                )
            else:
                draw.rectangle((x0, y0, x1, y1), fill=fill, outline=stroke, width=stroke_width)
        elif isinstance(element, CircleElement):
            diameter_x = (element.width or element.radius * 2) * element.scale_x * m
            diameter_y = (element.height or element.radius * 2) * element.scale_y * m
            draw.ellipse(
                (x0, y0, x0 + diameter_x, y0 + diameter_y),
                fill=fill,
                outline=stroke,
                width=stroke_width,
            )
        elif isinstance(element, TriangleElement):
            points = [((x0 + x1) / 2, y0), (x1, y1), (x0, y1)]
            draw.polygon(points, fill=fill, outline=stroke, width=stroke_width)
        elif isinstance(element, LineElement):
            dx = (element.x2 - element.x1) * element.scale_x * m
            dy = (element.y2 - element.y1) * element.scale_y * m
            start = (x0 if dx >= 0 else x0 - dx, y0 if dy >= 0 else y0 - dy)
            end = (start[0] + dx, start[1] + dy)
            color = stroke or fill
            if color:
                draw.line([start, end], fill=color, width=max(1, round(element.stroke_width * m)))
        elif isinstance(element, ImageElement):
            image = decode_image_source(element.src)
            if image is None:
                return
            target = (max(1, round(x1 - x0)), max(1, round(y1 - y0)))
            if element.width <= 0 or element.height <= 0:
                target = (
                    max(1, round(image.width * element.scale_x * m)),
                    max(1, round(image.height * element.scale_y * m)),
                )
            resized = image.resize(target, Image.Resampling.LANCZOS)
            layer.paste(resized, (round(x0), round(y0)), resized)

    def _draw_text(self, element: TextElement, draw: ImageDraw.ImageDraw, m: float) -> None:
        color = parse_color(element.fill)
        if not element.text or color is None:
            return
        bold = str(element.font_weight).lower() in ("bold", "bolder") or (
            str(element.font_weight).isdigit() and int(element.font_weight) >= 600
        )
        italic = element.font_style.lower() in ("italic", "oblique")
        size = max(1, round(element.font_size * element.scale_y * m))
        font = load_font(element.font_family, size, bold, italic)

        box_width = element.width * element.scale_x * m if element.type == "textbox" else None
        lines = wrap_text(element.text, font, box_width, draw)
        line_step = size * element.line_height
        x0, y = element.left * m, element.top * m
        for line in lines:
            line_width = draw.textlength(line, font=font)
            if box_width and element.text_align == "center":
                x = x0 + (box_width - line_width) / 2
            elif box_width and element.text_align == "right":
                x = x0 + box_width - line_width
            else:
                x = x0
            draw.text((x, y), line, font=font, fill=color)
            y += line_step
