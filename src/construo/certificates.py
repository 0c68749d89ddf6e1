"""Batch certificate generation: one single-page PDF per participant.

Participants are processed strictly one after another on a single shared
render surface. Each iteration works on its own deep copy of the template,
so placeholder substitution for one participant can never leak into the
next. Apart from a missing template, which is rejected before anything is
rendered, failures propagate and abort the rest of the batch.
"""

from __future__ import annotations

import asyncio
import io
import re
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import structlog
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from construo.errors import TemplateMissingError
from construo.models.template import PLACEHOLDER_TOKENS, PlaceholderKind
from construo.render import RenderSurface
from construo.template import prepare_document

if TYPE_CHECKING:
    from PIL import Image

    from construo.config import CertificateSettings
    from construo.models.registration import ParticipantRecord
    from construo.models.template import TemplateDocument

log = structlog.get_logger()

_TOKEN_KINDS = {token.lower(): kind for kind, token in PLACEHOLDER_TOKENS.items()}
_TOKEN_PATTERN = re.compile(
    "|".join(re.escape(token) for token in PLACEHOLDER_TOKENS.values()), re.IGNORECASE
)
_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-z0-9]", re.IGNORECASE)


@dataclass(frozen=True)
class CertificateDocument:
    participant_id: str
    participant_name: str
    filename: str
    content: bytes


DocumentSink = Callable[[CertificateDocument], Awaitable[None]]


def certificate_filename(full_name: str) -> str:
    """``Certificate_<name>.pdf`` with every non-alphanumeric character as ``_``."""
    safe = _UNSAFE_FILENAME_CHARS.sub("_", full_name or "user")
    return f"Certificate_{safe}.pdf"


def substitute_placeholders(
    text: str,
    participant: ParticipantRecord,
    default_event_label: str = "CONSTRUO 2026",
) -> str:
    """Resolve every placeholder token in one pass, case-insensitively."""
    values = {
        PlaceholderKind.PARTICIPANT_NAME: participant.full_name or "Participant",
        PlaceholderKind.EVENT_NAME: (
            ", ".join(participant.events) or participant.event_title or default_event_label
        ),
        PlaceholderKind.COLLEGE_NAME: participant.college or "",
    }
    return _TOKEN_PATTERN.sub(lambda m: values[_TOKEN_KINDS[m.group(0).lower()]], text)


def build_pdf(
    bitmap: Image.Image,
    padding: float = 2.0,
    jpeg_quality: int = 98,
    title: str | None = None,
) -> bytes:
    """Wrap a bitmap in a one-page PDF slightly larger than the image.

    The padding keeps rounding in the page geometry from ever spilling the
    image onto a second page.
    """
    page_width = bitmap.width + padding
    page_height = bitmap.height + padding

    jpeg = io.BytesIO()
    bitmap.convert("RGB").save(jpeg, format="JPEG", quality=jpeg_quality)
    jpeg.seek(0)

    buffer = io.BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=(page_width, page_height))
    if title:
        pdf.setTitle(title)
    pdf.drawImage(
        ImageReader(jpeg),
        0,
        page_height - bitmap.height,
        width=bitmap.width,
        height=bitmap.height,
    )
    pdf.showPage()
    pdf.save()
    return buffer.getvalue()


class DirectorySink:
    """Writes each finished certificate into ``directory``."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)
        self.written: list[Path] = []

    async def __call__(self, document: CertificateDocument) -> None:
        path = self.directory / document.filename
        await asyncio.to_thread(self._write, path, document.content)
        self.written.append(path)

    def _write(self, path: Path, content: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)


class BatchRenderer:
    def __init__(self, settings: CertificateSettings, surface: RenderSurface | None = None) -> None:
        self._settings = settings
        self._surface = surface or RenderSurface(settings.page_width, settings.page_height)

    async def render_one(
        self,
        template: TemplateDocument,
        participant: ParticipantRecord,
    ) -> CertificateDocument:
        document = prepare_document(template, self._settings.background)
        self._surface.load(document)
        for element in document.text_elements():
            if element.text:
                element.text = substitute_placeholders(
                    element.text, participant, self._settings.default_event_label
                )

        bitmap = await asyncio.to_thread(self._surface.rasterize, self._settings.multiplier)
        content = await asyncio.to_thread(
            build_pdf,
            bitmap,
            self._settings.page_padding,
            self._settings.jpeg_quality,
            f"Certificate - {participant.full_name}",
        )
        return CertificateDocument(
            participant_id=participant.id,
            participant_name=participant.full_name,
            filename=certificate_filename(participant.full_name),
            content=content,
        )

    async def generate(
        self,
        template: TemplateDocument | None,
        participants: Sequence[ParticipantRecord],
        sink: DocumentSink,
    ) -> list[CertificateDocument]:
        """Render and emit certificates in input order, one at a time."""
        if template is None:
            raise TemplateMissingError()

        log.info("certificate_batch_started", count=len(participants))
        documents: list[CertificateDocument] = []
        for participant in participants:
            document = await self.render_one(template, participant)
            await sink(document)
            documents.append(document)
            log.info(
                "certificate_rendered",
                participant_id=participant.id,
                filename=document.filename,
                size=len(document.content),
            )
        log.info("certificate_batch_finished", count=len(documents))
        return documents

    async def generate_for_id(
        self,
        template: TemplateDocument | None,
        participants: Sequence[ParticipantRecord],
        participant_id: str,
        sink: DocumentSink,
    ) -> CertificateDocument | None:
        """Single-certificate path; None when the id is not among ``participants``."""
        match = next((p for p in participants if p.id == participant_id), None)
        if match is None:
            return None
        documents = await self.generate(template, [match], sink)
        return documents[0]
