"""
Replays laid-out pages onto an fpdf2 document.
"""
from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from fpdf import FPDF

from mzansi_books.services.page_layout import (
    ImageOp,
    LayoutSettings,
    Line,
    Rect,
    RenderedPage,
    TextRun,
)
from mzansi_books.services.text_metrics import FONT_FAMILY, sanitize

logger = logging.getLogger(__name__)

PDF_CREATOR = "Mzansi Books"


@dataclass(frozen=True)
class PdfMetadata:
    title: str = ""
    subject: str = ""
    author: str = ""
    creator: str = PDF_CREATOR


class DocumentPDF(FPDF):
    """A4 document with manual page breaks; the layout engine decides them."""

    def __init__(self, settings: LayoutSettings, metadata: Optional[PdfMetadata] = None):
        super().__init__(orientation="P", unit="mm", format=(settings.page_width, settings.page_height))
        self.settings = settings
        self.set_auto_page_break(False)
        self.set_margins(settings.margin, settings.margin, settings.margin)
        metadata = metadata or PdfMetadata()
        if metadata.title:
            self.set_title(sanitize(metadata.title))
        if metadata.subject:
            self.set_subject(sanitize(metadata.subject))
        if metadata.author:
            self.set_author(sanitize(metadata.author))
        self.set_creator(sanitize(metadata.creator))

    def draw_page(self, page: RenderedPage) -> None:
        self.add_page()
        for op in page.ops:
            if isinstance(op, TextRun):
                self._draw_text(op)
            elif isinstance(op, Rect):
                self.set_fill_color(*op.fill)
                self.rect(op.x, op.y, op.width, op.height, "F")
            elif isinstance(op, Line):
                self.set_draw_color(*op.color)
                self.set_line_width(op.width)
                self.line(op.x1, op.y1, op.x2, op.y2)
            elif isinstance(op, ImageOp):
                self.image(io.BytesIO(op.image.data), op.x, op.y, op.width, op.height)
            else:
                raise TypeError(f"Unsupported draw operation: {op!r}")

    def _draw_text(self, op: TextRun) -> None:
        if not op.text:
            return
        self.set_font(FONT_FAMILY, op.style, op.size)
        self.set_text_color(*op.color)
        self.set_xy(op.x, op.y)
        self.cell(op.width, op.height, sanitize(op.text), border=0, align=op.align)


def write_pdf(
    pages: Iterable[RenderedPage],
    settings: Optional[LayoutSettings] = None,
    metadata: Optional[PdfMetadata] = None,
) -> bytes:
    """Render pages to PDF bytes."""
    pdf = DocumentPDF(settings or LayoutSettings(), metadata)
    count = 0
    for page in pages:
        pdf.draw_page(page)
        count += 1
    logger.debug("Wrote %d PDF page(s)", count)
    return bytes(pdf.output())
