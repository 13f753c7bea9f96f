"""
Page layout engine for quotations and invoices.

The engine works in two passes. The first pass walks the layout states in
order (header, table header, rows, totals, notes and terms, signature) and
streams atomic units onto fixed-size pages, opening a new page whenever the
next unit would cross into the footer band. The second pass stamps
"Page N of M" on every emitted page once M is known.

Nothing here touches a PDF. Each page is a tuple of draw operations that
``pdf_writer`` replays, which keeps page-break decisions testable on their
own.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

from mzansi_books.enums import DocumentType, LayoutState
from mzansi_books.errors import LayoutOverflowError, RenderFailure
from mzansi_books.models import LoadedImage, PartyView
from mzansi_books.services.text_metrics import TextMeasurer

logger = logging.getLogger(__name__)

Color = Tuple[int, int, int]

COLOR_PRIMARY: Color = (15, 23, 42)
COLOR_WHITE: Color = (255, 255, 255)
COLOR_LIGHT_GRAY: Color = (241, 245, 249)
COLOR_BORDER: Color = (226, 232, 240)
COLOR_TEXT: Color = (15, 23, 42)
COLOR_TEXT_MUTED: Color = (100, 116, 139)

TABLE_HEADERS = ("#", "Description", "Qty", "Rate", "Discount", "Amount")
TABLE_RATIOS = (0.06, 0.40, 0.12, 0.14, 0.13, 0.15)
TABLE_ALIGN = ("C", "L", "C", "R", "R", "R")
HEADER_ENTRY_MAX_LINES = 3


@dataclass(frozen=True)
class LayoutSettings:
    """Page geometry in millimetres. Defaults describe A4 portrait."""
    page_width: float = 210.0
    page_height: float = 297.0
    margin: float = 15.0
    footer_reserved_height: float = 20.0
    font_size: float = 9.0
    line_height: float = 4.5
    cell_padding: float = 1.5
    table_header_height: float = 8.0
    block_gap: float = 4.0
    signature_block_height: float = 45.0
    logo_box: Tuple[float, float] = (50.0, 30.0)
    stamp_box: Tuple[float, float] = (30.0, 30.0)
    signature_box: Tuple[float, float] = (45.0, 18.0)

    @property
    def content_width(self) -> float:
        return self.page_width - 2 * self.margin

    @property
    def body_limit(self) -> float:
        return self.page_height - self.footer_reserved_height


# -- draw operations -------------------------------------------------------

@dataclass(frozen=True)
class TextRun:
    x: float
    y: float
    width: float
    height: float
    text: str
    style: str = ""
    size: float = 9.0
    align: str = "L"
    color: Color = COLOR_TEXT


@dataclass(frozen=True)
class Line:
    x1: float
    y1: float
    x2: float
    y2: float
    color: Color = COLOR_BORDER
    width: float = 0.2


@dataclass(frozen=True)
class Rect:
    x: float
    y: float
    width: float
    height: float
    fill: Color = COLOR_LIGHT_GRAY


@dataclass(frozen=True)
class ImageOp:
    x: float
    y: float
    width: float
    height: float
    image: LoadedImage


DrawOp = Union[TextRun, Line, Rect, ImageOp]


@dataclass(frozen=True)
class PlacedUnit:
    name: str
    top: float
    height: float

    @property
    def bottom(self) -> float:
        return self.top + self.height


@dataclass(frozen=True)
class RenderedPage:
    number: int
    header_ops: Tuple[DrawOp, ...]
    body_ops: Tuple[DrawOp, ...]
    footer_ops: Tuple[DrawOp, ...] = ()
    units: Tuple[PlacedUnit, ...] = ()
    total_pages: int = 0

    @property
    def ops(self) -> Tuple[DrawOp, ...]:
        return self.header_ops + self.body_ops + self.footer_ops

    def texts(self) -> List[str]:
        return [op.text for op in self.ops if isinstance(op, TextRun)]


@dataclass(frozen=True)
class Cursor:
    """Drawing position: zero-based page index and distance from the page top."""
    page: int
    y: float

    def advance(self, height: float) -> "Cursor":
        return replace(self, y=self.y + height)


# -- layout input ----------------------------------------------------------

@dataclass(frozen=True)
class HeaderContent:
    document_type: DocumentType
    number: str
    company: PartyView
    client: PartyView
    issue_date: str = ""
    expiry_date: str = ""
    reference: str = ""
    company_lines: Tuple[str, ...] = ()
    banking_lines: Tuple[str, ...] = ()
    logo: Optional[LoadedImage] = None


@dataclass(frozen=True)
class TableRow:
    index: str
    description: str
    quantity: str
    rate: str
    discount: str
    amount: str

    def cells(self) -> Tuple[str, ...]:
        return (self.index, self.description, self.quantity, self.rate, self.discount, self.amount)


@dataclass(frozen=True)
class TotalsLine:
    label: str
    value: str
    emphasis: bool = False


@dataclass(frozen=True)
class LayoutInput:
    header: HeaderContent
    rows: Tuple[TableRow, ...] = ()
    totals: Tuple[TotalsLine, ...] = ()
    notes: str = ""
    terms: str = ""
    stamp: Optional[LoadedImage] = None
    signature: Optional[LoadedImage] = None
    signatory: str = ""
    document_id: str = ""


def _distribute_width(total: float, ratios: Sequence[float], min_width: float = 8.0) -> List[float]:
    if not ratios:
        return []
    ratio_sum = sum(ratios)
    if ratio_sum <= 0:
        ratio_sum = len(ratios)
        ratios = [1.0] * len(ratios)

    widths = [max(min_width, (ratio / ratio_sum) * total) for ratio in ratios]
    diff = total - sum(widths)
    if abs(diff) > 1e-3:
        widths[-1] = max(min_width, widths[-1] + diff)
    return widths


# -- engine ----------------------------------------------------------------

@dataclass(frozen=True)
class _Block:
    """An atomic unit: never split across pages."""
    name: str
    lines: Tuple
    line_height: float
    fixed_height: float
    draw: Callable[[Tuple, float], List[DrawOp]]
    wrap_width: float = 0.0
    style: str = ""
    size: float = 9.0

    @property
    def height(self) -> float:
        return self.fixed_height + max(len(self.lines), 1) * self.line_height


@dataclass
class _PageDraft:
    ops: List[DrawOp] = field(default_factory=list)
    units: List[PlacedUnit] = field(default_factory=list)


class PageLayoutEngine:
    def __init__(self, measurer: Optional[TextMeasurer] = None, settings: Optional[LayoutSettings] = None):
        self.measurer = measurer or TextMeasurer()
        self.settings = settings or LayoutSettings()

    def layout(self, content: LayoutInput) -> List[RenderedPage]:
        """Lay ``content`` out and return the finished, numbered pages."""
        return _LayoutRun(self.measurer, self.settings, content).run()


class _LayoutRun:
    """State for one layout call. Never shared between documents."""

    def __init__(self, measurer: TextMeasurer, settings: LayoutSettings, content: LayoutInput):
        self.measurer = measurer
        self.settings = settings
        self.content = content
        self.header_ops: Tuple[DrawOp, ...] = ()
        self.table_header_ops: Tuple[DrawOp, ...] = ()
        self.body_top = settings.margin
        self.pages: List[_PageDraft] = []
        self.widths = _distribute_width(settings.content_width, TABLE_RATIOS)
        self._steps: Dict[LayoutState, Callable[[Cursor], Cursor]] = {
            LayoutState.HEADER: self._draw_header,
            LayoutState.TABLE_HEADER: self._draw_table_header,
            LayoutState.ROWS: self._draw_rows,
            LayoutState.TOTALS: self._draw_totals,
            LayoutState.NOTES_TERMS: self._draw_notes_terms,
            LayoutState.SIGNATURE: self._draw_signature,
        }

    def run(self) -> List[RenderedPage]:
        cursor = Cursor(page=0, y=self.settings.margin)
        for state in LayoutState:
            logger.debug("Layout %s at page %d, y=%.1fmm", state.value, cursor.page + 1, cursor.y)
            cursor = self._steps[state](cursor)
        return self._number_pages(self._freeze())

    # -- paging -----------------------------------------------------------

    @property
    def capacity(self) -> float:
        return self.settings.body_limit - self.body_top

    def _open_page(self) -> Cursor:
        self.pages.append(_PageDraft())
        return Cursor(page=len(self.pages) - 1, y=self.body_top)

    def _ensure_fits(self, block: _Block) -> None:
        if block.height > self.capacity:
            raise LayoutOverflowError(block.name, block.height, self.capacity)

    def _truncate(self, block: _Block) -> _Block:
        visible = int((self.capacity - block.fixed_height) // block.line_height)
        lines = block.lines[: max(visible, 1)]
        if block.wrap_width and lines:
            last = self.measurer.ellipsize(lines[-1], block.wrap_width, block.style, block.size)
            lines = lines[:-1] + (last,)
        truncated = replace(block, lines=lines)
        if truncated.height > self.capacity:
            raise RenderFailure(self.content.document_id, f"{block.name} cannot be placed on any page")
        return truncated

    def _place(self, cursor: Cursor, block: _Block, gap: float = 0.0) -> Cursor:
        try:
            self._ensure_fits(block)
        except LayoutOverflowError as exc:
            logger.warning("Truncating %s: %s", block.name, exc)
            block = self._truncate(block)

        top = cursor.y + gap
        if top + block.height > self.settings.body_limit:
            cursor = self._open_page()
            top = cursor.y
            logger.debug("Page break before %s, continuing on page %d", block.name, cursor.page + 1)

        page = self.pages[cursor.page]
        page.ops.extend(block.draw(block.lines, top))
        page.units.append(PlacedUnit(block.name, top, block.height))
        return Cursor(cursor.page, top + block.height)

    def _freeze(self) -> List[RenderedPage]:
        repeated = self.header_ops + self.table_header_ops
        return [
            RenderedPage(
                number=index + 1,
                header_ops=repeated,
                body_ops=tuple(draft.ops),
                units=tuple(draft.units),
            )
            for index, draft in enumerate(self.pages)
        ]

    def _number_pages(self, pages: List[RenderedPage]) -> List[RenderedPage]:
        total = len(pages)
        return [replace(page, footer_ops=self._footer_ops(page.number, total), total_pages=total) for page in pages]

    def _footer_ops(self, number: int, total: int) -> Tuple[DrawOp, ...]:
        s = self.settings
        rule_y = s.body_limit + 3
        header = self.content.header
        label = f"{header.document_type.label} {header.number}".strip()
        return (
            Line(s.margin, rule_y, s.page_width - s.margin, rule_y),
            TextRun(s.margin, rule_y + 2, s.content_width / 2, 6, label, size=8, color=COLOR_TEXT_MUTED),
            TextRun(
                s.margin,
                rule_y + 2,
                s.content_width,
                6,
                f"Page {number} of {total}",
                size=8,
                align="C",
                color=COLOR_TEXT_MUTED,
            ),
        )

    # -- text helpers -----------------------------------------------------

    def _stack(
        self,
        ops: List[DrawOp],
        x: float,
        y: float,
        width: float,
        entries: Sequence[str],
        style: str = "",
        size: float = 9.0,
        line_height: Optional[float] = None,
        align: str = "L",
        color: Color = COLOR_TEXT,
        max_lines: int = HEADER_ENTRY_MAX_LINES,
    ) -> float:
        """Append wrapped ``entries`` as a column of text and return the new y.

        An entry that wraps past ``max_lines`` is cut and ends in "...".
        """
        line_height = line_height or self.settings.line_height
        text_width = width - 2 * self.measurer.cell_margin
        for entry in entries:
            if not entry:
                continue
            lines = self.measurer.wrap(entry, text_width, style, size)
            if len(lines) > max_lines:
                logger.warning("Clipping header entry to %d lines: %.40s", max_lines, entry)
                lines = lines[: max_lines - 1] + [self.measurer.ellipsize(lines[max_lines - 1], text_width, style, size)]
            for line in lines:
                ops.append(TextRun(x, y, width, line_height, line, style, size, align, color))
                y += line_height
        return y

    # -- states -----------------------------------------------------------

    def _draw_header(self, cursor: Cursor) -> Cursor:
        s = self.settings
        header = self.content.header
        ops: List[DrawOp] = []
        y = cursor.y
        width = s.content_width

        if header.logo is not None:
            logo_w, logo_h = header.logo.fit(*s.logo_box)
            ops.append(ImageOp(s.margin + (width - logo_w) / 2, y, logo_w, logo_h, header.logo))
            y += logo_h + 3

        left_w = width * 0.55
        right_x = s.margin + left_w
        right_w = width - left_w

        company = header.company
        left_y = self._stack(ops, s.margin, y, left_w, [company.display_name], "B", 13, 6)
        left_y = self._stack(
            ops,
            s.margin,
            left_y,
            left_w,
            [company.email, company.phone, company.address_lines, *header.company_lines],
            color=COLOR_TEXT_MUTED,
        )

        doc_type = header.document_type
        right_y = self._stack(ops, right_x, y, right_w, [doc_type.heading], "B", 20, 9, align="R")
        right_y = self._stack(ops, right_x, right_y, right_w, [header.number], "B", 10, align="R")
        right_y = self._stack(
            ops,
            right_x,
            right_y,
            right_w,
            [
                f"{doc_type.date_label}: {header.issue_date}" if header.issue_date else "",
                f"{doc_type.expiry_label}: {header.expiry_date}" if header.expiry_date else "",
                f"Reference: {header.reference}" if header.reference else "",
            ],
            align="R",
        )
        y = max(left_y, right_y) + s.block_gap

        client = header.client
        left_y = self._stack(ops, s.margin, y, left_w, [doc_type.recipient_label], "B", 10)
        left_y = self._stack(ops, s.margin, left_y, left_w, [client.display_name], "B")
        left_y = self._stack(
            ops,
            s.margin,
            left_y,
            left_w,
            [
                f"Attn: {client.attention}" if client.attention else "",
                client.email,
                client.phone,
                client.address_lines,
            ],
        )
        right_y = y
        if header.banking_lines:
            right_y = self._stack(ops, right_x, y, right_w, ["Banking Details"], "B", 10, align="R")
            right_y = self._stack(ops, right_x, right_y, right_w, header.banking_lines, align="R")
        y = max(left_y, right_y) + 2

        ops.append(Line(s.margin, y, s.page_width - s.margin, y, COLOR_PRIMARY, 0.3))
        self.header_ops = tuple(ops)
        return cursor.advance(y + 3 - cursor.y)

    def _draw_table_header(self, cursor: Cursor) -> Cursor:
        s = self.settings
        height = s.table_header_height
        ops: List[DrawOp] = [Rect(s.margin, cursor.y, s.content_width, height, COLOR_PRIMARY)]
        x = s.margin
        for title, width, align in zip(TABLE_HEADERS, self.widths, TABLE_ALIGN):
            ops.append(TextRun(x, cursor.y, width, height, title, "B", s.font_size, align, COLOR_WHITE))
            x += width
        self.table_header_ops = tuple(ops)
        self.body_top = cursor.y + height

        smallest_row = s.line_height + 2 * s.cell_padding
        if smallest_row > self.capacity:
            raise RenderFailure(
                self.content.document_id,
                f"page leaves {self.capacity:.1f}mm below the header, a table row needs {smallest_row:.1f}mm",
            )
        return self._open_page()

    def _draw_rows(self, cursor: Cursor) -> Cursor:
        rows = self.content.rows
        if not rows:
            return self._place(cursor, self._empty_table_block())
        for position, row in enumerate(rows):
            cursor = self._place(cursor, self._row_block(position, row))
        return cursor

    def _row_block(self, position: int, row: TableRow) -> _Block:
        s = self.settings
        margin = self.measurer.cell_margin
        desc_width = self.widths[1] - 2 * margin
        cells = [
            self.measurer.truncate(text, width - 2 * margin, size=s.font_size)
            for text, width in zip(row.cells(), self.widths)
        ]
        lines = tuple(self.measurer.wrap(row.description, desc_width, size=s.font_size))
        shaded = position % 2 == 0

        def draw(visible: Tuple, top: float) -> List[DrawOp]:
            height = 2 * s.cell_padding + max(len(visible), 1) * s.line_height
            ops: List[DrawOp] = []
            if shaded:
                ops.append(Rect(s.margin, top, s.content_width, height, COLOR_LIGHT_GRAY))
            text_y = top + s.cell_padding
            x = s.margin
            for column, (text, width, align) in enumerate(zip(cells, self.widths, TABLE_ALIGN)):
                if column == 1:
                    for offset, line in enumerate(visible):
                        ops.append(TextRun(x, text_y + offset * s.line_height, width, s.line_height, line, size=s.font_size))
                else:
                    ops.append(TextRun(x, text_y, width, s.line_height, text, size=s.font_size, align=align))
                x += width
            ops.append(Line(s.margin, top + height, s.page_width - s.margin, top + height))
            return ops

        return _Block(
            name=f"row {row.index or position + 1}",
            lines=lines,
            line_height=s.line_height,
            fixed_height=2 * s.cell_padding,
            draw=draw,
            wrap_width=desc_width,
            size=s.font_size,
        )

    def _empty_table_block(self) -> _Block:
        s = self.settings

        def draw(visible: Tuple, top: float) -> List[DrawOp]:
            height = 2 * s.cell_padding + s.line_height
            return [
                TextRun(
                    s.margin,
                    top + s.cell_padding,
                    s.content_width,
                    s.line_height,
                    "No items",
                    size=s.font_size,
                    align="C",
                    color=COLOR_TEXT_MUTED,
                ),
                Line(s.margin, top + height, s.page_width - s.margin, top + height),
            ]

        return _Block("row empty", ("No items",), s.line_height, 2 * s.cell_padding, draw)

    def _draw_totals(self, cursor: Cursor) -> Cursor:
        s = self.settings
        totals = self.content.totals
        if not totals:
            return cursor
        line_height = s.line_height + 1.5
        block_w = min(85.0, s.content_width)
        label_w = block_w * 0.5
        value_w = block_w - label_w
        x = s.page_width - s.margin - block_w

        def draw(visible: Tuple, top: float) -> List[DrawOp]:
            ops: List[DrawOp] = []
            y = top + s.cell_padding
            for entry in visible:
                style, size = ("B", s.font_size + 1) if entry.emphasis else ("", s.font_size)
                if entry.emphasis:
                    ops.append(Line(x, y, x + block_w, y, COLOR_PRIMARY, 0.3))
                ops.append(TextRun(x, y, label_w, line_height, entry.label, style, size))
                ops.append(TextRun(x + label_w, y, value_w, line_height, entry.value, style, size, "R"))
                y += line_height
            return ops

        block = _Block("totals", tuple(totals), line_height, 2 * s.cell_padding, draw)
        return self._place(cursor, block, gap=s.block_gap)

    def _text_block(self, name: str, title: str, text: str) -> _Block:
        s = self.settings
        width = s.content_width
        wrap_width = width - 2 * self.measurer.cell_margin
        title_height = s.line_height + 1
        lines = tuple(self.measurer.wrap(text, wrap_width, size=s.font_size))

        def draw(visible: Tuple, top: float) -> List[DrawOp]:
            ops: List[DrawOp] = [TextRun(s.margin, top, width, title_height, title, "B", s.font_size + 1)]
            y = top + title_height
            for line in visible:
                ops.append(TextRun(s.margin, y, width, s.line_height, line, size=s.font_size, color=COLOR_TEXT_MUTED))
                y += s.line_height
            return ops

        return _Block(name, lines, s.line_height, title_height + s.cell_padding, draw, wrap_width, "", s.font_size)

    def _draw_notes_terms(self, cursor: Cursor) -> Cursor:
        if self.content.notes.strip():
            cursor = self._place(cursor, self._text_block("notes", "Notes", self.content.notes), self.settings.block_gap)
        if self.content.terms.strip():
            cursor = self._place(
                cursor,
                self._text_block("terms", "Terms & Conditions", self.content.terms),
                self.settings.block_gap,
            )
        return cursor

    def _draw_signature(self, cursor: Cursor) -> Cursor:
        s = self.settings
        stamp = self.content.stamp
        signature = self.content.signature
        if stamp is None and signature is None:
            logger.debug("No stamp or signature, skipping signature block")
            return cursor

        height = s.signature_block_height
        if height > self.capacity:
            overflow = LayoutOverflowError("signature block", height, self.capacity)
            logger.warning("Omitting signature block: %s", overflow)
            return cursor

        top = s.body_limit - height
        if cursor.y > top:
            cursor = self._open_page()
            logger.debug("Signature block moved to new page %d", cursor.page + 1)

        ops: List[DrawOp] = []
        if stamp is not None:
            stamp_w, stamp_h = stamp.fit(*s.stamp_box)
            ops.append(ImageOp(s.margin, top + 4, stamp_w, stamp_h, stamp))

        area_w = 60.0
        area_x = s.page_width - s.margin - area_w
        rule_y = top + 4 + s.signature_box[1] + 3
        if signature is not None:
            sig_w, sig_h = signature.fit(*s.signature_box)
            ops.append(ImageOp(area_x + (area_w - sig_w) / 2, top + 4 + s.signature_box[1] - sig_h, sig_w, sig_h, signature))
        ops.append(Line(area_x, rule_y, area_x + area_w, rule_y, COLOR_TEXT, 0.3))
        ops.append(TextRun(area_x, rule_y + 1, area_w, s.line_height, "Authorized Signature", "B", s.font_size, "C"))
        if self.content.signatory:
            ops.append(
                TextRun(
                    area_x,
                    rule_y + 1 + s.line_height,
                    area_w,
                    s.line_height,
                    self.measurer.truncate(self.content.signatory, area_w - 2 * self.measurer.cell_margin),
                    size=s.font_size,
                    align="C",
                    color=COLOR_TEXT_MUTED,
                )
            )

        page = self.pages[cursor.page]
        page.ops.extend(ops)
        page.units.append(PlacedUnit("signature", top, height))
        return Cursor(cursor.page, s.body_limit)
