from __future__ import annotations

import io
import logging
import re
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Union

from reportlab.lib.pagesizes import A4
from reportlab.lib.utils import ImageReader
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont
from reportlab.pdfgen.canvas import Canvas

from laudo.adapters.images import ResolvedImage, cm_to_pt
from laudo.config import Settings, get_settings
from laudo.normalizer import sanitize_legal_text
from laudo.report.assembler import AssembledReport, BandImage
from laudo.report.blocks import (
    ALIGN_CENTER,
    ALIGN_JUSTIFY,
    ALIGN_LEFT,
    ALIGN_RIGHT,
    KIND_LEGAL,
    KIND_PLAIN,
    KIND_QUESITO,
    AnnexBox,
    Block,
    ImageBlock,
    PageBreak,
    Paragraph,
    SectionMarker,
    Spacer,
    Table,
    TableCell,
)

logger = logging.getLogger(__name__)

PAGE_WIDTH, PAGE_HEIGHT = A4
MARGIN = 50.0
CONTENT_WIDTH = PAGE_WIDTH - 2 * MARGIN

FONT_BODY_NAME = 'Laudo-Regular'
FONT_BOLD_NAME = 'Laudo-Bold'

BAND_OFFSET = 20.0
MAX_BAND_HEIGHT = 90.0
BAND_FALLBACK_HEIGHT = 40.0
TEXT_HEADER_HEIGHT = 38.0
RESERVED_BOTTOM_TEXT_FOOTER = 100.0

TABLE_PADDING = 4.0
TABLE_FONT_SIZE = 10.0
TABLE_LINE_HEIGHT = 12.0
TABLE_HEADER_MIN_HEIGHT = 22.0
TABLE_ROW_MIN_HEIGHT = 18.0
TABLE_HEADER_FILL = (240, 240, 240)
TABLE_HEADER_BORDER = (180, 180, 180)
TABLE_ROW_BORDER = (210, 210, 210)

GALLERY_GAP = 14.0
GALLERY_MAX_COLUMN = 240.0
CAPTION_SIZE = 10.0
IMAGE_PLACEHOLDER = 'Imagem não disponível'

TOC_TITLE = 'Sumário'
TOC_NUMBER_SLOT = '0000'

_BLANK_LINES_RE = re.compile(r'\n\s*\n')
_LIST_BULLET_RE = re.compile(r'^[-•]\s')
_LEGAL_ITEM_RE = re.compile(r'^(§|[IVX]+(?:\s|[-–])|\d+(?:\s|[-–]))')

RGB = tuple[int, int, int]


@dataclass(frozen=True)
class ReportFonts:
    body: str
    bold: str


@dataclass(frozen=True)
class TextOp:
    x: float
    y: float
    text: str
    font: str
    size: float
    align: str = ALIGN_LEFT
    underline: bool = False
    color: RGB = (0, 0, 0)


@dataclass(frozen=True)
class LineOp:
    x1: float
    y1: float
    x2: float
    y2: float
    width: float = 0.5
    color: RGB = (0, 0, 0)
    dash: tuple[float, float] | None = None


@dataclass(frozen=True)
class RectOp:
    x: float
    y: float
    w: float
    h: float
    stroke: RGB | None = (0, 0, 0)
    fill: RGB | None = None
    width: float = 0.5


@dataclass(frozen=True)
class ImageOp:
    x: float
    y: float
    w: float
    h: float
    image: ResolvedImage


@dataclass(frozen=True)
class TocNumberOp:
    """Right-aligned page number of a table of contents entry, known only after layout."""

    key: str
    x: float
    y: float
    font: str
    size: float


@dataclass(frozen=True)
class PageNumberOp:
    x: float
    y: float
    font: str
    size: float


@dataclass(frozen=True)
class BookmarkOp:
    key: str
    title: str
    level: int


DrawOp = Union[TextOp, LineOp, RectOp, ImageOp, TocNumberOp, PageNumberOp, BookmarkOp]


@dataclass(frozen=True)
class BandPlacement:
    x: float
    y: float
    w: float
    h: float
    fill: bool


@dataclass
class LaidOutReport:
    pages: list[list[DrawOp]] = field(default_factory=list)
    heading_pages: dict[str, int] = field(default_factory=dict)


def _register_ttf_font(font_name: str, font_path: Path, *, quiet: bool = False) -> bool:
    if font_name in pdfmetrics.getRegisteredFontNames():
        return True

    try:
        pdfmetrics.registerFont(TTFont(font_name, str(font_path)))
        return True
    except Exception as exc:
        if quiet:
            logger.info('Skipped PDF font %s from %s: %s', font_name, font_path, exc)
        else:
            logger.warning('Failed to register PDF font %s from %s: %s', font_name, font_path, exc)
        return False


@lru_cache(maxsize=4)
def _resolve_fonts(body_name: str, bold_name: str, body_path: str | None, bold_path: str | None) -> ReportFonts:
    body = body_name or 'Helvetica'
    bold = bold_name or 'Helvetica-Bold'
    if body_path and _register_ttf_font(FONT_BODY_NAME, Path(body_path)):
        body = FONT_BODY_NAME
    if bold_path and _register_ttf_font(FONT_BOLD_NAME, Path(bold_path)):
        bold = FONT_BOLD_NAME
    return ReportFonts(body=body, bold=bold)


def resolve_report_fonts(settings: Settings | None = None) -> ReportFonts:
    settings = settings or get_settings()
    return _resolve_fonts(
        settings.pdf_font_name,
        settings.pdf_font_bold_name,
        str(settings.pdf_font_path) if settings.pdf_font_path else None,
        str(settings.pdf_font_bold_path) if settings.pdf_font_bold_path else None,
    )


def _safe_canvas_font(canvas: Canvas, font_name: str, size: float) -> None:
    for candidate in (str(font_name or '').strip(), 'Helvetica'):
        if not candidate:
            continue
        try:
            canvas.setFont(candidate, size)
            return
        except Exception:
            continue


def text_width(text: str, font: str, size: float) -> float:
    try:
        return float(pdfmetrics.stringWidth(text, font, size))
    except Exception:
        return float(pdfmetrics.stringWidth(text, 'Helvetica', size))


def _split_word(word: str, font: str, size: float, width: float) -> list[str]:
    chunks: list[str] = []
    current = ''
    for char in word:
        if current and text_width(current + char, font, size) > width:
            chunks.append(current)
            current = char
        else:
            current += char
    if current:
        chunks.append(current)
    return chunks


def wrap_text(text: str, font: str, size: float, width: float) -> list[str]:
    """Greedy word wrap by measured width; words wider than a line are split."""
    lines: list[str] = []
    current = ''
    for word in str(text or '').split():
        candidate = f'{current} {word}' if current else word
        if text_width(candidate, font, size) <= width:
            current = candidate
            continue
        if current:
            lines.append(current)
            current = ''
        if text_width(word, font, size) <= width:
            current = word
            continue
        pieces = _split_word(word, font, size, width)
        lines.extend(pieces[:-1])
        current = pieces[-1] if pieces else ''
    if current:
        lines.append(current)
    return lines


def _aligned_x(align: str | None, width: float, *, left: float = MARGIN, available: float = CONTENT_WIDTH) -> float:
    if align == ALIGN_LEFT:
        return left
    if align == ALIGN_RIGHT:
        return left + available - width
    return left + (available - width) / 2


def _should_justify(line: str, width: float, available: float, *, last: bool) -> bool:
    if last or _LIST_BULLET_RE.match(line):
        return False
    return len(line.split()) >= 6 and width >= available * 0.75


class PdfLayout:
    """Lays the assembled report out into pages of draw operations.

    Nothing touches a canvas here; the painter replays the pages afterwards, once
    every heading page is known and the table of contents can be filled in.
    """

    def __init__(self, report: AssembledReport, fonts: ReportFonts):
        self.report = report
        self.fonts = fonts
        self.result = LaidOutReport()
        self.cursor = MARGIN
        self.header_place = self._band_placement(report.header, bottom=False)
        self.footer_place = self._band_placement(report.footer, bottom=True)
        self.top = self._content_top()
        self.reserved_bottom = self._reserved_bottom()

    # page geometry

    @property
    def page_number(self) -> int:
        return len(self.result.pages)

    @property
    def limit(self) -> float:
        return PAGE_HEIGHT - self.reserved_bottom

    def emit(self, op: DrawOp) -> None:
        self.result.pages[-1].append(op)

    def new_page(self) -> None:
        self.result.pages.append([])
        self._draw_bands()
        self.cursor = self.top

    def ensure(self, height: float) -> None:
        if self.cursor + height > self.limit and self.cursor > self.top:
            self.new_page()

    def _band_placement(self, band: BandImage, *, bottom: bool) -> BandPlacement | None:
        image = band.image
        if image is None:
            return None
        if band.config.fill_page is not False:
            height = float(cm_to_pt(3.04))
            return BandPlacement(0.0, PAGE_HEIGHT - height if bottom else 0.0, PAGE_WIDTH, height, True)
        width = min(float(band.config.image_width or CONTENT_WIDTH), CONTENT_WIDTH)
        height = float(band.config.image_height or image.height_for(width, BAND_FALLBACK_HEIGHT))
        height = min(height, MAX_BAND_HEIGHT)
        x = _aligned_x(band.config.image_align or ALIGN_CENTER, width)
        y = PAGE_HEIGHT - BAND_OFFSET - height if bottom else BAND_OFFSET
        return BandPlacement(x, y, width, height, False)

    def _content_top(self) -> float:
        place = self.header_place
        if place is None:
            return MARGIN
        spacing = self.report.header.config.spacing_below
        below = float(spacing) if spacing is not None else (0.0 if place.fill else 30.0)
        return max(MARGIN, place.y + place.h + below + (12.0 if place.fill else 0.0))

    def _reserved_bottom(self) -> float:
        place = self.footer_place
        if place is None:
            return RESERVED_BOTTOM_TEXT_FOOTER
        return PAGE_HEIGHT - place.y + (0.0 if place.fill else 10.0)

    def _draw_bands(self) -> None:
        header = self.report.header
        if self.header_place is not None and header.image is not None:
            place = self.header_place
            self.emit(ImageOp(place.x, place.y, place.w, place.h, header.image))
        else:
            identity = self.report.identity
            first = identity.name
            second = f'{identity.title} - {identity.registration}'
            widest = max(text_width(first, self.fonts.bold, 12), text_width(second, self.fonts.body, 10))
            x = _aligned_x(header.config.image_align or ALIGN_CENTER, widest)
            self.emit(TextOp(x, 24, first, self.fonts.bold, 12))
            self.emit(TextOp(x, TEXT_HEADER_HEIGHT, second, self.fonts.body, 10))

        footer = self.report.footer
        if self.footer_place is not None and footer.image is not None:
            place = self.footer_place
            self.emit(ImageOp(place.x, place.y, place.w, place.h, footer.image))
            return
        cfg = footer.config
        text = '  |  '.join(part for part in (str(cfg.custom_text or '').strip(), str(cfg.contact_email or '').strip()) if part)
        if text:
            align = cfg.image_align or ALIGN_CENTER
            anchor = {ALIGN_LEFT: MARGIN, ALIGN_RIGHT: PAGE_WIDTH - MARGIN}.get(align, PAGE_WIDTH / 2)
            self.emit(TextOp(anchor, PAGE_HEIGHT - 20, text, self.fonts.body, 8, align))
        if cfg.show_page_numbers is not False and self.page_number > 1:
            self.emit(PageNumberOp(PAGE_WIDTH - MARGIN, PAGE_HEIGHT - 20, self.fonts.body, 9))

    # text

    def _font(self, bold: bool) -> str:
        return self.fonts.bold if bold else self.fonts.body

    def _emit_line(
        self,
        text: str,
        *,
        font: str,
        size: float,
        x: float,
        available: float,
        align: str,
        justify: bool,
        underline: bool = False,
    ) -> None:
        if justify:
            words = text.split()
            gap = (available - sum(text_width(word, font, size) for word in words)) / (len(words) - 1)
            cursor_x = x
            for word in words:
                self.emit(TextOp(cursor_x, self.cursor, word, font, size, underline=underline))
                cursor_x += text_width(word, font, size) + gap
            return
        if align == ALIGN_CENTER:
            self.emit(TextOp(x + available / 2, self.cursor, text, font, size, ALIGN_CENTER, underline))
        elif align == ALIGN_RIGHT:
            self.emit(TextOp(x + available, self.cursor, text, font, size, ALIGN_RIGHT, underline))
        else:
            self.emit(TextOp(x, self.cursor, text, font, size, underline=underline))

    def text_block(
        self,
        text: str,
        *,
        size: float = 12.0,
        bold: bool = False,
        align: str = ALIGN_LEFT,
        line_height: float | None = None,
        justified: bool = False,
        underline: bool = False,
        x: float = MARGIN,
        available: float = CONTENT_WIDTH,
    ) -> None:
        font = self._font(bold)
        step = line_height or size + 5
        for raw in str(text).split('\n'):
            if not raw.strip():
                self.cursor += step
                continue
            wrapped = wrap_text(raw, font, size, available)
            for idx, segment in enumerate(wrapped):
                if self.cursor > self.limit:
                    self.new_page()
                justify = justified and _should_justify(
                    segment,
                    text_width(segment, font, size),
                    available,
                    last=idx == len(wrapped) - 1,
                )
                self._emit_line(
                    segment,
                    font=font,
                    size=size,
                    x=x,
                    available=available,
                    align=align,
                    justify=justify,
                    underline=underline,
                )
                self.cursor += step

    def paragraph(self, para: Paragraph) -> None:
        self.cursor += para.space_before
        size = para.size
        bold = para.bold
        underline = any(run.underline for run in para.runs if run.text)
        if para.kind == KIND_QUESITO:
            self._quesito(para)
        elif para.kind == KIND_LEGAL and para.align == ALIGN_JUSTIFY:
            for part in _BLANK_LINES_RE.split(para.text):
                clean = sanitize_legal_text(part)
                if not clean:
                    continue
                if _LEGAL_ITEM_RE.match(clean):
                    self.text_block(clean, size=size, bold=bold, line_height=(size + 5) * 1.5)
                else:
                    self.text_block(clean, size=size, bold=bold, align=ALIGN_LEFT, line_height=size * 1.5, justified=True)
                self.cursor += 6
        else:
            justified = para.align == ALIGN_JUSTIFY and para.kind != KIND_PLAIN
            spaced = justified or para.line_spacing > 1
            self.text_block(
                para.text,
                size=size,
                bold=bold,
                align=ALIGN_LEFT if para.align == ALIGN_JUSTIFY else para.align,
                line_height=size * 1.5 if spaced else size + 5,
                justified=justified,
                underline=underline,
            )
        self.cursor += para.space_after

    def _quesito(self, para: Paragraph) -> None:
        indent = para.tab_stop or 36.0
        if self.cursor > self.limit:
            self.new_page()
        self.emit(TextOp(MARGIN, self.cursor, para.prefix, self.fonts.body, para.size))
        self.text_block(
            ' '.join(run.text for run in para.runs),
            size=para.size,
            line_height=para.size * 1.5,
            justified=True,
            x=MARGIN + indent,
            available=CONTENT_WIDTH - indent,
        )

    def marker(self, marker: SectionMarker) -> None:
        size = 14.0 if marker.level == 1 else 13.0
        self.cursor += 10 if marker.level == 1 else 6
        self.ensure(size * 4)
        self.result.heading_pages.setdefault(marker.key, self.page_number)
        if marker.outline:
            self.emit(BookmarkOp(marker.key, marker.text, marker.level))
        self.text_block(marker.text, size=size, bold=True)
        self.cursor += 10 if marker.level == 1 else 6

    def annex_box(self, box: AnnexBox) -> None:
        size = box.size
        title_font = self.fonts.bold
        titles = wrap_text(box.title, title_font, size, CONTENT_WIDTH - 8) or ['']
        title_step = size + 2
        box_height = size + 3 * 2 + 2 + (len(titles) - 1) * title_step
        approx_body = len(box.lines) * (size + 6) + 10
        self.ensure(box_height + min(approx_body, size * 4))
        box_top = self.cursor - (size - 2) - 3
        self.emit(RectOp(MARGIN, box_top, CONTENT_WIDTH, box_height, stroke=(0, 0, 0), width=0.3))
        title_y = box_top + 3 + size - 1
        for title in titles:
            self.emit(TextOp(MARGIN + 4, title_y, title, title_font, size, underline=True))
            title_y += title_step
        self.cursor = box_top + box_height + 8 + size * 0.75

        for raw in box.lines:
            for segment in wrap_text(raw, self.fonts.body, size, CONTENT_WIDTH) or ['']:
                if self.cursor > self.limit:
                    self.new_page()
                self.emit(TextOp(MARGIN, self.cursor, segment, self.fonts.body, size))
                self.cursor += size + 4
            self.cursor += 2
        self.cursor += 8

    # tables and images

    def _cell_lines(self, cell: TableCell, width: float, header: bool) -> list[tuple[str, str, float, str]]:
        lines: list[tuple[str, str, float, str]] = []
        for item in cell.content:
            if not isinstance(item, Paragraph):
                continue
            font = self._font(header or item.bold)
            size = TABLE_FONT_SIZE - (1 if item.size < 12 else 0)
            align = ALIGN_LEFT if item.align == ALIGN_JUSTIFY else item.align
            for raw in item.text.split('\n'):
                for segment in wrap_text(raw, font, size, width - 2 * TABLE_PADDING) or ['']:
                    lines.append((segment, font, size, align))
        return lines

    def _row_lines(self, row: list[TableCell], widths: list[float], header: bool) -> list[list[tuple[str, str, float, str]]]:
        return [self._cell_lines(cell, width, header) for cell, width in zip(row, widths)]

    @staticmethod
    def _row_height(laid: list[list[tuple[str, str, float, str]]], header: bool) -> float:
        minimum = TABLE_HEADER_MIN_HEIGHT if header else TABLE_ROW_MIN_HEIGHT
        return max([minimum] + [len(lines) * TABLE_LINE_HEIGHT + 2 * TABLE_PADDING for lines in laid])

    def _draw_row(
        self,
        laid: list[list[tuple[str, str, float, str]]],
        widths: list[float],
        top: float,
        height: float,
        header: bool,
    ) -> None:
        x = MARGIN
        for width, lines in zip(widths, laid):
            self.emit(
                RectOp(
                    x,
                    top,
                    width,
                    height,
                    stroke=TABLE_HEADER_BORDER if header else TABLE_ROW_BORDER,
                    fill=TABLE_HEADER_FILL if header else None,
                )
            )
            baseline = top + TABLE_PADDING + TABLE_FONT_SIZE - 1
            for text, font, size, align in lines:
                inner = width - 2 * TABLE_PADDING
                if align == ALIGN_CENTER:
                    self.emit(TextOp(x + width / 2, baseline, text, font, size, ALIGN_CENTER))
                elif align == ALIGN_RIGHT:
                    self.emit(TextOp(x + TABLE_PADDING + inner, baseline, text, font, size, ALIGN_RIGHT))
                else:
                    self.emit(TextOp(x + TABLE_PADDING, baseline, text, font, size))
                baseline += TABLE_LINE_HEIGHT
            x += width

    def _table_page(self, repeat: list, widths: list[float]) -> float:
        self.new_page()
        top = self.cursor - TABLE_FONT_SIZE
        for laid in repeat:
            top = self._place_row(laid, widths, top, header=True, repeat=[])
        return top

    def _place_row(self, laid: list, widths: list[float], top: float, *, header: bool, repeat: list) -> float:
        """Draw one row at ``top`` and return where the next row starts.

        A row that would cross the page bottom moves to the next page, under the
        repeated ``repeat`` header rows. A row taller than a whole page is split
        line by line across as many pages as it needs.
        """
        fresh = False
        while True:
            height = self._row_height(laid, header)
            if top + height <= self.limit:
                self._draw_row(laid, widths, top, height, header)
                return top + height
            fresh_top = self.top - TABLE_FONT_SIZE + sum(self._row_height(item, True) for item in repeat)
            room = int((self.limit - top - 2 * TABLE_PADDING) // TABLE_LINE_HEIGHT)
            if not fresh and (fresh_top + height <= self.limit or room < 1):
                top = self._table_page(repeat, widths)
                fresh = True
                continue
            room = max(room, 1)
            head = [lines[:room] for lines in laid]
            laid = [lines[room:] for lines in laid]
            height = self._row_height(head, header)
            self._draw_row(head, widths, top, height, header)
            top = self._table_page(repeat, widths)
            fresh = True

    def table(self, table: Table) -> None:
        if table.gallery:
            self.gallery(table)
            return
        widths = [CONTENT_WIDTH * share / 100.0 for share in table.widths()]
        header_laid = [self._row_lines(row, widths, True) for row in table.rows[: table.header_rows]]
        header_height = sum(self._row_height(laid, True) for laid in header_laid)
        top = self.cursor - TABLE_FONT_SIZE
        if top + header_height + TABLE_ROW_MIN_HEIGHT > self.limit and self.cursor > self.top:
            self.new_page()
            top = self.cursor - TABLE_FONT_SIZE

        for laid in header_laid:
            top = self._place_row(laid, widths, top, header=True, repeat=[])
        for row in table.rows[table.header_rows:]:
            top = self._place_row(self._row_lines(row, widths, False), widths, top, header=False, repeat=header_laid)
        self.cursor = top + TABLE_FONT_SIZE + 12

    def _picture(self, block: ImageBlock, x: float, top: float, width: float) -> float:
        height = block.height_pt * width / block.width_pt if block.width_pt else block.height_pt
        if block.image is not None:
            self.emit(ImageOp(x, top, width, height, block.image))
        else:
            self.emit(RectOp(x, top, width, height, stroke=TABLE_ROW_BORDER))
            self.emit(TextOp(x + width / 2, top + height / 2, IMAGE_PLACEHOLDER, self.fonts.body, CAPTION_SIZE, ALIGN_CENTER))
        return height

    def gallery(self, table: Table) -> None:
        column = min((CONTENT_WIDTH - GALLERY_GAP) / 2, GALLERY_MAX_COLUMN)
        for row in table.rows:
            heights: list[float] = []
            for cell in row:
                height = 0.0
                for item in cell.content:
                    if isinstance(item, ImageBlock):
                        width = min(item.width_pt, column)
                        height += item.height_pt * width / item.width_pt if item.width_pt else item.height_pt
                    elif isinstance(item, Paragraph):
                        lines = wrap_text(item.text, self.fonts.body, CAPTION_SIZE, column)
                        height += 4 + len(lines) * TABLE_LINE_HEIGHT
                heights.append(height)
            row_height = max(heights, default=0.0)
            top = self.cursor - TABLE_FONT_SIZE
            if top + row_height > self.limit and self.cursor > self.top:
                self.new_page()
                top = self.cursor - TABLE_FONT_SIZE

            for idx, cell in enumerate(row):
                x = MARGIN + idx * (column + GALLERY_GAP)
                y = top
                for item in cell.content:
                    if isinstance(item, ImageBlock):
                        width = min(item.width_pt, column)
                        y += self._picture(item, x + (column - width) / 2, y, width)
                    elif isinstance(item, Paragraph):
                        y += 4
                        for segment in wrap_text(item.text, self.fonts.body, CAPTION_SIZE, column):
                            y += TABLE_LINE_HEIGHT
                            self.emit(TextOp(x + column / 2, y - 2, segment, self.fonts.body, CAPTION_SIZE, ALIGN_CENTER))
            self.cursor = top + row_height + 10 + TABLE_FONT_SIZE

    def image(self, block: ImageBlock) -> None:
        if block.image is None:
            return
        width = min(block.width_pt, CONTENT_WIDTH)
        height = block.height_pt * width / block.width_pt if block.width_pt else block.height_pt
        self.cursor += block.space_before
        top = self.cursor - TABLE_FONT_SIZE
        if top + height > self.limit and self.cursor > self.top:
            self.new_page()
            top = self.cursor - TABLE_FONT_SIZE
        self._picture(block, _aligned_x(block.align, width), top, width)
        self.cursor = top + height + 10 + TABLE_FONT_SIZE + block.space_after

    # document

    def block(self, block: Block) -> None:
        if isinstance(block, SectionMarker):
            self.marker(block)
        elif isinstance(block, Paragraph):
            self.paragraph(block)
        elif isinstance(block, Table):
            self.table(block)
        elif isinstance(block, ImageBlock):
            self.image(block)
        elif isinstance(block, AnnexBox):
            self.annex_box(block)
        elif isinstance(block, Spacer):
            self.cursor += block.height
        elif isinstance(block, PageBreak):
            self.new_page()

    def _cover_prelude(self) -> None:
        header = self.report.header
        if header.image is not None or str(header.config.custom_text or '').strip():
            return
        identity = self.report.identity
        self.text_block(identity.name, size=16, bold=True, align=ALIGN_CENTER)
        self.text_block(identity.title, align=ALIGN_CENTER)
        self.text_block(identity.registration, align=ALIGN_CENTER)
        self.cursor += 20

    def _toc(self) -> None:
        self.new_page()
        self.cursor += 20
        self.text_block(TOC_TITLE, size=16, bold=True, align=ALIGN_CENTER)
        self.cursor += 30
        size = 12.0
        right = PAGE_WIDTH - MARGIN
        slot = text_width(TOC_NUMBER_SLOT, self.fonts.body, size)
        for entry in self.report.toc_entries:
            if self.cursor > PAGE_HEIGHT - 100:
                self.new_page()
            x = MARGIN + (15 if entry.level > 1 else 0)
            title = entry.title
            while title and x + text_width(title, self.fonts.body, size) > right - slot - 12:
                title = title[:-1]
            self.emit(TextOp(x, self.cursor, title, self.fonts.body, size))
            leader_start = x + text_width(title, self.fonts.body, size) + 6
            leader_end = right - slot - 6
            if leader_end > leader_start:
                leader_y = self.cursor - size * 0.35
                self.emit(LineOp(leader_start, leader_y, leader_end, leader_y, width=0.5, dash=(1, 2)))
            self.emit(TocNumberOp(entry.key, right, self.cursor, self.fonts.body, size))
            self.cursor += size * 1.5

    def run(self) -> LaidOutReport:
        self.new_page()
        self._cover_prelude()
        for block in self.report.cover:
            self.block(block)
        if self.report.include_toc:
            self._toc()
        self.new_page()
        self.cursor += 20
        for block in self.report.body:
            self.block(block)
        return self.result


def layout_report(report: AssembledReport, fonts: ReportFonts | None = None) -> LaidOutReport:
    return PdfLayout(report, fonts or resolve_report_fonts()).run()


def _rgb(color: RGB) -> tuple[float, float, float]:
    return color[0] / 255.0, color[1] / 255.0, color[2] / 255.0


def _paint_op(canvas: Canvas, op: DrawOp, *, page: int, total: int, laid: LaidOutReport, readers: dict[int, ImageReader]) -> None:
    if isinstance(op, TextOp):
        _safe_canvas_font(canvas, op.font, op.size)
        canvas.setFillColorRGB(*_rgb(op.color))
        y = PAGE_HEIGHT - op.y
        if op.align == ALIGN_CENTER:
            canvas.drawCentredString(op.x, y, op.text)
            start = op.x - text_width(op.text, op.font, op.size) / 2
        elif op.align == ALIGN_RIGHT:
            canvas.drawRightString(op.x, y, op.text)
            start = op.x - text_width(op.text, op.font, op.size)
        else:
            canvas.drawString(op.x, y, op.text)
            start = op.x
        if op.underline:
            canvas.setLineWidth(0.5)
            canvas.setStrokeColorRGB(*_rgb(op.color))
            canvas.line(start, y - 1.5, start + text_width(op.text, op.font, op.size), y - 1.5)
    elif isinstance(op, LineOp):
        canvas.saveState()
        canvas.setLineWidth(op.width)
        canvas.setStrokeColorRGB(*_rgb(op.color))
        if op.dash:
            canvas.setDash(*op.dash)
        canvas.line(op.x1, PAGE_HEIGHT - op.y1, op.x2, PAGE_HEIGHT - op.y2)
        canvas.restoreState()
    elif isinstance(op, RectOp):
        canvas.saveState()
        canvas.setLineWidth(op.width)
        if op.fill is not None:
            canvas.setFillColorRGB(*_rgb(op.fill))
        if op.stroke is not None:
            canvas.setStrokeColorRGB(*_rgb(op.stroke))
        canvas.rect(
            op.x,
            PAGE_HEIGHT - op.y - op.h,
            op.w,
            op.h,
            stroke=1 if op.stroke is not None else 0,
            fill=1 if op.fill is not None else 0,
        )
        canvas.restoreState()
    elif isinstance(op, ImageOp):
        reader = readers.get(id(op.image))
        if reader is None:
            reader = ImageReader(io.BytesIO(op.image.data))
            readers[id(op.image)] = reader
        try:
            canvas.drawImage(reader, op.x, PAGE_HEIGHT - op.y - op.h, width=op.w, height=op.h, mask='auto')
        except Exception as exc:
            logger.warning('Failed to draw PDF image on page %d: %s', page, exc)
    elif isinstance(op, TocNumberOp):
        target = laid.heading_pages.get(op.key)
        if target is not None:
            _safe_canvas_font(canvas, op.font, op.size)
            canvas.setFillColorRGB(0, 0, 0)
            canvas.drawRightString(op.x, PAGE_HEIGHT - op.y, str(target))
    elif isinstance(op, PageNumberOp):
        _safe_canvas_font(canvas, op.font, op.size)
        canvas.setFillColorRGB(0, 0, 0)
        canvas.drawRightString(op.x, PAGE_HEIGHT - op.y, f'Página {page} de {total}')
    elif isinstance(op, BookmarkOp):
        canvas.bookmarkPage(op.key)
        canvas.addOutlineEntry(op.title, op.key, level=max(0, op.level - 1))


def paint_report(laid: LaidOutReport, *, title: str = 'Laudo Pericial', author: str = '', creator: str = '') -> bytes:
    buffer = io.BytesIO()
    canvas = Canvas(buffer, pagesize=A4)
    canvas.setTitle(title)
    if creator:
        canvas.setCreator(creator)
    if author:
        canvas.setAuthor(author)
    readers: dict[int, ImageReader] = {}
    total = len(laid.pages)
    for page, ops in enumerate(laid.pages, start=1):
        for op in ops:
            _paint_op(canvas, op, page=page, total=total, laid=laid, readers=readers)
        canvas.showPage()
    canvas.save()
    return buffer.getvalue()


def render_pdf(report: AssembledReport, *, fonts: ReportFonts | None = None) -> bytes:
    laid = layout_report(report, fonts)
    logger.info('PDF laid out on %d pages', len(laid.pages))
    return paint_report(laid, author=report.identity.name, creator=get_settings().app_name)
