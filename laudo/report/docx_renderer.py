from __future__ import annotations

import io
import logging

from docx import Document
from docx.enum.section import WD_SECTION
from docx.enum.table import WD_TABLE_ALIGNMENT
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.oxml import OxmlElement, parse_xml
from docx.oxml.ns import nsdecls, qn
from docx.shared import Cm, Emu, Pt, RGBColor, Twips

from laudo.adapters.images import ResolvedImage, cm_to_twip
from laudo.config import get_settings
from laudo.report.assembler import AssembledReport, BandImage
from laudo.report.blocks import (
    ALIGN_CENTER,
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

PAGE_WIDTH_CM = 21.0
PAGE_HEIGHT_CM = 29.7
PAGE_MARGIN_TWIPS = 1440
BAND_HEIGHT_CM = 3.04
HEADER_FILL_WIDTH_CM = 21.2
HEADER_FILL_OFFSET_CM = -0.2
FOOTER_FILL_WIDTH_CM = 20.98

HEADER_IMAGE_WIDTH_PT = 500.0
BAND_FALLBACK_HEIGHT_PT = 40.0

TABLE_BORDER_COLOR = 'BFBFBF'
TABLE_BORDER_SIZE = 6
TABLE_HEADER_FILL = 'F2F2F2'
CELL_MARGIN_VERTICAL = 120
CELL_MARGIN_HORIZONTAL = 160

TOC_INSTRUCTION = 'TOC \\o "1-7" \\h \\z \\u'
TOC_PLACEHOLDER = 'Clique com o botão direito e selecione "Atualizar campo" para gerar o sumário.'
IMAGE_PLACEHOLDER = 'Imagem não disponível'

# sectPr children that must follow w:pgNumType (CT_SectPr sequence)
SECT_PR_AFTER_PG_NUM = (
    'w:cols',
    'w:formProt',
    'w:vAlign',
    'w:noEndnote',
    'w:titlePg',
    'w:textDirection',
    'w:bidi',
    'w:rtlGutter',
    'w:docGrid',
    'w:printerSettings',
    'w:sectPrChange',
)
TBL_PR_AFTER_CELL_MAR = ('w:tblLook', 'w:tblCaption', 'w:tblDescription', 'w:tblPrChange')
TBL_PR_AFTER_BORDERS = ('w:shd', 'w:tblLayout', 'w:tblCellMar', *TBL_PR_AFTER_CELL_MAR)

_ALIGNMENT = {
    'left': WD_ALIGN_PARAGRAPH.LEFT,
    'center': WD_ALIGN_PARAGRAPH.CENTER,
    'right': WD_ALIGN_PARAGRAPH.RIGHT,
    'justify': WD_ALIGN_PARAGRAPH.JUSTIFY,
}

CONTENT_WIDTH_TWIPS = cm_to_twip(PAGE_WIDTH_CM) - 2 * PAGE_MARGIN_TWIPS


def _alignment(value: str | None):
    return _ALIGNMENT.get(str(value or 'left'), WD_ALIGN_PARAGRAPH.LEFT)


def _set_run_font(run, *, size: float, bold: bool = False, underline: bool = False, font_name: str | None = None) -> None:
    run.font.size = Pt(size)
    run.font.bold = bold
    if underline:
        run.font.underline = True
    if font_name:
        run.font.name = font_name
        r_pr = run._r.get_or_add_rPr()
        r_fonts = r_pr.find(qn('w:rFonts'))
        if r_fonts is None:
            r_fonts = OxmlElement('w:rFonts')
            r_pr.append(r_fonts)
        r_fonts.set(qn('w:eastAsia'), font_name)


def _add_field(paragraph, instruction: str, *, size: float, placeholder: str = '1') -> None:
    run = paragraph.add_run()
    _set_run_font(run, size=size)
    begin = OxmlElement('w:fldChar')
    begin.set(qn('w:fldCharType'), 'begin')
    instr = OxmlElement('w:instrText')
    instr.set(qn('xml:space'), 'preserve')
    instr.text = instruction
    separate = OxmlElement('w:fldChar')
    separate.set(qn('w:fldCharType'), 'separate')
    shown = OxmlElement('w:t')
    shown.text = placeholder
    end = OxmlElement('w:fldChar')
    end.set(qn('w:fldCharType'), 'end')
    for element in (begin, instr, separate, shown, end):
        run._r.append(element)


def _set_cell_shading(cell, color_hex: str) -> None:
    tc_pr = cell._tc.get_or_add_tcPr()
    shading = OxmlElement('w:shd')
    shading.set(qn('w:fill'), color_hex)
    shading.set(qn('w:val'), 'clear')
    tc_pr.append(shading)


def _set_table_borders(table, *, visible: bool = True) -> None:
    tbl_pr = table._tbl.tblPr
    borders = OxmlElement('w:tblBorders')
    for edge in ('top', 'left', 'bottom', 'right', 'insideH', 'insideV'):
        element = OxmlElement(f'w:{edge}')
        element.set(qn('w:val'), 'single' if visible else 'nil')
        element.set(qn('w:sz'), str(TABLE_BORDER_SIZE))
        element.set(qn('w:space'), '0')
        element.set(qn('w:color'), TABLE_BORDER_COLOR)
        borders.append(element)
    tbl_pr.insert_element_before(borders, *TBL_PR_AFTER_BORDERS)

    margins = OxmlElement('w:tblCellMar')
    for edge, value in (
        ('top', CELL_MARGIN_VERTICAL),
        ('bottom', CELL_MARGIN_VERTICAL),
        ('left', CELL_MARGIN_HORIZONTAL),
        ('right', CELL_MARGIN_HORIZONTAL),
    ):
        element = OxmlElement(f'w:{edge}')
        element.set(qn('w:w'), str(value))
        element.set(qn('w:type'), 'dxa')
        margins.append(element)
    tbl_pr.insert_element_before(margins, *TBL_PR_AFTER_CELL_MAR)

    width = tbl_pr.find(qn('w:tblW'))
    if width is None:
        width = OxmlElement('w:tblW')
        tbl_pr.insert_element_before(width, 'w:jc', 'w:tblInd', 'w:tblBorders', *TBL_PR_AFTER_BORDERS)
    width.set(qn('w:w'), '5000')
    width.set(qn('w:type'), 'pct')


def _mark_header_row(row) -> None:
    tr_pr = row._tr.get_or_add_trPr()
    element = OxmlElement('w:tblHeader')
    element.set(qn('w:val'), 'true')
    tr_pr.append(element)


def _float_picture(run, *, offset_x: Emu, offset_y: Emu) -> None:
    """Turn the inline picture of ``run`` into a page-anchored picture behind the text."""
    inline = run._r.find('.//' + qn('wp:inline'))
    if inline is None:
        return
    anchor = parse_xml(
        f'<wp:anchor {nsdecls("wp", "a", "pic", "r")} distT="0" distB="0" distL="0" distR="0" '
        'simplePos="0" relativeHeight="0" behindDoc="1" locked="0" layoutInCell="1" allowOverlap="1">'
        '<wp:simplePos x="0" y="0"/>'
        f'<wp:positionH relativeFrom="page"><wp:posOffset>{int(offset_x)}</wp:posOffset></wp:positionH>'
        f'<wp:positionV relativeFrom="page"><wp:posOffset>{int(offset_y)}</wp:posOffset></wp:positionV>'
        '</wp:anchor>'
    )
    anchor.append(inline.find(qn('wp:extent')))
    anchor.append(parse_xml(f'<wp:effectExtent {nsdecls("wp")} l="0" t="0" r="0" b="0"/>'))
    anchor.append(parse_xml(f'<wp:wrapNone {nsdecls("wp")}/>'))
    for tag in ('wp:docPr', 'wp:cNvGraphicFramePr', 'a:graphic'):
        element = inline.find(qn(tag))
        if element is not None:
            anchor.append(element)
    inline.getparent().replace(inline, anchor)


class DocxRenderer:
    def __init__(self, report: AssembledReport, *, font_name: str | None = None):
        self.report = report
        self.font_name = font_name or get_settings().docx_font_name
        self.doc = Document()

    # document setup

    def _configure_styles(self) -> None:
        normal = self.doc.styles['Normal']
        normal.font.name = self.font_name
        normal.font.size = Pt(12)
        normal.paragraph_format.line_spacing = 1.5
        normal.paragraph_format.alignment = WD_ALIGN_PARAGRAPH.JUSTIFY
        normal.paragraph_format.space_after = Pt(0)
        normal.element.get_or_add_rPr().get_or_add_rFonts().set(qn('w:eastAsia'), self.font_name)

        for name in ('Heading 1', 'Heading 2'):
            style = self.doc.styles[name]
            style.font.name = self.font_name
            style.font.size = Pt(14)
            style.font.bold = True
            style.font.italic = False
            style.font.color.rgb = RGBColor(0, 0, 0)
            style.paragraph_format.left_indent = Pt(0)
            style.paragraph_format.right_indent = Pt(0)
            style.paragraph_format.keep_with_next = True

        settings = self.doc.settings.element
        update = OxmlElement('w:updateFields')
        update.set(qn('w:val'), 'true')
        settings.append(update)

        props = self.doc.core_properties
        props.title = 'Laudo Pericial'
        props.author = self.report.identity.name
        props.last_modified_by = get_settings().app_name

    def _configure_section(self, section, *, restart_numbering: bool = False) -> None:
        header_fill = bool(self.report.header.config.fill_page)
        footer_fill = bool(self.report.footer.config.fill_page)
        section.page_width = Cm(PAGE_WIDTH_CM)
        section.page_height = Cm(PAGE_HEIGHT_CM)
        section.left_margin = Twips(PAGE_MARGIN_TWIPS)
        section.right_margin = Twips(PAGE_MARGIN_TWIPS)
        section.top_margin = Cm(BAND_HEIGHT_CM) if header_fill else Twips(PAGE_MARGIN_TWIPS)
        section.bottom_margin = Cm(BAND_HEIGHT_CM) if footer_fill else Twips(PAGE_MARGIN_TWIPS)
        section.header_distance = Twips(0)
        section.footer_distance = Twips(0)
        section.gutter = Twips(0)
        if restart_numbering:
            sect_pr = section._sectPr
            numbering = sect_pr.find(qn('w:pgNumType'))
            if numbering is None:
                numbering = OxmlElement('w:pgNumType')
                sect_pr.insert_element_before(numbering, *SECT_PR_AFTER_PG_NUM)
            numbering.set(qn('w:start'), '1')

    # header and footer

    def _band_size(self, band: BandImage, default_width: float) -> tuple[float, float]:
        width = float(band.config.image_width or default_width)
        image = band.image
        fallback = BAND_FALLBACK_HEIGHT_PT
        height = float(band.config.image_height or (image.height_for(width, fallback) if image else fallback))
        return width, height

    def _build_header(self, header) -> None:
        band = self.report.header
        cfg = band.config
        paragraph = header.paragraphs[0]
        paragraph.alignment = _alignment(cfg.image_align or ALIGN_CENTER)
        if band.image is not None:
            run = paragraph.add_run()
            if cfg.fill_page:
                run.add_picture(
                    io.BytesIO(band.image.data),
                    width=Cm(HEADER_FILL_WIDTH_CM),
                    height=Cm(BAND_HEIGHT_CM),
                )
                _float_picture(run, offset_x=Cm(HEADER_FILL_OFFSET_CM), offset_y=Cm(0))
            else:
                width, height = self._band_size(band, HEADER_IMAGE_WIDTH_PT)
                run.add_picture(io.BytesIO(band.image.data), width=Pt(width), height=Pt(height))
        if cfg.fill_page:
            return

        identity = self.report.identity
        custom = str(cfg.custom_text or '').strip()
        lines = (
            (identity.name.upper(), True, 10.0),
            (identity.title.upper(), False, 5.0),
            (identity.registration.upper(), False, 10.0 if custom else 20.0),
        )
        for text, bold, after in lines:
            para = header.add_paragraph()
            para.alignment = WD_ALIGN_PARAGRAPH.CENTER
            para.paragraph_format.space_after = Pt(after)
            _set_run_font(para.add_run(text), size=12, bold=bold)
        if custom:
            para = header.add_paragraph()
            para.alignment = WD_ALIGN_PARAGRAPH.CENTER
            para.paragraph_format.space_after = Pt(20)
            _set_run_font(para.add_run(custom), size=12)

    def _build_footer(self, footer, *, numbered: bool) -> None:
        band = self.report.footer
        cfg = band.config
        paragraph = footer.paragraphs[0]
        paragraph.alignment = _alignment(cfg.image_align or ALIGN_CENTER)
        if band.image is not None:
            run = paragraph.add_run()
            if cfg.fill_page is not False:
                run.add_picture(
                    io.BytesIO(band.image.data),
                    width=Cm(FOOTER_FILL_WIDTH_CM),
                    height=Cm(BAND_HEIGHT_CM),
                )
                _float_picture(run, offset_x=Cm(0), offset_y=Cm(PAGE_HEIGHT_CM - BAND_HEIGHT_CM))
            else:
                width, height = self._band_size(band, CONTENT_WIDTH_TWIPS / 20.0)
                run.add_picture(io.BytesIO(band.image.data), width=Pt(width), height=Pt(height))

        custom = str(cfg.custom_text or '').strip()
        if custom:
            para = footer.add_paragraph()
            para.alignment = WD_ALIGN_PARAGRAPH.CENTER
            para.paragraph_format.space_before = Pt(20)
            para.paragraph_format.space_after = Pt(10)
            _set_run_font(para.add_run(custom), size=8)
        email = str(cfg.contact_email or '').strip()
        if email:
            para = footer.add_paragraph()
            para.alignment = WD_ALIGN_PARAGRAPH.CENTER
            _set_run_font(para.add_run(email), size=12)
        if numbered and cfg.show_page_numbers is not False:
            para = footer.add_paragraph()
            para.alignment = WD_ALIGN_PARAGRAPH.CENTER
            _set_run_font(para.add_run('Página '), size=12)
            _add_field(para, 'PAGE', size=12)
            _set_run_font(para.add_run(' de '), size=12)
            _add_field(para, 'NUMPAGES', size=12)

    # blocks

    def _fill_paragraph(self, para, block: Paragraph) -> None:
        fmt = para.paragraph_format
        para.alignment = _alignment(block.align)
        fmt.space_before = Pt(block.space_before)
        fmt.space_after = Pt(block.space_after)
        fmt.line_spacing = block.line_spacing
        if block.kind == KIND_QUESITO:
            fmt.tab_stops.add_tab_stop(Pt(block.tab_stop or 36))
            text = ' '.join(run.text for run in block.runs)
            _set_run_font(para.add_run(f'{block.prefix}\t{text}'), size=block.size)
            return
        for item in block.runs:
            run = para.add_run()
            if item.break_before:
                run.add_break()
            run.add_text(item.text)
            _set_run_font(run, size=item.size or block.size, bold=item.bold, underline=item.underline)

    def paragraph(self, block: Paragraph, container=None) -> None:
        target = container if container is not None else self.doc
        style = None
        if block.outline_level == 1:
            style = 'Heading 1'
        elif block.outline_level == 2:
            style = 'Heading 2'
        para = target.add_paragraph(style=style) if style else target.add_paragraph()
        self._fill_paragraph(para, block)

    def marker(self, marker: SectionMarker) -> None:
        if marker.outline:
            para = self.doc.add_paragraph(style='Heading 1' if marker.level == 1 else 'Heading 2')
        else:
            para = self.doc.add_paragraph()
        para.alignment = WD_ALIGN_PARAGRAPH.LEFT
        para.paragraph_format.space_before = Pt(20 if marker.level == 1 else 15)
        para.paragraph_format.space_after = Pt(10)
        _set_run_font(para.add_run(marker.text), size=14, bold=True)

    def _picture(
        self, para, image: ResolvedImage | None, width: float, height: float, placeholder: str = IMAGE_PLACEHOLDER
    ) -> None:
        if image is None:
            _set_run_font(para.add_run(placeholder), size=10)
            return
        para.add_run().add_picture(io.BytesIO(image.data), width=Pt(width), height=Pt(height))

    def image(self, block: ImageBlock) -> None:
        if block.image is None:
            return
        para = self.doc.add_paragraph()
        para.alignment = _alignment(block.align)
        para.paragraph_format.space_before = Pt(block.space_before)
        para.paragraph_format.space_after = Pt(block.space_after)
        self._picture(para, block.image, block.width_pt, block.height_pt)

    def _fill_cell(self, target, cell: TableCell) -> None:
        first = True
        for item in cell.content:
            para = target.paragraphs[0] if first else target.add_paragraph()
            first = False
            if isinstance(item, Paragraph):
                self._fill_paragraph(para, item)
            else:
                para.alignment = _alignment(item.align)
                self._picture(para, item.image, item.width_pt, item.height_pt, item.placeholder)
        if cell.header:
            _set_cell_shading(target, TABLE_HEADER_FILL)

    def table(self, block: Table) -> None:
        columns = block.column_count
        if not columns:
            return
        table = self.doc.add_table(rows=len(block.rows), cols=columns)
        table.alignment = WD_TABLE_ALIGNMENT.CENTER
        table.autofit = False
        _set_table_borders(table, visible=block.borders)
        widths = [Twips(int(CONTENT_WIDTH_TWIPS * share / 100.0)) for share in block.widths()]
        for row_idx, row in enumerate(block.rows):
            doc_row = table.rows[row_idx]
            if row_idx < block.header_rows:
                _mark_header_row(doc_row)
            for col_idx in range(columns):
                target = doc_row.cells[col_idx]
                target.width = widths[col_idx]
                if col_idx < len(row):
                    self._fill_cell(target, row[col_idx])
        spacer = self.doc.add_paragraph()
        spacer.paragraph_format.space_after = Pt(6)
        spacer.paragraph_format.line_spacing = 1.0

    def annex_box(self, box: AnnexBox) -> None:
        table = self.doc.add_table(rows=1, cols=1)
        table.alignment = WD_TABLE_ALIGNMENT.CENTER
        _set_table_borders(table)
        title = table.rows[0].cells[0].paragraphs[0]
        title.alignment = WD_ALIGN_PARAGRAPH.LEFT
        _set_run_font(title.add_run(box.title), size=box.size, bold=True, underline=True)

        para = self.doc.add_paragraph()
        para.alignment = WD_ALIGN_PARAGRAPH.LEFT if box.mostly_short else WD_ALIGN_PARAGRAPH.JUSTIFY
        para.paragraph_format.space_before = Pt(4)
        para.paragraph_format.space_after = Pt(9)
        for idx, line in enumerate(box.lines):
            run = para.add_run()
            if idx:
                run.add_break()
            run.add_text(line)
            _set_run_font(run, size=box.size)

    def spacer(self, block: Spacer) -> None:
        para = self.doc.add_paragraph()
        para.paragraph_format.space_after = Pt(block.height)
        para.paragraph_format.line_spacing = 1.0

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
            self.spacer(block)
        elif isinstance(block, PageBreak):
            self.doc.add_page_break()

    # document

    def _toc(self) -> None:
        title = self.doc.add_paragraph()
        title.alignment = WD_ALIGN_PARAGRAPH.LEFT
        title.paragraph_format.space_before = Pt(10)
        title.paragraph_format.space_after = Pt(5)
        _set_run_font(title.add_run('SUMÁRIO'), size=14, bold=True)
        field = self.doc.add_paragraph()
        _add_field(field, TOC_INSTRUCTION, size=12, placeholder=TOC_PLACEHOLDER)
        self.spacer(Spacer(15))

    def render(self) -> bytes:
        self._configure_styles()
        cover = self.doc.sections[0]
        self._configure_section(cover)
        self._build_header(cover.header)
        self._build_footer(cover.footer, numbered=False)
        for block in self.report.cover:
            self.block(block)

        if self.report.include_toc:
            toc = self.doc.add_section(WD_SECTION.NEW_PAGE)
            self._configure_section(toc)
            self._toc()

        body = self.doc.add_section(WD_SECTION.NEW_PAGE)
        self._configure_section(body, restart_numbering=True)
        body.footer.is_linked_to_previous = False
        self._build_footer(body.footer, numbered=True)
        for block in self.report.body:
            self.block(block)

        buffer = io.BytesIO()
        self.doc.save(buffer)
        return buffer.getvalue()


def render_docx(report: AssembledReport, *, font_name: str | None = None) -> bytes:
    content = DocxRenderer(report, font_name=font_name).render()
    logger.info('DOCX rendered (%d bytes)', len(content))
    return content
