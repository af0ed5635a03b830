"""End-to-end tests: DOCX and PDF bytes, filenames, export errors and the CLI."""

import asyncio
import io
import json
import zipfile

import pytest

import main
from conftest import TODAY, make_data_url
from laudo.report import export
from laudo.report.assembler import assemble_report
from laudo.report.blocks import ALIGN_LEFT, AnnexBox
from laudo.report.docx_renderer import render_docx
from laudo.report.export import ReportExportError, build_report_filename, export_report
from laudo.report.pdf_renderer import (
    CONTENT_WIDTH,
    IMAGE_PLACEHOLDER,
    MARGIN,
    PAGE_HEIGHT,
    RESERVED_BOTTOM_TEXT_FOOTER,
    ImageOp,
    PdfLayout,
    RectOp,
    ReportFonts,
    TextOp,
    TocNumberOp,
    _should_justify,
    layout_report,
    render_pdf,
    text_width,
)
from laudo.types import CaseData


def _assemble(case, resolver):
    return asyncio.run(assemble_report(case, resolver=resolver, today=TODAY))


def _docx_parts(content: bytes) -> dict[str, bytes]:
    with zipfile.ZipFile(io.BytesIO(content)) as archive:
        return {name: archive.read(name) for name in archive.namelist()}


class TestFilename:
    def test_process_number_kept(self):
        case = CaseData.from_payload({'process_number': '1234567-89.2024.5.02.0001'})
        assert build_report_filename(case, 'pdf', today=TODAY) == 'laudo_1234567-89.2024.5.02.0001_2024-03-15.pdf'

    def test_unsafe_characters_replaced(self):
        case = {'identifications': {'processNumber': '0001/2024 ação'}, 'process_number': 'ignored'}
        assert build_report_filename(case, 'docx', today=TODAY) == 'laudo_0001_2024_a__o_2024-03-15.docx'

    def test_missing_number(self):
        assert build_report_filename({}, 'docx', today=TODAY) == 'laudo_processo_2024-03-15.docx'


class TestDocx:
    def test_structure(self, full_case, offline_resolver):
        parts = _docx_parts(render_docx(_assemble(full_case, offline_resolver)))
        document = parts['word/document.xml'].decode('utf-8')
        assert 'TOC \\o "1-7" \\h \\z \\u' in document
        assert 'w:updateFields' in parts['word/settings.xml'].decode('utf-8')
        assert document.count('<w:sectPr') == 3
        assert 'w:pgNumType w:start="1"' in document
        assert '21. CONCLUSÃO' in document
        assert '20.1 QUESITOS DA RECLAMANTE' in document
        assert 'Metalúrgica Exemplo LTDA' in document
        assert 'ADVOGADO' not in document

    def test_numbered_footer_has_page_fields(self, full_case, offline_resolver):
        parts = _docx_parts(render_docx(_assemble(full_case, offline_resolver)))
        footers = [value.decode('utf-8') for name, value in parts.items() if name.startswith('word/footer')]
        assert any('NUMPAGES' in footer and 'PAGE' in footer for footer in footers)

    def test_toc_can_be_disabled(self, offline_resolver):
        case = CaseData.from_payload({'report_config': {'flags': {'include_docx_toc': False}}})
        parts = _docx_parts(render_docx(_assemble(case, offline_resolver)))
        document = parts['word/document.xml'].decode('utf-8')
        assert 'TOC \\o' not in document
        assert document.count('<w:sectPr') == 2

    def test_images_embedded(self, offline_resolver):
        case = CaseData.from_payload(
            {
                'report_config': {
                    'header': {'imageDataUrl': make_data_url(200, 40)},
                    'signature': {'imageDataUrl': make_data_url(60, 30)},
                }
            }
        )
        parts = _docx_parts(render_docx(_assemble(case, offline_resolver)))
        assert any(name.startswith('word/media/') for name in parts)

    def test_fill_page_header_is_anchored(self, offline_resolver):
        case = CaseData.from_payload(
            {'report_config': {'header': {'imageDataUrl': make_data_url(200, 40), 'fillPage': True}}}
        )
        parts = _docx_parts(render_docx(_assemble(case, offline_resolver)))
        headers = [value.decode('utf-8') for name, value in parts.items() if name.startswith('word/header')]
        assert any('wp:anchor' in header for header in headers)

    def test_safe_mode_embeds_no_images(self, offline_resolver):
        case = CaseData.from_payload(
            {
                'report_config': {
                    'flags': {'safeMode': True},
                    'header': {'imageDataUrl': make_data_url(200, 40), 'peritoName': 'Ana Perita'},
                }
            }
        )
        parts = _docx_parts(render_docx(_assemble(case, offline_resolver)))
        assert not any(name.startswith('word/media/') for name in parts)
        headers = ''.join(value.decode('utf-8') for name, value in parts.items() if name.startswith('word/header'))
        assert 'ANA PERITA' in headers

    def test_core_properties_name_the_renderer(self, offline_resolver):
        parts = _docx_parts(render_docx(_assemble(CaseData.from_payload({}), offline_resolver)))
        assert '<cp:lastModifiedBy>Laudo Pericial Renderer</cp:lastModifiedBy>' in parts['docProps/core.xml'].decode('utf-8')


class TestPdf:
    def test_bytes(self, full_case, offline_resolver):
        content = render_pdf(_assemble(full_case, offline_resolver))
        assert content.startswith(b'%PDF')
        assert content.rstrip().endswith(b'%%EOF')

    def test_toc_numbers_point_at_heading_pages(self, full_case, offline_resolver):
        report = _assemble(full_case, offline_resolver)
        laid = layout_report(report)
        toc_ops = [(page, op) for page, ops in enumerate(laid.pages, start=1) for op in ops if isinstance(op, TocNumberOp)]
        assert [op.key for _, op in toc_ops] == [entry.key for entry in report.toc_entries]
        assert {page for page, _ in toc_ops} == {2}
        assert laid.heading_pages['identifications'] == 3
        for _, op in toc_ops:
            assert op.key in laid.heading_pages
        pages = [laid.heading_pages[entry.key] for entry in report.toc_entries]
        assert pages == sorted(pages)
        assert laid.heading_pages['conclusion'] <= len(laid.pages)

    def test_without_toc_body_starts_on_page_two(self, offline_resolver):
        case = CaseData.from_payload({'report_config': {'flags': {'include_docx_toc': False}}})
        laid = layout_report(_assemble(case, offline_resolver))
        assert laid.heading_pages['identifications'] == 2
        assert not any(isinstance(op, TocNumberOp) for ops in laid.pages for op in ops)

    def test_images_drawn(self, offline_resolver):
        case = CaseData.from_payload({'report_config': {'header': {'imageDataUrl': make_data_url(200, 40)}}})
        content = render_pdf(_assemble(case, offline_resolver))
        assert b'/Subtype /Image' in content

    def test_safe_mode_draws_no_images(self, offline_resolver):
        case = CaseData.from_payload(
            {
                'report_config': {
                    'flags': {'safeMode': True},
                    'header': {'imageDataUrl': make_data_url(200, 40)},
                    'photo_register': [{'url': 'https://cdn.example.com/a.png', 'caption': 'Prensa'}],
                }
            }
        )
        report = _assemble(case, offline_resolver)
        laid = layout_report(report)
        assert not any(isinstance(op, ImageOp) for ops in laid.pages for op in ops)
        content = render_pdf(report)
        assert b'/Subtype /Image' not in content

    def test_creator_metadata(self, offline_resolver):
        content = render_pdf(_assemble(CaseData.from_payload({}), offline_resolver))
        assert b'Laudo Pericial Renderer' in content


def _text_ops(laid):
    return [(page, op) for page, ops in enumerate(laid.pages, start=1) for op in ops if isinstance(op, TextOp)]


def _bare_layout(offline_resolver) -> PdfLayout:
    layout = PdfLayout(_assemble(CaseData.from_payload({}), offline_resolver), ReportFonts('Helvetica', 'Helvetica-Bold'))
    layout.new_page()
    return layout


class TestPdfTables:
    def test_cell_longer_than_a_page_is_split(self, offline_resolver):
        long_obs = ' '.join(['observação'] * 900) + ' FIMDAOBS'
        case = CaseData.from_payload(
            {
                'attendees': [
                    {'name': 'Carlos', 'function': 'Supervisor', 'company': 'Reclamada', 'obs': long_obs},
                    {'name': 'Depois', 'function': 'Operador', 'company': 'Reclamada', 'obs': 'curta'},
                ]
            }
        )
        laid = layout_report(_assemble(case, offline_resolver))
        ops = _text_ops(laid)
        words = [(page, word) for page, op in ops for word in op.text.split()]
        pages = {word: page for page, word in words if word in {'Carlos', 'FIMDAOBS', 'Depois'}}
        assert set(pages) == {'Carlos', 'FIMDAOBS', 'Depois'}
        assert pages['Carlos'] < pages['FIMDAOBS'] <= pages['Depois']
        assert sum(1 for _, word in words if word == 'observação') == 900
        # the header row is repeated on every page the row spans
        header_pages = {page for page, op in ops if op.text == 'Observações'}
        assert set(range(pages['Carlos'], pages['FIMDAOBS'] + 1)) <= header_pages
        assert all(op.y <= PAGE_HEIGHT - RESERVED_BOTTOM_TEXT_FOOTER for _, op in ops)

    def test_short_rows_stay_whole(self, offline_resolver):
        case = CaseData.from_payload({'attendees': [{'name': f'Pessoa {idx}', 'obs': 'ok'} for idx in range(80)]})
        ops = _text_ops(layout_report(_assemble(case, offline_resolver)))
        names = [(page, round(op.y, 2), op.text) for page, op in ops if op.text.startswith('Pessoa ')]
        assert [text for _, _, text in names] == [f'Pessoa {idx}' for idx in range(80)]
        assert len({page for page, _, _ in names}) > 1
        obs = {(page, round(op.y, 2)) for page, op in ops if op.text == 'ok'}
        assert all((page, y) in obs for page, y, _ in names)


class TestJustification:
    @pytest.mark.parametrize(
        'line,width,last,expected',
        [
            ('um dois três quatro cinco seis', 400.0, False, True),
            ('um dois três quatro cinco', 400.0, False, False),
            ('um dois três quatro cinco seis', 300.0, False, False),
            ('um dois três quatro cinco seis', 400.0, True, False),
            ('- um dois três quatro cinco seis', 400.0, False, False),
            ('• um dois três quatro cinco seis', 400.0, False, False),
        ],
    )
    def test_should_justify(self, line, width, last, expected):
        assert _should_justify(line, width, 495.0, last=last) is expected

    def test_justified_words_span_the_line(self, offline_resolver):
        layout = _bare_layout(offline_resolver)
        before = len(layout.result.pages[-1])
        text = 'perícia realizada no local de trabalho com acompanhamento das partes'
        layout._emit_line(
            text, font='Helvetica', size=12, x=MARGIN, available=CONTENT_WIDTH, align=ALIGN_LEFT, justify=True
        )
        words = layout.result.pages[-1][before:]
        assert [op.text for op in words] == text.split()
        assert words[0].x == MARGIN
        last = words[-1]
        assert last.x + text_width(last.text, 'Helvetica', 12) == pytest.approx(MARGIN + CONTENT_WIDTH)

    def test_unjustified_line_is_one_op(self, offline_resolver):
        layout = _bare_layout(offline_resolver)
        before = len(layout.result.pages[-1])
        layout._emit_line(
            'texto curto', font='Helvetica', size=12, x=MARGIN, available=CONTENT_WIDTH, align=ALIGN_LEFT, justify=False
        )
        [op] = layout.result.pages[-1][before:]
        assert (op.text, op.x) == ('texto curto', MARGIN)


class TestPdfDegradation:
    def test_long_annex_title_is_wrapped_inside_the_box(self, offline_resolver):
        layout = _bare_layout(offline_resolver)
        before = len(layout.result.pages[-1])
        title = 'Anexo 13 — ' + ' '.join(['Hidrocarbonetos aromáticos e outros compostos de carbono'] * 4)
        layout.annex_box(AnnexBox(title=title, lines=['Exposição: Ocorre']))
        ops = layout.result.pages[-1][before:]
        titles = [op for op in ops if isinstance(op, TextOp) and op.underline]
        assert len(titles) > 1
        assert ' '.join(op.text for op in titles) == title
        [box] = [op for op in ops if isinstance(op, RectOp)]
        assert box.y + box.h > titles[-1].y

    def test_gallery_placeholder_for_undecodable_image(self, offline_resolver):
        case = CaseData.from_payload(
            {
                'report_config': {
                    'item16_images': [{'dataUrl': 'data:image/png;base64,bm90IGFuIGltYWdl', 'caption': 'Vista geral'}]
                }
            }
        )
        report = _assemble(case, offline_resolver)
        texts = [op.text for _, op in _text_ops(layout_report(report))]
        assert IMAGE_PLACEHOLDER in texts
        assert 'Vista geral' in texts
        document = _docx_parts(render_docx(report))['word/document.xml'].decode('utf-8')
        assert 'Imagem não disponível' in document
        assert 'Vista geral' in document


class TestExportFacade:
    def test_both_formats(self, offline_resolver):
        case = CaseData.from_payload({'process_number': '1234567-89.2024.5.02.0001'})
        docx = asyncio.run(export_report(case, 'docx', resolver=offline_resolver, today=TODAY))
        pdf = asyncio.run(export_report(case, 'pdf', resolver=offline_resolver, today=TODAY))
        assert docx.filename == 'laudo_1234567-89.2024.5.02.0001_2024-03-15.docx'
        assert docx.content.startswith(b'PK')
        assert pdf.filename == 'laudo_1234567-89.2024.5.02.0001_2024-03-15.pdf'
        assert pdf.media_type == 'application/pdf'

    def test_renderer_failure_is_wrapped(self, monkeypatch):
        def boom(*args, **kwargs):
            raise ValueError('drawing library exploded')

        monkeypatch.setattr(export, 'render_pdf', boom)
        with pytest.raises(ReportExportError) as info:
            asyncio.run(export.export_pdf({}, today=TODAY))
        assert str(info.value) == 'Falha na exportação do PDF'

    def test_docx_failure_is_wrapped(self, monkeypatch):
        def boom(*args, **kwargs):
            raise RuntimeError('packer failed')

        monkeypatch.setattr(export, 'render_docx', boom)
        with pytest.raises(ReportExportError, match='Falha na exportação do documento DOCX'):
            asyncio.run(export.export_docx({}, today=TODAY))

    def test_unknown_format(self):
        with pytest.raises(ValueError):
            asyncio.run(export_report({}, 'odt'))


class TestCli:
    def test_filename(self, tmp_path, capsys):
        source = tmp_path / 'case.json'
        source.write_text(json.dumps({'process_number': '123'}), encoding='utf-8')
        assert main.main(['filename', '--input', str(source), '--format', 'pdf']) == 0
        out = capsys.readouterr().out.strip()
        assert out.startswith('laudo_123_')
        assert out.endswith('.pdf')

    def test_render_both(self, tmp_path, capsys):
        source = tmp_path / 'case.json'
        source.write_text(json.dumps({'process_number': '123', 'claimant_name': 'Maria'}), encoding='utf-8')
        out_dir = tmp_path / 'out'
        assert main.main(['render', '--input', str(source), '--out-dir', str(out_dir)]) == 0
        summary = json.loads(capsys.readouterr().out)
        assert summary['status'] == 'ok'
        assert [item['format'] for item in summary['written']] == ['docx', 'pdf']
        assert sorted(path.suffix for path in out_dir.iterdir()) == ['.docx', '.pdf']

    def test_missing_input(self, tmp_path, capsys):
        assert main.main(['render', '--input', str(tmp_path / 'nope.json')]) == 2
        assert json.loads(capsys.readouterr().out)['status'] == 'error'
