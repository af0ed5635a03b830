"""Tests for laudo.report.assembler - inclusion, numbering and the assembled block stream."""

import asyncio

import pytest

from conftest import TODAY, make_data_url
from laudo.normalizer import NOT_INFORMED
from laudo.report import sections
from laudo.report.assembler import assemble_report, decide_inclusion, image_refs, section_numbers
from laudo.report.blocks import AnnexBox, ImageBlock, Paragraph, SectionMarker, Table
from laudo.types import CaseData, ReportType


def _assemble(case, resolver, **kwargs):
    return asyncio.run(assemble_report(case, resolver=resolver, today=TODAY, **kwargs))


def _texts(blocks):
    return [block.text for block in blocks if isinstance(block, Paragraph)]


def _case(**fields) -> CaseData:
    return CaseData.from_payload(fields)


class TestInclusion:
    def test_empty_case_includes_insalubrity_only(self):
        case = _case()
        inclusion = decide_inclusion(case, case.config)
        assert inclusion.report_type is ReportType.completo
        assert inclusion.insalubrity
        assert not inclusion.periculosity

    def test_explicit_type_wins(self):
        case = _case(periculosity_results='GLP', report_config={'flags': {'reportType': 'insalubridade'}})
        inclusion = decide_inclusion(case, case.config)
        assert inclusion.report_type is ReportType.insalubridade
        assert not inclusion.periculosity

    def test_call_override_beats_flag(self):
        case = _case(periculosity_results='GLP', report_config={'flags': {'reportType': 'insalubridade'}})
        inclusion = decide_inclusion(case, case.config, 'periculosidade')
        assert (inclusion.insalubrity, inclusion.periculosity) == (False, True)

    def test_disagreeing_item15_flags(self):
        case = _case(report_config={'flags': {'show_nr15_item15': False, 'show_nr16_item15': True}})
        inclusion = decide_inclusion(case, case.config)
        assert inclusion.report_type is ReportType.periculosidade
        # no periculosity data at all, so insalubrity is forced back in
        assert (inclusion.insalubrity, inclusion.periculosity) == (True, False)

    def test_inferred_from_narratives(self):
        case = _case(periculosity_analysis='Inflamáveis', insalubrity_results='Não informado.')
        assert decide_inclusion(case, case.config).report_type is ReportType.periculosidade

    def test_unmarked_nr16_table_means_no_periculosity(self):
        case = _case(
            periculosity_results='GLP',
            report_config={
                'flags': {'reportType': 'completo'},
                'analysis_tables': {'nr16': [{'annex': '2', 'agent': 'Inflamáveis', 'exposure': 'Não ocorre exposição'}]},
            },
        )
        assert not decide_inclusion(case, case.config).periculosity

    def test_numbers_follow_inclusion(self):
        case = _case(periculosity_results='GLP')
        numbers = section_numbers(decide_inclusion(case, case.config, 'completo'))
        assert numbers == {
            'insalubrity_results': 16,
            'periculosity_concept': 17,
            'flammable_definition': 18,
            'periculosity_results': 19,
            'quesitos': 20,
            'conclusion': 21,
        }


class TestNumberingConsistency:
    @pytest.mark.parametrize(
        'report_type,expected',
        [('completo', 21), ('insalubridade', 18), ('periculosidade', 20)],
    )
    def test_toc_and_body_agree(self, offline_resolver, report_type, expected):
        case = _case(periculosity_results='Abastecimento com GLP.')
        report = _assemble(case, offline_resolver, report_type=report_type)
        body_numbers = {marker.key: marker.number for marker in report.markers if marker.level == 1}
        toc = {entry.key: entry.title for entry in report.toc_entries}
        assert report.numbers['conclusion'] == expected
        assert body_numbers['conclusion'] == str(expected)
        assert toc['conclusion'] == f'{expected} - Conclusão'
        for key, number in report.numbers.items():
            assert toc[key].startswith(f'{number} - ')
            assert body_numbers[key] == str(number)

    def test_fixed_sections_are_one_to_fifteen(self, offline_resolver):
        report = _assemble(_case(), offline_resolver)
        numbers = [marker.number for marker in report.markers if marker.level == 1]
        assert numbers[:15] == [str(n) for n in range(1, 16)]


class TestAssembledReport:
    def test_empty_case_renders_fallbacks(self, offline_resolver):
        report = _assemble(_case(process_number='1234567-89.2024.5.02.0001'), offline_resolver)
        texts = _texts(report.body)
        assert 'Número do Processo: 1234567-89.2024.5.02.0001' in texts
        assert f'Reclamante: {NOT_INFORMED}' in texts
        assert sections.DEFAULT_OBJECTIVE in texts
        assert sections.DEFAULT_METHODOLOGY in texts
        assert sections.DEFAULT_INSALUBRITY_RESULTS in texts
        assert 'Nenhuma função adicionada.' in texts
        assert 'Diadema, 15/03/2024' in texts
        assert report.include_toc
        assert not report.safe_mode

    def test_cover(self, full_case, offline_resolver):
        report = _assemble(full_case, offline_resolver)
        texts = _texts(report.cover)
        assert texts[0] == 'Excelentíssimo Senhor Doutor Juiz da 1ª Vara do Trabalho de Diadema.'
        assert 'Proc.: 1000123-45.2023.5.02.0261' in texts
        assert 'Reclamada: Metalúrgica Exemplo LTDA' in texts
        assert 'Ana Perita' in texts

    def test_employment_period_and_periodicity(self, full_case, offline_resolver):
        report = _assemble(full_case, offline_resolver)
        texts = _texts(report.body)
        assert '• Função: Operadora de máquinas | Período: 01/03/2015 a 15/03/2020' in texts
        assert 'Período considerado: 01/03/2015 a 15/03/2020 (5 anos e 14 dias)' in texts
        assert 'Avaliação automática da periodicidade de entrega' in texts

    def test_duplicate_exposure_lines_give_one_row(self, offline_resolver):
        line = '- Anexo 13 — Ruído (Ocorre exposição) [confirmado]'
        report = _assemble(_case(insalubrity_analysis=f'{line}\n{line}'), offline_resolver)
        idx = next(
            i for i, block in enumerate(report.body)
            if isinstance(block, Paragraph) and block.text == 'Tabela NR-15 (Anexos e Exposição)'
        )
        exposure_table = report.body[idx + 1]
        assert isinstance(exposure_table, Table)
        assert len(exposure_table.rows) == 2
        assert exposure_table.rows[1][0].text == 'Anexo 13'

    def test_annex_13_results_render_one_box(self, offline_resolver):
        case = _case(
            insalubrity_results=(
                'Resultado Anexo 13 — Agentes químicos | Exposição: Ocorre\n\n'
                'Resultado Anexo 13 — Agentes químicos | Obs: óleo de corte'
            )
        )
        report = _assemble(case, offline_resolver)
        boxes = [block for block in report.body if isinstance(block, AnnexBox)]
        assert len(boxes) == 1
        assert boxes[0].title == 'Anexo 13 — Agentes químicos'
        assert boxes[0].lines == ['Exposição: Ocorre', 'Obs: óleo de corte']

    def test_quesitos(self, full_case, offline_resolver):
        report = _assemble(full_case, offline_resolver)
        quesitos = [block for block in report.body if isinstance(block, Paragraph) and block.prefix]
        assert [(block.prefix, block.text) for block in quesitos] == [
            ('1)', 'Há insalubridade?'),
            ('2)', 'Em qual grau?'),
        ]
        subs = [marker for marker in report.markers if marker.level == 2 and marker.key.startswith('quesitos_')]
        assert [(marker.number, marker.outline) for marker in subs] == [
            ('20.1', True),
            ('20.2', False),
            ('20.3', False),
        ]
        toc_keys = [entry.key for entry in report.toc_entries]
        assert 'quesitos_claimant' in toc_keys
        assert 'quesitos_defendant' not in toc_keys

    def test_images_resolved_once_and_threaded(self, offline_resolver):
        header = make_data_url(100, 20)
        signature = make_data_url(60, 30)
        case = _case(
            report_config={
                'header': {'imageDataUrl': header},
                'signature': {'imageDataUrl': signature, 'imageWidth': 120},
                'item16_images': [{'dataUrl': header, 'caption': 'Vista geral'}],
            }
        )
        report = _assemble(case, offline_resolver)
        assert report.header.image is not None
        assert report.header.image.width == 100
        [signature_block] = [block for block in report.body if isinstance(block, ImageBlock)]
        assert (signature_block.width_pt, signature_block.height_pt) == (120.0, 60.0)
        galleries = [block for block in report.body if isinstance(block, Table) and block.gallery]
        assert len(galleries) == 1
        assert galleries[0].rows[0][0].content[0].image is report.header.image

    def test_safe_mode_drops_every_image(self, offline_resolver):
        case = _case(
            report_config={
                'flags': {'safeMode': True},
                'header': {'imageUrl': 'https://cdn.example.com/header.png'},
                'photo_register': [{'url': 'https://cdn.example.com/foto.png', 'caption': 'Máquina'}],
            }
        )
        report = _assemble(case, offline_resolver)
        assert report.safe_mode
        assert report.header.image is None
        assert report.images == {}
        gallery_images = [
            item.image
            for block in report.body
            if isinstance(block, Table) and block.gallery
            for row in block.rows
            for cell in row
            for item in cell.content
            if isinstance(item, ImageBlock)
        ]
        assert gallery_images == [None]

    def test_stored_photo_without_link_keeps_its_cell(self, offline_resolver):
        case = _case(
            report_config={
                'photo_register': [{'type': 'storage', 'file_path': 'proc/1/foto.png', 'caption': 'Prensa hidráulica'}]
            }
        )
        assert image_refs(case, case.config) == ['storage://process-documents/proc/1/foto.png']
        report = _assemble(case, offline_resolver)
        assert 'Nenhuma foto adicionada.' not in _texts(report.body)
        [photos] = [block for block in report.body if isinstance(block, Table) and block.gallery]
        [content] = [cell.content for row in photos.rows for cell in row if cell.content]
        assert isinstance(content[0], ImageBlock)
        assert content[0].image is None
        assert content[1].text == 'Prensa hidráulica'

    def test_photo_bucket_override(self):
        case = _case(report_config={'photo_register': [{'file_path': '/a.png'}, {'caption': 'sem arquivo'}]})
        assert image_refs(case, case.config, photo_bucket='laudos') == ['storage://laudos/a.png']

    def test_marker_text(self):
        assert SectionMarker('x', '16', 'CONCLUSÃO').text == '16. CONCLUSÃO'
        assert SectionMarker('y', '12.1', 'REGISTRO FOTOGRÁFICO', level=2).text == '12.1 REGISTRO FOTOGRÁFICO'
