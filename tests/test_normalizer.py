"""Tests for laudo.normalizer - annex chunks, exposure rows and text clean-up."""

from laudo.normalizer import (
    PLACEHOLDER_LINE,
    AnnexChunk,
    TextChunk,
    fix_grammar,
    is_placeholder_text,
    parse_annex_chunks,
    parse_exposure_rows,
    parse_quesito_line,
    render_annex_chunks,
    sanitize_lawyer_from_name,
    sanitize_quesito_text,
)


class TestParseAnnexChunks:
    """Splitting result narratives into ``Anexo N`` blocks and free text."""

    def test_heading_with_pipes(self):
        chunks = parse_annex_chunks(
            'Resultado Anexo 13 — Agentes Químicos | Exposição: Ocorre exposição | Obs: contato com óleo'
        )
        assert chunks == [
            AnnexChunk(
                annex=13,
                title='Anexo 13 — Agentes Químicos',
                lines=('Exposição: Ocorre exposição', 'Obs: contato com óleo'),
            )
        ]

    def test_repeated_theme_appears_once_in_title(self):
        chunks = parse_annex_chunks(
            'Resultado Anexo 13 — Óleos minerais Anexo 13 — Óleos minerais | Exposição: Ocorre'
        )
        assert len(chunks) == 1
        assert chunks[0].title == 'Anexo 13 — Óleos minerais'
        assert chunks[0].title.count('Óleos minerais') == 1
        assert chunks[0].lines == ('Exposição: Ocorre',)

    def test_heading_glued_to_previous_sentence(self):
        chunks = parse_annex_chunks('Conclusão parcial. Resultado Anexo 3 — Calor | Exposição: Não ocorre')
        assert chunks[0] == TextChunk(text='Conclusão parcial.')
        assert isinstance(chunks[1], AnnexChunk)
        assert chunks[1].annex == 3

    def test_labels_forced_onto_new_lines(self):
        chunks = parse_annex_chunks('Resultado Anexo 11 — Químicos\nContato eventual. Exposição: Ocorre Obs: sem luvas')
        assert chunks[0].lines == ('Contato eventual.', 'Exposição: Ocorre', 'Obs: sem luvas')

    def test_text_without_heading_is_passed_through(self):
        assert parse_annex_chunks('Texto livre sem anexo.') == [TextChunk(text='Texto livre sem anexo.')]

    def test_empty_input(self):
        assert parse_annex_chunks('') == []
        assert parse_annex_chunks(None) == []

    def test_placeholder_replaced_in_either_order(self):
        placeholder = f'Resultado Anexo 11 — Químicos | {PLACEHOLDER_LINE}'
        filled = 'Resultado Anexo 11 — Químicos | Exposição: Ocorre'
        for text in (f'{placeholder}\n\n{filled}', f'{filled}\n\n{placeholder}'):
            chunks = parse_annex_chunks(text)
            assert len(chunks) == 1
            assert chunks[0].lines == ('Exposição: Ocorre',)

    def test_same_annex_bodies_merged_without_duplicates(self):
        chunks = parse_annex_chunks(
            'Resultado Anexo 13 — Óleos | Exposição: Ocorre | Obs: diário\n\n'
            'Resultado Anexo 13 — Óleos | Obs: diário | Enquadramento: grau máximo'
        )
        assert len(chunks) == 1
        assert chunks[0].lines == ('Exposição: Ocorre', 'Obs: diário', 'Enquadramento: grau máximo')

    def test_render_then_parse_is_stable(self):
        text = (
            'Resultado Anexo 13 — Óleos minerais | Exposição: Ocorre exposição | Obs: diário\n\n'
            'Resultado Anexo 14 — Agentes biológicos | Exposição: Não ocorre | Obs: ----------'
        )
        first = parse_annex_chunks(text)
        second = parse_annex_chunks(render_annex_chunks(first))
        assert [(c.annex, c.title, c.lines) for c in second] == [(c.annex, c.title, c.lines) for c in first]


class TestExposureRows:
    """Regex import of ``- Anexo N — agente`` narrative lines."""

    def test_exact_duplicates_collapse(self):
        line = '- Anexo 13 — Ruído (Ocorre exposição) [confirmado]'
        rows = parse_exposure_rows(f'{line}\n{line}')
        assert len(rows) == 1
        assert rows[0].annex == '13'
        assert rows[0].agent == 'Ruído'
        assert rows[0].exposure == 'Ocorre exposição'
        assert rows[0].obs == 'confirmado'

    def test_pipe_layout(self):
        rows = parse_exposure_rows('- Anexo 11 — Agentes químicos | Exposição: Em análise | Obs: óleo')
        assert rows[0].exposure == 'Em análise'
        assert rows[0].obs == 'óleo'
        assert rows[0].is_marked

    def test_model_notice_dropped_from_obs(self):
        rows = parse_exposure_rows('- Anexo 1 — Ruído (Não ocorre) [LLM não configurada]')
        assert rows[0].obs == ''
        assert not rows[0].is_marked

    def test_bare_line(self):
        rows = parse_exposure_rows('• Anexo 14 — Agentes biológicos')
        assert rows[0].agent == 'Agentes biológicos'
        assert rows[0].exposure == ''

    def test_unrelated_lines_ignored(self):
        assert parse_exposure_rows('Nenhuma exposição identificada.\n\n') == []


class TestTextCleanup:
    def test_fix_grammar(self):
        text = 'A atividade foi considerada não enquadrado  no anexo.'
        assert fix_grammar(text) == 'A atividade foi considerada não enquadrada no anexo.'

    def test_fix_grammar_leaves_other_subjects(self):
        assert fix_grammar('O ambiente não enquadrado.') == 'O ambiente não enquadrado.'

    def test_lawyer_removed_from_party_name(self):
        assert sanitize_lawyer_from_name('ACME LTDA ADVOGADO: Fulano de Tal') == 'ACME LTDA'
        assert sanitize_lawyer_from_name(None) == ''

    def test_placeholder_text(self):
        assert is_placeholder_text('')
        assert is_placeholder_text('Não informado.')
        assert is_placeholder_text('nao informado')
        assert not is_placeholder_text('Exposição a ruído')

    def test_quesito_numbering(self):
        assert parse_quesito_line('3) Qual o agente?', 1) == (3, 'Qual o agente?')
        assert parse_quesito_line('Sem número', 4) == (4, 'Sem número')
        assert sanitize_quesito_text('“Há\tcalor?”  ') == 'Há calor?'
