from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from laudo.adapters.images import ResolvedImage
from laudo.adapters.object_storage import storage_ref
from laudo.normalizer import (
    NOT_INFORMED,
    PLACEHOLDER_LINE,
    AnnexChunk,
    ExposureRow,
    exposure_rows_from_table,
    fix_grammar,
    parse_annex_chunks,
    parse_exposure_rows,
    parse_quesito_line,
    sanitize_lawyer_from_name,
)
from laudo.periods import (
    DeliveryEvaluation,
    EffectivePeriod,
    EmploymentPeriod,
    format_br_date,
    format_iso_as_br,
    parse_iso_date,
)
from laudo.report.blocks import (
    ALIGN_CENTER,
    ALIGN_JUSTIFY,
    ALIGN_LEFT,
    KIND_JUSTIFIED,
    KIND_LEGAL,
    KIND_PLAIN,
    KIND_QUESITO,
    AnnexBox,
    Block,
    ImageBlock,
    Paragraph,
    Run,
    SectionMarker,
    Spacer,
    Table,
    TableCell,
    cell,
    header_row,
    text_paragraph,
)
from laudo.types import CaseData, ReportConfig, load_json_object, text_of

GALLERY_IMAGE_WIDTH_PT = 210.0
GALLERY_FALLBACK_HEIGHT_PT = 120.0
SIGNATURE_WIDTH_PT = 150.0
SIGNATURE_FALLBACK_HEIGHT_PT = 40.0
QUESITO_TAB_PT = 36.0
SIGNATURE_LINE = '_________________________________'

DEFAULT_PERITO_NAME = 'PERITO JUDICIAL'
DEFAULT_PROFESSIONAL_TITLE = 'ENGENHEIRO CIVIL'
DEFAULT_REGISTRATION = 'CREA'
DEFAULT_HONORARIUM = '03 (três) salários mínimos'
DEFAULT_PHOTO_BUCKET = 'process-documents'

DEFAULT_OBJECTIVE = (
    'Avaliar as condições de trabalho e identificar a presença de agentes de risco que possam '
    'caracterizar insalubridade e/ou periculosidade.'
)
DEFAULT_METHODOLOGY = (
    'Inspeção técnica no local de trabalho, análise documental, medições quantitativas quando '
    'aplicável, e avaliação conforme normas regulamentadoras vigentes.'
)
DEFAULT_ACTIVITIES = 'Atividades desenvolvidas pelo trabalhador não informadas.'
DEFAULT_EPI_INTRO = (
    'Para função exercida pela Reclamante a empresa realizava a entrega dos seguintes equipamentos '
    'de proteção individual - E.P.I. (Art. 166 da CLT e NR-6, item 6.2 da Portaria nº 3214/78 do MTE):'
)
DEFAULT_INSALUBRITY_RESULTS = 'Não foram identificados agentes de risco que caracterizem insalubridade.'
DEFAULT_PERICULOSITY_RESULTS = 'Não foram identificados agentes de risco que caracterizem periculosidade.'
DEFAULT_PERICULOSITY_CONCEPT = (
    'Conforme NR-16, são consideradas atividades e operações perigosas aquelas relacionadas com '
    'explosivos, inflamáveis, energia elétrica e radiações ionizantes ou substâncias radioativas.'
)
DEFAULT_FLAMMABLE_DEFINITION = 'De acordo com a NR 20, os líquidos inflamáveis possuem ponto de fulgor de < 60°C.'
DEFAULT_CONCLUSION = (
    'Considerando a visita pericial realizada, as informações obtidas, os fatos observados e as '
    'análises efetuadas, conclui-se, que as atividades desempenhadas pelo(a) reclamante, foram:'
)

DILIGENCE_INTRO = (
    'Para avaliação das condições em que trabalhava a Reclamante, foi realizada vistoria em seu local '
    'de trabalho, nas dependências da Reclamada, para atingirmos o adequado encaminhamento e correta '
    'interpretação final deste Laudo Pericial, sem subjetivismo e com embasamento técnico legal.',
    'Realizou-se primeiramente o inquérito preliminar, item administrativo obrigatório em qualquer '
    'perícia trabalhista, prestando todas as informações necessárias e esclarecimentos de ordem '
    'prática, os profissionais abaixo relacionados, além da ouvida de outros trabalhadores presentes '
    'nas áreas ou postos de trabalho, visando com isto caracterizar itens básicos relativos ao '
    'objetivo desta avaliação.',
)

_MONTHS_PT = (
    'janeiro', 'fevereiro', 'março', 'abril', 'maio', 'junho',
    'julho', 'agosto', 'setembro', 'outubro', 'novembro', 'dezembro',
)

_WORKPLACE_FIELDS = (
    ('area', 'Área superior (m²)'),
    ('ceiling_height', 'Pé-direito (m)'),
    ('construction', 'Construção'),
    ('roofing', 'Cobertura'),
    ('lighting', 'Iluminação'),
    ('ventilation', 'Ventilação'),
    ('floor', 'Piso'),
    ('flooring', 'Revestimento do piso'),
    ('walls', 'Paredes'),
)
_SPECIAL_CONDITIONS = {'ceu_aberto': 'Céu aberto', 'veiculo': 'Veículo', 'outra': 'Outra condição'}

_BULLET_RE = re.compile(r'^[-•]\s+')
_EPC_ITEM_RE = re.compile(r'^[-•]\s*(.+)$')
_BLANK_LINES_RE = re.compile(r'\n\s*\n')

QUESITO_PARTIES = (
    ('quesitos_claimant', 1, 'QUESITOS DA RECLAMANTE'),
    ('quesitos_defendant', 2, 'QUESITOS DA RECLAMADA'),
    ('quesitos_judge', 3, 'QUESITOS DO JUÍZ(A)'),
)


@dataclass(frozen=True)
class PeritoIdentity:
    name: str
    title: str
    registration: str


def photo_ref(photo: dict[str, Any], bucket: str) -> str:
    """Image reference of a photo register entry; uploads without a link point at their stored object."""
    ref = text_of(photo.get('signed_url')) or text_of(photo.get('url'))
    if ref:
        return ref
    path = text_of(photo.get('file_path'))
    return storage_ref(bucket, path) if path else ''


@dataclass
class RenderContext:
    """Everything the section builders share for one render."""

    config: ReportConfig
    today: date
    include_insalubrity: bool = True
    include_periculosity: bool = True
    numbers: dict[str, int] = field(default_factory=dict)
    employment: EmploymentPeriod | None = None
    period: EffectivePeriod = field(default_factory=lambda: EffectivePeriod(start=None, end=None, label=''))
    evaluations: list[DeliveryEvaluation] = field(default_factory=list)
    images: dict[str, ResolvedImage | None] = field(default_factory=dict)
    conclusion_city: str = 'Diadema'
    photo_bucket: str = DEFAULT_PHOTO_BUCKET

    @property
    def safe_mode(self) -> bool:
        return self.config.flags.safe_mode

    def image(self, ref: str | None) -> ResolvedImage | None:
        if self.safe_mode:
            return None
        return self.images.get(str(ref or '').strip())


def header_identity(case: CaseData, config: ReportConfig) -> PeritoIdentity:
    header = config.header
    return PeritoIdentity(
        name=text_of(header.perito_name) or DEFAULT_PERITO_NAME,
        title=text_of(header.professional_title) or DEFAULT_PROFESSIONAL_TITLE,
        registration=text_of(header.registration_number) or DEFAULT_REGISTRATION,
    )


def cover_identity(case: CaseData, config: ReportConfig) -> PeritoIdentity:
    header = config.header
    cover = case.cover_data
    return PeritoIdentity(
        name=text_of(header.perito_name) or text_of(cover.get('peritoName')) or DEFAULT_PERITO_NAME,
        title=text_of(header.professional_title) or text_of(cover.get('professionalTitle')) or DEFAULT_PROFESSIONAL_TITLE,
        registration=(
            text_of(header.registration_number) or text_of(cover.get('registrationNumber')) or DEFAULT_REGISTRATION
        ),
    )


def long_date_pt(value: date) -> str:
    return f'{value.day:02d} de {_MONTHS_PT[value.month - 1]} de {value.year}'


def identification(case: CaseData, key: str, fallback: Any) -> str:
    return text_of(case.identifications.get(key)) or text_of(fallback)


# building blocks


def heading(key: str, number: Any, title: str) -> SectionMarker:
    return SectionMarker(key=key, number=str(number), title=title, level=1)


def subheading(key: str, number: str, title: str, *, outline: bool = True) -> SectionMarker:
    return SectionMarker(key=key, number=number, title=title, level=2, outline=outline)


def body(text: str, *, kind: str = KIND_JUSTIFIED, space_after: float = 15.0) -> Paragraph:
    return text_paragraph(text, align=ALIGN_JUSTIFY, line_spacing=1.5, space_after=space_after, kind=kind)


def line(text: str, *, bold: bool = False, space_after: float = 0.0, size: float = 12.0) -> Paragraph:
    return text_paragraph(text, bold=bold, space_after=space_after, size=size)


def table(
    labels: list[str],
    rows: list[list[str]],
    widths: list[float],
    *,
    centered: frozenset[int] = frozenset(),
    small: frozenset[int] = frozenset(),
) -> Table:
    out: list[list[TableCell]] = [header_row(labels)]
    for values in rows:
        out.append(
            [
                cell(
                    value,
                    align=ALIGN_CENTER if idx in centered else ALIGN_LEFT,
                    size=11.0 if idx in small else 12.0,
                )
                for idx, value in enumerate(values)
            ]
        )
    return Table(rows=out, column_widths=widths, centered_columns=centered)


def empty_row(columns: int) -> list[str]:
    return [NOT_INFORMED] + [''] * (columns - 1)


def gallery(entries: list[tuple[str, str]], ctx: RenderContext) -> list[Block]:
    """Two-column grid of ``(image ref, caption)`` pairs."""
    if not entries:
        return []
    cells: list[TableCell] = []
    for ref, caption in entries:
        image = ctx.image(ref)
        height = image.height_for(GALLERY_IMAGE_WIDTH_PT, GALLERY_FALLBACK_HEIGHT_PT) if image else GALLERY_FALLBACK_HEIGHT_PT
        content: list[Paragraph | ImageBlock] = [
            ImageBlock(image=image, width_pt=GALLERY_IMAGE_WIDTH_PT, height_pt=height, align=ALIGN_CENTER)
        ]
        if caption:
            content.append(text_paragraph(caption, align=ALIGN_CENTER, line_spacing=1.5, space_after=6))
        cells.append(TableCell(content=content))
    if len(cells) % 2:
        cells.append(TableCell())
    rows = [cells[idx:idx + 2] for idx in range(0, len(cells), 2)]
    return [Table(rows=rows, column_widths=[50.0, 50.0], header_rows=0, gallery=True), Spacer(10)]


def narrative(text: str) -> list[Block]:
    """Result narratives: ``Anexo N`` boxes plus plain paragraphs."""
    blocks: list[Block] = []
    for chunk in parse_annex_chunks(text):
        if isinstance(chunk, AnnexChunk):
            blocks.append(AnnexBox(title=chunk.title, lines=list(chunk.lines)))
            continue
        for part in _BLANK_LINES_RE.split(chunk.text):
            lines = [item.strip() for item in part.split('\n') if item.strip()]
            if not lines:
                continue
            bullet = bool(_BULLET_RE.match(lines[0]))
            blocks.append(
                text_paragraph(
                    '\n'.join(lines),
                    align=ALIGN_LEFT if bullet else ALIGN_JUSTIFY,
                    line_spacing=1.5,
                    space_after=6,
                    kind=KIND_PLAIN if bullet else KIND_JUSTIFIED,
                )
            )
    return blocks or [body(NOT_INFORMED)]


def signature_block(identity: PeritoIdentity) -> list[Block]:
    return [
        text_paragraph(SIGNATURE_LINE, align=ALIGN_CENTER, space_after=1.5),
        text_paragraph(identity.name, bold=True, align=ALIGN_CENTER),
        text_paragraph(identity.title, align=ALIGN_CENTER),
        text_paragraph(identity.registration, align=ALIGN_CENTER, space_after=10),
    ]


# cover


def cover(case: CaseData, ctx: RenderContext) -> list[Block]:
    identity = cover_identity(case, ctx.config)
    data = case.cover_data

    process_number = identification(case, 'processNumber', case.process_number)
    claimant = identification(case, 'claimantName', case.claimant_name)
    defendant = sanitize_lawyer_from_name(identification(case, 'defendantName', case.defendant_name))

    court_line = text_of(data.get('judgeCourtLine'))
    if not court_line:
        court = text_of(case.court)
        if court:
            court_line = f'Excelentíssimo Senhor Doutor Juiz da {court}.'
        else:
            city = (text_of(case.inspection_city) or 'Diadema').upper()
            court_line = f'Excelentíssimo Senhor Doutor Juiz da 1ª VARA DO TRABALHO DE {city} – SP.'

    honorarium = text_of(data.get('honorarios')) or DEFAULT_HONORARIUM
    city = text_of(data.get('city')) or text_of(case.inspection_city) or 'Cidade'
    cover_date = parse_iso_date(data.get('coverDate'))
    date_label = long_date_pt(cover_date) if cover_date else format_br_date(ctx.today)

    registration = f', {identity.registration}' if identity.registration else ''
    body_text = (
        f'{identity.name}, {identity.title}{registration}, legalmente habilitado pelo CREA - CONSELHO '
        'REGIONAL DE ENGENHARIA, nomeado como PERITO JUDICIAL, vem à presença de V. Exa. apresentar o '
        'resultado do seu trabalho consistente do incluso LAUDO PERICIAL e solicitar o arbitramento de '
        f'seus honorários profissionais em {honorarium}, corrigidos monetariamente na data de seu '
        'efetivo pagamento.'
    )

    blocks: list[Block] = [
        text_paragraph(court_line, bold=True, align=ALIGN_CENTER, space_before=28, space_after=4),
    ]
    if process_number:
        blocks.append(text_paragraph(f'Proc.: {process_number}', line_spacing=1.5, space_after=1.25))
    if claimant:
        blocks.append(text_paragraph(f'Reclamante: {claimant}', line_spacing=1.5, space_after=1.25))
    if defendant:
        blocks.append(text_paragraph(f'Reclamada: {defendant}', line_spacing=1.5, space_after=85))
    blocks.append(text_paragraph(body_text, align=ALIGN_JUSTIFY, line_spacing=1.5, space_after=1, kind=KIND_JUSTIFIED))
    blocks.append(text_paragraph(f'{city}, {date_label}', line_spacing=1.5, space_after=15))
    blocks.append(
        text_paragraph(
            'Termos em que, para os devidos fins. Pede e espera deferimento.',
            line_spacing=1.5,
            space_after=25,
        )
    )
    blocks.extend(signature_block(identity))
    return blocks


# 1 - 11


def identifications(case: CaseData, ctx: RenderContext) -> list[Block]:
    defendant = sanitize_lawyer_from_name(identification(case, 'defendantName', case.defendant_name))
    return [
        heading('identifications', 1, 'IDENTIFICAÇÕES'),
        line(f'Número do Processo: {identification(case, "processNumber", case.process_number) or NOT_INFORMED}', space_after=5),
        line(f'Reclamante: {identification(case, "claimantName", case.claimant_name) or NOT_INFORMED}', space_after=5),
        line(f'Reclamada: {defendant or NOT_INFORMED}', space_after=5),
        Spacer(15),
    ]


def claimant_data(case: CaseData, ctx: RenderContext) -> list[Block]:
    record = case.claimant_record
    name = text_of(record.get('name')) or text_of(case.claimant_name) or NOT_INFORMED
    blocks: list[Block] = [
        heading('claimant', 2, 'DADOS DA(O) RECLAMANTE'),
        line(f'Nome Completo: {name}', space_after=5),
        line('Funções e Períodos Laborais', bold=True, space_after=5),
    ]
    positions = case.positions
    if not positions:
        blocks.append(line('Nenhuma função adicionada.', space_after=10))
        return blocks
    for position in positions:
        title = text_of(position.get('title')) or NOT_INFORMED
        period = text_of(position.get('period')) or NOT_INFORMED
        obs = text_of(position.get('obs'))
        suffix = f' | Observações: {obs}' if obs else ''
        blocks.append(line(f'• Função: {title} | Período: {period}{suffix}', space_after=2.5))
    blocks.append(Spacer(10))
    return blocks


def defendant_data(case: CaseData, ctx: RenderContext) -> list[Block]:
    raw = case.defendant_data
    record = raw if isinstance(raw, dict) else {}
    text = raw.strip() if isinstance(raw, str) else ''
    name = sanitize_lawyer_from_name(case.defendant_name) or NOT_INFORMED

    blocks: list[Block] = [heading('defendant', 3, 'DADOS DA RECLAMADA')]
    if text:
        blocks.append(body(text, space_after=10))
    blocks.extend(
        [
            line(f'Razão Social: {name}', space_after=5),
            line(f'CNPJ: {text_of(record.get("cnpj")) or NOT_INFORMED}', space_after=2.5),
            line(f'Endereço: {text_of(record.get("address")) or NOT_INFORMED}', space_after=2.5),
            line(f'Atividade Principal: {text_of(record.get("mainActivity")) or NOT_INFORMED}', space_after=2.5),
            line(f'Representante Legal: {text_of(record.get("legalRepresentative")) or NOT_INFORMED}', space_after=10),
        ]
    )
    return blocks


def objective(case: CaseData, ctx: RenderContext) -> list[Block]:
    return [heading('objective', 4, 'OBJETIVO'), body(text_of(case.objective) or DEFAULT_OBJECTIVE)]


def initial_data(case: CaseData, ctx: RenderContext) -> list[Block]:
    return [
        heading('initial', 5, 'DADOS DA INICIAL'),
        body(text_of(case.initial_data) or NOT_INFORMED, kind=KIND_LEGAL),
    ]


def defense_data(case: CaseData, ctx: RenderContext) -> list[Block]:
    return [
        heading('defense', 6, 'DADOS DA CONTESTAÇÃO DA RECLAMADA'),
        body(text_of(case.defense_data) or NOT_INFORMED, kind=KIND_LEGAL),
    ]


def diligences(case: CaseData, ctx: RenderContext) -> list[Block]:
    blocks: list[Block] = [heading('diligences', 7, 'DILIGÊNCIAS / VISTORIAS')]
    blocks.extend(body(text) for text in DILIGENCE_INTRO)

    visits = [item for item in case.diligence_data if isinstance(item, dict)]
    if visits:
        for idx, visit in enumerate(visits, start=1):
            blocks.append(line(f'Vistoria {idx}:', bold=True))
            if text_of(visit.get('location')):
                blocks.append(line(f'Local: {text_of(visit.get("location"))}'))
            if text_of(visit.get('date')):
                blocks.append(line(f'Data: {format_iso_as_br(visit.get("date"))}'))
            if text_of(visit.get('time')):
                blocks.append(line(f'Horário: {text_of(visit.get("time"))}'))
            if text_of(visit.get('description')):
                blocks.append(body(text_of(visit.get('description')), space_after=0))
            blocks.append(Spacer(5))
        return blocks

    address = text_of(case.inspection_address)
    city = text_of(case.inspection_city)
    when = text_of(case.inspection_date)
    hour = text_of(case.inspection_time)
    if address:
        blocks.append(line(f'Local: {address}{f", {city}" if city else ""}'))
    if when:
        blocks.append(line(f'Data: {format_iso_as_br(when)}'))
    if hour:
        blocks.append(line(f'Horário: {hour}'))
    if not (address or when or hour):
        blocks.append(line(NOT_INFORMED))
    return blocks


def attendees(case: CaseData, ctx: RenderContext) -> list[Block]:
    raw = case.attendees
    rows: list[list[str]] = []
    if isinstance(raw, list) and raw:
        for person in raw:
            if isinstance(person, dict):
                rows.append(
                    [
                        text_of(person.get('name')),
                        text_of(person.get('function')),
                        text_of(person.get('company')),
                        text_of(person.get('obs')),
                    ]
                )
            else:
                rows.append([text_of(person), '', '', ''])
    elif isinstance(raw, str) and raw.strip():
        rows.append([raw.strip(), '', '', ''])
    else:
        rows.append(empty_row(4))
    return [
        heading('attendees', 8, 'ACOMPANHANTES / ENTREVISTADOS'),
        table(['Nome', 'Função', 'Empresa', 'Observações'], rows, [35, 25, 20, 20]),
    ]


def methodology(case: CaseData, ctx: RenderContext) -> list[Block]:
    return [heading('methodology', 9, 'METODOLOGIA DE AVALIAÇÃO'), body(text_of(case.methodology) or DEFAULT_METHODOLOGY)]


def documents(case: CaseData, ctx: RenderContext) -> list[Block]:
    lines: list[str] = []
    for idx, doc in enumerate(case.documents_presented, start=1):
        if not isinstance(doc, dict):
            if text_of(doc):
                lines.append(f'• {text_of(doc)}')
            continue
        title = text_of(doc.get('title') or doc.get('titulo') or doc.get('name')) or f'Documento {idx}'
        details = [
            f'{label}: {text_of(value)}'
            for label, value in (
                ('Tipo', doc.get('type') or doc.get('tipo')),
                ('Emissor', doc.get('issuer') or doc.get('emissor')),
                ('Data', doc.get('date') or doc.get('data')),
            )
            if text_of(value)
        ]
        lines.append(f'• {title} ({"; ".join(details)})' if details else f'• {title}')
        notes = text_of(doc.get('notes') or doc.get('observacoes'))
        if notes:
            lines.append(f'  Observações: {notes}')
    if not lines:
        lines.append(NOT_INFORMED)
    blocks: list[Block] = [heading('documents', 10, 'DOCUMENTAÇÕES APRESENTADAS')]
    blocks.extend(body(text, space_after=6) for text in lines)
    return blocks


def _workplace_details(item: dict[str, Any]) -> str:
    parts = []
    for key, value in item.items():
        if key in {'name', 'nome', 'attribute', 'atributo'} or not text_of(value):
            continue
        parts.append(f'{key}: {", ".join(map(text_of, value)) if isinstance(value, list) else text_of(value)}')
    return ' | '.join(parts)


def workplace(case: CaseData, ctx: RenderContext) -> list[Block]:
    blocks: list[Block] = [heading('workplace', 11, 'CARACTERÍSTICAS DO LOCAL DE TRABALHO')]
    raw = case.workplace_characteristics
    if isinstance(raw, str) and raw.strip().startswith('{'):
        raw = load_json_object(raw) or raw

    if isinstance(raw, dict):
        special = text_of(raw.get('special_condition_type')).lower()
        if special and special != 'none':
            label = _SPECIAL_CONDITIONS.get(special, special)
            blocks.append(body(f'Condição especial: {label}.', space_after=5))
            blocks.append(body(text_of(raw.get('special_condition_description')) or NOT_INFORMED))
            return blocks
        rows: list[list[str]] = []
        for key, label in _WORKPLACE_FIELDS:
            value = raw.get(key)
            text = ', '.join(text_of(v) for v in value if text_of(v)) if isinstance(value, list) else text_of(value)
            if text:
                rows.append([label, text])
        blocks.append(table(['Característica', 'Detalhe'], rows or [empty_row(2)], [35, 65]))
    elif isinstance(raw, str) and raw.strip():
        blocks.append(body(raw.strip()))
    elif isinstance(raw, list) and raw:
        rows = []
        for idx, item in enumerate(raw, start=1):
            if isinstance(item, dict):
                name = text_of(item.get('name') or item.get('nome') or item.get('attribute') or item.get('atributo'))
                rows.append([name or f'Item {idx}', _workplace_details(item)])
            else:
                rows.append([f'Item {idx}', text_of(item)])
        blocks.append(table(['Característica', 'Detalhe'], rows, [35, 65]))
    else:
        blocks.append(body(NOT_INFORMED))
    return blocks


# 12


def activities(case: CaseData, ctx: RenderContext) -> list[Block]:
    return [
        heading('activities', 12, 'ATIVIDADES DA(O) RECLAMANTE'),
        body(text_of(case.activities_description) or DEFAULT_ACTIVITIES),
    ]


def photo_register(case: CaseData, ctx: RenderContext) -> list[Block]:
    blocks: list[Block] = [subheading('photos', '12.1', 'REGISTRO FOTOGRÁFICO')]
    entries = [
        (photo_ref(photo, ctx.photo_bucket), text_of(photo.get('caption')))
        for photo in ctx.config.photo_register
        if isinstance(photo, dict)
    ]
    if not entries:
        blocks.append(body('Nenhuma foto adicionada.'))
        return blocks
    blocks.extend(gallery(entries, ctx))
    return blocks


def discordances(case: CaseData, ctx: RenderContext) -> list[Block]:
    blocks: list[Block] = [subheading('discordances', '12.2', 'DISCORDÂNCIAS APRESENTADAS PELA RECLAMADA')]
    raw = case.discordances_presented
    if isinstance(raw, list) and raw:
        for item in raw:
            text = text_of(item.get('text')) if isinstance(item, dict) else text_of(item)
            blocks.append(body(f'• {text or NOT_INFORMED}', space_after=6))
    elif isinstance(raw, str) and raw.strip():
        blocks.append(body(raw.strip()))
    else:
        blocks.append(body(NOT_INFORMED, space_after=6))
    return blocks


# 13 - 14


def _tri_state(value: bool | None) -> str:
    if value is None:
        return NOT_INFORMED
    return 'Sim' if value else 'Não'


def _epi_rows(raw: Any) -> list[list[str]]:
    if isinstance(raw, str):
        return [[raw.strip(), '', '']] if raw.strip() else []
    if not isinstance(raw, list):
        return []
    rows = []
    for item in raw:
        if isinstance(item, dict):
            rows.append(
                [
                    text_of(item.get('equipment') or item.get('name') or item.get('item')),
                    text_of(item.get('protection') or item.get('desc') or item.get('observation')),
                    text_of(item.get('ca')),
                ]
            )
        elif text_of(item):
            rows.append([text_of(item), '', ''])
    return rows


def _periodicity(ctx: RenderContext) -> list[Block]:
    cfg = ctx.config.epi_replacement_periodicity
    period_label = ctx.period.label
    blocks: list[Block] = [line('Avaliação da periodicidade de trocas de EPIs', bold=True, space_after=5)]
    if text_of(cfg.text):
        blocks.append(body(text_of(cfg.text)))

    deliveries = [
        [text_of(row.get('equipment')), text_of(row.get('ca')), format_iso_as_br(row.get('delivery_date'))]
        for row in cfg.rows
        if isinstance(row, dict)
    ]
    blocks.append(
        table(['Equipamento fornecido', 'CA', 'Data de entrega'], deliveries or [empty_row(3)], [50, 20, 30])
    )

    life_items = [item for item in cfg.useful_life_items if isinstance(item, dict)]
    if life_items:
        blocks.append(line('Vida útil estimada (por EPI)', bold=True, space_after=5))
        if period_label:
            blocks.append(line(f'Período considerado: {period_label}', size=11, space_after=5))
        rows = [
            [text_of(item.get('equipment')), text_of(item.get('ca')), text_of(item.get('estimated_life'))]
            for item in life_items
        ]
        blocks.append(table(['EPI', 'CA', 'Vida útil estimada'], rows, [35, 15, 50]))

    if ctx.evaluations:
        blocks.append(line('Avaliação automática da periodicidade de entrega', bold=True, space_after=5))
        if period_label:
            blocks.append(line(f'Período considerado: {period_label}', size=11, space_after=5))
        rows = [
            [
                item.equipment,
                str(item.deliveries),
                item.interval_label,
                item.insufficient_label,
                item.status,
                item.basis,
            ]
            for item in ctx.evaluations
        ]
        blocks.append(
            table(
                ['EPI', 'Entregas', 'Intervalo entre entregas', 'Período insuficiente (insalubre)', 'Avaliação', 'Base'],
                rows,
                [20, 10, 18, 30, 12, 10],
                centered=frozenset({1, 4}),
                small=frozenset({3, 5}),
            )
        )

    audit = cfg.training_audit
    blocks.append(line('Gestão de EPI', bold=True, space_after=5))
    blocks.append(line(f'Apresentada evidências de treinamento: {_tri_state(audit.training_evidence)}'))
    if text_of(audit.training_observation):
        blocks.append(line(f'Observação: {text_of(audit.training_observation)}'))
    blocks.append(line(f'Os equipamentos possuem certificado de aprovação: {_tri_state(audit.ca_certificate)}'))
    blocks.append(line(f'Fiscalização: {_tri_state(audit.inspection)}'))
    if text_of(audit.inspection_observation):
        blocks.append(line(f'Observação: {text_of(audit.inspection_observation)}'))
    blocks.append(Spacer(10))
    return blocks


def epis(case: CaseData, ctx: RenderContext) -> list[Block]:
    blocks: list[Block] = [
        heading('epis', 13, 'EQUIPAMENTOS DE PROTEÇÃO INDIVIDUAL (EPIs)'),
        body(text_of(case.epi_intro) or DEFAULT_EPI_INTRO),
        table(['Equipamento', 'Proteção', 'CA'], _epi_rows(case.epis) or [empty_row(3)], [40, 40, 20]),
        Spacer(10),
    ]
    if ctx.config.epi_replacement_periodicity.enabled:
        blocks.extend(_periodicity(ctx))
    return blocks


def epc_items(case: CaseData) -> list[str]:
    items: list[str] = []
    for source in (case.epcs, case.collective_protection):
        for raw in str(source or '').splitlines():
            match = _EPC_ITEM_RE.match(raw.strip())
            if match and match.group(1).strip():
                items.append(match.group(1).strip())
    return items


def epcs(case: CaseData, ctx: RenderContext) -> list[Block]:
    blocks: list[Block] = [heading('epcs', 14, 'EQUIPAMENTOS DE PROTEÇÃO COLETIVA (EPCs)')]
    items = epc_items(case)
    if items:
        blocks.append(table(['EPC'], [[item] for item in items], [100]))
        return blocks
    fallback = text_of(case.epcs) or text_of(case.collective_protection)
    if fallback:
        blocks.append(body(fallback))
    else:
        blocks.append(table(['EPC'], [[NOT_INFORMED]], [100]))
    return blocks


# 15 onwards


def exposure_rows(case: CaseData, config: ReportConfig, which: int) -> list[ExposureRow]:
    tables = config.analysis_tables.nr15 if which == 15 else config.analysis_tables.nr16
    if tables:
        return exposure_rows_from_table(item for item in tables if isinstance(item, dict))
    source = case.insalubrity_analysis if which == 15 else case.periculosity_analysis
    return parse_exposure_rows(source)


def _exposure_table(title: str, rows: list[ExposureRow]) -> list[Block]:
    values = [[f'Anexo {row.annex}', row.agent, row.exposure, row.obs or PLACEHOLDER_LINE] for row in rows]
    return [
        text_paragraph(title, bold=True, size=14, space_before=10, space_after=5, outline_level=2),
        table(
            ['Anexo', 'Agente', 'Exposição', 'Obs'],
            values or [empty_row(4)],
            [15, 35, 35, 15],
            centered=frozenset({0, 1, 2, 3}),
        ),
    ]


def exposure_analysis(case: CaseData, ctx: RenderContext) -> list[Block]:
    insalubrity, periculosity = ctx.include_insalubrity, ctx.include_periculosity
    if insalubrity and periculosity:
        title = 'ANÁLISES DAS EXPOSIÇÕES À INSALUBRIDADE E PERICULOSIDADE'
    elif periculosity:
        title = 'ANÁLISE DA EXPOSIÇÃO À PERICULOSIDADE'
    else:
        title = 'ANÁLISE DAS EXPOSIÇÕES À INSALUBRIDADE'
    blocks: list[Block] = [heading('exposures', 15, title)]

    nr15 = exposure_rows(case, ctx.config, 15) if insalubrity else []
    nr16 = exposure_rows(case, ctx.config, 16) if periculosity else []
    if nr15:
        blocks.extend(_exposure_table('Tabela NR-15 (Anexos e Exposição)', nr15))
    if nr16:
        blocks.extend(_exposure_table('Tabela NR-16 (Anexos e Exposição)', nr16))
    if not nr15 and not nr16:
        exposures_text = text_of(case.insalubrity_analysis)
        periculosity_text = text_of(case.periculosity_analysis)
        base = periculosity_text if periculosity and not insalubrity else exposures_text
        blocks.append(body(base or (periculosity_text if periculosity else '') or NOT_INFORMED))
    return blocks


def _results(text: str, images: list[dict[str, str]], ctx: RenderContext) -> list[Block]:
    blocks = narrative(fix_grammar(text))
    if not ctx.safe_mode:
        blocks.extend(gallery([(item['data_url'], item['caption']) for item in images], ctx))
    return blocks


def insalubrity_results(case: CaseData, ctx: RenderContext) -> list[Block]:
    number = ctx.numbers['insalubrity_results']
    blocks: list[Block] = [heading('insalubrity_results', number, 'RESULTADOS DAS AVALIAÇÕES REFERENTES À INSALUBRIDADE')]
    text = text_of(case.insalubrity_results) or DEFAULT_INSALUBRITY_RESULTS
    blocks.extend(_results(text, ctx.config.gallery(16), ctx))
    return blocks


def periculosity_concept(case: CaseData, ctx: RenderContext) -> list[Block]:
    return [
        heading('periculosity_concept', ctx.numbers['periculosity_concept'], 'CONCEITO DE PERICULOSIDADE'),
        body(text_of(case.periculosity_concept) or DEFAULT_PERICULOSITY_CONCEPT, kind=KIND_LEGAL),
    ]


def flammable_definition(case: CaseData, ctx: RenderContext) -> list[Block]:
    return [
        heading('flammable_definition', ctx.numbers['flammable_definition'], 'DEFINIÇÃO DE PRODUTOS INFLAMÁVEIS'),
        body(text_of(case.flammable_definition) or DEFAULT_FLAMMABLE_DEFINITION, kind=KIND_LEGAL),
    ]


def periculosity_results(case: CaseData, ctx: RenderContext) -> list[Block]:
    number = ctx.numbers['periculosity_results']
    blocks: list[Block] = [
        heading('periculosity_results', number, 'RESULTADOS DAS AVALIAÇÕES REFERENTES À PERICULOSIDADE')
    ]
    text = text_of(case.periculosity_results) or DEFAULT_PERICULOSITY_RESULTS
    blocks.extend(_results(text, ctx.config.gallery(19), ctx))
    return blocks


def quesito_source(case: CaseData, config: ReportConfig, party: str) -> list[str]:
    """Raw quesito lines of one party: questionnaire text first, then the structured list."""
    text = {
        'quesitos_claimant': config.questionnaires.claimant_text,
        'quesitos_defendant': config.questionnaires.defendant_text,
        'quesitos_judge': config.questionnaires.judge_text,
    }[party]
    if text_of(text):
        return [item for item in str(text).replace('\r', '').split('\n') if item.strip()]
    items = {
        'quesitos_claimant': case.claimant_questions,
        'quesitos_defendant': case.respondent_questions,
        'quesitos_judge': case.judge_questions,
    }[party]
    out: list[str] = []
    for item in items:
        if isinstance(item, dict):
            value = item.get('question') or item.get('pergunta') or item.get('item')
        else:
            value = item
        if text_of(value):
            out.append(text_of(value))
    return out


def quesito_paragraph(number: int, text: str) -> Paragraph:
    return Paragraph(
        runs=[Run(text=text)],
        align=ALIGN_JUSTIFY,
        space_after=6,
        line_spacing=1.5,
        kind=KIND_QUESITO,
        tab_stop=QUESITO_TAB_PT,
        prefix=f'{number})',
    )


def quesitos(case: CaseData, ctx: RenderContext) -> list[Block]:
    number = ctx.numbers['quesitos']
    blocks: list[Block] = [heading('quesitos', number, 'QUESITOS DA PERÍCIA')]
    for key, index, title in QUESITO_PARTIES:
        lines = quesito_source(case, ctx.config, key)
        blocks.append(subheading(key, f'{number}.{index}', title, outline=bool(lines)))
        if not lines:
            blocks.append(body(NOT_INFORMED))
            continue
        for idx, raw in enumerate(lines, start=1):
            num, text = parse_quesito_line(raw, idx)
            blocks.append(quesito_paragraph(num, text))
        blocks.append(Spacer(5))
    return blocks


def conclusion(case: CaseData, ctx: RenderContext) -> list[Block]:
    identity = header_identity(case, ctx.config)
    blocks: list[Block] = [
        heading('conclusion', ctx.numbers['conclusion'], 'CONCLUSÃO'),
        body(text_of(case.conclusion) or DEFAULT_CONCLUSION),
        text_paragraph(
            f'{ctx.conclusion_city}, {format_br_date(ctx.today)}',
            align=ALIGN_CENTER,
            space_before=15,
            space_after=15,
        ),
    ]
    signature = ctx.config.signature
    image = ctx.image(signature.image_ref)
    if image is not None:
        width = float(signature.image_width or SIGNATURE_WIDTH_PT)
        height = float(signature.image_height or image.height_for(width, SIGNATURE_FALLBACK_HEIGHT_PT))
        blocks.append(
            ImageBlock(image=image, width_pt=width, height_pt=height, align=signature.image_align or ALIGN_CENTER)
        )
    blocks.extend(signature_block(identity))
    return blocks
