from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Callable

from laudo.adapters.images import ImageResolver, ResolvedImage
from laudo.config import get_settings
from laudo.normalizer import is_placeholder_text
from laudo.periods import build_employment_period, effective_period, evaluate_deliveries
from laudo.report import sections
from laudo.report.blocks import Block, SectionMarker
from laudo.types import CaseData, FooterConfig, HeaderConfig, ReportConfig, ReportType, SignatureConfig

logger = logging.getLogger(__name__)

FIRST_DYNAMIC_SECTION = 16

_FIXED_TOC = (
    ('identifications', '1 - Identificações'),
    ('claimant', '2 - Dados da Reclamante'),
    ('defendant', '3 - Dados da Reclamada'),
    ('objective', '4 - Objetivo'),
    ('initial', '5 - Dados da Inicial'),
    ('defense', '6 - Dados da Contestação da Reclamada'),
    ('diligences', '7 - Diligências / Vistorias'),
    ('attendees', '8 - Acompanhantes / Entrevistados'),
    ('methodology', '9 - Metodologia de Avaliação'),
    ('documents', '10 - Documentações Apresentadas'),
    ('workplace', '11 - Características do Local de Trabalho'),
    ('activities', '12 - Atividades da(o) Reclamante'),
    ('photos', '12.1 - Registro fotográfico'),
    ('discordances', '12.2 - Discordâncias apresentadas pela reclamada'),
    ('epis', '13 - Equipamentos de Proteção Individual (EPIs)'),
    ('epcs', '14 - Equipamentos de Proteção Coletiva'),
    ('exposures', '15 - Análise das exposições'),
)
_DYNAMIC_TOC = {
    'insalubrity_results': 'Resultados das avaliações referentes à insalubridade',
    'periculosity_concept': 'Conceito de Periculosidade',
    'flammable_definition': 'Definição de produtos inflamáveis',
    'periculosity_results': 'Resultados das avaliações referentes à Periculosidade',
    'quesitos': 'Quesitos da Perícia',
    'conclusion': 'Conclusão',
}
_QUESITO_TOC = {
    'quesitos_claimant': 'Quesitos da Reclamante',
    'quesitos_defendant': 'Quesitos da Reclamada',
    'quesitos_judge': 'Quesitos do Juíz(a)',
}
_SUB_LEVEL_KEYS = {'photos', 'discordances'}

SectionBuilder = Callable[[CaseData, sections.RenderContext], list[Block]]

_FIXED_BUILDERS: tuple[SectionBuilder, ...] = (
    sections.identifications,
    sections.claimant_data,
    sections.defendant_data,
    sections.objective,
    sections.initial_data,
    sections.defense_data,
    sections.diligences,
    sections.attendees,
    sections.methodology,
    sections.documents,
    sections.workplace,
    sections.activities,
    sections.photo_register,
    sections.discordances,
    sections.epis,
    sections.epcs,
    sections.exposure_analysis,
)


@dataclass(frozen=True)
class TocEntry:
    key: str
    title: str
    level: int = 1


@dataclass(frozen=True)
class InclusionDecision:
    report_type: ReportType
    insalubrity: bool
    periculosity: bool


@dataclass
class BandImage:
    """Header, footer or signature settings together with the image they point at."""

    config: HeaderConfig | FooterConfig | SignatureConfig
    image: ResolvedImage | None = None

    @property
    def fill_page(self) -> bool:
        return bool(self.config.fill_page)


@dataclass
class AssembledReport:
    config: ReportConfig
    inclusion: InclusionDecision
    identity: sections.PeritoIdentity
    cover: list[Block]
    body: list[Block]
    numbers: dict[str, int]
    toc_entries: list[TocEntry]
    header: BandImage
    footer: BandImage
    signature: BandImage
    include_toc: bool = True
    safe_mode: bool = False
    images: dict[str, ResolvedImage | None] = field(default_factory=dict)

    @property
    def markers(self) -> list[SectionMarker]:
        return [block for block in self.body if isinstance(block, SectionMarker)]


def _marked(rows: list[dict]) -> bool:
    return any(
        str(row.get('exposure') or '').strip().lower() in {'em análise', 'em analise', 'ocorre exposição', 'ocorre exposicao'}
        for row in rows
        if isinstance(row, dict)
    )


def decide_inclusion(case: CaseData, config: ReportConfig, report_type: ReportType | str | None = None) -> InclusionDecision:
    """Resolve the report type and which of the insalubrity/periculosity blocks are rendered."""
    flags = config.flags
    nr15 = config.analysis_tables.nr15
    nr16 = config.analysis_tables.nr16
    nr15_marked = _marked(nr15)
    nr16_marked = _marked(nr16)

    insalubrity_data = nr15_marked or any(
        not is_placeholder_text(value) for value in (case.insalubrity_analysis, case.insalubrity_results)
    )
    periculosity_data = nr16_marked or any(
        not is_placeholder_text(value)
        for value in (
            case.periculosity_analysis,
            case.periculosity_concept,
            case.periculosity_results,
            case.flammable_definition,
        )
    )

    resolved = ReportType.coerce(report_type) or ReportType.coerce(flags.report_type)
    if resolved is None:
        if flags.show_nr15_item15 is True and flags.show_nr16_item15 is False:
            resolved = ReportType.insalubridade
        elif flags.show_nr16_item15 is True and flags.show_nr15_item15 is False:
            resolved = ReportType.periculosidade
        elif insalubrity_data and not periculosity_data:
            resolved = ReportType.insalubridade
        elif periculosity_data and not insalubrity_data:
            resolved = ReportType.periculosidade
        else:
            resolved = ReportType.completo

    insalubrity = resolved in {ReportType.insalubridade, ReportType.completo}
    # a filled NR-16 table with nothing marked means "no exposure"
    explicitly_unmarked = bool(nr16) and not nr16_marked
    periculosity = (
        resolved in {ReportType.periculosidade, ReportType.completo}
        and not explicitly_unmarked
        and periculosity_data
    )
    if not insalubrity and not periculosity:
        insalubrity = True
    return InclusionDecision(report_type=resolved, insalubrity=insalubrity, periculosity=periculosity)


def section_numbers(inclusion: InclusionDecision) -> dict[str, int]:
    numbers: dict[str, int] = {}
    counter = FIRST_DYNAMIC_SECTION
    keys: list[str] = []
    if inclusion.insalubrity:
        keys.append('insalubrity_results')
    if inclusion.periculosity:
        keys.extend(['periculosity_concept', 'flammable_definition', 'periculosity_results'])
    keys.extend(['quesitos', 'conclusion'])
    for key in keys:
        numbers[key] = counter
        counter += 1
    return numbers


def build_toc(numbers: dict[str, int], quesito_parties: list[str]) -> list[TocEntry]:
    entries = [TocEntry(key, title, 2 if key in _SUB_LEVEL_KEYS else 1) for key, title in _FIXED_TOC]
    for key, title in _DYNAMIC_TOC.items():
        if key not in numbers:
            continue
        entries.append(TocEntry(key, f'{numbers[key]} - {title}'))
        if key != 'quesitos':
            continue
        for party, index, _ in sections.QUESITO_PARTIES:
            if party in quesito_parties:
                entries.append(TocEntry(party, f'{numbers[key]}.{index} - {_QUESITO_TOC[party]}', 2))
    return entries


def image_refs(case: CaseData, config: ReportConfig, *, photo_bucket: str = sections.DEFAULT_PHOTO_BUCKET) -> list[str]:
    refs: list[str | None] = [config.header.image_ref, config.footer.image_ref, config.signature.image_ref]
    for photo in config.photo_register:
        if isinstance(photo, dict):
            refs.append(sections.photo_ref(photo, photo_bucket))
    refs.extend(item['data_url'] for item in config.gallery(16))
    refs.extend(item['data_url'] for item in config.gallery(19))
    return [ref for ref in refs if ref]


async def assemble_report(
    case: CaseData,
    *,
    resolver: ImageResolver,
    report_type: ReportType | str | None = None,
    today: date | None = None,
    conclusion_city: str | None = None,
    photo_bucket: str | None = None,
) -> AssembledReport:
    """Build the format-neutral report: cover, numbered body and table of contents."""
    config = case.config
    inclusion = decide_inclusion(case, config, report_type)
    numbers = section_numbers(inclusion)
    safe_mode = config.flags.safe_mode
    photo_bucket = photo_bucket or get_settings().storage_photo_bucket

    images: dict[str, ResolvedImage | None] = {}
    if not safe_mode:
        images = await resolver.resolve_many(image_refs(case, config, photo_bucket=photo_bucket))
        missing = sum(1 for image in images.values() if image is None)
        if missing:
            logger.warning('%d of %d report images could not be loaded', missing, len(images))

    employment = build_employment_period(case.positions)
    periodicity = config.epi_replacement_periodicity
    period = effective_period(
        employment,
        imprescrito_only=periodicity.imprescrito_only,
        distribution_date=case.distribution_date,
    )
    evaluations = evaluate_deliveries(periodicity.rows, periodicity.useful_life_items, period) if periodicity.enabled else []

    ctx = sections.RenderContext(
        config=config,
        today=today or date.today(),
        include_insalubrity=inclusion.insalubrity,
        include_periculosity=inclusion.periculosity,
        numbers=numbers,
        employment=employment,
        period=period,
        evaluations=evaluations,
        images=images,
        conclusion_city=conclusion_city or get_settings().conclusion_city,
        photo_bucket=photo_bucket,
    )

    body: list[Block] = []
    for builder in _FIXED_BUILDERS:
        body.extend(builder(case, ctx))
    if inclusion.insalubrity:
        body.extend(sections.insalubrity_results(case, ctx))
    if inclusion.periculosity:
        body.extend(sections.periculosity_concept(case, ctx))
        body.extend(sections.flammable_definition(case, ctx))
        body.extend(sections.periculosity_results(case, ctx))
    body.extend(sections.quesitos(case, ctx))
    body.extend(sections.conclusion(case, ctx))

    quesito_parties = [
        party for party, _, _ in sections.QUESITO_PARTIES if sections.quesito_source(case, config, party)
    ]

    def band(cfg: HeaderConfig | FooterConfig | SignatureConfig) -> BandImage:
        return BandImage(config=cfg, image=ctx.image(cfg.image_ref))

    logger.info(
        'assembled report type=%s insalubrity=%s periculosity=%s sections=%s',
        inclusion.report_type.value,
        inclusion.insalubrity,
        inclusion.periculosity,
        numbers,
    )
    return AssembledReport(
        config=config,
        inclusion=inclusion,
        identity=sections.header_identity(case, config),
        cover=sections.cover(case, ctx),
        body=body,
        numbers=numbers,
        toc_entries=build_toc(numbers, quesito_parties),
        header=band(config.header),
        footer=band(config.footer),
        signature=band(config.signature),
        include_toc=config.flags.include_toc,
        safe_mode=safe_mode,
        images=images,
    )
