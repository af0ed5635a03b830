from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import Any

from laudo.adapters.images import ImageResolver
from laudo.adapters.object_storage import ObjectStorageAdapter, ObjectStorageConfig
from laudo.config import Settings, get_settings
from laudo.report.assembler import AssembledReport, assemble_report
from laudo.report.docx_renderer import render_docx
from laudo.report.pdf_renderer import render_pdf, resolve_report_fonts
from laudo.types import CaseData, ReportType

logger = logging.getLogger(__name__)

DOCX_MEDIA_TYPE = 'application/vnd.openxmlformats-officedocument.wordprocessingml.document'
PDF_MEDIA_TYPE = 'application/pdf'
FORMATS = ('docx', 'pdf')

_FILENAME_UNSAFE_RE = re.compile(r'[^a-zA-Z0-9\-_.]')


class ReportExportError(RuntimeError):
    """Raised when a document could not be produced; the cause is logged, not exposed."""


@dataclass(frozen=True)
class ExportResult:
    filename: str
    content: bytes
    media_type: str


def build_report_filename(case: CaseData | dict[str, Any], fmt: str, *, today: date | None = None) -> str:
    case = CaseData.from_payload(case)
    number = str(case.identifications.get('processNumber') or case.process_number or '').strip()
    token = _FILENAME_UNSAFE_RE.sub('_', number) if number else 'processo'
    stamp = (today or date.today()).isoformat()
    return f'laudo_{token}_{stamp}.{fmt}'


def build_object_storage(settings: Settings | None = None) -> ObjectStorageAdapter:
    settings = settings or get_settings()
    return ObjectStorageAdapter(
        ObjectStorageConfig(
            base_url=settings.storage_url,
            api_key=settings.storage_key,
            signed_url_ttl_seconds=settings.storage_signed_url_ttl_seconds,
            timeout_seconds=settings.storage_timeout_seconds,
        )
    )


def build_image_resolver(settings: Settings | None = None, *, safe_mode: bool = False, transport=None) -> ImageResolver:
    settings = settings or get_settings()
    return ImageResolver(
        storage=build_object_storage(settings),
        timeout_seconds=settings.image_fetch_timeout_seconds,
        max_bytes=settings.max_image_bytes,
        safe_mode=safe_mode,
        transport=transport,
    )


async def _assemble(
    case: CaseData,
    *,
    report_type: ReportType | str | None,
    resolver: ImageResolver | None,
    today: date | None,
) -> AssembledReport:
    settings = get_settings()
    if resolver is not None:
        return await assemble_report(
            case,
            resolver=resolver,
            report_type=report_type,
            today=today,
            conclusion_city=settings.conclusion_city,
        )
    async with build_image_resolver(settings, safe_mode=case.config.flags.safe_mode) as own:
        return await assemble_report(
            case,
            resolver=own,
            report_type=report_type,
            today=today,
            conclusion_city=settings.conclusion_city,
        )


async def export_docx(
    case: CaseData | dict[str, Any],
    *,
    report_type: ReportType | str | None = None,
    resolver: ImageResolver | None = None,
    today: date | None = None,
) -> bytes:
    try:
        case = CaseData.from_payload(case)
        report = await _assemble(case, report_type=report_type, resolver=resolver, today=today)
        return render_docx(report, font_name=get_settings().docx_font_name)
    except Exception as exc:
        logger.exception('DOCX export failed')
        raise ReportExportError('Falha na exportação do documento DOCX') from exc


async def export_pdf(
    case: CaseData | dict[str, Any],
    *,
    report_type: ReportType | str | None = None,
    resolver: ImageResolver | None = None,
    today: date | None = None,
) -> bytes:
    try:
        case = CaseData.from_payload(case)
        report = await _assemble(case, report_type=report_type, resolver=resolver, today=today)
        return render_pdf(report, fonts=resolve_report_fonts())
    except Exception as exc:
        logger.exception('PDF export failed')
        raise ReportExportError('Falha na exportação do PDF') from exc


async def export_report(
    case: CaseData | dict[str, Any],
    fmt: str,
    *,
    report_type: ReportType | str | None = None,
    resolver: ImageResolver | None = None,
    today: date | None = None,
) -> ExportResult:
    fmt = str(fmt or '').strip().lower()
    if fmt not in FORMATS:
        raise ValueError(f'unsupported report format: {fmt}')
    case = CaseData.from_payload(case)
    if fmt == 'docx':
        content = await export_docx(case, report_type=report_type, resolver=resolver, today=today)
        media_type = DOCX_MEDIA_TYPE
    else:
        content = await export_pdf(case, report_type=report_type, resolver=resolver, today=today)
        media_type = PDF_MEDIA_TYPE
    return ExportResult(
        filename=build_report_filename(case, fmt, today=today),
        content=content,
        media_type=media_type,
    )
