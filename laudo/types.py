from __future__ import annotations

import copy
import json
import logging
from enum import Enum
from typing import Any, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

ModelT = TypeVar('ModelT', bound=BaseModel)

_MAX_PRUNE_PASSES = 64


class CaseValidationError(ValueError):
    """Raised when a case payload cannot be interpreted as a record at all."""


class ReportType(str, Enum):
    insalubridade = 'insalubridade'
    periculosidade = 'periculosidade'
    completo = 'completo'

    @classmethod
    def coerce(cls, value: Any) -> 'ReportType | None':
        token = str(value or '').strip().lower()
        for member in cls:
            if member.value == token:
                return member
        return None


def text_of(value: Any) -> str:
    if value is None:
        return ''
    if isinstance(value, str):
        return value.strip()
    return str(value).strip()


def load_json_object(raw: Any) -> dict[str, Any]:
    """Accept a dict or a JSON-encoded dict; anything else becomes ``{}``."""
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, (str, bytes)):
        token = raw.strip() if isinstance(raw, str) else raw.decode('utf-8', errors='replace').strip()
        if not token:
            return {}
        try:
            parsed = json.loads(token)
        except (TypeError, ValueError):
            logger.debug('Discarding malformed JSON object payload')
            return {}
        # report_config is sometimes double-encoded
        if isinstance(parsed, str):
            return load_json_object(parsed)
        return parsed if isinstance(parsed, dict) else {}
    return {}


def _prune(data: Any, loc: tuple[Any, ...]) -> bool:
    if not loc:
        return False
    node = data
    for step in loc[:-1]:
        if isinstance(node, dict) and step in node:
            node = node[step]
        elif isinstance(node, list) and isinstance(step, int) and 0 <= step < len(node):
            node = node[step]
        else:
            return False
    last = loc[-1]
    if isinstance(node, dict) and last in node:
        del node[last]
        return True
    if isinstance(node, list) and isinstance(last, int) and 0 <= last < len(node):
        del node[last]
        return True
    return False


def validate_leniently(model_cls: type[ModelT], data: Any) -> ModelT:
    """Validate ``data``, dropping every offending field until the model accepts it.

    Wrong-typed fields fall back to their defaults instead of failing the whole record.
    """
    if not isinstance(data, dict):
        return model_cls()
    working = copy.deepcopy(data)
    for _ in range(_MAX_PRUNE_PASSES):
        try:
            return model_cls.model_validate(working)
        except ValidationError as exc:
            pruned = False
            for error in exc.errors():
                loc = tuple(error.get('loc') or ())
                if _prune(working, loc):
                    pruned = True
                    break
            if not pruned:
                break
    logger.warning('Falling back to defaults for %s', model_cls.__name__)
    return model_cls()


class _ConfigModel(BaseModel):
    model_config = ConfigDict(extra='allow', populate_by_name=True)


class ImageBandConfig(_ConfigModel):
    image_url: str | None = Field(default=None, validation_alias=AliasChoices('imageUrl', 'image_url'))
    image_data_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices('imageDataUrl', 'image_data_url'),
    )
    image_width: float | None = Field(default=None, validation_alias=AliasChoices('imageWidth', 'image_width'))
    image_height: float | None = Field(default=None, validation_alias=AliasChoices('imageHeight', 'image_height'))
    image_align: str | None = Field(default=None, validation_alias=AliasChoices('imageAlign', 'image_align'))
    fill_page: bool | None = Field(default=None, validation_alias=AliasChoices('fillPage', 'fill_page'))

    @field_validator('image_align')
    @classmethod
    def _known_alignment(cls, value: str | None) -> str | None:
        token = str(value or '').strip().lower()
        return token if token in {'left', 'center', 'right'} else None

    @property
    def image_ref(self) -> str | None:
        data_url = text_of(self.image_data_url)
        if len(data_url) > 10:
            return data_url
        url = text_of(self.image_url)
        return url or None


class HeaderConfig(ImageBandConfig):
    perito_name: str | None = Field(default=None, validation_alias=AliasChoices('peritoName', 'perito_name'))
    professional_title: str | None = Field(
        default=None,
        validation_alias=AliasChoices('professionalTitle', 'professional_title'),
    )
    registration_number: str | None = Field(
        default=None,
        validation_alias=AliasChoices('registrationNumber', 'registration_number'),
    )
    custom_text: str | None = Field(default=None, validation_alias=AliasChoices('customText', 'custom_text'))
    spacing_below: float | None = Field(
        default=None,
        validation_alias=AliasChoices('spacingBelow', 'spacing_below'),
    )


class FooterConfig(ImageBandConfig):
    contact_email: str | None = Field(
        default=None,
        validation_alias=AliasChoices('contactEmail', 'contact_email'),
    )
    custom_text: str | None = Field(default=None, validation_alias=AliasChoices('customText', 'custom_text'))
    show_page_numbers: bool | None = Field(
        default=None,
        validation_alias=AliasChoices('showPageNumbers', 'show_page_numbers'),
    )


class SignatureConfig(ImageBandConfig):
    pass


class ReportFlags(_ConfigModel):
    include_docx_toc: bool | None = None
    docx_safe_mode: bool = False
    safe_mode_flag: bool = Field(default=False, validation_alias=AliasChoices('safeMode', 'safe_mode'))
    report_type: str | None = Field(default=None, validation_alias=AliasChoices('reportType', 'report_type'))
    show_nr15_item15: bool | None = None
    show_nr16_item15: bool | None = None

    @property
    def safe_mode(self) -> bool:
        return bool(self.docx_safe_mode or self.safe_mode_flag)

    @property
    def include_toc(self) -> bool:
        return self.include_docx_toc is not False


class AnalysisTables(_ConfigModel):
    nr15: list[dict[str, Any]] = Field(default_factory=list)
    nr16: list[dict[str, Any]] = Field(default_factory=list)


class TrainingAudit(_ConfigModel):
    training_evidence: bool | None = None
    ca_certificate: bool | None = None
    inspection: bool | None = None
    training_observation: str | None = None
    inspection_observation: str | None = None


class EpiReplacementConfig(_ConfigModel):
    enabled: bool = False
    text: str | None = None
    rows: list[dict[str, Any]] = Field(default_factory=list)
    useful_life_items: list[dict[str, Any]] = Field(default_factory=list)
    training_audit: TrainingAudit = Field(default_factory=TrainingAudit)
    imprescrito_only: bool = False

    @field_validator('training_audit', mode='before')
    @classmethod
    def _decode_training_audit(cls, value: Any) -> Any:
        return validate_leniently(TrainingAudit, load_json_object(value))


class Questionnaires(_ConfigModel):
    claimant_text: str | None = Field(default=None, validation_alias=AliasChoices('claimantText', 'claimant_text'))
    defendant_text: str | None = Field(
        default=None,
        validation_alias=AliasChoices('defendantText', 'defendant_text'),
    )
    judge_text: str | None = Field(default=None, validation_alias=AliasChoices('judgeText', 'judge_text'))


class ReportConfig(_ConfigModel):
    header: HeaderConfig = Field(default_factory=HeaderConfig)
    footer: FooterConfig = Field(default_factory=FooterConfig)
    signature: SignatureConfig = Field(default_factory=SignatureConfig)
    flags: ReportFlags = Field(default_factory=ReportFlags)
    analysis_tables: AnalysisTables = Field(default_factory=AnalysisTables)
    epi_replacement_periodicity: EpiReplacementConfig = Field(default_factory=EpiReplacementConfig)
    questionnaires: Questionnaires = Field(default_factory=Questionnaires)
    photo_register: list[dict[str, Any]] = Field(default_factory=list)
    item16_images: list[dict[str, Any]] = Field(default_factory=list)
    item16_image_data_url: str | None = Field(default=None, validation_alias='item16_imageDataUrl')
    item16_image_caption: str | None = Field(default=None, validation_alias='item16_imageCaption')
    item19_images: list[dict[str, Any]] = Field(default_factory=list)
    item19_image_data_url: str | None = Field(default=None, validation_alias='item19_imageDataUrl')
    item19_image_caption: str | None = Field(default=None, validation_alias='item19_imageCaption')

    def gallery(self, item: int) -> list[dict[str, str]]:
        """Normalized ``{data_url, caption}`` entries of the item 16/19 image gallery."""
        images = self.item16_images if item == 16 else self.item19_images
        legacy_url = text_of(self.item16_image_data_url if item == 16 else self.item19_image_data_url)
        legacy_caption = text_of(self.item16_image_caption if item == 16 else self.item19_image_caption)
        source: list[dict[str, Any]] = images or ([{'dataUrl': legacy_url, 'caption': legacy_caption}] if legacy_url else [])
        out: list[dict[str, str]] = []
        for entry in source:
            data_url = text_of(entry.get('dataUrl') or entry.get('data_url'))
            if not data_url:
                continue
            out.append({'data_url': data_url, 'caption': text_of(entry.get('caption'))})
        return out


def parse_report_config(raw: Any) -> ReportConfig:
    """Single entry point for ``report_config``: JSON string or object, never raises."""
    return validate_leniently(ReportConfig, load_json_object(raw))


class CaseData(BaseModel):
    model_config = ConfigDict(extra='allow', populate_by_name=True)

    process_number: str | None = None
    claimant_name: str | None = None
    defendant_name: str | None = None
    court: str | None = None
    distribution_date: str | None = None

    objective: str | None = None
    methodology: str | None = None
    activities_description: str | None = None
    initial_data: str | None = None
    defense_data: str | None = None
    conclusion: str | None = None

    insalubrity_analysis: str | None = Field(
        default=None,
        validation_alias=AliasChoices('insalubrity_analysis', 'analise_exposicoes'),
    )
    insalubrity_results: str | None = None
    periculosity_analysis: str | None = None
    periculosity_results: str | None = None
    periculosity_concept: str | None = None
    flammable_definition: str | None = None

    collective_protection: str | None = None
    epcs: str | None = Field(default=None, validation_alias=AliasChoices('epcs', 'epc'))
    epi_intro: str | None = Field(default=None, validation_alias=AliasChoices('epi_intro', 'epi_introduction'))
    epis: Any = None

    cover_data: dict[str, Any] = Field(default_factory=dict)
    identifications: dict[str, Any] = Field(default_factory=dict)
    claimant_data: Any = None
    defendant_data: Any = None
    workplace_characteristics: Any = Field(
        default=None,
        validation_alias=AliasChoices(
            'workplace_characteristics',
            'caracteristicas_local',
            'workplace',
            'local_characteristics',
        ),
    )
    attendees: Any = Field(default=None, validation_alias=AliasChoices('attendees', 'acompanhamento'))
    diligence_data: list[dict[str, Any]] = Field(default_factory=list)
    documents_presented: list[Any] = Field(default_factory=list)
    discordances_presented: Any = Field(
        default=None,
        validation_alias=AliasChoices('discordances_presented', 'discordancias_apresentadas'),
    )

    claimant_questions: list[Any] = Field(
        default_factory=list,
        validation_alias=AliasChoices('claimant_questions', 'quesitos_reclamante'),
    )
    respondent_questions: list[Any] = Field(
        default_factory=list,
        validation_alias=AliasChoices('respondent_questions', 'quesitos_reclamada'),
    )
    judge_questions: list[Any] = Field(
        default_factory=list,
        validation_alias=AliasChoices('judge_questions', 'quesitos_juiz'),
    )

    inspection_date: str | None = None
    inspection_address: str | None = None
    inspection_time: str | None = None
    inspection_city: str | None = None

    report_config: Any = None

    @field_validator('cover_data', 'identifications', mode='before')
    @classmethod
    def _object_or_empty(cls, value: Any) -> Any:
        return load_json_object(value)

    @classmethod
    def from_payload(cls, payload: Any) -> 'CaseData':
        if isinstance(payload, CaseData):
            return payload
        if isinstance(payload, (str, bytes)):
            try:
                payload = json.loads(payload)
            except ValueError as exc:
                raise CaseValidationError(f'case payload is not valid JSON: {exc}') from exc
        if not isinstance(payload, dict):
            raise CaseValidationError('case payload must be a JSON object')
        return validate_leniently(cls, payload)

    @property
    def config(self) -> ReportConfig:
        return parse_report_config(self.report_config)

    @property
    def claimant_record(self) -> dict[str, Any]:
        return load_json_object(self.claimant_data)

    @property
    def positions(self) -> list[dict[str, Any]]:
        raw = self.claimant_record.get('positions')
        if not isinstance(raw, list):
            return []
        return [item for item in raw if isinstance(item, dict)]
