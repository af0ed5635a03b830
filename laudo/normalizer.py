from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Union

PLACEHOLDER_LINE = '----------'
NOT_INFORMED = 'Não informado'

_HEADING_RE = re.compile(r'^(?:Resultado\s+)?Anexo\s*(\d+)\s*[—-]\s*', re.IGNORECASE)
_INLINE_HEADING_RE = re.compile(r'(\S)\s+(Resultado\s+Anexo\s*\d+\s*[—-])', re.IGNORECASE)
_HEADING_SPLIT_RE = re.compile(r'(?=Resultado\s+Anexo\s*\d+\s*[—-])', re.IGNORECASE)
_BODY_LABELS = (
    re.compile(r'([^\n])\s+(Exposi[cç][aã]o:)', re.IGNORECASE),
    re.compile(r'([^\n])\s+(Obs:)', re.IGNORECASE),
    re.compile(r'([^\n])\s+(Observa[cç][aã]o(?:es)?:)', re.IGNORECASE),
    re.compile(r'([^\n])\s+(Enquadramento:)', re.IGNORECASE),
)

_GRAMMAR_RE = re.compile(r'(atividade[^.\n]{0,80}?)n[ãa]o\s+enquadrado', re.IGNORECASE)
_LAWYER_RE = re.compile(r'\bADVOGAD[OA]\s*:\s*[^\n]+', re.IGNORECASE)
_PLACEHOLDER_TEXT_RE = re.compile(r'^n[ãa]o\s+informado\.?$', re.IGNORECASE)

_EXPOSURE_PIPE_RE = re.compile(
    r'^[-•]\s*Anexo\s*(\d+)\s*[—-]\s*(.*?)\s*\|\s*Exposição:\s*(.*?)\s*\|\s*Obs:\s*(.*)$'
)
_EXPOSURE_PAREN_RE = re.compile(r'^[-•]\s*Anexo\s*(\d+)\s*[—-]\s*(.*?)\s*\((.*?)\)\s*(\[(.*)\])?$')
_EXPOSURE_BARE_RE = re.compile(r'^[-•]\s*Anexo\s*(\d+)\s*[—-]\s*(.*)$')
_LLM_NOTICE_RE = re.compile(r'LLM\s+não\s+configurada|LLM\s+indisponível', re.IGNORECASE)

_QUESITO_RE = re.compile(r'^\s*(\d+)\s*[).\-:]\s*(.*)$')
_MARKED_EXPOSURES = {'em análise', 'em analise', 'ocorre exposição', 'ocorre exposicao'}


@dataclass(frozen=True)
class TextChunk:
    text: str
    kind: str = 'text'


@dataclass(frozen=True)
class AnnexChunk:
    annex: int
    title: str
    lines: tuple[str, ...] = field(default_factory=tuple)
    kind: str = 'annex'

    @property
    def is_placeholder(self) -> bool:
        return len(self.lines) == 1 and self.lines[0].strip() == PLACEHOLDER_LINE


AnnexResultChunk = Union[TextChunk, AnnexChunk]


@dataclass(frozen=True)
class ExposureRow:
    annex: str
    agent: str
    exposure: str = ''
    obs: str = ''

    @property
    def is_marked(self) -> bool:
        return self.exposure.strip().lower() in _MARKED_EXPOSURES


def _annex_heading_re(annex: int, *, anchored: bool = False, with_theme: bool = False) -> re.Pattern[str]:
    prefix = '^' if anchored else r'\b'
    pattern = rf'{prefix}Anexo\s*{annex}\s*[—-]\s*'
    if with_theme:
        pattern += r'[^|\n]+'
    return re.compile(pattern, re.IGNORECASE)


def _parse_annex_block(block: str) -> AnnexResultChunk:
    lines = block.split('\n')
    first_line = lines[0].strip()
    match = _HEADING_RE.match(first_line)
    if not match:
        return TextChunk(text=block)

    annex = int(match.group(1))
    after_prefix = first_line[match.end():].strip()

    duplicate = _annex_heading_re(annex).search(after_prefix)
    if duplicate:
        theme = after_prefix[:duplicate.start()].strip()
        tail = after_prefix[duplicate.start():].strip()
        tail = _annex_heading_re(annex, anchored=True, with_theme=True).sub('', tail, count=1).strip()
        tail = re.sub(r'^\|\s*', '', tail).strip()
    elif '|' in after_prefix:
        theme, _, tail = after_prefix.partition('|')
        theme = theme.strip()
        tail = tail.strip()
    else:
        theme = after_prefix
        tail = ''

    title = f'Anexo {annex} — {theme}' if theme else f'Anexo {annex}'
    remainder = '\n'.join(lines[1:]).strip()
    body = '\n'.join(part for part in (tail, remainder) if part).strip()
    body = re.sub(r'\s*\|\s*', '\n', body)
    for label_re in _BODY_LABELS:
        body = label_re.sub(r'\1\n\2', body)

    restated = _annex_heading_re(annex, anchored=True)
    body_lines = [line.strip() for line in body.split('\n')]
    body_lines = [line for line in body_lines if line and not restated.search(line)]
    return AnnexChunk(annex=annex, title=title, lines=tuple(body_lines or [PLACEHOLDER_LINE]))


def _merge_annex_chunks(chunks: Iterable[AnnexResultChunk]) -> list[AnnexResultChunk]:
    merged: list[AnnexResultChunk] = []
    for item in chunks:
        last = merged[-1] if merged else None
        if not isinstance(item, AnnexChunk) or not isinstance(last, AnnexChunk) or last.annex != item.annex:
            merged.append(item)
            continue
        if last.lines == item.lines:
            continue
        if last.is_placeholder and not item.is_placeholder:
            merged[-1] = item
            continue
        if item.is_placeholder:
            continue
        seen = {line.strip() for line in last.lines}
        combined = list(last.lines)
        for line in item.lines:
            key = line.strip()
            if not key or key in seen:
                continue
            seen.add(key)
            combined.append(line)
        merged[-1] = AnnexChunk(annex=last.annex, title=last.title, lines=tuple(combined))
    return merged


def parse_annex_chunks(raw: str | None) -> list[AnnexResultChunk]:
    """Split result narratives into free paragraphs and ``Anexo N — tema`` blocks.

    Headings glued to the previous sentence are moved to their own block first; a
    heading that lacks the ``Anexo N —`` pattern is kept verbatim as a text chunk.
    """
    text = str(raw or '').replace('\r', '').rstrip()
    if not text.strip():
        return []

    normalized = _INLINE_HEADING_RE.sub(r'\1\n\n\2', text)
    blocks = [part.strip() for part in re.split(r'\n{2,}', normalized)]

    parsed: list[AnnexResultChunk] = []
    for block in blocks:
        if not block:
            continue
        for sub_block in _HEADING_SPLIT_RE.split(block):
            sub_block = sub_block.strip()
            if sub_block:
                parsed.append(_parse_annex_block(sub_block))
    return _merge_annex_chunks(parsed)


def render_annex_chunks(chunks: Iterable[AnnexResultChunk]) -> str:
    """Serialize chunks back to narrative text that ``parse_annex_chunks`` accepts."""
    parts: list[str] = []
    for chunk in chunks:
        if isinstance(chunk, AnnexChunk):
            theme = chunk.title.split('—', 1)[1].strip() if '—' in chunk.title else ''
            heading = f'Resultado Anexo {chunk.annex} — {theme}'.rstrip() if theme else f'Resultado Anexo {chunk.annex} —'
            parts.append(' | '.join([heading, *chunk.lines]))
        else:
            parts.append(chunk.text)
    return '\n\n'.join(parts)


def has_annex_chunks(chunks: Iterable[AnnexResultChunk]) -> bool:
    return any(isinstance(chunk, AnnexChunk) for chunk in chunks)


def fix_grammar(text: str | None) -> str:
    value = str(text or '')
    value = _GRAMMAR_RE.sub(lambda m: re.sub('enquadrado', 'enquadrada', m.group(0), flags=re.IGNORECASE), value)
    value = re.sub(r'\s{2,}', ' ', value)
    return value.strip()


def sanitize_lawyer_from_name(name: str | None) -> str:
    if not name:
        return ''
    value = _LAWYER_RE.sub('', str(name))
    value = re.sub(r'\s{2,}', ' ', value)
    return value.strip()


def is_placeholder_text(value: Any) -> bool:
    token = str(value or '').strip()
    return not token or bool(_PLACEHOLDER_TEXT_RE.match(token))


def parse_exposure_rows(text: str | None) -> list[ExposureRow]:
    """Read ``- Anexo N — agente …`` lines, most specific pattern first."""
    rows: list[ExposureRow] = []
    seen: set[ExposureRow] = set()
    for raw in str(text or '').splitlines():
        line = raw.strip()
        if not line:
            continue
        row: ExposureRow | None = None
        match = _EXPOSURE_PIPE_RE.match(line)
        if match:
            row = ExposureRow(
                annex=match.group(1),
                agent=match.group(2).strip(),
                exposure=match.group(3).strip(),
                obs=(match.group(4) or '').strip(),
            )
        else:
            match = _EXPOSURE_PAREN_RE.match(line)
            if match:
                obs = (match.group(5) or '').strip()
                if _LLM_NOTICE_RE.search(obs):
                    obs = ''
                row = ExposureRow(
                    annex=match.group(1),
                    agent=match.group(2).strip(),
                    exposure=(match.group(3) or '').strip(),
                    obs=obs,
                )
            else:
                match = _EXPOSURE_BARE_RE.match(line)
                if match:
                    row = ExposureRow(annex=match.group(1), agent=match.group(2).strip())
        if row is None or row in seen:
            continue
        seen.add(row)
        rows.append(row)
    return rows


def exposure_rows_from_table(items: Iterable[dict[str, Any]]) -> list[ExposureRow]:
    rows: list[ExposureRow] = []
    for item in items:
        rows.append(
            ExposureRow(
                annex=str(item.get('annex') if item.get('annex') is not None else '').strip(),
                agent=str(item.get('agent') if item.get('agent') is not None else '').strip(),
                exposure=str(item.get('exposure') or '').strip(),
                obs=str(item.get('obs') or '').strip(),
            )
        )
    return rows


def sanitize_legal_text(text: str | None) -> str:
    value = str(text or '')
    value = re.sub(r'[“”"]', '', value)
    value = value.replace('–', '-')
    value = re.sub(r'[^\S\r\n]+', ' ', value)
    value = re.sub(r'\s*,\s*', ', ', value)
    value = re.sub(r'\s*\.\s*', '. ', value)
    value = re.sub(r'\s*;\s*', '; ', value)
    value = re.sub(r'\s*°\s*([Cc])', r'°\1', value)
    value = re.sub(r'\s*º\s*(\d+)', r'º \1', value)
    return value.strip()


def sanitize_quesito_text(text: str | None) -> str:
    value = str(text or '')
    value = re.sub(r'[“”"]', '', value)
    value = value.replace('–', '-')
    value = re.sub(r'[\t\u00a0]', ' ', value)
    return re.sub(r'\s+', ' ', value).strip()


def parse_quesito_line(raw: str, fallback_index: int) -> tuple[int, str]:
    clean = sanitize_quesito_text(raw)
    match = _QUESITO_RE.match(clean)
    if match:
        return int(match.group(1)) or fallback_index, match.group(2) or ''
    return fallback_index, clean
