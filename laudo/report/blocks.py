from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union

from laudo.adapters.images import ResolvedImage

ALIGN_LEFT = 'left'
ALIGN_CENTER = 'center'
ALIGN_RIGHT = 'right'
ALIGN_JUSTIFY = 'justify'

# Paragraph kinds drive the PDF line breaker; DOCX only looks at alignment.
KIND_PLAIN = 'plain'
KIND_JUSTIFIED = 'justified'
KIND_LEGAL = 'legal'
KIND_QUESITO = 'quesito'


@dataclass
class Run:
    text: str
    bold: bool = False
    underline: bool = False
    size: float | None = None
    break_before: bool = False


@dataclass
class Paragraph:
    runs: list[Run] = field(default_factory=list)
    align: str = ALIGN_LEFT
    space_before: float = 0.0
    space_after: float = 0.0
    line_spacing: float = 1.0
    size: float = 12.0
    kind: str = KIND_PLAIN
    tab_stop: float | None = None
    prefix: str = ''
    outline_level: int | None = None

    @property
    def text(self) -> str:
        out: list[str] = []
        for run in self.runs:
            if run.break_before:
                out.append('\n')
            out.append(run.text)
        return ''.join(out)

    @property
    def bold(self) -> bool:
        return bool(self.runs) and all(run.bold for run in self.runs if run.text)


@dataclass
class ImageBlock:
    image: ResolvedImage | None
    width_pt: float
    height_pt: float
    align: str = ALIGN_CENTER
    space_before: float = 0.0
    space_after: float = 0.0
    placeholder: str = 'Imagem não disponível'


@dataclass
class TableCell:
    content: list[Union[Paragraph, ImageBlock]] = field(default_factory=list)
    header: bool = False

    @property
    def text(self) -> str:
        return '\n'.join(item.text for item in self.content if isinstance(item, Paragraph))


@dataclass
class Table:
    rows: list[list[TableCell]]
    column_widths: list[float] = field(default_factory=list)
    header_rows: int = 1
    borders: bool = True
    centered_columns: frozenset[int] = frozenset()
    gallery: bool = False

    @property
    def column_count(self) -> int:
        return max((len(row) for row in self.rows), default=0)

    def widths(self) -> list[float]:
        count = self.column_count
        if len(self.column_widths) == count and count:
            return list(self.column_widths)
        return [100.0 / count] * count if count else []


@dataclass(frozen=True)
class PageBreak:
    pass


@dataclass(frozen=True)
class SectionMarker:
    """A numbered heading; its page is what the PDF table of contents points at."""

    key: str
    number: str
    title: str
    level: int = 1
    outline: bool = True

    @property
    def text(self) -> str:
        return f'{self.number}. {self.title}' if self.level == 1 else f'{self.number} {self.title}'


@dataclass
class AnnexBox:
    title: str
    lines: list[str]
    size: float = 12.0

    @property
    def mostly_short(self) -> bool:
        return len(self.lines) >= 2 and all(len(line) <= 90 for line in self.lines)


@dataclass(frozen=True)
class Spacer:
    height: float


Block = Union[Paragraph, Table, ImageBlock, PageBreak, SectionMarker, AnnexBox, Spacer]


def text_paragraph(
    text: str,
    *,
    bold: bool = False,
    align: str = ALIGN_LEFT,
    size: float = 12.0,
    space_before: float = 0.0,
    space_after: float = 0.0,
    line_spacing: float = 1.0,
    kind: str = KIND_PLAIN,
    underline: bool = False,
    outline_level: int | None = None,
) -> Paragraph:
    """Build a paragraph whose embedded newlines become line breaks."""
    runs = [
        Run(text=line, bold=bold, underline=underline, size=size, break_before=idx > 0)
        for idx, line in enumerate(str(text).split('\n'))
    ]
    return Paragraph(
        runs=runs,
        align=align,
        space_before=space_before,
        space_after=space_after,
        line_spacing=line_spacing,
        size=size,
        kind=kind,
        outline_level=outline_level,
    )


def cell(text: str = '', *, bold: bool = False, align: str = ALIGN_LEFT, size: float = 12.0, header: bool = False) -> TableCell:
    return TableCell(
        content=[text_paragraph(text, bold=bold, align=align, size=size, line_spacing=1.5)],
        header=header,
    )


def header_row(labels: list[str]) -> list[TableCell]:
    return [cell(label, bold=True, align=ALIGN_CENTER, header=True) for label in labels]
