from __future__ import annotations

import calendar
import math
import re
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Iterable

DEFAULT_USEFUL_LIFE_DAYS = 180
MAX_LISTED_GAPS = 3
MAX_LISTED_CAS = 3

_BR_DATE_TOKEN_RE = re.compile(r'\b\d{2}/\d{2}/\d{4}\b')
_BR_DATE_RE = re.compile(r'^(\d{2})/(\d{2})/(\d{4})$')
_ISO_DATE_RE = re.compile(r'^(\d{4})-(\d{2})-(\d{2})')

_LIFE_UNITS = (
    (re.compile(r'(\d+)\s*(ano|anos)\b'), 365),
    (re.compile(r'(\d+)\s*(m[eê]s|meses)\b'), 30),
    (re.compile(r'(\d+)\s*(semana|semanas)\b'), 7),
    (re.compile(r'(\d+)\s*(dia|dias)\b'), 1),
)


@dataclass(frozen=True)
class EmploymentPeriod:
    start: date
    end: date
    start_label: str
    end_label: str
    days: int

    @property
    def label(self) -> str:
        return f'{self.start_label} a {self.end_label} ({diff_calendar_label(self.start, self.end)})'


@dataclass(frozen=True)
class EffectivePeriod:
    start: date | None
    end: date | None
    label: str

    @property
    def bounded(self) -> bool:
        return self.start is not None and self.end is not None


@dataclass(frozen=True)
class DateRange:
    start: date
    end: date

    @property
    def days(self) -> int:
        return diff_days(self.start, self.end)


@dataclass(frozen=True)
class DeliveryInterval:
    start: date
    end: date
    days: int
    label: str


@dataclass
class DeliveryEvaluation:
    equipment: str
    deliveries: int
    interval_label: str
    insufficient_label: str
    status: str
    basis: str
    insufficient_days: int = 0
    gaps: list[DateRange] = field(default_factory=list)


def parse_br_date(value: str) -> date | None:
    match = _BR_DATE_RE.match(str(value or '').strip())
    if not match:
        return None
    try:
        return date(int(match.group(3)), int(match.group(2)), int(match.group(1)))
    except ValueError:
        return None


def parse_iso_date(value: Any) -> date | None:
    if isinstance(value, date):
        return value
    match = _ISO_DATE_RE.match(str(value or '').strip())
    if not match:
        return None
    try:
        return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    except ValueError:
        return None


def format_br_date(value: date) -> str:
    return value.strftime('%d/%m/%Y')


def format_iso_as_br(value: Any) -> str:
    token = str(value or '').strip()
    match = _ISO_DATE_RE.match(token)
    return f'{match.group(3)}/{match.group(2)}/{match.group(1)}' if match else token


def diff_days(start: date, end: date) -> int:
    return max(0, (end - start).days)


def diff_calendar_parts(start: date, end: date) -> tuple[int, int, int]:
    if end < start:
        return 0, 0, 0
    years = end.year - start.year
    months = end.month - start.month
    days = end.day - start.day
    if days < 0:
        months -= 1
        borrow_year, borrow_month = (end.year, end.month - 1) if end.month > 1 else (end.year - 1, 12)
        days += calendar.monthrange(borrow_year, borrow_month)[1]
    if months < 0:
        years -= 1
        months += 12
    return max(0, years), max(0, months), max(0, days)


def diff_calendar_label(start: date, end: date) -> str:
    years, months, days = diff_calendar_parts(start, end)
    parts: list[str] = []
    if years:
        parts.append(f'{years} {"ano" if years == 1 else "anos"}')
    if months:
        parts.append(f'{months} {"mês" if months == 1 else "meses"}')
    if days or not parts:
        parts.append(f'{days} {"dia" if days == 1 else "dias"}')
    if len(parts) == 1:
        return parts[0]
    if len(parts) == 2:
        return f'{parts[0]} e {parts[1]}'
    return f'{parts[0]}, {parts[1]} e {parts[2]}'


def days_to_months_days_label(days: float) -> str:
    total = max(0, math.floor(days + 0.5))
    months, rest = divmod(total, 30)
    if months and rest:
        return f'{months} mês(es) e {rest} dia(s)'
    if months:
        return f'{months} mês(es)'
    return f'{rest} dia(s)'


def parse_useful_life_days(text: Any) -> int | None:
    """Convert free text such as ``"1 ano e 6 meses"`` into days; ``None`` means use the default."""
    value = str(text or '').lower()
    if not value.strip():
        return None
    total = 0
    for pattern, factor in _LIFE_UNITS:
        match = pattern.search(value)
        if match:
            total += int(match.group(1)) * factor
    return total if total > 0 else None


def _period_range(raw: Any) -> tuple[str, str, date, date] | None:
    tokens = _BR_DATE_TOKEN_RE.findall(str(raw or ''))
    if len(tokens) < 2:
        return None
    start, end = parse_br_date(tokens[0]), parse_br_date(tokens[1])
    if start is None or end is None:
        return None
    return tokens[0], tokens[1], start, end


def build_employment_period(positions: Iterable[dict[str, Any]]) -> EmploymentPeriod | None:
    start: tuple[str, date] | None = None
    end: tuple[str, date] | None = None
    for position in positions:
        found = _period_range(position.get('period') if isinstance(position, dict) else None)
        if found is None:
            continue
        start_label, end_label, start_date, end_date = found
        if start is None or start_date < start[1]:
            start = (start_label, start_date)
        if end is None or end_date > end[1]:
            end = (end_label, end_date)
    if start is None or end is None:
        return None
    return EmploymentPeriod(
        start=start[1],
        end=end[1],
        start_label=start[0],
        end_label=end[0],
        days=diff_days(start[1], end[1]),
    )


def _years_before(value: date, years: int) -> date:
    try:
        return value.replace(year=value.year - years)
    except ValueError:
        # 29/02 on a non-leap target year
        return value.replace(year=value.year - years, day=28)


def effective_period(
    employment: EmploymentPeriod | None,
    *,
    imprescrito_only: bool = False,
    distribution_date: Any = None,
) -> EffectivePeriod:
    if employment is None:
        return EffectivePeriod(start=None, end=None, label='')
    if not imprescrito_only:
        return EffectivePeriod(start=employment.start, end=employment.end, label=employment.label)
    distributed = parse_iso_date(distribution_date)
    if distributed is None:
        return EffectivePeriod(
            start=employment.start,
            end=employment.end,
            label='Período imprescrito selecionado, mas sem data de distribuição',
        )
    start = max(_years_before(distributed, 5), employment.start)
    end = employment.end
    if end <= start:
        return EffectivePeriod(start=start, end=end, label='Período imprescrito selecionado, mas sem período válido')
    span = f'{format_br_date(start)} a {format_br_date(end)} ({diff_calendar_label(start, end)})'
    return EffectivePeriod(start=start, end=end, label=f'Imprescrito (últimos 5 anos): {span}')


def _life_days_for(useful_life_items: list[dict[str, Any]], equipment: str, ca: str) -> int | None:
    for item in useful_life_items:
        if str(item.get('equipment') or '').strip() == equipment and str(item.get('ca') or '').strip() == ca:
            return parse_useful_life_days(item.get('estimated_life'))
    return None


def _basis_label(useful_life_items: list[dict[str, Any]], equipment: str, used_default: bool) -> str:
    by_ca: dict[str, int] = {}
    for item in useful_life_items:
        if str(item.get('equipment') or '').strip() != equipment:
            continue
        ca = str(item.get('ca') or '').strip()
        life = parse_useful_life_days(item.get('estimated_life'))
        if ca and life:
            by_ca[ca] = life
    if not by_ca:
        return 'Base padrão: 6 meses'
    entries = sorted(by_ca.items())
    shown = [f'CA {ca}: {days_to_months_days_label(days)}' for ca, days in entries[:MAX_LISTED_CAS]]
    suffix = f' | +{len(entries) - len(shown)}' if len(entries) > len(shown) else ''
    default_note = ' | padrão: 6 meses' if used_default else ''
    return f'Vida útil por CA: {" | ".join(shown)}{suffix}{default_note}'


def _equipment_label(equipment: str, cas: list[str]) -> str:
    distinct: list[str] = []
    for ca in cas:
        if ca and ca not in distinct:
            distinct.append(ca)
    if not distinct:
        return equipment
    if len(distinct) == 1:
        return f'{equipment} (CA {distinct[0]})'
    shown = distinct[:MAX_LISTED_CAS]
    suffix = f', +{len(distinct) - len(shown)}' if len(distinct) > len(shown) else ''
    return f'{equipment} (CAs: {", ".join(shown)}{suffix})'


def _intervals(dates: list[date]) -> list[DeliveryInterval]:
    out: list[DeliveryInterval] = []
    for prev, curr in zip(dates, dates[1:]):
        out.append(DeliveryInterval(start=prev, end=curr, days=(curr - prev).days, label=diff_calendar_label(prev, curr)))
    return out


def _interval_label(
    intervals: list[DeliveryInterval],
    *,
    bounded: bool,
    in_period: int,
    total: int,
) -> str:
    if intervals:
        if len(intervals) == 1:
            return intervals[0].label
        average = sum(item.days for item in intervals) / len(intervals)
        representative = intervals[0]
        for candidate in intervals[1:]:
            if abs(candidate.days - average) < abs(representative.days - average):
                representative = candidate
        return f'{representative.label} (média aprox.: {days_to_months_days_label(average)})'
    if bounded:
        if in_period == 0:
            return 'Sem entregas no período'
        if in_period == 1:
            return 'Apenas 1 entrega'
    return 'Apenas 1 entrega' if total else 'Não informado'


def coverage_gaps(
    deliveries: list[tuple[date, int]],
    start: date,
    end: date,
) -> list[DateRange]:
    """Stretches of ``[start, end)`` not covered by any ``[delivery, delivery + life)`` window."""
    if end <= start:
        return []
    windows: list[DateRange] = []
    for delivered, life_days in deliveries:
        window_start = max(delivered, start)
        window_end = min(delivered + timedelta(days=life_days), end)
        if window_end > window_start:
            windows.append(DateRange(window_start, window_end))
    if not windows:
        return [DateRange(start, end)]

    windows.sort(key=lambda item: item.start)
    merged: list[DateRange] = [windows[0]]
    for window in windows[1:]:
        last = merged[-1]
        if window.start <= last.end:
            if window.end > last.end:
                merged[-1] = DateRange(last.start, window.end)
            continue
        merged.append(window)

    gaps: list[DateRange] = []
    cursor = start
    for window in merged:
        if window.start > cursor:
            gaps.append(DateRange(cursor, window.start))
        if window.end > cursor:
            cursor = window.end
    if end > cursor:
        gaps.append(DateRange(cursor, end))
    return gaps


def _gap_label(gaps: list[DateRange], total_days: int, *, bounded: bool) -> str:
    if not bounded:
        return 'Não informado'
    if total_days <= 0:
        return '—'
    shown = gaps[:MAX_LISTED_GAPS]
    ranges = ' | '.join(f'{format_br_date(item.start)} a {format_br_date(item.end)}' for item in shown)
    suffix = f' | +{len(gaps) - len(shown)}' if len(gaps) > len(shown) else ''
    return f'{days_to_months_days_label(total_days)}: {ranges}{suffix}'


def evaluate_deliveries(
    rows: Iterable[dict[str, Any]],
    useful_life_items: Iterable[dict[str, Any]],
    period: EffectivePeriod,
) -> list[DeliveryEvaluation]:
    life_items = [item for item in useful_life_items if isinstance(item, dict)]
    by_equipment: dict[str, list[tuple[str, date]]] = {}
    for row in rows:
        if not isinstance(row, dict):
            continue
        equipment = str(row.get('equipment') or '').strip()
        delivered = parse_iso_date(row.get('delivery_date'))
        if not equipment or delivered is None:
            continue
        by_equipment.setdefault(equipment, []).append((str(row.get('ca') or '').strip(), delivered))

    evaluations: list[DeliveryEvaluation] = []
    for equipment, deliveries in by_equipment.items():
        ordered = sorted(deliveries, key=lambda item: item[1])
        if period.bounded:
            assert period.start is not None and period.end is not None
            in_period = [d for _, d in ordered if period.start <= d <= period.end]
            prior = [d for _, d in ordered if d < period.start]
            dates = sorted(([prior[-1]] if prior else []) + in_period)
        else:
            in_period = [d for _, d in ordered]
            dates = list(in_period)
        unique_dates = [d for idx, d in enumerate(dates) if idx == 0 or d != dates[idx - 1]]
        intervals = _intervals(unique_dates)

        life_by_delivery = [(d, _life_days_for(life_items, equipment, ca)) for ca, d in ordered]
        gaps: list[DateRange] = []
        if period.bounded:
            assert period.start is not None and period.end is not None
            gaps = coverage_gaps(
                [(d, life if life is not None else DEFAULT_USEFUL_LIFE_DAYS) for d, life in life_by_delivery],
                period.start,
                period.end,
            )
        insufficient_days = sum(gap.days for gap in gaps)
        used_default = any(life is None for _, life in life_by_delivery)

        evaluations.append(
            DeliveryEvaluation(
                equipment=_equipment_label(equipment, [ca for ca, _ in ordered]),
                deliveries=len(in_period),
                interval_label=_interval_label(
                    intervals,
                    bounded=period.bounded,
                    in_period=len(in_period),
                    total=len(ordered),
                ),
                insufficient_label=_gap_label(gaps, insufficient_days, bounded=period.bounded),
                status='Insuficiente' if insufficient_days > 0 else 'Suficiente',
                basis=_basis_label(life_items, equipment, used_default),
                insufficient_days=insufficient_days,
                gaps=gaps,
            )
        )
    evaluations.sort(key=lambda item: item.equipment)
    return evaluations
