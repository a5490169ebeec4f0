from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, timedelta

MONTH_STEPS = {
    "monthly": 1,
    "quarterly": 3,
    "semi_annual": 6,
    "annual": 12,
}

START_MONTH_RECURRENCES = frozenset({"quarterly", "semi_annual", "annual"})

# Upper bound on month steps when walking towards the window start.
_MAX_MONTH_STEPS = 120


@dataclass(frozen=True)
class RecurrenceLimits:
    """How many due dates a single materialization may produce per cadence."""

    one_time: int = 1
    weekly: int = 18
    biweekly: int = 12
    monthly: int = 8
    quarterly: int = 8
    semi_annual: int = 6
    annual: int = 4

    def cap_for(self, recurrence_type: str) -> int:
        try:
            return getattr(self, recurrence_type)
        except AttributeError:
            raise ValueError(f"Unsupported recurrence_type: {recurrence_type}") from None


DEFAULT_RECURRENCE_LIMITS = RecurrenceLimits()


@dataclass(frozen=True)
class RecurrenceSpec:
    recurrence_type: str
    due_day: int | None = None
    due_weekday: int | None = None
    specific_due_date: date | None = None
    start_month: int | None = None


def sunday_based_weekday(value: date) -> int:
    """Weekday number with Sunday as 0 and Saturday as 6."""
    return (value.weekday() + 1) % 7


def _days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def _add_months(year: int, month: int, offset: int) -> tuple[int, int]:
    zero_based = (year * 12 + (month - 1)) + offset
    return zero_based // 12, (zero_based % 12) + 1


def _clamped_month_date(year: int, month: int, day_of_month: int) -> date:
    return date(year, month, min(day_of_month, _days_in_month(year, month)))


def _generate_weekday_steps(
    weekday: int, range_start: date, range_end: date, step_days: int, cap: int
) -> list[date]:
    current = range_start + timedelta(days=(weekday - sunday_based_weekday(range_start) + 7) % 7)
    results: list[date] = []
    while current <= range_end and len(results) < cap:
        results.append(current)
        current += timedelta(days=step_days)
    return results


def _generate_month_steps(spec: RecurrenceSpec, range_start: date, range_end: date, cap: int) -> list[date]:
    step = MONTH_STEPS[spec.recurrence_type]
    day_of_month = spec.due_day or 0
    if day_of_month <= 0:
        return []

    year = range_start.year
    month = range_start.month
    if spec.recurrence_type in START_MONTH_RECURRENCES and spec.start_month is not None:
        # start_month is zero based (January == 0).
        month = spec.start_month + 1
        if month < range_start.month:
            year += 1

    offset = 0
    current = _clamped_month_date(year, month, day_of_month)
    while current < range_start and offset < _MAX_MONTH_STEPS:
        offset += step
        current = _clamped_month_date(*_add_months(year, month, offset), day_of_month)

    results: list[date] = []
    guard = 0
    while current <= range_end and len(results) < cap and guard < _MAX_MONTH_STEPS:
        results.append(current)
        offset += step
        guard += 1
        current = _clamped_month_date(*_add_months(year, month, offset), day_of_month)
    return results


def generate_due_dates(
    spec: RecurrenceSpec,
    *,
    range_start: date,
    range_end: date,
    limits: RecurrenceLimits = DEFAULT_RECURRENCE_LIMITS,
) -> list[date]:
    if range_end < range_start:
        return []

    cap = limits.cap_for(spec.recurrence_type)

    if spec.recurrence_type == "one_time":
        due = spec.specific_due_date
        if due is not None and range_start <= due <= range_end and cap > 0:
            return [due]
        return []

    if spec.recurrence_type in {"weekly", "biweekly"}:
        if spec.due_weekday is None:
            return []
        step_days = 7 if spec.recurrence_type == "weekly" else 14
        return _generate_weekday_steps(spec.due_weekday, range_start, range_end, step_days, cap)

    return _generate_month_steps(spec, range_start, range_end, cap)
