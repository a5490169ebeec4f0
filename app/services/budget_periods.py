from __future__ import annotations

import calendar
import json
from dataclasses import dataclass
from datetime import date, timedelta

from app.services.recurrence_engine import sunday_based_weekday

BUDGET_CYCLE_FREQUENCIES = ("weekly", "biweekly", "semi-monthly", "monthly")
DEFAULT_SEMI_MONTHLY_DAYS = (1, 15)
DEFAULT_WEEKLY_START_DAY = 0
DEFAULT_BIWEEKLY_START_DAY = 5


@dataclass(frozen=True)
class BudgetScheduleSettings:
    frequency: str = "monthly"
    start_day: int | None = None
    reference_date: date | None = None
    semi_monthly_days: str | None = "[1, 15]"
    rollover: bool = False
    manual_amount_cents: int | None = None


DEFAULT_BUDGET_SCHEDULE = BudgetScheduleSettings()


@dataclass(frozen=True)
class BudgetPeriod:
    start: date
    end: date
    period_number: int
    periods_in_month: int

    def contains(self, value: date) -> bool:
        return self.start <= value <= self.end


def _days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def _shift_month(value: date, months: int) -> tuple[int, int]:
    zero_based = value.year * 12 + (value.month - 1) + months
    return zero_based // 12, (zero_based % 12) + 1


def _day_in_month(year: int, month: int, day: int) -> date:
    return date(year, month, max(1, min(day, _days_in_month(year, month))))


def parse_semi_monthly_days(raw: str | None) -> tuple[int, int]:
    """Two ascending pay days from a JSON list; anything unreadable falls back to the 1st and 15th."""
    if not raw:
        return DEFAULT_SEMI_MONTHLY_DAYS
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        return DEFAULT_SEMI_MONTHLY_DAYS
    if not isinstance(parsed, list) or len(parsed) < 2:
        return DEFAULT_SEMI_MONTHLY_DAYS
    days: list[int] = []
    for item in parsed:
        try:
            number = int(item)
        except (TypeError, ValueError):
            continue
        if 1 <= number <= 31:
            days.append(number)
    if len(days) < 2:
        return DEFAULT_SEMI_MONTHLY_DAYS
    return min(days[0], days[1]), max(days[0], days[1])


def _weekly_period(settings: BudgetScheduleSettings, today: date) -> BudgetPeriod:
    start_day = settings.start_day if settings.start_day is not None else DEFAULT_WEEKLY_START_DAY
    current_day = sunday_based_weekday(today)
    if current_day >= start_day:
        period_start = today - timedelta(days=current_day - start_day)
    else:
        period_start = today - timedelta(days=7 - (start_day - current_day))

    period_number = (period_start - today.replace(day=1)).days // 7 + 1
    return BudgetPeriod(
        start=period_start,
        end=period_start + timedelta(days=6),
        period_number=period_number,
        periods_in_month=4,
    )


def _biweekly_period(settings: BudgetScheduleSettings, today: date) -> BudgetPeriod:
    start_day = settings.start_day if settings.start_day is not None else DEFAULT_BIWEEKLY_START_DAY
    if settings.reference_date is not None:
        reference = settings.reference_date
    else:
        reference = today + timedelta(days=start_day - sunday_based_weekday(today))
        if reference > today:
            reference -= timedelta(days=7)

    weeks_since_reference = (today - reference).days // 7
    period_start = reference + timedelta(weeks=(weeks_since_reference // 2) * 2)
    return BudgetPeriod(
        start=period_start,
        end=period_start + timedelta(days=13),
        period_number=1 if period_start.day <= 15 else 2,
        periods_in_month=2,
    )


def _semi_monthly_period(settings: BudgetScheduleSettings, today: date) -> BudgetPeriod:
    first_day, second_day = parse_semi_monthly_days(settings.semi_monthly_days)
    last_day = _days_in_month(today.year, today.month)
    effective_second = min(second_day, last_day)

    if first_day <= today.day < effective_second:
        return BudgetPeriod(
            start=_day_in_month(today.year, today.month, first_day),
            end=_day_in_month(today.year, today.month, effective_second - 1),
            period_number=1,
            periods_in_month=2,
        )

    if today.day >= effective_second:
        if first_day == 1:
            end = date(today.year, today.month, last_day)
        else:
            end = _day_in_month(*_shift_month(today, 1), first_day - 1)
        return BudgetPeriod(
            start=date(today.year, today.month, effective_second),
            end=end,
            period_number=2,
            periods_in_month=2,
        )

    # Before the first split day: still inside the previous month's second half.
    return BudgetPeriod(
        start=_day_in_month(*_shift_month(today, -1), effective_second),
        end=_day_in_month(today.year, today.month, first_day - 1),
        period_number=2,
        periods_in_month=2,
    )


def _monthly_period(today: date) -> BudgetPeriod:
    return BudgetPeriod(
        start=today.replace(day=1),
        end=date(today.year, today.month, _days_in_month(today.year, today.month)),
        period_number=1,
        periods_in_month=1,
    )


def get_current_budget_period(settings: BudgetScheduleSettings, reference_date: date) -> BudgetPeriod:
    if settings.frequency == "weekly":
        return _weekly_period(settings, reference_date)
    if settings.frequency == "biweekly":
        return _biweekly_period(settings, reference_date)
    if settings.frequency == "semi-monthly":
        return _semi_monthly_period(settings, reference_date)
    return _monthly_period(reference_date)


def get_next_budget_period(settings: BudgetScheduleSettings, after: date) -> BudgetPeriod:
    current = get_current_budget_period(settings, after)
    return get_current_budget_period(settings, current.end + timedelta(days=1))


def get_period_by_offset(settings: BudgetScheduleSettings, offset: int, *, today: date) -> BudgetPeriod:
    period = get_current_budget_period(settings, today)
    if offset > 0:
        for _ in range(offset):
            period = get_next_budget_period(settings, period.end)
    elif offset < 0:
        for _ in range(-offset):
            period = get_current_budget_period(settings, period.start - timedelta(days=1))
    return period


def due_date_matches_period_month(due_date: date, period: BudgetPeriod) -> bool:
    due_month = (due_date.year, due_date.month)
    return due_month in {(period.start.year, period.start.month), (period.end.year, period.end.month)}


def instance_belongs_to_period(
    *,
    due_date: date,
    settings: BudgetScheduleSettings,
    period: BudgetPeriod,
    bill_period_assignment: int | None,
    instance_period_override: int | None,
) -> bool:
    assigned = instance_period_override if instance_period_override is not None else bill_period_assignment
    if assigned is not None and settings.frequency != "monthly":
        return assigned == period.period_number and due_date_matches_period_month(due_date, period)
    return period.contains(due_date)


def validate_budget_schedule_settings(
    *,
    frequency: str | None = None,
    start_day: int | None = None,
    semi_monthly_days: str | None = None,
    manual_amount_cents: int | None = None,
) -> list[str]:
    errors: list[str] = []

    if frequency is not None and frequency not in BUDGET_CYCLE_FREQUENCIES:
        errors.append(f"Invalid budget cycle frequency: {frequency}")

    if start_day is not None and not 0 <= start_day <= 6:
        errors.append("Budget cycle start day must be between 0 (Sunday) and 6 (Saturday)")

    if semi_monthly_days:
        try:
            days = json.loads(semi_monthly_days)
        except ValueError:
            errors.append("Semi-monthly days must be valid JSON")
        else:
            if not isinstance(days, list) or len(days) != 2 or not all(isinstance(d, int) for d in days):
                errors.append("Semi-monthly days must be an array of 2 numbers")
            else:
                first, second = days
                if not (1 <= first <= 31 and 1 <= second <= 31):
                    errors.append("Semi-monthly days must be between 1 and 31")
                if first >= second:
                    errors.append("First semi-monthly day must be less than second day")

    if manual_amount_cents is not None and manual_amount_cents < 0:
        errors.append("Manual budget amount cannot be negative")

    return errors
