from __future__ import annotations

from datetime import date, timedelta
import enum
import logging
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from app.db import transaction_scope
from app.models.autopay import AutopayRule
from app.models.bills import (
    BillClassification,
    BillOccurrence,
    BillOccurrenceAllocation,
    BillPaymentEvent,
    BillTemplate,
    BillType,
    DebtInterestType,
    InterestTaxDeductionType,
    RecurrenceType,
)
from app.services.errors import BillNotFoundError, BillValidationError
from app.services.occurrence_generation import OccurrenceMaterializer
from app.services.pagination import Page, normalize_limit, normalize_offset
from app.services.recurrence_engine import DEFAULT_RECURRENCE_LIMITS, RecurrenceLimits

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE_WINDOW_PAST_DAYS = 45
DEFAULT_TEMPLATE_WINDOW_FUTURE_DAYS = 180

TEMPLATE_DEFAULTS: dict[str, Any] = {
    "description": None,
    "is_active": True,
    "classification_subcategory": None,
    "recurrence_due_day": None,
    "recurrence_due_weekday": None,
    "recurrence_specific_due_date": None,
    "recurrence_start_month": None,
    "is_variable_amount": False,
    "amount_tolerance_bps": 500,
    "category_id": None,
    "merchant_id": None,
    "payment_account_id": None,
    "linked_liability_account_id": None,
    "charged_to_account_id": None,
    "auto_mark_paid": True,
    "notes": None,
    "debt_enabled": False,
    "debt_original_balance_cents": None,
    "debt_remaining_balance_cents": None,
    "debt_interest_apr_bps": None,
    "debt_interest_type": None,
    "debt_start_date": None,
    "debt_color": None,
    "include_in_payoff_strategy": True,
    "interest_tax_deductible": False,
    "interest_tax_deduction_type": InterestTaxDeductionType.NONE,
    "interest_tax_deduction_limit_cents": None,
    "budget_period_assignment": None,
    "split_across_periods": False,
}

REQUIRED_ON_CREATE = ("name", "bill_type", "classification", "recurrence_type", "default_amount_cents")
TEMPLATE_FIELDS = frozenset(TEMPLATE_DEFAULTS) | frozenset(REQUIRED_ON_CREATE)

_ENUM_FIELDS: dict[str, type[enum.Enum]] = {
    "bill_type": BillType,
    "classification": BillClassification,
    "recurrence_type": RecurrenceType,
    "debt_interest_type": DebtInterestType,
    "interest_tax_deduction_type": InterestTaxDeductionType,
}

_WEEKDAY_RECURRENCES = {RecurrenceType.WEEKLY, RecurrenceType.BIWEEKLY}
_RECURRENCE_FIELDS = (
    "recurrence_type",
    "recurrence_due_day",
    "recurrence_due_weekday",
    "recurrence_specific_due_date",
    "recurrence_start_month",
)


def _coerce_enums(fields: dict[str, Any]) -> dict[str, Any]:
    coerced = dict(fields)
    for name, enum_cls in _ENUM_FIELDS.items():
        value = coerced.get(name)
        if value is None:
            continue
        try:
            coerced[name] = enum_cls(value)
        except ValueError:
            raise BillValidationError(f"Unsupported {name}: {value}") from None
    return coerced


def _validate_recurrence(merged: dict[str, Any], touched: set[str], *, creating: bool) -> None:
    """Check recurrence parameters against the template's resulting state.

    ``touched`` holds the keys supplied by the caller; a required parameter is
    only demanded when it or the cadence itself is being set.
    """
    recurrence_type = merged.get("recurrence_type")

    def _required(field: str) -> bool:
        return creating or "recurrence_type" in touched or field in touched

    weekday = merged.get("recurrence_due_weekday")
    if weekday is not None and not 0 <= weekday <= 6:
        raise BillValidationError("recurrence_due_weekday must be between 0 and 6")
    due_day = merged.get("recurrence_due_day")
    if due_day is not None and not 1 <= due_day <= 31:
        raise BillValidationError("recurrence_due_day must be between 1 and 31")
    start_month = merged.get("recurrence_start_month")
    if start_month is not None and not 0 <= start_month <= 11:
        raise BillValidationError("recurrence_start_month must be between 0 and 11")

    if recurrence_type == RecurrenceType.ONE_TIME:
        if merged.get("recurrence_specific_due_date") is None and _required("recurrence_specific_due_date"):
            raise BillValidationError("recurrence_specific_due_date is required for one_time recurrence")
    elif recurrence_type in _WEEKDAY_RECURRENCES:
        if weekday is None and _required("recurrence_due_weekday"):
            raise BillValidationError("recurrence_due_weekday is required for weekly/biweekly recurrence")
    elif recurrence_type is not None:
        if due_day is None and _required("recurrence_due_day"):
            raise BillValidationError(f"recurrence_due_day is required for {recurrence_type} recurrence")


def validate_template_fields(
    fields: dict[str, Any],
    *,
    creating: bool,
    current: BillTemplate | None = None,
) -> dict[str, Any]:
    """Validate create or update input; updates are checked merged over ``current``."""
    unknown = set(fields) - TEMPLATE_FIELDS
    if unknown:
        raise BillValidationError(f"Unknown template fields: {', '.join(sorted(unknown))}")

    if creating:
        if not (fields.get("name") or "").strip():
            raise BillValidationError("Template name is required")
        amount = fields.get("default_amount_cents")
        if amount is None or amount < 0:
            raise BillValidationError("default_amount_cents must be >= 0")
        for required in ("bill_type", "classification", "recurrence_type"):
            if not fields.get(required):
                raise BillValidationError(f"{required} is required")
    else:
        if "name" in fields and not (fields["name"] or "").strip():
            raise BillValidationError("Template name is required")
        for required in ("bill_type", "classification", "recurrence_type", "default_amount_cents"):
            if required in fields and fields[required] is None:
                raise BillValidationError(f"{required} cannot be cleared")

    fields = _coerce_enums(fields)

    merged: dict[str, Any] = {}
    if current is not None:
        merged = {key: getattr(current, key) for key in _RECURRENCE_FIELDS}
    merged.update({key: value for key, value in fields.items() if key in _RECURRENCE_FIELDS})
    _validate_recurrence(merged, set(fields), creating=creating)

    tolerance = fields.get("amount_tolerance_bps")
    if tolerance is not None and tolerance < 0:
        raise BillValidationError("amount_tolerance_bps must be >= 0")

    return fields


def _template_window(today: date, past_days: int, future_days: int) -> tuple[date, date]:
    return today - timedelta(days=past_days), today + timedelta(days=future_days)


def get_template(session: Session, *, household_id: str, template_id: int) -> BillTemplate:
    template = session.scalar(
        select(BillTemplate).where(
            BillTemplate.id == template_id,
            BillTemplate.household_id == household_id,
        )
    )
    if template is None:
        raise BillNotFoundError("Template not found")
    return template


def list_templates(
    session: Session,
    *,
    household_id: str,
    is_active: bool | None = None,
    bill_type: BillType | None = None,
    classification: BillClassification | None = None,
    limit: int | None = None,
    offset: int | None = None,
) -> Page[BillTemplate]:
    resolved_limit = normalize_limit(limit)
    resolved_offset = normalize_offset(offset)

    filters = [BillTemplate.household_id == household_id]
    if is_active is not None:
        filters.append(BillTemplate.is_active.is_(is_active))
    if bill_type is not None:
        filters.append(BillTemplate.bill_type == bill_type)
    if classification is not None:
        filters.append(BillTemplate.classification == classification)

    rows = session.scalars(
        select(BillTemplate)
        .where(*filters)
        .order_by(BillTemplate.created_at.desc(), BillTemplate.id.desc())
        .limit(resolved_limit)
        .offset(resolved_offset)
    ).all()
    total = session.scalar(select(func.count()).select_from(BillTemplate).where(*filters)) or 0
    return Page(items=list(rows), total=total, limit=resolved_limit, offset=resolved_offset)


def create_template(
    session: Session,
    *,
    household_id: str,
    user_id: str,
    fields: dict[str, Any],
    today: date,
    limits: RecurrenceLimits = DEFAULT_RECURRENCE_LIMITS,
    window_past_days: int = DEFAULT_TEMPLATE_WINDOW_PAST_DAYS,
    window_future_days: int = DEFAULT_TEMPLATE_WINDOW_FUTURE_DAYS,
) -> BillTemplate:
    validated = validate_template_fields(fields, creating=True)
    values = {**TEMPLATE_DEFAULTS, **{key: value for key, value in validated.items() if value is not None}}
    values["name"] = values["name"].strip()
    values["default_amount_cents"] = max(0, values["default_amount_cents"])

    template = BillTemplate(household_id=household_id, created_by_user_id=user_id, **values)
    session.add(template)
    session.commit()
    session.refresh(template)

    range_start, range_end = _template_window(today, window_past_days, window_future_days)
    result = OccurrenceMaterializer(session, limits).ensure_template(
        template, range_start=range_start, range_end=range_end
    )
    session.refresh(template)
    logger.info(
        "Bill template created template_id=%s household_id=%s recurrence=%s generated=%s",
        template.id,
        household_id,
        template.recurrence_type,
        result.generated_count,
    )
    return template


def update_template(
    session: Session,
    *,
    household_id: str,
    template_id: int,
    changes: dict[str, Any],
    today: date,
    limits: RecurrenceLimits = DEFAULT_RECURRENCE_LIMITS,
    window_past_days: int = DEFAULT_TEMPLATE_WINDOW_PAST_DAYS,
    window_future_days: int = DEFAULT_TEMPLATE_WINDOW_FUTURE_DAYS,
) -> BillTemplate:
    template = get_template(session, household_id=household_id, template_id=template_id)
    validated = validate_template_fields(changes, creating=False, current=template)

    for key, value in validated.items():
        if key == "name":
            value = value.strip()
        elif key == "default_amount_cents" and value is not None:
            value = max(0, value)
        elif key in TEMPLATE_DEFAULTS and value is None and TEMPLATE_DEFAULTS[key] is not None:
            # Non-nullable flags fall back to their defaults rather than storing NULL.
            value = TEMPLATE_DEFAULTS[key]
        setattr(template, key, value)
    session.commit()
    session.refresh(template)

    range_start, range_end = _template_window(today, window_past_days, window_future_days)
    result = OccurrenceMaterializer(session, limits).ensure_template(
        template, range_start=range_start, range_end=range_end
    )
    session.refresh(template)
    logger.info(
        "Bill template updated template_id=%s household_id=%s fields=%s generated=%s",
        template.id,
        household_id,
        ",".join(sorted(validated)),
        result.generated_count,
    )
    return template


def delete_template(session: Session, *, household_id: str, template_id: int) -> None:
    template = get_template(session, household_id=household_id, template_id=template_id)

    with transaction_scope(session):
        occurrence_ids = select(BillOccurrence.id).where(BillOccurrence.template_id == template.id)
        session.execute(
            delete(BillOccurrenceAllocation).where(BillOccurrenceAllocation.occurrence_id.in_(occurrence_ids))
        )
        session.execute(delete(BillPaymentEvent).where(BillPaymentEvent.occurrence_id.in_(occurrence_ids)))
        session.execute(delete(BillOccurrence).where(BillOccurrence.template_id == template.id))
        session.execute(delete(AutopayRule).where(AutopayRule.template_id == template.id))
        session.execute(delete(BillTemplate).where(BillTemplate.id == template.id))

    logger.info("Bill template deleted template_id=%s household_id=%s", template_id, household_id)
