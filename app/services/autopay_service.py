from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
import json
import logging

from sqlalchemy import func, inspect, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.accounts import Account
from app.models.autopay import (
    AutopayAmountType,
    AutopayRule,
    AutopayRun,
    AutopayRunStatus,
    AutopayRunType,
    DailyJobRun,
)
from app.models.bills import OUTSTANDING_STATUSES, BillOccurrence, BillTemplate, PaymentMethod
from app.services.errors import BillNotFoundError, BillValidationError
from app.services.occurrence_generation import OccurrenceMaterializer, refresh_occurrence_statuses
from app.services.pagination import Page, normalize_limit, normalize_offset
from app.services.payment_processor import PaymentInput, pay_occurrence
from app.services.recurrence_engine import DEFAULT_RECURRENCE_LIMITS, RecurrenceLimits
from app.services.templates_service import get_template

logger = logging.getLogger(__name__)

DEFAULT_AUTOPAY_WINDOW_DAYS = 60
AUTOPAY_PAYMENT_FAILED = "AUTOPAY_PAYMENT_FAILED"
SCHEDULED_AUTOPAY_JOB_NAME = "run_scheduled_autopay"


@dataclass(frozen=True)
class AutopayRuleInput:
    is_enabled: bool
    pay_from_account_id: int | None
    amount_type: AutopayAmountType = AutopayAmountType.FULL_BALANCE
    fixed_amount_cents: int | None = None
    days_before_due: int = 0


@dataclass(frozen=True)
class AutopayItemError:
    template_id: int
    occurrence_id: int
    message: str
    code: str = AUTOPAY_PAYMENT_FAILED

    def as_dict(self) -> dict:
        return {
            "template_id": self.template_id,
            "occurrence_id": self.occurrence_id,
            "message": self.message,
            "code": self.code,
        }


@dataclass
class AutopayRunResult:
    run_id: int
    run_date: date
    run_type: AutopayRunType
    status: AutopayRunStatus = AutopayRunStatus.STARTED
    processed_count: int = 0
    success_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    total_amount_cents: int = 0
    errors: list[AutopayItemError] = field(default_factory=list)


@dataclass(frozen=True)
class ScheduledAutopayResult:
    job_name: str
    run_date: date
    ran: bool
    runs: list[AutopayRunResult]
    failed_household_ids: list[str] = field(default_factory=list)


def get_autopay_rule(session: Session, *, household_id: str, template_id: int) -> AutopayRule | None:
    return session.scalar(
        select(AutopayRule).where(
            AutopayRule.template_id == template_id,
            AutopayRule.household_id == household_id,
        )
    )


def upsert_autopay_rule(
    session: Session,
    *,
    household_id: str,
    template_id: int,
    config: AutopayRuleInput | None,
) -> AutopayRule | None:
    """Disabled or missing config removes the rule; returns the stored rule otherwise."""
    get_template(session, household_id=household_id, template_id=template_id)
    existing = get_autopay_rule(session, household_id=household_id, template_id=template_id)

    if config is None or not config.is_enabled:
        if existing is not None:
            session.delete(existing)
            session.commit()
            logger.info("Autopay rule removed template_id=%s household_id=%s", template_id, household_id)
        return None

    if not config.pay_from_account_id:
        raise BillValidationError("Autopay source account is required when autopay is enabled")
    if config.days_before_due < 0:
        raise BillValidationError("days_before_due must be >= 0")
    amount_type = AutopayAmountType(config.amount_type)
    fixed_amount = (config.fixed_amount_cents or 0) if amount_type == AutopayAmountType.FIXED else None
    if fixed_amount is not None and fixed_amount < 0:
        raise BillValidationError("fixed_amount_cents must be >= 0")

    account = session.scalar(
        select(Account).where(
            Account.id == config.pay_from_account_id,
            Account.household_id == household_id,
        )
    )
    if account is None:
        raise BillNotFoundError("Account not found")

    rule = existing or AutopayRule(template_id=template_id, household_id=household_id)
    rule.is_enabled = True
    rule.pay_from_account_id = account.id
    rule.amount_type = amount_type
    rule.fixed_amount_cents = fixed_amount
    rule.days_before_due = config.days_before_due
    if existing is None:
        session.add(rule)
    session.commit()
    session.refresh(rule)
    logger.info(
        "Autopay rule saved template_id=%s amount_type=%s days_before_due=%s",
        template_id,
        rule.amount_type,
        rule.days_before_due,
    )
    return rule


def autopay_amount_cents(rule: AutopayRule, occurrence: BillOccurrence) -> int:
    if rule.amount_type == AutopayAmountType.FIXED and rule.fixed_amount_cents is not None:
        return min(rule.fixed_amount_cents, occurrence.amount_remaining_cents)
    return occurrence.amount_remaining_cents


def _finalize(session: Session, run: AutopayRun, result: AutopayRunResult, *, error_summary: str | None) -> None:
    run.status = result.status
    run.processed_count = result.processed_count
    run.success_count = result.success_count
    run.failed_count = result.failed_count
    run.skipped_count = result.skipped_count
    run.total_amount_cents = result.total_amount_cents
    run.error_summary = error_summary
    run.completed_at = datetime.now()
    session.commit()


def _process_run(
    session: Session,
    *,
    run: AutopayRun,
    result: AutopayRunResult,
    household_id: str,
    user_id: str | None,
    limits: RecurrenceLimits,
    window_days: int,
) -> None:
    run_date = result.run_date
    rules = session.scalars(
        select(AutopayRule).where(
            AutopayRule.household_id == household_id,
            AutopayRule.is_enabled.is_(True),
        )
    ).all()
    templates = []
    if rules:
        templates = session.scalars(
            select(BillTemplate)
            .where(
                BillTemplate.id.in_([rule.template_id for rule in rules]),
                BillTemplate.household_id == household_id,
                BillTemplate.is_active.is_(True),
            )
            .order_by(BillTemplate.id)
        ).all()
    if not templates:
        result.status = AutopayRunStatus.COMPLETED
        _finalize(session, run, result, error_summary=None)
        return

    rule_by_template = {rule.template_id: rule for rule in rules}
    template_ids = [template.id for template in templates]
    materializer = OccurrenceMaterializer(session, limits)
    for template in templates:
        materializer.ensure_template(
            template,
            range_start=run_date - timedelta(days=window_days),
            range_end=run_date + timedelta(days=window_days),
        )
    refresh_occurrence_statuses(session, household_id=household_id, today=run_date)

    occurrences = session.scalars(
        select(BillOccurrence)
        .where(
            BillOccurrence.household_id == household_id,
            BillOccurrence.template_id.in_(template_ids),
            BillOccurrence.status.in_(OUTSTANDING_STATUSES),
        )
        .order_by(BillOccurrence.due_date, BillOccurrence.id)
    ).all()
    targets = []
    for occurrence in occurrences:
        rule = rule_by_template.get(occurrence.template_id)
        if rule is None or occurrence.due_date - timedelta(days=rule.days_before_due) != run_date:
            continue
        targets.append(
            (occurrence.id, occurrence.template_id, rule.pay_from_account_id, autopay_amount_cents(rule, occurrence))
        )

    for occurrence_id, template_id, account_id, amount_cents in targets:
        result.processed_count += 1
        if amount_cents <= 0:
            result.skipped_count += 1
            continue
        if result.run_type == AutopayRunType.DRY_RUN:
            result.skipped_count += 1
            result.total_amount_cents += amount_cents
            continue

        payer_user_id = user_id
        if payer_user_id is None:
            payer_user_id = session.scalar(select(Account.user_id).where(Account.id == account_id)) or ""
        try:
            pay_occurrence(
                session,
                household_id=household_id,
                user_id=payer_user_id,
                occurrence_id=occurrence_id,
                data=PaymentInput(
                    account_id=account_id,
                    amount_cents=amount_cents,
                    payment_date=run_date,
                    notes=f"Autopay {run_date.isoformat()}",
                ),
                today=run_date,
                payment_method=PaymentMethod.AUTOPAY,
            )
        except Exception as exc:
            message = getattr(exc, "message", None) or str(exc) or "Autopay failed"
            result.failed_count += 1
            result.errors.append(AutopayItemError(template_id=template_id, occurrence_id=occurrence_id, message=message))
            logger.warning(
                "Autopay payment failed run_id=%s occurrence_id=%s template_id=%s error=%s",
                run.id,
                occurrence_id,
                template_id,
                message,
            )
            continue
        result.success_count += 1
        result.total_amount_cents += amount_cents

    result.status = AutopayRunStatus.FAILED if result.failed_count else AutopayRunStatus.COMPLETED
    error_summary = json.dumps([item.as_dict() for item in result.errors]) if result.errors else None
    _finalize(session, run, result, error_summary=error_summary)


def run_autopay(
    session: Session,
    *,
    household_id: str,
    today: date,
    user_id: str | None = None,
    run_date: date | None = None,
    run_type: AutopayRunType | None = None,
    dry_run: bool = False,
    limits: RecurrenceLimits = DEFAULT_RECURRENCE_LIMITS,
    window_days: int = DEFAULT_AUTOPAY_WINDOW_DAYS,
) -> AutopayRunResult:
    """Pay every outstanding occurrence whose rule triggers on run_date.

    Item failures are recorded on the run and never stop the batch. Anything
    raised outside the per-item loop marks the run failed and propagates.
    """
    resolved_date = run_date or today
    resolved_type = AutopayRunType.DRY_RUN if dry_run else (run_type or AutopayRunType.MANUAL)

    run = AutopayRun(
        household_id=household_id,
        run_date=resolved_date,
        run_type=resolved_type,
        status=AutopayRunStatus.STARTED,
        started_at=datetime.now(),
    )
    session.add(run)
    session.commit()

    result = AutopayRunResult(run_id=run.id, run_date=resolved_date, run_type=resolved_type)
    try:
        _process_run(
            session,
            run=run,
            result=result,
            household_id=household_id,
            user_id=user_id,
            limits=limits,
            window_days=window_days,
        )
    except Exception as exc:
        logger.exception("Autopay run failed run_id=%s household_id=%s", result.run_id, household_id)
        session.rollback()
        run = session.get(AutopayRun, result.run_id)
        result.status = AutopayRunStatus.FAILED
        result.failed_count += 1
        _finalize(session, run, result, error_summary=str(exc) or "Autopay run failed")
        raise

    logger.info(
        "Autopay run finished run_id=%s household_id=%s run_date=%s type=%s status=%s processed=%s "
        "success=%s failed=%s skipped=%s total_cents=%s",
        result.run_id,
        household_id,
        resolved_date,
        resolved_type,
        result.status,
        result.processed_count,
        result.success_count,
        result.failed_count,
        result.skipped_count,
        result.total_amount_cents,
    )
    return result


def list_autopay_runs(
    session: Session,
    *,
    household_id: str,
    limit: int | None = None,
    offset: int | None = None,
) -> Page[AutopayRun]:
    resolved_limit = normalize_limit(limit)
    resolved_offset = normalize_offset(offset)
    base = select(AutopayRun).where(AutopayRun.household_id == household_id)
    rows = session.scalars(
        base.order_by(AutopayRun.run_date.desc(), AutopayRun.id.desc()).limit(resolved_limit).offset(resolved_offset)
    ).all()
    total = session.scalar(select(func.count()).select_from(AutopayRun).where(AutopayRun.household_id == household_id)) or 0
    return Page(items=list(rows), total=total, limit=resolved_limit, offset=resolved_offset)


def claim_daily_job_run(session: Session, *, job_name: str, run_date: date) -> DailyJobRun | None:
    """Insert the (job, day) marker; ``None`` means another caller already claimed it."""
    job_run = DailyJobRun(job_name=job_name, run_date=run_date, households_processed=0)
    session.add(job_run)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        return None
    return job_run


def run_scheduled_autopay_once_per_day(
    session: Session,
    *,
    today: date,
    limits: RecurrenceLimits = DEFAULT_RECURRENCE_LIMITS,
    window_days: int = DEFAULT_AUTOPAY_WINDOW_DAYS,
) -> ScheduledAutopayResult:
    job_run = claim_daily_job_run(session, job_name=SCHEDULED_AUTOPAY_JOB_NAME, run_date=today)
    if job_run is None:
        logger.info("Scheduled autopay guard skip job=%s run_date=%s", SCHEDULED_AUTOPAY_JOB_NAME, today)
        return ScheduledAutopayResult(job_name=SCHEDULED_AUTOPAY_JOB_NAME, run_date=today, ran=False, runs=[])

    household_ids = session.scalars(
        select(AutopayRule.household_id)
        .where(AutopayRule.is_enabled.is_(True))
        .distinct()
        .order_by(AutopayRule.household_id)
    ).all()
    runs: list[AutopayRunResult] = []
    failed_household_ids: list[str] = []
    for household_id in household_ids:
        try:
            runs.append(
                run_autopay(
                    session,
                    household_id=household_id,
                    today=today,
                    run_type=AutopayRunType.SCHEDULED,
                    limits=limits,
                    window_days=window_days,
                )
            )
        except Exception:
            # run_autopay has already marked this household's run failed.
            logger.exception(
                "Scheduled autopay household failed job=%s run_date=%s household_id=%s",
                SCHEDULED_AUTOPAY_JOB_NAME,
                today,
                household_id,
            )
            session.rollback()
            failed_household_ids.append(household_id)

    job_run.households_processed = len(household_ids)
    job_run.finished_at = datetime.now()
    session.commit()
    logger.info(
        "Scheduled autopay guard run job=%s run_date=%s households=%s failed_runs=%s",
        SCHEDULED_AUTOPAY_JOB_NAME,
        today,
        len(household_ids),
        sum(1 for run in runs if run.status == AutopayRunStatus.FAILED) + len(failed_household_ids),
    )
    return ScheduledAutopayResult(
        job_name=SCHEDULED_AUTOPAY_JOB_NAME,
        run_date=today,
        ran=True,
        runs=runs,
        failed_household_ids=failed_household_ids,
    )


def run_scheduled_autopay_once_per_day_in_session_if_ready(
    session: Session,
    *,
    today: date,
    limits: RecurrenceLimits = DEFAULT_RECURRENCE_LIMITS,
    window_days: int = DEFAULT_AUTOPAY_WINDOW_DAYS,
) -> ScheduledAutopayResult | None:
    inspector = inspect(session.bind)
    tables = set(inspector.get_table_names())
    required = {"daily_job_runs", "autopay_rules", "autopay_runs", "bill_templates", "bill_occurrences"}
    if not required.issubset(tables):
        logger.debug("Scheduled autopay readiness check failed tables=%s", ",".join(sorted(tables)))
        return None
    return run_scheduled_autopay_once_per_day(session, today=today, limits=limits, window_days=window_days)
