from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.db import transaction_scope
from app.models.accounts import TransactionType
from app.models.bills import (
    SETTLED_STATUSES,
    BillOccurrence,
    BillOccurrenceAllocation,
    BillPaymentEvent,
    BillTemplate,
    BillType,
    OccurrenceStatus,
    PaymentMethod,
    RecurrenceType,
)
from app.services.allocations_service import apply_allocation_payment, list_allocations
from app.services.errors import BillConflictError, BillNotFoundError, BillValidationError
from app.services.money_movement_service import (
    get_account_balance_cents,
    get_scoped_account,
    insert_transaction_movement,
    update_scoped_account_balance,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentInput:
    account_id: int | None
    amount_cents: int | None = None
    payment_date: date | None = None
    allocation_id: int | None = None
    idempotency_key: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class PaymentResult:
    occurrence: BillOccurrence
    payment_event: BillPaymentEvent
    allocations: list[BillOccurrenceAllocation]
    replayed: bool = False


@dataclass(frozen=True)
class DebtSplit:
    principal_cents: int | None
    interest_cents: int | None
    balance_before_cents: int | None
    balance_after_cents: int | None


def split_debt_payment(amount_cents: int, remaining_balance_cents: int | None) -> DebtSplit:
    if remaining_balance_cents is None:
        return DebtSplit(None, None, None, None)
    principal = min(amount_cents, remaining_balance_cents)
    return DebtSplit(
        principal_cents=principal,
        interest_cents=max(0, amount_cents - principal),
        balance_before_cents=remaining_balance_cents,
        balance_after_cents=max(0, remaining_balance_cents - principal),
    )


def resolve_payment_status(
    *, amount_due_cents: int, total_paid_cents: int, payment_date: date, due_date: date
) -> tuple[OccurrenceStatus, int]:
    """Status and remaining amount after a payment brings the total to total_paid_cents."""
    remaining = max(0, amount_due_cents - total_paid_cents)
    if remaining == 0:
        status = OccurrenceStatus.OVERPAID if total_paid_cents > amount_due_cents else OccurrenceStatus.PAID
    elif payment_date > due_date:
        status = OccurrenceStatus.OVERDUE
    elif total_paid_cents > 0:
        status = OccurrenceStatus.PARTIAL
    else:
        status = OccurrenceStatus.UNPAID
    return status, remaining


def get_scoped_occurrence(session: Session, *, household_id: str, occurrence_id: int) -> BillOccurrence:
    occurrence = session.scalar(
        select(BillOccurrence).where(
            BillOccurrence.id == occurrence_id,
            BillOccurrence.household_id == household_id,
        )
    )
    if occurrence is None:
        raise BillNotFoundError("Occurrence not found")
    return occurrence


def _find_replayed_payment(session: Session, *, household_id: str, idempotency_key: str) -> PaymentResult | None:
    event = session.scalar(
        select(BillPaymentEvent).where(
            BillPaymentEvent.household_id == household_id,
            BillPaymentEvent.idempotency_key == idempotency_key,
        )
    )
    if event is None:
        return None
    occurrence = session.get(BillOccurrence, event.occurrence_id)
    if occurrence is None:
        raise BillNotFoundError("Occurrence not found for idempotent payment")
    return PaymentResult(
        occurrence=occurrence,
        payment_event=event,
        allocations=list_allocations(session, occurrence_id=occurrence.id),
        replayed=True,
    )


def _apply_payment(
    session: Session,
    *,
    household_id: str,
    user_id: str,
    occurrence_id: int,
    data: PaymentInput,
    payment_method: PaymentMethod,
    today: date,
) -> tuple[BillOccurrence, BillPaymentEvent, list[BillOccurrenceAllocation]]:
    row = session.execute(
        select(BillOccurrence, BillTemplate)
        .join(BillTemplate, BillOccurrence.template_id == BillTemplate.id)
        .where(
            BillOccurrence.id == occurrence_id,
            BillOccurrence.household_id == household_id,
        )
    ).first()
    if row is None:
        raise BillNotFoundError("Occurrence not found")
    occurrence, template = row

    if occurrence.status in SETTLED_STATUSES:
        raise BillConflictError("Occurrence is already fully paid")

    account = get_scoped_account(
        session, account_id=data.account_id, user_id=user_id, household_id=household_id
    )

    amount_cents = data.amount_cents if data.amount_cents is not None else occurrence.amount_remaining_cents
    if amount_cents <= 0:
        raise BillValidationError("Payment amount must be greater than 0")

    payment_date = data.payment_date or today
    transaction_type = TransactionType.INCOME if template.bill_type == BillType.INCOME else TransactionType.EXPENSE
    signed_amount = amount_cents if transaction_type == TransactionType.INCOME else -amount_cents
    now = datetime.now()

    movement = insert_transaction_movement(
        session,
        user_id=user_id,
        household_id=household_id,
        account_id=account.id,
        transaction_date=payment_date,
        amount_cents=amount_cents,
        description=template.name,
        transaction_type=transaction_type,
        category_id=template.category_id,
        merchant_id=template.merchant_id,
        notes=data.notes,
    )
    update_scoped_account_balance(
        session,
        account_id=account.id,
        user_id=user_id,
        household_id=household_id,
        balance_cents=get_account_balance_cents(account) + signed_amount,
        usage_count=(account.usage_count or 0) + 1,
        last_used_at=now,
    )

    split = split_debt_payment(amount_cents, template.debt_remaining_balance_cents)
    if split.balance_after_cents is not None:
        template.debt_remaining_balance_cents = split.balance_after_cents

    event = BillPaymentEvent(
        household_id=household_id,
        template_id=template.id,
        occurrence_id=occurrence.id,
        transaction_id=movement.id,
        amount_cents=amount_cents,
        principal_cents=split.principal_cents,
        interest_cents=split.interest_cents,
        balance_before_cents=split.balance_before_cents,
        balance_after_cents=split.balance_after_cents,
        payment_date=payment_date,
        payment_method=payment_method,
        source_account_id=account.id,
        idempotency_key=data.idempotency_key,
        notes=data.notes,
    )
    session.add(event)
    session.flush()

    total_paid = occurrence.amount_paid_cents + amount_cents
    status, remaining = resolve_payment_status(
        amount_due_cents=occurrence.amount_due_cents,
        total_paid_cents=total_paid,
        payment_date=payment_date,
        due_date=occurrence.due_date,
    )
    occurrence.status = status
    occurrence.amount_paid_cents = total_paid
    occurrence.amount_remaining_cents = remaining
    occurrence.actual_amount_cents = total_paid
    occurrence.paid_date = payment_date if remaining == 0 else None
    occurrence.last_transaction_id = movement.id
    if status != OccurrenceStatus.OVERDUE:
        occurrence.days_late = 0

    allocations = apply_allocation_payment(
        session,
        occurrence_id=occurrence.id,
        payment_event_id=event.id,
        amount_cents=amount_cents,
        allocation_id=data.allocation_id,
    )

    if template.recurrence_type == RecurrenceType.ONE_TIME and status in SETTLED_STATUSES:
        template.is_active = False

    return occurrence, event, allocations


def pay_occurrence(
    session: Session,
    *,
    household_id: str,
    user_id: str,
    occurrence_id: int,
    data: PaymentInput,
    today: date,
    payment_method: PaymentMethod = PaymentMethod.MANUAL,
) -> PaymentResult:
    if not data.account_id:
        raise BillValidationError("account_id is required")

    if data.idempotency_key:
        replay = _find_replayed_payment(session, household_id=household_id, idempotency_key=data.idempotency_key)
        if replay is not None:
            logger.info(
                "Payment replayed occurrence_id=%s payment_event_id=%s idempotency_key=%s",
                replay.occurrence.id,
                replay.payment_event.id,
                data.idempotency_key,
            )
            return replay

    try:
        with transaction_scope(session):
            occurrence, event, allocations = _apply_payment(
                session,
                household_id=household_id,
                user_id=user_id,
                occurrence_id=occurrence_id,
                data=data,
                payment_method=payment_method,
                today=today,
            )
    except IntegrityError:
        if not data.idempotency_key:
            raise
        # A concurrent request committed the same idempotency key between the check and the write.
        replay = _find_replayed_payment(session, household_id=household_id, idempotency_key=data.idempotency_key)
        if replay is None:
            raise
        logger.info(
            "Payment replayed after key conflict occurrence_id=%s payment_event_id=%s",
            replay.occurrence.id,
            replay.payment_event.id,
        )
        return replay

    logger.info(
        "Occurrence payment applied occurrence_id=%s template_id=%s payment_event_id=%s amount_cents=%s "
        "status=%s remaining_cents=%s method=%s",
        occurrence.id,
        occurrence.template_id,
        event.id,
        event.amount_cents,
        occurrence.status,
        occurrence.amount_remaining_cents,
        payment_method,
    )
    return PaymentResult(occurrence=occurrence, payment_event=event, allocations=allocations)


def skip_occurrence(
    session: Session, *, household_id: str, occurrence_id: int, notes: str | None = None
) -> BillOccurrence:
    occurrence = get_scoped_occurrence(session, household_id=household_id, occurrence_id=occurrence_id)
    occurrence.status = OccurrenceStatus.SKIPPED
    if notes is not None:
        occurrence.notes = notes
    session.commit()
    session.refresh(occurrence)
    logger.info("Occurrence skipped occurrence_id=%s template_id=%s", occurrence.id, occurrence.template_id)
    return occurrence


def reset_occurrence(session: Session, *, household_id: str, occurrence_id: int, today: date) -> BillOccurrence:
    """Clear paid state; payment events and account balances stay as recorded."""
    occurrence = get_scoped_occurrence(session, household_id=household_id, occurrence_id=occurrence_id)
    status = OccurrenceStatus.OVERDUE if occurrence.due_date < today else OccurrenceStatus.UNPAID

    with transaction_scope(session):
        occurrence.status = status
        occurrence.amount_paid_cents = 0
        occurrence.amount_remaining_cents = occurrence.amount_due_cents
        occurrence.actual_amount_cents = None
        occurrence.paid_date = None
        occurrence.last_transaction_id = None
        if status != OccurrenceStatus.OVERDUE:
            occurrence.days_late = 0
        for allocation in list_allocations(session, occurrence_id=occurrence.id):
            allocation.paid_amount_cents = 0
            allocation.is_paid = False
            allocation.payment_event_id = None

    session.refresh(occurrence)
    logger.info("Occurrence reset occurrence_id=%s status=%s", occurrence.id, occurrence.status)
    return occurrence


def list_payment_events(session: Session, *, household_id: str, occurrence_id: int) -> list[BillPaymentEvent]:
    occurrence = get_scoped_occurrence(session, household_id=household_id, occurrence_id=occurrence_id)
    return list(
        session.scalars(
            select(BillPaymentEvent)
            .where(
                BillPaymentEvent.household_id == household_id,
                BillPaymentEvent.occurrence_id == occurrence.id,
            )
            .order_by(BillPaymentEvent.payment_date.asc(), BillPaymentEvent.id.asc())
        ).all()
    )
