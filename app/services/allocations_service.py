from __future__ import annotations

from dataclasses import dataclass
import logging

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from app.db import transaction_scope
from app.models.bills import BillOccurrence, BillOccurrenceAllocation
from app.services.errors import BillConflictError, BillNotFoundError, BillValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AllocationInput:
    period_number: int
    allocated_amount_cents: int


def list_allocations(session: Session, *, occurrence_id: int) -> list[BillOccurrenceAllocation]:
    return list(
        session.scalars(
            select(BillOccurrenceAllocation)
            .where(BillOccurrenceAllocation.occurrence_id == occurrence_id)
            .order_by(BillOccurrenceAllocation.period_number.asc())
        ).all()
    )


def apply_allocation_payment(
    session: Session,
    *,
    occurrence_id: int,
    payment_event_id: int,
    amount_cents: int,
    allocation_id: int | None = None,
) -> list[BillOccurrenceAllocation]:
    """Greedy first-fit: the requested allocation first, then ascending period numbers.

    Runs inside the caller's transaction and never commits.
    """
    allocations = list_allocations(session, occurrence_id=occurrence_id)
    if not allocations:
        return allocations

    if allocation_id is not None:
        ordered = [row for row in allocations if row.id == allocation_id] + [
            row for row in allocations if row.id != allocation_id
        ]
    else:
        ordered = allocations

    remaining = amount_cents
    for allocation in ordered:
        if remaining <= 0:
            break
        capacity = allocation.allocated_amount_cents - allocation.paid_amount_cents
        if capacity <= 0:
            continue
        applied = min(remaining, capacity)
        allocation.paid_amount_cents += applied
        allocation.is_paid = allocation.paid_amount_cents >= allocation.allocated_amount_cents
        allocation.payment_event_id = payment_event_id
        remaining -= applied

    session.flush()
    return allocations


def _validate_allocation_inputs(occurrence: BillOccurrence, allocations: list[AllocationInput]) -> None:
    if occurrence.amount_paid_cents > 0:
        raise BillConflictError("Cannot rewrite allocations after payments have started")

    total = sum(item.allocated_amount_cents for item in allocations)
    if total != occurrence.amount_due_cents:
        raise BillValidationError("Allocation total must match occurrence amount_due_cents")

    seen_periods: set[int] = set()
    for item in allocations:
        if item.period_number < 1:
            raise BillValidationError("period_number must be >= 1")
        if item.allocated_amount_cents < 0:
            raise BillValidationError("allocated_amount_cents must be >= 0")
        if item.period_number in seen_periods:
            raise BillValidationError("period_number must be unique")
        seen_periods.add(item.period_number)


def update_occurrence_allocations(
    session: Session,
    *,
    household_id: str,
    occurrence_id: int,
    allocations: list[AllocationInput],
) -> list[BillOccurrenceAllocation]:
    if not allocations:
        raise BillValidationError("allocations is required")

    occurrence = session.scalar(
        select(BillOccurrence).where(
            BillOccurrence.id == occurrence_id,
            BillOccurrence.household_id == household_id,
        )
    )
    if occurrence is None:
        raise BillNotFoundError("Occurrence not found")

    _validate_allocation_inputs(occurrence, allocations)

    with transaction_scope(session):
        session.execute(
            delete(BillOccurrenceAllocation).where(BillOccurrenceAllocation.occurrence_id == occurrence.id)
        )
        session.add_all(
            [
                BillOccurrenceAllocation(
                    occurrence_id=occurrence.id,
                    template_id=occurrence.template_id,
                    household_id=household_id,
                    period_number=item.period_number,
                    allocated_amount_cents=item.allocated_amount_cents,
                    paid_amount_cents=0,
                    is_paid=False,
                )
                for item in allocations
            ]
        )

    logger.info(
        "Occurrence allocations rewritten occurrence_id=%s periods=%s",
        occurrence_id,
        ",".join(str(item.period_number) for item in sorted(allocations, key=lambda item: item.period_number)),
    )
    return list_allocations(session, occurrence_id=occurrence_id)
