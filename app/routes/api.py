from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Response
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import get_settings
from app.db import get_db_session
from app.logging_config import bind_household_id
from app.models.bills import BillClassification, BillType, OccurrenceStatus
from app.routes.schemas import (
    AllocationResponse,
    AllocationsUpdateRequest,
    AutopayRuleRequest,
    AutopayRuleResponse,
    AutopayRunListResponse,
    AutopayRunRecordResponse,
    AutopayRunRequest,
    AutopayRunResultResponse,
    BudgetPeriodResponse,
    DashboardResponse,
    OccurrenceListResponse,
    OccurrenceResponse,
    OccurrenceWithTemplateResponse,
    PaymentEventResponse,
    PayOccurrenceRequest,
    PayOccurrenceResponse,
    PreferencesResponse,
    PreferencesUpdateRequest,
    ScheduledAutopayResponse,
    SkipOccurrenceRequest,
    SummaryResponse,
    TemplateCreateRequest,
    TemplateListResponse,
    TemplateResponse,
    TemplateUpdateRequest,
)
from app.services.allocations_service import AllocationInput, update_occurrence_allocations
from app.services.autopay_service import (
    AutopayRuleInput,
    get_autopay_rule,
    list_autopay_runs,
    run_autopay,
    run_scheduled_autopay_once_per_day,
    upsert_autopay_rule,
)
from app.services.budget_periods import BudgetScheduleSettings, get_current_budget_period
from app.services.dashboard_service import get_dashboard_summary
from app.services.errors import BillConflictError, BillNotFoundError, BillServiceError
from app.services.occurrence_listing_service import (
    OccurrenceListFilters,
    OccurrenceView,
    get_occurrence_detail,
    list_occurrences,
)
from app.services.payment_processor import (
    PaymentInput,
    list_payment_events,
    pay_occurrence,
    reset_occurrence,
    skip_occurrence,
)
from app.services.settings_service import get_budget_settings, update_household_preferences
from app.services.templates_service import (
    create_template,
    delete_template,
    get_template,
    list_templates,
    update_template,
)

api_router = APIRouter(tags=["api"])
settings = get_settings()


@dataclass(frozen=True)
class HouseholdContext:
    household_id: str
    user_id: str


async def get_household_context(
    x_household_id: str = Header(min_length=1, max_length=64),
    x_user_id: str = Header(min_length=1, max_length=64),
) -> HouseholdContext:
    bind_household_id(x_household_id)
    return HouseholdContext(household_id=x_household_id, user_id=x_user_id)


def _http_error(exc: BillServiceError) -> HTTPException:
    if isinstance(exc, BillNotFoundError):
        status_code = 404
    elif isinstance(exc, BillConflictError):
        status_code = 409
    else:
        status_code = 400
    return HTTPException(status_code=status_code, detail={"code": exc.code, "message": exc.message})


def _serialize_view(view: OccurrenceView) -> OccurrenceWithTemplateResponse:
    return OccurrenceWithTemplateResponse(
        occurrence=OccurrenceResponse.model_validate(view.occurrence),
        template=TemplateResponse.model_validate(view.template),
        allocations=[AllocationResponse.model_validate(row) for row in view.allocations],
    )


@api_router.get("/health")
def api_health(db: Session = Depends(get_db_session)) -> dict[str, str]:
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=503, detail="database unavailable") from exc
    return {"status": "ok", "database": "ok"}


@api_router.get("/templates", response_model=TemplateListResponse)
def list_templates_api(
    is_active: bool | None = Query(default=None),
    bill_type: BillType | None = Query(default=None),
    classification: BillClassification | None = Query(default=None),
    limit: int | None = Query(default=None),
    offset: int | None = Query(default=None),
    ctx: HouseholdContext = Depends(get_household_context),
    db: Session = Depends(get_db_session),
) -> TemplateListResponse:
    page = list_templates(
        db,
        household_id=ctx.household_id,
        is_active=is_active,
        bill_type=bill_type,
        classification=classification,
        limit=limit,
        offset=offset,
    )
    return TemplateListResponse(
        data=[TemplateResponse.model_validate(row) for row in page.items],
        total=page.total,
        limit=page.limit,
        offset=page.offset,
    )


@api_router.post("/templates", status_code=201, response_model=TemplateResponse)
def create_template_api(
    payload: TemplateCreateRequest,
    today: date | None = Query(default=None),
    ctx: HouseholdContext = Depends(get_household_context),
    db: Session = Depends(get_db_session),
) -> TemplateResponse:
    try:
        template = create_template(
            db,
            household_id=ctx.household_id,
            user_id=ctx.user_id,
            fields=payload.model_dump(exclude_unset=True),
            today=today or date.today(),
            window_past_days=settings.template_window_past_days,
            window_future_days=settings.template_window_future_days,
        )
    except BillServiceError as exc:
        raise _http_error(exc) from exc
    return TemplateResponse.model_validate(template)


@api_router.get("/templates/{template_id}", response_model=TemplateResponse)
def get_template_api(
    template_id: int,
    ctx: HouseholdContext = Depends(get_household_context),
    db: Session = Depends(get_db_session),
) -> TemplateResponse:
    try:
        template = get_template(db, household_id=ctx.household_id, template_id=template_id)
    except BillServiceError as exc:
        raise _http_error(exc) from exc
    return TemplateResponse.model_validate(template)


@api_router.patch("/templates/{template_id}", response_model=TemplateResponse)
def update_template_api(
    template_id: int,
    payload: TemplateUpdateRequest,
    today: date | None = Query(default=None),
    ctx: HouseholdContext = Depends(get_household_context),
    db: Session = Depends(get_db_session),
) -> TemplateResponse:
    try:
        template = update_template(
            db,
            household_id=ctx.household_id,
            template_id=template_id,
            changes=payload.model_dump(exclude_unset=True),
            today=today or date.today(),
            window_past_days=settings.template_window_past_days,
            window_future_days=settings.template_window_future_days,
        )
    except BillServiceError as exc:
        raise _http_error(exc) from exc
    return TemplateResponse.model_validate(template)


@api_router.delete("/templates/{template_id}", status_code=204)
def delete_template_api(
    template_id: int,
    ctx: HouseholdContext = Depends(get_household_context),
    db: Session = Depends(get_db_session),
) -> Response:
    try:
        delete_template(db, household_id=ctx.household_id, template_id=template_id)
    except BillServiceError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


@api_router.get("/templates/{template_id}/autopay")
def get_autopay_rule_api(
    template_id: int,
    ctx: HouseholdContext = Depends(get_household_context),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    try:
        get_template(db, household_id=ctx.household_id, template_id=template_id)
    except BillServiceError as exc:
        raise _http_error(exc) from exc
    rule = get_autopay_rule(db, household_id=ctx.household_id, template_id=template_id)
    return {"rule": AutopayRuleResponse.model_validate(rule) if rule is not None else None}


@api_router.put("/templates/{template_id}/autopay")
def put_autopay_rule_api(
    template_id: int,
    payload: AutopayRuleRequest,
    ctx: HouseholdContext = Depends(get_household_context),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    try:
        rule = upsert_autopay_rule(
            db,
            household_id=ctx.household_id,
            template_id=template_id,
            config=AutopayRuleInput(
                is_enabled=payload.is_enabled,
                pay_from_account_id=payload.pay_from_account_id,
                amount_type=payload.amount_type,
                fixed_amount_cents=payload.fixed_amount_cents,
                days_before_due=payload.days_before_due,
            ),
        )
    except BillServiceError as exc:
        raise _http_error(exc) from exc
    return {"rule": AutopayRuleResponse.model_validate(rule) if rule is not None else None}


@api_router.get("/occurrences", response_model=OccurrenceListResponse)
def list_occurrences_api(
    status: list[OccurrenceStatus] = Query(default=[]),
    from_date: date | None = Query(default=None, alias="from"),
    to_date: date | None = Query(default=None, alias="to"),
    period_offset: int | None = Query(default=None),
    bill_type: BillType | None = Query(default=None),
    limit: int | None = Query(default=None),
    offset: int | None = Query(default=None),
    today: date | None = Query(default=None),
    ctx: HouseholdContext = Depends(get_household_context),
    db: Session = Depends(get_db_session),
) -> OccurrenceListResponse:
    page = list_occurrences(
        db,
        household_id=ctx.household_id,
        user_id=ctx.user_id,
        filters=OccurrenceListFilters(
            statuses=tuple(status),
            start_date=from_date,
            end_date=to_date,
            period_offset=period_offset,
            bill_type=bill_type,
            limit=limit,
            offset=offset,
        ),
        today=today or date.today(),
        window_past_days=settings.list_window_past_days,
        window_future_days=settings.list_window_future_days,
    )
    return OccurrenceListResponse(
        data=[_serialize_view(view) for view in page.items],
        summary=SummaryResponse.model_validate(page.summary),
        period=BudgetPeriodResponse.model_validate(page.period) if page.period is not None else None,
        total=page.total,
        limit=page.limit,
        offset=page.offset,
    )


@api_router.get("/occurrences/{occurrence_id}", response_model=OccurrenceWithTemplateResponse)
def get_occurrence_api(
    occurrence_id: int,
    today: date | None = Query(default=None),
    ctx: HouseholdContext = Depends(get_household_context),
    db: Session = Depends(get_db_session),
) -> OccurrenceWithTemplateResponse:
    try:
        view = get_occurrence_detail(
            db, household_id=ctx.household_id, occurrence_id=occurrence_id, today=today or date.today()
        )
    except BillServiceError as exc:
        raise _http_error(exc) from exc
    return _serialize_view(view)


@api_router.post("/occurrences/{occurrence_id}/pay", response_model=PayOccurrenceResponse)
def pay_occurrence_api(
    occurrence_id: int,
    payload: PayOccurrenceRequest,
    today: date | None = Query(default=None),
    ctx: HouseholdContext = Depends(get_household_context),
    db: Session = Depends(get_db_session),
) -> PayOccurrenceResponse:
    try:
        result = pay_occurrence(
            db,
            household_id=ctx.household_id,
            user_id=ctx.user_id,
            occurrence_id=occurrence_id,
            data=PaymentInput(
                account_id=payload.account_id,
                amount_cents=payload.amount_cents,
                payment_date=payload.payment_date,
                allocation_id=payload.allocation_id,
                idempotency_key=payload.idempotency_key,
                notes=payload.notes,
            ),
            today=today or date.today(),
        )
    except BillServiceError as exc:
        raise _http_error(exc) from exc
    return PayOccurrenceResponse(
        occurrence=OccurrenceResponse.model_validate(result.occurrence),
        payment_event=PaymentEventResponse.model_validate(result.payment_event),
        updated_allocations=[AllocationResponse.model_validate(row) for row in result.allocations],
        replayed=result.replayed,
    )


@api_router.post("/occurrences/{occurrence_id}/skip", response_model=OccurrenceResponse)
def skip_occurrence_api(
    occurrence_id: int,
    payload: SkipOccurrenceRequest | None = None,
    ctx: HouseholdContext = Depends(get_household_context),
    db: Session = Depends(get_db_session),
) -> OccurrenceResponse:
    try:
        occurrence = skip_occurrence(
            db,
            household_id=ctx.household_id,
            occurrence_id=occurrence_id,
            notes=payload.notes if payload is not None else None,
        )
    except BillServiceError as exc:
        raise _http_error(exc) from exc
    return OccurrenceResponse.model_validate(occurrence)


@api_router.post("/occurrences/{occurrence_id}/reset", response_model=OccurrenceResponse)
def reset_occurrence_api(
    occurrence_id: int,
    today: date | None = Query(default=None),
    ctx: HouseholdContext = Depends(get_household_context),
    db: Session = Depends(get_db_session),
) -> OccurrenceResponse:
    try:
        occurrence = reset_occurrence(
            db, household_id=ctx.household_id, occurrence_id=occurrence_id, today=today or date.today()
        )
    except BillServiceError as exc:
        raise _http_error(exc) from exc
    return OccurrenceResponse.model_validate(occurrence)


@api_router.get("/occurrences/{occurrence_id}/payments", response_model=list[PaymentEventResponse])
def list_occurrence_payments_api(
    occurrence_id: int,
    ctx: HouseholdContext = Depends(get_household_context),
    db: Session = Depends(get_db_session),
) -> list[PaymentEventResponse]:
    try:
        events = list_payment_events(db, household_id=ctx.household_id, occurrence_id=occurrence_id)
    except BillServiceError as exc:
        raise _http_error(exc) from exc
    return [PaymentEventResponse.model_validate(row) for row in events]


@api_router.put("/occurrences/{occurrence_id}/allocations", response_model=list[AllocationResponse])
def put_occurrence_allocations_api(
    occurrence_id: int,
    payload: AllocationsUpdateRequest,
    ctx: HouseholdContext = Depends(get_household_context),
    db: Session = Depends(get_db_session),
) -> list[AllocationResponse]:
    try:
        rows = update_occurrence_allocations(
            db,
            household_id=ctx.household_id,
            occurrence_id=occurrence_id,
            allocations=[
                AllocationInput(period_number=item.period_number, allocated_amount_cents=item.allocated_amount_cents)
                for item in payload.allocations
            ],
        )
    except BillServiceError as exc:
        raise _http_error(exc) from exc
    return [AllocationResponse.model_validate(row) for row in rows]


@api_router.post("/autopay/run", response_model=AutopayRunResultResponse)
def run_autopay_api(
    payload: AutopayRunRequest,
    today: date | None = Query(default=None),
    ctx: HouseholdContext = Depends(get_household_context),
    db: Session = Depends(get_db_session),
) -> AutopayRunResultResponse:
    try:
        result = run_autopay(
            db,
            household_id=ctx.household_id,
            user_id=ctx.user_id,
            today=today or date.today(),
            run_date=payload.run_date,
            run_type=payload.run_type,
            dry_run=payload.dry_run,
            window_days=settings.autopay_window_days,
        )
    except BillServiceError as exc:
        raise _http_error(exc) from exc
    return AutopayRunResultResponse.model_validate(result)


@api_router.get("/autopay/runs", response_model=AutopayRunListResponse)
def list_autopay_runs_api(
    limit: int | None = Query(default=None),
    offset: int | None = Query(default=None),
    ctx: HouseholdContext = Depends(get_household_context),
    db: Session = Depends(get_db_session),
) -> AutopayRunListResponse:
    page = list_autopay_runs(db, household_id=ctx.household_id, limit=limit, offset=offset)
    return AutopayRunListResponse(
        data=[AutopayRunRecordResponse.model_validate(row) for row in page.items],
        total=page.total,
        limit=page.limit,
        offset=page.offset,
    )


@api_router.post("/admin/run-scheduled-autopay-once-today", response_model=ScheduledAutopayResponse)
def run_scheduled_autopay_once_today_api(
    today: date | None = Query(default=None),
    db: Session = Depends(get_db_session),
) -> ScheduledAutopayResponse:
    result = run_scheduled_autopay_once_per_day(
        db,
        today=today or date.today(),
        window_days=settings.autopay_window_days,
    )
    return ScheduledAutopayResponse(
        job_name=result.job_name,
        run_date=result.run_date,
        ran=result.ran,
        runs=[AutopayRunResultResponse.model_validate(run) for run in result.runs],
        failed_household_ids=result.failed_household_ids,
    )


@api_router.get("/dashboard", response_model=DashboardResponse)
def dashboard_api(
    today: date | None = Query(default=None),
    ctx: HouseholdContext = Depends(get_household_context),
    db: Session = Depends(get_db_session),
) -> DashboardResponse:
    dashboard = get_dashboard_summary(
        db,
        household_id=ctx.household_id,
        user_id=ctx.user_id,
        today=today or date.today(),
        window_past_days=settings.list_window_past_days,
        window_future_days=settings.list_window_future_days,
    )
    summary = SummaryResponse.model_validate(dashboard.summary)
    return DashboardResponse(
        **summary.model_dump(),
        active_template_count=dashboard.active_template_count,
        current_period=BudgetPeriodResponse.model_validate(dashboard.current_period),
    )


def _serialize_preferences(budget: BudgetScheduleSettings, today: date) -> PreferencesResponse:
    return PreferencesResponse(
        budget_cycle_frequency=budget.frequency,
        budget_cycle_start_day=budget.start_day,
        budget_cycle_reference_date=budget.reference_date,
        budget_cycle_semi_monthly_days=budget.semi_monthly_days,
        budget_period_rollover=budget.rollover,
        budget_period_manual_amount_cents=budget.manual_amount_cents,
        current_period=BudgetPeriodResponse.model_validate(get_current_budget_period(budget, today)),
    )


@api_router.get("/preferences", response_model=PreferencesResponse)
def get_preferences_api(
    today: date | None = Query(default=None),
    ctx: HouseholdContext = Depends(get_household_context),
    db: Session = Depends(get_db_session),
) -> PreferencesResponse:
    budget = get_budget_settings(db, user_id=ctx.user_id, household_id=ctx.household_id)
    return _serialize_preferences(budget, today or date.today())


@api_router.patch("/preferences", response_model=PreferencesResponse)
def update_preferences_api(
    payload: PreferencesUpdateRequest,
    today: date | None = Query(default=None),
    ctx: HouseholdContext = Depends(get_household_context),
    db: Session = Depends(get_db_session),
) -> PreferencesResponse:
    try:
        budget = update_household_preferences(
            db,
            user_id=ctx.user_id,
            household_id=ctx.household_id,
            changes=payload.model_dump(exclude_unset=True),
        )
    except BillServiceError as exc:
        raise _http_error(exc) from exc
    return _serialize_preferences(budget, today or date.today())
