from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field

from app.models.autopay import AutopayAmountType, AutopayRunStatus, AutopayRunType
from app.models.bills import (
    BillClassification,
    BillType,
    DebtInterestType,
    InterestTaxDeductionType,
    OccurrenceStatus,
    PaymentMethod,
    RecurrenceType,
)
from app.models.settings import BudgetCycleFrequency


class _TemplateFields(BaseModel):
    description: str | None = None
    is_active: bool | None = None
    classification_subcategory: str | None = Field(default=None, max_length=64)
    recurrence_due_day: int | None = Field(default=None, ge=1, le=31)
    recurrence_due_weekday: int | None = Field(default=None, ge=0, le=6)
    recurrence_specific_due_date: date | None = None
    recurrence_start_month: int | None = Field(default=None, ge=0, le=11)
    is_variable_amount: bool | None = None
    amount_tolerance_bps: int | None = None
    category_id: str | None = None
    merchant_id: str | None = None
    payment_account_id: int | None = None
    linked_liability_account_id: int | None = None
    charged_to_account_id: int | None = None
    auto_mark_paid: bool | None = None
    notes: str | None = None
    debt_enabled: bool | None = None
    debt_original_balance_cents: int | None = None
    debt_remaining_balance_cents: int | None = None
    debt_interest_apr_bps: int | None = None
    debt_interest_type: DebtInterestType | None = None
    debt_start_date: date | None = None
    debt_color: str | None = Field(default=None, max_length=16)
    include_in_payoff_strategy: bool | None = None
    interest_tax_deductible: bool | None = None
    interest_tax_deduction_type: InterestTaxDeductionType | None = None
    interest_tax_deduction_limit_cents: int | None = None
    budget_period_assignment: int | None = Field(default=None, ge=1)
    split_across_periods: bool | None = None


class TemplateCreateRequest(_TemplateFields):
    name: str = Field(min_length=1, max_length=255)
    bill_type: BillType
    classification: BillClassification
    recurrence_type: RecurrenceType
    default_amount_cents: int


class TemplateUpdateRequest(_TemplateFields):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    bill_type: BillType | None = None
    classification: BillClassification | None = None
    recurrence_type: RecurrenceType | None = None
    default_amount_cents: int | None = None


class TemplateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    household_id: str
    created_by_user_id: str
    name: str
    description: str | None
    is_active: bool
    bill_type: BillType
    classification: BillClassification
    classification_subcategory: str | None
    recurrence_type: RecurrenceType
    recurrence_due_day: int | None
    recurrence_due_weekday: int | None
    recurrence_specific_due_date: date | None
    recurrence_start_month: int | None
    default_amount_cents: int
    is_variable_amount: bool
    amount_tolerance_bps: int
    category_id: str | None
    merchant_id: str | None
    payment_account_id: int | None
    linked_liability_account_id: int | None
    charged_to_account_id: int | None
    auto_mark_paid: bool
    notes: str | None
    debt_enabled: bool
    debt_original_balance_cents: int | None
    debt_remaining_balance_cents: int | None
    debt_interest_apr_bps: int | None
    debt_interest_type: DebtInterestType | None
    debt_start_date: date | None
    debt_color: str | None
    include_in_payoff_strategy: bool
    interest_tax_deductible: bool
    interest_tax_deduction_type: InterestTaxDeductionType
    interest_tax_deduction_limit_cents: int | None
    budget_period_assignment: int | None
    split_across_periods: bool
    created_at: datetime
    updated_at: datetime


class TemplateListResponse(BaseModel):
    data: list[TemplateResponse]
    total: int
    limit: int
    offset: int


class OccurrenceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    template_id: int
    household_id: str
    due_date: date
    status: OccurrenceStatus
    amount_due_cents: int
    amount_paid_cents: int
    amount_remaining_cents: int
    actual_amount_cents: int | None
    paid_date: date | None
    last_transaction_id: int | None
    days_late: int
    late_fee_cents: int
    is_manual_override: bool
    budget_period_override: int | None
    notes: str | None
    created_at: datetime
    updated_at: datetime


class AllocationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    occurrence_id: int
    template_id: int
    period_number: int
    allocated_amount_cents: int
    paid_amount_cents: int
    is_paid: bool
    payment_event_id: int | None


class PaymentEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    template_id: int
    occurrence_id: int
    transaction_id: int
    amount_cents: int
    principal_cents: int | None
    interest_cents: int | None
    balance_before_cents: int | None
    balance_after_cents: int | None
    payment_date: date
    payment_method: PaymentMethod
    source_account_id: int | None
    idempotency_key: str | None
    notes: str | None
    created_at: datetime


class OccurrenceWithTemplateResponse(BaseModel):
    occurrence: OccurrenceResponse
    template: TemplateResponse
    allocations: list[AllocationResponse]


class SummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    overdue_count: int
    overdue_amount_cents: int
    upcoming_count: int
    upcoming_amount_cents: int
    next_due_date: date | None
    paid_this_period_count: int
    paid_this_period_amount_cents: int


class BudgetPeriodResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    start: date
    end: date
    period_number: int
    periods_in_month: int


class OccurrenceListResponse(BaseModel):
    data: list[OccurrenceWithTemplateResponse]
    summary: SummaryResponse
    period: BudgetPeriodResponse | None
    total: int
    limit: int
    offset: int


class PayOccurrenceRequest(BaseModel):
    account_id: int | None = None
    amount_cents: int | None = None
    payment_date: date | None = None
    allocation_id: int | None = None
    idempotency_key: str | None = Field(default=None, max_length=128)
    notes: str | None = None


class PayOccurrenceResponse(BaseModel):
    occurrence: OccurrenceResponse
    payment_event: PaymentEventResponse
    updated_allocations: list[AllocationResponse]
    replayed: bool


class SkipOccurrenceRequest(BaseModel):
    notes: str | None = None


class AllocationItemRequest(BaseModel):
    period_number: int
    allocated_amount_cents: int


class AllocationsUpdateRequest(BaseModel):
    allocations: list[AllocationItemRequest]


class AutopayRuleRequest(BaseModel):
    is_enabled: bool
    pay_from_account_id: int | None = None
    amount_type: AutopayAmountType = AutopayAmountType.FULL_BALANCE
    fixed_amount_cents: int | None = None
    days_before_due: int = 0


class AutopayRuleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    template_id: int
    is_enabled: bool
    pay_from_account_id: int
    amount_type: AutopayAmountType
    fixed_amount_cents: int | None
    days_before_due: int


class AutopayRunRequest(BaseModel):
    run_date: date | None = None
    run_type: AutopayRunType | None = None
    dry_run: bool = False


class AutopayItemErrorResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    template_id: int
    occurrence_id: int
    message: str
    code: str


class AutopayRunResultResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    run_id: int
    run_date: date
    run_type: AutopayRunType
    status: AutopayRunStatus
    processed_count: int
    success_count: int
    failed_count: int
    skipped_count: int
    total_amount_cents: int
    errors: list[AutopayItemErrorResponse]


class AutopayRunRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    run_date: date
    run_type: AutopayRunType
    status: AutopayRunStatus
    processed_count: int
    success_count: int
    failed_count: int
    skipped_count: int
    total_amount_cents: int
    error_summary: str | None
    started_at: datetime
    completed_at: datetime | None


class AutopayRunListResponse(BaseModel):
    data: list[AutopayRunRecordResponse]
    total: int
    limit: int
    offset: int


class DashboardResponse(SummaryResponse):
    active_template_count: int
    current_period: BudgetPeriodResponse


class PreferencesUpdateRequest(BaseModel):
    budget_cycle_frequency: BudgetCycleFrequency | None = None
    budget_cycle_start_day: int | None = None
    budget_cycle_reference_date: date | None = None
    budget_cycle_semi_monthly_days: list[int] | None = None
    budget_period_rollover: bool | None = None
    budget_period_manual_amount_cents: int | None = None


class PreferencesResponse(BaseModel):
    budget_cycle_frequency: str
    budget_cycle_start_day: int | None
    budget_cycle_reference_date: date | None
    budget_cycle_semi_monthly_days: str | None
    budget_period_rollover: bool
    budget_period_manual_amount_cents: int | None
    current_period: BudgetPeriodResponse


class ScheduledAutopayResponse(BaseModel):
    job_name: str
    run_date: date
    ran: bool
    runs: list[AutopayRunResultResponse]
    failed_household_ids: list[str] = []
