"""Finance schemas. All amounts are integers in the smallest currency unit; months are YYYY-MM keys."""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from app.core.enums import DiscountKind, PaymentKind

from .months import MONTH_KEY_PATTERN


# --- Tariffs ---
class TariffCreate(BaseModel):
    monthly_amount: int = Field(..., gt=0)
    annual_amount: Optional[int] = Field(None, gt=0)
    chargeable_months: Optional[List[int]] = Field(None, description="Months 1..12 billed per academic year")
    effective_from: Optional[datetime] = Field(None, description="Defaults to the first day of next month (UTC)")
    academic_year_label: Optional[str] = Field(None, max_length=20)
    note: Optional[str] = Field(None, max_length=500)


class TariffRollbackRequest(BaseModel):
    effective_from: Optional[datetime] = None
    note: Optional[str] = Field(None, max_length=500)


class TariffVersionResponse(BaseModel):
    id: UUID
    monthly_amount: int
    annual_amount: int
    chargeable_months: List[int]
    academic_year_label: Optional[str] = None
    effective_from: datetime
    status: str
    note: Optional[str] = None
    created_by: Optional[UUID] = None
    created_at: datetime

    class Config:
        from_attributes = True


class TariffAuditResponse(BaseModel):
    id: UUID
    tariff_version_id: Optional[UUID] = None
    action: str
    old_value: Optional[Dict[str, Any]] = None
    new_value: Optional[Dict[str, Any]] = None
    note: Optional[str] = None
    performed_by: Optional[UUID] = None
    created_at: datetime

    class Config:
        from_attributes = True


class CurrentTariffResponse(BaseModel):
    version_id: Optional[UUID] = None  # None while the configured defaults apply
    monthly_amount: int
    annual_amount: int
    chargeable_months: List[int]
    effective_from: Optional[datetime] = None


class SettingsPreview(BaseModel):
    student_count: int
    debtor_count: int
    paying_count: int
    expected_monthly: int
    expected_yearly: int
    gap_monthly: int
    gap_yearly: int
    this_month_paid_amount: int
    this_year_paid_amount: int
    cashflow_diff_amount: int


class SettingsConstraints(BaseModel):
    min_amount: int
    max_amount: int


class FinanceSettingsResponse(BaseModel):
    tariff: CurrentTariffResponse
    preview: SettingsPreview
    constraints: SettingsConstraints
    versions: List[TariffVersionResponse]
    audits: List[TariffAuditResponse]
    degraded: bool = False


# --- Debt ---
class DebtMonthResponse(BaseModel):
    key: str
    label: str
    amount: int


class StudentDebtResponse(BaseModel):
    id: UUID
    full_name: str
    username: Optional[str] = None
    phone: Optional[str] = None
    classroom: Optional[str] = None
    status: str  # DEBTOR | NO_DEBT
    debt_months: List[DebtMonthResponse]
    debt_month_count: int
    total_debt_amount: int
    paid_month_count: int
    current_month_obligation: int
    current_month_debt: int
    previous_month_debt: int


class CashflowResponse(BaseModel):
    month: str
    label: str
    plan_amount: int
    collected_amount: int
    debt_amount: int
    diff_amount: int


class CohortSummaryResponse(BaseModel):
    total_rows: int
    total_debtors: int
    total_debt_amount: int
    this_month_debtors: int
    previous_month_debtors: int
    selected_month_debtors: int
    this_month_debt_amount: int
    previous_month_debt_amount: int
    selected_month_debt_amount: int
    this_month_paid_amount: int
    this_year_paid_amount: int
    monthly_plan_amount: int
    yearly_plan_amount: int
    tariff_monthly_amount: int
    tariff_annual_amount: int
    cashflow: CashflowResponse
    selected_month: Optional[str] = None


class StudentListResponse(BaseModel):
    page: int
    limit: int
    total: int
    pages: int
    tariff: CurrentTariffResponse
    summary: CohortSummaryResponse
    students: List[StudentDebtResponse]
    degraded: bool = False


# --- Student detail ---
class LedgerRowResponse(BaseModel):
    key: str
    label: str
    year: int
    month: int
    base_amount: int
    discount_amount: int
    net_amount: int
    paid_amount: int
    remaining_amount: int
    status: str
    source: str


class DiscountMonthResponse(BaseModel):
    key: str
    label: str
    amount: int


class DiscountResponse(BaseModel):
    id: UUID
    student_id: UUID
    kind: str
    value: Optional[int] = None
    start_month: str
    month_count: int
    end_month: str
    months: List[DiscountMonthResponse]
    reason: str
    note: Optional[str] = None
    is_active: bool
    created_by: Optional[UUID] = None
    created_at: datetime
    deactivated_at: Optional[datetime] = None
    deactivated_by: Optional[UUID] = None
    deactivation_reason: Optional[str] = None


class TransactionResponse(BaseModel):
    id: UUID
    student_id: UUID
    kind: str
    amount: int
    status: str
    idempotency_key: Optional[str] = None
    covered_months: List[str] = Field(default_factory=list)
    tariff_version_id: Optional[UUID] = None
    tariff_snapshot: Optional[Dict[str, Any]] = None
    note: Optional[str] = None
    created_by: Optional[UUID] = None
    created_at: datetime
    reversed_at: Optional[datetime] = None
    reversed_by: Optional[UUID] = None
    revert_note: Optional[str] = None


class StudentFinanceDetailResponse(BaseModel):
    student: StudentDebtResponse
    tariff: CurrentTariffResponse
    ledger: List[LedgerRowResponse]
    discounts: List[DiscountResponse]
    transactions: List[TransactionResponse]
    degraded: bool = False


# --- Discounts ---
class DiscountCreate(BaseModel):
    kind: DiscountKind
    value: Optional[int] = Field(None, description="Percent for PERCENT, amount for FIXED_AMOUNT, empty for FULL_WAIVER")
    start_month: str = Field(..., pattern=MONTH_KEY_PATTERN)
    month_count: int = Field(1, ge=1, le=36)
    reason: str = Field(..., min_length=3, max_length=120)
    note: Optional[str] = Field(None, max_length=500)

    @model_validator(mode="after")
    def validate_value_for_kind(self) -> "DiscountCreate":
        if self.kind == DiscountKind.PERCENT:
            if self.value is None or not 1 <= self.value <= 99:
                raise ValueError("PERCENT discount value must be between 1 and 99")
        elif self.kind == DiscountKind.FIXED_AMOUNT:
            if self.value is None or self.value <= 0:
                raise ValueError("FIXED_AMOUNT discount value must be a positive amount")
        elif self.value is not None:
            raise ValueError("FULL_WAIVER discount takes no value")
        return self


class DiscountDeactivate(BaseModel):
    reason: str = Field(..., min_length=3, max_length=200)


class DiscountDeactivateResponse(BaseModel):
    discount: DiscountResponse
    retained_months: List[str]


# --- Payments ---
class PaymentRequest(BaseModel):
    kind: PaymentKind
    start_month: str = Field(..., pattern=MONTH_KEY_PATTERN)
    month_count: Optional[int] = Field(None, ge=1, le=36, description="Forced to 12 for ANNUAL; defaults to 1")
    amount: Optional[int] = Field(None, gt=0, description="Must equal the expected amount when given; required for AD_HOC")
    idempotency_key: Optional[str] = Field(None, min_length=1, max_length=100)
    note: Optional[str] = Field(None, max_length=500)

    @model_validator(mode="after")
    def validate_amount_for_kind(self) -> "PaymentRequest":
        if self.kind == PaymentKind.AD_HOC and self.amount is None:
            raise ValueError("amount is required for AD_HOC payments")
        return self


class PaymentMonthResponse(BaseModel):
    key: str
    label: str
    net_amount: int
    paid_amount: int
    remaining_amount: int
    allocated_amount: int
    skip_reason: Optional[str] = None  # already_covered | not_billable


class PaymentPreviewResponse(BaseModel):
    student_id: UUID
    kind: str
    start_month: str
    month_count: int
    expected_amount: int
    amount: int
    months: List[PaymentMonthResponse]
    covered_months: List[str]
    skipped_months: List[str]
    tariff: CurrentTariffResponse


class PaymentCommitResponse(BaseModel):
    transaction: TransactionResponse
    plan: PaymentPreviewResponse


class RevertRequest(BaseModel):
    note: Optional[str] = Field(None, max_length=500)


class RevertResponse(BaseModel):
    transaction: TransactionResponse
    freed_months: List[str]
    degraded: bool = False
