"""Debt aggregator: per-student arrears from ledger rows, and cohort totals for the students list."""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.enums import DebtMonthFilter, DebtStatus, DebtStatusFilter, ObligationStatus, PaymentStatus
from app.core.models import PaymentTransaction
from app.core.timeutils import as_naive_utc

from .billing_calendar import is_chargeable
from .discounts import build_discount_map
from .enrollment import active_enrollment_start_dates
from .ledger_sync import LedgerRow, chunked, load_discount_records
from .months import month_key, month_label, month_serial, month_start, parse_month_key, shift_month


@dataclass(frozen=True)
class DebtMonth:
    key: str
    label: str
    amount: int


@dataclass
class StudentDebt:
    status: DebtStatus
    debt_months: List[DebtMonth] = field(default_factory=list)
    debt_month_count: int = 0
    total_debt_amount: int = 0
    paid_month_count: int = 0
    due_month_count: int = 0
    current_month_obligation: int = 0
    current_month_debt: int = 0
    previous_month_debt: int = 0

    @property
    def debt_keys(self) -> List[str]:
        return [m.key for m in self.debt_months]

    def debt_for(self, key: str) -> int:
        return next((m.amount for m in self.debt_months if m.key == key), 0)


@dataclass
class StudentDebtView:
    student_id: UUID
    full_name: str
    username: Optional[str]
    phone: Optional[str]
    classroom: Optional[str]
    debt: StudentDebt


def summarize_student_debt(rows: Iterable[LedgerRow], now: datetime) -> StudentDebt:
    """
    Arrears of one student.

    Only months up to and including the current month count; a row is a debt month while its
    status is not PAID, for the row's remaining amount. Debt months are chronological.
    """
    current_serial = month_serial(now.year, now.month)
    current_key = month_key(now.year, now.month)
    previous_key = month_key(*shift_month(now.year, now.month, -1))

    ordered = sorted(rows or [], key=lambda r: month_serial(r.year, r.month))
    due = [r for r in ordered if month_serial(r.year, r.month) <= current_serial]
    debt_months = [
        DebtMonth(key=r.key, label=month_label(r.year, r.month), amount=r.remaining_amount)
        for r in due
        if r.status != ObligationStatus.PAID.value
    ]
    current_row = next((r for r in due if r.key == current_key), None)
    total = sum(m.amount for m in debt_months)

    debt = StudentDebt(
        status=DebtStatus.DEBTOR if debt_months else DebtStatus.NO_DEBT,
        debt_months=debt_months,
        debt_month_count=len(debt_months),
        total_debt_amount=total,
        paid_month_count=max(0, len(due) - len(debt_months)),
        due_month_count=len(due),
        current_month_obligation=current_row.net_amount if current_row else 0,
    )
    debt.current_month_debt = debt.debt_for(current_key)
    debt.previous_month_debt = debt.debt_for(previous_key)
    return debt


def filter_debt_views(
    views: Iterable[StudentDebtView],
    status: DebtStatusFilter = DebtStatusFilter.ALL,
    debt_month: DebtMonthFilter = DebtMonthFilter.ALL,
    target_month: Optional[str] = None,
    now: Optional[datetime] = None,
) -> List[StudentDebtView]:
    """An explicit target month takes precedence over the CURRENT / PREVIOUS debt month filter."""
    now = as_naive_utc(now)
    current_key = month_key(now.year, now.month)
    previous_key = month_key(*shift_month(now.year, now.month, -1))

    result = []
    for view in views:
        if status == DebtStatusFilter.DEBTOR and view.debt.status != DebtStatus.DEBTOR:
            continue
        if status == DebtStatusFilter.NO_DEBT and view.debt.status != DebtStatus.NO_DEBT:
            continue
        keys = set(view.debt.debt_keys)
        if target_month:
            if target_month not in keys:
                continue
        elif debt_month == DebtMonthFilter.CURRENT and current_key not in keys:
            continue
        elif debt_month == DebtMonthFilter.PREVIOUS and previous_key not in keys:
            continue
        result.append(view)
    return result


@dataclass
class CashflowSummary:
    month: str
    label: str
    plan_amount: int = 0
    collected_amount: int = 0
    debt_amount: int = 0
    diff_amount: int = 0


@dataclass
class CohortSummary:
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
    cashflow: CashflowSummary
    selected_month: Optional[str] = None
    degraded: bool = False


def plan_amount_for_month(
    start_dates: Dict[UUID, date],
    discount_maps: Dict[UUID, Dict[str, int]],
    monthly_amount: int,
    chargeable_months: Iterable[int],
    key: str,
) -> int:
    """Sum of what each billed student owes for one month, discounts applied."""
    year, month = parse_month_key(key)
    if not is_chargeable(month, tuple(chargeable_months)):
        return 0
    serial = month_serial(year, month)
    total = 0
    for student_id, start in start_dates.items():
        if month_serial(start.year, start.month) > serial:
            continue
        amount = discount_maps.get(student_id, {}).get(key, monthly_amount)
        if amount > 0:
            total += amount
    return total


async def collected_amount(
    db: AsyncSession,
    student_ids: Sequence[UUID],
    start: datetime,
    end: datetime,
) -> int:
    """Sum of ACTIVE transactions created in [start, end)."""
    total = 0
    for chunk in chunked(list(student_ids), settings.finance_sync_chunk_size):
        result = await db.execute(
            select(func.coalesce(func.sum(PaymentTransaction.amount), 0)).where(
                PaymentTransaction.student_id.in_(chunk),
                PaymentTransaction.status == PaymentStatus.ACTIVE.value,
                PaymentTransaction.created_at >= start,
                PaymentTransaction.created_at < end,
            )
        )
        total += int(result.scalar() or 0)
    return total


async def build_cohort_summary(
    db: AsyncSession,
    cohort: Sequence[StudentDebtView],
    filtered: Sequence[StudentDebtView],
    monthly_amount: int,
    annual_amount: int,
    chargeable_months: Sequence[int],
    now: datetime,
    target_month: Optional[str] = None,
    cashflow_month: Optional[str] = None,
) -> CohortSummary:
    """
    Totals over the filtered views, plus a cashflow comparison for one month.

    The cashflow plan covers the whole cohort (search and classroom filters only), every
    student whose billing started on or before that month. Collected money is the ACTIVE
    transactions dated within the month.
    """
    current_key = month_key(now.year, now.month)
    previous_key = month_key(*shift_month(now.year, now.month, -1))
    cashflow_key = cashflow_month or target_month or current_key

    monthly_plan = sum(v.debt.current_month_obligation for v in filtered)

    cohort_ids = [v.student_id for v in cohort]
    start_dates = await active_enrollment_start_dates(db, cohort_ids)
    discounts = await load_discount_records(db, cohort_ids)
    discount_maps = {
        sid: build_discount_map(records, monthly_amount) for sid, records in discounts.by_student.items()
    }
    cashflow_year, cashflow_month_no = parse_month_key(cashflow_key)
    cashflow_start = month_start(cashflow_year, cashflow_month_no)
    cashflow_end = month_start(*shift_month(cashflow_year, cashflow_month_no, 1))
    plan = plan_amount_for_month(start_dates, discount_maps, monthly_amount, chargeable_months, cashflow_key)
    collected = await collected_amount(db, cohort_ids, cashflow_start, cashflow_end)
    cashflow = CashflowSummary(
        month=cashflow_key,
        label=month_label(cashflow_year, cashflow_month_no),
        plan_amount=plan,
        collected_amount=collected,
        debt_amount=sum(v.debt.debt_for(cashflow_key) for v in filtered),
        diff_amount=plan - collected,
    )

    filtered_ids = [v.student_id for v in filtered]
    this_month_start = month_start(now.year, now.month)
    next_month = month_start(*shift_month(now.year, now.month, 1))
    paid_this_month = await collected_amount(db, filtered_ids, this_month_start, next_month)
    paid_this_year = await collected_amount(db, filtered_ids, month_start(now.year, 1), month_start(now.year + 1, 1))

    return CohortSummary(
        total_rows=len(filtered),
        total_debtors=sum(1 for v in filtered if v.debt.status == DebtStatus.DEBTOR),
        total_debt_amount=sum(v.debt.total_debt_amount for v in filtered),
        this_month_debtors=sum(1 for v in filtered if current_key in v.debt.debt_keys),
        previous_month_debtors=sum(1 for v in filtered if previous_key in v.debt.debt_keys),
        selected_month_debtors=sum(1 for v in filtered if target_month in v.debt.debt_keys) if target_month else 0,
        this_month_debt_amount=sum(v.debt.current_month_debt for v in filtered),
        previous_month_debt_amount=sum(v.debt.previous_month_debt for v in filtered),
        selected_month_debt_amount=sum(v.debt.debt_for(target_month) for v in filtered) if target_month else 0,
        this_month_paid_amount=paid_this_month,
        this_year_paid_amount=paid_this_year,
        monthly_plan_amount=monthly_plan,
        yearly_plan_amount=monthly_plan * len(tuple(chargeable_months)),
        tariff_monthly_amount=monthly_amount,
        tariff_annual_amount=annual_amount,
        cashflow=cashflow,
        selected_month=target_month,
        degraded=discounts.degraded,
    )


def sort_key(view: StudentDebtView):
    """Students list order: largest debt first, then name."""
    return (-view.debt.total_debt_amount, view.full_name.lower(), str(view.student_id))
