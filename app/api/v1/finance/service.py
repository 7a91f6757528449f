"""Finance service: tariff settings, student debt list and detail, discounts, payments, reverts."""

import logging
import math
from datetime import datetime
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.enums import ConflictKind, DebtMonthFilter, DebtStatusFilter, DiscountKind
from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.core.models import Classroom, Enrollment, PaymentTransaction, Student, StudentDiscount
from app.core.timeutils import as_naive_utc
from app.db.schema_check import is_missing_column_error

from . import export, payments, tariffs
from .billing_calendar import resolve_chargeable_months
from .debt import (
    CohortSummary,
    StudentDebtView,
    build_cohort_summary,
    filter_debt_views,
    sort_key,
    summarize_student_debt,
)
from .discounts import (
    SNAPSHOT_VERSION,
    DiscountRecord,
    build_snapshot,
    discount_entries,
    retained_entries_on_deactivation,
)
from .enrollment import get_student_or_404
from .ledger_sync import LedgerRow, load_obligation_rows, sync_obligations
from .months import month_key, month_label, parse_month_key, safe_month_label, shift_month
from .schemas import (
    CashflowResponse,
    CohortSummaryResponse,
    CurrentTariffResponse,
    DebtMonthResponse,
    DiscountCreate,
    DiscountDeactivateResponse,
    DiscountMonthResponse,
    DiscountResponse,
    FinanceSettingsResponse,
    LedgerRowResponse,
    PaymentCommitResponse,
    PaymentMonthResponse,
    PaymentPreviewResponse,
    PaymentRequest,
    RevertResponse,
    SettingsConstraints,
    SettingsPreview,
    StudentDebtResponse,
    StudentFinanceDetailResponse,
    StudentListResponse,
    TariffAuditResponse,
    TariffCreate,
    TariffRollbackRequest,
    TariffVersionResponse,
    TransactionResponse,
)

logger = logging.getLogger(__name__)

_DISCOUNT_COLUMNS = (
    StudentDiscount.id,
    StudentDiscount.student_id,
    StudentDiscount.kind,
    StudentDiscount.value,
    StudentDiscount.start_month,
    StudentDiscount.month_count,
    StudentDiscount.reason,
    StudentDiscount.note,
    StudentDiscount.is_active,
    StudentDiscount.created_by,
    StudentDiscount.created_at,
    StudentDiscount.deactivated_at,
    StudentDiscount.deactivated_by,
    StudentDiscount.deactivation_reason,
)


# --- Mappers ---
def _tariff_to_response(tariff: tariffs.CurrentTariff) -> CurrentTariffResponse:
    return CurrentTariffResponse(
        version_id=tariff.version_id,
        monthly_amount=tariff.monthly_amount,
        annual_amount=tariff.annual_amount,
        chargeable_months=list(tariff.chargeable_months),
        effective_from=tariff.effective_from,
    )


def _version_to_response(version) -> TariffVersionResponse:
    return TariffVersionResponse(
        id=version.id,
        monthly_amount=int(version.monthly_amount),
        annual_amount=int(version.annual_amount),
        chargeable_months=list(
            resolve_chargeable_months(version.chargeable_months, version.annual_amount, version.monthly_amount)
        ),
        academic_year_label=version.academic_year_label,
        effective_from=version.effective_from,
        status=version.status,
        note=version.note,
        created_by=version.created_by,
        created_at=version.created_at,
    )


def _view_to_response(view: StudentDebtView) -> StudentDebtResponse:
    debt = view.debt
    return StudentDebtResponse(
        id=view.student_id,
        full_name=view.full_name,
        username=view.username,
        phone=view.phone,
        classroom=view.classroom,
        status=debt.status.value,
        debt_months=[DebtMonthResponse(key=m.key, label=m.label, amount=m.amount) for m in debt.debt_months],
        debt_month_count=debt.debt_month_count,
        total_debt_amount=debt.total_debt_amount,
        paid_month_count=debt.paid_month_count,
        current_month_obligation=debt.current_month_obligation,
        current_month_debt=debt.current_month_debt,
        previous_month_debt=debt.previous_month_debt,
    )


def _summary_to_response(summary: CohortSummary) -> CohortSummaryResponse:
    cashflow = summary.cashflow
    return CohortSummaryResponse(
        total_rows=summary.total_rows,
        total_debtors=summary.total_debtors,
        total_debt_amount=summary.total_debt_amount,
        this_month_debtors=summary.this_month_debtors,
        previous_month_debtors=summary.previous_month_debtors,
        selected_month_debtors=summary.selected_month_debtors,
        this_month_debt_amount=summary.this_month_debt_amount,
        previous_month_debt_amount=summary.previous_month_debt_amount,
        selected_month_debt_amount=summary.selected_month_debt_amount,
        this_month_paid_amount=summary.this_month_paid_amount,
        this_year_paid_amount=summary.this_year_paid_amount,
        monthly_plan_amount=summary.monthly_plan_amount,
        yearly_plan_amount=summary.yearly_plan_amount,
        tariff_monthly_amount=summary.tariff_monthly_amount,
        tariff_annual_amount=summary.tariff_annual_amount,
        cashflow=CashflowResponse(
            month=cashflow.month,
            label=cashflow.label,
            plan_amount=cashflow.plan_amount,
            collected_amount=cashflow.collected_amount,
            debt_amount=cashflow.debt_amount,
            diff_amount=cashflow.diff_amount,
        ),
        selected_month=summary.selected_month,
    )


def _ledger_row_to_response(row: LedgerRow) -> LedgerRowResponse:
    return LedgerRowResponse(
        key=row.key,
        label=month_label(row.year, row.month),
        year=row.year,
        month=row.month,
        base_amount=row.base_amount,
        discount_amount=row.discount_amount,
        net_amount=row.net_amount,
        paid_amount=row.paid_amount,
        remaining_amount=row.remaining_amount,
        status=row.status,
        source=row.source,
    )


def _discount_to_response(row, record: DiscountRecord, base: int) -> DiscountResponse:
    start = parse_month_key(row.start_month)
    count = int(row.month_count or 1)
    return DiscountResponse(
        id=row.id,
        student_id=row.student_id,
        kind=row.kind,
        value=row.value,
        start_month=row.start_month,
        month_count=count,
        end_month=month_key(*shift_month(start[0], start[1], count - 1)),
        months=[
            DiscountMonthResponse(key=e.key, label=safe_month_label(e.key), amount=e.amount)
            for e in discount_entries(record, base)
        ],
        reason=row.reason,
        note=row.note,
        is_active=bool(row.is_active),
        created_by=row.created_by,
        created_at=row.created_at,
        deactivated_at=row.deactivated_at,
        deactivated_by=row.deactivated_by,
        deactivation_reason=row.deactivation_reason,
    )


def _transaction_to_response(tx: PaymentTransaction) -> TransactionResponse:
    return TransactionResponse(
        id=tx.id,
        student_id=tx.student_id,
        kind=tx.kind,
        amount=int(tx.amount),
        status=tx.status,
        idempotency_key=tx.idempotency_key,
        covered_months=list(tx.covered_months or []),
        tariff_version_id=tx.tariff_version_id,
        tariff_snapshot=tariffs.normalize_tariff_snapshot(tx.tariff_snapshot),
        note=tx.note,
        created_by=tx.created_by,
        created_at=tx.created_at,
        reversed_at=tx.reversed_at,
        reversed_by=tx.reversed_by,
        revert_note=tx.revert_note,
    )


def _plan_to_response(plan: payments.PaymentPlan) -> PaymentPreviewResponse:
    return PaymentPreviewResponse(
        student_id=plan.student_id,
        kind=plan.kind.value,
        start_month=plan.start_month,
        month_count=plan.month_count,
        expected_amount=plan.expected_amount,
        amount=plan.amount,
        months=[
            PaymentMonthResponse(
                key=m.key,
                label=m.label,
                net_amount=m.net_amount,
                paid_amount=m.paid_amount,
                remaining_amount=m.remaining_amount,
                allocated_amount=m.allocated,
                skip_reason=m.skip_reason,
            )
            for m in plan.months
        ],
        covered_months=plan.covered_keys,
        skipped_months=[m.key for m in plan.skipped],
        tariff=_tariff_to_response(plan.tariff),
    )


# --- Cohort ---
def _classroom_label(name: Optional[str], academic_year: Optional[str]) -> Optional[str]:
    if not name:
        return None
    return f"{name} ({academic_year})" if academic_year else name


async def _load_students(
    db: AsyncSession,
    search: Optional[str] = None,
    classroom_id: Optional[UUID] = None,
    student_id: Optional[UUID] = None,
) -> List[Tuple]:
    """(id, full name, username, phone, classroom label) of students joined to their active enrollment."""
    stmt = (
        select(
            Student.id,
            Student.first_name,
            Student.last_name,
            Student.username,
            Student.phone,
            Classroom.name,
            Classroom.academic_year,
        )
        .outerjoin(Enrollment, (Enrollment.student_id == Student.id) & Enrollment.is_active.is_(True))
        .outerjoin(Classroom, Classroom.id == Enrollment.classroom_id)
        .order_by(Student.last_name, Student.first_name, Enrollment.created_at.desc())
    )
    if search:
        term = f"%{search.strip().lower()}%"
        stmt = stmt.where(
            or_(
                func.lower(Student.first_name).like(term),
                func.lower(Student.last_name).like(term),
                func.lower(func.coalesce(Student.username, "")).like(term),
            )
        )
    if classroom_id:
        stmt = stmt.where(Enrollment.classroom_id == classroom_id)
    if student_id:
        stmt = stmt.where(Student.id == student_id)

    result = await db.execute(stmt)
    students = []
    seen = set()
    for sid, first_name, last_name, username, phone, classroom_name, academic_year in result.all():
        if sid in seen:
            continue
        seen.add(sid)
        full_name = f"{first_name} {last_name or ''}".strip()
        students.append((sid, full_name, username, phone, _classroom_label(classroom_name, academic_year)))
    return students


async def _build_views(
    db: AsyncSession,
    tariff: tariffs.CurrentTariff,
    now: datetime,
    search: Optional[str] = None,
    classroom_id: Optional[UUID] = None,
    student_id: Optional[UUID] = None,
) -> Tuple[List[StudentDebtView], dict, bool]:
    """Sync the ledger of the selected students, then summarize it. Returns (views, rows, degraded)."""
    students = await _load_students(db, search=search, classroom_id=classroom_id, student_id=student_id)
    ids = [s[0] for s in students]
    sync = await sync_obligations(
        db,
        ids,
        tariff.monthly_amount,
        chargeable_months=tariff.chargeable_months,
        now=now,
    )
    rows, rows_degraded = await load_obligation_rows(db, ids)
    views = [
        StudentDebtView(
            student_id=sid,
            full_name=full_name,
            username=username,
            phone=phone,
            classroom=classroom,
            debt=summarize_student_debt(rows.get(sid, []), now),
        )
        for sid, full_name, username, phone, classroom in students
    ]
    return views, rows, sync.degraded or rows_degraded


# --- Settings / tariffs ---
async def get_settings(db: AsyncSession, now: Optional[datetime] = None) -> FinanceSettingsResponse:
    now = as_naive_utc(now)
    tariff = await tariffs.resolve_current(db, now=now)
    views, _, degraded = await _build_views(db, tariff, now)
    summary = await build_cohort_summary(
        db,
        views,
        views,
        tariff.monthly_amount,
        tariff.annual_amount,
        tariff.chargeable_months,
        now,
    )
    student_count = len(views)
    preview = SettingsPreview(
        student_count=student_count,
        debtor_count=summary.total_debtors,
        paying_count=max(0, student_count - summary.this_month_debtors),
        expected_monthly=summary.cashflow.plan_amount or summary.monthly_plan_amount,
        expected_yearly=summary.yearly_plan_amount,
        gap_monthly=summary.this_month_debt_amount,
        gap_yearly=summary.total_debt_amount,
        this_month_paid_amount=summary.this_month_paid_amount,
        this_year_paid_amount=summary.this_year_paid_amount,
        cashflow_diff_amount=summary.cashflow.diff_amount,
    )
    versions = await tariffs.list_versions(db)
    audits = await tariffs.list_audits(db)
    return FinanceSettingsResponse(
        tariff=_tariff_to_response(tariff),
        preview=preview,
        constraints=SettingsConstraints(min_amount=settings.finance_min_amount, max_amount=settings.finance_max_amount),
        versions=[_version_to_response(v) for v in versions],
        audits=[TariffAuditResponse.model_validate(a) for a in audits],
        degraded=degraded or summary.degraded,
    )


async def create_tariff(
    db: AsyncSession,
    payload: TariffCreate,
    created_by: Optional[UUID] = None,
    now: Optional[datetime] = None,
) -> TariffVersionResponse:
    version = await tariffs.create_planned_version(
        db,
        monthly_amount=payload.monthly_amount,
        annual_amount=payload.annual_amount,
        chargeable_months=payload.chargeable_months,
        effective_from=payload.effective_from,
        academic_year_label=payload.academic_year_label,
        note=payload.note,
        created_by=created_by,
        now=now,
    )
    return _version_to_response(version)


async def rollback_tariff(
    db: AsyncSession,
    source_version_id: UUID,
    payload: TariffRollbackRequest,
    created_by: Optional[UUID] = None,
    now: Optional[datetime] = None,
) -> TariffVersionResponse:
    version = await tariffs.rollback_to_version(
        db,
        source_version_id,
        effective_from=payload.effective_from,
        note=payload.note,
        created_by=created_by,
        now=now,
    )
    return _version_to_response(version)


# --- Students ---
def _parse_optional_month(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    return month_key(*parse_month_key(value))


async def list_students(
    db: AsyncSession,
    search: Optional[str] = None,
    classroom_id: Optional[UUID] = None,
    status: DebtStatusFilter = DebtStatusFilter.ALL,
    debt_month: DebtMonthFilter = DebtMonthFilter.ALL,
    debt_target_month: Optional[str] = None,
    cashflow_month: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
    now: Optional[datetime] = None,
) -> StudentListResponse:
    now = as_naive_utc(now)
    target = _parse_optional_month(debt_target_month)
    cashflow = _parse_optional_month(cashflow_month)
    page = max(1, page)
    limit = max(1, min(100, limit))

    tariff = await tariffs.resolve_current(db, now=now)
    cohort, _, degraded = await _build_views(db, tariff, now, search=search, classroom_id=classroom_id)
    filtered = sorted(filter_debt_views(cohort, status, debt_month, target, now=now), key=sort_key)
    summary = await build_cohort_summary(
        db,
        cohort,
        filtered,
        tariff.monthly_amount,
        tariff.annual_amount,
        tariff.chargeable_months,
        now,
        target_month=target,
        cashflow_month=cashflow,
    )
    total = len(filtered)
    offset = (page - 1) * limit
    return StudentListResponse(
        page=page,
        limit=limit,
        total=total,
        pages=math.ceil(total / limit) if total else 0,
        tariff=_tariff_to_response(tariff),
        summary=_summary_to_response(summary),
        students=[_view_to_response(v) for v in filtered[offset:offset + limit]],
        degraded=degraded or summary.degraded,
    )


async def export_debtors(
    db: AsyncSession,
    search: Optional[str] = None,
    classroom_id: Optional[UUID] = None,
    now: Optional[datetime] = None,
) -> Tuple[bytes, str]:
    """(xlsx content, filename) of every debtor matching the search and classroom filters."""
    now = as_naive_utc(now)
    tariff = await tariffs.resolve_current(db, now=now)
    cohort, _, _ = await _build_views(db, tariff, now, search=search, classroom_id=classroom_id)
    debtors = sorted(filter_debt_views(cohort, DebtStatusFilter.DEBTOR, now=now), key=sort_key)
    return export.build_debtors_workbook(debtors), export.debtors_filename(now)


async def _load_discount_rows(db: AsyncSession, student_id: UUID) -> Tuple[List[Tuple], bool]:
    """[(row, DiscountRecord)] for one student, newest first, and whether the read was degraded."""
    stmt_filter = StudentDiscount.student_id == student_id
    order = StudentDiscount.created_at.desc()
    try:
        result = await db.execute(
            select(*_DISCOUNT_COLUMNS, StudentDiscount.monthly_amount_snapshot, StudentDiscount.snapshot_version)
            .where(stmt_filter)
            .order_by(order)
        )
        rows = result.all()
        return [(row, DiscountRecord.from_row(row)) for row in rows], False
    except DBAPIError as exc:
        if not is_missing_column_error(exc):
            raise
        await db.rollback()
        logger.warning("Discount snapshot columns missing; listing discounts without snapshots")
    result = await db.execute(select(*_DISCOUNT_COLUMNS).where(stmt_filter).order_by(order))
    return [(row, DiscountRecord.from_row(row, with_snapshot=False)) for row in result.all()], True


async def get_student_detail(
    db: AsyncSession,
    student_id: UUID,
    now: Optional[datetime] = None,
) -> StudentFinanceDetailResponse:
    now = as_naive_utc(now)
    await get_student_or_404(db, student_id)
    tariff = await tariffs.resolve_current(db, now=now)
    views, rows, degraded = await _build_views(db, tariff, now, student_id=student_id)
    if not views:
        raise NotFoundError("Student not found")

    discounts, discounts_degraded = await _load_discount_rows(db, student_id)
    tx_result = await db.execute(
        select(PaymentTransaction)
        .where(PaymentTransaction.student_id == student_id)
        .order_by(PaymentTransaction.created_at.desc())
    )
    return StudentFinanceDetailResponse(
        student=_view_to_response(views[0]),
        tariff=_tariff_to_response(tariff),
        ledger=[_ledger_row_to_response(r) for r in rows.get(student_id, [])],
        discounts=[_discount_to_response(row, record, tariff.monthly_amount) for row, record in discounts],
        transactions=[_transaction_to_response(tx) for tx in tx_result.scalars().all()],
        degraded=degraded or discounts_degraded,
    )


# --- Discounts ---
async def _resync_student(db: AsyncSession, student_id: UUID, tariff: tariffs.CurrentTariff, now: datetime) -> None:
    await sync_obligations(
        db,
        [student_id],
        tariff.monthly_amount,
        chargeable_months=tariff.chargeable_months,
        now=now,
    )


async def _discount_response(db: AsyncSession, discount_id: UUID, base: int) -> DiscountResponse:
    result = await db.execute(
        select(*_DISCOUNT_COLUMNS, StudentDiscount.monthly_amount_snapshot, StudentDiscount.snapshot_version).where(
            StudentDiscount.id == discount_id
        )
    )
    row = result.one()
    return _discount_to_response(row, DiscountRecord.from_row(row), base)


async def create_discount(
    db: AsyncSession,
    student_id: UUID,
    payload: DiscountCreate,
    created_by: Optional[UUID] = None,
    now: Optional[datetime] = None,
) -> DiscountResponse:
    """New discount with its per-month amounts frozen at the current tariff, then a ledger re-sync."""
    now = as_naive_utc(now)
    await get_student_or_404(db, student_id)
    start = parse_month_key(payload.start_month)
    if not 1 <= payload.month_count <= settings.finance_max_payment_months:
        raise ValidationError(
            "month_count is out of range",
            code="INVALID_MONTH_COUNT",
            details={"month_count": payload.month_count},
        )
    tariff = await tariffs.resolve_current(db, now=now)
    if payload.kind == DiscountKind.FIXED_AMOUNT and payload.value >= tariff.monthly_amount:
        raise ConflictError(
            ConflictKind.DISCOUNT_EXCEEDS_TARIFF,
            "Fixed discount must be smaller than the monthly tariff; use FULL_WAIVER instead",
            details={"value": payload.value, "monthly_amount": tariff.monthly_amount},
        )

    kind = payload.kind.value
    value = None if payload.kind == DiscountKind.FULL_WAIVER else payload.value
    start_key = month_key(*start)
    snapshot = build_snapshot(kind, value, start_key, payload.month_count, tariff.monthly_amount)
    discount = StudentDiscount(
        student_id=student_id,
        kind=kind,
        value=value,
        start_month=start_key,
        month_count=payload.month_count,
        monthly_amount_snapshot=[entry.to_json() for entry in snapshot],
        snapshot_version=SNAPSHOT_VERSION,
        reason=payload.reason.strip(),
        note=payload.note,
        is_active=True,
        created_by=created_by,
        created_at=now,
    )
    try:
        db.add(discount)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    discount_id = discount.id
    logger.info("Discount %s (%s) created for student %s from %s", discount_id, kind, student_id, start_key)

    await _resync_student(db, student_id, tariff, now)
    return await _discount_response(db, discount_id, tariff.monthly_amount)


async def deactivate_discount(
    db: AsyncSession,
    discount_id: UUID,
    reason: str,
    deactivated_by: Optional[UUID] = None,
    now: Optional[datetime] = None,
) -> DiscountDeactivateResponse:
    """Keeps only the months strictly before the current month, then re-syncs the ledger."""
    now = as_naive_utc(now)
    discount = await db.get(StudentDiscount, discount_id)
    if discount is None:
        raise NotFoundError("Discount not found", code="DISCOUNT_NOT_FOUND")
    if not discount.is_active:
        raise ConflictError(
            ConflictKind.ALREADY_DEACTIVATED,
            "Discount is already deactivated",
            details={"discount_id": str(discount_id)},
        )
    student_id = discount.student_id
    tariff = await tariffs.resolve_current(db, now=now)
    retained = retained_entries_on_deactivation(DiscountRecord.from_row(discount), tariff.monthly_amount, now)

    try:
        flipped = await db.execute(
            update(StudentDiscount)
            .where(StudentDiscount.id == discount_id, StudentDiscount.is_active.is_(True))
            .values(
                is_active=False,
                deactivated_at=now,
                deactivated_by=deactivated_by,
                deactivation_reason=reason.strip(),
                monthly_amount_snapshot=[entry.to_json() for entry in retained],
                snapshot_version=SNAPSHOT_VERSION,
            )
            .execution_options(synchronize_session=False)
        )
        if flipped.rowcount != 1:
            await db.rollback()
            raise ConflictError(
                ConflictKind.ALREADY_DEACTIVATED,
                "Discount is already deactivated",
                details={"discount_id": str(discount_id)},
            )
        await db.commit()
    except ConflictError:
        raise
    except Exception:
        await db.rollback()
        raise
    logger.info("Discount %s deactivated; %d past months retained", discount_id, len(retained))

    await _resync_student(db, student_id, tariff, now)
    return DiscountDeactivateResponse(
        discount=await _discount_response(db, discount_id, tariff.monthly_amount),
        retained_months=[entry.key for entry in retained],
    )


# --- Payments ---
async def _plan(db: AsyncSession, student_id: UUID, payload: PaymentRequest, now: datetime) -> payments.PaymentPlan:
    return await payments.plan_payment(
        db,
        student_id,
        payload.kind,
        payload.start_month,
        month_count=payload.month_count,
        amount=payload.amount,
        now=now,
    )


async def preview_payment(
    db: AsyncSession,
    student_id: UUID,
    payload: PaymentRequest,
    now: Optional[datetime] = None,
) -> PaymentPreviewResponse:
    now = as_naive_utc(now)
    plan = await _plan(db, student_id, payload, now)
    return _plan_to_response(plan)


async def make_payment(
    db: AsyncSession,
    student_id: UUID,
    payload: PaymentRequest,
    created_by: Optional[UUID] = None,
    now: Optional[datetime] = None,
) -> PaymentCommitResponse:
    now = as_naive_utc(now)
    # A retried request must report the duplicate, not the months it already covered
    await payments.ensure_unused_idempotency_key(db, payload.idempotency_key)
    plan = await _plan(db, student_id, payload, now)
    try:
        transaction = await payments.commit_payment(
            db,
            plan,
            idempotency_key=payload.idempotency_key,
            note=payload.note,
            created_by=created_by,
            now=now,
        )
    except ConflictError as e:
        logger.warning("Payment for student %s rejected: %s", student_id, e.code)
        raise
    await db.refresh(transaction)
    return PaymentCommitResponse(transaction=_transaction_to_response(transaction), plan=_plan_to_response(plan))


async def revert_payment(
    db: AsyncSession,
    transaction_id: UUID,
    note: Optional[str] = None,
    reversed_by: Optional[UUID] = None,
    now: Optional[datetime] = None,
) -> RevertResponse:
    result = await payments.revert_payment(db, transaction_id, reversed_by=reversed_by, note=note, now=now)
    await db.refresh(result.transaction)
    return RevertResponse(
        transaction=_transaction_to_response(result.transaction),
        freed_months=result.freed_months,
        degraded=result.sync.degraded,
    )
