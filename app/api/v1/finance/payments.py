"""
Payment planner and allocator.

A payment attempt moves through: plan -> month range validated -> allocation computed ->
(preview stops here) -> transaction committed. Every month carries the coverage version it
was planned against. The commit advances each version with a compare-and-set and writes the
coverage rows with INSERT .. ON CONFLICT DO NOTHING plus an inserted-count check. If another
commit or a revert touched one of the months in between, the whole commit is rolled back
with a COVERAGE_COLLISION conflict.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.enums import ConflictKind, PaymentKind, PaymentStatus
from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.core.models import CoverageVersion, PaymentCoverage, PaymentTransaction
from app.core.timeutils import as_naive_utc, utc_now
from app.db.dialect import dialect_insert

from .billing_calendar import is_chargeable
from .discounts import build_discount_map
from .enrollment import active_enrollment_start_date, get_student_or_404, require_active_enrollment
from .ledger_sync import SyncResult, load_discount_records, sync_obligations
from .months import YearMonth, month_key, month_label, month_range, month_serial, parse_month_key, shift_month
from .tariffs import CurrentTariff, resolve_current

logger = logging.getLogger(__name__)

ANNUAL_MONTH_COUNT = 12

SKIP_ALREADY_COVERED = "already_covered"
SKIP_NOT_BILLABLE = "not_billable"


@dataclass
class MonthPlan:
    year: int
    month: int
    net_amount: int
    paid_amount: int = 0
    version: int = 0
    allocated: int = 0

    @property
    def key(self) -> str:
        return month_key(self.year, self.month)

    @property
    def label(self) -> str:
        return month_label(self.year, self.month)

    @property
    def remaining_amount(self) -> int:
        return max(0, self.net_amount - self.paid_amount)

    @property
    def skip_reason(self) -> Optional[str]:
        if self.net_amount <= 0:
            return SKIP_NOT_BILLABLE
        if self.remaining_amount <= 0:
            return SKIP_ALREADY_COVERED
        return None


@dataclass
class PaymentPlan:
    student_id: UUID
    kind: PaymentKind
    start_month: str
    month_count: int
    tariff: CurrentTariff
    months: List[MonthPlan] = field(default_factory=list)
    expected_amount: int = 0
    amount: int = 0

    @property
    def payable(self) -> List[MonthPlan]:
        return [m for m in self.months if m.skip_reason is None]

    @property
    def allocations(self) -> List[MonthPlan]:
        return [m for m in self.months if m.allocated > 0]

    @property
    def skipped(self) -> List[MonthPlan]:
        return [m for m in self.months if m.skip_reason is not None]

    @property
    def covered_keys(self) -> List[str]:
        return [m.key for m in self.allocations]


@dataclass
class RevertResult:
    transaction: PaymentTransaction
    freed_months: List[str]
    sync: SyncResult


def resolve_month_count(kind: PaymentKind, month_count: Optional[int]) -> int:
    if kind == PaymentKind.ANNUAL:
        if month_count is not None and month_count != ANNUAL_MONTH_COUNT:
            raise ValidationError(
                "Annual payments always cover 12 months",
                code="INVALID_MONTH_COUNT",
                details={"month_count": month_count},
            )
        return ANNUAL_MONTH_COUNT
    count = 1 if month_count is None else int(month_count)
    limit = settings.finance_max_payment_months
    if not 1 <= count <= limit:
        raise ValidationError(
            f"month_count must be between 1 and {limit}",
            code="INVALID_MONTH_COUNT",
            details={"month_count": count, "min": 1, "max": limit},
        )
    return count


def validate_month_range(
    months: List[YearMonth],
    enrollment_start: Optional[date],
    now: datetime,
    max_future_months: int,
) -> None:
    """Fail with every month outside [enrollment start month, now + max_future_months]."""
    start_serial = month_serial(enrollment_start.year, enrollment_start.month) if enrollment_start else None
    limit = shift_month(now.year, now.month, max_future_months)
    limit_serial = month_serial(*limit)

    before_start = [month_key(*ym) for ym in months if start_serial is not None and month_serial(*ym) < start_serial]
    beyond_limit = [month_key(*ym) for ym in months if month_serial(*ym) > limit_serial]
    if before_start or beyond_limit:
        raise ValidationError(
            "Payment targets months outside the allowed range",
            code="MONTH_OUT_OF_RANGE",
            details={
                "months": before_start + beyond_limit,
                "before_enrollment": before_start,
                "beyond_limit": beyond_limit,
                "earliest_allowed": month_key(enrollment_start.year, enrollment_start.month) if enrollment_start else None,
                "latest_allowed": month_key(*limit),
            },
        )


def build_month_plans(
    months: List[YearMonth],
    tariff: CurrentTariff,
    discount_map: Dict[str, int],
) -> List[MonthPlan]:
    """Ledger-resolved net per month; months outside the billing calendar owe nothing."""
    plans = []
    for year, month in months:
        if is_chargeable(month, tariff.chargeable_months):
            net = max(0, int(discount_map.get(month_key(year, month), tariff.monthly_amount)))
        else:
            net = 0
        plans.append(MonthPlan(year=year, month=month, net_amount=net))
    return plans


async def _existing_coverage(db: AsyncSession, student_id: UUID) -> Dict[YearMonth, int]:
    """{(year, month): amount already applied} for one student."""
    result = await db.execute(
        select(PaymentCoverage.year, PaymentCoverage.month, func.sum(PaymentCoverage.amount))
        .where(PaymentCoverage.student_id == student_id)
        .group_by(PaymentCoverage.year, PaymentCoverage.month)
    )
    return {(year, month): int(total or 0) for year, month, total in result.all()}


async def _coverage_versions(db: AsyncSession, student_id: UUID) -> Dict[YearMonth, int]:
    result = await db.execute(
        select(CoverageVersion.year, CoverageVersion.month, CoverageVersion.version).where(
            CoverageVersion.student_id == student_id
        )
    )
    return {(year, month): int(version) for year, month, version in result.all()}


def apply_existing_coverage(
    plans: List[MonthPlan],
    coverage: Dict[YearMonth, int],
    versions: Dict[YearMonth, int],
) -> None:
    for plan in plans:
        plan.paid_amount = coverage.get((plan.year, plan.month), 0)
        plan.version = versions.get((plan.year, plan.month), 0)


def resolve_amount(kind: PaymentKind, expected: int, requested: Optional[int]) -> int:
    """A supplied amount must equal the expected amount exactly, whatever the kind."""
    if requested is None or int(requested) == expected:
        return expected
    requested = int(requested)
    raise ValidationError(
        "Requested amount does not match the expected amount",
        code="AMOUNT_MISMATCH",
        details={"expected_amount": expected, "requested_amount": requested, "kind": kind.value},
    )


def allocate(plans: List[MonthPlan], amount: int) -> None:
    """Greedy earliest-month-first allocation over the payable months."""
    left = amount
    for plan in plans:
        plan.allocated = 0
        if plan.skip_reason is not None or left <= 0:
            continue
        plan.allocated = min(plan.remaining_amount, left)
        left -= plan.allocated


async def plan_payment(
    db: AsyncSession,
    student_id: UUID,
    kind: PaymentKind,
    start_month: str,
    month_count: Optional[int] = None,
    amount: Optional[int] = None,
    now: Optional[datetime] = None,
    tariff: Optional[CurrentTariff] = None,
) -> PaymentPlan:
    now = as_naive_utc(now)
    kind = PaymentKind(kind)
    start = parse_month_key(start_month)
    count = resolve_month_count(kind, month_count)

    await get_student_or_404(db, student_id)
    await require_active_enrollment(db, student_id)
    if tariff is None:
        tariff = await resolve_current(db, now=now)

    months = month_range(start, count)
    enrollment_start = await active_enrollment_start_date(db, student_id)
    validate_month_range(months, enrollment_start, now, settings.finance_max_future_payment_months)

    discounts = await load_discount_records(db, [student_id])
    discount_map = build_discount_map(discounts.by_student.get(student_id, []), tariff.monthly_amount)
    plans = build_month_plans(months, tariff, discount_map)
    apply_existing_coverage(
        plans,
        await _existing_coverage(db, student_id),
        await _coverage_versions(db, student_id),
    )

    plan = PaymentPlan(
        student_id=student_id,
        kind=kind,
        start_month=month_key(*start),
        month_count=count,
        tariff=tariff,
        months=plans,
    )
    plan.expected_amount = sum(m.remaining_amount for m in plan.payable)
    if plan.expected_amount <= 0:
        raise ConflictError(
            ConflictKind.ALREADY_COVERED,
            "Every selected month is already paid or not billable",
            details={"months": {m.key: m.skip_reason for m in plans}},
        )
    plan.amount = resolve_amount(kind, plan.expected_amount, amount)
    allocate(plan.months, plan.amount)
    return plan


async def ensure_unused_idempotency_key(db: AsyncSession, idempotency_key: Optional[str]) -> None:
    if not idempotency_key:
        return
    result = await db.execute(
        select(PaymentTransaction.id).where(PaymentTransaction.idempotency_key == idempotency_key)
    )
    existing = result.scalar_one_or_none()
    if existing is not None:
        raise ConflictError(
            ConflictKind.DUPLICATE_REQUEST,
            "A payment with this idempotency key already exists",
            details={"idempotency_key": idempotency_key, "transaction_id": str(existing)},
        )


async def _claim_versions(db: AsyncSession, plan: PaymentPlan) -> List[str]:
    """
    Advance the coverage version of every allocated month from its planned value.
    Returns the month keys whose version moved since planning; the caller rolls back if any.
    """
    table = CoverageVersion.__table__
    stale = []
    for m in plan.allocations:
        if m.version == 0:
            # First coverage of the month: only one racing commit can create the row
            stmt = (
                dialect_insert(db)(table)
                .values(student_id=plan.student_id, year=m.year, month=m.month, version=1, updated_at=utc_now())
                .on_conflict_do_nothing(index_elements=["student_id", "year", "month"])
                .returning(table.c.version)
            )
            claimed = len((await db.execute(stmt)).all())
        else:
            result = await db.execute(
                update(CoverageVersion)
                .where(
                    CoverageVersion.student_id == plan.student_id,
                    CoverageVersion.year == m.year,
                    CoverageVersion.month == m.month,
                    CoverageVersion.version == m.version,
                )
                .values(version=CoverageVersion.version + 1, updated_at=utc_now())
                .execution_options(synchronize_session=False)
            )
            claimed = result.rowcount
        if claimed != 1:
            stale.append(m.key)
    return stale


async def _advance_versions(db: AsyncSession, student_id: UUID, months: List[YearMonth]) -> None:
    for year, month in months:
        await db.execute(
            update(CoverageVersion)
            .where(
                CoverageVersion.student_id == student_id,
                CoverageVersion.year == year,
                CoverageVersion.month == month,
            )
            .values(version=CoverageVersion.version + 1, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )


async def commit_payment(
    db: AsyncSession,
    plan: PaymentPlan,
    idempotency_key: Optional[str] = None,
    note: Optional[str] = None,
    created_by: Optional[UUID] = None,
    now: Optional[datetime] = None,
) -> PaymentTransaction:
    """
    Write the transaction and its coverage rows in one transaction, then re-sync the student.

    Raises DUPLICATE_REQUEST when the idempotency key is already used and COVERAGE_COLLISION
    when another commit or a revert changed a planned month after planning. Nothing is
    written in either case.
    """
    now = as_naive_utc(now)
    await ensure_unused_idempotency_key(db, idempotency_key)

    allocations = plan.allocations
    transaction = PaymentTransaction(
        id=uuid.uuid4(),
        student_id=plan.student_id,
        kind=plan.kind.value,
        amount=sum(m.allocated for m in allocations),
        status=PaymentStatus.ACTIVE.value,
        idempotency_key=idempotency_key,
        covered_months=plan.covered_keys,
        tariff_version_id=plan.tariff.version_id,
        tariff_snapshot=plan.tariff.snapshot(),
        note=note,
        created_by=created_by,
        created_at=now,
    )
    try:
        db.add(transaction)
        try:
            await db.flush()
        except IntegrityError:
            await db.rollback()
            raise ConflictError(
                ConflictKind.DUPLICATE_REQUEST,
                "A payment with this idempotency key already exists",
                details={"idempotency_key": idempotency_key},
            )

        stale = await _claim_versions(db, plan)
        if stale:
            await db.rollback()
            logger.warning("Coverage changed since planning for student %s: %s", plan.student_id, ", ".join(stale))
            raise ConflictError(
                ConflictKind.COVERAGE_COLLISION,
                "Another payment or revert changed one of the selected months; reload and retry",
                details={"months": stale},
            )

        table = PaymentCoverage.__table__
        stmt = (
            dialect_insert(db)(table)
            .values(
                [
                    {
                        "id": uuid.uuid4(),
                        "student_id": plan.student_id,
                        "transaction_id": transaction.id,
                        "year": m.year,
                        "month": m.month,
                        "amount": m.allocated,
                        "sequence": m.version,
                        "created_at": now,
                    }
                    for m in allocations
                ]
            )
            .on_conflict_do_nothing(index_elements=["student_id", "year", "month", "sequence"])
            .returning(table.c.id)
        )
        inserted = len((await db.execute(stmt)).all())
        if inserted != len(allocations):
            await db.rollback()
            logger.warning(
                "Coverage collision for student %s: planned %d months, inserted %d",
                plan.student_id,
                len(allocations),
                inserted,
            )
            raise ConflictError(
                ConflictKind.COVERAGE_COLLISION,
                "Another payment covered one of the selected months first; reload and retry",
                details={"months": plan.covered_keys},
            )
        await db.commit()
    except ConflictError:
        raise
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "Payment %s committed for student %s: %s %s over %s",
        transaction.id,
        plan.student_id,
        plan.kind.value,
        transaction.amount,
        ", ".join(plan.covered_keys),
    )
    await sync_obligations(
        db,
        [plan.student_id],
        plan.tariff.monthly_amount,
        chargeable_months=plan.tariff.chargeable_months,
        now=now,
    )
    return transaction


async def revert_payment(
    db: AsyncSession,
    transaction_id: UUID,
    reversed_by: Optional[UUID] = None,
    note: Optional[str] = None,
    now: Optional[datetime] = None,
) -> RevertResult:
    """Delete the transaction's coverage, flip it to REVERSED and re-sync the student."""
    now = as_naive_utc(now)
    transaction = await db.get(PaymentTransaction, transaction_id)
    if transaction is None:
        raise NotFoundError("Payment transaction not found", code="TRANSACTION_NOT_FOUND")
    student_id = transaction.student_id

    try:
        flipped = await db.execute(
            update(PaymentTransaction)
            .where(
                PaymentTransaction.id == transaction_id,
                PaymentTransaction.status == PaymentStatus.ACTIVE.value,
            )
            .values(
                status=PaymentStatus.REVERSED.value,
                reversed_at=now,
                reversed_by=reversed_by,
                revert_note=note,
            )
            .execution_options(synchronize_session=False)
        )
        if flipped.rowcount != 1:
            await db.rollback()
            raise ConflictError(
                ConflictKind.ALREADY_REVERSED,
                "Payment transaction is already reversed",
                details={"transaction_id": str(transaction_id)},
            )
        coverage = await db.execute(
            select(PaymentCoverage.year, PaymentCoverage.month).where(PaymentCoverage.transaction_id == transaction_id)
        )
        freed_months = sorted({(year, month) for year, month in coverage.all()})
        freed = [month_key(year, month) for year, month in freed_months]
        await db.execute(
            delete(PaymentCoverage)
            .where(PaymentCoverage.transaction_id == transaction_id)
            .execution_options(synchronize_session=False)
        )
        # Plans made before the revert must not commit against the freed months
        await _advance_versions(db, student_id, freed_months)
        await db.commit()
    except ConflictError:
        raise
    except Exception:
        await db.rollback()
        raise

    await db.refresh(transaction)
    logger.info("Payment %s reversed for student %s; freed %s", transaction_id, student_id, ", ".join(freed) or "-")
    tariff = await resolve_current(db, now=now)
    sync = await sync_obligations(
        db,
        [student_id],
        tariff.monthly_amount,
        chargeable_months=tariff.chargeable_months,
        now=now,
    )
    return RevertResult(transaction=transaction, freed_months=freed, sync=sync)
