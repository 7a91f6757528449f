"""
Obligation synchronizer: (re)materializes one MonthlyObligation row per (student, year, month).

The ledger is pulled fresh by callers before any read or write that depends on it; nothing
runs in the background. Every chunk of students is written in its own transaction.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple
from uuid import UUID

from sqlalchemy import column, delete, func, select, table
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.enums import ObligationSource, ObligationStatus
from app.core.models import MonthlyObligation, PaymentCoverage, StudentDiscount
from app.core.timeutils import as_naive_utc, utc_now
from app.db.dialect import dialect_insert
from app.db.schema_check import is_missing_column_error

from .billing_calendar import is_chargeable
from .discounts import DiscountRecord, build_discount_map
from .enrollment import active_enrollment_start_dates
from .months import YearMonth, month_key, month_of, months_between, shift_month

logger = logging.getLogger(__name__)

UPSERT_BATCH_SIZE = 200

_DISCOUNT_BASE_COLUMNS = (
    StudentDiscount.student_id,
    StudentDiscount.kind,
    StudentDiscount.value,
    StudentDiscount.start_month,
    StudentDiscount.month_count,
    StudentDiscount.is_active,
    StudentDiscount.deactivated_at,
    StudentDiscount.created_at,
)
_DISCOUNT_SNAPSHOT_COLUMNS = (
    StudentDiscount.monthly_amount_snapshot,
    StudentDiscount.snapshot_version,
)

_OBLIGATION_BASE_COLUMNS = (
    MonthlyObligation.student_id,
    MonthlyObligation.year,
    MonthlyObligation.month,
    MonthlyObligation.base_amount,
    MonthlyObligation.discount_amount,
    MonthlyObligation.net_amount,
    MonthlyObligation.status,
    MonthlyObligation.source,
)
_OBLIGATION_PAYMENT_COLUMNS = (
    MonthlyObligation.paid_amount,
    MonthlyObligation.remaining_amount,
)
_PAYMENT_COLUMN_NAMES = ("paid_amount", "remaining_amount")

PaidKey = Tuple[UUID, int, int]


@dataclass
class SyncResult:
    students: int = 0
    rows_written: int = 0
    rows_removed: int = 0
    degraded: bool = False


@dataclass
class LedgerRow:
    """Read model of one MonthlyObligation row."""

    student_id: UUID
    year: int
    month: int
    base_amount: int
    discount_amount: int
    net_amount: int
    paid_amount: int
    remaining_amount: int
    status: str
    source: str

    @property
    def key(self) -> str:
        return month_key(self.year, self.month)


@dataclass
class DiscountLoad:
    by_student: Dict[UUID, List[DiscountRecord]] = field(default_factory=dict)
    degraded: bool = False


def chunked(items: Sequence, size: int) -> Iterable[Sequence]:
    size = max(1, int(size))
    for start in range(0, len(items), size):
        yield items[start:start + size]


async def load_discount_records(db: AsyncSession, student_ids: Sequence[UUID]) -> DiscountLoad:
    """
    All discounts (active and deactivated) of the given students.

    If the snapshot columns are not migrated yet the read is repeated without them and the
    records fall back to range-derived amounts.
    """
    load = DiscountLoad()
    if not student_ids:
        return load
    try:
        result = await db.execute(
            select(*_DISCOUNT_BASE_COLUMNS, *_DISCOUNT_SNAPSHOT_COLUMNS).where(
                StudentDiscount.student_id.in_(student_ids)
            )
        )
        rows = result.all()
        with_snapshot = True
    except DBAPIError as exc:
        if not is_missing_column_error(exc):
            raise
        await db.rollback()
        logger.warning("Discount snapshot columns missing; reading discounts without snapshots")
        result = await db.execute(
            select(*_DISCOUNT_BASE_COLUMNS).where(StudentDiscount.student_id.in_(student_ids))
        )
        rows = result.all()
        with_snapshot = False
        load.degraded = True

    for row in sorted(rows, key=lambda r: r.created_at or datetime.min):
        load.by_student.setdefault(row.student_id, []).append(DiscountRecord.from_row(row, with_snapshot))
    return load


async def _load_paid_amounts(db: AsyncSession, student_ids: Sequence[UUID]) -> Dict[PaidKey, int]:
    """Sum of coverage per (student, year, month). Coverage only exists for ACTIVE transactions."""
    if not student_ids:
        return {}
    result = await db.execute(
        select(
            PaymentCoverage.student_id,
            PaymentCoverage.year,
            PaymentCoverage.month,
            func.sum(PaymentCoverage.amount),
        )
        .where(PaymentCoverage.student_id.in_(student_ids))
        .group_by(PaymentCoverage.student_id, PaymentCoverage.year, PaymentCoverage.month)
    )
    return {(sid, year, month): int(total or 0) for sid, year, month, total in result.all()}


def obligation_values(
    student_id: UUID,
    year: int,
    month: int,
    monthly_amount: int,
    discount_map: Dict[str, int],
    paid_amount: int = 0,
) -> Dict:
    key = month_key(year, month)
    net = max(0, int(discount_map.get(key, monthly_amount)))
    discount = max(0, monthly_amount - net)
    paid = max(0, int(paid_amount or 0))
    remaining = max(0, net - paid)
    if net <= 0 or paid >= net:
        status = ObligationStatus.PAID
    elif paid > 0:
        status = ObligationStatus.PARTIALLY_PAID
    else:
        status = ObligationStatus.SET
    return {
        "student_id": student_id,
        "year": year,
        "month": month,
        "base_amount": monthly_amount,
        "discount_amount": discount,
        "net_amount": net,
        "paid_amount": paid,
        "remaining_amount": remaining,
        "status": status.value,
        "source": (ObligationSource.DISCOUNT if discount > 0 else ObligationSource.BASE).value,
    }


def due_months(
    start: date,
    now: datetime,
    horizon: int,
    chargeable_months: Iterable[int],
) -> List[YearMonth]:
    """Chargeable months from the billing start month through now + horizon."""
    calendar = tuple(chargeable_months)
    end = shift_month(now.year, now.month, max(0, int(horizon)))
    return [ym for ym in months_between(month_of(start), end) if is_chargeable(ym[1], calendar)]


def _obligation_table(names: List[str]):
    """Lightweight table over exactly the written columns, so no column defaults are added."""
    source = MonthlyObligation.__table__
    return table(source.name, *[column(name, source.c[name].type) for name in names])


async def _upsert_rows(db: AsyncSession, rows: List[Dict], with_payment_columns: bool) -> None:
    if not rows:
        return
    insert = dialect_insert(db)
    now = utc_now()
    for batch in chunked(rows, UPSERT_BATCH_SIZE):
        values = []
        for row in batch:
            item = dict(row, id=uuid.uuid4(), updated_at=now)
            if not with_payment_columns:
                for name in _PAYMENT_COLUMN_NAMES:
                    item.pop(name, None)
            values.append(item)
        stmt = insert(_obligation_table(list(values[0]))).values(values)
        update_columns = [
            name
            for name in values[0]
            if name not in ("id", "student_id", "year", "month")
        ]
        stmt = stmt.on_conflict_do_update(
            index_elements=["student_id", "year", "month"],
            set_={name: stmt.excluded[name] for name in update_columns},
        )
        await db.execute(stmt)


async def _delete_stale_rows(db: AsyncSession, due: Dict[UUID, Set[YearMonth]]) -> int:
    """Remove ledger rows outside each student's recomputed due set."""
    if not due:
        return 0
    result = await db.execute(
        select(MonthlyObligation.id, MonthlyObligation.student_id, MonthlyObligation.year, MonthlyObligation.month)
        .where(MonthlyObligation.student_id.in_(list(due.keys())))
    )
    stale_ids = [
        row_id
        for row_id, student_id, year, month in result.all()
        if (year, month) not in due.get(student_id, set())
    ]
    for batch in chunked(stale_ids, UPSERT_BATCH_SIZE):
        await db.execute(
            delete(MonthlyObligation)
            .where(MonthlyObligation.id.in_(batch))
            .execution_options(synchronize_session=False)
        )
    return len(stale_ids)


async def _write_chunk(
    db: AsyncSession,
    rows: List[Dict],
    due: Dict[UUID, Set[YearMonth]],
    with_payment_columns: bool,
) -> int:
    try:
        await _upsert_rows(db, rows, with_payment_columns)
        removed = await _delete_stale_rows(db, due)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return removed


async def sync_obligations(
    db: AsyncSession,
    student_ids: Iterable[UUID],
    monthly_amount: int,
    horizon: Optional[int] = None,
    chargeable_months: Iterable[int] = (),
    now: Optional[datetime] = None,
) -> SyncResult:
    """
    Upsert the ledger of the given students from billing start through now + horizon.

    Idempotent: a second call with the same inputs rewrites identical amounts and statuses.
    Coverage and transactions are read, never written.
    """
    now = as_naive_utc(now)
    if horizon is None:
        horizon = settings.finance_sync_horizon_months
    calendar = tuple(chargeable_months)
    monthly_amount = int(monthly_amount)
    ids = list(dict.fromkeys(student_ids))
    result = SyncResult()

    for chunk in chunked(ids, settings.finance_sync_chunk_size):
        discounts = await load_discount_records(db, chunk)
        result.degraded = result.degraded or discounts.degraded
        start_dates = await active_enrollment_start_dates(db, chunk)
        paid = await _load_paid_amounts(db, chunk)

        rows: List[Dict] = []
        due: Dict[UUID, Set[YearMonth]] = {}
        for student_id in chunk:
            start = start_dates.get(student_id)
            if start is None:
                continue
            discount_map = build_discount_map(discounts.by_student.get(student_id, []), monthly_amount)
            months = due_months(start, now, horizon, calendar)
            due[student_id] = set(months)
            for year, month in months:
                rows.append(
                    obligation_values(
                        student_id,
                        year,
                        month,
                        monthly_amount,
                        discount_map,
                        paid.get((student_id, year, month), 0),
                    )
                )
            logger.debug("Ledger sync for student %s: %d due months", student_id, len(months))

        try:
            removed = await _write_chunk(db, rows, due, with_payment_columns=True)
        except DBAPIError as exc:
            if not is_missing_column_error(exc):
                raise
            logger.warning("Ledger payment columns missing; writing obligations without paid/remaining amounts")
            result.degraded = True
            removed = await _write_chunk(db, rows, due, with_payment_columns=False)

        result.students += len(due)
        result.rows_written += len(rows)
        result.rows_removed += removed

    return result


def _ledger_row(row, paid_amount: Optional[int] = None) -> LedgerRow:
    net = int(row.net_amount)
    if paid_amount is None:
        paid_amount = int(row.paid_amount or 0)
        remaining = int(row.remaining_amount or 0)
    else:
        remaining = max(0, net - paid_amount)
    return LedgerRow(
        student_id=row.student_id,
        year=row.year,
        month=row.month,
        base_amount=int(row.base_amount),
        discount_amount=int(row.discount_amount or 0),
        net_amount=net,
        paid_amount=paid_amount,
        remaining_amount=remaining,
        status=row.status,
        source=row.source,
    )


async def load_obligation_rows(
    db: AsyncSession,
    student_ids: Sequence[UUID],
) -> Tuple[Dict[UUID, List[LedgerRow]], bool]:
    """
    Ledger rows per student, chronologically ascending, and whether the read was degraded.

    Without the paid/remaining columns those amounts are recomputed from coverage.
    """
    by_student: Dict[UUID, List[LedgerRow]] = {}
    degraded = False
    order = (MonthlyObligation.student_id, MonthlyObligation.year, MonthlyObligation.month)
    for chunk in chunked(list(dict.fromkeys(student_ids)), settings.finance_sync_chunk_size):
        try:
            result = await db.execute(
                select(*_OBLIGATION_BASE_COLUMNS, *_OBLIGATION_PAYMENT_COLUMNS)
                .where(MonthlyObligation.student_id.in_(chunk))
                .order_by(*order)
            )
            for row in result.all():
                by_student.setdefault(row.student_id, []).append(_ledger_row(row))
            continue
        except DBAPIError as exc:
            if not is_missing_column_error(exc):
                raise
            await db.rollback()
            logger.warning("Ledger payment columns missing; recomputing paid amounts from coverage")
            degraded = True

        paid = await _load_paid_amounts(db, chunk)
        result = await db.execute(
            select(*_OBLIGATION_BASE_COLUMNS).where(MonthlyObligation.student_id.in_(chunk)).order_by(*order)
        )
        for row in result.all():
            paid_amount = paid.get((row.student_id, row.year, row.month), 0)
            by_student.setdefault(row.student_id, []).append(_ledger_row(row, paid_amount))
    return by_student, degraded
