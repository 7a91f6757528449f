import uuid
from datetime import date, datetime

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.finance import payments, service
from app.api.v1.finance.debt import summarize_student_debt
from app.api.v1.finance.ledger_sync import load_obligation_rows, sync_obligations
from app.api.v1.finance.schemas import DiscountCreate
from app.api.v1.finance.tariffs import default_tariff
from app.core.enums import PaymentKind
from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.core.models import CoverageVersion, PaymentCoverage, PaymentTransaction

NOW = datetime(2026, 3, 20, 10, 0)


async def _ledger(db: AsyncSession, student_id):
    tariff = default_tariff()
    await sync_obligations(db, [student_id], tariff.monthly_amount, chargeable_months=tariff.chargeable_months, now=NOW)
    rows, _ = await load_obligation_rows(db, [student_id])
    return {row.key: row for row in rows.get(student_id, [])}


async def _pay(db: AsyncSession, student_id, kind, start_month, month_count=None, amount=None, **kwargs):
    plan = await payments.plan_payment(
        db, student_id, kind, start_month, month_count=month_count, amount=amount, now=NOW
    )
    return await payments.commit_payment(db, plan, now=NOW, **kwargs)


@pytest.mark.asyncio
async def test_paying_first_month_leaves_two_months_of_debt(db_session: AsyncSession, make_student) -> None:
    student = await make_student(start_date=date(2026, 1, 5))

    tx = await _pay(db_session, student.id, PaymentKind.MONTHLY, "2026-01")

    assert tx.amount == 300000
    assert tx.covered_months == ["2026-01"]
    assert tx.tariff_snapshot["monthly_amount"] == 300000
    ledger = await _ledger(db_session, student.id)
    assert ledger["2026-01"].status == "PAID"
    debt = summarize_student_debt(ledger.values(), NOW)
    assert debt.debt_month_count == 2
    assert debt.total_debt_amount == 600000


@pytest.mark.asyncio
async def test_discounted_month_requires_discounted_amount(db_session: AsyncSession, make_student) -> None:
    student = await make_student()
    await service.create_discount(
        db_session,
        student.id,
        DiscountCreate(kind="PERCENT", value=20, start_month="2026-02", month_count=1, reason="Sibling"),
        now=NOW,
    )

    with pytest.raises(ValidationError) as exc_info:
        await payments.plan_payment(
            db_session, student.id, PaymentKind.MONTHLY, "2026-02", amount=300000, now=NOW
        )
    assert exc_info.value.code == "AMOUNT_MISMATCH"
    assert exc_info.value.details["expected_amount"] == 240000

    tx = await _pay(db_session, student.id, PaymentKind.MONTHLY, "2026-02", amount=240000)
    assert tx.amount == 240000
    assert (await _ledger(db_session, student.id))["2026-02"].status == "PAID"


@pytest.mark.asyncio
async def test_concurrent_commits_cover_a_month_once(db_session: AsyncSession, make_student) -> None:
    student = await make_student()
    first = await payments.plan_payment(db_session, student.id, PaymentKind.MONTHLY, "2026-04", now=NOW)
    second = await payments.plan_payment(db_session, student.id, PaymentKind.MONTHLY, "2026-04", now=NOW)

    await payments.commit_payment(db_session, first, now=NOW)
    with pytest.raises(ConflictError) as exc_info:
        await payments.commit_payment(db_session, second, now=NOW)
    assert exc_info.value.code == "COVERAGE_COLLISION"
    assert exc_info.value.status_code == 409

    tx_count = await db_session.execute(select(func.count()).select_from(PaymentTransaction))
    assert tx_count.scalar() == 1
    coverage_sum = await db_session.execute(
        select(func.sum(PaymentCoverage.amount)).where(PaymentCoverage.year == 2026, PaymentCoverage.month == 4)
    )
    assert coverage_sum.scalar() == 300000
    assert (await _ledger(db_session, student.id))["2026-04"].status == "PAID"


@pytest.mark.asyncio
async def test_revert_restores_ledger(db_session: AsyncSession, make_student) -> None:
    student = await make_student()
    before = await _ledger(db_session, student.id)

    tx = await _pay(db_session, student.id, PaymentKind.MONTHLY, "2026-01", month_count=3)
    assert tx.amount == 900000
    paid = await _ledger(db_session, student.id)
    assert [paid[k].status for k in ("2026-01", "2026-02", "2026-03")] == ["PAID"] * 3

    result = await payments.revert_payment(db_session, tx.id, note="Entered twice", now=NOW)

    assert result.transaction.status == "REVERSED"
    assert result.transaction.reversed_at == NOW
    assert result.freed_months == ["2026-01", "2026-02", "2026-03"]
    assert await _ledger(db_session, student.id) == before
    coverage = await db_session.execute(select(func.count()).select_from(PaymentCoverage))
    assert coverage.scalar() == 0

    with pytest.raises(ConflictError) as exc_info:
        await payments.revert_payment(db_session, tx.id, now=NOW)
    assert exc_info.value.code == "ALREADY_REVERSED"


@pytest.mark.asyncio
async def test_idempotency_key_taken_after_check_is_a_duplicate(
    db_session: AsyncSession, session_factory, make_student, monkeypatch
) -> None:
    student = await make_student()
    plan = await payments.plan_payment(db_session, student.id, PaymentKind.MONTHLY, "2026-01", now=NOW)

    # Another request stores the same key after this one passed its lookup
    async with session_factory() as other:
        other.add(
            PaymentTransaction(
                student_id=student.id, kind="MONTHLY", amount=300000, status="ACTIVE", idempotency_key="receipt-7"
            )
        )
        await other.commit()

    async def key_looks_unused(db, idempotency_key):
        return None

    monkeypatch.setattr(payments, "ensure_unused_idempotency_key", key_looks_unused)

    with pytest.raises(ConflictError) as exc_info:
        await payments.commit_payment(db_session, plan, idempotency_key="receipt-7", now=NOW)
    assert exc_info.value.code == "DUPLICATE_REQUEST"

    tx_count = await db_session.execute(select(func.count()).select_from(PaymentTransaction))
    assert tx_count.scalar() == 1
    coverage = await db_session.execute(select(func.count()).select_from(PaymentCoverage))
    assert coverage.scalar() == 0
    versions = await db_session.execute(select(func.count()).select_from(CoverageVersion))
    assert versions.scalar() == 0


@pytest.mark.asyncio
async def test_revert_unknown_transaction(db_session: AsyncSession) -> None:
    with pytest.raises(NotFoundError) as exc_info:
        await payments.revert_payment(db_session, uuid.uuid4(), now=NOW)
    assert exc_info.value.code == "TRANSACTION_NOT_FOUND"


@pytest.mark.asyncio
async def test_idempotency_key_rejects_second_commit(db_session: AsyncSession, make_student) -> None:
    student = await make_student()
    await _pay(db_session, student.id, PaymentKind.MONTHLY, "2026-01", idempotency_key="receipt-1")

    with pytest.raises(ConflictError) as exc_info:
        await _pay(db_session, student.id, PaymentKind.MONTHLY, "2026-02", idempotency_key="receipt-1")
    assert exc_info.value.code == "DUPLICATE_REQUEST"
    assert (await _ledger(db_session, student.id))["2026-02"].status == "SET"


@pytest.mark.asyncio
async def test_ad_hoc_amount_must_match_expected(db_session: AsyncSession, make_student) -> None:
    student = await make_student()

    with pytest.raises(ValidationError) as exc_info:
        await payments.plan_payment(
            db_session, student.id, PaymentKind.AD_HOC, "2026-01", month_count=2, amount=100000, now=NOW
        )
    assert exc_info.value.code == "AMOUNT_MISMATCH"
    assert exc_info.value.details["expected_amount"] == 600000
    tx_count = await db_session.execute(select(func.count()).select_from(PaymentTransaction))
    assert tx_count.scalar() == 0

    tx = await _pay(db_session, student.id, PaymentKind.AD_HOC, "2026-01", month_count=2, amount=600000)
    assert tx.covered_months == ["2026-01", "2026-02"]
    ledger = await _ledger(db_session, student.id)
    assert [ledger[k].status for k in ("2026-01", "2026-02")] == ["PAID", "PAID"]


@pytest.mark.asyncio
async def test_partially_paid_month_takes_the_remainder(db_session: AsyncSession, make_student) -> None:
    student = await make_student()
    discount = await service.create_discount(
        db_session,
        student.id,
        DiscountCreate(kind="PERCENT", value=20, start_month="2026-04", month_count=1, reason="Sibling"),
        now=NOW,
    )
    await _pay(db_session, student.id, PaymentKind.MONTHLY, "2026-04", amount=240000)
    # The discount no longer applies to April, which is now short by the discounted part
    await service.deactivate_discount(db_session, discount.id, "Sibling left", now=NOW)
    ledger = await _ledger(db_session, student.id)
    assert (ledger["2026-04"].status, ledger["2026-04"].remaining_amount) == ("PARTIALLY_PAID", 60000)

    plan = await payments.plan_payment(db_session, student.id, PaymentKind.MONTHLY, "2026-04", now=NOW)
    assert plan.expected_amount == 60000
    assert plan.months[0].version == 1
    await payments.commit_payment(db_session, plan, now=NOW)
    assert (await _ledger(db_session, student.id))["2026-04"].status == "PAID"


@pytest.mark.asyncio
async def test_revert_between_plan_and_commit_invalidates_plan(db_session: AsyncSession, make_student) -> None:
    student = await make_student()
    discount = await service.create_discount(
        db_session,
        student.id,
        DiscountCreate(kind="PERCENT", value=20, start_month="2026-04", month_count=1, reason="Sibling"),
        now=NOW,
    )
    first = await _pay(db_session, student.id, PaymentKind.MONTHLY, "2026-04", amount=240000)
    await service.deactivate_discount(db_session, discount.id, "Sibling left", now=NOW)

    top_up = await payments.plan_payment(db_session, student.id, PaymentKind.MONTHLY, "2026-04", now=NOW)
    assert top_up.expected_amount == 60000

    await payments.revert_payment(db_session, first.id, now=NOW)
    fresh = await payments.plan_payment(db_session, student.id, PaymentKind.MONTHLY, "2026-04", now=NOW)
    assert fresh.expected_amount == 300000
    await payments.commit_payment(db_session, fresh, now=NOW)

    with pytest.raises(ConflictError) as exc_info:
        await payments.commit_payment(db_session, top_up, now=NOW)
    assert exc_info.value.code == "COVERAGE_COLLISION"
    assert exc_info.value.details["months"] == ["2026-04"]

    coverage_sum = await db_session.execute(
        select(func.sum(PaymentCoverage.amount)).where(
            PaymentCoverage.student_id == student.id, PaymentCoverage.year == 2026, PaymentCoverage.month == 4
        )
    )
    assert coverage_sum.scalar() == 300000
    ledger = await _ledger(db_session, student.id)
    assert (ledger["2026-04"].status, ledger["2026-04"].paid_amount) == ("PAID", 300000)


@pytest.mark.asyncio
async def test_already_covered_month(db_session: AsyncSession, make_student) -> None:
    student = await make_student()
    await _pay(db_session, student.id, PaymentKind.MONTHLY, "2026-01")

    with pytest.raises(ConflictError) as exc_info:
        await payments.plan_payment(db_session, student.id, PaymentKind.MONTHLY, "2026-01", now=NOW)
    assert exc_info.value.code == "ALREADY_COVERED"

    # Covered months inside a longer range are skipped, not charged twice
    plan = await payments.plan_payment(
        db_session, student.id, PaymentKind.MONTHLY, "2026-01", month_count=2, now=NOW
    )
    assert plan.expected_amount == 300000
    assert [(m.key, m.skip_reason) for m in plan.skipped] == [("2026-01", "already_covered")]
    assert plan.covered_keys == ["2026-02"]


@pytest.mark.asyncio
async def test_waived_month_is_not_billable(db_session: AsyncSession, make_student) -> None:
    student = await make_student()
    await service.create_discount(
        db_session,
        student.id,
        DiscountCreate(kind="FULL_WAIVER", start_month="2026-02", month_count=1, reason="Scholarship"),
        now=NOW,
    )

    plan = await payments.plan_payment(
        db_session, student.id, PaymentKind.MONTHLY, "2026-02", month_count=2, now=NOW
    )

    assert plan.expected_amount == 300000
    assert plan.months[0].skip_reason == "not_billable"
    assert plan.covered_keys == ["2026-03"]


@pytest.mark.asyncio
async def test_out_of_range_months_are_all_reported(db_session: AsyncSession, make_student) -> None:
    student = await make_student(start_date=date(2026, 1, 5))

    with pytest.raises(ValidationError) as exc_info:
        await payments.plan_payment(
            db_session, student.id, PaymentKind.MONTHLY, "2025-11", month_count=3, now=NOW
        )
    details = exc_info.value.details
    assert exc_info.value.code == "MONTH_OUT_OF_RANGE"
    assert details["before_enrollment"] == ["2025-11", "2025-12"]
    assert details["earliest_allowed"] == "2026-01"

    with pytest.raises(ValidationError) as exc_info:
        await payments.plan_payment(
            db_session, student.id, PaymentKind.MONTHLY, "2026-05", month_count=4, now=NOW
        )
    assert exc_info.value.details["beyond_limit"] == ["2026-07", "2026-08"]
    assert exc_info.value.details["latest_allowed"] == "2026-06"


@pytest.mark.asyncio
async def test_payment_requires_active_enrollment(db_session: AsyncSession, make_student) -> None:
    student = await make_student(enrolled=False)

    with pytest.raises(ConflictError) as exc_info:
        await payments.plan_payment(db_session, student.id, PaymentKind.MONTHLY, "2026-01", now=NOW)
    assert exc_info.value.code == "ENROLLMENT_REQUIRED"


def test_month_count_rules() -> None:
    assert payments.resolve_month_count(PaymentKind.ANNUAL, None) == 12
    assert payments.resolve_month_count(PaymentKind.MONTHLY, None) == 1
    with pytest.raises(ValidationError):
        payments.resolve_month_count(PaymentKind.ANNUAL, 6)
    with pytest.raises(ValidationError):
        payments.resolve_month_count(PaymentKind.MONTHLY, 37)


def test_amount_rules() -> None:
    assert payments.resolve_amount(PaymentKind.MONTHLY, 300000, None) == 300000
    assert payments.resolve_amount(PaymentKind.AD_HOC, 300000, 300000) == 300000
    for kind, requested in (
        (PaymentKind.MONTHLY, 200000),
        (PaymentKind.ANNUAL, 3100000),
        (PaymentKind.AD_HOC, 100000),
        (PaymentKind.AD_HOC, 300001),
    ):
        with pytest.raises(ValidationError) as exc_info:
            payments.resolve_amount(kind, 300000, requested)
        assert exc_info.value.code == "AMOUNT_MISMATCH"
