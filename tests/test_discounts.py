"""Unit tests for discount amounts, snapshots and the per-student discount map."""

from datetime import datetime

from app.api.v1.finance.discounts import (
    DiscountRecord,
    SnapshotEntry,
    build_discount_map,
    build_snapshot,
    discount_month_amount,
    normalize_snapshot,
    retained_entries_on_deactivation,
)

BASE = 300000


def _record(kind, value, start_month, month_count, **kwargs) -> DiscountRecord:
    return DiscountRecord(kind=kind, value=value, start_month=start_month, month_count=month_count, **kwargs)


def test_discount_month_amount() -> None:
    assert discount_month_amount("PERCENT", 20, BASE) == 240000
    assert discount_month_amount("FIXED_AMOUNT", 50000, BASE) == 250000
    assert discount_month_amount("FIXED_AMOUNT", 400000, BASE) == 0
    assert discount_month_amount("FULL_WAIVER", None, BASE) == 0
    # 100001 * 0.67 = 67000.67, rounded half-up
    assert discount_month_amount("PERCENT", 33, 100001) == 67001


def test_build_snapshot_covers_every_month() -> None:
    snapshot = build_snapshot("PERCENT", 10, "2025-12", 3, BASE)
    assert snapshot == [
        SnapshotEntry("2025-12", 270000),
        SnapshotEntry("2026-01", 270000),
        SnapshotEntry("2026-02", 270000),
    ]


def test_overlapping_discounts_lowest_net_wins_in_any_order() -> None:
    percent = _record("PERCENT", 20, "2026-02", 1)
    fixed = _record("FIXED_AMOUNT", 100000, "2026-02", 2)

    expected = {"2026-02": 200000, "2026-03": 200000}
    assert build_discount_map([percent, fixed], BASE) == expected
    assert build_discount_map([fixed, percent], BASE) == expected


def test_snapshot_wins_over_current_fields() -> None:
    """Elapsed months keep the amount frozen at creation even if the record now says otherwise."""
    record = _record(
        "FULL_WAIVER",
        None,
        "2026-02",
        1,
        snapshot=[{"key": "2026-02", "amount": 240000}],
        snapshot_version=2,
    )
    assert build_discount_map([record], BASE) == {"2026-02": 240000}


def test_legacy_snapshot_is_read() -> None:
    raw = [
        {"year": 2026, "month": 2, "net_amount": 150000},
        {"year": 2026, "month": 3, "summa": 100000},
        {"year": 2026, "month": 13, "net_amount": 1},
        "junk",
        {"key": "bad-key", "amount": 5},
    ]
    assert normalize_snapshot(raw) == [SnapshotEntry("2026-02", 150000), SnapshotEntry("2026-03", 100000)]
    assert normalize_snapshot({"not": "a list"}) == []


def test_deactivated_without_snapshot_stops_at_deactivation_month() -> None:
    record = _record(
        "PERCENT",
        50,
        "2026-01",
        6,
        is_active=False,
        deactivated_at=datetime(2026, 3, 10),
    )
    assert build_discount_map([record], BASE) == {"2026-01": 150000, "2026-02": 150000}


def test_deactivated_with_empty_snapshot_has_no_months() -> None:
    record = _record("PERCENT", 50, "2026-03", 2, is_active=False, snapshot=[], snapshot_version=2)
    assert build_discount_map([record], BASE) == {}


def test_retained_entries_on_deactivation() -> None:
    record = _record(
        "FIXED_AMOUNT",
        100000,
        "2026-01",
        6,
        snapshot=[e.to_json() for e in build_snapshot("FIXED_AMOUNT", 100000, "2026-01", 6, BASE)],
        snapshot_version=2,
    )
    retained = retained_entries_on_deactivation(record, BASE, datetime(2026, 3, 20))
    assert [e.key for e in retained] == ["2026-01", "2026-02"]
    assert all(e.amount == 200000 for e in retained)
