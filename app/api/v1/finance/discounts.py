"""
Discount map builder.

Expands a student's discounts into {month_key: net amount owed for that month}. Months missing
from the map are billed at the plain tariff amount by every consumer.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from app.core.enums import DiscountKind
from app.core.exceptions import ValidationError

from .months import key_serial, month_key, month_range, month_serial, parse_month_key

SNAPSHOT_VERSION = 2


@dataclass(frozen=True)
class SnapshotEntry:
    key: str
    amount: int

    def to_json(self) -> Dict[str, Any]:
        return {"key": self.key, "amount": self.amount}


@dataclass
class DiscountRecord:
    """Storage-independent view of a StudentDiscount row."""

    kind: str
    value: Optional[int]
    start_month: str
    month_count: int
    is_active: bool = True
    deactivated_at: Optional[datetime] = None
    snapshot: Optional[Any] = None
    snapshot_version: Optional[int] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Any, with_snapshot: bool = True) -> "DiscountRecord":
        """Build from a StudentDiscount or a reduced column row (degraded reads have no snapshot)."""
        return cls(
            kind=row.kind,
            value=row.value,
            start_month=row.start_month,
            month_count=row.month_count or 1,
            is_active=bool(row.is_active),
            deactivated_at=row.deactivated_at,
            snapshot=row.monthly_amount_snapshot if with_snapshot else None,
            snapshot_version=row.snapshot_version if with_snapshot else None,
            created_at=row.created_at,
        )


def discount_month_amount(kind: str, value: Optional[int], base: int) -> int:
    """Net amount owed for one month of base tariff under a discount."""
    base = int(base or 0)
    if base <= 0:
        return 0
    if kind == DiscountKind.FULL_WAIVER.value:
        return 0
    if kind == DiscountKind.PERCENT.value:
        percent = max(0, min(100, int(value or 0)))
        # half-up rounding in integer arithmetic
        return max(0, (base * (100 - percent) + 50) // 100)
    if kind == DiscountKind.FIXED_AMOUNT.value:
        return max(0, base - int(value or 0))
    return base


def build_snapshot(kind: str, value: Optional[int], start_month: str, month_count: int, base: int) -> List[SnapshotEntry]:
    """Freeze the per-month net amount of a new discount."""
    amount = discount_month_amount(kind, value, base)
    return [
        SnapshotEntry(key=month_key(year, month), amount=amount)
        for year, month in month_range(parse_month_key(start_month), month_count)
    ]


def _legacy_entry_key(entry: Dict[str, Any]) -> Optional[str]:
    try:
        year = int(entry.get("year"))
        month = int(entry.get("month"))
    except (TypeError, ValueError):
        return None
    if not 1 <= month <= 12:
        return None
    return month_key(year, month)


def normalize_snapshot(raw: Any, version: Optional[int] = None) -> List[SnapshotEntry]:
    """
    Read a stored snapshot in either schema.

    v2 (current): [{"key": "YYYY-MM", "amount": int}]
    v1 (legacy):  [{"year": int, "month": int, "net_amount" | "summa" | "amount": int}]
    Entries that cannot be read are dropped.
    """
    if not isinstance(raw, list):
        return []
    entries: List[SnapshotEntry] = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        if version == SNAPSHOT_VERSION or isinstance(entry.get("key"), str):
            key = entry.get("key")
            amount = entry.get("amount")
        else:
            key = _legacy_entry_key(entry)
            amount = next(
                (entry[name] for name in ("net_amount", "summa", "amount") if entry.get(name) is not None),
                None,
            )
        try:
            parse_month_key(key)
            amount = int(amount)
        except (ValidationError, TypeError, ValueError):
            continue
        entries.append(SnapshotEntry(key=key, amount=max(0, amount)))
    return entries


def discount_entries(record: DiscountRecord, base: int) -> List[SnapshotEntry]:
    """Per-month net amounts of one discount: its snapshot, or a range derived from its fields."""
    entries = normalize_snapshot(record.snapshot, record.snapshot_version)
    if record.snapshot is not None:
        return entries

    try:
        months = month_range(parse_month_key(record.start_month), max(1, int(record.month_count or 1)))
    except ValidationError:
        return []

    stop_serial = None
    if not record.is_active and record.deactivated_at is not None:
        stop_serial = month_serial(record.deactivated_at.year, record.deactivated_at.month)

    amount = discount_month_amount(record.kind, record.value, base)
    return [
        SnapshotEntry(key=month_key(year, month), amount=amount)
        for year, month in months
        if stop_serial is None or month_serial(year, month) < stop_serial
    ]


def build_discount_map(records: Iterable[DiscountRecord], monthly_amount: int) -> Dict[str, int]:
    """
    Merge all discounts of one student into {month_key: net amount}.

    When several discounts cover the same month the lowest net amount wins, so the result
    does not depend on the order the records were loaded in.
    """
    base = int(monthly_amount or 0)
    result: Dict[str, int] = {}
    if base <= 0:
        return result
    for record in records or []:
        if record is None:
            continue
        for entry in discount_entries(record, base):
            current = result.get(entry.key, base)
            result[entry.key] = min(current, entry.amount)
    return result


def retained_entries_on_deactivation(record: DiscountRecord, base: int, now: datetime) -> List[SnapshotEntry]:
    """Snapshot entries kept when a discount is deactivated: months strictly before the current month."""
    current_serial = month_serial(now.year, now.month)
    return [entry for entry in discount_entries(record, base) if key_serial(entry.key) < current_serial]
