"""Billing calendar: which calendar months a tariff bills for."""

from typing import Iterable, Optional, Tuple

# Academic order: September .. August
ACADEMIC_MONTH_ORDER = (9, 10, 11, 12, 1, 2, 3, 4, 5, 6, 7, 8)
DEFAULT_CHARGEABLE_MONTH_COUNT = 10


def _academic_position(month: int) -> int:
    return ACADEMIC_MONTH_ORDER.index(month)


def normalize_months(months: Iterable) -> Tuple[int, ...]:
    """Distinct valid months 1..12 sorted in academic order. Unparseable entries are dropped."""
    seen = set()
    for raw in months or []:
        try:
            value = int(raw)
        except (TypeError, ValueError):
            continue
        if 1 <= value <= 12:
            seen.add(value)
    return tuple(sorted(seen, key=_academic_position))


def months_from_count(count: int) -> Tuple[int, ...]:
    count = max(1, min(12, int(count)))
    return ACADEMIC_MONTH_ORDER[:count]


def derive_month_count(annual_amount: Optional[int], monthly_amount: Optional[int]) -> int:
    if not monthly_amount or not annual_amount or monthly_amount <= 0 or annual_amount <= 0:
        return DEFAULT_CHARGEABLE_MONTH_COUNT
    # half-up rounding of annual / monthly
    return max(1, min(12, (2 * annual_amount + monthly_amount) // (2 * monthly_amount)))


def resolve_chargeable_months(
    months: Optional[Iterable],
    annual_amount: Optional[int] = None,
    monthly_amount: Optional[int] = None,
) -> Tuple[int, ...]:
    """
    Concrete chargeable months for a tariff row.

    Rows written before calendars were stored carry no month list; for those the calendar
    is the first round(annual / monthly) academic months, clamped to 1..12, or 10 months
    when the ratio cannot be computed.
    """
    normalized = normalize_months(months) if months is not None else ()
    if normalized:
        return normalized
    return months_from_count(derive_month_count(annual_amount, monthly_amount))


def is_chargeable(month: int, chargeable_months: Iterable[int]) -> bool:
    return month in set(chargeable_months)
