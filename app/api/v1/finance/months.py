"""Month keys (YYYY-MM) and month arithmetic shared by the finance ledger."""

import re
from datetime import date, datetime
from typing import List, Tuple, Union

from app.core.exceptions import ValidationError

MONTH_KEY_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"
_MONTH_KEY_RE = re.compile(MONTH_KEY_PATTERN)

MONTH_NAMES = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)

YearMonth = Tuple[int, int]


def parse_month_key(key: str) -> YearMonth:
    raw = str(key or "").strip()
    if not _MONTH_KEY_RE.match(raw):
        raise ValidationError(
            "Month must be in YYYY-MM format",
            code="INVALID_MONTH",
            details={"value": raw},
        )
    year_str, month_str = raw.split("-")
    return int(year_str), int(month_str)


def month_key(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def month_serial(year: int, month: int) -> int:
    return year * 12 + month


def key_serial(key: str) -> int:
    return month_serial(*parse_month_key(key))


def shift_month(year: int, month: int, delta: int) -> YearMonth:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def month_of(value: Union[date, datetime]) -> YearMonth:
    return value.year, value.month


def month_label(year: int, month: int) -> str:
    return f"{MONTH_NAMES[month - 1]} {year}"


def safe_month_label(key: str) -> str:
    try:
        return month_label(*parse_month_key(key))
    except ValidationError:
        return key


def month_range(start: YearMonth, count: int) -> List[YearMonth]:
    """count consecutive months starting at start."""
    return [shift_month(start[0], start[1], i) for i in range(count)]


def months_between(start: YearMonth, end: YearMonth) -> List[YearMonth]:
    """Inclusive month range; empty when start is after end."""
    count = month_serial(*end) - month_serial(*start) + 1
    if count <= 0:
        return []
    return month_range(start, count)


def month_start(year: int, month: int) -> datetime:
    return datetime(year, month, 1)


def next_month_start(value: datetime) -> datetime:
    year, month = shift_month(value.year, value.month, 1)
    return month_start(year, month)
