"""Unit tests for month keys and month arithmetic."""

from datetime import datetime

import pytest

from app.api.v1.finance.months import (
    month_label,
    month_range,
    months_between,
    next_month_start,
    parse_month_key,
    safe_month_label,
    shift_month,
)
from app.core.exceptions import ValidationError


def test_parse_month_key() -> None:
    assert parse_month_key("2026-03") == (2026, 3)
    assert parse_month_key(" 2025-12 ") == (2025, 12)


@pytest.mark.parametrize("value", ["2026-13", "2026-3", "26-03", "", None, "2026/03"])
def test_parse_month_key_rejects_malformed(value) -> None:
    with pytest.raises(ValidationError) as exc_info:
        parse_month_key(value)
    assert exc_info.value.code == "INVALID_MONTH"
    assert exc_info.value.status_code == 400


def test_shift_month_crosses_year_boundaries() -> None:
    assert shift_month(2026, 1, -1) == (2025, 12)
    assert shift_month(2025, 12, 1) == (2026, 1)
    assert shift_month(2026, 3, 14) == (2027, 5)


def test_month_ranges() -> None:
    assert month_range((2025, 11), 3) == [(2025, 11), (2025, 12), (2026, 1)]
    assert months_between((2025, 11), (2026, 2)) == [(2025, 11), (2025, 12), (2026, 1), (2026, 2)]
    assert months_between((2026, 3), (2026, 2)) == []


def test_labels() -> None:
    assert month_label(2026, 3) == "March 2026"
    assert safe_month_label("2026-01") == "January 2026"
    # Unreadable keys are shown as stored
    assert safe_month_label("legacy") == "legacy"


def test_next_month_start() -> None:
    assert next_month_start(datetime(2026, 12, 20, 15, 30)) == datetime(2027, 1, 1)
