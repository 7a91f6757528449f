"""Debtor list export (XLSX)."""

import io
from datetime import datetime
from typing import Iterable

from openpyxl import Workbook

from .debt import StudentDebtView

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
DEBTORS_SHEET_NAME = "Debtors"
DEBTOR_HEADERS = (
    "Student",
    "Username",
    "Classroom",
    "Debt months",
    "Months",
    "Total debt",
)


def debtors_filename(now: datetime) -> str:
    return f"finance-debtors-{now.date().isoformat()}.xlsx"


def build_debtors_workbook(views: Iterable[StudentDebtView]) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = DEBTORS_SHEET_NAME
    ws.append(list(DEBTOR_HEADERS))
    for view in views:
        ws.append(
            [
                view.full_name,
                view.username or "-",
                view.classroom or "-",
                view.debt.debt_month_count,
                ", ".join(m.label for m in view.debt.debt_months),
                view.debt.total_debt_amount,
            ]
        )
    ws.column_dimensions["A"].width = 32
    ws.column_dimensions["E"].width = 48

    bio = io.BytesIO()
    wb.save(bio)
    return bio.getvalue()
