import io
import uuid
from datetime import date

import pytest
from httpx import AsyncClient
from openpyxl import load_workbook

import app.main as main
from app.api.v1.finance.export import XLSX_MEDIA_TYPE
from app.api.v1.finance.months import month_key, shift_month
from app.auth.security import create_access_token
from app.core.timeutils import utc_now

BASE_URL = "/api/v1/finance"


def _month(delta: int = 0) -> str:
    now = utc_now()
    return month_key(*shift_month(now.year, now.month, delta))


def _start_date(delta: int) -> date:
    now = utc_now()
    year, month = shift_month(now.year, now.month, delta)
    return date(year, month, 5)


@pytest.fixture()
async def year_round_tariff(client: AsyncClient, auth_headers: dict) -> dict:
    """A tariff billing every calendar month, effective long ago so the next read activates it."""
    response = await client.post(
        f"{BASE_URL}/tariffs",
        json={
            "monthly_amount": 300000,
            "annual_amount": 3600000,
            "chargeable_months": list(range(1, 13)),
            "effective_from": "2000-01-01T00:00:00",
            "note": "Year-round billing",
        },
        headers=auth_headers,
    )
    assert response.status_code == 201
    return response.json()


@pytest.mark.asyncio
async def test_requires_token(client: AsyncClient) -> None:
    response = await client.get(f"{BASE_URL}/settings")
    assert response.status_code == 401

    expired = create_access_token(user_id=uuid.uuid4(), role="ADMIN", expires_minutes=-1)
    response = await client.get(f"{BASE_URL}/settings", headers={"Authorization": f"Bearer {expired}"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_permissions_are_checked(client: AsyncClient) -> None:
    def headers(permissions: dict) -> dict:
        token = create_access_token(user_id=uuid.uuid4(), role="ACCOUNTANT", permissions=permissions)
        return {"Authorization": f"Bearer {token}"}

    response = await client.get(f"{BASE_URL}/settings", headers=headers({}))
    assert response.status_code == 403

    response = await client.get(f"{BASE_URL}/settings", headers=headers({"finance": {"read": True}}))
    assert response.status_code == 200

    response = await client.post(
        f"{BASE_URL}/tariffs",
        json={"monthly_amount": 300000},
        headers=headers({"finance": {"read": True}}),
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_settings_activate_due_tariff(
    client: AsyncClient, auth_headers: dict, year_round_tariff: dict, admin_id: uuid.UUID
) -> None:
    assert year_round_tariff["status"] == "PLANNED"
    assert year_round_tariff["created_by"] == str(admin_id)

    response = await client.get(f"{BASE_URL}/settings", headers=auth_headers)
    assert response.status_code == 200
    data = response.json()

    assert data["tariff"]["version_id"] == year_round_tariff["id"]
    # Stored in academic order, September first
    assert data["tariff"]["chargeable_months"] == [9, 10, 11, 12, 1, 2, 3, 4, 5, 6, 7, 8]
    assert data["versions"][0]["status"] == "ACTIVE"
    assert {a["action"] for a in data["audits"]} == {"CREATE", "ACTIVATE"}
    assert data["constraints"] == {"min_amount": 50000, "max_amount": 50000000}
    assert data["preview"]["student_count"] == 0


@pytest.mark.asyncio
async def test_invalid_tariff_amount(client: AsyncClient, auth_headers: dict) -> None:
    response = await client.post(f"{BASE_URL}/tariffs", json={"monthly_amount": 1000}, headers=auth_headers)
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "AMOUNT_OUT_OF_RANGE"


@pytest.mark.asyncio
async def test_tariff_rollback(client: AsyncClient, auth_headers: dict, year_round_tariff: dict) -> None:
    response = await client.post(
        f"{BASE_URL}/tariffs/{year_round_tariff['id']}/rollback",
        json={"note": "Restore year-round billing"},
        headers=auth_headers,
    )
    assert response.status_code == 201
    data = response.json()
    assert data["id"] != year_round_tariff["id"]
    assert data["status"] == "PLANNED"
    assert data["monthly_amount"] == 300000

    response = await client.post(f"{BASE_URL}/tariffs/{uuid.uuid4()}/rollback", headers=auth_headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_student_list_payment_and_revert(
    client: AsyncClient, auth_headers: dict, year_round_tariff: dict, make_student
) -> None:
    student = await make_student(start_date=_start_date(-2))
    student_url = f"{BASE_URL}/students/{student.id}"

    response = await client.get(f"{BASE_URL}/students", headers=auth_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 1
    row = data["students"][0]
    assert row["status"] == "DEBTOR"
    assert [m["key"] for m in row["debt_months"]] == [_month(-2), _month(-1), _month(0)]
    assert row["total_debt_amount"] == 900000
    assert row["classroom"] == "5-A (2025-2026)"
    assert data["summary"]["total_debtors"] == 1
    assert data["summary"]["cashflow"]["plan_amount"] == 300000

    response = await client.get(f"{BASE_URL}/students", params={"status": "NO_DEBT"}, headers=auth_headers)
    assert response.json()["total"] == 0

    payment = {"kind": "MONTHLY", "start_month": _month(0), "idempotency_key": "receipt-42"}
    response = await client.post(f"{student_url}/payments/preview", json=payment, headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["expected_amount"] == 300000

    response = await client.post(f"{student_url}/payments", json=payment, headers=auth_headers)
    assert response.status_code == 201
    transaction = response.json()["transaction"]
    assert transaction["amount"] == 300000
    assert transaction["covered_months"] == [_month(0)]

    # Retrying the same request is reported as a duplicate
    response = await client.post(f"{student_url}/payments", json=payment, headers=auth_headers)
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "DUPLICATE_REQUEST"

    response = await client.get(student_url, headers=auth_headers)
    assert response.status_code == 200
    detail = response.json()
    assert detail["student"]["debt_month_count"] == 2
    assert len(detail["transactions"]) == 1
    ledger = {r["key"]: r for r in detail["ledger"]}
    assert ledger[_month(0)]["status"] == "PAID"

    response = await client.get(
        f"{BASE_URL}/students", params={"debt_month": "CURRENT"}, headers=auth_headers
    )
    data = response.json()
    assert data["total"] == 0
    assert data["summary"]["cashflow"]["collected_amount"] == 300000

    response = await client.post(
        f"{BASE_URL}/payments/{transaction['id']}/revert", json={"note": "Wrong student"}, headers=auth_headers
    )
    assert response.status_code == 200
    assert response.json()["freed_months"] == [_month(0)]
    assert response.json()["transaction"]["status"] == "REVERSED"

    response = await client.post(f"{BASE_URL}/payments/{transaction['id']}/revert", headers=auth_headers)
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "ALREADY_REVERSED"

    response = await client.get(student_url, headers=auth_headers)
    assert response.json()["student"]["total_debt_amount"] == 900000


@pytest.mark.asyncio
async def test_payment_amount_mismatch(
    client: AsyncClient, auth_headers: dict, year_round_tariff: dict, make_student
) -> None:
    student = await make_student(start_date=_start_date(-1))

    response = await client.post(
        f"{BASE_URL}/students/{student.id}/payments",
        json={"kind": "MONTHLY", "start_month": _month(0), "amount": 250000},
        headers=auth_headers,
    )
    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["code"] == "AMOUNT_MISMATCH"
    assert detail["details"]["expected_amount"] == 300000

    # AD_HOC needs an amount
    response = await client.post(
        f"{BASE_URL}/students/{student.id}/payments",
        json={"kind": "AD_HOC", "start_month": _month(0)},
        headers=auth_headers,
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_discount_lifecycle(
    client: AsyncClient, auth_headers: dict, year_round_tariff: dict, make_student
) -> None:
    student = await make_student(start_date=_start_date(-1))
    url = f"{BASE_URL}/students/{student.id}/discounts"

    response = await client.post(
        url,
        json={"kind": "FIXED_AMOUNT", "value": 300000, "start_month": _month(0), "reason": "Too large"},
        headers=auth_headers,
    )
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "DISCOUNT_EXCEEDS_TARIFF"

    response = await client.post(
        url,
        json={"kind": "PERCENT", "value": 150, "start_month": _month(0), "reason": "Invalid"},
        headers=auth_headers,
    )
    assert response.status_code == 422

    response = await client.post(
        url,
        json={"kind": "PERCENT", "value": 20, "start_month": _month(0), "month_count": 2, "reason": "Sibling"},
        headers=auth_headers,
    )
    assert response.status_code == 201
    discount = response.json()
    assert [m["amount"] for m in discount["months"]] == [240000, 240000]
    assert discount["end_month"] == _month(1)

    response = await client.get(f"{BASE_URL}/students/{student.id}", headers=auth_headers)
    ledger = {r["key"]: r for r in response.json()["ledger"]}
    assert ledger[_month(0)]["net_amount"] == 240000
    assert ledger[_month(0)]["source"] == "DISCOUNT"

    response = await client.patch(
        f"{BASE_URL}/discounts/{discount['id']}/deactivate",
        json={"reason": "Sibling left"},
        headers=auth_headers,
    )
    assert response.status_code == 200
    data = response.json()
    assert data["retained_months"] == []
    assert data["discount"]["is_active"] is False

    response = await client.get(f"{BASE_URL}/students/{student.id}", headers=auth_headers)
    ledger = {r["key"]: r for r in response.json()["ledger"]}
    assert ledger[_month(0)]["net_amount"] == 300000

    response = await client.patch(
        f"{BASE_URL}/discounts/{discount['id']}/deactivate",
        json={"reason": "Again"},
        headers=auth_headers,
    )
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "ALREADY_DEACTIVATED"


@pytest.mark.asyncio
async def test_export_debtors(
    client: AsyncClient, auth_headers: dict, year_round_tariff: dict, make_student
) -> None:
    await make_student(start_date=_start_date(-2))

    response = await client.get(f"{BASE_URL}/students/export.xlsx", headers=auth_headers)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith(XLSX_MEDIA_TYPE)
    assert "attachment; filename=finance-debtors-" in response.headers["content-disposition"]
    ws = load_workbook(io.BytesIO(response.content)).active
    rows = list(ws.iter_rows(values_only=True))
    assert rows[0] == ("Student", "Username", "Classroom", "Debt months", "Months", "Total debt")
    assert rows[1][0] == "Aziz Karimov"
    assert rows[1][3] == 3
    assert rows[1][5] == 900000


@pytest.mark.asyncio
async def test_invalid_target_month(client: AsyncClient, auth_headers: dict) -> None:
    response = await client.get(
        f"{BASE_URL}/students", params={"debt_target_month": "2026-13"}, headers=auth_headers
    )
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "INVALID_MONTH"


@pytest.mark.asyncio
async def test_unknown_student(client: AsyncClient, auth_headers: dict) -> None:
    response = await client.get(f"{BASE_URL}/students/{uuid.uuid4()}", headers=auth_headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_startup_checks_optional_columns(monkeypatch) -> None:
    checked = []

    async def fake_check(db_engine):
        checked.append(db_engine)
        return {}

    monkeypatch.setattr(main, "find_missing_optional_columns", fake_check)
    application = main.create_app()

    assert not application.router.on_startup
    async with application.router.lifespan_context(application):
        assert checked == [main.engine]
