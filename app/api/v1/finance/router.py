"""Finance router: tariff settings, student debts, discounts, payments."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.rbac import require_finance
from app.auth.schemas import CurrentUser
from app.core.enums import DebtMonthFilter, DebtStatusFilter
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .export import XLSX_MEDIA_TYPE
from .schemas import (
    DiscountCreate,
    DiscountDeactivate,
    DiscountDeactivateResponse,
    DiscountResponse,
    FinanceSettingsResponse,
    PaymentCommitResponse,
    PaymentPreviewResponse,
    PaymentRequest,
    RevertRequest,
    RevertResponse,
    StudentFinanceDetailResponse,
    StudentListResponse,
    TariffCreate,
    TariffRollbackRequest,
    TariffVersionResponse,
)
from . import service

router = APIRouter(prefix="/api/v1/finance", tags=["finance"])


# --- Settings / tariffs ---
@router.get(
    "/settings",
    response_model=FinanceSettingsResponse,
    dependencies=[Depends(require_finance("read"))],
)
async def get_finance_settings(
    db: AsyncSession = Depends(get_db),
) -> FinanceSettingsResponse:
    try:
        return await service.get_settings(db)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.post(
    "/tariffs",
    response_model=TariffVersionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_tariff_version(
    payload: TariffCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_finance("update")),
) -> TariffVersionResponse:
    try:
        return await service.create_tariff(db, payload, created_by=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.post(
    "/tariffs/{tariff_id}/rollback",
    response_model=TariffVersionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def rollback_tariff_version(
    tariff_id: UUID,
    payload: Optional[TariffRollbackRequest] = None,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_finance("update")),
) -> TariffVersionResponse:
    try:
        return await service.rollback_tariff(
            db,
            tariff_id,
            payload or TariffRollbackRequest(),
            created_by=current_user.id,
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


# --- Students ---
@router.get(
    "/students",
    response_model=StudentListResponse,
    dependencies=[Depends(require_finance("read"))],
)
async def list_finance_students(
    search: Optional[str] = Query(None, max_length=100),
    classroom_id: Optional[UUID] = Query(None),
    status_filter: DebtStatusFilter = Query(DebtStatusFilter.ALL, alias="status"),
    debt_month: DebtMonthFilter = Query(DebtMonthFilter.ALL),
    debt_target_month: Optional[str] = Query(None, description="YYYY-MM; overrides debt_month"),
    cashflow_month: Optional[str] = Query(None, description="YYYY-MM; defaults to the target or current month"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
) -> StudentListResponse:
    try:
        return await service.list_students(
            db,
            search=search,
            classroom_id=classroom_id,
            status=status_filter,
            debt_month=debt_month,
            debt_target_month=debt_target_month,
            cashflow_month=cashflow_month,
            page=page,
            limit=limit,
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.get(
    "/students/export.xlsx",
    dependencies=[Depends(require_finance("read"))],
)
async def export_finance_debtors(
    search: Optional[str] = Query(None, max_length=100),
    classroom_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> Response:
    try:
        content, filename = await service.export_debtors(db, search=search, classroom_id=classroom_id)
        return Response(
            content=content,
            media_type=XLSX_MEDIA_TYPE,
            headers={"Content-Disposition": f"attachment; filename={filename}"},
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.get(
    "/students/{student_id}",
    response_model=StudentFinanceDetailResponse,
    dependencies=[Depends(require_finance("read"))],
)
async def get_student_finance_detail(
    student_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> StudentFinanceDetailResponse:
    try:
        return await service.get_student_detail(db, student_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


# --- Payments ---
@router.post(
    "/students/{student_id}/payments/preview",
    response_model=PaymentPreviewResponse,
    dependencies=[Depends(require_finance("read"))],
)
async def preview_student_payment(
    student_id: UUID,
    payload: PaymentRequest,
    db: AsyncSession = Depends(get_db),
) -> PaymentPreviewResponse:
    try:
        return await service.preview_payment(db, student_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.post(
    "/students/{student_id}/payments",
    response_model=PaymentCommitResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_student_payment(
    student_id: UUID,
    payload: PaymentRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_finance("create")),
) -> PaymentCommitResponse:
    try:
        return await service.make_payment(db, student_id, payload, created_by=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.post(
    "/payments/{transaction_id}/revert",
    response_model=RevertResponse,
)
async def revert_student_payment(
    transaction_id: UUID,
    payload: Optional[RevertRequest] = None,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_finance("update")),
) -> RevertResponse:
    try:
        return await service.revert_payment(
            db,
            transaction_id,
            note=payload.note if payload else None,
            reversed_by=current_user.id,
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


# --- Discounts ---
@router.post(
    "/students/{student_id}/discounts",
    response_model=DiscountResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_student_discount(
    student_id: UUID,
    payload: DiscountCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_finance("create")),
) -> DiscountResponse:
    try:
        return await service.create_discount(db, student_id, payload, created_by=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.patch(
    "/discounts/{discount_id}/deactivate",
    response_model=DiscountDeactivateResponse,
)
async def deactivate_student_discount(
    discount_id: UUID,
    payload: DiscountDeactivate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_finance("update")),
) -> DiscountDeactivateResponse:
    try:
        return await service.deactivate_discount(db, discount_id, payload.reason, deactivated_by=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
