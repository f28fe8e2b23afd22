"""Student fee ledger router: generation, payments, discounts, reconfiguration, bulk jobs."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from schoolfees.auth.dependencies import get_current_user
from schoolfees.auth.rbac import check_permission
from schoolfees.auth.schemas import CurrentUser
from schoolfees.core.enums import GradeCategory, OverallStatus
from schoolfees.core.exceptions import ServiceError, error_detail
from schoolfees.db.session import get_db

from .schemas import (
    AnnualPaymentRequest,
    ApplyConfigurationRequest,
    BulkDeleteRequest,
    BulkLedgerGenerateRequest,
    BulkOperationResponse,
    DiscountRequest,
    InstallmentPaymentRequest,
    LedgerGenerateRequest,
    LumpSumPaymentRequest,
    MonthlyAmountDueResponse,
    ReconfigureComponentsRequest,
    RecomputeStatusesRequest,
    RecomputeStatusesResponse,
    StudentLedgerResponse,
    StudentLedgerSummary,
)
from . import service

router = APIRouter(prefix="/api/v1/student-ledgers", tags=["student-ledgers"])


# --- Generation ---
@router.post(
    "",
    response_model=StudentLedgerResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("fees", "create"))],
)
async def generate_ledger(
    payload: LedgerGenerateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> StudentLedgerResponse:
    try:
        return await service.generate_ledger(
            db, current_user.tenant_id, payload, created_by=current_user.id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=error_detail(e))


@router.post(
    "/bulk",
    response_model=BulkOperationResponse,
    dependencies=[Depends(check_permission("fees", "create"))],
)
async def bulk_generate_ledgers(
    payload: BulkLedgerGenerateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> BulkOperationResponse:
    return await service.bulk_generate_ledgers(
        db, current_user.tenant_id, payload, created_by=current_user.id
    )


# --- Reads ---
@router.get(
    "",
    response_model=List[StudentLedgerSummary],
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def list_ledgers(
    academic_year: str,
    grade: Optional[str] = Query(None),
    grade_category: Optional[GradeCategory] = Query(None),
    overall_status: Optional[OverallStatus] = Query(None),
    class_name: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[StudentLedgerSummary]:
    return await service.list_ledgers(
        db,
        current_user.tenant_id,
        academic_year,
        grade=grade,
        grade_category=grade_category.value if grade_category else None,
        overall_status=overall_status.value if overall_status else None,
        class_name=class_name,
    )


@router.get(
    "/student/{student_id}",
    response_model=StudentLedgerResponse,
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def get_student_ledger(
    student_id: UUID,
    academic_year: str,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> StudentLedgerResponse:
    try:
        return await service.get_student_ledger(db, current_user.tenant_id, student_id, academic_year)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=error_detail(e))


@router.get(
    "/{ledger_id}",
    response_model=StudentLedgerResponse,
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def get_ledger(
    ledger_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> StudentLedgerResponse:
    try:
        return await service.get_ledger(db, current_user.tenant_id, ledger_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=error_detail(e))


@router.get(
    "/{ledger_id}/monthly-due",
    response_model=MonthlyAmountDueResponse,
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def get_monthly_amount_due(
    ledger_id: UUID,
    month: int = Query(..., ge=1, le=12),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> MonthlyAmountDueResponse:
    try:
        return await service.get_monthly_amount_due(db, current_user.tenant_id, ledger_id, month)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=error_detail(e))


# --- Payments ---
@router.post(
    "/{ledger_id}/payments/lump-sum",
    response_model=StudentLedgerResponse,
    dependencies=[Depends(check_permission("fees", "update"))],
)
async def record_lump_sum_payment(
    ledger_id: UUID,
    payload: LumpSumPaymentRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> StudentLedgerResponse:
    try:
        return await service.record_lump_sum_payment(
            db, current_user.tenant_id, ledger_id, payload, recorded_by=current_user.id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=error_detail(e))


@router.post(
    "/{ledger_id}/payments/installment",
    response_model=StudentLedgerResponse,
    dependencies=[Depends(check_permission("fees", "update"))],
)
async def record_installment_payment(
    ledger_id: UUID,
    payload: InstallmentPaymentRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> StudentLedgerResponse:
    try:
        return await service.record_installment_payment(
            db, current_user.tenant_id, ledger_id, payload, recorded_by=current_user.id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=error_detail(e))


@router.post(
    "/{ledger_id}/payments/annual",
    response_model=StudentLedgerResponse,
    dependencies=[Depends(check_permission("fees", "update"))],
)
async def record_annual_tuition_payment(
    ledger_id: UUID,
    payload: AnnualPaymentRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> StudentLedgerResponse:
    try:
        return await service.record_annual_tuition_payment(
            db, current_user.tenant_id, ledger_id, payload, recorded_by=current_user.id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=error_detail(e))


# --- Discount ---
@router.post(
    "/{ledger_id}/discount",
    response_model=StudentLedgerResponse,
    dependencies=[Depends(check_permission("fees", "update"))],
)
async def apply_discount(
    ledger_id: UUID,
    payload: DiscountRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> StudentLedgerResponse:
    try:
        return await service.apply_discount(
            db, current_user.tenant_id, ledger_id, payload, applied_by=current_user.id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=error_detail(e))


@router.delete(
    "/{ledger_id}/discount",
    response_model=StudentLedgerResponse,
    dependencies=[Depends(check_permission("fees", "update"))],
)
async def remove_discount(
    ledger_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> StudentLedgerResponse:
    try:
        return await service.remove_discount(db, current_user.tenant_id, ledger_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=error_detail(e))


# --- Reconfiguration ---
@router.put(
    "/{ledger_id}/components",
    response_model=StudentLedgerResponse,
    dependencies=[Depends(check_permission("fees", "update"))],
)
async def reconfigure_components(
    ledger_id: UUID,
    payload: ReconfigureComponentsRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> StudentLedgerResponse:
    try:
        return await service.reconfigure_components(db, current_user.tenant_id, ledger_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=error_detail(e))


@router.post(
    "/apply-configuration",
    response_model=BulkOperationResponse,
    dependencies=[Depends(check_permission("fees", "update"))],
)
async def apply_configuration_changes(
    payload: ApplyConfigurationRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> BulkOperationResponse:
    try:
        return await service.apply_configuration_changes(db, current_user.tenant_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=error_detail(e))


@router.post(
    "/recompute-statuses",
    response_model=RecomputeStatusesResponse,
    dependencies=[Depends(check_permission("fees", "update"))],
)
async def recompute_statuses(
    payload: RecomputeStatusesRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> RecomputeStatusesResponse:
    try:
        return await service.recompute_statuses(db, current_user.tenant_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=error_detail(e))


# --- Deletion ---
@router.delete(
    "/{ledger_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(check_permission("fees", "delete"))],
)
async def delete_ledger(
    ledger_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> None:
    try:
        await service.delete_ledger(db, current_user.tenant_id, ledger_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=error_detail(e))


@router.post(
    "/bulk-delete",
    response_model=BulkOperationResponse,
    dependencies=[Depends(check_permission("fees", "delete"))],
)
async def bulk_delete_ledgers(
    payload: BulkDeleteRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> BulkOperationResponse:
    return await service.bulk_delete_ledgers(db, current_user.tenant_id, payload)
