"""Pricing configuration router: upsert, read active configuration, grade catalogue, quotes."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from schoolfees.auth.dependencies import get_current_user
from schoolfees.auth.rbac import check_permission
from schoolfees.auth.schemas import CurrentUser
from schoolfees.core.enums import TransportTier
from schoolfees.core.exceptions import ServiceError, error_detail
from schoolfees.db.session import get_db

from .schemas import CostQuoteResponse, GradeListResponse, PricingConfigurationResponse, PricingConfigurationUpsert
from . import service

router = APIRouter(prefix="/api/v1/pricing-configurations", tags=["pricing-configurations"])


@router.put(
    "",
    response_model=PricingConfigurationResponse,
    dependencies=[Depends(check_permission("fees", "update"))],
)
async def upsert_pricing_configuration(
    payload: PricingConfigurationUpsert,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> PricingConfigurationResponse:
    try:
        return await service.upsert_pricing_configuration(
            db, current_user.tenant_id, payload, changed_by=current_user.id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=error_detail(e))


@router.get(
    "/grades",
    response_model=GradeListResponse,
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def list_grades() -> GradeListResponse:
    return service.list_grades()


@router.get(
    "/{academic_year}",
    response_model=PricingConfigurationResponse,
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def get_active_configuration(
    academic_year: str,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> PricingConfigurationResponse:
    try:
        return await service.get_active_configuration(db, current_user.tenant_id, academic_year)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=error_detail(e))


@router.get(
    "/{academic_year}/quote",
    response_model=CostQuoteResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def quote_student_cost(
    academic_year: str,
    grade: str = Query(...),
    has_uniform: bool = Query(False),
    transport_tier: Optional[TransportTier] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> CostQuoteResponse:
    try:
        return await service.quote_student_cost(
            db,
            current_user.tenant_id,
            academic_year,
            grade,
            has_uniform=has_uniform,
            transport_tier=transport_tier.value if transport_tier else None,
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=error_detail(e))
