"""Ledger reports router."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from schoolfees.auth.dependencies import get_current_user
from schoolfees.auth.rbac import check_permission
from schoolfees.auth.schemas import CurrentUser
from schoolfees.db.session import get_db

from .schemas import DashboardResponse, MonthlyStatsResponse
from . import service

router = APIRouter(prefix="/api/v1/ledger-reports", tags=["ledger-reports"])


@router.get(
    "/dashboard",
    response_model=DashboardResponse,
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def get_dashboard(
    academic_year: str,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> DashboardResponse:
    return await service.get_dashboard(db, current_user.tenant_id, academic_year)


@router.get(
    "/monthly",
    response_model=MonthlyStatsResponse,
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def get_monthly_stats(
    academic_year: str,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> MonthlyStatsResponse:
    return await service.get_monthly_stats(db, current_user.tenant_id, academic_year)
