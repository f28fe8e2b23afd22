"""Ledger reports: collection dashboard and month-by-month expected vs collected. Read only."""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from schoolfees.core.enums import InstallmentStatus, InstallmentTrack, OverallStatus
from schoolfees.core.models import LedgerInstallment, StudentFeeLedger
from schoolfees.ledger.grades import month_name
from schoolfees.ledger.schedule import quantize
from schoolfees.ledger.status import COMPONENTS

from .schemas import ComponentCollection, DashboardResponse, MonthlyStatItem, MonthlyStatsResponse


def _to_decimal(val) -> Decimal:
    if val is None:
        return Decimal("0")
    return quantize(val)


async def get_dashboard(db: AsyncSession, tenant_id: UUID, academic_year: str) -> DashboardResponse:
    scope = (
        StudentFeeLedger.tenant_id == tenant_id,
        StudentFeeLedger.academic_year == academic_year,
    )

    status_stmt = (
        select(StudentFeeLedger.overall_status, func.count(StudentFeeLedger.id))
        .where(*scope)
        .group_by(StudentFeeLedger.overall_status)
    )
    status_rows = (await db.execute(status_stmt)).all()
    status_counts = {s.value: 0 for s in OverallStatus}
    for overall_status, count in status_rows:
        status_counts[overall_status] = count

    columns = []
    for component in COMPONENTS + ["grand_total"]:
        for prefix in ("total", "paid", "remaining"):
            columns.append(func.sum(getattr(StudentFeeLedger, f"{prefix}_{component}")))
    sums = (await db.execute(select(*columns).where(*scope))).one()

    collections = {}
    for i, component in enumerate(COMPONENTS + ["grand_total"]):
        total, paid, remaining = sums[i * 3:i * 3 + 3]
        collections[component] = ComponentCollection(
            total=_to_decimal(total),
            paid=_to_decimal(paid),
            remaining=_to_decimal(remaining),
        )
    grand = collections.pop("grand_total")
    rate = Decimal("0")
    if grand.total > 0:
        rate = quantize(grand.paid * 100 / grand.total)

    return DashboardResponse(
        academic_year=academic_year,
        total_students=sum(status_counts.values()),
        status_counts=status_counts,
        components=collections,
        grand_total=grand,
        collection_rate=rate,
    )


async def get_monthly_stats(db: AsyncSession, tenant_id: UUID, academic_year: str) -> MonthlyStatsResponse:
    """Expected vs collected per calendar month, in academic order."""
    overdue = case((LedgerInstallment.status == InstallmentStatus.overdue.value, 1), else_=0)
    stmt = (
        select(
            LedgerInstallment.month,
            LedgerInstallment.track,
            func.min(LedgerInstallment.due_date),
            func.sum(LedgerInstallment.amount),
            func.sum(LedgerInstallment.paid_amount),
            func.sum(overdue),
        )
        .join(StudentFeeLedger, StudentFeeLedger.id == LedgerInstallment.ledger_id)
        .where(
            StudentFeeLedger.tenant_id == tenant_id,
            StudentFeeLedger.academic_year == academic_year,
        )
        .group_by(LedgerInstallment.month, LedgerInstallment.track)
    )
    rows = (await db.execute(stmt)).all()

    by_month = {}
    first_due = {}
    for month, track, due, expected, collected, overdue_count in rows:
        item = by_month.setdefault(
            month,
            {
                "expected_tuition": Decimal("0"),
                "collected_tuition": Decimal("0"),
                "expected_transportation": Decimal("0"),
                "collected_transportation": Decimal("0"),
                "overdue_count": 0,
            },
        )
        key = "tuition" if track == InstallmentTrack.TUITION.value else "transportation"
        item[f"expected_{key}"] += _to_decimal(expected)
        item[f"collected_{key}"] += _to_decimal(collected)
        item["overdue_count"] += int(overdue_count or 0)
        first_due[month] = min(due, first_due.get(month, due))

    months = []
    for month in sorted(by_month, key=lambda m: first_due[m]):
        item = by_month[month]
        months.append(
            MonthlyStatItem(
                month=month,
                month_name=month_name(month),
                expected_total=item["expected_tuition"] + item["expected_transportation"],
                collected_total=item["collected_tuition"] + item["collected_transportation"],
                **item,
            )
        )
    return MonthlyStatsResponse(academic_year=academic_year, months=months)
