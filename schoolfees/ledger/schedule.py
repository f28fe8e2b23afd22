"""Monthly installment schedule generation. Pure: no I/O, no clock."""

from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional
from uuid import UUID

from schoolfees.core.enums import InstallmentStatus, InstallmentTrack
from schoolfees.core.exceptions import InvalidAcademicYear
from schoolfees.core.models import LedgerInstallment
from schoolfees.ledger.grades import month_name

CENT = Decimal("0.01")

TUITION_DUE_DAY = 15
TRANSPORT_DUE_DAY = 5

DUE_DAYS = {
    InstallmentTrack.TUITION: TUITION_DUE_DAY,
    InstallmentTrack.TRANSPORTATION: TRANSPORT_DUE_DAY,
}


def to_money(val) -> Decimal:
    if val is None:
        return Decimal("0")
    return val if isinstance(val, Decimal) else Decimal(str(val))


def quantize(val) -> Decimal:
    return to_money(val).quantize(CENT, rounding=ROUND_HALF_UP)


def parse_start_year(academic_year: str) -> int:
    """'2025-2026' -> 2025. The second year must follow the first."""
    parts = (academic_year or "").split("-")
    if len(parts) != 2 or not all(p.isdigit() and len(p) == 4 for p in parts):
        raise InvalidAcademicYear(f"Invalid academic year: {academic_year!r}")
    start, end = int(parts[0]), int(parts[1])
    if end != start + 1:
        raise InvalidAcademicYear(f"Invalid academic year: {academic_year!r}")
    return start


def generate_schedule(
    start_month: int,
    total_months: int,
    monthly_amount,
    academic_year: str,
    track=InstallmentTrack.TUITION,
    due_day: Optional[int] = None,
    ledger_id: Optional[UUID] = None,
) -> List[LedgerInstallment]:
    """
    Build `total_months` consecutive pending installments from `start_month`.
    Months past December roll into the second calendar year of the academic year.
    """
    track = InstallmentTrack(track)
    if due_day is None:
        due_day = DUE_DAYS[track]
    start_year = parse_start_year(academic_year)
    amount = quantize(monthly_amount)

    schedule = []
    for i in range(total_months):
        month = start_month + i
        year = start_year
        if month > 12:
            month -= 12
            year += 1
        schedule.append(
            LedgerInstallment(
                ledger_id=ledger_id,
                track=track.value,
                position=i,
                month=month,
                month_name=month_name(month),
                due_date=date(year, month, due_day),
                amount=amount,
                paid_amount=Decimal("0"),
                status=InstallmentStatus.pending.value,
            )
        )
    return schedule
