"""
Status engine and invariant restoration for student fee ledgers.

`recompute` is the single place where aggregates (grand totals, remaining amounts) and
statuses are derived. Every mutation in ledger.operations ends by calling it, and it is
safe to call on read: running it twice with the same `today` changes nothing.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, List, Optional

from schoolfees.core.enums import ComponentStatus, InstallmentStatus, LedgerComponent, OverallStatus
from schoolfees.core.models import LedgerInstallment, StudentFeeLedger
from schoolfees.ledger.schedule import to_money

COMPONENTS = [c.value for c in LedgerComponent]


def is_applicable(ledger: StudentFeeLedger, component) -> bool:
    component = LedgerComponent(component)
    if component == LedgerComponent.TUITION:
        return True
    if component == LedgerComponent.REGISTRATION_FEE:
        return bool(ledger.registration_fee_applicable)
    if component == LedgerComponent.UNIFORM:
        return bool(ledger.uniform_applicable)
    return bool(ledger.transport_using)


def settle_installment(
    installment: LedgerInstallment,
    grace_period_days: int = 5,
    today: Optional[date] = None,
) -> str:
    """
    Installment status from paid amount vs due amount, then due date + grace.
    A partial installment is never flagged overdue; without `today` an unpaid
    installment keeps whatever pending/overdue flag it already had.
    """
    paid = to_money(installment.paid_amount)
    amount = to_money(installment.amount)
    if paid >= amount:
        installment.status = InstallmentStatus.paid.value
    elif paid > 0:
        installment.status = InstallmentStatus.partial.value
    elif today is not None:
        deadline = installment.due_date + timedelta(days=grace_period_days)
        if today > deadline:
            installment.status = InstallmentStatus.overdue.value
        else:
            installment.status = InstallmentStatus.pending.value
    elif installment.status not in (InstallmentStatus.pending.value, InstallmentStatus.overdue.value):
        installment.status = InstallmentStatus.pending.value
    return installment.status


def track_status(schedule: List[LedgerInstallment]) -> str:
    statuses = [i.status for i in schedule]
    if all(s == InstallmentStatus.paid.value for s in statuses):
        return ComponentStatus.completed.value
    if any(s == InstallmentStatus.overdue.value for s in statuses):
        return ComponentStatus.overdue.value
    if any(s in (InstallmentStatus.paid.value, InstallmentStatus.partial.value) for s in statuses):
        return ComponentStatus.partial.value
    return ComponentStatus.pending.value


def lump_sum_status(applicable: bool, is_paid: bool) -> str:
    if not applicable:
        return ComponentStatus.not_applicable.value
    return ComponentStatus.completed.value if is_paid else ComponentStatus.pending.value


def overall_status(component_statuses: Iterable[str]) -> str:
    applicable = [s for s in component_statuses if s != ComponentStatus.not_applicable.value]
    if all(s == ComponentStatus.completed.value for s in applicable):
        return OverallStatus.completed.value
    if any(s == ComponentStatus.overdue.value for s in applicable):
        return OverallStatus.overdue.value
    if any(s in (ComponentStatus.partial.value, ComponentStatus.completed.value) for s in applicable):
        return OverallStatus.partial.value
    return OverallStatus.pending.value


def _restore_aggregates(ledger: StudentFeeLedger) -> None:
    total_grand = Decimal("0")
    paid_grand = Decimal("0")
    for component in COMPONENTS:
        if not is_applicable(ledger, component):
            setattr(ledger, f"total_{component}", Decimal("0"))
            setattr(ledger, f"paid_{component}", Decimal("0"))
        total = to_money(getattr(ledger, f"total_{component}"))
        paid = to_money(getattr(ledger, f"paid_{component}"))
        setattr(ledger, f"remaining_{component}", total - paid)
        total_grand += total
        paid_grand += paid
    ledger.total_grand_total = total_grand
    ledger.paid_grand_total = paid_grand
    ledger.remaining_grand_total = total_grand - paid_grand


def _restore_statuses(ledger: StudentFeeLedger, grace_period_days: int, today: Optional[date]) -> None:
    for installment in ledger.tuition_schedule:
        settle_installment(installment, grace_period_days, today)
    if ledger.annual_paid:
        ledger.status_tuition = ComponentStatus.completed.value
    else:
        ledger.status_tuition = track_status(ledger.tuition_schedule)

    if ledger.transport_using:
        for installment in ledger.transport_schedule:
            settle_installment(installment, grace_period_days, today)
        ledger.status_transportation = track_status(ledger.transport_schedule)
    else:
        ledger.status_transportation = ComponentStatus.not_applicable.value

    ledger.status_uniform = lump_sum_status(ledger.uniform_applicable, ledger.uniform_is_paid)
    ledger.status_registration_fee = lump_sum_status(
        ledger.registration_fee_applicable, ledger.registration_fee_is_paid
    )
    ledger.overall_status = overall_status(
        [
            ledger.status_tuition,
            ledger.status_registration_fee,
            ledger.status_uniform,
            ledger.status_transportation,
        ]
    )


def recompute(
    ledger: StudentFeeLedger,
    grace_period_days: int = 5,
    today: Optional[date] = None,
) -> StudentFeeLedger:
    """Restore every derived value on the ledger. Idempotent for a fixed `today`."""
    _restore_aggregates(ledger)
    _restore_statuses(ledger, grace_period_days, today)
    return ledger


def component_statuses(ledger: StudentFeeLedger) -> dict:
    return {c: getattr(ledger, f"status_{c}") for c in COMPONENTS}


def monthly_amount_due(ledger: StudentFeeLedger, month: int) -> Decimal:
    """Tuition + transportation scheduled for a calendar month (1-12)."""
    total = Decimal("0")
    for installment in ledger.tuition_schedule:
        if installment.month == month:
            total += to_money(installment.amount)
    if ledger.transport_using:
        for installment in ledger.transport_schedule:
            if installment.month == month:
                total += to_money(installment.amount)
    return total
