"""
Fee ledger mutations.

Each operation validates everything first (raising a LedgerError before touching the
ledger), then applies its changes and finishes with status.recompute. They work on an
in-memory StudentFeeLedger and never touch the database; persistence, retries and
locking are the service layer's job.
"""

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from schoolfees.core.enums import (
    DiscountType,
    InstallmentStatus,
    InstallmentTrack,
    LumpSumComponent,
    PaymentMethod,
    PaymentType,
    TransportTier,
)
from schoolfees.core.exceptions import (
    AlreadyPaid,
    AnnualAlreadyPaid,
    ComponentAlreadyPaid,
    InstallmentNotFound,
    InvalidAmount,
    NoDiscountApplied,
    NotApplicable,
    TierDisabled,
    TierLockedByPayment,
    TrackNotApplicable,
)
from schoolfees.core.models import LedgerInstallment, PricingConfiguration, StudentFeeLedger
from schoolfees.ledger.grades import grade_category
from schoolfees.ledger.schedule import generate_schedule, parse_start_year, quantize, to_money
from schoolfees.ledger.status import recompute

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")

_PAYMENT_META = ("payment_date", "payment_method", "receipt_number", "notes", "recorded_by")


def _method(method) -> str:
    return PaymentMethod(method or PaymentMethod.CASH).value


def _discount_amount(base: Decimal, percentage) -> Decimal:
    return quantize(to_money(base) * to_money(percentage) / HUNDRED)


def _respread_pending(ledger: StudentFeeLedger, new_total: Decimal) -> Optional[Decimal]:
    """
    Spread what is left of `new_total` over the still-pending tuition installments.
    Paid, partial and overdue installments keep their amounts.
    """
    schedule = ledger.tuition_schedule
    pending = [i for i in schedule if i.status == InstallmentStatus.pending.value]
    if not pending:
        return None
    locked = sum((to_money(i.amount) for i in schedule if i.status != InstallmentStatus.pending.value), Decimal("0"))
    per_month = quantize((to_money(new_total) - locked) / len(pending))
    if per_month < 0:
        per_month = Decimal("0")
    for installment in pending:
        installment.amount = per_month
    ledger.tuition_monthly_amount = per_month
    return per_month


def _replace_transport_schedule(ledger: StudentFeeLedger, schedule: List[LedgerInstallment]) -> None:
    ledger.installments = [
        i for i in ledger.installments if i.track != InstallmentTrack.TRANSPORTATION.value
    ] + schedule


def generate_ledger(
    tenant_id: UUID,
    student_id: UUID,
    academic_year: str,
    grade: str,
    config: PricingConfiguration,
    has_uniform: bool = False,
    transport_tier: Optional[str] = None,
    include_registration_fee: bool = False,
    class_name: Optional[str] = None,
    created_by: Optional[UUID] = None,
    today: Optional[date] = None,
) -> StudentFeeLedger:
    """Price a new ledger from the configuration and build both schedules."""
    parse_start_year(academic_year)
    category = grade_category(grade)
    months = config.months
    tuition = config.lookup_tuition(grade)
    monthly_tuition = quantize(tuition / months)

    monthly_transport = config.lookup_transport_tariff(transport_tier) if transport_tier else Decimal("0")
    tier = TransportTier(transport_tier).value if transport_tier else None

    uniform_applicable = bool(has_uniform and config.uniform_enabled)
    uniform_price = to_money(config.uniform_price) if uniform_applicable else Decimal("0")
    registration_applicable = bool(include_registration_fee and config.registration_fee_enabled)
    registration_price = config.lookup_registration_fee(category) if registration_applicable else Decimal("0")

    installments = generate_schedule(config.start_month, months, monthly_tuition, academic_year, InstallmentTrack.TUITION)
    transport_total = Decimal("0")
    if tier:
        transport_installments = generate_schedule(
            config.start_month, months, monthly_transport, academic_year, InstallmentTrack.TRANSPORTATION
        )
        transport_total = sum((i.amount for i in transport_installments), Decimal("0"))
        installments += transport_installments

    ledger = StudentFeeLedger(
        tenant_id=tenant_id,
        student_id=student_id,
        academic_year=academic_year,
        grade=grade,
        grade_category=category.value,
        class_name=class_name,
        payment_type=PaymentType.MONTHLY.value,
        tuition_annual_amount=tuition,
        tuition_monthly_amount=monthly_tuition,
        registration_fee_applicable=registration_applicable,
        registration_fee_price=registration_price,
        registration_fee_is_paid=False,
        uniform_applicable=uniform_applicable,
        uniform_price=uniform_price,
        uniform_is_paid=False,
        transport_using=bool(tier),
        transport_tier=tier,
        transport_monthly_price=monthly_transport,
        transport_total_amount=transport_total,
        annual_paid=False,
        annual_discount_amount=Decimal("0"),
        discount_enabled=False,
        discount_percentage=Decimal("0"),
        total_tuition=tuition,
        total_registration_fee=registration_price,
        total_uniform=uniform_price,
        total_transportation=transport_total,
        paid_tuition=Decimal("0"),
        paid_registration_fee=Decimal("0"),
        paid_uniform=Decimal("0"),
        paid_transportation=Decimal("0"),
        created_by=created_by,
        installments=installments,
    )
    return recompute(ledger, config.grace_period_days, today)


def record_lump_sum_payment(
    ledger: StudentFeeLedger,
    component,
    method=PaymentMethod.CASH,
    payment_date: Optional[date] = None,
    receipt_number: Optional[str] = None,
    notes: Optional[str] = None,
    recorded_by: Optional[UUID] = None,
    grace_period_days: int = 5,
    today: Optional[date] = None,
) -> StudentFeeLedger:
    prefix = LumpSumComponent(component).value
    if not getattr(ledger, f"{prefix}_applicable"):
        raise NotApplicable(f"{prefix} is not applicable for this student")
    if getattr(ledger, f"{prefix}_is_paid"):
        raise AlreadyPaid(f"{prefix} payment already recorded")
    method = _method(method)

    price = to_money(getattr(ledger, f"{prefix}_price"))
    setattr(ledger, f"{prefix}_is_paid", True)
    setattr(ledger, f"{prefix}_payment_date", payment_date or today)
    setattr(ledger, f"{prefix}_payment_method", method)
    setattr(ledger, f"{prefix}_receipt_number", receipt_number)
    setattr(ledger, f"{prefix}_notes", notes)
    setattr(ledger, f"{prefix}_recorded_by", recorded_by)
    setattr(ledger, f"paid_{prefix}", price)
    return recompute(ledger, grace_period_days, today)


def record_installment_payment(
    ledger: StudentFeeLedger,
    track,
    month_index: int,
    amount,
    method=PaymentMethod.CASH,
    payment_date: Optional[date] = None,
    receipt_number: Optional[str] = None,
    notes: Optional[str] = None,
    recorded_by: Optional[UUID] = None,
    grace_period_days: int = 5,
    today: Optional[date] = None,
) -> StudentFeeLedger:
    """Add `amount` to one installment; several partial payments accumulate."""
    track = InstallmentTrack(track)
    if track == InstallmentTrack.TRANSPORTATION and not ledger.transport_using:
        raise TrackNotApplicable()
    if track == InstallmentTrack.TUITION and ledger.annual_paid:
        raise AlreadyPaid("Tuition was settled by an annual payment")
    schedule = ledger.schedule(track)
    if month_index is None or month_index < 0 or month_index >= len(schedule):
        raise InstallmentNotFound(f"No {track.value} installment at index {month_index}")
    amount = to_money(amount)
    if amount <= 0:
        raise InvalidAmount("Payment amount must be greater than zero")
    method = _method(method)

    installment = schedule[month_index]
    installment.paid_amount = to_money(installment.paid_amount) + amount
    installment.payment_date = payment_date or today
    installment.payment_method = method
    installment.receipt_number = receipt_number
    installment.notes = notes
    installment.recorded_by = recorded_by

    paid_attr = f"paid_{track.value}"
    setattr(ledger, paid_attr, to_money(getattr(ledger, paid_attr)) + amount)
    return recompute(ledger, grace_period_days, today)


def record_annual_tuition_payment(
    ledger: StudentFeeLedger,
    discount_amount=0,
    method=PaymentMethod.CASH,
    payment_date: Optional[date] = None,
    receipt_number: Optional[str] = None,
    notes: Optional[str] = None,
    recorded_by: Optional[UUID] = None,
    grace_period_days: int = 5,
    today: Optional[date] = None,
) -> StudentFeeLedger:
    """
    Settle the whole tuition component at once. The tuition paid so far is replaced
    (not added to) by the settled amount, and every tuition installment becomes paid.
    The billed total is left as is, so `remaining_tuition` shows the discount granted.
    """
    if ledger.annual_paid:
        raise AlreadyPaid("Annual tuition payment already recorded")
    base = to_money(ledger.total_tuition)
    discount_amount = quantize(discount_amount or 0)
    if discount_amount < 0 or discount_amount > base:
        raise InvalidAmount("Annual discount must be between 0 and the tuition amount")
    method = _method(method)
    paid_on = payment_date or today

    final_amount = base - discount_amount
    ledger.annual_paid = True
    ledger.annual_payment_date = paid_on
    ledger.annual_payment_method = method
    ledger.annual_receipt_number = receipt_number
    ledger.annual_discount_amount = discount_amount
    ledger.annual_notes = notes
    ledger.annual_recorded_by = recorded_by
    ledger.payment_type = PaymentType.ANNUAL.value

    ledger.paid_tuition = final_amount
    for installment in ledger.tuition_schedule:
        installment.paid_amount = to_money(installment.amount)
        installment.status = InstallmentStatus.paid.value
        installment.payment_date = paid_on
        installment.payment_method = method
        installment.receipt_number = receipt_number
        installment.recorded_by = recorded_by
    return recompute(ledger, grace_period_days, today)


def apply_discount(
    ledger: StudentFeeLedger,
    discount_type,
    percentage,
    notes: Optional[str] = None,
    applied_by: Optional[UUID] = None,
    applied_at: Optional[datetime] = None,
    grace_period_days: int = 5,
    today: Optional[date] = None,
) -> StudentFeeLedger:
    """
    Percentage discount on tuition, always computed from the undiscounted annual amount
    (applying again replaces the previous discount). A monthly discount is spread over
    the pending installments only.
    """
    if ledger.annual_paid:
        raise AnnualAlreadyPaid("Cannot apply discount - annual payment already made")
    discount_type = DiscountType(discount_type)
    percentage = to_money(percentage)
    if percentage < 0 or percentage > HUNDRED:
        raise InvalidAmount("Discount percentage must be between 0 and 100")

    annual = to_money(ledger.tuition_annual_amount)
    new_total = annual - _discount_amount(annual, percentage)
    ledger.total_tuition = new_total
    if discount_type == DiscountType.MONTHLY:
        _respread_pending(ledger, new_total)

    ledger.discount_enabled = True
    ledger.discount_type = discount_type.value
    ledger.discount_percentage = percentage
    ledger.discount_applied_by = applied_by
    ledger.discount_applied_date = applied_at or datetime.now(timezone.utc)
    ledger.discount_notes = notes
    return recompute(ledger, grace_period_days, today)


def remove_discount(
    ledger: StudentFeeLedger,
    config: PricingConfiguration,
    grace_period_days: int = 5,
    today: Optional[date] = None,
) -> StudentFeeLedger:
    """Restore tuition from the configuration's current grade price."""
    if ledger.annual_paid:
        raise AnnualAlreadyPaid("Cannot remove discount - annual payment already made")
    if not ledger.discount_enabled:
        raise NoDiscountApplied()
    original = config.lookup_tuition(ledger.grade)

    ledger.tuition_annual_amount = original
    ledger.total_tuition = original
    _respread_pending(ledger, original)
    ledger.discount_enabled = False
    ledger.discount_type = None
    ledger.discount_percentage = Decimal("0")
    ledger.discount_applied_by = None
    ledger.discount_applied_date = None
    ledger.discount_notes = None
    return recompute(ledger, grace_period_days, today)


def _check_lump_sum_removal(ledger: StudentFeeLedger, prefix: str, keep: bool, force: bool) -> None:
    if keep or not getattr(ledger, f"{prefix}_is_paid"):
        return
    if force and to_money(getattr(ledger, f"paid_{prefix}")) == 0:
        return
    raise ComponentAlreadyPaid(f"Cannot remove {prefix} as it has already been paid")


def _set_lump_sum(ledger: StudentFeeLedger, prefix: str, keep: bool, price: Decimal) -> None:
    was_applicable = bool(getattr(ledger, f"{prefix}_applicable"))
    if keep:
        if was_applicable:
            return
        setattr(ledger, f"{prefix}_applicable", True)
        setattr(ledger, f"{prefix}_price", price)
        setattr(ledger, f"{prefix}_is_paid", False)
        setattr(ledger, f"total_{prefix}", price)
        setattr(ledger, f"paid_{prefix}", Decimal("0"))
        return
    setattr(ledger, f"{prefix}_applicable", False)
    setattr(ledger, f"{prefix}_price", Decimal("0"))
    setattr(ledger, f"{prefix}_is_paid", False)
    for field in _PAYMENT_META:
        setattr(ledger, f"{prefix}_{field}", None)
    # paid and total leave together so remaining stays consistent
    setattr(ledger, f"total_{prefix}", Decimal("0"))
    setattr(ledger, f"paid_{prefix}", Decimal("0"))


def reconfigure_components(
    ledger: StudentFeeLedger,
    config: PricingConfiguration,
    has_uniform: bool = False,
    transport_tier: Optional[str] = None,
    has_registration_fee: bool = False,
    force: bool = False,
    grace_period_days: int = 5,
    today: Optional[date] = None,
) -> StudentFeeLedger:
    """
    Toggle uniform / registration fee / transportation. Collected money is protected:
    removing a paid component or re-tiering a track with paid months fails up front.
    """
    # a component already on the ledger stays even if the configuration has since disabled it
    keep_uniform = bool(has_uniform and (ledger.uniform_applicable or config.uniform_enabled))
    keep_registration = bool(
        has_registration_fee and (ledger.registration_fee_applicable or config.registration_fee_enabled)
    )
    try:
        tier = TransportTier(transport_tier).value if transport_tier else None
    except ValueError:
        raise TierDisabled(f"Unknown transportation tier: {transport_tier}")

    _check_lump_sum_removal(ledger, "registration_fee", keep_registration, force)
    _check_lump_sum_removal(ledger, "uniform", keep_uniform, force)

    transport = ledger.transport_schedule if ledger.transport_using else []
    collected = [i for i in transport if to_money(i.paid_amount) > 0]
    if tier is None and collected:
        raise ComponentAlreadyPaid("Cannot remove transportation as payments have already been made")
    tier_changed = bool(tier and ledger.transport_using and tier != ledger.transport_tier)
    if tier_changed and any(i.status == InstallmentStatus.paid.value for i in transport):
        raise TierLockedByPayment()
    new_schedule = bool(tier and (tier_changed or not ledger.transport_using))
    # an unchanged tier keeps its price even if the configuration has since disabled it
    monthly_transport = config.lookup_transport_tariff(tier) if new_schedule else Decimal("0")
    months = config.months
    if tier_changed and any(i.position >= months for i in collected):
        raise TierLockedByPayment("Partial transportation payments fall outside the new schedule")
    registration_price = (
        config.lookup_registration_fee(grade_category(ledger.grade)) if keep_registration else Decimal("0")
    )
    uniform_price = to_money(config.uniform_price) if keep_uniform else Decimal("0")

    _set_lump_sum(ledger, "registration_fee", keep_registration, registration_price)
    _set_lump_sum(ledger, "uniform", keep_uniform, uniform_price)

    if tier is None:
        if ledger.transport_using:
            _replace_transport_schedule(ledger, [])
        ledger.transport_using = False
        ledger.transport_tier = None
        ledger.transport_monthly_price = Decimal("0")
        ledger.transport_total_amount = Decimal("0")
        ledger.total_transportation = Decimal("0")
        ledger.paid_transportation = Decimal("0")
    elif new_schedule:
        schedule = generate_schedule(
            config.start_month, months, monthly_transport, ledger.academic_year, InstallmentTrack.TRANSPORTATION
        )
        carried = Decimal("0")
        for old in collected:
            new = schedule[old.position]
            new.paid_amount = to_money(old.paid_amount)
            for field in _PAYMENT_META:
                setattr(new, field, getattr(old, field))
            carried += new.paid_amount
        _replace_transport_schedule(ledger, schedule)
        total = sum((i.amount for i in schedule), Decimal("0"))
        ledger.transport_using = True
        ledger.transport_tier = tier
        ledger.transport_monthly_price = monthly_transport
        ledger.transport_total_amount = total
        ledger.total_transportation = total
        ledger.paid_transportation = carried

    logger.info(
        f"Reconfigured ledger {ledger.id}: uniform={keep_uniform} "
        f"registration_fee={keep_registration} transport={tier}"
    )
    return recompute(ledger, grace_period_days, today)


def apply_configuration_changes(
    ledger: StudentFeeLedger,
    config: PricingConfiguration,
    unpaid_only: bool = True,
    grace_period_days: int = 5,
    today: Optional[date] = None,
) -> bool:
    """
    Re-price an existing ledger after its configuration changed.
    Returns False (and leaves the ledger alone) when it is annually settled and
    `unpaid_only` is set. Lump sums that were already paid keep their settled price.
    """
    if unpaid_only and ledger.annual_paid:
        return False
    months = config.months
    tuition = config.lookup_tuition(ledger.grade)
    monthly_tuition = quantize(tuition / months)
    monthly_transport = (
        config.lookup_transport_tariff(ledger.transport_tier) if ledger.transport_using else Decimal("0")
    )
    registration_price = config.lookup_registration_fee(grade_category(ledger.grade))

    def _eligible(installment: LedgerInstallment) -> bool:
        return not unpaid_only or installment.status != InstallmentStatus.paid.value

    if not ledger.annual_paid:
        ledger.tuition_annual_amount = tuition
        ledger.tuition_monthly_amount = monthly_tuition
        for installment in ledger.tuition_schedule:
            if _eligible(installment):
                installment.amount = monthly_tuition
        new_total = tuition
        if ledger.discount_enabled:
            new_total = tuition - _discount_amount(tuition, ledger.discount_percentage)
            if ledger.discount_type == DiscountType.MONTHLY.value:
                _respread_pending(ledger, new_total)
        ledger.total_tuition = new_total

    if ledger.uniform_applicable and config.uniform_enabled and not ledger.uniform_is_paid:
        ledger.uniform_price = to_money(config.uniform_price)
        ledger.total_uniform = ledger.uniform_price
    if ledger.registration_fee_applicable and config.registration_fee_enabled and not ledger.registration_fee_is_paid:
        ledger.registration_fee_price = registration_price
        ledger.total_registration_fee = registration_price

    if ledger.transport_using:
        for installment in ledger.transport_schedule:
            if _eligible(installment):
                installment.amount = monthly_transport
        total = sum((to_money(i.amount) for i in ledger.transport_schedule), Decimal("0"))
        ledger.transport_monthly_price = monthly_transport
        ledger.transport_total_amount = total
        ledger.total_transportation = total

    recompute(ledger, grace_period_days, today)
    return True
