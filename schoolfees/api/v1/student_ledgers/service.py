"""
Student fee ledger service: generation, payments, discounts, reconfiguration, bulk jobs.

Every mutation runs load -> operate -> commit on one ledger. The pure operations in
schoolfees.ledger.operations validate before touching anything; this layer rolls the
session back on any failure and retries when the ledger's version moved underneath us.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Callable, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from schoolfees.auth.models import User
from schoolfees.core.config import settings
from schoolfees.core.exceptions import (
    AlreadyExists,
    ConcurrentUpdate,
    ConfigurationMissing,
    LedgerError,
    LedgerNotFound,
    NoClassAssigned,
    StudentNotFound,
)
from schoolfees.core.models import (
    LedgerInstallment,
    PricingConfiguration,
    StudentAcademicRecord,
    StudentFeeLedger,
)
from schoolfees.ledger import operations
from schoolfees.ledger.grades import month_name
from schoolfees.ledger.status import component_statuses, monthly_amount_due, recompute
from schoolfees.api.v1.pricing_configurations.service import load_active_configuration

from .schemas import (
    AmountBreakdown,
    AnnualPaymentRequest,
    AnnualPaymentResponse,
    ApplyConfigurationRequest,
    BulkDeleteRequest,
    BulkItemError,
    BulkLedgerGenerateRequest,
    BulkOperationResponse,
    ComponentStatusResponse,
    DiscountRequest,
    DiscountResponse,
    InstallmentPaymentRequest,
    InstallmentResponse,
    LedgerGenerateRequest,
    LumpSumPaymentRequest,
    LumpSumResponse,
    MonthlyAmountDueResponse,
    ReconfigureComponentsRequest,
    RecomputeStatusesRequest,
    RecomputeStatusesResponse,
    StudentLedgerResponse,
    StudentLedgerSummary,
    TransportationResponse,
)

logger = logging.getLogger(__name__)


def _to_uuid(val):
    if val is None:
        return None
    return val if isinstance(val, UUID) else UUID(str(val))


def _to_decimal(val) -> Decimal:
    if val is None:
        return Decimal("0")
    return val if isinstance(val, Decimal) else Decimal(str(val))


# --- Response builders ---
def _installment_to_response(inst: LedgerInstallment) -> InstallmentResponse:
    return InstallmentResponse(
        track=inst.track,
        month_index=inst.position,
        month=inst.month,
        month_name=inst.month_name,
        due_date=inst.due_date,
        amount=_to_decimal(inst.amount),
        paid_amount=_to_decimal(inst.paid_amount),
        status=inst.status,
        payment_date=inst.payment_date,
        payment_method=inst.payment_method,
        receipt_number=inst.receipt_number,
        notes=inst.notes,
    )


def _lump_sum_to_response(ledger: StudentFeeLedger, prefix: str) -> LumpSumResponse:
    return LumpSumResponse(
        applicable=bool(getattr(ledger, f"{prefix}_applicable")),
        price=_to_decimal(getattr(ledger, f"{prefix}_price")),
        is_paid=bool(getattr(ledger, f"{prefix}_is_paid")),
        payment_date=getattr(ledger, f"{prefix}_payment_date"),
        payment_method=getattr(ledger, f"{prefix}_payment_method"),
        receipt_number=getattr(ledger, f"{prefix}_receipt_number"),
        notes=getattr(ledger, f"{prefix}_notes"),
    )


def _breakdown(ledger: StudentFeeLedger, prefix: str) -> AmountBreakdown:
    return AmountBreakdown(
        tuition=_to_decimal(getattr(ledger, f"{prefix}_tuition")),
        registration_fee=_to_decimal(getattr(ledger, f"{prefix}_registration_fee")),
        uniform=_to_decimal(getattr(ledger, f"{prefix}_uniform")),
        transportation=_to_decimal(getattr(ledger, f"{prefix}_transportation")),
        grand_total=_to_decimal(getattr(ledger, f"{prefix}_grand_total")),
    )


def _ledger_to_response(ledger: StudentFeeLedger) -> StudentLedgerResponse:
    return StudentLedgerResponse(
        id=_to_uuid(ledger.id),
        tenant_id=_to_uuid(ledger.tenant_id),
        student_id=_to_uuid(ledger.student_id),
        academic_year=ledger.academic_year,
        grade=ledger.grade,
        grade_category=ledger.grade_category,
        class_name=ledger.class_name,
        payment_type=ledger.payment_type,
        tuition_annual_amount=_to_decimal(ledger.tuition_annual_amount),
        tuition_monthly_amount=_to_decimal(ledger.tuition_monthly_amount),
        registration_fee=_lump_sum_to_response(ledger, "registration_fee"),
        uniform=_lump_sum_to_response(ledger, "uniform"),
        transportation=TransportationResponse(
            using=bool(ledger.transport_using),
            tier=ledger.transport_tier,
            monthly_price=_to_decimal(ledger.transport_monthly_price),
            total_amount=_to_decimal(ledger.transport_total_amount),
        ),
        annual_payment=AnnualPaymentResponse(
            paid=bool(ledger.annual_paid),
            payment_date=ledger.annual_payment_date,
            payment_method=ledger.annual_payment_method,
            receipt_number=ledger.annual_receipt_number,
            discount_amount=_to_decimal(ledger.annual_discount_amount),
            notes=ledger.annual_notes,
        ),
        discount=DiscountResponse(
            enabled=bool(ledger.discount_enabled),
            discount_type=ledger.discount_type,
            percentage=_to_decimal(ledger.discount_percentage),
            applied_by=_to_uuid(ledger.discount_applied_by),
            applied_date=ledger.discount_applied_date,
            notes=ledger.discount_notes,
        ),
        totals=_breakdown(ledger, "total"),
        paid=_breakdown(ledger, "paid"),
        remaining=_breakdown(ledger, "remaining"),
        component_status=ComponentStatusResponse(**component_statuses(ledger)),
        overall_status=ledger.overall_status,
        tuition_schedule=[_installment_to_response(i) for i in ledger.tuition_schedule],
        transport_schedule=[_installment_to_response(i) for i in ledger.transport_schedule],
        version=ledger.version,
        created_at=ledger.created_at,
        updated_at=ledger.updated_at,
    )


def _bulk_error(item_id, e: LedgerError) -> BulkItemError:
    return BulkItemError(id=_to_uuid(item_id), code=e.code, message=e.message)


# --- Loading ---
async def _load_ledger(db: AsyncSession, tenant_id: UUID, ledger_id: UUID) -> StudentFeeLedger:
    stmt = (
        select(StudentFeeLedger)
        .where(StudentFeeLedger.id == ledger_id, StudentFeeLedger.tenant_id == tenant_id)
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    ledger = result.scalar_one_or_none()
    if not ledger:
        raise LedgerNotFound()
    return ledger


async def _grace_period(db: AsyncSession, tenant_id: UUID, academic_year: str) -> int:
    try:
        cfg = await load_active_configuration(db, tenant_id, academic_year)
    except ConfigurationMissing:
        return settings.default_grace_period_days
    return cfg.grace_period_days


async def _mutate(
    db: AsyncSession,
    tenant_id: UUID,
    ledger_id: UUID,
    operation: Callable[[StudentFeeLedger, PricingConfiguration, int], object],
    needs_config: bool = False,
) -> Tuple[StudentFeeLedger, object]:
    """
    Load the ledger, run `operation(ledger, config, grace_period_days)` and commit.
    A StaleDataError means another writer bumped the version first: reload and re-apply,
    up to settings.ledger_max_retries attempts.
    """
    for attempt in range(1, settings.ledger_max_retries + 1):
        try:
            ledger = await _load_ledger(db, tenant_id, ledger_id)
            cfg = None
            if needs_config:
                cfg = await load_active_configuration(db, tenant_id, ledger.academic_year)
                grace = cfg.grace_period_days
            else:
                grace = await _grace_period(db, tenant_id, ledger.academic_year)
            outcome = operation(ledger, cfg, grace)
            await db.commit()
            return ledger, outcome
        except StaleDataError:
            await db.rollback()
            logger.warning(f"Ledger {ledger_id} modified concurrently (attempt {attempt})")
        except Exception:
            await db.rollback()
            raise
    raise ConcurrentUpdate()


# --- Generation ---
async def _resolve_grade(
    db: AsyncSession,
    tenant_id: UUID,
    student_id: UUID,
    academic_year: str,
) -> Tuple[str, Optional[str]]:
    """(grade, class name) from the student's enrollment for the year."""
    stmt = select(StudentAcademicRecord).where(
        StudentAcademicRecord.student_id == student_id,
        StudentAcademicRecord.academic_year == academic_year,
    )
    result = await db.execute(stmt)
    record = result.scalar_one_or_none()
    if not record or not record.class_id or not record.school_class:
        raise NoClassAssigned()
    school_class = record.school_class
    # Classes without an explicit grade are priced by name
    return school_class.grade or school_class.name, school_class.name


async def _generate_one(
    db: AsyncSession,
    tenant_id: UUID,
    student_id: UUID,
    academic_year: str,
    has_uniform: bool,
    transport_tier: Optional[str],
    include_registration_fee: bool,
    created_by: Optional[UUID],
    today: date,
) -> StudentFeeLedger:
    student = await db.get(User, student_id)
    if not student or student.tenant_id != tenant_id or student.user_type != "student":
        raise StudentNotFound()

    existing = await db.execute(
        select(StudentFeeLedger.id).where(
            StudentFeeLedger.student_id == student_id,
            StudentFeeLedger.academic_year == academic_year,
        )
    )
    if existing.scalar_one_or_none() is not None:
        raise AlreadyExists()

    grade, class_name = await _resolve_grade(db, tenant_id, student_id, academic_year)
    cfg = await load_active_configuration(db, tenant_id, academic_year)

    ledger = operations.generate_ledger(
        tenant_id,
        student_id,
        academic_year,
        grade,
        cfg,
        has_uniform=has_uniform,
        transport_tier=transport_tier,
        include_registration_fee=include_registration_fee,
        class_name=class_name,
        created_by=created_by,
        today=today,
    )
    db.add(ledger)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise AlreadyExists()
    logger.info(f"Generated fee ledger {ledger.id} for student {student_id}, year {academic_year}")
    return ledger


async def generate_ledger(
    db: AsyncSession,
    tenant_id: UUID,
    payload: LedgerGenerateRequest,
    created_by: Optional[UUID] = None,
    today: Optional[date] = None,
) -> StudentLedgerResponse:
    try:
        ledger = await _generate_one(
            db,
            tenant_id,
            payload.student_id,
            payload.academic_year,
            payload.has_uniform,
            payload.transport_tier.value if payload.transport_tier else None,
            payload.include_registration_fee,
            created_by,
            today or date.today(),
        )
    except LedgerError:
        await db.rollback()
        raise
    return _ledger_to_response(ledger)


async def bulk_generate_ledgers(
    db: AsyncSession,
    tenant_id: UUID,
    payload: BulkLedgerGenerateRequest,
    created_by: Optional[UUID] = None,
    today: Optional[date] = None,
) -> BulkOperationResponse:
    """Students that already have a ledger for the year are skipped, not errors."""
    student_ids = payload.student_ids
    if student_ids is None:
        stmt = (
            select(StudentAcademicRecord.student_id)
            .join(User, User.id == StudentAcademicRecord.student_id)
            .where(
                User.tenant_id == tenant_id,
                StudentAcademicRecord.academic_year == payload.academic_year,
                StudentAcademicRecord.status == "ACTIVE",
            )
        )
        result = await db.execute(stmt)
        student_ids = list(result.scalars().all())

    summary = BulkOperationResponse()
    for student_id in student_ids:
        try:
            await _generate_one(
                db,
                tenant_id,
                student_id,
                payload.academic_year,
                payload.has_uniform,
                payload.transport_tier.value if payload.transport_tier else None,
                payload.include_registration_fee,
                created_by,
                today or date.today(),
            )
            summary.succeeded += 1
        except AlreadyExists:
            await db.rollback()
            summary.skipped += 1
        except LedgerError as e:
            await db.rollback()
            logger.warning(f"Ledger generation failed for student {student_id}: {e.code} {e.message}")
            summary.errors.append(_bulk_error(student_id, e))
    logger.info(
        f"Bulk ledger generation for {payload.academic_year}: {summary.succeeded} created, "
        f"{summary.skipped} skipped, {len(summary.errors)} failed"
    )
    return summary


# --- Payments ---
async def record_lump_sum_payment(
    db: AsyncSession,
    tenant_id: UUID,
    ledger_id: UUID,
    payload: LumpSumPaymentRequest,
    recorded_by: Optional[UUID] = None,
    today: Optional[date] = None,
) -> StudentLedgerResponse:
    today = today or date.today()

    def _op(ledger, cfg, grace):
        return operations.record_lump_sum_payment(
            ledger,
            payload.component,
            method=payload.method,
            payment_date=payload.payment_date,
            receipt_number=payload.receipt_number,
            notes=payload.notes,
            recorded_by=recorded_by,
            grace_period_days=grace,
            today=today,
        )

    ledger, _ = await _mutate(db, tenant_id, ledger_id, _op)
    logger.info(f"Recorded {payload.component.value} payment on ledger {ledger_id}")
    return _ledger_to_response(ledger)


async def record_installment_payment(
    db: AsyncSession,
    tenant_id: UUID,
    ledger_id: UUID,
    payload: InstallmentPaymentRequest,
    recorded_by: Optional[UUID] = None,
    today: Optional[date] = None,
) -> StudentLedgerResponse:
    today = today or date.today()

    def _op(ledger, cfg, grace):
        return operations.record_installment_payment(
            ledger,
            payload.track,
            payload.month_index,
            payload.amount,
            method=payload.method,
            payment_date=payload.payment_date,
            receipt_number=payload.receipt_number,
            notes=payload.notes,
            recorded_by=recorded_by,
            grace_period_days=grace,
            today=today,
        )

    ledger, _ = await _mutate(db, tenant_id, ledger_id, _op)
    logger.info(
        f"Recorded {payload.amount} on {payload.track.value} installment {payload.month_index} "
        f"of ledger {ledger_id}"
    )
    return _ledger_to_response(ledger)


async def record_annual_tuition_payment(
    db: AsyncSession,
    tenant_id: UUID,
    ledger_id: UUID,
    payload: AnnualPaymentRequest,
    recorded_by: Optional[UUID] = None,
    today: Optional[date] = None,
) -> StudentLedgerResponse:
    today = today or date.today()

    def _op(ledger, cfg, grace):
        return operations.record_annual_tuition_payment(
            ledger,
            discount_amount=payload.discount_amount,
            method=payload.method,
            payment_date=payload.payment_date,
            receipt_number=payload.receipt_number,
            notes=payload.notes,
            recorded_by=recorded_by,
            grace_period_days=grace,
            today=today,
        )

    ledger, _ = await _mutate(db, tenant_id, ledger_id, _op)
    logger.info(f"Recorded annual tuition payment on ledger {ledger_id}")
    return _ledger_to_response(ledger)


# --- Discounts ---
async def apply_discount(
    db: AsyncSession,
    tenant_id: UUID,
    ledger_id: UUID,
    payload: DiscountRequest,
    applied_by: Optional[UUID] = None,
    today: Optional[date] = None,
) -> StudentLedgerResponse:
    today = today or date.today()

    def _op(ledger, cfg, grace):
        return operations.apply_discount(
            ledger,
            payload.discount_type,
            payload.percentage,
            notes=payload.notes,
            applied_by=applied_by,
            grace_period_days=grace,
            today=today,
        )

    ledger, _ = await _mutate(db, tenant_id, ledger_id, _op)
    logger.info(f"Applied {payload.percentage}% {payload.discount_type.value} discount to ledger {ledger_id}")
    return _ledger_to_response(ledger)


async def remove_discount(
    db: AsyncSession,
    tenant_id: UUID,
    ledger_id: UUID,
    today: Optional[date] = None,
) -> StudentLedgerResponse:
    today = today or date.today()

    def _op(ledger, cfg, grace):
        return operations.remove_discount(ledger, cfg, grace_period_days=grace, today=today)

    ledger, _ = await _mutate(db, tenant_id, ledger_id, _op, needs_config=True)
    logger.info(f"Removed discount from ledger {ledger_id}")
    return _ledger_to_response(ledger)


# --- Reconfiguration ---
async def reconfigure_components(
    db: AsyncSession,
    tenant_id: UUID,
    ledger_id: UUID,
    payload: ReconfigureComponentsRequest,
    today: Optional[date] = None,
) -> StudentLedgerResponse:
    today = today or date.today()

    def _op(ledger, cfg, grace):
        return operations.reconfigure_components(
            ledger,
            cfg,
            has_uniform=payload.has_uniform,
            transport_tier=payload.transport_tier.value if payload.transport_tier else None,
            has_registration_fee=payload.has_registration_fee,
            force=payload.force,
            grace_period_days=grace,
            today=today,
        )

    ledger, _ = await _mutate(db, tenant_id, ledger_id, _op, needs_config=True)
    return _ledger_to_response(ledger)


async def _ledger_ids_for_year(db: AsyncSession, tenant_id: UUID, academic_year: str) -> List[UUID]:
    result = await db.execute(
        select(StudentFeeLedger.id).where(
            StudentFeeLedger.tenant_id == tenant_id,
            StudentFeeLedger.academic_year == academic_year,
        )
    )
    return list(result.scalars().all())


async def apply_configuration_changes(
    db: AsyncSession,
    tenant_id: UUID,
    payload: ApplyConfigurationRequest,
    today: Optional[date] = None,
) -> BulkOperationResponse:
    """Re-price every ledger of the year from the current configuration."""
    today = today or date.today()
    # Fail fast when there is nothing to price from
    await load_active_configuration(db, tenant_id, payload.academic_year)

    def _op(ledger, cfg, grace):
        return operations.apply_configuration_changes(
            ledger, cfg, unpaid_only=payload.unpaid_only, grace_period_days=grace, today=today
        )

    summary = BulkOperationResponse()
    for ledger_id in await _ledger_ids_for_year(db, tenant_id, payload.academic_year):
        try:
            _, updated = await _mutate(db, tenant_id, ledger_id, _op, needs_config=True)
        except LedgerError as e:
            logger.warning(f"Configuration update failed for ledger {ledger_id}: {e.code} {e.message}")
            summary.errors.append(_bulk_error(ledger_id, e))
            continue
        if updated:
            summary.succeeded += 1
        else:
            summary.skipped += 1
    logger.info(
        f"Applied configuration changes for {payload.academic_year}: {summary.succeeded} updated, "
        f"{summary.skipped} skipped, {len(summary.errors)} failed"
    )
    return summary


async def recompute_statuses(
    db: AsyncSession,
    tenant_id: UUID,
    payload: RecomputeStatusesRequest,
) -> RecomputeStatusesResponse:
    """Periodic overdue marking: re-derive every ledger's statuses as of `today`."""
    today = payload.today or date.today()
    changes = 0

    def _op(ledger, cfg, grace):
        before = ledger.overall_status
        recompute(ledger, grace, today)
        return before != ledger.overall_status

    errors: List[BulkItemError] = []
    processed = 0
    for ledger_id in await _ledger_ids_for_year(db, tenant_id, payload.academic_year):
        try:
            _, changed = await _mutate(db, tenant_id, ledger_id, _op)
        except LedgerError as e:
            logger.warning(f"Status recompute failed for ledger {ledger_id}: {e.code} {e.message}")
            errors.append(_bulk_error(ledger_id, e))
            continue
        processed += 1
        if changed:
            changes += 1
    logger.info(
        f"Recomputed {processed} ledgers for {payload.academic_year}; {changes} changed status, "
        f"{len(errors)} failed"
    )
    return RecomputeStatusesResponse(processed=processed, status_changes=changes, errors=errors)


# --- Reads ---
def _refresh_statuses(today: date):
    def _op(ledger, cfg, grace):
        recompute(ledger, grace, today)

    return _op


async def get_ledger(
    db: AsyncSession,
    tenant_id: UUID,
    ledger_id: UUID,
    today: Optional[date] = None,
) -> StudentLedgerResponse:
    """Overdue flags are worked out from `today` on every read and saved with the ledger."""
    ledger, _ = await _mutate(db, tenant_id, ledger_id, _refresh_statuses(today or date.today()))
    return _ledger_to_response(ledger)


async def get_student_ledger(
    db: AsyncSession,
    tenant_id: UUID,
    student_id: UUID,
    academic_year: str,
    today: Optional[date] = None,
) -> StudentLedgerResponse:
    stmt = select(StudentFeeLedger.id).where(
        StudentFeeLedger.tenant_id == tenant_id,
        StudentFeeLedger.student_id == student_id,
        StudentFeeLedger.academic_year == academic_year,
    )
    result = await db.execute(stmt)
    ledger_id = result.scalar_one_or_none()
    if not ledger_id:
        raise LedgerNotFound()
    return await get_ledger(db, tenant_id, ledger_id, today=today)


async def get_monthly_amount_due(
    db: AsyncSession,
    tenant_id: UUID,
    ledger_id: UUID,
    month: int,
) -> MonthlyAmountDueResponse:
    ledger = await _load_ledger(db, tenant_id, ledger_id)
    return MonthlyAmountDueResponse(
        ledger_id=_to_uuid(ledger.id),
        month=month,
        month_name=month_name(month),
        amount=monthly_amount_due(ledger, month),
    )


async def list_ledgers(
    db: AsyncSession,
    tenant_id: UUID,
    academic_year: str,
    grade: Optional[str] = None,
    grade_category: Optional[str] = None,
    overall_status: Optional[str] = None,
    class_name: Optional[str] = None,
) -> List[StudentLedgerSummary]:
    stmt = (
        select(StudentFeeLedger, User.full_name.label("student_name"))
        .outerjoin(User, User.id == StudentFeeLedger.student_id)
        .where(
            StudentFeeLedger.tenant_id == tenant_id,
            StudentFeeLedger.academic_year == academic_year,
        )
    )
    if grade is not None:
        stmt = stmt.where(StudentFeeLedger.grade == grade)
    if grade_category is not None:
        stmt = stmt.where(StudentFeeLedger.grade_category == grade_category)
    if overall_status is not None:
        stmt = stmt.where(StudentFeeLedger.overall_status == overall_status)
    if class_name is not None:
        stmt = stmt.where(StudentFeeLedger.class_name == class_name)
    stmt = stmt.order_by(StudentFeeLedger.grade, User.full_name)

    result = await db.execute(stmt)
    return [
        StudentLedgerSummary(
            id=_to_uuid(ledger.id),
            student_id=_to_uuid(ledger.student_id),
            student_name=student_name,
            academic_year=ledger.academic_year,
            grade=ledger.grade,
            grade_category=ledger.grade_category,
            class_name=ledger.class_name,
            payment_type=ledger.payment_type,
            total_grand_total=_to_decimal(ledger.total_grand_total),
            paid_grand_total=_to_decimal(ledger.paid_grand_total),
            remaining_grand_total=_to_decimal(ledger.remaining_grand_total),
            overall_status=ledger.overall_status,
        )
        for ledger, student_name in result.all()
    ]


# --- Deletion ---
async def delete_ledger(db: AsyncSession, tenant_id: UUID, ledger_id: UUID) -> None:
    ledger = await _load_ledger(db, tenant_id, ledger_id)
    await db.delete(ledger)
    await db.commit()
    logger.info(f"Deleted fee ledger {ledger_id}")


async def bulk_delete_ledgers(
    db: AsyncSession,
    tenant_id: UUID,
    payload: BulkDeleteRequest,
) -> BulkOperationResponse:
    summary = BulkOperationResponse()
    for ledger_id in payload.ledger_ids:
        try:
            await delete_ledger(db, tenant_id, ledger_id)
            summary.succeeded += 1
        except LedgerError as e:
            await db.rollback()
            summary.errors.append(_bulk_error(ledger_id, e))
    return summary
