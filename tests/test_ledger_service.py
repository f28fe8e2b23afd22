"""Service tests against an in-memory SQLite database."""

import uuid
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from schoolfees.api.v1.ledger_reports import service as reports
from schoolfees.api.v1.pricing_configurations import service as pricing
from schoolfees.api.v1.pricing_configurations.schemas import PricingConfigurationUpsert
from schoolfees.api.v1.student_ledgers import service
from schoolfees.api.v1.student_ledgers.schemas import (
    AnnualPaymentRequest,
    ApplyConfigurationRequest,
    BulkDeleteRequest,
    BulkLedgerGenerateRequest,
    DiscountRequest,
    InstallmentPaymentRequest,
    LedgerGenerateRequest,
    LumpSumPaymentRequest,
    ReconfigureComponentsRequest,
    RecomputeStatusesRequest,
)
from schoolfees.auth.models import User
from schoolfees.core.config import settings
from schoolfees.core.exceptions import (
    AlreadyExists,
    ComponentAlreadyPaid,
    ConcurrentUpdate,
    ConfigurationInvalid,
    ConfigurationMissing,
    InvalidAmount,
    LedgerNotFound,
    NoClassAssigned,
    StudentNotFound,
)
from schoolfees.core.models import LedgerInstallment, SchoolClass, StudentAcademicRecord, StudentFeeLedger

ACADEMIC_YEAR = "2025-2026"
TODAY = date(2025, 9, 10)


async def _generate(db: AsyncSession, school: dict, student_key: str = "student", **options):
    payload = LedgerGenerateRequest(student_id=school[student_key].id, academic_year=ACADEMIC_YEAR, **options)
    return await service.generate_ledger(db, school["tenant"].id, payload, created_by=school["admin"].id, today=TODAY)


async def _reload(db: AsyncSession, ledger_id) -> StudentFeeLedger:
    db.expunge_all()
    result = await db.execute(select(StudentFeeLedger).where(StudentFeeLedger.id == ledger_id))
    return result.scalar_one()


# --- Generation ---
async def test_generate_ledger_persists_schedule(db_session: AsyncSession, school: dict) -> None:
    response = await _generate(db_session, school, has_uniform=True, transport_tier="close")
    assert response.grade == "7ème année"
    assert response.class_name == "7A"
    assert response.totals.tuition == Decimal("1200.00")
    assert response.totals.grand_total == Decimal("1710.00")
    assert len(response.tuition_schedule) == 9
    assert len(response.transport_schedule) == 9
    assert response.overall_status == "pending"
    assert response.version == 1

    ledger = await _reload(db_session, response.id)
    assert ledger.total_grand_total == Decimal("1710.00")
    assert [i.month for i in ledger.tuition_schedule] == [9, 10, 11, 12, 1, 2, 3, 4, 5]
    count = await db_session.scalar(select(func.count(LedgerInstallment.id)))
    assert count == 18


async def test_class_without_grade_priced_by_name(db_session: AsyncSession, school: dict) -> None:
    response = await _generate(db_session, school, student_key="other_student", include_registration_fee=True)
    assert response.grade == "Maternal"
    assert response.grade_category == "early"
    assert response.totals.tuition == Decimal("900.00")
    assert response.registration_fee.price == Decimal("100.00")


async def test_generate_twice_already_exists(db_session: AsyncSession, school: dict) -> None:
    await _generate(db_session, school)
    with pytest.raises(AlreadyExists):
        await _generate(db_session, school)


async def test_generate_student_not_found(db_session: AsyncSession, school: dict) -> None:
    payload = LedgerGenerateRequest(student_id=uuid.uuid4(), academic_year=ACADEMIC_YEAR)
    with pytest.raises(StudentNotFound):
        await service.generate_ledger(db_session, school["tenant"].id, payload)


async def test_generate_other_tenant_student_not_found(db_session: AsyncSession, school: dict) -> None:
    payload = LedgerGenerateRequest(student_id=school["student"].id, academic_year=ACADEMIC_YEAR)
    with pytest.raises(StudentNotFound):
        await service.generate_ledger(db_session, uuid.uuid4(), payload)


async def test_generate_no_class_assigned(db_session: AsyncSession, school: dict) -> None:
    with pytest.raises(NoClassAssigned):
        await _generate(db_session, school, student_key="unassigned")


async def test_generate_configuration_missing(db_session: AsyncSession, school: dict) -> None:
    payload = LedgerGenerateRequest(student_id=school["student"].id, academic_year="2026-2027")
    with pytest.raises(ConfigurationMissing):
        await service.generate_ledger(db_session, school["tenant"].id, payload)


async def test_bulk_generate(db_session: AsyncSession, school: dict) -> None:
    await _generate(db_session, school)

    tenant_id = school["tenant"].id
    odd_class = SchoolClass(tenant_id=tenant_id, name="Prépa", grade="Terminale")
    newcomer = User(
        tenant_id=tenant_id, full_name="Lina Gharbi", email="lina@oliviers.tn", role="STUDENT", user_type="student"
    )
    db_session.add_all([odd_class, newcomer])
    await db_session.flush()
    newcomer_id = newcomer.id
    db_session.add(StudentAcademicRecord(student_id=newcomer_id, academic_year=ACADEMIC_YEAR, class_id=odd_class.id))
    await db_session.commit()

    summary = await service.bulk_generate_ledgers(
        db_session, tenant_id, BulkLedgerGenerateRequest(academic_year=ACADEMIC_YEAR), today=TODAY
    )
    assert summary.succeeded == 1
    assert summary.skipped == 1
    assert len(summary.errors) == 1
    assert summary.errors[0].id == newcomer_id
    assert summary.errors[0].code == "UnknownGrade"


async def test_bulk_generate_explicit_students(db_session: AsyncSession, school: dict) -> None:
    payload = BulkLedgerGenerateRequest(
        academic_year=ACADEMIC_YEAR,
        student_ids=[school["student"].id, school["unassigned"].id],
    )
    summary = await service.bulk_generate_ledgers(db_session, school["tenant"].id, payload, today=TODAY)
    assert summary.succeeded == 1
    assert [e.code for e in summary.errors] == ["NoClassAssigned"]


# --- Mutations ---
async def test_installment_payment_persisted(db_session: AsyncSession, school: dict) -> None:
    ledger_id = (await _generate(db_session, school)).id
    payload = InstallmentPaymentRequest(track="tuition", month_index=0, amount=Decimal("133.33"), receipt_number="R-7")
    response = await service.record_installment_payment(
        db_session, school["tenant"].id, ledger_id, payload, recorded_by=school["admin"].id, today=TODAY
    )
    assert response.paid.tuition == Decimal("133.33")
    assert response.component_status.tuition == "partial"
    assert response.version == 2

    ledger = await _reload(db_session, ledger_id)
    first = ledger.tuition_schedule[0]
    assert first.status == "paid"
    assert first.receipt_number == "R-7"
    assert first.recorded_by == school["admin"].id
    assert ledger.paid_tuition == Decimal("133.33")
    assert ledger.overall_status == "partial"


async def test_failed_mutation_leaves_ledger_untouched(db_session: AsyncSession, school: dict) -> None:
    ledger_id = (await _generate(db_session, school)).id
    payload = InstallmentPaymentRequest(track="tuition", month_index=0, amount=Decimal("0"))
    with pytest.raises(InvalidAmount):
        await service.record_installment_payment(db_session, school["tenant"].id, ledger_id, payload, today=TODAY)
    ledger = await _reload(db_session, ledger_id)
    assert ledger.version == 1
    assert ledger.paid_tuition == Decimal("0")


async def test_mutation_retries_after_stale_write(db_session: AsyncSession, school: dict, monkeypatch) -> None:
    ledger_id = (await _generate(db_session, school)).id
    real_commit = db_session.commit
    calls = {"n": 0}

    async def flaky_commit():
        calls["n"] += 1
        if calls["n"] == 1:
            raise StaleDataError("ledger version moved")
        await real_commit()

    monkeypatch.setattr(db_session, "commit", flaky_commit)
    payload = InstallmentPaymentRequest(track="tuition", month_index=0, amount=Decimal("133.33"))
    response = await service.record_installment_payment(db_session, school["tenant"].id, ledger_id, payload, today=TODAY)
    assert calls["n"] == 2
    assert response.paid.tuition == Decimal("133.33")
    assert response.tuition_schedule[0].paid_amount == Decimal("133.33")


async def test_mutation_gives_up_after_max_retries(db_session: AsyncSession, school: dict, monkeypatch) -> None:
    ledger_id = (await _generate(db_session, school)).id

    async def always_stale():
        raise StaleDataError("ledger version moved")

    monkeypatch.setattr(db_session, "commit", always_stale)
    payload = InstallmentPaymentRequest(track="tuition", month_index=0, amount=Decimal("10"))
    with pytest.raises(ConcurrentUpdate):
        await service.record_installment_payment(db_session, school["tenant"].id, ledger_id, payload, today=TODAY)


async def test_lump_sum_and_annual_payments(db_session: AsyncSession, school: dict) -> None:
    tenant_id = school["tenant"].id
    ledger_id = (await _generate(db_session, school, has_uniform=True)).id
    await service.record_lump_sum_payment(
        db_session, tenant_id, ledger_id, LumpSumPaymentRequest(component="uniform", method="online"), today=TODAY
    )
    response = await service.record_annual_tuition_payment(
        db_session, tenant_id, ledger_id, AnnualPaymentRequest(discount_amount=Decimal("50")), today=TODAY
    )
    assert response.paid.tuition == Decimal("1150")
    assert response.paid.uniform == Decimal("150.00")
    assert response.annual_payment.paid is True
    assert response.payment_type == "annual"
    assert response.overall_status == "completed"


async def test_discount_round_trip(db_session: AsyncSession, school: dict) -> None:
    tenant_id = school["tenant"].id
    ledger_id = (await _generate(db_session, school)).id
    response = await service.apply_discount(
        db_session, tenant_id, ledger_id, DiscountRequest(discount_type="monthly", percentage=Decimal("10")), today=TODAY
    )
    assert response.totals.tuition == Decimal("1080.00")
    assert response.discount.enabled is True
    assert response.tuition_schedule[0].amount == Decimal("120.00")

    response = await service.remove_discount(db_session, tenant_id, ledger_id, today=TODAY)
    assert response.totals.tuition == Decimal("1200.00")
    assert response.discount.enabled is False
    assert response.tuition_schedule[0].amount == Decimal("133.33")


async def test_reconfigure_components_service(db_session: AsyncSession, school: dict) -> None:
    tenant_id = school["tenant"].id
    ledger_id = (await _generate(db_session, school, has_uniform=True)).id
    await service.record_lump_sum_payment(
        db_session, tenant_id, ledger_id, LumpSumPaymentRequest(component="uniform"), today=TODAY
    )
    with pytest.raises(ComponentAlreadyPaid):
        await service.reconfigure_components(
            db_session, tenant_id, ledger_id, ReconfigureComponentsRequest(has_uniform=False), today=TODAY
        )

    response = await service.reconfigure_components(
        db_session,
        tenant_id,
        ledger_id,
        ReconfigureComponentsRequest(has_uniform=True, transport_tier="far"),
        today=TODAY,
    )
    assert response.transportation.using is True
    assert response.totals.transportation == Decimal("540.00")

    response = await service.reconfigure_components(
        db_session,
        tenant_id,
        ledger_id,
        ReconfigureComponentsRequest(has_uniform=True, transport_tier="close"),
        today=TODAY,
    )
    assert response.totals.transportation == Decimal("360.00")
    count = await db_session.scalar(
        select(func.count(LedgerInstallment.id)).where(LedgerInstallment.track == "transportation")
    )
    assert count == 9


async def test_apply_configuration_changes_service(db_session: AsyncSession, school: dict) -> None:
    tenant_id = school["tenant"].id
    paid_id = (await _generate(db_session, school)).id
    settled_id = (await _generate(db_session, school, student_key="other_student")).id
    await service.record_annual_tuition_payment(db_session, tenant_id, settled_id, AnnualPaymentRequest(), today=TODAY)

    amounts = dict(school["config"].grade_amounts, **{"7ème année": "1350.00"})
    await pricing.upsert_pricing_configuration(
        db_session,
        tenant_id,
        PricingConfigurationUpsert(
            academic_year=ACADEMIC_YEAR,
            grade_amounts=amounts,
            uniform_price=Decimal("150"),
            transport_close_monthly_price=Decimal("40"),
            transport_far_monthly_price=Decimal("60"),
            registration_fee_early_price=Decimal("100"),
            registration_fee_late_price=Decimal("120"),
        ),
    )
    summary = await service.apply_configuration_changes(
        db_session, tenant_id, ApplyConfigurationRequest(academic_year=ACADEMIC_YEAR), today=TODAY
    )
    assert summary.succeeded == 1
    assert summary.skipped == 1
    assert summary.errors == []

    ledger = await _reload(db_session, paid_id)
    assert ledger.total_tuition == Decimal("1350.00")
    assert ledger.tuition_monthly_amount == Decimal("150.00")


async def test_apply_configuration_changes_without_configuration(db_session: AsyncSession, school: dict) -> None:
    with pytest.raises(ConfigurationMissing):
        await service.apply_configuration_changes(
            db_session, school["tenant"].id, ApplyConfigurationRequest(academic_year="2030-2031")
        )


async def test_recompute_statuses_marks_overdue(db_session: AsyncSession, school: dict) -> None:
    tenant_id = school["tenant"].id
    ledger_id = (await _generate(db_session, school)).id
    await _generate(db_session, school, student_key="other_student")

    response = await service.recompute_statuses(
        db_session, tenant_id, RecomputeStatusesRequest(academic_year=ACADEMIC_YEAR, today=date(2025, 10, 1))
    )
    assert response.processed == 2
    assert response.status_changes == 2

    ledger = await _reload(db_session, ledger_id)
    assert ledger.overall_status == "overdue"
    assert ledger.tuition_schedule[0].status == "overdue"

    response = await service.recompute_statuses(
        db_session, tenant_id, RecomputeStatusesRequest(academic_year=ACADEMIC_YEAR, today=date(2025, 10, 1))
    )
    assert response.status_changes == 0


async def test_recompute_statuses_continues_past_failed_ledger(
    db_session: AsyncSession, school: dict, monkeypatch
) -> None:
    tenant_id = school["tenant"].id
    ledger_ids = {(await _generate(db_session, school)).id}
    ledger_ids.add((await _generate(db_session, school, student_key="other_student")).id)

    real_commit = db_session.commit
    calls = {"n": 0}

    async def stale_for_first_ledger():
        calls["n"] += 1
        if calls["n"] <= settings.ledger_max_retries:
            raise StaleDataError("ledger version moved")
        await real_commit()

    monkeypatch.setattr(db_session, "commit", stale_for_first_ledger)
    response = await service.recompute_statuses(
        db_session, tenant_id, RecomputeStatusesRequest(academic_year=ACADEMIC_YEAR, today=date(2025, 10, 1))
    )
    assert response.processed == 1
    assert response.status_changes == 1
    assert len(response.errors) == 1
    assert response.errors[0].code == "ConcurrentUpdate"
    assert response.errors[0].id in ledger_ids


# --- Reads and deletion ---
async def test_read_marks_overdue_after_grace_period(db_session: AsyncSession, school: dict) -> None:
    tenant_id = school["tenant"].id
    ledger_id = (await _generate(db_session, school)).id

    # due 2025-09-15, grace period of 5 days
    response = await service.get_ledger(db_session, tenant_id, ledger_id, today=date(2025, 9, 20))
    assert response.tuition_schedule[0].status == "pending"
    assert response.overall_status == "pending"

    response = await service.get_ledger(db_session, tenant_id, ledger_id, today=date(2025, 9, 21))
    assert response.tuition_schedule[0].status == "overdue"
    assert response.tuition_schedule[1].status == "pending"
    assert response.component_status.tuition == "overdue"
    assert response.overall_status == "overdue"

    ledger = await _reload(db_session, ledger_id)
    assert ledger.overall_status == "overdue"
    assert ledger.tuition_schedule[0].status == "overdue"


async def test_student_ledger_read_refreshes_statuses(db_session: AsyncSession, school: dict) -> None:
    await _generate(db_session, school)
    response = await service.get_student_ledger(
        db_session, school["tenant"].id, school["student"].id, ACADEMIC_YEAR, today=date(2026, 10, 18)
    )
    assert all(i.status == "overdue" for i in response.tuition_schedule)
    assert response.overall_status == "overdue"


async def test_monthly_amount_due(db_session: AsyncSession, school: dict) -> None:
    ledger_id = (await _generate(db_session, school, transport_tier="close")).id
    response = await service.get_monthly_amount_due(db_session, school["tenant"].id, ledger_id, 9)
    assert response.month_name == "Septembre"
    assert response.amount == Decimal("173.33")
    response = await service.get_monthly_amount_due(db_session, school["tenant"].id, ledger_id, 7)
    assert response.amount == Decimal("0")
async def test_get_and_list_ledgers(db_session: AsyncSession, school: dict) -> None:
    tenant_id = school["tenant"].id
    ledger_id = (await _generate(db_session, school)).id
    await _generate(db_session, school, student_key="other_student")

    response = await service.get_ledger(db_session, tenant_id, ledger_id)
    assert response.student_id == school["student"].id

    response = await service.get_student_ledger(db_session, tenant_id, school["student"].id, ACADEMIC_YEAR)
    assert response.id == ledger_id

    rows = await service.list_ledgers(db_session, tenant_id, ACADEMIC_YEAR)
    assert len(rows) == 2
    rows = await service.list_ledgers(db_session, tenant_id, ACADEMIC_YEAR, grade_category="mid-late")
    assert [r.student_name for r in rows] == ["Yasmine Ben Ali"]
    rows = await service.list_ledgers(db_session, tenant_id, ACADEMIC_YEAR, overall_status="completed")
    assert rows == []


async def test_ledger_is_tenant_scoped(db_session: AsyncSession, school: dict) -> None:
    ledger_id = (await _generate(db_session, school)).id
    with pytest.raises(LedgerNotFound):
        await service.get_ledger(db_session, uuid.uuid4(), ledger_id)


async def test_delete_and_bulk_delete(db_session: AsyncSession, school: dict) -> None:
    tenant_id = school["tenant"].id
    first = (await _generate(db_session, school)).id
    second = (await _generate(db_session, school, student_key="other_student")).id

    await service.delete_ledger(db_session, tenant_id, first)
    assert await db_session.scalar(select(func.count(LedgerInstallment.id))) == 9

    missing = uuid.uuid4()
    summary = await service.bulk_delete_ledgers(db_session, tenant_id, BulkDeleteRequest(ledger_ids=[second, missing]))
    assert summary.succeeded == 1
    assert [(e.id, e.code) for e in summary.errors] == [(missing, "LedgerNotFound")]
    assert await db_session.scalar(select(func.count(StudentFeeLedger.id))) == 0
    assert await db_session.scalar(select(func.count(LedgerInstallment.id))) == 0


# --- Pricing configuration ---
async def test_upsert_requires_every_grade(db_session: AsyncSession, school: dict) -> None:
    payload = PricingConfigurationUpsert(academic_year="2026-2027", grade_amounts={"Maternal": Decimal("900")})
    with pytest.raises(ConfigurationInvalid):
        await pricing.upsert_pricing_configuration(db_session, school["tenant"].id, payload)


async def test_upsert_creates_then_updates(db_session: AsyncSession, school: dict) -> None:
    tenant_id = school["tenant"].id
    payload = PricingConfigurationUpsert(
        academic_year="2026-2027", grade_amounts=dict(school["config"].grade_amounts), start_month=9, end_month=6
    )
    created = await pricing.upsert_pricing_configuration(db_session, tenant_id, payload)
    assert created.total_months == 10
    assert created.grace_period_days == 5

    payload.grace_period_days = 10
    payload.end_month = 5
    updated = await pricing.upsert_pricing_configuration(db_session, tenant_id, payload)
    assert updated.id == created.id
    assert updated.total_months == 9
    assert updated.grace_period_days == 10

    active = await pricing.get_active_configuration(db_session, tenant_id, "2026-2027")
    assert active.grade_amounts["7ème année"] == Decimal("1200.00")


async def test_quote(db_session: AsyncSession, school: dict) -> None:
    quote = await pricing.quote_student_cost(
        db_session, school["tenant"].id, ACADEMIC_YEAR, "7ème année", has_uniform=True, transport_tier="close"
    )
    assert quote.total_cost == Decimal("1710.00")


# --- Reports ---
async def test_dashboard_and_monthly_stats(db_session: AsyncSession, school: dict) -> None:
    tenant_id = school["tenant"].id
    ledger_id = (await _generate(db_session, school, transport_tier="close")).id
    await _generate(db_session, school, student_key="other_student")
    await service.record_installment_payment(
        db_session,
        tenant_id,
        ledger_id,
        InstallmentPaymentRequest(track="tuition", month_index=0, amount=Decimal("133.33")),
        today=TODAY,
    )

    dashboard = await reports.get_dashboard(db_session, tenant_id, ACADEMIC_YEAR)
    assert dashboard.total_students == 2
    assert dashboard.status_counts["partial"] == 1
    assert dashboard.status_counts["pending"] == 1
    # 1200 + 360 transport + 900
    assert dashboard.grand_total.total == Decimal("2460.00")
    assert dashboard.grand_total.paid == Decimal("133.33")
    assert dashboard.components["transportation"].total == Decimal("360.00")
    assert dashboard.collection_rate == Decimal("5.42")

    stats = await reports.get_monthly_stats(db_session, tenant_id, ACADEMIC_YEAR)
    assert [m.month for m in stats.months] == [9, 10, 11, 12, 1, 2, 3, 4, 5]
    september = stats.months[0]
    assert september.month_name == "Septembre"
    assert september.expected_tuition == Decimal("233.33")
    assert september.collected_tuition == Decimal("133.33")
    assert september.expected_transportation == Decimal("40.00")
    assert september.expected_total == Decimal("273.33")
