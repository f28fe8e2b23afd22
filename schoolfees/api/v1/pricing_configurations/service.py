"""Pricing configuration service: upsert per (tenant, academic year), lookups, quotes."""

import logging
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from schoolfees.core.config import settings
from schoolfees.core.exceptions import ConfigurationInvalid, ConfigurationMissing
from schoolfees.core.models import PricingConfiguration, compute_total_months
from schoolfees.ledger.grades import available_grades, grade_category
from schoolfees.ledger.schedule import parse_start_year, quantize

from .schemas import (
    CostQuoteResponse,
    GradeItem,
    GradeListResponse,
    PricingConfigurationResponse,
    PricingConfigurationUpsert,
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


def _config_to_response(cfg: PricingConfiguration) -> PricingConfigurationResponse:
    return PricingConfigurationResponse(
        id=_to_uuid(cfg.id),
        tenant_id=_to_uuid(cfg.tenant_id),
        academic_year=cfg.academic_year,
        grade_amounts={k: _to_decimal(v) for k, v in (cfg.grade_amounts or {}).items()},
        uniform_enabled=cfg.uniform_enabled,
        uniform_price=_to_decimal(cfg.uniform_price),
        uniform_description=cfg.uniform_description,
        transportation_enabled=cfg.transportation_enabled,
        transport_close_enabled=cfg.transport_close_enabled,
        transport_close_monthly_price=_to_decimal(cfg.transport_close_monthly_price),
        transport_far_enabled=cfg.transport_far_enabled,
        transport_far_monthly_price=_to_decimal(cfg.transport_far_monthly_price),
        registration_fee_enabled=cfg.registration_fee_enabled,
        registration_fee_early_price=_to_decimal(cfg.registration_fee_early_price),
        registration_fee_late_price=_to_decimal(cfg.registration_fee_late_price),
        start_month=cfg.start_month,
        end_month=cfg.end_month,
        total_months=cfg.total_months,
        grace_period_days=cfg.grace_period_days,
        annual_discount_enabled=cfg.annual_discount_enabled,
        annual_discount_percentage=_to_decimal(cfg.annual_discount_percentage),
        is_active=cfg.is_active,
        created_at=cfg.created_at,
        updated_at=cfg.updated_at,
    )


async def load_active_configuration(
    db: AsyncSession,
    tenant_id: UUID,
    academic_year: str,
) -> PricingConfiguration:
    """ORM row used by the ledger service; raises ConfigurationMissing."""
    stmt = select(PricingConfiguration).where(
        PricingConfiguration.tenant_id == tenant_id,
        PricingConfiguration.academic_year == academic_year,
        PricingConfiguration.is_active.is_(True),
    )
    result = await db.execute(stmt)
    cfg = result.scalar_one_or_none()
    if not cfg:
        raise ConfigurationMissing()
    return cfg


def _validate_payload(payload: PricingConfigurationUpsert) -> None:
    parse_start_year(payload.academic_year)
    missing = [g for g in available_grades() if g not in payload.grade_amounts]
    if missing:
        raise ConfigurationInvalid(f"Missing tuition amount for grades: {', '.join(missing)}")
    unknown = [g for g in payload.grade_amounts if g not in available_grades()]
    if unknown:
        raise ConfigurationInvalid(f"Unknown grades: {', '.join(unknown)}")


async def upsert_pricing_configuration(
    db: AsyncSession,
    tenant_id: UUID,
    payload: PricingConfigurationUpsert,
    changed_by: Optional[UUID] = None,
) -> PricingConfigurationResponse:
    """
    Create or replace the configuration for (tenant, academic_year).
    Existing ledgers are not touched; see student_ledgers.apply_configuration_changes.
    """
    _validate_payload(payload)
    stmt = select(PricingConfiguration).where(
        PricingConfiguration.tenant_id == tenant_id,
        PricingConfiguration.academic_year == payload.academic_year,
    )
    result = await db.execute(stmt)
    cfg = result.scalar_one_or_none()
    created = cfg is None
    if created:
        cfg = PricingConfiguration(tenant_id=tenant_id, academic_year=payload.academic_year, created_by=changed_by)
        db.add(cfg)

    data = payload.model_dump(exclude={"academic_year", "grade_amounts", "grace_period_days"})
    for field, value in data.items():
        setattr(cfg, field, value)
    # JSON column: store amounts as exact strings
    cfg.grade_amounts = {grade: str(quantize(amount)) for grade, amount in payload.grade_amounts.items()}
    cfg.grace_period_days = (
        payload.grace_period_days if payload.grace_period_days is not None else settings.default_grace_period_days
    )
    cfg.total_months = compute_total_months(payload.start_month, payload.end_month)
    cfg.is_active = True
    cfg.updated_by = changed_by

    await db.commit()
    await db.refresh(cfg)
    logger.info(
        f"{'Created' if created else 'Updated'} pricing configuration for tenant {tenant_id}, "
        f"year {payload.academic_year}"
    )
    return _config_to_response(cfg)


async def get_active_configuration(
    db: AsyncSession,
    tenant_id: UUID,
    academic_year: str,
) -> PricingConfigurationResponse:
    cfg = await load_active_configuration(db, tenant_id, academic_year)
    return _config_to_response(cfg)


def list_grades() -> GradeListResponse:
    return GradeListResponse(
        grades=[GradeItem(grade=g, category=grade_category(g).value) for g in available_grades()]
    )


async def quote_student_cost(
    db: AsyncSession,
    tenant_id: UUID,
    academic_year: str,
    grade: str,
    has_uniform: bool = False,
    transport_tier: Optional[str] = None,
) -> CostQuoteResponse:
    cfg = await load_active_configuration(db, tenant_id, academic_year)
    total = cfg.calculate_student_total_cost(grade, has_uniform, transport_tier)
    return CostQuoteResponse(
        academic_year=academic_year,
        grade=grade,
        has_uniform=has_uniform,
        transport_tier=transport_tier,
        total_months=cfg.months,
        total_cost=quantize(total),
    )
