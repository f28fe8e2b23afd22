"""Pricing configuration: per school, per academic year. Read-only for payment events."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import JSON, Boolean, CheckConstraint, Column, DateTime, ForeignKey, Integer, Numeric, String, UniqueConstraint, event
from sqlalchemy.dialects.postgresql import UUID

from schoolfees.core.enums import GradeCategory, TransportTier
from schoolfees.core.exceptions import TierDisabled, UnknownGrade
from schoolfees.db.session import Base


def compute_total_months(start_month: int, end_month: int) -> int:
    """Months covered by start..end inclusive, wrapping the calendar year (Sept->May = 9)."""
    months = end_month - start_month + 1
    if months <= 0:
        months += 12
    return months


def _money(val) -> Decimal:
    if val is None:
        return Decimal("0")
    return val if isinstance(val, Decimal) else Decimal(str(val))


class PricingConfiguration(Base):
    """
    School-wide price table for one academic year.
    Only one row per (tenant, academic_year); total_months is always derived from start/end.
    """

    __tablename__ = "pricing_configurations"
    __table_args__ = (
        UniqueConstraint("tenant_id", "academic_year", name="uq_pricing_configuration_tenant_year"),
        CheckConstraint("start_month BETWEEN 1 AND 12", name="chk_pricing_configuration_start_month"),
        CheckConstraint("end_month BETWEEN 1 AND 12", name="chk_pricing_configuration_end_month"),
        CheckConstraint("grace_period_days BETWEEN 0 AND 30", name="chk_pricing_configuration_grace"),
        {"schema": "school"},
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("core.tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    academic_year = Column(String(9), nullable=False)  # e.g. "2025-2026"

    # {"Maternal": "900.00", "7ème année": "1200.00", ...}; values kept as strings to stay exact
    grade_amounts = Column(JSON, nullable=False, default=dict)

    uniform_enabled = Column(Boolean, nullable=False, default=True)
    uniform_price = Column(Numeric(12, 2), nullable=False, default=0)
    uniform_description = Column(String(255), nullable=True)

    transportation_enabled = Column(Boolean, nullable=False, default=True)
    transport_close_enabled = Column(Boolean, nullable=False, default=True)
    transport_close_monthly_price = Column(Numeric(12, 2), nullable=False, default=0)
    transport_far_enabled = Column(Boolean, nullable=False, default=True)
    transport_far_monthly_price = Column(Numeric(12, 2), nullable=False, default=0)

    registration_fee_enabled = Column(Boolean, nullable=False, default=True)
    registration_fee_early_price = Column(Numeric(12, 2), nullable=False, default=0)  # maternal + primary
    registration_fee_late_price = Column(Numeric(12, 2), nullable=False, default=0)  # middle + high

    start_month = Column(Integer, nullable=False, default=9)
    end_month = Column(Integer, nullable=False, default=5)
    total_months = Column(Integer, nullable=False, default=9)
    grace_period_days = Column(Integer, nullable=False, default=5)

    annual_discount_enabled = Column(Boolean, nullable=False, default=False)
    annual_discount_percentage = Column(Numeric(5, 2), nullable=False, default=0)

    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(UUID(as_uuid=True), ForeignKey("auth.users.id", ondelete="SET NULL"), nullable=True)
    updated_by = Column(UUID(as_uuid=True), ForeignKey("auth.users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    @property
    def months(self) -> int:
        return compute_total_months(self.start_month, self.end_month)

    def lookup_tuition(self, grade: str) -> Decimal:
        amounts = self.grade_amounts or {}
        if grade not in amounts:
            raise UnknownGrade(f"Invalid grade: {grade}")
        return _money(amounts[grade])

    def lookup_registration_fee(self, category: GradeCategory) -> Decimal:
        if not self.registration_fee_enabled:
            return Decimal("0")
        if category == GradeCategory.EARLY:
            return _money(self.registration_fee_early_price)
        if category == GradeCategory.MID_LATE:
            return _money(self.registration_fee_late_price)
        return Decimal("0")

    def lookup_transport_tariff(self, tier) -> Decimal:
        try:
            tier = TransportTier(tier)
        except ValueError:
            raise TierDisabled(f"Unknown transportation tier: {tier}")
        if not self.transportation_enabled:
            raise TierDisabled("Transportation is not enabled for this academic year")
        if tier == TransportTier.CLOSE:
            if not self.transport_close_enabled:
                raise TierDisabled("Transportation tier 'close' is not enabled")
            return _money(self.transport_close_monthly_price)
        if not self.transport_far_enabled:
            raise TierDisabled("Transportation tier 'far' is not enabled")
        return _money(self.transport_far_monthly_price)

    def calculate_student_total_cost(
        self,
        grade: str,
        has_uniform: bool = False,
        transport_tier: Optional[str] = None,
    ) -> Decimal:
        """Quote for a full year: tuition + uniform + monthly transport over the schedule."""
        total = self.lookup_tuition(grade)
        if has_uniform and self.uniform_enabled:
            total += _money(self.uniform_price)
        if transport_tier:
            total += self.lookup_transport_tariff(transport_tier) * self.months
        return total


@event.listens_for(PricingConfiguration, "before_insert")
@event.listens_for(PricingConfiguration, "before_update")
def _derive_total_months(mapper, connection, target: PricingConfiguration) -> None:
    target.total_months = compute_total_months(target.start_month, target.end_month)
