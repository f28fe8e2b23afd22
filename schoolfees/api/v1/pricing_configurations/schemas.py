"""Pricing configuration schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from schoolfees.core.enums import TransportTier


class PricingConfigurationUpsert(BaseModel):
    academic_year: str = Field(..., min_length=9, max_length=9, description="e.g. 2025-2026")
    grade_amounts: Dict[str, Decimal] = Field(..., description="Annual tuition per grade label")

    uniform_enabled: bool = True
    uniform_price: Decimal = Field(Decimal("0"), ge=0)
    uniform_description: Optional[str] = Field(None, max_length=255)

    transportation_enabled: bool = True
    transport_close_enabled: bool = True
    transport_close_monthly_price: Decimal = Field(Decimal("0"), ge=0)
    transport_far_enabled: bool = True
    transport_far_monthly_price: Decimal = Field(Decimal("0"), ge=0)

    registration_fee_enabled: bool = True
    registration_fee_early_price: Decimal = Field(Decimal("0"), ge=0)
    registration_fee_late_price: Decimal = Field(Decimal("0"), ge=0)

    start_month: int = Field(9, ge=1, le=12)
    end_month: int = Field(5, ge=1, le=12)
    grace_period_days: Optional[int] = Field(None, ge=0, le=30, description="Defaults to DEFAULT_GRACE_PERIOD_DAYS")

    annual_discount_enabled: bool = False
    annual_discount_percentage: Decimal = Field(Decimal("0"), ge=0, le=100)

    @field_validator("grade_amounts")
    @classmethod
    def amounts_not_negative(cls, v: Dict[str, Decimal]) -> Dict[str, Decimal]:
        for grade, amount in v.items():
            if amount < 0:
                raise ValueError(f"Tuition for {grade} cannot be negative")
        return v


class PricingConfigurationResponse(BaseModel):
    id: UUID
    tenant_id: UUID
    academic_year: str
    grade_amounts: Dict[str, Decimal]
    uniform_enabled: bool
    uniform_price: Decimal
    uniform_description: Optional[str] = None
    transportation_enabled: bool
    transport_close_enabled: bool
    transport_close_monthly_price: Decimal
    transport_far_enabled: bool
    transport_far_monthly_price: Decimal
    registration_fee_enabled: bool
    registration_fee_early_price: Decimal
    registration_fee_late_price: Decimal
    start_month: int
    end_month: int
    total_months: int
    grace_period_days: int
    annual_discount_enabled: bool
    annual_discount_percentage: Decimal
    is_active: bool
    created_at: datetime
    updated_at: datetime


class GradeItem(BaseModel):
    grade: str
    category: str


class GradeListResponse(BaseModel):
    grades: List[GradeItem]


class CostQuoteResponse(BaseModel):
    """Full-year quote for a grade with the chosen options."""

    academic_year: str
    grade: str
    has_uniform: bool
    transport_tier: Optional[TransportTier] = None
    total_months: int
    total_cost: Decimal
