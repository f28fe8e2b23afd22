"""Ledger report schemas."""

from decimal import Decimal
from typing import Dict, List

from pydantic import BaseModel, Field


class ComponentCollection(BaseModel):
    total: Decimal
    paid: Decimal
    remaining: Decimal


class DashboardResponse(BaseModel):
    academic_year: str
    total_students: int
    status_counts: Dict[str, int] = Field(default_factory=dict)
    components: Dict[str, ComponentCollection] = Field(default_factory=dict)
    grand_total: ComponentCollection
    collection_rate: Decimal = Field(..., description="Paid / total, in percent")


class MonthlyStatItem(BaseModel):
    month: int
    month_name: str
    expected_tuition: Decimal
    collected_tuition: Decimal
    expected_transportation: Decimal
    collected_transportation: Decimal
    expected_total: Decimal
    collected_total: Decimal
    overdue_count: int


class MonthlyStatsResponse(BaseModel):
    academic_year: str
    months: List[MonthlyStatItem]
