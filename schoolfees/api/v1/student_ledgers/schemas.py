"""Student fee ledger schemas."""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from schoolfees.core.enums import (
    DiscountType,
    InstallmentTrack,
    LumpSumComponent,
    PaymentMethod,
    TransportTier,
)


# --- Requests ---
class LedgerGenerateRequest(BaseModel):
    student_id: UUID
    academic_year: str = Field(..., description="e.g. 2025-2026")
    has_uniform: bool = False
    transport_tier: Optional[TransportTier] = None
    include_registration_fee: bool = False


class BulkLedgerGenerateRequest(BaseModel):
    """Generate ledgers for many students. student_ids=None means every student enrolled in the year."""

    academic_year: str
    student_ids: Optional[List[UUID]] = None
    has_uniform: bool = False
    transport_tier: Optional[TransportTier] = None
    include_registration_fee: bool = False


class PaymentDetails(BaseModel):
    method: PaymentMethod = PaymentMethod.CASH
    payment_date: Optional[date] = None
    receipt_number: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None


class LumpSumPaymentRequest(PaymentDetails):
    component: LumpSumComponent


class InstallmentPaymentRequest(PaymentDetails):
    track: InstallmentTrack
    month_index: int = Field(..., description="0-based position in the track's schedule")
    amount: Decimal


class AnnualPaymentRequest(PaymentDetails):
    discount_amount: Decimal = Decimal("0")


class DiscountRequest(BaseModel):
    discount_type: DiscountType
    percentage: Decimal
    notes: Optional[str] = None


class ReconfigureComponentsRequest(BaseModel):
    has_uniform: bool = False
    transport_tier: Optional[TransportTier] = None
    has_registration_fee: bool = False
    force: bool = Field(False, description="Allow removing a lump sum flagged paid with nothing collected")


class ApplyConfigurationRequest(BaseModel):
    academic_year: str
    unpaid_only: bool = True


class RecomputeStatusesRequest(BaseModel):
    academic_year: str
    today: Optional[date] = None


class BulkDeleteRequest(BaseModel):
    ledger_ids: List[UUID] = Field(..., min_length=1)


# --- Responses ---
class InstallmentResponse(BaseModel):
    track: str
    month_index: int
    month: int
    month_name: str
    due_date: date
    amount: Decimal
    paid_amount: Decimal
    status: str
    payment_date: Optional[date] = None
    payment_method: Optional[str] = None
    receipt_number: Optional[str] = None
    notes: Optional[str] = None


class LumpSumResponse(BaseModel):
    applicable: bool
    price: Decimal
    is_paid: bool
    payment_date: Optional[date] = None
    payment_method: Optional[str] = None
    receipt_number: Optional[str] = None
    notes: Optional[str] = None


class TransportationResponse(BaseModel):
    using: bool
    tier: Optional[str] = None
    monthly_price: Decimal
    total_amount: Decimal


class AnnualPaymentResponse(BaseModel):
    paid: bool
    payment_date: Optional[date] = None
    payment_method: Optional[str] = None
    receipt_number: Optional[str] = None
    discount_amount: Decimal
    notes: Optional[str] = None


class DiscountResponse(BaseModel):
    enabled: bool
    discount_type: Optional[str] = None
    percentage: Decimal
    applied_by: Optional[UUID] = None
    applied_date: Optional[datetime] = None
    notes: Optional[str] = None


class AmountBreakdown(BaseModel):
    tuition: Decimal
    registration_fee: Decimal
    uniform: Decimal
    transportation: Decimal
    grand_total: Decimal


class ComponentStatusResponse(BaseModel):
    tuition: str
    registration_fee: str
    uniform: str
    transportation: str


class StudentLedgerResponse(BaseModel):
    id: UUID
    tenant_id: UUID
    student_id: UUID
    academic_year: str
    grade: str
    grade_category: str
    class_name: Optional[str] = None
    payment_type: str
    tuition_annual_amount: Decimal
    tuition_monthly_amount: Decimal
    registration_fee: LumpSumResponse
    uniform: LumpSumResponse
    transportation: TransportationResponse
    annual_payment: AnnualPaymentResponse
    discount: DiscountResponse
    totals: AmountBreakdown
    paid: AmountBreakdown
    remaining: AmountBreakdown
    component_status: ComponentStatusResponse
    overall_status: str
    tuition_schedule: List[InstallmentResponse]
    transport_schedule: List[InstallmentResponse]
    version: int
    created_at: datetime
    updated_at: datetime


class StudentLedgerSummary(BaseModel):
    """Row of the ledger list."""

    id: UUID
    student_id: UUID
    student_name: Optional[str] = None
    academic_year: str
    grade: str
    grade_category: str
    class_name: Optional[str] = None
    payment_type: str
    total_grand_total: Decimal
    paid_grand_total: Decimal
    remaining_grand_total: Decimal
    overall_status: str


class BulkItemError(BaseModel):
    id: UUID
    code: str
    message: str


class BulkOperationResponse(BaseModel):
    succeeded: int = 0
    skipped: int = 0
    errors: List[BulkItemError] = Field(default_factory=list)


class RecomputeStatusesResponse(BaseModel):
    processed: int
    status_changes: int
    errors: List[BulkItemError] = Field(default_factory=list)


class MonthlyAmountDueResponse(BaseModel):
    """Tuition plus transportation scheduled for one calendar month."""

    ledger_id: UUID
    month: int
    month_name: str
    amount: Decimal
