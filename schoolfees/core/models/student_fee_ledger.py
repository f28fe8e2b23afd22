"""Student fee ledger: one document per student per academic year, plus its installment rows."""

import uuid
from datetime import datetime
from typing import List

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from schoolfees.core.enums import InstallmentTrack
from schoolfees.db.session import Base


class StudentFeeLedger(Base):
    """
    Per-student bill for an academic year.

    total_* are the expected amounts, paid_* what was collected, remaining_* is always
    total_* - paid_* (never written anywhere except ledger.status.recompute).
    `version` is the optimistic-concurrency counter; a stale write raises StaleDataError.
    """

    __tablename__ = "student_fee_ledgers"
    __table_args__ = (
        UniqueConstraint("student_id", "academic_year", name="uq_student_fee_ledger_student_year"),
        {"schema": "school"},
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("core.tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(UUID(as_uuid=True), ForeignKey("auth.users.id", ondelete="CASCADE"), nullable=False)
    academic_year = Column(String(9), nullable=False, index=True)
    grade = Column(String(50), nullable=False)
    grade_category = Column(String(20), nullable=False)  # early | mid-late | unknown
    class_name = Column(String(50), nullable=True)
    payment_type = Column(String(20), nullable=False, default="monthly")  # monthly | annual

    # Tuition
    tuition_annual_amount = Column(Numeric(12, 2), nullable=False)
    tuition_monthly_amount = Column(Numeric(12, 2), nullable=False)

    # Registration fee (lump sum)
    registration_fee_applicable = Column(Boolean, nullable=False, default=False)
    registration_fee_price = Column(Numeric(12, 2), nullable=False, default=0)
    registration_fee_is_paid = Column(Boolean, nullable=False, default=False)
    registration_fee_payment_date = Column(Date, nullable=True)
    registration_fee_payment_method = Column(String(20), nullable=True)
    registration_fee_receipt_number = Column(String(100), nullable=True)
    registration_fee_notes = Column(Text, nullable=True)
    registration_fee_recorded_by = Column(UUID(as_uuid=True), ForeignKey("auth.users.id", ondelete="SET NULL"), nullable=True)

    # Uniform (lump sum)
    uniform_applicable = Column(Boolean, nullable=False, default=False)
    uniform_price = Column(Numeric(12, 2), nullable=False, default=0)
    uniform_is_paid = Column(Boolean, nullable=False, default=False)
    uniform_payment_date = Column(Date, nullable=True)
    uniform_payment_method = Column(String(20), nullable=True)
    uniform_receipt_number = Column(String(100), nullable=True)
    uniform_notes = Column(Text, nullable=True)
    uniform_recorded_by = Column(UUID(as_uuid=True), ForeignKey("auth.users.id", ondelete="SET NULL"), nullable=True)

    # Transportation
    transport_using = Column(Boolean, nullable=False, default=False)
    transport_tier = Column(String(10), nullable=True)  # close | far
    transport_monthly_price = Column(Numeric(12, 2), nullable=False, default=0)
    transport_total_amount = Column(Numeric(12, 2), nullable=False, default=0)

    # Annual tuition settlement
    annual_paid = Column(Boolean, nullable=False, default=False)
    annual_payment_date = Column(Date, nullable=True)
    annual_payment_method = Column(String(20), nullable=True)
    annual_receipt_number = Column(String(100), nullable=True)
    annual_discount_amount = Column(Numeric(12, 2), nullable=False, default=0)
    annual_notes = Column(Text, nullable=True)
    annual_recorded_by = Column(UUID(as_uuid=True), ForeignKey("auth.users.id", ondelete="SET NULL"), nullable=True)

    # Tuition discount
    discount_enabled = Column(Boolean, nullable=False, default=False)
    discount_type = Column(String(20), nullable=True)  # monthly | annual
    discount_percentage = Column(Numeric(5, 2), nullable=False, default=0)
    discount_applied_by = Column(UUID(as_uuid=True), ForeignKey("auth.users.id", ondelete="SET NULL"), nullable=True)
    discount_applied_date = Column(DateTime(timezone=True), nullable=True)
    discount_notes = Column(Text, nullable=True)

    # Aggregates
    total_tuition = Column(Numeric(12, 2), nullable=False, default=0)
    total_registration_fee = Column(Numeric(12, 2), nullable=False, default=0)
    total_uniform = Column(Numeric(12, 2), nullable=False, default=0)
    total_transportation = Column(Numeric(12, 2), nullable=False, default=0)
    total_grand_total = Column(Numeric(12, 2), nullable=False, default=0)

    paid_tuition = Column(Numeric(12, 2), nullable=False, default=0)
    paid_registration_fee = Column(Numeric(12, 2), nullable=False, default=0)
    paid_uniform = Column(Numeric(12, 2), nullable=False, default=0)
    paid_transportation = Column(Numeric(12, 2), nullable=False, default=0)
    paid_grand_total = Column(Numeric(12, 2), nullable=False, default=0)

    remaining_tuition = Column(Numeric(12, 2), nullable=False, default=0)
    remaining_registration_fee = Column(Numeric(12, 2), nullable=False, default=0)
    remaining_uniform = Column(Numeric(12, 2), nullable=False, default=0)
    remaining_transportation = Column(Numeric(12, 2), nullable=False, default=0)
    remaining_grand_total = Column(Numeric(12, 2), nullable=False, default=0)

    # Status
    status_tuition = Column(String(20), nullable=False, default="pending")
    status_registration_fee = Column(String(20), nullable=False, default="not_applicable")
    status_uniform = Column(String(20), nullable=False, default="not_applicable")
    status_transportation = Column(String(20), nullable=False, default="not_applicable")
    overall_status = Column(String(20), nullable=False, default="pending", index=True)

    version = Column(Integer, nullable=False)
    created_by = Column(UUID(as_uuid=True), ForeignKey("auth.users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    installments = relationship(
        "LedgerInstallment",
        back_populates="ledger",
        cascade="all, delete-orphan",
        order_by="LedgerInstallment.position",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    def schedule(self, track) -> List["LedgerInstallment"]:
        track = InstallmentTrack(track).value
        return sorted((i for i in self.installments if i.track == track), key=lambda i: i.position)

    @property
    def tuition_schedule(self) -> List["LedgerInstallment"]:
        return self.schedule(InstallmentTrack.TUITION)

    @property
    def transport_schedule(self) -> List["LedgerInstallment"]:
        return self.schedule(InstallmentTrack.TRANSPORTATION)


class LedgerInstallment(Base):
    """One scheduled monthly due amount on the tuition or transportation track."""

    __tablename__ = "ledger_installments"
    __table_args__ = {"schema": "school"}

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    ledger_id = Column(
        UUID(as_uuid=True),
        ForeignKey("school.student_fee_ledgers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    track = Column(String(20), nullable=False)  # tuition | transportation
    position = Column(Integer, nullable=False)  # 0-based index within the track
    month = Column(Integer, nullable=False)
    month_name = Column(String(20), nullable=False)
    due_date = Column(Date, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    paid_amount = Column(Numeric(12, 2), nullable=False, default=0)
    status = Column(String(20), nullable=False, default="pending")  # pending, partial, paid, overdue
    payment_date = Column(Date, nullable=True)
    payment_method = Column(String(20), nullable=True)
    receipt_number = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    recorded_by = Column(UUID(as_uuid=True), ForeignKey("auth.users.id", ondelete="SET NULL"), nullable=True)

    ledger = relationship("StudentFeeLedger", back_populates="installments")
