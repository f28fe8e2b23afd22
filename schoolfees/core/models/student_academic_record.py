import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from schoolfees.db.session import Base


class StudentAcademicRecord(Base):
    """
    Student enrollment per academic year. One record per (student, academic_year).
    The class (and therefore the grade) a ledger is priced from comes from here.
    """

    __tablename__ = "student_academic_records"
    __table_args__ = (
        UniqueConstraint("student_id", "academic_year", name="uq_student_academic_record_year"),
        {"schema": "school"},
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(UUID(as_uuid=True), ForeignKey("auth.users.id", ondelete="CASCADE"), nullable=False)
    academic_year = Column(String(9), nullable=False)  # e.g. "2025-2026"
    class_id = Column(UUID(as_uuid=True), ForeignKey("core.classes.id"), nullable=True)
    status = Column(String(20), nullable=False, default="ACTIVE")  # ACTIVE | PROMOTED | LEFT
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    student = relationship("User", backref="academic_records")
    school_class = relationship("SchoolClass", foreign_keys=[class_id], lazy="joined")
