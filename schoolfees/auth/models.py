import uuid
from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from schoolfees.db.session import Base


class User(Base):
    """User within a tenant. Students, accountants and admins all live here."""

    __tablename__ = "users"
    __table_args__ = (
        # Email must be unique per tenant
        UniqueConstraint("tenant_id", "email", name="uq_user_tenant_email"),
        {"schema": "auth"},
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("core.tenants.id"), nullable=False)
    full_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False)
    # SUPER_ADMIN, ADMIN, ACCOUNTANT, STUDENT, ...
    role = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False, default="ACTIVE")
    # employee | student | null (for admin users)
    user_type = Column(String(50), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    tenant = relationship("Tenant", back_populates="users")


class Role(Base):
    """Tenant-scoped role with JSON permissions."""

    __tablename__ = "roles"
    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_role_tenant_name"),
        {"schema": "auth"},
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("core.tenants.id"), nullable=False)
    name = Column(String(100), nullable=False)
    # Example shape:
    # {
    #   "fees": {"create": true, "read": true, "update": false, "delete": false}
    # }
    permissions = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
