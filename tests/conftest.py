import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

import uuid
from decimal import Decimal
from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from schoolfees.auth.dependencies import get_current_user
from schoolfees.auth.models import Role, User
from schoolfees.auth.schemas import CurrentUser
from schoolfees.core.models import PricingConfiguration, SchoolClass, StudentAcademicRecord, Tenant
from schoolfees.db.session import Base, get_db
from schoolfees.ledger.grades import available_grades
from schoolfees.main import app


TEST_DATABASE_URL = "sqlite+aiosqlite://"
ACADEMIC_YEAR = "2025-2026"

GRADE_AMOUNTS = {grade: "1100.00" for grade in available_grades()}
GRADE_AMOUNTS.update({"Maternal": "900.00", "1ère année primaire": "1000.00", "7ème année": "1200.00"})


def _attach_schemas(dbapi_connection, connection_record) -> None:
    """SQLite has no schemas; attach one in-memory database per schema name."""
    cursor = dbapi_connection.cursor()
    for schema in ("core", "auth", "school"):
        cursor.execute(f"ATTACH DATABASE ':memory:' AS {schema}")
    cursor.close()


def build_config(**overrides) -> PricingConfiguration:
    """Transient configuration with every column set (column defaults only apply on flush)."""
    values = dict(
        tenant_id=uuid.uuid4(),
        academic_year=ACADEMIC_YEAR,
        grade_amounts=dict(GRADE_AMOUNTS),
        uniform_enabled=True,
        uniform_price=Decimal("150.00"),
        uniform_description="Full uniform kit",
        transportation_enabled=True,
        transport_close_enabled=True,
        transport_close_monthly_price=Decimal("40.00"),
        transport_far_enabled=True,
        transport_far_monthly_price=Decimal("60.00"),
        registration_fee_enabled=True,
        registration_fee_early_price=Decimal("100.00"),
        registration_fee_late_price=Decimal("120.00"),
        start_month=9,
        end_month=5,
        total_months=9,
        grace_period_days=5,
        annual_discount_enabled=False,
        annual_discount_percentage=Decimal("0"),
        is_active=True,
    )
    values.update(overrides)
    return PricingConfiguration(**values)


@pytest.fixture()
def make_config():
    return build_config


@pytest.fixture()
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Fresh in-memory database per test; overrides the FastAPI session dependency."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    event.listen(engine.sync_engine, "connect", _attach_schemas)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:

        async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
            yield session

        app.dependency_overrides[get_db] = override_get_db
        yield session

    app.dependency_overrides.pop(get_db, None)
    await engine.dispose()


@pytest.fixture()
def school_year() -> str:
    return ACADEMIC_YEAR


@pytest.fixture()
async def school(db_session: AsyncSession, school_year: str) -> dict:
    """A tenant with an admin, two enrolled students and an active pricing configuration."""
    tenant = Tenant(organization_code="SCH001", organization_name="Ecole Les Oliviers")
    db_session.add(tenant)
    await db_session.flush()

    admin = User(tenant_id=tenant.id, full_name="Amira Admin", email="admin@oliviers.tn", role="SUPER_ADMIN")
    accountant = User(tenant_id=tenant.id, full_name="Karim Compta", email="karim@oliviers.tn", role="ACCOUNTANT")
    student = User(
        tenant_id=tenant.id, full_name="Yasmine Ben Ali", email="yasmine@oliviers.tn", role="STUDENT", user_type="student"
    )
    other_student = User(
        tenant_id=tenant.id, full_name="Omar Trabelsi", email="omar@oliviers.tn", role="STUDENT", user_type="student"
    )
    unassigned = User(
        tenant_id=tenant.id, full_name="Sami Haddad", email="sami@oliviers.tn", role="STUDENT", user_type="student"
    )
    db_session.add_all([admin, accountant, student, other_student, unassigned])

    seventh = SchoolClass(tenant_id=tenant.id, name="7A", grade="7ème année")
    maternal = SchoolClass(tenant_id=tenant.id, name="Maternal", grade=None)
    db_session.add_all([seventh, maternal])
    await db_session.flush()

    db_session.add_all(
        [
            StudentAcademicRecord(student_id=student.id, academic_year=school_year, class_id=seventh.id),
            StudentAcademicRecord(student_id=other_student.id, academic_year=school_year, class_id=maternal.id),
            StudentAcademicRecord(student_id=student.id, academic_year="2026-2027", class_id=seventh.id),
        ]
    )
    config = build_config(tenant_id=tenant.id, academic_year=school_year)
    db_session.add(config)
    db_session.add(
        Role(
            tenant_id=tenant.id,
            name="ACCOUNTANT",
            permissions={"fees": {"create": False, "read": True, "update": False, "delete": False}},
        )
    )
    await db_session.commit()
    # Detached seed rows keep their loaded values when a failed request rolls the session back
    db_session.expunge_all()

    return {
        "tenant": tenant,
        "admin": admin,
        "accountant": accountant,
        "student": student,
        "other_student": other_student,
        "unassigned": unassigned,
        "config": config,
    }


def _as_current_user(user: User, permissions=None) -> CurrentUser:
    return CurrentUser(id=user.id, tenant_id=user.tenant_id, role=user.role, permissions=permissions or {})


@pytest.fixture()
async def client(school: dict) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client authenticated as the school's SUPER_ADMIN."""
    current_user = _as_current_user(school["admin"])
    app.dependency_overrides[get_current_user] = lambda: current_user
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.pop(get_current_user, None)


@pytest.fixture()
async def accountant_client(school: dict) -> AsyncGenerator[AsyncClient, None]:
    """Client for a read-only accountant role."""
    permissions = {"fees": {"create": False, "read": True, "update": False, "delete": False}}
    current_user = _as_current_user(school["accountant"], permissions)
    app.dependency_overrides[get_current_user] = lambda: current_user
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.pop(get_current_user, None)


@pytest.fixture()
async def anonymous_client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Client going through real JWT verification."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
