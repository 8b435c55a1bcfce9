"""
Test configuration and fixtures.

Provides:
- In-memory SQLite database with savepoint isolation (rollback after each test)
- A two-tenant world: source and destination tenant, school, active year,
  class group, plus one student enrolled at the source with academic data
- HTTPX AsyncClient bound to the test session
"""
import os
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import AsyncGenerator, Generator

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite+pysqlite://"
os.environ.setdefault("ENV", "test")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from app.core.deps import TENANT_HEADER, USER_HEADER, get_db
from app.db.base import Base
from app.db.enums import EnrollmentEventType
from app.db.models import (
    AcademicYear,
    AssessmentScore,
    AttendanceRecord,
    ClassGroup,
    Enrollment,
    EnrollmentClassMembership,
    Person,
    School,
    Student,
    StudentSchoolProfile,
    StudentSubjectResult,
    StudentTenantProfile,
    Tenant,
)
from app.main import app
from app.schemas.auth import Actor
from app.services import enrollment_event_service


# =============================================================================
# Database Fixtures (Savepoint pattern)
# =============================================================================

test_engine = create_engine(
    "sqlite+pysqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


# pysqlite needs its own transaction handling for SAVEPOINT to work
@event.listens_for(test_engine, "connect")
def _sqlite_connect(dbapi_connection, connection_record):
    dbapi_connection.isolation_level = None


@event.listens_for(test_engine, "begin")
def _sqlite_begin(conn):
    conn.exec_driver_sql("BEGIN")


@pytest.fixture(scope="session", autouse=True)
def create_schema() -> Generator[None, None, None]:
    Base.metadata.create_all(test_engine)
    yield
    Base.metadata.drop_all(test_engine)


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """
    Creates a database session with savepoint for test isolation.

    App code can call commit() and rollback(); both only touch the
    savepoint, and the outer transaction is rolled back at the end.
    """
    connection = test_engine.connect()
    transaction = connection.begin()
    session = Session(
        bind=connection,
        autoflush=False,
        join_transaction_mode="create_savepoint",
    )

    yield session

    session.close()
    transaction.rollback()
    connection.close()


# =============================================================================
# Records World
# =============================================================================

@dataclass
class RecordsWorld:
    """Two tenants and one student enrolled at the source school."""
    source_tenant: Tenant
    source_school: School
    source_year: AcademicYear
    source_class: ClassGroup
    dest_tenant: Tenant
    dest_school: School
    dest_year: AcademicYear
    dest_class: ClassGroup
    person: Person
    student: Student
    enrollment: Enrollment
    user_id: uuid.UUID

    @property
    def source_actor(self) -> Actor:
        return Actor.from_user(self.user_id)


def _tenant_with_school(db: Session, name: str, slug: str, class_name: str):
    tenant = Tenant(id=uuid.uuid4(), name=name, slug=slug)
    db.add(tenant)
    db.flush()

    school = School(id=uuid.uuid4(), tenant_id=tenant.id, name=f"{name} School")
    db.add(school)
    db.flush()

    year = AcademicYear(
        id=uuid.uuid4(),
        tenant_id=tenant.id,
        school_id=school.id,
        name="2024",
        start_date=date(2024, 2, 1),
        end_date=date(2024, 12, 15),
        status="active",
    )
    db.add(year)
    db.flush()

    class_group = ClassGroup(
        id=uuid.uuid4(),
        tenant_id=tenant.id,
        school_id=school.id,
        academic_year_id=year.id,
        name=class_name,
        grade_level="5",
        shift="morning",
    )
    db.add(class_group)
    db.flush()
    return tenant, school, year, class_group


@pytest.fixture(scope="function")
def world(db: Session) -> RecordsWorld:
    source_tenant, source_school, source_year, source_class = _tenant_with_school(
        db, "North District", "north", "5A"
    )
    dest_tenant, dest_school, dest_year, dest_class = _tenant_with_school(
        db, "South District", "south", "5B"
    )

    person = Person(
        id=uuid.uuid4(),
        full_name="Ana Souza",
        preferred_name="Ana",
        birth_date=date(2015, 4, 12),
        sex="F",
    )
    db.add(person)
    db.flush()

    student = Student(id=uuid.uuid4(), person_id=person.id, global_status="active")
    db.add(student)
    db.flush()

    db.add(StudentTenantProfile(tenant_id=source_tenant.id, student_id=student.id, status="active"))
    db.add(
        StudentSchoolProfile(
            tenant_id=source_tenant.id,
            school_id=source_school.id,
            student_id=student.id,
            school_registration_code="N-001",
            status="active",
            entered_at=date(2024, 2, 1),
        )
    )

    enrollment = Enrollment(
        id=uuid.uuid4(),
        tenant_id=source_tenant.id,
        school_id=source_school.id,
        academic_year_id=source_year.id,
        student_id=student.id,
        status="active",
        enrolled_at=date(2024, 2, 1),
        context={},
    )
    db.add(enrollment)
    db.flush()

    db.add(
        EnrollmentClassMembership(
            tenant_id=source_tenant.id,
            enrollment_id=enrollment.id,
            class_group_id=source_class.id,
            valid_from=date(2024, 2, 1),
        )
    )
    db.add(
        AssessmentScore(
            tenant_id=source_tenant.id,
            enrollment_id=enrollment.id,
            assessment_name="Fractions quiz",
            assessment_type="quiz",
            subject="Mathematics",
            max_score=Decimal("10.00"),
            weight=Decimal("1.00"),
            score=Decimal("8.50"),
            status="graded",
        )
    )
    db.add(
        AttendanceRecord(
            tenant_id=source_tenant.id,
            enrollment_id=enrollment.id,
            session_date=date(2024, 3, 2),
            status="present",
            minutes_present=240,
        )
    )
    db.add(
        StudentSubjectResult(
            tenant_id=source_tenant.id,
            enrollment_id=enrollment.id,
            subject="Mathematics",
            grading_period="Q1",
            final_score=Decimal("8.50"),
            total_absences=1,
            result_status="passed",
            is_locked=False,
        )
    )
    db.flush()

    enrollment_event_service.append_event(
        db,
        tenant_id=source_tenant.id,
        enrollment_id=enrollment.id,
        event_type=EnrollmentEventType.CREATED,
        actor=Actor(),
        effective_at=datetime(2024, 2, 1, 8, 0, tzinfo=timezone.utc),
    )
    db.commit()

    return RecordsWorld(
        source_tenant=source_tenant,
        source_school=source_school,
        source_year=source_year,
        source_class=source_class,
        dest_tenant=dest_tenant,
        dest_school=dest_school,
        dest_year=dest_year,
        dest_class=dest_class,
        person=person,
        student=student,
        enrollment=enrollment,
        user_id=uuid.uuid4(),
    )


def tenant_headers(tenant_id: uuid.UUID, user_id: uuid.UUID | None = None) -> dict[str, str]:
    headers = {TENANT_HEADER: str(tenant_id)}
    if user_id:
        headers[USER_HEADER] = str(user_id)
    return headers


@pytest.fixture
def headers_for():
    """Build tenant (and optional user) headers for a request."""
    return tenant_headers


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture(scope="function")
async def client(db: Session) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient whose requests share the test session."""
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()
