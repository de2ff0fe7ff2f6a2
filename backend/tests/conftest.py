import os
from datetime import datetime, timedelta

# Keep medguard.main from creating a database file in the working directory
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.exc import OperationalError  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from medguard.models.base import Base  # noqa: E402
import medguard.models.audit_log  # noqa: F401, E402
import medguard.models.emergency_override  # noqa: F401, E402
from medguard.models.user import (  # noqa: E402
    MedicalDepartment,
    MedicalRole,
    MedicalSpecialty,
    MedicalUser,
)
from medguard.services.audit_service import MedicalAuditService  # noqa: E402
from medguard.services.emergency_override import EmergencyOverrideService  # noqa: E402

T0 = datetime(2026, 3, 1, 8, 0, 0)


class FakeClock:
    """Callable clock the tests can move forward."""
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class BrokenSession:
    """Stand-in session whose commits always fail."""
    def __init__(self):
        self.added = []
        self.rolled_back = False

    def add(self, obj):
        self.added.append(obj)

    def commit(self):
        raise OperationalError("INSERT INTO medical_audit_logs", {}, Exception("disk I/O error"))

    def rollback(self):
        self.rolled_back = True


def make_user(
    user_id: str,
    roles,
    department=MedicalDepartment.GENERAL,
    specialties=(),
) -> MedicalUser:
    return MedicalUser(
        id=user_id,
        staff_id=f"staff-{user_id}",
        roles=frozenset(roles),
        department=department,
        specialties=frozenset(specialties),
    )


@pytest.fixture()
def db_session():
    """Isolated in-memory SQLite database for each test."""
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestSession = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)
    Base.metadata.create_all(bind=test_engine)
    db = TestSession()
    yield db
    db.close()
    test_engine.dispose()


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def audit_service(db_session):
    return MedicalAuditService(db_session)


@pytest.fixture()
def override_service(db_session, audit_service, clock):
    return EmergencyOverrideService(db_session, audit_service, clock=clock)


@pytest.fixture()
def admin():
    return make_user("admin-1", [MedicalRole.ADMIN], MedicalDepartment.GENERAL)


@pytest.fixture()
def doctor():
    """General physician without a surgical specialty."""
    return make_user(
        "doc-1",
        [MedicalRole.DOCTOR],
        MedicalDepartment.GENERAL,
        [MedicalSpecialty.GENERAL_PRACTITIONER],
    )


@pytest.fixture()
def nurse():
    return make_user("nurse-1", [MedicalRole.NURSE], MedicalDepartment.GENERAL)


@pytest.fixture()
def pharmacist():
    return make_user("pharm-1", [MedicalRole.PHARMACIST], MedicalDepartment.PHARMACY)


@pytest.fixture()
def lab_tech():
    return make_user("lab-1", [MedicalRole.LAB_TECHNICIAN], MedicalDepartment.LABORATORY)
