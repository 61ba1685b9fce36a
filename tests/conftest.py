"""Pytest configuration and fixtures for the booking API tests."""

import os
import tempfile
import uuid
from datetime import datetime, timedelta, timezone

import pytest

# settings are read at import time; point them at a throwaway SQLite file first
_DB_DIR = tempfile.mkdtemp(prefix="slotbook-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ["ENV"] = "test"
os.environ["STRIPE_SANDBOX"] = "true"

from fastapi.testclient import TestClient  # noqa: E402

from slotbook.main import app  # noqa: E402
from slotbook.api.deps import get_clock, get_payments  # noqa: E402
from slotbook.core.security import create_access_token, hash_password  # noqa: E402
from slotbook.db.session import Base, SessionLocal, engine  # noqa: E402
from slotbook.models.availability_rule import AvailabilityRule  # noqa: E402
from slotbook.models.enrollment import Enrollment  # noqa: E402
from slotbook.models.instructor import Instructor, InstructorAvailability  # noqa: E402
from slotbook.models.service import Service  # noqa: E402
from slotbook.models.setting import Setting  # noqa: E402, F401
from slotbook.models.audit_log import AuditLog  # noqa: E402, F401
from slotbook.models.time_off import TimeOff  # noqa: E402, F401
from slotbook.models.training_module import TrainingModule  # noqa: E402
from slotbook.models.training_session import TrainingSession  # noqa: E402, F401
from slotbook.models.truck import Truck  # noqa: E402
from slotbook.models.user import User  # noqa: E402
from slotbook.models.booking import Booking  # noqa: E402
from slotbook.models.hour_log import HourLog  # noqa: E402, F401
from slotbook.models.waitlist_entry import WaitlistEntry  # noqa: E402, F401
from slotbook.services.payment_service import SandboxPaymentAuthority  # noqa: E402
from slotbook.services.policy_service import BookingPolicy  # noqa: E402
from slotbook.services.timezone_service import BusinessZone, FixedClock  # noqa: E402

SHOP_TZ = "America/Chicago"
CDL_TZ = "America/New_York"

# Tuesday, after the 2026-03-08 DST switch (Chicago is UTC-5)
SHOP_DATE = "2026-03-10"
# Saturday
CDL_DATE = "2026-03-14"
NOW = datetime(2026, 3, 5, 12, 0, tzinfo=timezone.utc)
# creation time for instructors and trucks made through the API tests
T0_API = datetime(2026, 1, 1, tzinfo=timezone.utc)


@pytest.fixture(scope="function")
def db():
    """Fresh schema per test; threads in the race tests open their own sessions on the same file."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def payments():
    return SandboxPaymentAuthority()


@pytest.fixture
def shop_policy():
    return BookingPolicy(
        product_line="shop",
        zone=BusinessZone(SHOP_TZ),
        buffer_minutes=15,
        min_advance_hours=12,
        granularity_minutes=30,
        cancellation_window_hours=4,
    )


@pytest.fixture
def cdl_policy():
    return BookingPolicy(
        product_line="cdl",
        zone=BusinessZone(CDL_TZ),
        buffer_minutes=0,
        min_advance_hours=24,
        granularity_minutes=60,
        operating_days=frozenset({0, 6}),
        day_start_hour=9,
        day_end_hour=17,
    )


def make_user(db, role="client", email=None, name="Test User") -> User:
    user = User(
        id=str(uuid.uuid4()),
        email=email or f"{role}-{uuid.uuid4().hex[:8]}@example.com",
        full_name=name,
        role=role,
        password_hash=hash_password("password123"),
        is_active=True,
    )
    db.add(user)
    db.commit()
    return user


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id, role=user.role)}"}


@pytest.fixture
def shop_hours(db):
    """Shop open Tuesday 09:00-18:00."""
    rule = AvailabilityRule(id=str(uuid.uuid4()), resource_id=None, day_of_week=2,
                            start_time="09:00", end_time="18:00", active=True)
    db.add(rule)
    db.commit()
    return rule


@pytest.fixture
def haircut(db):
    svc = Service(id=str(uuid.uuid4()), name="Haircut", duration_min=30, price_cents=3500, active=True)
    db.add(svc)
    db.commit()
    return svc


def enroll(db, student: User) -> Enrollment:
    e = Enrollment(id=str(uuid.uuid4()), student_id=student.id, program_name="CDL Class A", active=True)
    db.add(e)
    db.commit()
    return e


@pytest.fixture
def cdl_modules(db):
    """road (private, truck), backing (paired, truck) and the fixed 08:00 group pre-trip."""
    mods = {
        "road": TrainingModule(id=str(uuid.uuid4()), name="Road Driving", module_type="road", duration_min=60,
                               price_cents=9000, capacity=1, requires_truck=True, requires_instructor=True,
                               display_order=1, active=True),
        "backing": TrainingModule(id=str(uuid.uuid4()), name="Backing", module_type="backing", duration_min=60,
                                  price_cents=7000, capacity=2, requires_truck=True, requires_instructor=True,
                                  display_order=2, active=True),
        "pretrip": TrainingModule(id=str(uuid.uuid4()), name="Pre-Trip", module_type="pretrip", duration_min=120,
                                  price_cents=5000, capacity=6, requires_truck=False, requires_instructor=True,
                                  fixed_start_time="08:00", display_order=0, active=True),
    }
    db.add_all(mods.values())
    db.commit()
    return mods


def add_instructor(db, name: str, created_at: datetime, can_teach="backing,pretrip,road") -> Instructor:
    inst = Instructor(id=str(uuid.uuid4()), display_name=name, can_teach=can_teach, active=True,
                      created_at=created_at)
    db.add(inst)
    for dow in (0, 6):
        db.add(InstructorAvailability(id=str(uuid.uuid4()), instructor_id=inst.id, day_of_week=dow,
                                      start_time="07:00", end_time="17:00"))
    db.commit()
    return inst


def add_truck(db, name: str, created_at: datetime) -> Truck:
    truck = Truck(id=str(uuid.uuid4()), name=name, truck_type="class_a", active=True, created_at=created_at)
    db.add(truck)
    db.commit()
    return truck


@pytest.fixture
def api(db, clock, payments):
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_payments] = lambda: payments
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def count_bookings(db) -> int:
    db.expire_all()
    return db.query(Booking).count()


def hours(n: float) -> timedelta:
    return timedelta(hours=n)
