import uuid

from sqlalchemy.orm import Session
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, ProgrammingError

from slotbook.db.session import SessionLocal
from slotbook.core.security import hash_password
from slotbook.models.user import User
from slotbook.models.service import Service
from slotbook.models.availability_rule import AvailabilityRule
from slotbook.models.instructor import Instructor, InstructorAvailability
from slotbook.models.truck import Truck
from slotbook.models.training_module import TrainingModule


def ensure_user(db: Session, email: str, password: str, role: str, name: str) -> User:
    u = db.query(User).filter(User.email == email).first()
    if u:
        return u
    u = User(
        id=str(uuid.uuid4()),
        email=email,
        full_name=name,
        role=role,
        password_hash=hash_password(password),
        is_active=True,
    )
    db.add(u)
    db.commit()
    return u


SHOP_HOURS = [  # (day_of_week 0=Sun, start, end)
    (2, "09:00", "18:00"),
    (3, "09:00", "18:00"),
    (4, "09:00", "18:00"),
    (5, "09:00", "19:00"),
    (6, "08:00", "16:00"),
]

SERVICES = [  # name, minutes, cents
    ("Haircut", 30, 3500),
    ("Haircut & Beard", 45, 5000),
    ("Beard Trim", 15, 2000),
    ("Hot Towel Shave", 30, 4000),
]

MODULES = [  # name, type, minutes, capacity, truck, fixed start, order
    ("Pre-Trip Inspection", "pretrip", 120, 6, False, "08:00", 0),
    ("Road Driving", "road", 60, 1, True, None, 1),
    ("Backing Maneuvers", "backing", 60, 2, True, None, 2),
]


def _seed_shop(db: Session) -> None:
    if not db.query(AvailabilityRule).first():
        for dow, start, end in SHOP_HOURS:
            db.add(AvailabilityRule(id=str(uuid.uuid4()), resource_id=None, day_of_week=dow,
                                    start_time=start, end_time=end, active=True))
    for name, minutes, cents in SERVICES:
        if not db.query(Service).filter(Service.name == name).first():
            db.add(Service(id=str(uuid.uuid4()), name=name, duration_min=minutes, price_cents=cents, active=True))
    db.commit()


def _seed_cdl(db: Session, instructor_user: User) -> None:
    for name, mtype, minutes, capacity, truck, fixed, order in MODULES:
        if not db.query(TrainingModule).filter(TrainingModule.module_type == mtype).first():
            db.add(TrainingModule(
                id=str(uuid.uuid4()), name=name, module_type=mtype, duration_min=minutes,
                capacity=capacity, requires_truck=truck, requires_instructor=True,
                fixed_start_time=fixed, display_order=order, active=True,
            ))
    if not db.query(Instructor).first():
        for label, user_id in (("Lead Instructor", instructor_user.id), ("Weekend Instructor", None)):
            inst = Instructor(id=str(uuid.uuid4()), user_id=user_id, display_name=label,
                              can_teach="backing,pretrip,road", active=True)
            db.add(inst)
            for dow in (0, 6):
                db.add(InstructorAvailability(id=str(uuid.uuid4()), instructor_id=inst.id,
                                              day_of_week=dow, start_time="08:00", end_time="17:00"))
    if not db.query(Truck).first():
        for name in ("Truck 1", "Truck 2"):
            db.add(Truck(id=str(uuid.uuid4()), name=name, truck_type="class_a", active=True))
    db.commit()


def run(db=None):
    if db is None:
        db = SessionLocal()
    try:
        # If migrations haven't been applied yet, seeding must not crash the API.
        try:
            db.execute(text("SELECT 1 FROM users LIMIT 1"))
        except (ProgrammingError, OperationalError):
            db.rollback()
            print("[seed] users table not found yet. Skipping seeding (run alembic upgrade head).")
            return

        ensure_user(db, "admin@slotbook.local", "admin12345", "admin", "Admin")
        ensure_user(db, "barber@slotbook.local", "barber12345", "barber", "Barber")
        instructor = ensure_user(db, "instructor@slotbook.local", "instructor12345", "instructor", "Instructor")

        _seed_shop(db)
        _seed_cdl(db, instructor)
        print("[seed] done")
    finally:
        db.close()


if __name__ == "__main__":
    run()
