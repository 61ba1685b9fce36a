"""
CDL session packing.

A booking either joins an open session for the same module/date/start (and
inherits its instructor and truck) or creates one, claiming the first capable
free instructor and, when the module needs one, the first free truck. Both
lists are walked in (created_at, id) order, so the same state always yields
the same allocation.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from slotbook.core.errors import BookingConflict, ConflictReason, InvalidTimeInput, PaymentNotAuthorized
from slotbook.models.booking import Booking
from slotbook.models.enrollment import Enrollment
from slotbook.models.instructor import Instructor
from slotbook.models.training_module import TrainingModule
from slotbook.models.training_session import TrainingSession
from slotbook.models.truck import Truck
from slotbook.models.user import User
from slotbook.services import booking_store
from slotbook.services.audit_service import log_audit
from slotbook.services.booking_service import compensate, take_payment
from slotbook.services.interval_service import contains, overlaps
from slotbook.services.payment_service import PaymentAuthority
from slotbook.services.policy_service import (
    BookingPolicy, is_advance_notice_satisfied, is_duplicate, is_operating_day,
)
from slotbook.services.timezone_service import BusinessZone, Clock, SystemClock, as_utc, parse_time

logger = logging.getLogger(__name__)

MODULE_PRIORITY = {"pretrip": 0, "road": 1, "backing": 2}
SESSION_TYPES = {"road": "private", "backing": "paired", "pretrip": "group"}
LIVE_SESSION_STATUSES = ("open", "full", "in_progress", "completed")


@dataclass
class Allocation:
    session: TrainingSession
    instructor_id: str | None
    truck_id: str | None
    joined: bool


def end_time(start_hhmm: str, duration_min: int) -> str:
    t = parse_time(start_hhmm)
    total = t.hour * 60 + t.minute + duration_min
    if total > 24 * 60:
        raise InvalidTimeInput(f"session starting {start_hhmm} would run past midnight")
    eh, em = divmod(total, 60)
    return "24:00" if eh == 24 else f"{eh:02d}:{em:02d}"


def session_bounds(zone: BusinessZone, date_str: str, start_hhmm: str, end_hhmm: str) -> tuple[datetime, datetime]:
    start = zone.to_instant(date_str, start_hhmm)
    if end_hhmm == "24:00":
        return start, zone.day_bounds(date_str)[1]
    return start, zone.to_instant(date_str, end_hhmm)


def day_window(zone: BusinessZone, date_str: str, policy: BookingPolicy) -> tuple[datetime, datetime]:
    """Hours in which non-fixed sessions may run."""
    close = end_time("00:00", policy.day_end_hour * 60)
    return session_bounds(zone, date_str, f"{policy.day_start_hour:02d}:00", close)


def get_module(db: Session, module_id: str, privileged: bool = False) -> TrainingModule:
    m = db.get(TrainingModule, module_id)
    if not m or (not m.active and not privileged):
        raise LookupError("module not found")
    return m


def _busy_resources(db: Session, policy: BookingPolicy, date_str: str, start: datetime, end: datetime,
                    exclude_session_id: str | None = None) -> tuple[set, set]:
    instructors, trucks = set(), set()
    sessions = db.query(TrainingSession).filter(
        TrainingSession.session_date == date_str,
        TrainingSession.status.in_(LIVE_SESSION_STATUSES),
    ).all()
    for s in sessions:
        if s.id == exclude_session_id:
            continue
        s_start, s_end = session_bounds(policy.zone, s.session_date, s.start_time, s.end_time)
        if overlaps(start, end, s_start, s_end, policy.buffer_minutes):
            if s.instructor_id:
                instructors.add(s.instructor_id)
            if s.truck_id:
                trucks.add(s.truck_id)
    return instructors, trucks


def _instructor_scheduled(db: Session, zone: BusinessZone, instructor_id: str, date_str: str,
                          start: datetime, end: datetime) -> bool:
    dow = zone.day_of_week(date_str)
    for window in booking_store.list_instructor_schedule(db, instructor_id, dow):
        w_start, w_end = session_bounds(zone, date_str, window.start_time, window.end_time)
        if w_end > w_start and contains(w_start, w_end, start, end):
            return True
    return False


def pick_instructor(db: Session, policy: BookingPolicy, module: TrainingModule, date_str: str,
                    start: datetime, end: datetime, busy: set) -> Instructor | None:
    candidates = db.query(Instructor).filter(Instructor.active == True).order_by(  # noqa: E712
        Instructor.created_at.asc(), Instructor.id.asc()).all()
    for inst in candidates:
        if module.module_type not in inst.capabilities() or inst.id in busy:
            continue
        if not _instructor_scheduled(db, policy.zone, inst.id, date_str, start, end):
            continue
        if booking_store.list_blackouts(db, start, end, inst.id, include_shop_wide=False):
            continue
        return inst
    return None


def pick_truck(db: Session, start: datetime, end: datetime, busy: set) -> Truck | None:
    for truck in db.query(Truck).filter(Truck.active == True).order_by(  # noqa: E712
            Truck.created_at.asc(), Truck.id.asc()).all():
        if truck.id in busy:
            continue
        if booking_store.list_blackouts(db, start, end, truck.id, include_shop_wide=False):
            continue
        return truck
    return None


def _locked_session(db: Session, **filters) -> TrainingSession | None:
    # populate_existing: a row loaded before the lock was taken may be stale
    stmt = select(TrainingSession).filter_by(**filters).with_for_update().execution_options(populate_existing=True)
    return db.execute(stmt).scalar_one_or_none()


def allocate(db: Session, policy: BookingPolicy, module_id: str | None, date_str: str | None,
             start_time: str | None, requester: User, clock: Clock | None = None,
             privileged: bool = False, session_id: str | None = None) -> Allocation:
    """
    Decide join vs create for one seat and reserve it (occupancy counter bumped,
    session flushed). Caller commits, normally through book_session.
    """
    clock = clock or SystemClock()
    existing = None
    if session_id:
        existing = _locked_session(db, id=session_id)
        if not existing:
            raise LookupError("session not found")
        module_id, date_str, start_time = existing.module_id, existing.session_date, existing.start_time
    module = get_module(db, module_id, privileged)
    if not date_str or not start_time:
        raise InvalidTimeInput("date and time are required")
    start_time = f"{parse_time(start_time):%H:%M}"
    zone = policy.zone
    finish = existing.end_time if existing else end_time(start_time, module.duration_min)
    start, end = session_bounds(zone, date_str, start_time, finish)

    if module.fixed_start_time and start_time != module.fixed_start_time and not privileged:
        raise BookingConflict(ConflictReason.OUTSIDE_AVAILABILITY, f"{module.name} only runs at {module.fixed_start_time}.")
    if not privileged:
        if not is_operating_day(zone.day_of_week(date_str), policy.operating_days):
            raise BookingConflict(ConflictReason.OUTSIDE_AVAILABILITY, "Training is not offered on this day.")
        if not module.fixed_start_time:
            day_open, day_close = day_window(zone, date_str, policy)
            if not contains(day_open, day_close, start, end):
                raise BookingConflict(ConflictReason.OUTSIDE_AVAILABILITY)
        if booking_store.list_blackouts(db, start, end, None, product_line="cdl"):
            raise BookingConflict(ConflictReason.BLACKOUT_CONFLICT)
        if not is_advance_notice_satisfied(clock.now(), start, policy.min_advance_hours):
            raise BookingConflict(ConflictReason.TOO_SOON)

    mine = booking_store.list_bookings(db, start, end, client_id=requester.id)
    if is_duplicate(mine, start, end, requester.id):
        raise BookingConflict(ConflictReason.DUPLICATE_REQUEST)

    if existing is None:
        existing = _locked_session(db, module_id=module.id, session_date=date_str, start_time=start_time)
    if existing is not None and existing.status != "cancelled":
        if existing.status != "open" or existing.current_capacity >= existing.max_capacity:
            raise BookingConflict(ConflictReason.SESSION_FULL)
        _take_seat(existing)
        return Allocation(existing, existing.instructor_id, existing.truck_id, joined=True)

    busy_instructors, busy_trucks = _busy_resources(db, policy, date_str, start, end,
                                                    exclude_session_id=existing.id if existing else None)
    instructor = None
    if module.requires_instructor:
        instructor = pick_instructor(db, policy, module, date_str, start, end, busy_instructors)
        if instructor is None:
            raise BookingConflict(ConflictReason.NO_INSTRUCTOR_AVAILABLE)
    truck = None
    if module.requires_truck:
        truck = pick_truck(db, start, end, busy_trucks)
        if truck is None:
            raise BookingConflict(ConflictReason.NO_VEHICLE_AVAILABLE)

    session = existing
    if session is None:
        # unique (module_id, session_date, start_time) backs up the date lock
        session = TrainingSession(id=str(uuid.uuid4()), module_id=module.id,
                                  session_date=date_str, start_time=start_time)
        db.add(session)
    session.end_time = finish
    session.instructor_id = instructor.id if instructor else None
    session.truck_id = truck.id if truck else None
    session.session_type = SESSION_TYPES.get(module.module_type, "private")
    session.max_capacity = max(1, module.capacity)
    session.current_capacity = 0
    session.is_fixed = bool(module.fixed_start_time) and start_time == module.fixed_start_time
    session.status = "open"
    _take_seat(session)
    db.flush()
    return Allocation(session, session.instructor_id, session.truck_id, joined=False)


def _take_seat(session: TrainingSession) -> None:
    session.current_capacity += 1
    if session.current_capacity >= session.max_capacity:
        session.status = "full"


def release_seat(db: Session, booking: Booking, clock: Clock | None = None) -> None:
    """Give a cancelled/declined booking's seat back. Caller commits while holding the session day lock."""
    session = _locked_session(db, id=booking.session_id)
    if session is None or session.status in ("cancelled", "completed"):
        return
    session.current_capacity = max(0, session.current_capacity - 1)
    if session.current_capacity == 0:
        # frees the instructor and truck for new sessions
        session.status = "cancelled"
    elif session.status == "full":
        session.status = "open"
    log_audit(db, booking.client_id, "training_session.seat_released", "training_session", session.id,
              {"bookingId": booking.id, "occupancy": session.current_capacity})


def release_seats(db: Session, bookings, clock: Clock | None = None) -> None:
    """
    Hand back the seats of cancelled/declined bookings and commit, holding the
    same per-day lock book_session joins under.
    """
    seated = [b for b in bookings if b.session_id]
    if not seated:
        db.commit()
        return
    days = (
        db.query(TrainingSession.session_date)
        .filter(TrainingSession.id.in_({b.session_id for b in seated}))
        .distinct()
        .all()
    )

    def _work():
        for b in seated:
            release_seat(db, b, clock)
            db.flush()

    booking_store.run_locked(db, [booking_store.lock_key("cdl", None, d) for (d,) in days], _work)


def has_active_enrollment(db: Session, student_id: str, now: datetime) -> bool:
    rows = db.query(Enrollment).filter(Enrollment.student_id == student_id, Enrollment.active == True).all()  # noqa: E712
    return any(e.expires_at is None or as_utc(e.expires_at) > now for e in rows)


def book_session(db: Session, policy: BookingPolicy, module_id: str | None, date_str: str | None,
                 start_time: str | None, requester: User, payments: PaymentAuthority,
                 clock: Clock | None = None, privileged: bool = False, session_id: str | None = None,
                 payment_method: str = "card", payment_token: str | None = None,
                 notes: str | None = None) -> tuple[Booking, Allocation]:
    clock = clock or SystemClock()
    if not privileged and not has_active_enrollment(db, requester.id, clock.now()):
        raise PermissionError("You must be enrolled in a CDL program to book sessions")
    if payment_method not in ("card", "cash"):
        raise ValueError("payment_method must be card or cash")
    if payment_method == "cash" and not payment_token and not privileged:
        raise PaymentNotAuthorized("Cash payments require a card on file for no-show protection")

    if session_id:
        s = db.get(TrainingSession, session_id)
        if not s:
            raise LookupError("session not found")
        module_id, date_str = s.module_id, s.session_date
    module = get_module(db, module_id, privileged)
    if not date_str:
        raise InvalidTimeInput("date is required")

    booking = Booking(
        id=str(uuid.uuid4()),
        client_id=requester.id,
        product_line="cdl",
        module_id=module.id,
        payment_method=payment_method,
        amount_cents=module.price_cents,
        customer_name=requester.full_name or "",
        customer_email=requester.email or "",
        customer_phone=requester.phone or "",
        notes=notes,
    )
    take_payment(payments, booking, payment_token)
    result: dict = {}

    def _work():
        alloc = allocate(db, policy, module.id, date_str, start_time, requester, clock, privileged, session_id)
        s = alloc.session
        booking.session_id = s.id
        booking.instructor_id = alloc.instructor_id
        booking.truck_id = alloc.truck_id
        booking.start_at, booking.end_at = session_bounds(policy.zone, s.session_date, s.start_time, s.end_time)
        booking.status = "confirmed"
        booking.status_changed_at = clock.now()
        db.add(booking)
        log_audit(db, requester.id, "booking.confirmed", "booking", booking.id, {
            "productLine": "cdl", "sessionId": s.id, "joined": alloc.joined,
            "occupancy": s.current_capacity, "capacity": s.max_capacity,
        })
        result["allocation"] = alloc

    keys = [booking_store.lock_key("cdl", None, date_str), f"client:{requester.id}"]
    try:
        booking_store.run_locked(db, keys, _work)
    except Exception:
        compensate(payments, booking)
        raise
    db.refresh(booking)
    alloc = result["allocation"]
    db.refresh(alloc.session)
    logger.info("cdl booking %s %s session %s (%d/%d)", booking.id, "joined" if alloc.joined else "created",
                alloc.session.id, alloc.session.current_capacity, alloc.session.max_capacity)
    return booking, alloc


def list_session_options(db: Session, policy: BookingPolicy, date_str: str, requester: User | None = None,
                         module_type: str | None = None, clock: Clock | None = None,
                         privileged: bool = False) -> list[dict]:
    """
    Bookable CDL options for a date: joinable sessions, fixed-time modules and
    hourly new-session starts that have an instructor (and truck) free.
    """
    clock = clock or SystemClock()
    zone = policy.zone
    if not privileged and not is_operating_day(zone.day_of_week(date_str), policy.operating_days):
        return []
    now = clock.now()
    q = db.query(TrainingModule)
    if not privileged:
        q = q.filter(TrainingModule.active == True)  # noqa: E712
    if module_type:
        q = q.filter(TrainingModule.module_type == module_type)
    modules = q.order_by(TrainingModule.display_order.asc(), TrainingModule.id.asc()).all()
    mine = []
    if requester is not None:
        day_start, day_end = zone.day_bounds(date_str)
        mine = booking_store.list_bookings(db, day_start, day_end, client_id=requester.id)

    sessions = {
        (s.module_id, s.start_time): s
        for s in db.query(TrainingSession).filter(TrainingSession.session_date == date_str).all()
    }
    options = []
    for m in modules:
        if m.fixed_start_time:
            starts = [m.fixed_start_time]
        else:
            starts = [f"{h:02d}:00" for h in range(policy.day_start_hour, policy.day_end_hour)]
        for st in starts:
            try:
                finish = end_time(st, m.duration_min)
            except InvalidTimeInput:
                continue
            start, end = session_bounds(zone, date_str, st, finish)
            if not m.fixed_start_time and end > day_window(zone, date_str, policy)[1]:
                continue
            if not privileged and not is_advance_notice_satisfied(now, start, policy.min_advance_hours):
                continue
            if not privileged and booking_store.list_blackouts(db, start, end, None, product_line="cdl"):
                continue
            if is_duplicate(mine, start, end, requester.id if requester else ""):
                continue
            existing = sessions.get((m.id, st))
            if existing is not None and existing.status != "cancelled":
                if existing.status == "open" and existing.current_capacity < existing.max_capacity:
                    options.append(_option(m, st, finish, existing))
                continue
            busy_i, busy_t = _busy_resources(db, policy, date_str, start, end,
                                             exclude_session_id=existing.id if existing else None)
            if m.requires_instructor and pick_instructor(db, policy, m, date_str, start, end, busy_i) is None:
                continue
            if m.requires_truck and pick_truck(db, start, end, busy_t) is None:
                continue
            options.append(_option(m, st, finish, None))
    options.sort(key=lambda o: (o["startTime"], MODULE_PRIORITY.get(o["moduleType"], 9)))
    return options


def _option(module: TrainingModule, start: str, finish: str, session: TrainingSession | None) -> dict:
    return {
        "moduleId": module.id,
        "moduleName": module.name,
        "moduleType": module.module_type,
        "startTime": start,
        "endTime": finish,
        "priceCents": module.price_cents,
        "sessionId": session.id if session else None,
        "isNew": session is None,
        "capacity": session.max_capacity if session else max(1, module.capacity),
        "occupancy": session.current_capacity if session else 0,
        "sessionType": session.session_type if session else SESSION_TYPES.get(module.module_type, "private"),
        "isFixed": bool(module.fixed_start_time),
    }


def create_session(db: Session, policy: BookingPolicy, module_id: str, date_str: str, start_time: str,
                   actor_id: str, instructor_id: str | None = None, truck_id: str | None = None,
                   notes: str | None = None) -> TrainingSession:
    """Staff pre-creates an empty session; named resources must be free, others are picked."""
    module = get_module(db, module_id, privileged=True)
    start_time = f"{parse_time(start_time):%H:%M}"
    finish = end_time(start_time, module.duration_min)
    start, end = session_bounds(policy.zone, date_str, start_time, finish)
    holder: dict = {}

    def _work():
        existing = _locked_session(db, module_id=module.id, session_date=date_str, start_time=start_time)
        if existing is not None and existing.status != "cancelled":
            raise ValueError("a session for this module and time already exists")
        busy_i, busy_t = _busy_resources(db, policy, date_str, start, end,
                                         exclude_session_id=existing.id if existing else None)
        instructor = None
        if instructor_id:
            instructor = db.get(Instructor, instructor_id)
            if not instructor or not instructor.active:
                raise LookupError("instructor not found")
            if instructor.id in busy_i:
                raise BookingConflict(ConflictReason.NO_INSTRUCTOR_AVAILABLE, "Instructor already has a session at this time.")
        elif module.requires_instructor:
            instructor = pick_instructor(db, policy, module, date_str, start, end, busy_i)
            if instructor is None:
                raise BookingConflict(ConflictReason.NO_INSTRUCTOR_AVAILABLE)
        truck = None
        if truck_id:
            truck = db.get(Truck, truck_id)
            if not truck or not truck.active:
                raise LookupError("truck not found")
            if truck.id in busy_t:
                raise BookingConflict(ConflictReason.NO_VEHICLE_AVAILABLE, "Truck already in use at this time.")
        elif module.requires_truck:
            truck = pick_truck(db, start, end, busy_t)
            if truck is None:
                raise BookingConflict(ConflictReason.NO_VEHICLE_AVAILABLE)
        session = existing or TrainingSession(id=str(uuid.uuid4()), module_id=module.id,
                                              session_date=date_str, start_time=start_time)
        if existing is None:
            db.add(session)
        session.end_time = finish
        session.instructor_id = instructor.id if instructor else None
        session.truck_id = truck.id if truck else None
        session.session_type = SESSION_TYPES.get(module.module_type, "private")
        session.max_capacity = max(1, module.capacity)
        session.current_capacity = 0
        session.is_fixed = bool(module.fixed_start_time) and start_time == module.fixed_start_time
        session.status = "open"
        session.notes = notes
        db.flush()
        log_audit(db, actor_id, "training_session.created", "training_session", session.id,
                  {"instructorId": session.instructor_id, "truckId": session.truck_id})
        holder["session"] = session

    booking_store.run_locked(db, [booking_store.lock_key("cdl", None, date_str)], _work)
    session = holder["session"]
    db.refresh(session)
    return session


SESSION_TRANSITIONS = {
    "open": ("in_progress", "cancelled", "completed"),
    "full": ("in_progress", "cancelled", "completed"),
    "in_progress": ("completed",),
    "completed": (),
    "cancelled": (),
}


def set_session_status(db: Session, session_id: str, status: str, actor_id: str) -> TrainingSession:
    """Staff status change. Caller handles the bookings of a cancelled session."""
    session = _locked_session(db, id=session_id)
    if session is None:
        raise LookupError("session not found")
    if status == session.status:
        return session
    if status not in SESSION_TRANSITIONS.get(session.status, ()):
        raise ValueError(f"cannot move session from {session.status} to {status}")
    previous = session.status
    session.status = status
    log_audit(db, actor_id, f"training_session.{status}", "training_session", session.id, {"from": previous})
    db.commit()
    return session
