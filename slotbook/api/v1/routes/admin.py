import uuid
from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func
from sqlalchemy.orm import Session

from slotbook.db.session import get_db
from slotbook.api.deps import get_clock, get_payments, http_error, require_roles
from slotbook.models.availability_rule import AvailabilityRule
from slotbook.models.booking import Booking
from slotbook.models.enrollment import Enrollment
from slotbook.models.instructor import Instructor, InstructorAvailability
from slotbook.models.service import Service
from slotbook.models.time_off import TimeOff
from slotbook.models.training_module import TrainingModule
from slotbook.models.training_session import TrainingSession
from slotbook.models.truck import Truck
from slotbook.models.user import User
from slotbook.core.security import hash_password
from slotbook.schemas.admin import (
    EnrollmentIn, InstructorIn, InstructorPatch, PolicyPatch, ServiceIn, ServicePatch,
    TrainingModuleIn, TruckIn, TruckPatch,
)
from slotbook.schemas.availability import AvailabilityRuleIn, AvailabilityRulePatch, TimeOffIn
from slotbook.schemas.booking import BookingActionRequest, BookingOut, CancelRequest, LogHoursRequest, booking_out
from slotbook.schemas.session import TrainingSessionIn, TrainingSessionPatch, session_out
from slotbook.schemas.waitlist import WaitlistStatusPatch
from slotbook.services import allocator_service, booking_service, settings_service, waitlist_service
from slotbook.services.audit_service import list_audit, log_audit
from slotbook.services.interval_service import validate
from slotbook.services.payment_service import PaymentAuthority
from slotbook.services.policy_service import PRODUCT_LINES, get_policy, parse_days
from slotbook.services.timezone_service import BusinessZone, Clock, as_utc, parse_date, parse_time

router = APIRouter(tags=["admin"])

ROLES = ("client", "student", "barber", "instructor", "admin")
MODULE_TYPES = ("road", "backing", "pretrip")

admin_only = require_roles("admin")
shop_staff = require_roles("admin", "barber")
cdl_staff = require_roles("admin", "instructor")
any_staff = require_roles("admin", "barber", "instructor")


def _hhmm(value: str) -> str:
    return f"{parse_time(value):%H:%M}"


def _check_window(day_of_week: int, start: str, end: str) -> tuple[str, str]:
    if not 0 <= day_of_week <= 6:
        raise ValueError("dayOfWeek must be 0 (Sunday) .. 6 (Saturday)")
    start, end = _hhmm(start), _hhmm(end)
    if end <= start:
        raise ValueError("endTime must be after startTime")
    return start, end


def _staff_for(booking: Booking, user: User):
    allowed = {"shop": ("admin", "barber"), "cdl": ("admin", "instructor")}[booking.product_line]
    if user.role not in allowed:
        raise HTTPException(status_code=403, detail="Forbidden")


# ---- users ----

@router.get("/admin/users")
def list_users(role: str | None = None, q: str | None = None, limit: int = 50, offset: int = 0,
               db: Session = Depends(get_db), me: User = Depends(admin_only)):
    query = db.query(User)
    if role:
        query = query.filter(User.role == role)
    if q:
        ql = f"%{q.lower()}%"
        query = query.filter(func.lower(User.email).like(ql) | func.lower(User.full_name).like(ql))
    total = query.count()
    users = query.order_by(User.created_at.desc()).limit(min(limit, 200)).offset(max(offset, 0)).all()
    return {
        "total": total,
        "items": [{"id": u.id, "email": u.email, "fullName": u.full_name, "role": u.role,
                   "isActive": u.is_active, "createdAt": u.created_at.isoformat()} for u in users],
    }


@router.post("/admin/users")
def create_user(email: str, fullName: str = "", role: str = "client", phone: str = "",
                tempPassword: str | None = None,
                db: Session = Depends(get_db), me: User = Depends(admin_only)):
    email_l = email.strip().lower()
    if not email_l:
        raise HTTPException(status_code=400, detail="email required")
    if db.query(User).filter(User.email == email_l).first():
        raise HTTPException(status_code=409, detail="email already exists")
    if role not in ROLES:
        raise HTTPException(status_code=400, detail="invalid role")
    pw = tempPassword or (uuid.uuid4().hex[:10] + "A1!")
    u = User(id=str(uuid.uuid4()), email=email_l, full_name=fullName or "", phone=phone or None,
             role=role, password_hash=hash_password(pw), is_active=True)
    db.add(u)
    log_audit(db, me.id, "user.created", "user", u.id, {"email": u.email, "role": role})
    db.commit()
    return {"ok": True, "id": u.id, "email": u.email, "tempPassword": pw}


@router.patch("/admin/users/{user_id}")
def update_user(user_id: str, fullName: str | None = None, role: str | None = None, isActive: bool | None = None,
                db: Session = Depends(get_db), me: User = Depends(admin_only)):
    u = db.get(User, user_id)
    if not u:
        raise HTTPException(status_code=404, detail="not found")
    if fullName is not None:
        u.full_name = fullName
    if role is not None:
        if role not in ROLES:
            raise HTTPException(status_code=400, detail="invalid role")
        u.role = role
    if isActive is not None:
        u.is_active = bool(isActive)
    log_audit(db, me.id, "user.updated", "user", u.id, {"role": u.role, "isActive": u.is_active})
    db.commit()
    return {"ok": True}


# ---- weekly availability rules ----

def _rule_out(r: AvailabilityRule) -> dict:
    return {"id": r.id, "dayOfWeek": r.day_of_week, "startTime": r.start_time, "endTime": r.end_time,
            "resourceId": r.resource_id, "active": r.active}


@router.get("/admin/availability")
def list_rules(resourceId: str | None = None, db: Session = Depends(get_db), me: User = Depends(shop_staff)):
    q = db.query(AvailabilityRule)
    if resourceId:
        q = q.filter(AvailabilityRule.resource_id == resourceId)
    rows = q.order_by(AvailabilityRule.day_of_week.asc(), AvailabilityRule.start_time.asc()).all()
    return [_rule_out(r) for r in rows]


@router.post("/admin/availability")
def create_rule(body: AvailabilityRuleIn, db: Session = Depends(get_db), me: User = Depends(admin_only)):
    try:
        start, end = _check_window(body.dayOfWeek, body.startTime, body.endTime)
        resource_id = booking_service.resolve_resource(db, body.resourceId)
    except ValueError as e:
        raise http_error(e)
    r = AvailabilityRule(id=str(uuid.uuid4()), resource_id=resource_id, day_of_week=body.dayOfWeek,
                         start_time=start, end_time=end, active=body.active)
    db.add(r)
    log_audit(db, me.id, "availability_rule.created", "availability_rule", r.id, _rule_out(r))
    db.commit()
    return _rule_out(r)


@router.patch("/admin/availability/{rule_id}")
def update_rule(rule_id: str, body: AvailabilityRulePatch, db: Session = Depends(get_db), me: User = Depends(admin_only)):
    r = db.get(AvailabilityRule, rule_id)
    if not r:
        raise HTTPException(status_code=404, detail="not found")
    try:
        start, end = _check_window(
            r.day_of_week if body.dayOfWeek is None else body.dayOfWeek,
            body.startTime or r.start_time, body.endTime or r.end_time,
        )
    except ValueError as e:
        raise http_error(e)
    if body.dayOfWeek is not None:
        r.day_of_week = body.dayOfWeek
    r.start_time, r.end_time = start, end
    if body.active is not None:
        r.active = body.active
    log_audit(db, me.id, "availability_rule.updated", "availability_rule", r.id, _rule_out(r))
    db.commit()
    return _rule_out(r)


@router.delete("/admin/availability/{rule_id}")
def delete_rule(rule_id: str, db: Session = Depends(get_db), me: User = Depends(admin_only)):
    r = db.get(AvailabilityRule, rule_id)
    if not r:
        raise HTTPException(status_code=404, detail="not found")
    log_audit(db, me.id, "availability_rule.deleted", "availability_rule", r.id, _rule_out(r))
    db.delete(r)
    db.commit()
    return {"ok": True}


# ---- time off ----

def _time_off_out(t: TimeOff) -> dict:
    return {"id": t.id, "resourceId": t.resource_id, "productLine": t.product_line,
            "startAt": as_utc(t.start_at).isoformat(), "endAt": as_utc(t.end_at).isoformat(), "reason": t.reason}


def _time_off_bounds(body: TimeOffIn, zone: BusinessZone) -> tuple[datetime, datetime]:
    if body.startAt and body.endAt:
        try:
            start, end = datetime.fromisoformat(body.startAt), datetime.fromisoformat(body.endAt)
        except ValueError:
            raise ValueError("startAt/endAt must be ISO 8601 timestamps")
        if start.tzinfo is None or end.tzinfo is None:
            raise ValueError("startAt/endAt need a UTC offset")
        return as_utc(start), as_utc(end)
    if body.date:
        if body.startTime and body.endTime:
            return zone.to_instant(body.date, body.startTime), zone.to_instant(body.endDate or body.date, body.endTime)
        # whole day(s)
        last = body.endDate or body.date
        parse_date(last)
        return zone.day_bounds(body.date)[0], zone.day_bounds(last)[1]
    raise ValueError("startAt+endAt or date required")


@router.get("/admin/time-off")
def list_time_off(resourceId: str | None = None, fromDate: str | None = None, productLine: str | None = None,
                  db: Session = Depends(get_db), clock: Clock = Depends(get_clock), me: User = Depends(any_staff)):
    q = db.query(TimeOff)
    if resourceId:
        q = q.filter(TimeOff.resource_id == resourceId)
    if productLine:
        q = q.filter(TimeOff.product_line == productLine)
    if fromDate:
        try:
            q = q.filter(TimeOff.end_at > get_policy(db, "shop").zone.day_bounds(fromDate)[0])
        except ValueError as e:
            raise http_error(e)
    return [_time_off_out(t) for t in q.order_by(TimeOff.start_at.asc()).all()]


@router.post("/admin/time-off")
def create_time_off(body: TimeOffIn, db: Session = Depends(get_db), me: User = Depends(any_staff)):
    if body.productLine not in PRODUCT_LINES:
        raise HTTPException(status_code=400, detail="invalid productLine")
    try:
        start, end = _time_off_bounds(body, get_policy(db, body.productLine).zone)
        validate(start, end)
    except ValueError as e:
        raise http_error(e)
    t = TimeOff(id=str(uuid.uuid4()), resource_id=body.resourceId, product_line=body.productLine,
                start_at=start, end_at=end, reason=body.reason, created_by=me.id)
    db.add(t)
    log_audit(db, me.id, "time_off.created", "time_off", t.id, _time_off_out(t))
    db.commit()
    return _time_off_out(t)


@router.delete("/admin/time-off/{time_off_id}")
def delete_time_off(time_off_id: str, db: Session = Depends(get_db), me: User = Depends(any_staff)):
    t = db.get(TimeOff, time_off_id)
    if not t:
        raise HTTPException(status_code=404, detail="not found")
    log_audit(db, me.id, "time_off.deleted", "time_off", t.id, _time_off_out(t))
    db.delete(t)
    db.commit()
    return {"ok": True}


# ---- services ----

def _service_out(s: Service) -> dict:
    return {"id": s.id, "name": s.name, "description": s.description, "durationMin": s.duration_min,
            "priceCents": s.price_cents, "active": s.active}


@router.get("/admin/services")
def admin_services(db: Session = Depends(get_db), me: User = Depends(shop_staff)):
    return [_service_out(s) for s in db.query(Service).order_by(Service.name.asc()).all()]


@router.post("/admin/services")
def create_service(body: ServiceIn, db: Session = Depends(get_db), me: User = Depends(admin_only)):
    if body.durationMin <= 0 or body.priceCents < 0:
        raise HTTPException(status_code=400, detail="durationMin must be > 0 and priceCents >= 0")
    s = Service(id=str(uuid.uuid4()), name=body.name, description=body.description,
                duration_min=body.durationMin, price_cents=body.priceCents, active=body.active)
    db.add(s)
    log_audit(db, me.id, "service.created", "service", s.id, _service_out(s))
    db.commit()
    return _service_out(s)


@router.patch("/admin/services/{service_id}")
def update_service(service_id: str, body: ServicePatch, db: Session = Depends(get_db), me: User = Depends(admin_only)):
    s = db.get(Service, service_id)
    if not s:
        raise HTTPException(status_code=404, detail="not found")
    if body.durationMin is not None and body.durationMin <= 0:
        raise HTTPException(status_code=400, detail="durationMin must be > 0")
    if body.priceCents is not None and body.priceCents < 0:
        raise HTTPException(status_code=400, detail="priceCents must be >= 0")
    for field, attr in (("name", "name"), ("description", "description"), ("durationMin", "duration_min"),
                        ("priceCents", "price_cents"), ("active", "active")):
        value = getattr(body, field)
        if value is not None:
            setattr(s, attr, value)
    log_audit(db, me.id, "service.updated", "service", s.id, _service_out(s))
    db.commit()
    return _service_out(s)


# ---- CDL resources ----

def _instructor_out(db: Session, i: Instructor) -> dict:
    schedule = (db.query(InstructorAvailability)
                .filter(InstructorAvailability.instructor_id == i.id)
                .order_by(InstructorAvailability.day_of_week.asc(), InstructorAvailability.start_time.asc())
                .all())
    return {"id": i.id, "displayName": i.display_name, "userId": i.user_id, "canTeach": sorted(i.capabilities()),
            "active": i.active, "notes": i.notes,
            "schedule": [{"dayOfWeek": w.day_of_week, "startTime": w.start_time, "endTime": w.end_time} for w in schedule]}


def _replace_schedule(db: Session, instructor_id: str, windows) -> None:
    checked = [(w.dayOfWeek, *_check_window(w.dayOfWeek, w.startTime, w.endTime)) for w in windows]
    db.query(InstructorAvailability).filter(InstructorAvailability.instructor_id == instructor_id).delete()
    for dow, start, end in checked:
        db.add(InstructorAvailability(id=str(uuid.uuid4()), instructor_id=instructor_id,
                                      day_of_week=dow, start_time=start, end_time=end))


def _can_teach(values) -> str:
    bad = [v for v in values if v not in MODULE_TYPES]
    if bad:
        raise ValueError(f"unknown module types: {', '.join(bad)}")
    return ",".join(sorted(set(values)))


@router.get("/admin/instructors")
def list_instructors(db: Session = Depends(get_db), me: User = Depends(cdl_staff)):
    rows = db.query(Instructor).order_by(Instructor.created_at.asc(), Instructor.id.asc()).all()
    return [_instructor_out(db, i) for i in rows]


@router.post("/admin/instructors")
def create_instructor(body: InstructorIn, db: Session = Depends(get_db), me: User = Depends(admin_only)):
    try:
        i = Instructor(id=str(uuid.uuid4()), user_id=body.userId, display_name=body.displayName,
                       can_teach=_can_teach(body.canTeach), active=body.active, notes=body.notes)
        db.add(i)
        _replace_schedule(db, i.id, body.schedule)
    except ValueError as e:
        db.rollback()
        raise http_error(e)
    log_audit(db, me.id, "instructor.created", "instructor", i.id, {"canTeach": i.can_teach})
    db.commit()
    return _instructor_out(db, i)


@router.patch("/admin/instructors/{instructor_id}")
def update_instructor(instructor_id: str, body: InstructorPatch, db: Session = Depends(get_db),
                      me: User = Depends(admin_only)):
    """Deactivation only affects future allocation; existing sessions keep their instructor."""
    i = db.get(Instructor, instructor_id)
    if not i:
        raise HTTPException(status_code=404, detail="not found")
    try:
        if body.canTeach is not None:
            i.can_teach = _can_teach(body.canTeach)
        if body.schedule is not None:
            _replace_schedule(db, i.id, body.schedule)
    except ValueError as e:
        db.rollback()
        raise http_error(e)
    if body.displayName is not None:
        i.display_name = body.displayName
    if body.active is not None:
        i.active = body.active
    if body.notes is not None:
        i.notes = body.notes
    log_audit(db, me.id, "instructor.updated", "instructor", i.id, {"active": i.active, "canTeach": i.can_teach})
    db.commit()
    return _instructor_out(db, i)


def _truck_out(t: Truck) -> dict:
    return {"id": t.id, "name": t.name, "licensePlate": t.license_plate, "truckType": t.truck_type, "active": t.active}


@router.get("/admin/trucks")
def list_trucks(db: Session = Depends(get_db), me: User = Depends(cdl_staff)):
    return [_truck_out(t) for t in db.query(Truck).order_by(Truck.created_at.asc(), Truck.id.asc()).all()]


@router.post("/admin/trucks")
def create_truck(body: TruckIn, db: Session = Depends(get_db), me: User = Depends(admin_only)):
    t = Truck(id=str(uuid.uuid4()), name=body.name, license_plate=body.licensePlate,
              truck_type=body.truckType, active=body.active)
    db.add(t)
    log_audit(db, me.id, "truck.created", "truck", t.id, _truck_out(t))
    db.commit()
    return _truck_out(t)


@router.patch("/admin/trucks/{truck_id}")
def update_truck(truck_id: str, body: TruckPatch, db: Session = Depends(get_db), me: User = Depends(admin_only)):
    t = db.get(Truck, truck_id)
    if not t:
        raise HTTPException(status_code=404, detail="not found")
    for field, attr in (("name", "name"), ("licensePlate", "license_plate"), ("truckType", "truck_type"),
                        ("active", "active")):
        value = getattr(body, field)
        if value is not None:
            setattr(t, attr, value)
    log_audit(db, me.id, "truck.updated", "truck", t.id, _truck_out(t))
    db.commit()
    return _truck_out(t)


def _module_out(m: TrainingModule) -> dict:
    return {"id": m.id, "name": m.name, "moduleType": m.module_type, "durationMin": m.duration_min,
            "priceCents": m.price_cents, "capacity": m.capacity, "requiresTruck": m.requires_truck,
            "requiresInstructor": m.requires_instructor, "fixedStartTime": m.fixed_start_time,
            "displayOrder": m.display_order, "active": m.active}


@router.get("/admin/modules")
def list_modules(db: Session = Depends(get_db), me: User = Depends(cdl_staff)):
    rows = db.query(TrainingModule).order_by(TrainingModule.display_order.asc(), TrainingModule.name.asc()).all()
    return [_module_out(m) for m in rows]


@router.post("/admin/modules")
def create_module(body: TrainingModuleIn, db: Session = Depends(get_db), me: User = Depends(admin_only)):
    if body.moduleType not in MODULE_TYPES:
        raise HTTPException(status_code=400, detail="invalid moduleType")
    if body.durationMin <= 0 or body.capacity < 1:
        raise HTTPException(status_code=400, detail="durationMin must be > 0 and capacity >= 1")
    try:
        fixed = _hhmm(body.fixedStartTime) if body.fixedStartTime else None
    except ValueError as e:
        raise http_error(e)
    m = TrainingModule(id=str(uuid.uuid4()), name=body.name, description=body.description,
                       module_type=body.moduleType, duration_min=body.durationMin, price_cents=body.priceCents,
                       capacity=body.capacity, requires_truck=body.requiresTruck,
                       requires_instructor=body.requiresInstructor, fixed_start_time=fixed,
                       display_order=body.displayOrder, active=body.active)
    db.add(m)
    log_audit(db, me.id, "training_module.created", "training_module", m.id, _module_out(m))
    db.commit()
    return _module_out(m)


@router.post("/admin/enrollments")
def create_enrollment(body: EnrollmentIn, db: Session = Depends(get_db), me: User = Depends(cdl_staff)):
    student = db.get(User, body.studentId)
    if not student:
        raise HTTPException(status_code=404, detail="student not found")
    expires = None
    if body.expiresAt:
        try:
            expires = as_utc(datetime.fromisoformat(body.expiresAt))
        except ValueError:
            raise HTTPException(status_code=400, detail="expiresAt must be ISO 8601")
    e = Enrollment(id=str(uuid.uuid4()), student_id=student.id, program_name=body.programName,
                   active=True, expires_at=expires)
    db.add(e)
    if student.role == "client":
        student.role = "student"
    log_audit(db, me.id, "enrollment.created", "enrollment", e.id, {"studentId": student.id})
    db.commit()
    return {"id": e.id, "studentId": e.student_id, "programName": e.program_name, "active": e.active}


# ---- bookings ----

@router.get("/admin/bookings", response_model=list[BookingOut])
def admin_bookings(status: str | None = None, productLine: str | None = None, date: str | None = None,
                   limit: int = 200, db: Session = Depends(get_db), me: User = Depends(any_staff)):
    if productLine and productLine not in PRODUCT_LINES:
        raise HTTPException(status_code=400, detail="invalid productLine")
    from_at = to_at = None
    zone = get_policy(db, productLine or "shop").zone
    if date:
        try:
            from_at, to_at = zone.day_bounds(date)
        except ValueError as e:
            raise http_error(e)
    rows = booking_service.list_all(db, status=status, product_line=productLine, from_at=from_at, to_at=to_at, limit=limit)
    zones = {line: get_policy(db, line).zone for line in PRODUCT_LINES}
    return [booking_out(b, zones.get(b.product_line)) for b in rows]


def _load(db: Session, booking_id: str, me: User) -> Booking:
    b = booking_service.get_booking(db, booking_id)
    if not b:
        raise HTTPException(status_code=404, detail="not found")
    _staff_for(b, me)
    return b


@router.post("/admin/bookings/{booking_id}/action", response_model=BookingOut)
def booking_action(booking_id: str, body: BookingActionRequest,
                   db: Session = Depends(get_db), clock: Clock = Depends(get_clock),
                   payments: PaymentAuthority = Depends(get_payments), me: User = Depends(any_staff)):
    """accepted | declined for a pending request."""
    b = _load(db, booking_id, me)
    policy = get_policy(db, b.product_line)
    try:
        if body.action == "accepted":
            b = booking_service.accept(db, b.id, me.id, policy, payments, clock)
        elif body.action == "declined":
            b = booking_service.decline(db, b.id, me.id, payments, clock, reason=body.reason)
        else:
            raise ValueError("Invalid action")
    except (ValueError, LookupError) as e:
        raise http_error(e)
    return booking_out(b, policy.zone)


@router.post("/admin/bookings/{booking_id}/complete", response_model=BookingOut)
def complete_booking(booking_id: str, db: Session = Depends(get_db), clock: Clock = Depends(get_clock),
                     payments: PaymentAuthority = Depends(get_payments), me: User = Depends(any_staff)):
    b = _load(db, booking_id, me)
    try:
        b = booking_service.complete(db, b.id, me.id, payments, clock)
    except (ValueError, LookupError) as e:
        raise http_error(e)
    return booking_out(b, get_policy(db, b.product_line).zone)


@router.post("/admin/bookings/{booking_id}/no-show", response_model=BookingOut)
def no_show(booking_id: str, charge: bool = True, db: Session = Depends(get_db), clock: Clock = Depends(get_clock),
            payments: PaymentAuthority = Depends(get_payments), me: User = Depends(any_staff)):
    b = _load(db, booking_id, me)
    try:
        b = booking_service.mark_no_show(db, b.id, me.id, payments, clock, charge=charge)
    except (ValueError, LookupError) as e:
        raise http_error(e)
    return booking_out(b, get_policy(db, b.product_line).zone)


@router.post("/admin/bookings/{booking_id}/cancel", response_model=BookingOut)
def admin_cancel(booking_id: str, body: CancelRequest | None = None, db: Session = Depends(get_db),
                 clock: Clock = Depends(get_clock), payments: PaymentAuthority = Depends(get_payments),
                 me: User = Depends(any_staff)):
    b = _load(db, booking_id, me)
    policy = get_policy(db, b.product_line)
    try:
        b = booking_service.cancel(db, b.id, me.id, payments, policy, clock,
                                   reason=body.reason if body else None, by_admin=True)
    except (ValueError, LookupError) as e:
        raise http_error(e)
    return booking_out(b, policy.zone)


@router.post("/admin/bookings/{booking_id}/cash-paid", response_model=BookingOut)
def cash_paid(booking_id: str, db: Session = Depends(get_db), me: User = Depends(any_staff)):
    b = _load(db, booking_id, me)
    try:
        b = booking_service.mark_cash_paid(db, b.id, me.id)
    except (ValueError, LookupError) as e:
        raise http_error(e)
    return booking_out(b, get_policy(db, b.product_line).zone)


@router.post("/admin/bookings/{booking_id}/log-hours", response_model=BookingOut)
def log_hours(booking_id: str, body: LogHoursRequest, db: Session = Depends(get_db),
              clock: Clock = Depends(get_clock), payments: PaymentAuthority = Depends(get_payments),
              me: User = Depends(cdl_staff)):
    """Record the hours a student actually trained (0-12); completes the booking."""
    b = _load(db, booking_id, me)
    try:
        booking_service.log_hours(db, b.id, me.id, body.hours, payments, clock)
    except (ValueError, LookupError) as e:
        raise http_error(e)
    return booking_out(b, get_policy(db, b.product_line).zone)


@router.get("/admin/students/{student_id}/hours")
def student_hours(student_id: str, db: Session = Depends(get_db), me: User = Depends(cdl_staff)):
    if not db.get(User, student_id):
        raise HTTPException(status_code=404, detail="student not found")
    return booking_service.hours_summary(db, student_id)


# ---- waitlist ----

@router.get("/admin/waitlist")
def list_waitlist(date: str | None = None, productLine: str | None = None, status: str | None = "waiting",
                  db: Session = Depends(get_db), me: User = Depends(any_staff)):
    try:
        rows = waitlist_service.list_for_date(db, date, productLine, status or None)
    except ValueError as e:
        raise http_error(e)
    return [waitlist_service.entry_out(e) for e in rows]


@router.patch("/admin/waitlist/{entry_id}")
def update_waitlist_entry(entry_id: str, body: WaitlistStatusPatch, db: Session = Depends(get_db),
                          me: User = Depends(any_staff)):
    try:
        entry = waitlist_service.set_status(db, entry_id, body.status, me.id)
    except (ValueError, LookupError) as e:
        raise http_error(e)
    return waitlist_service.entry_out(entry)


@router.get("/admin/bookings/{booking_id}/audit")
def booking_audit(booking_id: str, db: Session = Depends(get_db), me: User = Depends(any_staff)):
    b = _load(db, booking_id, me)
    return list_audit(db, "booking", b.id)


# ---- training sessions ----

@router.get("/admin/training-sessions")
def list_training_sessions(date: str | None = None, status: str | None = None,
                           db: Session = Depends(get_db), me: User = Depends(cdl_staff)):
    q = db.query(TrainingSession)
    if date:
        q = q.filter(TrainingSession.session_date == date)
    if status:
        q = q.filter(TrainingSession.status == status)
    rows = q.order_by(TrainingSession.session_date.asc(), TrainingSession.start_time.asc()).limit(500).all()
    return [session_out(s) for s in rows]


@router.post("/admin/training-sessions")
def create_training_session(body: TrainingSessionIn, db: Session = Depends(get_db), me: User = Depends(cdl_staff)):
    try:
        parse_date(body.date)
        s = allocator_service.create_session(
            db, get_policy(db, "cdl"), body.moduleId, body.date, body.startTime, me.id,
            instructor_id=body.instructorId, truck_id=body.truckId, notes=body.notes,
        )
    except (ValueError, LookupError) as e:
        raise http_error(e)
    return session_out(s)


@router.patch("/admin/training-sessions/{session_id}")
def update_training_session(session_id: str, body: TrainingSessionPatch,
                            db: Session = Depends(get_db), clock: Clock = Depends(get_clock),
                            payments: PaymentAuthority = Depends(get_payments), me: User = Depends(cdl_staff)):
    """
    Status changes. Cancelling cancels every live booking in the session;
    completing completes the ones still confirmed/arrived.
    """
    s = db.get(TrainingSession, session_id)
    if not s:
        raise HTTPException(status_code=404, detail="not found")
    if body.instructorId is not None or body.truckId is not None:
        raise HTTPException(status_code=400, detail="reassigning resources is not supported; cancel and re-create")
    policy = get_policy(db, "cdl")
    try:
        if body.notes is not None:
            s.notes = body.notes
            db.commit()
        if body.status:
            live = db.query(Booking).filter(Booking.session_id == s.id,
                                            Booking.status.in_(("requested", "accepted", "confirmed", "arrived"))).all()
            if body.status == "cancelled":
                for b in live:
                    booking_service.cancel(db, b.id, me.id, payments, policy, clock,
                                           reason="Session cancelled", by_admin=True)
            s = allocator_service.set_session_status(db, s.id, body.status, me.id)
            if body.status == "completed":
                for b in live:
                    if b.status in ("accepted", "confirmed", "arrived"):
                        booking_service.complete(db, b.id, me.id, payments, clock)
    except (ValueError, LookupError) as e:
        raise http_error(e)
    db.refresh(s)
    return session_out(s)


# ---- policy ----

_POLICY_FIELDS = {
    "bufferMinutes": "buffer_minutes",
    "minAdvanceHours": "min_advance_hours",
    "granularityMinutes": "granularity_minutes",
    "cancellationWindowHours": "cancellation_window_hours",
    "operatingDays": "operating_days",
    "timezone": "timezone",
    "autoConfirmPrivileged": "auto_confirm_privileged",
    "pendingBlocks": "pending_blocks",
}


@router.get("/admin/settings/policy")
def get_policy_settings(productLine: str = "shop", db: Session = Depends(get_db), me: User = Depends(admin_only)):
    if productLine not in PRODUCT_LINES:
        raise HTTPException(status_code=400, detail="invalid productLine")
    return {"policy": get_policy(db, productLine).as_dict(),
            "overrides": settings_service.get_policy_overrides(db, productLine)}


@router.put("/admin/settings/policy")
def set_policy_settings(body: PolicyPatch, db: Session = Depends(get_db), me: User = Depends(admin_only)):
    """Fields left out are unchanged; an explicit null drops the override."""
    if body.productLine not in PRODUCT_LINES:
        raise HTTPException(status_code=400, detail="invalid productLine")
    values = {_POLICY_FIELDS[k]: v for k, v in body.model_dump(exclude_unset=True).items() if k in _POLICY_FIELDS}
    try:
        if values.get("operating_days"):
            parse_days(values["operating_days"])
        if values.get("timezone"):
            BusinessZone(values["timezone"])
        overrides = settings_service.set_policy_overrides(db, body.productLine, values, actor_id=me.id)
        log_audit(db, me.id, "policy.updated", "setting", body.productLine, values)
        db.commit()
    except ValueError as e:
        db.rollback()
        raise http_error(e)
    return {"policy": get_policy(db, body.productLine).as_dict(), "overrides": overrides}
