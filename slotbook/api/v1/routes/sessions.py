from datetime import timedelta
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from slotbook.db.session import get_db
from slotbook.api.deps import get_clock, get_current_user, get_optional_user, get_payments, http_error
from slotbook.models.user import User
from slotbook.schemas.booking import booking_out
from slotbook.schemas.session import SessionBookRequest, session_out
from slotbook.services import allocator_service, booking_service
from slotbook.services.payment_service import PaymentAuthority
from slotbook.services.policy_service import get_policy, is_operating_day, is_privileged
from slotbook.services.timezone_service import Clock, parse_date

router = APIRouter(tags=["sessions"])


@router.get("/sessions")
def session_options(date: str, module_type: str | None = None,
                    db: Session = Depends(get_db),
                    clock: Clock = Depends(get_clock),
                    me: User | None = Depends(get_optional_user)):
    privileged = is_privileged(me.role if me else None, "cdl")
    try:
        policy = get_policy(db, "cdl")
        options = allocator_service.list_session_options(
            db, policy, date, requester=me, module_type=module_type, clock=clock, privileged=privileged,
        )
    except (ValueError, LookupError) as e:
        raise http_error(e)
    return {"date": date, "timezone": policy.zone.name, "options": options}


@router.get("/sessions/dates")
def session_dates(days: int = 30, start: str | None = None,
                  db: Session = Depends(get_db),
                  clock: Clock = Depends(get_clock)):
    """Upcoming dates on which training runs."""
    policy = get_policy(db, "cdl")
    try:
        first = parse_date(start) if start else policy.zone.to_local(clock.now()).date()
    except ValueError as e:
        raise http_error(e)
    out = []
    for i in range(max(0, min(days, 120))):
        d = first + timedelta(days=i)
        if is_operating_day((d.weekday() + 1) % 7, policy.operating_days):
            out.append(d.isoformat())
    return {"dates": out}


@router.post("/sessions/book")
def book(body: SessionBookRequest,
         db: Session = Depends(get_db),
         clock: Clock = Depends(get_clock),
         payments: PaymentAuthority = Depends(get_payments),
         me: User = Depends(get_current_user)):
    """Join or create a training session. 409 {"reason"} on conflicts."""
    privileged = is_privileged(me.role, "cdl")
    student = me
    if body.studentId and body.studentId != me.id:
        if not privileged:
            raise HTTPException(status_code=403, detail="Forbidden")
        student = db.get(User, body.studentId)
        if not student:
            raise HTTPException(status_code=404, detail="student not found")
    if not body.sessionId and not (body.moduleId and body.date and body.time):
        raise HTTPException(status_code=400, detail="sessionId or moduleId + date + time required")
    try:
        policy = get_policy(db, "cdl")
        booking, alloc = allocator_service.book_session(
            db, policy, body.moduleId, body.date, body.time, student, payments,
            clock=clock, privileged=privileged, session_id=body.sessionId,
            payment_method=body.paymentMethod, payment_token=body.paymentToken, notes=body.notes,
        )
    except (ValueError, LookupError, PermissionError) as e:
        raise http_error(e)
    return {
        "booking": booking_out(booking, policy.zone).model_dump(),
        "session": session_out(alloc.session),
        "joined": alloc.joined,
    }


@router.get("/sessions/hours")
def my_hours(db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    """Training hours logged by instructors against the caller's bookings."""
    return booking_service.hours_summary(db, me.id)
