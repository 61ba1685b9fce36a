"""
Write path for bookings: the collision guard and the lifecycle transitions.

Every insert goes through try_commit (shop) or allocator_service.book_session
(cdl); nothing else adds Booking rows.
"""
import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from slotbook.core.errors import (
    BookingConflict, CancellationRefused, ConflictReason, InvalidTransition,
    PaymentNotAuthorized, TransientFailure,
)
from slotbook.models.booking import Booking
from slotbook.models.enrollment import Enrollment
from slotbook.models.hour_log import HourLog
from slotbook.models.service import Service
from slotbook.models.training_session import TrainingSession
from slotbook.models.user import User
from slotbook.services import booking_store
from slotbook.services.audit_service import log_audit, SYSTEM_ACTOR
from slotbook.services.availability_service import open_intervals, within_open_interval
from slotbook.services.interval_service import overlaps, validate
from slotbook.services.payment_service import PaymentAuthority
from slotbook.services.policy_service import (
    BASE_BLOCKING_STATUSES, BookingPolicy, is_advance_notice_satisfied, is_duplicate, is_operating_day,
)
from slotbook.services.timezone_service import Clock, SystemClock, as_utc

logger = logging.getLogger(__name__)

TRANSITIONS = {
    "requested": ("accepted", "declined", "cancelled"),
    "accepted": ("arrived", "completed", "no_show", "cancelled"),
    "confirmed": ("arrived", "completed", "no_show", "cancelled"),
    "arrived": ("completed",),
    "completed": (),
    "cancelled": (),
    "declined": (),
    "no_show": (),
}

CLIENT_CANCELLABLE = ("requested", "accepted", "confirmed")


def new_booking(**fields) -> Booking:
    fields.setdefault("id", str(uuid.uuid4()))
    return Booking(**fields)


def get_booking(db: Session, booking_id: str) -> Booking | None:
    return db.get(Booking, booking_id)


def resolve_service(db: Session, service_id: str, privileged: bool = False) -> Service:
    svc = db.get(Service, service_id)
    if not svc or (not svc.active and not privileged):
        raise ValueError("service not found")
    return svc


def resolve_resource(db: Session, resource_id: str | None) -> str | None:
    """A shop resource is an active barber; anything else would escape the overlap check."""
    if not resource_id:
        return None
    barber = db.get(User, resource_id)
    if not barber or barber.role != "barber" or not barber.is_active:
        raise ValueError("resource not found")
    return barber.id


def lock_keys_for(policy: BookingPolicy, booking: Booking) -> list[str]:
    start, end = booking_store.padded_window(booking.start_at, booking.end_at, policy.buffer_minutes)
    # one key per date: a booking without a resource contends with every resource
    keys = [booking_store.lock_key(policy.product_line, None, d)
            for d in policy.zone.dates_touched(start, end)]
    keys.append(f"client:{booking.client_id}")
    return keys


def _check_candidate(db: Session, candidate: Booking, policy: BookingPolicy, clock: Clock, privileged: bool) -> None:
    start, end = as_utc(candidate.start_at), as_utc(candidate.end_at)
    zone = policy.zone

    if not privileged:
        date_str = zone.local_date_str(start)
        intervals = open_intervals(db, zone, date_str, candidate.resource_id) \
            if is_operating_day(zone.day_of_week(date_str), policy.operating_days) else []
        if not within_open_interval(intervals, start, end):
            raise BookingConflict(ConflictReason.OUTSIDE_AVAILABILITY)
        if booking_store.list_blackouts(db, start, end, candidate.resource_id,
                                       product_line=policy.product_line):
            raise BookingConflict(ConflictReason.BLACKOUT_CONFLICT)

    nearby = booking_store.list_contending_bookings(
        db, *booking_store.padded_window(start, end, policy.buffer_minutes), candidate.resource_id,
        statuses=policy.blocking, product_line=policy.product_line, exclude_id=candidate.id,
    )
    others = [b for b in nearby if b.client_id != candidate.client_id]
    if any(overlaps(start, end, as_utc(b.start_at), as_utc(b.end_at), policy.buffer_minutes) for b in others):
        raise BookingConflict(ConflictReason.SLOT_TAKEN)

    mine = booking_store.list_bookings(db, start, end, client_id=candidate.client_id, exclude_id=candidate.id)
    if is_duplicate(mine, start, end, candidate.client_id):
        raise BookingConflict(ConflictReason.DUPLICATE_REQUEST)
    # the requester's own bookings still need the buffer gap
    own = [b for b in nearby if b.client_id == candidate.client_id]
    if any(overlaps(start, end, as_utc(b.start_at), as_utc(b.end_at), policy.buffer_minutes) for b in own):
        raise BookingConflict(ConflictReason.SLOT_TAKEN)

    if not privileged and not is_advance_notice_satisfied(clock.now(), start, policy.min_advance_hours):
        raise BookingConflict(ConflictReason.TOO_SOON)


def try_commit(db: Session, candidate: Booking, policy: BookingPolicy, clock: Clock | None = None,
               privileged: bool = False) -> Booking:
    """
    Re-validate and insert under the resource/date lock.

    Raises BookingConflict with the first failing reason; nothing is written
    in that case.
    """
    clock = clock or SystemClock()
    candidate.start_at = as_utc(candidate.start_at)
    candidate.end_at = as_utc(candidate.end_at)
    validate(candidate.start_at, candidate.end_at)
    if not candidate.id:
        candidate.id = str(uuid.uuid4())
    candidate.product_line = policy.product_line
    candidate.status = "confirmed" if privileged and policy.auto_confirm_privileged else "requested"
    now = clock.now()
    candidate.status_changed_at = now

    def _check():
        _check_candidate(db, candidate, policy, clock, privileged)
        log_audit(db, candidate.client_id, f"booking.{candidate.status}", "booking", candidate.id, {
            "productLine": candidate.product_line,
            "start": candidate.start_at.isoformat(),
            "end": candidate.end_at.isoformat(),
            "privileged": privileged,
        })

    booking = booking_store.insert_booking_if_no_conflict(db, candidate, lock_keys_for(policy, candidate), _check)
    logger.info("booking %s created (%s) %s-%s", booking.id, booking.status,
                booking.start_at.isoformat(), booking.end_at.isoformat())
    return booking


def take_payment(payments: PaymentAuthority, booking: Booking, payment_token: str | None):
    """
    Authorize before the insert. Card bookings get a hold, cash bookings a card
    on file for the no-show fee. Returns the reference to void on failure.
    """
    meta = {"booking_id": booking.id, "client_id": booking.client_id, "idempotency_key": f"booking-{booking.id}"}
    if booking.payment_method == "card" and (booking.amount_cents or 0) > 0:
        if not payment_token:
            raise PaymentNotAuthorized("payment method required for card bookings")
        auth = payments.authorize(amount_cents=booking.amount_cents, payment_token=payment_token, metadata=meta)
        if not auth.authorized:
            raise PaymentNotAuthorized(auth.message or "payment not authorized")
        booking.payment_ref = auth.reference
        booking.payment_status = auth.status
        return auth.reference
    if booking.payment_method == "cash":
        booking.payment_status = "cash_pending"
        if payment_token:
            auth = payments.setup(payment_token=payment_token, metadata=meta)
            if not auth.authorized:
                raise PaymentNotAuthorized(auth.message or "card could not be saved")
            booking.setup_ref = auth.reference
            return auth.reference
        return None
    booking.payment_status = "pending"
    return None


def compensate(payments: PaymentAuthority, booking: Booking) -> None:
    """Release whatever take_payment acquired. Errors are logged; the caller re-raises its own."""
    try:
        if booking.payment_ref:
            payments.void(booking.payment_ref)
        if booking.setup_ref:
            payments.cancel_setup(booking.setup_ref)
    except TransientFailure:
        logger.exception("could not release payment for rejected booking %s (ref=%s setup=%s)",
                         booking.id, booking.payment_ref, booking.setup_ref)


def create_booking(db: Session, candidate: Booking, policy: BookingPolicy, payments: PaymentAuthority,
                   clock: Clock | None = None, privileged: bool = False,
                   payment_token: str | None = None) -> Booking:
    if not candidate.id:
        candidate.id = str(uuid.uuid4())
    take_payment(payments, candidate, payment_token)
    try:
        return try_commit(db, candidate, policy, clock, privileged)
    except Exception:
        compensate(payments, candidate)
        raise


def _set_status(db: Session, booking: Booking, to_status: str, actor_id: str, clock: Clock, details: dict | None = None):
    if to_status not in TRANSITIONS.get(booking.status, ()):
        raise InvalidTransition(f"cannot move booking from {booking.status} to {to_status}")
    previous = booking.status
    booking.status = to_status
    booking.status_changed_at = clock.now()
    log_audit(db, actor_id, f"booking.{to_status}", "booking", booking.id, {"from": previous, **(details or {})})


def _release_payment(payments: PaymentAuthority | None, booking: Booking) -> None:
    """Drop holds of a booking that will not happen. Provider errors do not block the status change."""
    if payments is None:
        return
    try:
        if booking.payment_method == "card" and booking.payment_ref and booking.payment_status == "authorized":
            payments.void(booking.payment_ref)
        if booking.payment_method == "cash" and booking.setup_ref:
            payments.cancel_setup(booking.setup_ref)
    except TransientFailure:
        logger.exception("payment release failed for booking %s", booking.id)
    if booking.payment_status not in ("paid", "cash_paid", "refunded"):
        booking.payment_status = "cancelled"


def _commit_released(db: Session, bookings: list[Booking], clock: Clock) -> None:
    """Commit status changes of bookings that will not happen, handing back any CDL seats."""
    from slotbook.services.allocator_service import release_seats
    release_seats(db, bookings, clock)


def accept(db: Session, booking_id: str, actor_id: str, policy: BookingPolicy, payments: PaymentAuthority,
           clock: Clock | None = None) -> Booking:
    """
    Accept a pending request. The booking is re-checked against everything
    already accepted; overlapping pending requests are declined.
    """
    clock = clock or SystemClock()
    booking = get_booking(db, booking_id)
    if not booking:
        raise LookupError("booking not found")
    if booking.status == "accepted" and booking.payment_status == "authorized":
        # earlier capture failed; retry it
        _capture(db, booking, payments)
        return booking
    declined: list[Booking] = []

    def _work():
        db.refresh(booking)
        if "accepted" not in TRANSITIONS.get(booking.status, ()):
            raise InvalidTransition(f"cannot move booking from {booking.status} to accepted")
        start, end = as_utc(booking.start_at), as_utc(booking.end_at)
        window = booking_store.padded_window(start, end, policy.buffer_minutes)
        committed = [] if booking.product_line != "shop" else booking_store.list_contending_bookings(
            db, *window, booking.resource_id, statuses=BASE_BLOCKING_STATUSES,
            product_line="shop", exclude_id=booking.id)
        if any(
                overlaps(start, end, as_utc(b.start_at), as_utc(b.end_at), policy.buffer_minutes) for b in committed):
            raise BookingConflict(ConflictReason.SLOT_TAKEN)
        _set_status(db, booking, "accepted", actor_id, clock)
        if booking.payment_method == "cash":
            booking.payment_status = "cash_pending"
        if booking.product_line != "shop":
            return
        pending = booking_store.list_contending_bookings(db, *window, booking.resource_id, statuses=("requested",),
                                                         product_line="shop", exclude_id=booking.id)
        for other in pending:
            if overlaps(as_utc(other.start_at), as_utc(other.end_at), start, end, policy.buffer_minutes):
                _set_status(db, other, "declined", actor_id, clock, {"reason": "overlaps accepted booking", "acceptedId": booking.id})
                other.cancellation_reason = "Time slot was given to another booking"
                declined.append(other)

    booking_store.run_locked(db, lock_keys_for(policy, booking), _work)
    for other in declined:
        _release_payment(payments, other)
    if declined:
        _commit_released(db, declined, clock)
    _capture(db, booking, payments)
    return booking


def _capture(db: Session, booking: Booking, payments: PaymentAuthority) -> None:
    """Take the held funds. A refused capture leaves the booking authorized so it can be retried."""
    if booking.payment_method != "card" or booking.payment_status != "authorized" or not booking.payment_ref:
        return
    result = payments.capture(booking.payment_ref, booking.amount_cents)
    if result.authorized:
        booking.payment_status = "paid"
        log_audit(db, SYSTEM_ACTOR, "booking.payment_captured", "booking", booking.id, {"ref": booking.payment_ref})
    else:
        logger.warning("capture failed for booking %s: %s", booking.id, result.message)
        log_audit(db, SYSTEM_ACTOR, "booking.payment_capture_failed", "booking", booking.id,
                  {"ref": booking.payment_ref, "message": result.message})
    db.commit()


def decline(db: Session, booking_id: str, actor_id: str, payments: PaymentAuthority,
            clock: Clock | None = None, reason: str | None = None) -> Booking:
    clock = clock or SystemClock()
    booking = get_booking(db, booking_id)
    if not booking:
        raise LookupError("booking not found")
    _set_status(db, booking, "declined", actor_id, clock, {"reason": reason})
    booking.cancellation_reason = reason
    _release_payment(payments, booking)
    _commit_released(db, [booking], clock)
    return booking


def cancel(db: Session, booking_id: str, actor_id: str, payments: PaymentAuthority, policy: BookingPolicy,
           clock: Clock | None = None, reason: str | None = None, by_admin: bool = False) -> Booking:
    """
    Requester cancellation: only their own requested/accepted/confirmed bookings,
    accepted ones no later than the cancellation window, never after a capture.
    Administrators may cancel anything the lifecycle allows; captured card
    payments are refunded.
    """
    clock = clock or SystemClock()
    booking = get_booking(db, booking_id)
    if not booking:
        raise LookupError("booking not found")
    if booking.status == "cancelled":
        return booking
    if not by_admin:
        if booking.client_id != actor_id:
            raise PermissionError("you can only cancel your own bookings")
        if booking.status not in CLIENT_CANCELLABLE:
            raise InvalidTransition(f"cannot cancel booking with status {booking.status}")
        if booking.status in ("accepted", "confirmed"):
            if as_utc(booking.start_at) - clock.now() < timedelta(hours=policy.cancellation_window_hours):
                raise CancellationRefused(
                    f"appointments must be cancelled at least {policy.cancellation_window_hours} hours in advance"
                )
        if booking.payment_method == "card" and booking.payment_status == "paid":
            raise CancellationRefused("this booking has already been charged; contact us for a refund")

    _set_status(db, booking, "cancelled", actor_id, clock, {"reason": reason, "byAdmin": by_admin})
    booking.cancelled_at = clock.now()
    booking.cancellation_reason = reason
    if by_admin and booking.payment_method == "card" and booking.payment_status == "paid" and booking.payment_ref:
        result = payments.refund(booking.payment_ref, booking.amount_cents)
        if result.authorized:
            booking.payment_status = "refunded"
        else:
            # the cancellation stands; staff settle the refund by hand
            logger.warning("refund failed for booking %s: %s", booking.id, result.message)
            log_audit(db, actor_id, "booking.refund_failed", "booking", booking.id,
                      {"ref": booking.payment_ref, "message": result.message})
    _release_payment(payments, booking)
    _commit_released(db, [booking], clock)
    return booking


def arrive(db: Session, booking_id: str, actor_id: str, clock: Clock | None = None) -> Booking:
    clock = clock or SystemClock()
    booking = get_booking(db, booking_id)
    if not booking:
        raise LookupError("booking not found")
    if booking.client_id != actor_id:
        raise PermissionError("not your booking")
    if booking.status == "arrived":
        return booking
    _set_status(db, booking, "arrived", actor_id, clock)
    db.commit()
    return booking


def complete(db: Session, booking_id: str, actor_id: str, payments: PaymentAuthority,
             clock: Clock | None = None) -> Booking:
    clock = clock or SystemClock()
    booking = get_booking(db, booking_id)
    if not booking:
        raise LookupError("booking not found")
    if booking.status == "completed":
        return booking
    _set_status(db, booking, "completed", actor_id, clock)
    db.commit()
    _capture(db, booking, payments)
    return booking


def mark_no_show(db: Session, booking_id: str, actor_id: str, payments: PaymentAuthority,
                 clock: Clock | None = None, charge: bool = True) -> Booking:
    """No-show: card holds are captured, cash bookings are charged to the card on file."""
    clock = clock or SystemClock()
    booking = get_booking(db, booking_id)
    if not booking:
        raise LookupError("booking not found")
    if booking.status == "no_show":
        return booking
    _set_status(db, booking, "no_show", actor_id, clock, {"charge": charge})
    db.commit()
    if not charge:
        return booking
    if booking.payment_method == "card" and booking.payment_status == "authorized" and booking.payment_ref:
        result = payments.capture(booking.payment_ref, booking.amount_cents)
        if result.authorized:
            booking.payment_status = "no_show_charged"
        else:
            logger.warning("no-show capture failed for booking %s: %s", booking.id, result.message)
    elif booking.payment_method == "card" and booking.payment_status == "paid":
        booking.payment_status = "no_show_charged"
    elif booking.payment_method == "cash" and booking.setup_ref and booking.payment_status == "cash_pending":
        result = payments.charge_setup(booking.setup_ref, booking.amount_cents)
        if result.authorized:
            booking.payment_status = "no_show_charged"
            booking.payment_ref = result.reference
        else:
            logger.warning("no-show charge failed for booking %s: %s", booking.id, result.message)
    log_audit(db, actor_id, "booking.no_show_charge", "booking", booking.id, {"paymentStatus": booking.payment_status})
    db.commit()
    return booking


def mark_cash_paid(db: Session, booking_id: str, actor_id: str) -> Booking:
    booking = get_booking(db, booking_id)
    if not booking:
        raise LookupError("booking not found")
    if booking.payment_method != "cash":
        raise ValueError("only cash bookings can be marked as paid")
    if booking.status in ("cancelled", "declined", "requested"):
        raise InvalidTransition(f"cannot take cash for a {booking.status} booking")
    booking.payment_status = "cash_paid"
    log_audit(db, actor_id, "booking.cash_paid", "booking", booking.id, {})
    db.commit()
    return booking


MAX_LOGGED_HOURS = 12


def log_hours(db: Session, booking_id: str, actor_id: str, hours: float, payments: PaymentAuthority,
              clock: Clock | None = None) -> HourLog:
    """
    Instructor hours for a CDL booking, counted against the student's active
    enrollment. The booking is completed if it is not already; logging again
    corrects the earlier figure instead of adding a second entry.
    """
    clock = clock or SystemClock()
    if isinstance(hours, bool) or not isinstance(hours, (int, float)) or not 0 <= hours <= MAX_LOGGED_HOURS:
        raise ValueError(f"hours must be between 0 and {MAX_LOGGED_HOURS}")
    booking = get_booking(db, booking_id)
    if not booking:
        raise LookupError("booking not found")
    if booking.product_line != "cdl":
        raise ValueError("hours can only be logged for CDL training bookings")
    if booking.status != "completed":
        _set_status(db, booking, "completed", actor_id, clock, {"hoursLogged": hours})
    booking.hours_logged = float(hours)

    entry = db.query(HourLog).filter(HourLog.booking_id == booking.id).first()
    if entry is None:
        session = db.get(TrainingSession, booking.session_id) if booking.session_id else None
        enrollment = (
            db.query(Enrollment)
            .filter(Enrollment.student_id == booking.client_id, Enrollment.active == True)  # noqa: E712
            .order_by(Enrollment.created_at.desc())
            .first()
        )
        entry = HourLog(
            id=str(uuid.uuid4()),
            booking_id=booking.id,
            student_id=booking.client_id,
            enrollment_id=enrollment.id if enrollment else None,
            module_id=booking.module_id,
            session_date=session.session_date if session else as_utc(booking.start_at).date().isoformat(),
        )
        db.add(entry)
    entry.hours = float(hours)
    entry.logged_by = actor_id
    log_audit(db, actor_id, "booking.hours_logged", "booking", booking.id, {"hours": float(hours)})
    db.commit()
    _capture(db, booking, payments)
    return entry


def hours_summary(db: Session, student_id: str) -> dict:
    rows = db.query(HourLog).filter(HourLog.student_id == student_id).order_by(HourLog.session_date.asc()).all()
    return {
        "studentId": student_id,
        "totalHours": sum(r.hours for r in rows),
        "entries": [
            {"bookingId": r.booking_id, "moduleId": r.module_id, "enrollmentId": r.enrollment_id,
             "sessionDate": r.session_date, "hours": r.hours, "loggedBy": r.logged_by}
            for r in rows
        ],
    }


def expire_requests(db: Session, payments: PaymentAuthority | None, clock: Clock | None = None,
                    grace_minutes: int = 0) -> int:
    """Decline pending requests whose start has passed (minus grace)."""
    clock = clock or SystemClock()
    cutoff = clock.now() - timedelta(minutes=grace_minutes)
    stale = (
        db.query(Booking)
        .filter(Booking.status == "requested", Booking.start_at <= cutoff)
        .order_by(Booking.start_at.asc())
        .all()
    )
    for b in stale:
        _set_status(db, b, "declined", SYSTEM_ACTOR, clock, {"reason": "expired"})
        b.cancellation_reason = "Request expired before it was accepted"
        _release_payment(payments, b)
    _commit_released(db, stale, clock)
    if stale:
        logger.info("expired %d pending requests", len(stale))
    return len(stale)


def list_for_client(db: Session, client_id: str, status: str | None = None, limit: int = 100) -> list[Booking]:
    q = db.query(Booking).filter(Booking.client_id == client_id)
    if status:
        q = q.filter(Booking.status == status)
    return q.order_by(Booking.start_at.desc()).limit(min(limit, 500)).all()


def list_all(db: Session, status: str | None = None, product_line: str | None = None,
             from_at: datetime | None = None, to_at: datetime | None = None, limit: int = 200) -> list[Booking]:
    q = db.query(Booking)
    if status:
        q = q.filter(Booking.status == status)
    if product_line:
        q = q.filter(Booking.product_line == product_line)
    if from_at:
        q = q.filter(Booking.end_at > as_utc(from_at))
    if to_at:
        q = q.filter(Booking.start_at < as_utc(to_at))
    return q.order_by(Booking.start_at.asc()).limit(min(limit, 1000)).all()
