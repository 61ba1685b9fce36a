"""
Reads and the atomic conditional insert used by the collision guard and allocator.

Check-then-insert for one resource/date always runs while holding that
resource/date lock: pg_advisory_xact_lock on PostgreSQL (released at
commit/rollback), a process-local lock registry on other backends.
"""
import hashlib
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Callable, Iterable

from sqlalchemy import and_, or_, text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from slotbook.core.errors import BookingConflict, TransientFailure
from slotbook.models.availability_rule import AvailabilityRule
from slotbook.models.booking import Booking
from slotbook.models.instructor import InstructorAvailability
from slotbook.models.time_off import TimeOff
from slotbook.services.timezone_service import as_utc

logger = logging.getLogger(__name__)

_registry_guard = threading.Lock()
_registry: dict[str, threading.Lock] = {}


def _local_lock(key: str) -> threading.Lock:
    with _registry_guard:
        lock = _registry.get(key)
        if lock is None:
            lock = _registry[key] = threading.Lock()
        return lock


def advisory_lock_id(key: str) -> int:
    """Stable signed 64-bit id for pg_advisory_xact_lock."""
    digest = hashlib.blake2b(key.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


def lock_key(product_line: str, resource: str | None, date_str: str) -> str:
    return f"{product_line}:{resource or '*'}:{date_str}"


@contextmanager
def resource_locks(db: Session, keys: Iterable[str]):
    """Hold every key (sorted, so two writers never wait on each other in opposite order)."""
    ordered = sorted(set(keys))
    if db.get_bind().dialect.name == "postgresql":
        for key in ordered:
            db.execute(text("SELECT pg_advisory_xact_lock(:k)"), {"k": advisory_lock_id(key)})
        yield
        return
    held = []
    try:
        for key in ordered:
            lock = _local_lock(key)
            lock.acquire()
            held.append(lock)
        yield
    finally:
        for lock in reversed(held):
            lock.release()


def run_locked(db: Session, lock_keys: Iterable[str], work: Callable[[], object]):
    """
    Run `work` and commit while holding the locks. `work` re-reads state, raises
    BookingConflict to reject, and adds whatever rows it writes to the session.
    """
    try:
        with resource_locks(db, lock_keys):
            try:
                result = work()
                db.commit()
            except BookingConflict as e:
                db.rollback()
                logger.info("booking rejected: %s", e.reason.value)
                raise
            except IntegrityError as e:
                # only reachable when another process wrote the same unique row first
                db.rollback()
                logger.warning("concurrent write lost: %s", e.orig)
                raise TransientFailure("concurrent update, retry the request") from e
            except Exception:
                db.rollback()
                raise
    except OperationalError as e:
        db.rollback()
        logger.error("storage unavailable: %s", e.orig)
        raise TransientFailure("storage unavailable") from e
    return result


def insert_booking_if_no_conflict(db: Session, booking: Booking, lock_keys: Iterable[str],
                                  conflict_check: Callable[[], None]) -> Booking:
    def _work():
        conflict_check()
        db.add(booking)
        return booking

    run_locked(db, lock_keys, _work)
    db.refresh(booking)
    return booking


def list_rules_for(db: Session, day_of_week: int, resource_id: str | None = None) -> list[AvailabilityRule]:
    q = db.query(AvailabilityRule).filter(
        AvailabilityRule.day_of_week == day_of_week,
        AvailabilityRule.active == True,  # noqa: E712
    )
    if resource_id:
        q = q.filter(AvailabilityRule.resource_id == resource_id)
    else:
        q = q.filter(AvailabilityRule.resource_id.is_(None))
    return q.order_by(AvailabilityRule.start_time.asc(), AvailabilityRule.id.asc()).all()


def has_resource_rules(db: Session, resource_id: str) -> bool:
    return db.query(AvailabilityRule.id).filter(
        AvailabilityRule.resource_id == resource_id,
        AvailabilityRule.active == True,  # noqa: E712
    ).first() is not None


def list_instructor_schedule(db: Session, instructor_id: str, day_of_week: int) -> list[InstructorAvailability]:
    return (
        db.query(InstructorAvailability)
        .filter(InstructorAvailability.instructor_id == instructor_id,
                InstructorAvailability.day_of_week == day_of_week)
        .order_by(InstructorAvailability.start_time.asc())
        .all()
    )


def list_blackouts(db: Session, start: datetime, end: datetime, resource_id: str | None = None,
                   include_shop_wide: bool = True, product_line: str | None = None) -> list[TimeOff]:
    """
    Time off intersecting [start, end) for the resource, plus the closures of
    `product_line` (a closure with no resource shuts one product line, not both).
    """
    q = db.query(TimeOff).filter(TimeOff.start_at < as_utc(end), TimeOff.end_at > as_utc(start))
    scopes = []
    if include_shop_wide:
        closure = TimeOff.resource_id.is_(None)
        if product_line:
            closure = and_(closure, TimeOff.product_line == product_line)
        scopes.append(closure)
    if resource_id:
        scopes.append(TimeOff.resource_id == resource_id)
    if not scopes:
        return []
    return q.filter(or_(*scopes)).order_by(TimeOff.start_at.asc()).all()


ANY_RESOURCE = object()


def list_bookings(db: Session, start: datetime, end: datetime, statuses: Iterable[str] | None = None,
                  product_line: str | None = None, resource_id=ANY_RESOURCE, client_id: str | None = None,
                  exclude_id: str | None = None) -> list[Booking]:
    """
    Bookings intersecting [start, end). resource_id=None restricts to bookings on
    the shop itself; leave it out to match any resource.
    """
    q = db.query(Booking).filter(Booking.start_at < as_utc(end), Booking.end_at > as_utc(start))
    if statuses is not None:
        q = q.filter(Booking.status.in_(list(statuses)))
    if product_line:
        q = q.filter(Booking.product_line == product_line)
    if resource_id is not ANY_RESOURCE:
        if resource_id is None:
            q = q.filter(Booking.resource_id.is_(None))
        else:
            q = q.filter(Booking.resource_id == resource_id)
    if client_id:
        q = q.filter(Booking.client_id == client_id)
    if exclude_id:
        q = q.filter(Booking.id != exclude_id)
    return q.order_by(Booking.start_at.asc(), Booking.id.asc()).all()


def padded_window(start: datetime, end: datetime, buffer_minutes: int) -> tuple[datetime, datetime]:
    buf = timedelta(minutes=buffer_minutes)
    return as_utc(start) - buf, as_utc(end) + buf


def shares_resource(a: str | None, b: str | None) -> bool:
    """A booking without a resource holds the whole shop, so it contends with every resource."""
    return a is None or b is None or a == b


def list_contending_bookings(db: Session, start: datetime, end: datetime, resource_id: str | None,
                             **filters) -> list[Booking]:
    return [b for b in list_bookings(db, start, end, **filters) if shares_resource(resource_id, b.resource_id)]
