"""
Waitlist for fully booked dates. Clients put themselves on it; staff work
through it when an opening appears.
"""
import logging
import uuid
from datetime import timedelta

from sqlalchemy.orm import Session

from slotbook.core.errors import InvalidTimeInput, RateLimited
from slotbook.models.waitlist_entry import WaitlistEntry
from slotbook.services.audit_service import log_audit
from slotbook.services.policy_service import BookingPolicy
from slotbook.services.timezone_service import Clock, SystemClock, parse_date

logger = logging.getLogger(__name__)

JOINS_PER_HOUR = 3
ENTRY_STATUSES = ("waiting", "notified", "removed")


def entry_out(e: WaitlistEntry) -> dict:
    return {"id": e.id, "clientId": e.client_id, "productLine": e.product_line, "date": e.date,
            "serviceId": e.service_id, "status": e.status,
            "createdAt": e.created_at.isoformat() if e.created_at else None}


def join_waitlist(db: Session, policy: BookingPolicy, client_id: str, date_str: str,
                  service_id: str | None = None, clock: Clock | None = None) -> WaitlistEntry:
    """One entry per client, product line and date; joining again while waiting is a no-op."""
    clock = clock or SystemClock()
    date_str = parse_date(date_str).isoformat()
    now = clock.now()
    if date_str < policy.zone.local_date_str(now):
        raise InvalidTimeInput("date is in the past")

    entry = (
        db.query(WaitlistEntry)
        .filter(WaitlistEntry.client_id == client_id, WaitlistEntry.product_line == policy.product_line,
                WaitlistEntry.date == date_str)
        .first()
    )
    if entry is not None and entry.status == "waiting":
        return entry

    recent = (
        db.query(WaitlistEntry)
        .filter(WaitlistEntry.client_id == client_id, WaitlistEntry.created_at >= now - timedelta(hours=1))
        .count()
    )
    if recent >= JOINS_PER_HOUR:
        logger.info("waitlist rate limit hit by %s", client_id)
        raise RateLimited("too many waitlist requests, try again later")

    if entry is None:
        entry = WaitlistEntry(id=str(uuid.uuid4()), client_id=client_id, product_line=policy.product_line,
                              date=date_str)
        db.add(entry)
    entry.service_id = service_id
    entry.status = "waiting"
    entry.created_at = now
    log_audit(db, client_id, "waitlist.joined", "waitlist_entry", entry.id, entry_out(entry))
    db.commit()
    return entry


def leave_waitlist(db: Session, entry_id: str, client_id: str) -> WaitlistEntry:
    entry = db.get(WaitlistEntry, entry_id)
    if not entry or entry.client_id != client_id:
        raise LookupError("waitlist entry not found")
    if entry.status != "removed":
        entry.status = "removed"
        log_audit(db, client_id, "waitlist.left", "waitlist_entry", entry.id, {})
        db.commit()
    return entry


def set_status(db: Session, entry_id: str, status: str, actor_id: str) -> WaitlistEntry:
    if status not in ENTRY_STATUSES:
        raise ValueError(f"status must be one of {', '.join(ENTRY_STATUSES)}")
    entry = db.get(WaitlistEntry, entry_id)
    if not entry:
        raise LookupError("waitlist entry not found")
    previous = entry.status
    entry.status = status
    log_audit(db, actor_id, f"waitlist.{status}", "waitlist_entry", entry.id, {"from": previous})
    db.commit()
    return entry


def list_for_client(db: Session, client_id: str) -> list[WaitlistEntry]:
    return (
        db.query(WaitlistEntry)
        .filter(WaitlistEntry.client_id == client_id, WaitlistEntry.status != "removed")
        .order_by(WaitlistEntry.date.asc())
        .all()
    )


def list_for_date(db: Session, date_str: str | None = None, product_line: str | None = None,
                  status: str | None = "waiting") -> list[WaitlistEntry]:
    """Oldest first, so staff offer openings in the order clients asked."""
    q = db.query(WaitlistEntry)
    if date_str:
        q = q.filter(WaitlistEntry.date == parse_date(date_str).isoformat())
    if product_line:
        q = q.filter(WaitlistEntry.product_line == product_line)
    if status:
        q = q.filter(WaitlistEntry.status == status)
    return q.order_by(WaitlistEntry.date.asc(), WaitlistEntry.created_at.asc()).all()
