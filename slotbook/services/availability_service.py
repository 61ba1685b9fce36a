import logging
from datetime import datetime

from sqlalchemy.orm import Session

from slotbook.services import booking_store
from slotbook.services.interval_service import contains
from slotbook.services.timezone_service import BusinessZone, as_utc

logger = logging.getLogger(__name__)


def open_intervals(db: Session, zone: BusinessZone, date_str: str, resource_id: str | None = None) -> list[tuple[datetime, datetime]]:
    """
    Open windows for a date, business-local and unmerged: one per matching active
    rule. A staff resource without any rules of its own works shop hours.
    """
    dow = zone.day_of_week(date_str)
    scoped = resource_id if resource_id and booking_store.has_resource_rules(db, resource_id) else None
    out = []
    for rule in booking_store.list_rules_for(db, dow, scoped):
        start = zone.local(date_str, rule.start_time)
        end = zone.local(date_str, rule.end_time)
        if as_utc(end) <= as_utc(start):
            logger.warning("skipping availability rule %s with end %s <= start %s", rule.id, rule.end_time, rule.start_time)
            continue
        out.append((start, end))
    return out


def within_open_interval(intervals, start: datetime, end: datetime) -> bool:
    """True when [start, end) fits entirely inside at least one window."""
    return any(contains(as_utc(s), as_utc(e), as_utc(start), as_utc(end)) for s, e in intervals)


def day_status(db: Session, zone: BusinessZone, date_str: str, resource_id: str | None = None,
               operating_days=None, product_line: str | None = None) -> str:
    """'closed' (no rules / not an operating day), 'blocked' (time off covers every window) or 'open'."""
    if operating_days and zone.day_of_week(date_str) not in set(operating_days):
        return "closed"
    intervals = open_intervals(db, zone, date_str, resource_id)
    if not intervals:
        return "closed"
    for start, end in intervals:
        blackouts = booking_store.list_blackouts(db, as_utc(start), as_utc(end), resource_id,
                                                  product_line=product_line)
        if not any(contains(as_utc(t.start_at), as_utc(t.end_at), as_utc(start), as_utc(end)) for t in blackouts):
            return "open"
    return "blocked"
