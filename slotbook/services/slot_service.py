"""
Advisory slot listing. Results go stale as soon as they are returned; the
collision guard re-checks everything at commit time.
"""
from datetime import timedelta

from sqlalchemy.orm import Session

from slotbook.core.errors import InvalidInterval
from slotbook.services import booking_store
from slotbook.services.availability_service import open_intervals
from slotbook.services.interval_service import overlaps
from slotbook.services.policy_service import BookingPolicy, is_advance_notice_satisfied, is_operating_day
from slotbook.services.timezone_service import Clock, SystemClock, as_utc, hhmm


def generate_slots(db: Session, policy: BookingPolicy, date_str: str, duration_minutes: int,
                   granularity_minutes: int | None = None, resource_id: str | None = None,
                   clock: Clock | None = None, privileged: bool = False) -> list[str]:
    if duration_minutes is None or duration_minutes <= 0:
        raise InvalidInterval("duration must be > 0 minutes")
    granularity = granularity_minutes or policy.granularity_minutes
    if granularity <= 0:
        raise InvalidInterval("granularity must be > 0 minutes")
    clock = clock or SystemClock()
    zone = policy.zone

    if not is_operating_day(zone.day_of_week(date_str), policy.operating_days):
        return []
    intervals = [(as_utc(s), as_utc(e)) for s, e in open_intervals(db, zone, date_str, resource_id)]
    if not intervals:
        return []

    window_start = min(s for s, _ in intervals)
    window_end = max(e for _, e in intervals)
    busy = booking_store.list_contending_bookings(
        db, *booking_store.padded_window(window_start, window_end, policy.buffer_minutes), resource_id,
        statuses=policy.blocking, product_line=policy.product_line,
    )
    busy = [(as_utc(b.start_at), as_utc(b.end_at)) for b in busy]
    blackouts = [] if privileged else [
        (as_utc(t.start_at), as_utc(t.end_at))
        for t in booking_store.list_blackouts(db, window_start, window_end, resource_id,
                                             product_line=policy.product_line)
    ]

    now = clock.now()
    duration = timedelta(minutes=duration_minutes)
    step = timedelta(minutes=granularity)
    found = set()
    for open_start, open_end in intervals:
        start = open_start
        while start + duration <= open_end:
            end = start + duration
            if (privileged or is_advance_notice_satisfied(now, start, policy.min_advance_hours)) \
                    and not any(overlaps(start, end, bs, be, policy.buffer_minutes) for bs, be in busy) \
                    and not any(overlaps(start, end, ts, te) for ts, te in blackouts):
                found.add(hhmm(zone.to_local(start)))
            start += step
    return sorted(found)
