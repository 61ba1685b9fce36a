"""Half-open interval arithmetic used by every availability and collision check."""
from datetime import datetime, timedelta

from slotbook.core.errors import InvalidInterval


def validate(start: datetime, end: datetime) -> None:
    if start is None or end is None:
        raise InvalidInterval("interval bounds are required")
    if end <= start:
        raise InvalidInterval(f"interval end {end.isoformat()} must be after start {start.isoformat()}")


def pad(start: datetime, end: datetime, buffer_minutes: int = 0) -> tuple[datetime, datetime]:
    if buffer_minutes < 0:
        raise InvalidInterval("buffer must be >= 0")
    buf = timedelta(minutes=buffer_minutes)
    return start - buf, end + buf


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime,
             buffer_minutes: int = 0) -> bool:
    """
    True when [a_start, a_end) intersects [b_start, b_end) padded by the buffer.

    B is the existing booking; the buffer widens it on both sides. Swapping A and B
    gives the same answer since padding one side of a symmetric test is equivalent
    to shrinking the gap on either.
    """
    validate(a_start, a_end)
    validate(b_start, b_end)
    pb_start, pb_end = pad(b_start, b_end, buffer_minutes)
    return a_start < pb_end and a_end > pb_start


def contains(outer_start: datetime, outer_end: datetime, start: datetime, end: datetime) -> bool:
    validate(outer_start, outer_end)
    validate(start, end)
    return outer_start <= start and end <= outer_end
