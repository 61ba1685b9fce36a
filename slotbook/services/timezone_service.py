"""
Business time zone conversions.

Opening hours and day-of-week are defined in the business zone; everything
that is stored or compared is an aware UTC instant. Conversions go through
zoneinfo so DST transitions land on the right offset.
"""
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from slotbook.core.errors import InvalidTimeInput


def parse_date(date_str: str) -> date:
    try:
        return date.fromisoformat((date_str or "").strip())
    except (TypeError, ValueError):
        raise InvalidTimeInput(f"invalid date: {date_str!r} (expected YYYY-MM-DD)")


def parse_time(time_str: str) -> time:
    """Parse HH:MM (seconds tolerated, as stored by some admin tools)."""
    s = (time_str or "").strip()
    parts = s.split(":")
    if len(parts) not in (2, 3) or not all(p.isdigit() for p in parts):
        raise InvalidTimeInput(f"invalid time: {time_str!r} (expected HH:MM)")
    hh, mm = int(parts[0]), int(parts[1])
    if not (0 <= hh <= 23 and 0 <= mm <= 59):
        raise InvalidTimeInput(f"invalid time: {time_str!r}")
    return time(hh, mm)


def hhmm(t: time | datetime) -> str:
    return f"{t.hour:02d}:{t.minute:02d}"


class BusinessZone:
    def __init__(self, name: str):
        try:
            self.tz = ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            raise InvalidTimeInput(f"unknown time zone: {name!r}")
        self.name = name

    def __repr__(self):
        return f"BusinessZone({self.name!r})"

    def local(self, date_str: str, time_str: str) -> datetime:
        """Aware business-local datetime for a civil date + wall time."""
        d = parse_date(date_str)
        t = parse_time(time_str)
        # fold=0: ambiguous times resolve to the first occurrence, gaps shift forward.
        return datetime.combine(d, t).replace(tzinfo=self.tz, fold=0)

    def to_instant(self, date_str: str, time_str: str) -> datetime:
        return self.local(date_str, time_str).astimezone(timezone.utc)

    def to_local(self, instant: datetime) -> datetime:
        if instant.tzinfo is None:
            # naive values come back from SQLite; they were written as UTC
            instant = instant.replace(tzinfo=timezone.utc)
        return instant.astimezone(self.tz)

    def local_date_str(self, instant: datetime) -> str:
        return self.to_local(instant).date().isoformat()

    def local_time_str(self, instant: datetime) -> str:
        return hhmm(self.to_local(instant))

    def day_of_week(self, date_str: str) -> int:
        """0=Sunday .. 6=Saturday."""
        return (parse_date(date_str).weekday() + 1) % 7

    def day_bounds(self, date_str: str) -> tuple[datetime, datetime]:
        """Half-open [start, end) of the civil day in UTC. 23h or 25h on DST days."""
        d = parse_date(date_str)
        start = datetime.combine(d, time(0, 0)).replace(tzinfo=self.tz)
        end = datetime.combine(d + timedelta(days=1), time(0, 0)).replace(tzinfo=self.tz)
        return start.astimezone(timezone.utc), end.astimezone(timezone.utc)

    def dates_touched(self, start: datetime, end: datetime) -> list[str]:
        """Local civil dates covered by [start, end)."""
        first = self.to_local(start).date()
        last = self.to_local(end - timedelta(microseconds=1)).date()
        out = []
        d = first
        while d <= last:
            out.append(d.isoformat())
            d += timedelta(days=1)
        return out


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Clock:
    def now(self) -> datetime:
        raise NotImplementedError


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """Clock pinned to one instant; tests move it with advance()."""

    def __init__(self, instant: datetime):
        self.instant = as_utc(instant)

    def now(self) -> datetime:
        return self.instant

    def advance(self, **kwargs) -> None:
        self.instant = self.instant + timedelta(**kwargs)
