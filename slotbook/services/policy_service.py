"""
Advance-notice, duplicate and operating-day rules.

The predicates are pure so they can be checked without a database; BookingPolicy
bundles the per product line parameters (configuration, then Setting overrides).
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from slotbook.core.config import settings
from slotbook.services.interval_service import overlaps
from slotbook.services.timezone_service import BusinessZone, as_utc
from slotbook.services import settings_service

PRODUCT_LINES = ("shop", "cdl")

BASE_BLOCKING_STATUSES = ("accepted", "confirmed", "arrived", "completed", "no_show")
TERMINAL_STATUSES = ("completed", "cancelled", "declined", "no_show")
INACTIVE_STATUSES = ("cancelled", "declined")

PRIVILEGED_ROLES = {
    "shop": ("admin", "barber"),
    "cdl": ("admin", "instructor"),
}


def is_advance_notice_satisfied(now: datetime, start: datetime, min_hours: int | float) -> bool:
    """A start exactly at now + min_hours passes."""
    return as_utc(start) >= as_utc(now) + timedelta(hours=min_hours)


def is_duplicate(existing, candidate_start: datetime, candidate_end: datetime, requester_id: str) -> bool:
    """Requester already holds a non-cancelled, non-declined booking overlapping the candidate."""
    for b in existing:
        if b.client_id != requester_id:
            continue
        if b.status in INACTIVE_STATUSES:
            continue
        if overlaps(as_utc(candidate_start), as_utc(candidate_end), as_utc(b.start_at), as_utc(b.end_at)):
            return True
    return False


def is_operating_day(day_of_week: int, allowed_days) -> bool:
    """Empty allowed set means every day is an operating day."""
    allowed = set(allowed_days or ())
    return not allowed or day_of_week in allowed


def blocking_statuses(pending_blocks: bool = True) -> tuple[str, ...]:
    if pending_blocks:
        return ("requested",) + BASE_BLOCKING_STATUSES
    return BASE_BLOCKING_STATUSES


def parse_days(raw: str | None) -> frozenset[int]:
    out = set()
    for part in (raw or "").split(","):
        part = part.strip()
        if not part:
            continue
        if not part.isdigit() or not 0 <= int(part) <= 6:
            raise ValueError(f"invalid day of week: {part!r}")
        out.add(int(part))
    return frozenset(out)


def is_privileged(role: str | None, product_line: str) -> bool:
    return bool(role) and role in PRIVILEGED_ROLES.get(product_line, ("admin",))


@dataclass
class BookingPolicy:
    product_line: str
    zone: BusinessZone
    buffer_minutes: int = 0
    min_advance_hours: int = 0
    granularity_minutes: int = 30
    operating_days: frozenset = field(default_factory=frozenset)
    auto_confirm_privileged: bool = True
    pending_blocks: bool = True
    cancellation_window_hours: int = 4
    day_start_hour: int = 0
    day_end_hour: int = 24

    @property
    def blocking(self) -> tuple[str, ...]:
        return blocking_statuses(self.pending_blocks)

    def as_dict(self) -> dict:
        return {
            "productLine": self.product_line,
            "timezone": self.zone.name,
            "bufferMinutes": self.buffer_minutes,
            "minAdvanceHours": self.min_advance_hours,
            "granularityMinutes": self.granularity_minutes,
            "operatingDays": sorted(self.operating_days),
            "autoConfirmPrivileged": self.auto_confirm_privileged,
            "pendingBlocks": self.pending_blocks,
            "cancellationWindowHours": self.cancellation_window_hours,
        }


def default_policy(product_line: str) -> BookingPolicy:
    if product_line == "shop":
        return BookingPolicy(
            product_line="shop",
            zone=BusinessZone(settings.SHOP_TIMEZONE),
            buffer_minutes=settings.SHOP_BUFFER_MINUTES,
            min_advance_hours=settings.SHOP_MIN_ADVANCE_HOURS,
            granularity_minutes=settings.SHOP_SLOT_INTERVAL_MINUTES,
            operating_days=parse_days(settings.SHOP_OPERATING_DAYS),
            auto_confirm_privileged=settings.AUTO_CONFIRM_PRIVILEGED,
            pending_blocks=settings.PENDING_REQUESTS_BLOCK,
            cancellation_window_hours=settings.CANCELLATION_WINDOW_HOURS,
        )
    if product_line == "cdl":
        return BookingPolicy(
            product_line="cdl",
            zone=BusinessZone(settings.CDL_TIMEZONE),
            buffer_minutes=settings.CDL_BUFFER_MINUTES,
            min_advance_hours=settings.CDL_MIN_ADVANCE_HOURS,
            granularity_minutes=60,
            operating_days=parse_days(settings.CDL_OPERATING_DAYS),
            auto_confirm_privileged=settings.AUTO_CONFIRM_PRIVILEGED,
            pending_blocks=settings.PENDING_REQUESTS_BLOCK,
            cancellation_window_hours=settings.CANCELLATION_WINDOW_HOURS,
            day_start_hour=settings.CDL_DAY_START_HOUR,
            day_end_hour=settings.CDL_DAY_END_HOUR,
        )
    raise ValueError(f"unknown product line: {product_line!r}")


def get_policy(db: Session, product_line: str) -> BookingPolicy:
    """Configured defaults with per-deployment Setting rows applied on top."""
    policy = default_policy(product_line)
    for name, value in settings_service.get_policy_overrides(db, product_line).items():
        if name == "operating_days":
            policy.operating_days = parse_days(value)
        elif name == "timezone":
            policy.zone = BusinessZone(value)
        elif name in ("auto_confirm_privileged", "pending_blocks"):
            setattr(policy, name, bool(value))
        else:
            setattr(policy, name, int(value))
    return policy
