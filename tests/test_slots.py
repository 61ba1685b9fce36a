import uuid
from datetime import datetime, timedelta, timezone

from conftest import SHOP_DATE
from slotbook.models.availability_rule import AvailabilityRule
from slotbook.models.booking import Booking
from slotbook.models.time_off import TimeOff
from slotbook.services.availability_service import day_status, open_intervals
from slotbook.services.slot_service import generate_slots
from slotbook.services.timezone_service import FixedClock


def seed_booking(db, zone, time_str, minutes=30, client_id="someone", status="requested", resource_id=None):
    start = zone.to_instant(SHOP_DATE, time_str)
    b = Booking(id=str(uuid.uuid4()), client_id=client_id, product_line="shop", resource_id=resource_id,
                start_at=start, end_at=start + timedelta(minutes=minutes), status=status)
    db.add(b)
    db.commit()
    return b


def block(db, zone, start, end, resource_id=None):
    t = TimeOff(id=str(uuid.uuid4()), resource_id=resource_id, start_at=zone.to_instant(SHOP_DATE, start),
                end_at=zone.to_instant(SHOP_DATE, end), reason="test")
    db.add(t)
    db.commit()
    return t


def test_full_open_day(db, shop_hours, shop_policy, clock):
    slots = generate_slots(db, shop_policy, SHOP_DATE, 30, clock=clock)
    assert slots[0] == "09:00"
    assert slots[-1] == "17:30"
    assert len(slots) == 18


def test_listing_is_idempotent(db, shop_hours, shop_policy, clock):
    seed_booking(db, shop_policy.zone, "11:00")
    first = generate_slots(db, shop_policy, SHOP_DATE, 30, clock=clock)
    second = generate_slots(db, shop_policy, SHOP_DATE, 30, clock=clock)
    assert first == second
    assert first == sorted(first)


def test_blackout_removes_covered_starts(db, shop_hours, shop_policy, clock):
    block(db, shop_policy.zone, "09:00", "10:00")
    slots = generate_slots(db, shop_policy, SHOP_DATE, 30, clock=clock)
    assert "09:00" not in slots
    assert "09:30" not in slots
    assert slots[0] == "10:00"


def test_buffer_around_existing_booking(db, shop_hours, shop_policy, clock):
    seed_booking(db, shop_policy.zone, "14:00")
    slots = generate_slots(db, shop_policy, SHOP_DATE, 30, granularity_minutes=10, clock=clock)
    assert "14:40" not in slots
    assert "14:45" not in slots  # not on the 10 minute grid
    assert "14:50" in slots
    assert "13:20" not in slots
    assert "13:10" in slots


def test_cancelled_and_declined_do_not_block(db, shop_hours, shop_policy, clock):
    seed_booking(db, shop_policy.zone, "14:00", status="cancelled")
    seed_booking(db, shop_policy.zone, "15:00", status="declined")
    slots = generate_slots(db, shop_policy, SHOP_DATE, 30, clock=clock)
    assert "14:00" in slots
    assert "15:00" in slots


def test_pending_request_blocks_only_when_configured(db, shop_hours, shop_policy, clock):
    seed_booking(db, shop_policy.zone, "14:00", status="requested")
    assert "14:00" not in generate_slots(db, shop_policy, SHOP_DATE, 30, clock=clock)
    shop_policy.pending_blocks = False
    assert "14:00" in generate_slots(db, shop_policy, SHOP_DATE, 30, clock=clock)


def test_advance_notice_hides_near_starts(db, shop_hours, shop_policy):
    # 02:00 local; 12h notice leaves 14:00 onwards
    clock = FixedClock(shop_policy.zone.to_instant(SHOP_DATE, "02:00"))
    slots = generate_slots(db, shop_policy, SHOP_DATE, 30, clock=clock)
    assert slots[0] == "14:00"
    privileged = generate_slots(db, shop_policy, SHOP_DATE, 30, clock=clock, privileged=True)
    assert privileged[0] == "09:00"


def test_privileged_listing_ignores_blackouts(db, shop_hours, shop_policy, clock):
    block(db, shop_policy.zone, "09:00", "12:00")
    assert "09:00" in generate_slots(db, shop_policy, SHOP_DATE, 30, clock=clock, privileged=True)


def test_closed_and_non_operating_days(db, shop_hours, shop_policy, clock):
    assert generate_slots(db, shop_policy, "2026-03-09", 30, clock=clock) == []
    assert day_status(db, shop_policy.zone, "2026-03-09") == "closed"
    shop_policy.operating_days = frozenset({3})
    assert generate_slots(db, shop_policy, SHOP_DATE, 30, clock=clock) == []
    assert day_status(db, shop_policy.zone, SHOP_DATE, operating_days={3}) == "closed"


def test_day_status_blocked_when_time_off_covers_everything(db, shop_hours, shop_policy):
    assert day_status(db, shop_policy.zone, SHOP_DATE) == "open"
    block(db, shop_policy.zone, "08:00", "19:00")
    assert day_status(db, shop_policy.zone, SHOP_DATE) == "blocked"


def test_duration_longer_than_window(db, shop_hours, shop_policy, clock):
    assert generate_slots(db, shop_policy, SHOP_DATE, 10 * 60, clock=clock) == []


def test_split_shift_and_invalid_rules(db, shop_policy, clock):
    db.add_all([
        AvailabilityRule(id=str(uuid.uuid4()), day_of_week=2, start_time="09:00", end_time="12:00", active=True),
        AvailabilityRule(id=str(uuid.uuid4()), day_of_week=2, start_time="13:00", end_time="15:00", active=True),
        AvailabilityRule(id=str(uuid.uuid4()), day_of_week=2, start_time="20:00", end_time="19:00", active=True),
        AvailabilityRule(id=str(uuid.uuid4()), day_of_week=2, start_time="06:00", end_time="08:00", active=False),
    ])
    db.commit()
    assert len(open_intervals(db, shop_policy.zone, SHOP_DATE)) == 2
    slots = generate_slots(db, shop_policy, SHOP_DATE, 60, clock=clock)
    assert slots == ["09:00", "09:30", "10:00", "10:30", "11:00", "13:00", "13:30", "14:00"]


def test_resource_rules_and_fallback(db, shop_hours, shop_policy, clock):
    barber = str(uuid.uuid4())
    # no rules of their own: shop hours
    assert generate_slots(db, shop_policy, SHOP_DATE, 30, resource_id=barber, clock=clock)[0] == "09:00"
    db.add(AvailabilityRule(id=str(uuid.uuid4()), resource_id=barber, day_of_week=2,
                            start_time="12:00", end_time="14:00", active=True))
    db.commit()
    slots = generate_slots(db, shop_policy, SHOP_DATE, 30, resource_id=barber, clock=clock)
    assert slots == ["12:00", "12:30", "13:00", "13:30"]
    # another barber's booking does not block this one
    seed_booking(db, shop_policy.zone, "12:00", resource_id=str(uuid.uuid4()))
    assert "12:00" in generate_slots(db, shop_policy, SHOP_DATE, 30, resource_id=barber, clock=clock)


def test_labels_are_local_on_dst_day(db, shop_policy):
    # Sunday 2026-03-08 loses an hour at 02:00
    db.add(AvailabilityRule(id=str(uuid.uuid4()), day_of_week=0, start_time="01:00", end_time="04:00", active=True))
    db.commit()
    clock = FixedClock(datetime(2026, 3, 1, tzinfo=timezone.utc))
    slots = generate_slots(db, shop_policy, "2026-03-08", 30, clock=clock)
    assert "02:00" not in slots and "02:30" not in slots
    assert slots[0] == "01:00"
    assert slots[-1] == "03:30"
