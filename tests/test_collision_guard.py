import threading
import uuid
from datetime import timedelta

import pytest

from conftest import SHOP_DATE, count_bookings
from slotbook.core.errors import BookingConflict, ConflictReason, InvalidInterval
from slotbook.db.session import SessionLocal
from slotbook.models.time_off import TimeOff
from slotbook.services import booking_service
from slotbook.services.timezone_service import FixedClock


def candidate(zone, time_str, client_id, minutes=30, resource_id=None):
    start = zone.to_instant(SHOP_DATE, time_str)
    return booking_service.new_booking(client_id=client_id, product_line="shop", resource_id=resource_id,
                                       start_at=start, end_at=start + timedelta(minutes=minutes),
                                       payment_method="cash")


def commit(db, policy, clock, time_str, client_id, **kw):
    privileged = kw.pop("privileged", False)
    return booking_service.try_commit(db, candidate(policy.zone, time_str, client_id, **kw), policy, clock,
                                      privileged=privileged)


def reason_of(excinfo) -> ConflictReason:
    return excinfo.value.reason


def test_accepts_free_slot(db, shop_hours, shop_policy, clock):
    b = commit(db, shop_policy, clock, "10:00", "alice")
    assert b.status == "requested"
    assert count_bookings(db) == 1


def test_outside_availability(db, shop_hours, shop_policy, clock):
    with pytest.raises(BookingConflict) as e:
        commit(db, shop_policy, clock, "08:30", "alice")
    assert reason_of(e) == ConflictReason.OUTSIDE_AVAILABILITY
    with pytest.raises(BookingConflict) as e:
        commit(db, shop_policy, clock, "17:45", "alice")
    assert reason_of(e) == ConflictReason.OUTSIDE_AVAILABILITY
    assert count_bookings(db) == 0


def test_blackout_conflict(db, shop_hours, shop_policy, clock):
    zone = shop_policy.zone
    db.add(TimeOff(id=str(uuid.uuid4()), start_at=zone.to_instant(SHOP_DATE, "09:00"),
                   end_at=zone.to_instant(SHOP_DATE, "10:00"), reason="staff meeting"))
    db.commit()
    with pytest.raises(BookingConflict) as e:
        commit(db, shop_policy, clock, "09:30", "alice")
    assert reason_of(e) == ConflictReason.BLACKOUT_CONFLICT
    assert commit(db, shop_policy, clock, "10:00", "alice").id


def test_buffer_between_clients(db, shop_hours, shop_policy, clock):
    commit(db, shop_policy, clock, "14:00", "alice")
    with pytest.raises(BookingConflict) as e:
        commit(db, shop_policy, clock, "14:40", "bob")
    assert reason_of(e) == ConflictReason.SLOT_TAKEN
    assert commit(db, shop_policy, clock, "14:50", "bob").id
    assert count_bookings(db) == 2


def test_duplicate_request_then_retry_after_cancel(db, shop_hours, shop_policy, clock, payments):
    first = commit(db, shop_policy, clock, "11:00", "alice")
    with pytest.raises(BookingConflict) as e:
        commit(db, shop_policy, clock, "11:00", "alice")
    assert reason_of(e) == ConflictReason.DUPLICATE_REQUEST
    booking_service.cancel(db, first.id, "alice", payments, shop_policy, clock)
    again = commit(db, shop_policy, clock, "11:00", "alice")
    assert again.status == "requested"


def test_partial_overlap_is_duplicate_until_cancelled(db, shop_hours, shop_policy, clock, payments):
    held = commit(db, shop_policy, clock, "10:00", "alice")
    with pytest.raises(BookingConflict) as e:
        commit(db, shop_policy, clock, "10:15", "alice")
    assert reason_of(e) == ConflictReason.DUPLICATE_REQUEST
    booking_service.cancel(db, held.id, "alice", payments, shop_policy, clock)
    assert commit(db, shop_policy, clock, "10:15", "alice").status == "requested"
    assert count_bookings(db) == 2


def test_own_booking_still_needs_buffer(db, shop_hours, shop_policy, clock):
    commit(db, shop_policy, clock, "11:00", "alice")
    with pytest.raises(BookingConflict) as e:
        commit(db, shop_policy, clock, "11:30", "alice")
    assert reason_of(e) == ConflictReason.SLOT_TAKEN


def test_too_soon(db, shop_hours, shop_policy):
    clock = FixedClock(shop_policy.zone.to_instant(SHOP_DATE, "06:00"))
    with pytest.raises(BookingConflict) as e:
        commit(db, shop_policy, clock, "17:30", "alice")
    assert reason_of(e) == ConflictReason.TOO_SOON


def test_advance_notice_boundary(db, shop_hours, shop_policy):
    clock = FixedClock(shop_policy.zone.to_instant(SHOP_DATE, "02:00"))
    assert commit(db, shop_policy, clock, "14:00", "alice").id
    clock.advance(seconds=1)
    with pytest.raises(BookingConflict) as e:
        commit(db, shop_policy, clock, "15:00", "bob")
    assert reason_of(e) == ConflictReason.TOO_SOON


def test_privileged_bypasses_hours_and_notice(db, shop_hours, shop_policy):
    clock = FixedClock(shop_policy.zone.to_instant(SHOP_DATE, "07:00"))
    b = commit(db, shop_policy, clock, "08:00", "walk-in", privileged=True)
    assert b.status == "confirmed"
    # but never double-books
    with pytest.raises(BookingConflict) as e:
        commit(db, shop_policy, clock, "08:15", "other", privileged=True)
    assert reason_of(e) == ConflictReason.SLOT_TAKEN


def test_privileged_without_auto_confirm(db, shop_hours, shop_policy, clock):
    shop_policy.auto_confirm_privileged = False
    assert commit(db, shop_policy, clock, "10:00", "walk-in", privileged=True).status == "requested"


def test_resources_do_not_collide(db, shop_hours, shop_policy, clock):
    commit(db, shop_policy, clock, "10:00", "alice", resource_id="barber-1")
    assert commit(db, shop_policy, clock, "10:00", "bob", resource_id="barber-2").id
    with pytest.raises(BookingConflict):
        commit(db, shop_policy, clock, "10:00", "carol", resource_id="barber-1")


def test_shop_wide_booking_holds_every_resource(db, shop_hours, shop_policy, clock):
    commit(db, shop_policy, clock, "10:00", "alice")
    with pytest.raises(BookingConflict) as e:
        commit(db, shop_policy, clock, "10:00", "bob", resource_id="barber-1")
    assert reason_of(e) == ConflictReason.SLOT_TAKEN

    commit(db, shop_policy, clock, "12:00", "carol", resource_id="barber-2")
    with pytest.raises(BookingConflict) as e:
        commit(db, shop_policy, clock, "12:00", "dave")
    assert reason_of(e) == ConflictReason.SLOT_TAKEN
    assert count_bookings(db) == 2


def test_closure_only_shuts_its_own_product_line(db, shop_hours, shop_policy, clock):
    zone = shop_policy.zone
    db.add(TimeOff(id=str(uuid.uuid4()), product_line="cdl", start_at=zone.to_instant(SHOP_DATE, "09:00"),
                   end_at=zone.to_instant(SHOP_DATE, "12:00"), reason="range closed"))
    db.commit()
    assert commit(db, shop_policy, clock, "10:00", "alice").id


def test_invalid_interval(db, shop_hours, shop_policy, clock):
    b = candidate(shop_policy.zone, "10:00", "alice")
    b.end_at = b.start_at
    with pytest.raises(InvalidInterval):
        booking_service.try_commit(db, b, shop_policy, clock)


def test_concurrent_requests_for_one_slot(db, shop_hours, shop_policy, clock):
    n = 8
    barrier = threading.Barrier(n)
    results: list = []
    guard = threading.Lock()

    def attempt(i):
        session = SessionLocal()
        try:
            barrier.wait()
            booking_service.try_commit(session, candidate(shop_policy.zone, "13:00", f"client-{i}"),
                                       shop_policy, clock)
            outcome = "ok"
        except BookingConflict as e:
            outcome = e.reason
        finally:
            session.close()
        with guard:
            results.append(outcome)

    threads = [threading.Thread(target=attempt, args=(i,)) for i in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count("ok") == 1
    assert results.count(ConflictReason.SLOT_TAKEN) == n - 1
    assert count_bookings(db) == 1
