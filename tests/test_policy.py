from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from slotbook.models.setting import Setting
from slotbook.services import settings_service
from slotbook.services.policy_service import (
    BASE_BLOCKING_STATUSES, blocking_statuses, get_policy, is_advance_notice_satisfied, is_duplicate,
    is_operating_day, is_privileged, parse_days,
)

NOW = datetime(2026, 3, 5, 12, 0, tzinfo=timezone.utc)


def test_advance_notice_boundary_is_inclusive():
    assert is_advance_notice_satisfied(NOW, NOW + timedelta(hours=12), 12)
    assert not is_advance_notice_satisfied(NOW, NOW + timedelta(hours=12) - timedelta(seconds=1), 12)
    assert is_advance_notice_satisfied(NOW, NOW, 0)


def _b(client, start_h, end_h, status="requested"):
    return SimpleNamespace(client_id=client, status=status,
                           start_at=NOW + timedelta(hours=start_h), end_at=NOW + timedelta(hours=end_h))


def test_duplicate_only_counts_own_live_bookings():
    start, end = NOW + timedelta(hours=1), NOW + timedelta(hours=2)
    assert is_duplicate([_b("me", 1, 2)], start, end, "me")
    assert is_duplicate([_b("me", 1.5, 3, "accepted")], start, end, "me")
    assert not is_duplicate([_b("other", 1, 2)], start, end, "me")
    assert not is_duplicate([_b("me", 1, 2, "cancelled"), _b("me", 1, 2, "declined")], start, end, "me")
    assert not is_duplicate([_b("me", 2, 3)], start, end, "me")


def test_operating_days():
    assert is_operating_day(3, frozenset())
    assert is_operating_day(6, parse_days("0,6"))
    assert not is_operating_day(3, parse_days("0,6"))


def test_parse_days_rejects_garbage():
    assert parse_days("") == frozenset()
    assert parse_days(" 1, 2 ,") == frozenset({1, 2})
    with pytest.raises(ValueError):
        parse_days("7")
    with pytest.raises(ValueError):
        parse_days("mon")


def test_pending_requests_block_only_when_configured():
    assert "requested" in blocking_statuses(True)
    assert blocking_statuses(False) == BASE_BLOCKING_STATUSES
    assert "cancelled" not in blocking_statuses(True)


def test_privileged_roles_per_line():
    assert is_privileged("barber", "shop")
    assert not is_privileged("barber", "cdl")
    assert is_privileged("instructor", "cdl")
    assert is_privileged("admin", "cdl")
    assert not is_privileged("client", "shop")
    assert not is_privileged(None, "shop")


def test_setting_overrides_apply_and_clear(db):
    base = get_policy(db, "shop")
    settings_service.set_policy_overrides(db, "shop", {
        "buffer_minutes": 0, "operating_days": "2,3", "pending_blocks": False, "timezone": "America/Denver",
    }, actor_id="admin-1")
    db.commit()
    policy = get_policy(db, "shop")
    assert policy.buffer_minutes == 0
    assert policy.operating_days == frozenset({2, 3})
    assert policy.pending_blocks is False
    assert policy.zone.name == "America/Denver"
    assert db.get(Setting, "POLICY.shop.buffer_minutes").updated_by == "admin-1"
    # cdl is untouched
    assert settings_service.get_policy_overrides(db, "cdl") == {}

    settings_service.set_policy_overrides(db, "shop", {"buffer_minutes": None, "pending_blocks": None})
    db.commit()
    policy = get_policy(db, "shop")
    assert policy.buffer_minutes == base.buffer_minutes
    assert policy.pending_blocks == base.pending_blocks


def test_invalid_overrides_rejected(db):
    with pytest.raises(ValueError):
        settings_service.set_policy_overrides(db, "shop", {"granularity_minutes": 0})
    with pytest.raises(ValueError):
        settings_service.set_policy_overrides(db, "shop", {"buffer_minutes": -5})
    with pytest.raises(ValueError):
        settings_service.set_policy_overrides(db, "shop", {"colour": "red"})
