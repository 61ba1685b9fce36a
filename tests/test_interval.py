from datetime import datetime, timedelta, timezone

import pytest

from slotbook.core.errors import InvalidInterval
from slotbook.services.interval_service import contains, overlaps, pad, validate

T0 = datetime(2026, 3, 10, 19, 0, tzinfo=timezone.utc)


def at(minutes: int) -> datetime:
    return T0 + timedelta(minutes=minutes)


def test_touching_intervals_do_not_overlap():
    assert not overlaps(at(0), at(30), at(30), at(60))
    assert not overlaps(at(30), at(60), at(0), at(30))


def test_partial_and_nested_overlap():
    assert overlaps(at(0), at(30), at(29), at(60))
    assert overlaps(at(0), at(60), at(10), at(20))
    assert overlaps(at(10), at(20), at(0), at(60))


@pytest.mark.parametrize("gap,buffer,expected", [
    (0, 15, True),
    (10, 15, True),
    (14, 15, True),
    (15, 15, False),
    (20, 15, False),
    (1, 0, False),
])
def test_buffer_is_symmetric(gap, buffer, expected):
    a = (at(0), at(30))
    b = (at(30 + gap), at(60 + gap))
    assert overlaps(*a, *b, buffer_minutes=buffer) is expected
    assert overlaps(*b, *a, buffer_minutes=buffer) is expected


def test_inverted_or_empty_interval_rejected():
    with pytest.raises(InvalidInterval):
        validate(at(30), at(0))
    with pytest.raises(InvalidInterval):
        validate(at(0), at(0))
    with pytest.raises(InvalidInterval):
        overlaps(at(0), at(0), at(10), at(20))


def test_negative_buffer_rejected():
    with pytest.raises(InvalidInterval):
        pad(at(0), at(30), -5)
    with pytest.raises(InvalidInterval):
        overlaps(at(0), at(30), at(40), at(50), buffer_minutes=-1)


def test_contains_is_inclusive_of_edges():
    assert contains(at(0), at(60), at(0), at(60))
    assert contains(at(0), at(60), at(15), at(45))
    assert not contains(at(0), at(60), at(30), at(61))
