from datetime import datetime, timedelta, timezone

import pytest

from qr_attendance.modules.expiry import expires_at, is_expired

ISSUED = datetime(2025, 9, 15, 9, 0, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize("elapsed, expired", [
    (0, False),
    (60, False),
    (90, False),
    (91, True),
    (125, True),
])
def test_default_window_plus_grace(elapsed, expired):
    assert is_expired(ISSUED, ISSUED + timedelta(seconds=elapsed), 60, 30) is expired


def test_boundary_is_inclusive_to_the_microsecond():
    deadline = ISSUED + timedelta(seconds=90)

    assert is_expired(ISSUED, deadline) is False
    assert is_expired(ISSUED, deadline + timedelta(microseconds=1)) is True


def test_custom_window_and_grace():
    assert is_expired(ISSUED, ISSUED + timedelta(seconds=10), 5, 5) is False
    assert is_expired(ISSUED, ISSUED + timedelta(seconds=11), 5, 5) is True


def test_reported_expiry_excludes_grace():
    assert expires_at(ISSUED, 60) == ISSUED + timedelta(seconds=60)
