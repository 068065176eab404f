"""
Expiry checks for attendance session tokens.

A token is valid while ``now <= issued_at + validity_window + grace``.
"""

from datetime import datetime, timedelta

DEFAULT_VALIDITY_WINDOW_SECONDS = 60
DEFAULT_GRACE_SECONDS = 30


def expires_at(issued_at: datetime,
               validity_window_seconds: float = DEFAULT_VALIDITY_WINDOW_SECONDS) -> datetime:
    """Nominal expiry reported to the issuer (grace is not advertised)."""
    return issued_at + timedelta(seconds=validity_window_seconds)


def is_expired(issued_at: datetime, now: datetime,
               validity_window_seconds: float = DEFAULT_VALIDITY_WINDOW_SECONDS,
               grace_seconds: float = DEFAULT_GRACE_SECONDS) -> bool:
    deadline = issued_at + timedelta(seconds=validity_window_seconds + grace_seconds)
    return now > deadline
