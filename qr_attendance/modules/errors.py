"""
Error taxonomy for the attendance verification core.

Expected conditions (bad input, expiry, geofence misses, duplicates) are
reported as a FailureReason inside a result object. The exception classes
below are only raised for caller-contract violations on the issuing side
and for conditions the scanning flow cannot decide on its own, such as an
unreachable store.
"""

from enum import Enum
from typing import Optional


class FailureReason(Enum):
    """Tagged failure reasons, each with a default message and retry hint."""

    LOCATION_UNAVAILABLE = (
        'location_unavailable',
        'Unable to get your location. Please enable location services and try again.',
        True
    )
    INVALID_QR_FORMAT = (
        'invalid_qr_format',
        "Invalid QR code. Please ensure you're scanning the correct attendance QR code.",
        True
    )
    MALFORMED_TOKEN = (
        'malformed_token',
        'The scanned QR code does not contain attendance data.',
        True
    )
    INCOMPLETE_TOKEN = (
        'incomplete_token',
        'The scanned QR code is missing attendance session details.',
        True
    )
    EXPIRED_SESSION = (
        'expired_session',
        'This QR code has expired. Please ask your instructor for a new one.',
        False
    )
    CLASS_NOT_FOUND = (
        'class_not_found',
        'Class not found.',
        False
    )
    INCOMPLETE_CLASS_DATA = (
        'incomplete_class_data',
        'Class location data is incomplete. Please contact your instructor.',
        False
    )
    INVALID_LOCATION = (
        'invalid_location',
        'Location coordinates must be finite numbers.',
        True
    )
    OUT_OF_GEOFENCE = (
        'out_of_geofence',
        'You are not within the required location to mark attendance.',
        False
    )
    SESSION_DUPLICATE = (
        'session_duplicate',
        'Attendance has already been marked for this session.',
        False
    )
    COOLDOWN_DUPLICATE = (
        'cooldown_duplicate',
        'Attendance was already marked for this class recently. Please wait before marking again.',
        False
    )
    DAILY_DUPLICATE = (
        'daily_duplicate',
        'Attendance already marked today for this class.',
        False
    )
    STORE_UNAVAILABLE = (
        'store_unavailable',
        'Network error. Please check your internet connection and try again.',
        True
    )

    def __init__(self, code: str, default_message: str, recoverable: bool):
        self.code = code
        self.default_message = default_message
        self.recoverable = recoverable

    @property
    def is_duplicate(self) -> bool:
        return self in (FailureReason.SESSION_DUPLICATE,
                        FailureReason.COOLDOWN_DUPLICATE,
                        FailureReason.DAILY_DUPLICATE)


class AttendanceError(Exception):
    """Base class for exceptions raised by the attendance core."""

    reason: Optional[FailureReason] = None

    def __init__(self, message: Optional[str] = None):
        if message is None and self.reason is not None:
            message = self.reason.default_message
        super().__init__(message)
        self.message = message


class IncompleteClassData(AttendanceError):
    """Class record lacks a name, radius or usable coordinates."""
    reason = FailureReason.INCOMPLETE_CLASS_DATA


class InvalidLocation(AttendanceError):
    """A latitude/longitude pair is missing or not finite."""
    reason = FailureReason.INVALID_LOCATION


class ClassNotFound(AttendanceError):
    reason = FailureReason.CLASS_NOT_FOUND


class LocationUnavailable(AttendanceError):
    """Device location could not be obtained (denied, timed out, unsupported)."""
    reason = FailureReason.LOCATION_UNAVAILABLE


class StoreUnavailable(AttendanceError):
    """The attendance store could not be read or written."""
    reason = FailureReason.STORE_UNAVAILABLE


class QRCodeGenerationError(AttendanceError):
    """The QR image encoder could not render a token."""
