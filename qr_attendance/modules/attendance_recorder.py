"""
Attendance Recorder Module - QR Attendance Verifier

This module turns a fully validated scan into a persisted attendance
record. It decides present/late from the time elapsed since the token
was issued, writes the record in one insert, and hands a confirmation to
the notification system without letting notification problems affect
the outcome.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from qr_attendance.config import AttendancePolicy
from qr_attendance.modules.attendance_store import (
    STATUS_LATE,
    STATUS_PRESENT,
    AttendanceRecord,
    AttendanceStore,
)
from qr_attendance.modules.duplicate_guard import local_day_bounds
from qr_attendance.modules.errors import FailureReason
from qr_attendance.modules.geofence import Coordinates
from qr_attendance.modules.token_codec import SessionToken


def minutes_late(scan_time: datetime, issued_at: datetime) -> int:
    """Whole minutes elapsed since issuance, floored."""
    return math.floor((scan_time - issued_at) / timedelta(minutes=1))


def determine_status(scan_time: datetime, issued_at: datetime,
                     late_threshold: timedelta = timedelta(minutes=15)) -> str:
    """``late`` once more than the threshold has elapsed since issuance."""
    if scan_time - issued_at > late_threshold:
        return STATUS_LATE
    return STATUS_PRESENT


@dataclass(frozen=True)
class RecordResult:
    record: Optional[AttendanceRecord] = None
    reason: Optional[FailureReason] = None
    existing: Optional[AttendanceRecord] = None

    @property
    def success(self) -> bool:
        return self.record is not None


class AttendanceRecorder:
    """
    Computes attendance status and performs the single persisted write.
    """

    def __init__(self, store: AttendanceStore, policy: Optional[AttendancePolicy] = None,
                 notifier=None):
        """
        Args:
            store: AttendanceStore used for the insert
            policy: Timing policy (late threshold, timezone)
            notifier: Optional object with ``send_attendance_confirmation(record, **details)``
        """
        self.store = store
        self.policy = policy or AttendancePolicy()
        self.notifier = notifier
        self.logger = logging.getLogger(__name__)

    def record(self, student_id: str, token: SessionToken, scan_location: Coordinates,
               scan_time: datetime, class_name: Optional[str] = None,
               student_email: Optional[str] = None,
               student_name: Optional[str] = None) -> RecordResult:
        """
        Persist attendance for a validated scan.

        Returns:
            RecordResult: the created record, or the duplicate reason when the
            store's uniqueness constraint rejected the insert

        Raises:
            StoreUnavailable: if the write could not be performed
        """
        issued_at = token.issued_at
        _, _, scan_date = local_day_bounds(scan_time, self.policy)

        candidate = AttendanceRecord(
            session_id=token.session_id,
            student_id=student_id,
            class_id=token.class_id,
            timestamp=scan_time,
            status=determine_status(scan_time, issued_at, self.policy.late_threshold),
            scan_location=scan_location,
            scan_date=scan_date,
            issued_at=issued_at,
            minutes_late=max(0, minutes_late(scan_time, issued_at))
        )

        result = self.store.insert_if_absent(candidate)
        if not result.inserted:
            return RecordResult(reason=result.conflict, existing=result.existing)

        record = result.record
        self.logger.info(
            f"Attendance recorded: student {student_id}, class {token.class_id}, "
            f"session {token.session_id}, status {record.status}"
        )

        self._notify(record, class_name, student_email, student_name)
        return RecordResult(record=record)

    def _notify(self, record: AttendanceRecord, class_name: Optional[str],
                student_email: Optional[str], student_name: Optional[str]) -> None:
        """Fire-and-forget confirmation; failures are logged only."""
        if self.notifier is None:
            return
        try:
            self.notifier.send_attendance_confirmation(
                record,
                class_name=class_name,
                recipient=student_email,
                student_name=student_name
            )
        except Exception as e:
            self.logger.error(f"Attendance confirmation failed for {record.student_id}: {str(e)}")
