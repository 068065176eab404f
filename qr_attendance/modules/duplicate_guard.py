"""
Duplicate Guard Module - QR Attendance Verifier

Runs the three existence checks that stop a student from being recorded
twice, in order, stopping at the first hit:

1. session-exact: a record already exists for (student, session)
2. cooldown: a record exists for (student, class) within the cooldown window
3. daily cap: a record exists for (student, class) on the same local day

These checks give the caller a precise message. Correctness under
concurrent scans comes from the store's uniqueness constraints, which the
recorder relies on at insert time.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Tuple

from qr_attendance.config import AttendancePolicy
from qr_attendance.modules.attendance_store import AttendanceRecord, AttendanceStore
from qr_attendance.modules.errors import FailureReason


@dataclass(frozen=True)
class DuplicateCheckResult:
    reason: Optional[FailureReason] = None
    existing: Optional[AttendanceRecord] = None

    @property
    def blocked(self) -> bool:
        return self.reason is not None


def local_day_bounds(moment: datetime, policy: AttendancePolicy) -> Tuple[datetime, datetime, str]:
    """
    Start and end (exclusive) of the institution-local calendar day containing ``moment``,
    plus the day as ``YYYY-MM-DD``.
    """
    local = moment.astimezone(policy.tzinfo)
    start = local.replace(hour=0, minute=0, second=0, microsecond=0)
    # Re-localize after adding a day so DST transitions give the real next midnight
    next_day = (start + timedelta(days=1)).date()
    end = datetime(next_day.year, next_day.month, next_day.day, tzinfo=policy.tzinfo)
    return start, end, local.date().isoformat()


class DuplicateGuard:
    """Fast-path duplicate detection ahead of the attendance insert."""

    def __init__(self, store: AttendanceStore, policy: Optional[AttendancePolicy] = None):
        self.store = store
        self.policy = policy or AttendancePolicy()
        self.logger = logging.getLogger(__name__)

    def check(self, student_id: str, class_id: str, session_id: str,
              now: datetime) -> DuplicateCheckResult:
        """
        Raises:
            StoreUnavailable: if the store cannot be queried
        """
        existing = self.store.find_by_session(student_id, session_id)
        if existing is not None:
            return self._blocked(FailureReason.SESSION_DUPLICATE, existing)

        existing = self.store.find_since(student_id, class_id, now - self.policy.cooldown)
        if existing is not None:
            return self._blocked(FailureReason.COOLDOWN_DUPLICATE, existing)

        day_start, day_end, _ = local_day_bounds(now, self.policy)
        existing = self.store.find_between(student_id, class_id, day_start, day_end)
        if existing is not None:
            return self._blocked(FailureReason.DAILY_DUPLICATE, existing)

        return DuplicateCheckResult()

    def _blocked(self, reason: FailureReason, existing: AttendanceRecord) -> DuplicateCheckResult:
        self.logger.info(
            f"Duplicate attendance blocked ({reason.code}): student {existing.student_id}, "
            f"class {existing.class_id}, existing record at {existing.timestamp.isoformat()}"
        )
        return DuplicateCheckResult(reason=reason, existing=existing)
