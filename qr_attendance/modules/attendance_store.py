"""
Attendance Store Module - QR Attendance Verifier

Read/write contract over the attendance table used by the duplicate guard
and the recorder. Records are insert-only: nothing here updates or deletes
an existing row.

The uniqueness constraints on (student_id, session_id) and
(student_id, class_id, scan_date) are the source of truth for
exactly-once recording. A constraint violation on insert is reported as
a duplicate, not as an error.
"""

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from functools import wraps
from typing import List, Optional

from qr_attendance.modules.errors import FailureReason, StoreUnavailable
from qr_attendance.modules.geofence import Coordinates
from qr_attendance.modules.token_codec import from_epoch_ms, to_epoch_ms

STATUS_PRESENT = 'present'
STATUS_LATE = 'late'


@dataclass(frozen=True)
class AttendanceRecord:
    """One persisted attendance event."""
    session_id: str
    student_id: str
    class_id: str
    timestamp: datetime
    status: str
    scan_location: Coordinates
    scan_date: str
    issued_at: datetime
    minutes_late: int = 0
    id: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'sessionId': self.session_id,
            'studentId': self.student_id,
            'classId': self.class_id,
            'timestamp': self.timestamp.isoformat(),
            'status': self.status,
            'scanLocation': self.scan_location.to_dict(),
            'scanDate': self.scan_date,
            'issuedAt': self.issued_at.isoformat(),
            'minutesLate': self.minutes_late
        }


@dataclass(frozen=True)
class InsertResult:
    """Outcome of insert_if_absent: the stored record or the colliding one."""
    record: Optional[AttendanceRecord]
    conflict: Optional[FailureReason] = None
    existing: Optional[AttendanceRecord] = None

    @property
    def inserted(self) -> bool:
        return self.conflict is None


def _store_call(method):
    """Translate sqlite failures (other than constraint violations) into StoreUnavailable."""
    @wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except sqlite3.IntegrityError:
            raise
        except sqlite3.Error as e:
            self.logger.error(f"Attendance store failure in {method.__name__}: {str(e)}")
            raise StoreUnavailable(f"Attendance store unavailable: {str(e)}") from e
    return wrapper


class AttendanceStore:
    """
    Attendance record queries and insert-if-absent writes on top of DatabaseManager.
    """

    def __init__(self, database_manager):
        """
        Args:
            database_manager: Database manager instance
        """
        self.db = database_manager
        self.logger = logging.getLogger(__name__)

    @_store_call
    def find_by_session(self, student_id: str, session_id: str) -> Optional[AttendanceRecord]:
        row = self.db.execute_query(
            """SELECT * FROM attendance
               WHERE student_id = ? AND session_id = ?
               LIMIT 1""",
            (student_id, session_id),
            fetch_all=False
        )
        return self._to_record(row)

    @_store_call
    def find_since(self, student_id: str, class_id: str,
                   since: datetime) -> Optional[AttendanceRecord]:
        """Most recent record for the pair with timestamp >= since."""
        row = self.db.execute_query(
            """SELECT * FROM attendance
               WHERE student_id = ? AND class_id = ? AND timestamp >= ?
               ORDER BY timestamp DESC
               LIMIT 1""",
            (student_id, class_id, to_epoch_ms(since)),
            fetch_all=False
        )
        return self._to_record(row)

    @_store_call
    def find_between(self, student_id: str, class_id: str,
                     start: datetime, end: datetime) -> Optional[AttendanceRecord]:
        """Earliest record for the pair with start <= timestamp < end."""
        row = self.db.execute_query(
            """SELECT * FROM attendance
               WHERE student_id = ? AND class_id = ?
               AND timestamp >= ? AND timestamp < ?
               ORDER BY timestamp ASC
               LIMIT 1""",
            (student_id, class_id, to_epoch_ms(start), to_epoch_ms(end)),
            fetch_all=False
        )
        return self._to_record(row)

    @_store_call
    def list_for_session(self, session_id: str) -> List[AttendanceRecord]:
        rows = self.db.execute_query(
            """SELECT * FROM attendance
               WHERE session_id = ?
               ORDER BY timestamp ASC""",
            (session_id,)
        )
        return [self._to_record(row) for row in rows]

    @_store_call
    def insert_if_absent(self, record: AttendanceRecord) -> InsertResult:
        """
        Insert the record in a single statement.

        Returns:
            InsertResult: the stored record (with id), or the duplicate reason
            and the existing record when a uniqueness constraint fired
        """
        try:
            record_id = self.db.execute_update(
                """INSERT INTO attendance
                   (session_id, student_id, class_id, timestamp, scan_date, status,
                    latitude, longitude, issued_at, minutes_late)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    record.session_id,
                    record.student_id,
                    record.class_id,
                    to_epoch_ms(record.timestamp),
                    record.scan_date,
                    record.status,
                    record.scan_location.latitude,
                    record.scan_location.longitude,
                    to_epoch_ms(record.issued_at),
                    record.minutes_late
                )
            )
        except sqlite3.IntegrityError as e:
            return self._resolve_conflict(record, e)

        stored = AttendanceRecord(
            session_id=record.session_id,
            student_id=record.student_id,
            class_id=record.class_id,
            timestamp=record.timestamp,
            status=record.status,
            scan_location=record.scan_location,
            scan_date=record.scan_date,
            issued_at=record.issued_at,
            minutes_late=record.minutes_late,
            id=record_id
        )
        return InsertResult(record=stored)

    def _resolve_conflict(self, record: AttendanceRecord,
                          error: sqlite3.IntegrityError) -> InsertResult:
        existing = self.find_by_session(record.student_id, record.session_id)
        if existing is not None:
            self.logger.info(
                f"Concurrent duplicate suppressed by store: student {record.student_id}, "
                f"session {record.session_id}"
            )
            return InsertResult(record=None, conflict=FailureReason.SESSION_DUPLICATE, existing=existing)

        row = self.db.execute_query(
            """SELECT * FROM attendance
               WHERE student_id = ? AND class_id = ? AND scan_date = ?
               LIMIT 1""",
            (record.student_id, record.class_id, record.scan_date),
            fetch_all=False
        )
        if row is not None:
            self.logger.info(
                f"Concurrent daily duplicate suppressed by store: student {record.student_id}, "
                f"class {record.class_id}, date {record.scan_date}"
            )
            return InsertResult(
                record=None,
                conflict=FailureReason.DAILY_DUPLICATE,
                existing=self._to_record(row)
            )

        # Constraint fired but the winning row is not visible: not a duplicate we can explain
        raise StoreUnavailable(f"Attendance insert rejected: {str(error)}") from error

    @staticmethod
    def _to_record(row: Optional[dict]) -> Optional[AttendanceRecord]:
        if row is None:
            return None
        return AttendanceRecord(
            id=row['id'],
            session_id=row['session_id'],
            student_id=row['student_id'],
            class_id=row['class_id'],
            timestamp=from_epoch_ms(row['timestamp']),
            status=row['status'],
            scan_location=Coordinates(latitude=row['latitude'], longitude=row['longitude']),
            scan_date=row['scan_date'],
            issued_at=from_epoch_ms(row['issued_at']),
            minutes_late=row['minutes_late']
        )
