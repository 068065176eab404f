"""
Scan Pipeline Module - QR Attendance Verifier

This module runs one scan attempt from device location to persisted
attendance record. Every step consumes the previous step's validated
output, so the steps run strictly in sequence and the first failure
ends the attempt:

    Idle -> AcquiringLocation -> Decoding -> ValidatingExpiry
         -> ValidatingGeofence -> CheckingDuplicates -> Recording
         -> Success | Failed(reason)

Expected rejections come back as a ScanOutcome. Only StoreUnavailable
is raised, after the pipeline has moved to Failed.

Each pipeline instance handles exactly one scan; the scanning identity is
passed in as an explicit ScanContext.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional

from qr_attendance.config import AttendancePolicy
from qr_attendance.modules.attendance_recorder import AttendanceRecorder
from qr_attendance.modules.attendance_store import AttendanceRecord
from qr_attendance.modules.class_manager import ClassManager
from qr_attendance.modules.duplicate_guard import DuplicateGuard
from qr_attendance.modules.errors import (
    FailureReason,
    IncompleteClassData,
    LocationUnavailable,
    StoreUnavailable,
)
from qr_attendance.modules.expiry import is_expired
from qr_attendance.modules.geofence import Coordinates, GeofenceValidator, is_finite_number
from qr_attendance.modules.token_codec import SessionToken, SessionTokenCodec, utc_now


class ScanState(Enum):
    IDLE = 'idle'
    ACQUIRING_LOCATION = 'acquiring_location'
    DECODING = 'decoding'
    VALIDATING_EXPIRY = 'validating_expiry'
    VALIDATING_GEOFENCE = 'validating_geofence'
    CHECKING_DUPLICATES = 'checking_duplicates'
    RECORDING = 'recording'
    SUCCESS = 'success'
    FAILED = 'failed'

    @property
    def is_terminal(self) -> bool:
        return self in (ScanState.SUCCESS, ScanState.FAILED)


@dataclass(frozen=True)
class ScanContext:
    """Who is scanning."""
    student_id: str
    student_name: Optional[str] = None
    student_email: Optional[str] = None


@dataclass
class ScanOutcome:
    """Result of one scan attempt."""
    state: ScanState
    reason: Optional[FailureReason] = None
    message: str = ''
    detail: str = ''
    token: Optional[SessionToken] = None
    record: Optional[AttendanceRecord] = None
    existing: Optional[AttendanceRecord] = None
    class_name: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.state is ScanState.SUCCESS

    def to_dict(self) -> dict:
        data = {
            'success': self.success,
            'state': self.state.value,
            'message': self.message
        }
        if self.reason is not None:
            data['reason'] = self.reason.code
            data['recoverable'] = self.reason.recoverable
        if self.detail:
            data['detail'] = self.detail
        if self.record is not None:
            data['record'] = self.record.to_dict()
        if self.existing is not None:
            data['existingRecord'] = self.existing.to_dict()
        if self.class_name:
            data['className'] = self.class_name
        return data


class StaticLocationProvider:
    """Location provider for positions already known to the caller (e.g. sent in a request)."""

    def __init__(self, latitude, longitude):
        self.latitude = latitude
        self.longitude = longitude

    def get_current_position(self) -> Coordinates:
        if not is_finite_number(self.latitude) or not is_finite_number(self.longitude):
            raise LocationUnavailable("Device location was not provided.")
        return Coordinates(latitude=float(self.latitude), longitude=float(self.longitude))


class ScanPipeline:
    """
    Single-use verification pipeline for one scanned attendance token.
    """

    def __init__(self, context: ScanContext, class_manager: ClassManager,
                 guard: DuplicateGuard, recorder: AttendanceRecorder,
                 location_provider, codec: Optional[SessionTokenCodec] = None,
                 policy: Optional[AttendancePolicy] = None,
                 clock: Callable[[], datetime] = utc_now):
        """
        Args:
            context: Identity of the scanning student
            class_manager: Class record lookup
            guard: Duplicate checks against the attendance store
            recorder: Status computation and persisted write
            location_provider: Object with ``get_current_position() -> Coordinates``
            codec: Token codec
            policy: Timing policy
            clock: Returns the current aware datetime
        """
        self.context = context
        self.class_manager = class_manager
        self.guard = guard
        self.recorder = recorder
        self.location_provider = location_provider
        self.codec = codec or SessionTokenCodec()
        self.policy = policy or AttendancePolicy()
        self.clock = clock
        self.geofence = GeofenceValidator()
        self.logger = logging.getLogger(__name__)

        self.state = ScanState.IDLE
        self.history: List[ScanState] = [ScanState.IDLE]
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        """
        Abandon the scan. An in-flight location request is dropped; a store
        write that has already been issued still completes.
        """
        self._cancelled.set()

    def run(self, qr_text: str) -> ScanOutcome:
        """
        Verify a scanned payload and record attendance.

        Args:
            qr_text (str): Text decoded from the QR image

        Returns:
            ScanOutcome: Success with the created record, Failed with a reason,
            or Idle if the scan was cancelled while acquiring location

        Raises:
            StoreUnavailable: if the attendance store could not be reached
        """
        if self.state is not ScanState.IDLE:
            raise RuntimeError("ScanPipeline instances handle a single scan")

        try:
            return self._run(qr_text)
        except StoreUnavailable:
            self._transition(ScanState.FAILED)
            self.logger.error(
                f"Scan aborted, attendance store unavailable: student {self.context.student_id}"
            )
            raise

    def _run(self, qr_text: str) -> ScanOutcome:
        self._transition(ScanState.ACQUIRING_LOCATION)
        try:
            location = self._acquire_location()
        except LocationUnavailable as e:
            return self._fail(FailureReason.LOCATION_UNAVAILABLE, detail=e.message)

        if location is None:
            self._transition(ScanState.IDLE)
            self.logger.info(f"Scan cancelled while acquiring location: student {self.context.student_id}")
            return ScanOutcome(state=ScanState.IDLE, message='Scan cancelled.')

        self._transition(ScanState.DECODING)
        decoded = self.codec.decode(qr_text)
        if not decoded.ok:
            return self._fail(
                FailureReason.INVALID_QR_FORMAT,
                detail=f"{decoded.reason.code}: {decoded.detail}"
            )
        token = decoded.token

        self._transition(ScanState.VALIDATING_EXPIRY)
        scan_time = self.clock()
        if is_expired(token.issued_at, scan_time,
                      self.policy.validity_window_seconds, self.policy.grace_seconds):
            return self._fail(FailureReason.EXPIRED_SESSION, token=token)

        self._transition(ScanState.VALIDATING_GEOFENCE)
        class_record = self.class_manager.get_class(token.class_id)
        if class_record is None:
            return self._fail(FailureReason.CLASS_NOT_FOUND, token=token)
        try:
            _, radius = class_record.require_location()
        except IncompleteClassData as e:
            return self._fail(FailureReason.INCOMPLETE_CLASS_DATA, message=e.message, token=token)

        fence = self.geofence.validate(location, token.issuer_location, radius)
        if not fence.within:
            return self._fail(
                FailureReason.OUT_OF_GEOFENCE,
                detail=f"{fence.distance_meters:.0f}m from session location (allowed {radius:.0f}m)",
                token=token
            )

        self._transition(ScanState.CHECKING_DUPLICATES)
        duplicate = self.guard.check(
            self.context.student_id, token.class_id, token.session_id, scan_time
        )
        if duplicate.blocked:
            return self._fail_duplicate(duplicate.reason, duplicate.existing, token)

        self._transition(ScanState.RECORDING)
        result = self.recorder.record(
            self.context.student_id,
            token,
            location,
            scan_time,
            class_name=class_record.name,
            student_email=self.context.student_email,
            student_name=self.context.student_name
        )
        if not result.success:
            return self._fail_duplicate(result.reason, result.existing, token)

        self._transition(ScanState.SUCCESS)
        status = result.record.status
        return ScanOutcome(
            state=ScanState.SUCCESS,
            message=f"Attendance marked successfully! Status: {status.capitalize()}",
            token=token,
            record=result.record,
            class_name=class_record.name
        )

    def _acquire_location(self) -> Optional[Coordinates]:
        """
        Ask the provider for a position, giving up after the policy timeout.

        Returns None when cancelled; the abandoned request is not retried.
        """
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='location')
        future = executor.submit(self.location_provider.get_current_position)
        executor.shutdown(wait=False)

        deadline = time.monotonic() + self.policy.location_timeout_seconds
        while not future.done():
            if self._cancelled.is_set():
                future.cancel()
                return None
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                future.cancel()
                raise LocationUnavailable("Timed out waiting for device location.")
            wait([future], timeout=min(remaining, 0.05))

        if self._cancelled.is_set():
            return None

        try:
            position = future.result()
        except LocationUnavailable:
            raise
        except Exception as e:
            raise LocationUnavailable(f"Location request failed: {str(e)}") from e

        if (not isinstance(position, Coordinates)
                or not is_finite_number(position.latitude)
                or not is_finite_number(position.longitude)):
            raise LocationUnavailable("Location provider returned an unusable position.")
        return position

    def _transition(self, state: ScanState) -> None:
        self.state = state
        self.history.append(state)

    def _fail(self, reason: FailureReason, message: Optional[str] = None, detail: str = '',
              token: Optional[SessionToken] = None,
              existing: Optional[AttendanceRecord] = None) -> ScanOutcome:
        failed_in = self.state
        self._transition(ScanState.FAILED)
        self.logger.warning(
            f"Scan rejected ({reason.code}) during {failed_in.value}: student {self.context.student_id}"
            + (f", class {token.class_id}, session {token.session_id}" if token else '')
            + (f" [{detail}]" if detail else '')
        )
        return ScanOutcome(
            state=ScanState.FAILED,
            reason=reason,
            message=message or reason.default_message,
            detail=detail,
            token=token,
            existing=existing
        )

    def _fail_duplicate(self, reason: FailureReason, existing: Optional[AttendanceRecord],
                        token: SessionToken) -> ScanOutcome:
        message = reason.default_message
        if existing is not None and reason is not FailureReason.SESSION_DUPLICATE:
            local_time = existing.timestamp.astimezone(self.policy.tzinfo).strftime('%H:%M:%S')
            if reason is FailureReason.COOLDOWN_DUPLICATE:
                message = (f"Attendance was already marked for this class at {local_time}. "
                           f"Please wait before marking again.")
            else:
                message = f"Attendance already marked today for this class at {local_time}."
        return self._fail(reason, message=message, token=token, existing=existing)
