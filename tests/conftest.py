from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from qr_attendance.config import AttendancePolicy
from qr_attendance.modules.attendance_recorder import AttendanceRecorder
from qr_attendance.modules.attendance_store import AttendanceStore
from qr_attendance.modules.class_manager import ClassManager
from qr_attendance.modules.database_manager import DatabaseManager
from qr_attendance.modules.duplicate_guard import DuplicateGuard
from qr_attendance.modules.geofence import Coordinates
from qr_attendance.modules.scan_pipeline import ScanContext, ScanPipeline, StaticLocationProvider
from qr_attendance.modules.session_issuer import SessionIssuer
from qr_attendance.modules.token_codec import SessionToken, SessionTokenCodec, to_epoch_ms

T0 = datetime(2025, 9, 15, 9, 0, 0, tzinfo=timezone.utc)
CLASS_ANCHOR = Coordinates(latitude=40.0, longitude=-74.0)


class FakeClock:
    """Settable clock returning aware UTC datetimes."""

    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now

    def set(self, offset: timedelta):
        self.now = T0 + offset


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def policy():
    return AttendancePolicy(location_timeout_seconds=1.0)


@pytest.fixture
def db(tmp_path):
    manager = DatabaseManager(tmp_path / "attendance.db")
    yield manager
    manager.close_all_connections()


@pytest.fixture
def store(db):
    return AttendanceStore(db)


@pytest.fixture
def class_manager(db):
    manager = ClassManager(db)
    manager.register_class("C1", "Algorithms", CLASS_ANCHOR.latitude, CLASS_ANCHOR.longitude, 50)
    return manager


@pytest.fixture
def notifier():
    return MagicMock()


@pytest.fixture
def guard(store, policy):
    return DuplicateGuard(store, policy)


@pytest.fixture
def recorder(store, policy, notifier):
    return AttendanceRecorder(store, policy, notifier=notifier)


@pytest.fixture
def qr_generator():
    generator = MagicMock()
    generator.generate_session_qr_code.side_effect = lambda text: {
        'success': True,
        'qr_data': text,
        'image_base64': 'aW1n',
        'data_url': 'data:image/png;base64,aW1n'
    }
    return generator


@pytest.fixture
def issuer(clock, policy, qr_generator):
    return SessionIssuer(qr_generator=qr_generator, policy=policy, clock=clock)


@pytest.fixture
def make_token():
    def _make(class_id="C1", session_id="X", issued_at=T0, location=CLASS_ANCHOR):
        return SessionToken(
            class_id=class_id,
            session_id=session_id,
            issued_at_ms=to_epoch_ms(issued_at),
            issuer_location=location
        )
    return _make


@pytest.fixture
def make_pipeline(class_manager, guard, recorder, policy, clock):
    def _make(student_id="S1", latitude=40.00029, longitude=-74.0, provider=None):
        return ScanPipeline(
            context=ScanContext(student_id=student_id),
            class_manager=class_manager,
            guard=guard,
            recorder=recorder,
            location_provider=provider or StaticLocationProvider(latitude, longitude),
            codec=SessionTokenCodec(),
            policy=policy,
            clock=clock
        )
    return _make
