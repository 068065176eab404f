import logging
import sqlite3
import threading
import time
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from conftest import CLASS_ANCHOR
from qr_attendance.modules.attendance_store import STATUS_LATE, STATUS_PRESENT
from qr_attendance.modules.errors import FailureReason, LocationUnavailable, StoreUnavailable
from qr_attendance.modules.geofence import EARTH_RADIUS_METERS, Coordinates
from qr_attendance.modules.scan_pipeline import ScanState

NEARBY = (40.00029, -74.0)  # ~32m north of the anchor
FAR = (40.0 + (200 / EARTH_RADIUS_METERS) * 57.29577951308232, -74.0)  # ~200m north


@pytest.fixture
def issued(issuer, class_manager):
    return issuer.issue("C1", CLASS_ANCHOR, class_manager.get_class("C1"))


def test_end_to_end_scenario(issued, make_pipeline, clock, store):
    clock.set(timedelta(seconds=60))
    outcome = make_pipeline("S1", *NEARBY).run(issued.qr_text)

    assert outcome.success
    assert outcome.record.status == STATUS_PRESENT
    assert outcome.class_name == "Algorithms"
    assert "Status: Present" in outcome.message

    outcome = make_pipeline("S1", *NEARBY).run(issued.qr_text)
    assert outcome.reason is FailureReason.SESSION_DUPLICATE

    clock.set(timedelta(seconds=90))
    outcome = make_pipeline("S2", *FAR).run(issued.qr_text)
    assert outcome.reason is FailureReason.OUT_OF_GEOFENCE

    clock.set(timedelta(seconds=125))
    outcome = make_pipeline("S3", *NEARBY).run(issued.qr_text)
    assert outcome.reason is FailureReason.EXPIRED_SESSION

    assert len(store.list_for_session(issued.session_id)) == 1


@pytest.mark.parametrize("elapsed, accepted", [
    (timedelta(seconds=90), True),
    (timedelta(seconds=91), False),
])
def test_expiry_boundary_through_pipeline(issued, make_pipeline, clock, elapsed, accepted):
    clock.set(elapsed)

    outcome = make_pipeline("S1", *NEARBY).run(issued.qr_text)

    assert outcome.success is accepted


def test_state_history_for_success(issued, make_pipeline, clock):
    clock.set(timedelta(seconds=10))
    pipeline = make_pipeline("S1", *NEARBY)

    pipeline.run(issued.qr_text)

    assert pipeline.history == [
        ScanState.IDLE,
        ScanState.ACQUIRING_LOCATION,
        ScanState.DECODING,
        ScanState.VALIDATING_EXPIRY,
        ScanState.VALIDATING_GEOFENCE,
        ScanState.CHECKING_DUPLICATES,
        ScanState.RECORDING,
        ScanState.SUCCESS,
    ]


def test_late_status_not_reachable_within_validity_window(issued, make_pipeline, clock):
    clock.set(timedelta(seconds=30))

    outcome = make_pipeline("S1", *NEARBY).run(issued.qr_text)

    assert outcome.record.status != STATUS_LATE


def test_malformed_payload_fails_in_decoding(make_pipeline):
    pipeline = make_pipeline()

    outcome = pipeline.run("https://example.com/not-attendance")

    assert outcome.state is ScanState.FAILED
    assert outcome.reason is FailureReason.INVALID_QR_FORMAT
    assert outcome.detail.startswith(FailureReason.MALFORMED_TOKEN.code)
    assert pipeline.history[-2] is ScanState.DECODING


def test_incomplete_payload_detail(make_pipeline):
    outcome = make_pipeline().run('{"classId":"C1"}')

    assert outcome.reason is FailureReason.INVALID_QR_FORMAT
    assert outcome.detail.startswith(FailureReason.INCOMPLETE_TOKEN.code)


def test_unknown_class(issuer, make_pipeline, clock):
    from qr_attendance.modules.class_manager import ClassRecord
    record = ClassRecord(id="C9", name="Ghost", latitude=40.0, longitude=-74.0, radius=50)
    issued = issuer.issue("C9", CLASS_ANCHOR, record)

    outcome = make_pipeline("S1", *NEARBY).run(issued.qr_text)

    assert outcome.reason is FailureReason.CLASS_NOT_FOUND


def test_class_without_radius_is_incomplete(issued, class_manager, make_pipeline):
    class_manager.register_class("C1", "Algorithms", 40.0, -74.0, None)

    outcome = make_pipeline("S1", *NEARBY).run(issued.qr_text)

    assert outcome.reason is FailureReason.INCOMPLETE_CLASS_DATA


def test_missing_device_location(issued, make_pipeline):
    outcome = make_pipeline("S1", None, None).run(issued.qr_text)

    assert outcome.reason is FailureReason.LOCATION_UNAVAILABLE
    assert outcome.reason.recoverable


def test_location_provider_error_is_location_unavailable(issued, make_pipeline):
    provider = MagicMock()
    provider.get_current_position.side_effect = PermissionError("denied")

    outcome = make_pipeline(provider=provider).run(issued.qr_text)

    assert outcome.reason is FailureReason.LOCATION_UNAVAILABLE
    assert "denied" in outcome.detail


def test_location_timeout(issued, make_pipeline, policy):
    release = threading.Event()
    provider = MagicMock()
    provider.get_current_position.side_effect = lambda: release.wait(5)

    started = time.monotonic()
    outcome = make_pipeline(provider=provider).run(issued.qr_text)
    release.set()

    assert outcome.reason is FailureReason.LOCATION_UNAVAILABLE
    assert time.monotonic() - started < policy.location_timeout_seconds + 1


def test_cancel_while_acquiring_location_returns_to_idle(issued, make_pipeline, store):
    release = threading.Event()
    provider = MagicMock()
    provider.get_current_position.side_effect = lambda: release.wait(5) and Coordinates(*NEARBY)
    pipeline = make_pipeline(provider=provider)
    threading.Timer(0.1, pipeline.cancel).start()

    outcome = pipeline.run(issued.qr_text)
    release.set()

    assert outcome.state is ScanState.IDLE
    assert pipeline.state is ScanState.IDLE
    assert store.list_for_session(issued.session_id) == []


def test_pipeline_is_single_use(issued, make_pipeline):
    pipeline = make_pipeline()
    pipeline.run(issued.qr_text)

    with pytest.raises(RuntimeError):
        pipeline.run(issued.qr_text)


def test_rejections_are_logged_as_warnings(make_pipeline, caplog):
    with caplog.at_level(logging.WARNING):
        make_pipeline("S7").run("garbage")

    assert "invalid_qr_format" in caplog.text
    assert "S7" in caplog.text


def test_store_unavailable_propagates_after_failed(issued, make_pipeline, guard):
    guard.store.db = MagicMock()
    guard.store.db.execute_query.side_effect = sqlite3.OperationalError("disk I/O error")
    pipeline = make_pipeline("S1", *NEARBY)

    with pytest.raises(StoreUnavailable):
        pipeline.run(issued.qr_text)

    assert pipeline.state is ScanState.FAILED


def test_daily_duplicate_message_includes_prior_time(issuer, class_manager, make_pipeline, clock):
    first = issuer.issue("C1", CLASS_ANCHOR, class_manager.get_class("C1"))
    make_pipeline("S1", *NEARBY).run(first.qr_text)

    clock.set(timedelta(hours=2))
    second = issuer.issue("C1", CLASS_ANCHOR, class_manager.get_class("C1"))
    outcome = make_pipeline("S1", *NEARBY).run(second.qr_text)

    assert outcome.reason is FailureReason.DAILY_DUPLICATE
    assert "09:00:00" in outcome.message
    assert outcome.existing is not None


def test_location_unavailable_is_an_attendance_error():
    assert LocationUnavailable().message == FailureReason.LOCATION_UNAVAILABLE.default_message


def test_out_of_range_timestamp_is_rejected_at_decoding(make_pipeline):
    text = '{"classId":"C1","sessionId":"X","timestamp":1e20,"location":{"latitude":40.0,"longitude":-74.0}}'

    outcome = make_pipeline().run(text)

    assert outcome.reason is FailureReason.INVALID_QR_FORMAT
    assert outcome.detail.startswith(FailureReason.INCOMPLETE_TOKEN.code)


def test_concurrent_scans_record_once(issued, make_pipeline, guard, store, monkeypatch):
    both_checked = threading.Barrier(2)
    check = guard.check

    def check_then_wait(*args, **kwargs):
        result = check(*args, **kwargs)
        both_checked.wait(5)
        return result

    monkeypatch.setattr(guard, "check", check_then_wait)
    outcomes = []

    def scan():
        outcomes.append(make_pipeline("S1", *NEARBY).run(issued.qr_text))

    workers = [threading.Thread(target=scan) for _ in range(2)]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join(10)

    assert sorted(outcome.state.name for outcome in outcomes) == ["FAILED", "SUCCESS"]
    rejected = next(outcome for outcome in outcomes if not outcome.success)
    assert rejected.reason is FailureReason.SESSION_DUPLICATE
    assert len(store.list_for_session(issued.session_id)) == 1
