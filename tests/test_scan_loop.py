import threading
from unittest.mock import MagicMock

import pytest

from qr_attendance.config import Config, TestingConfig
from qr_attendance.modules.errors import FailureReason, StoreUnavailable
from qr_attendance.modules.scan_loop import ScanLoop
from qr_attendance.modules.scan_pipeline import ScanOutcome, ScanState


class FakeMonotonic:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.now += seconds


def outcome(state=ScanState.SUCCESS, reason=None):
    return ScanOutcome(state=state, reason=reason)


def pipeline_returning(result):
    pipeline = MagicMock()
    pipeline.run.return_value = result
    pipeline.state = ScanState.IDLE
    return pipeline


@pytest.fixture
def monotonic():
    return FakeMonotonic()


@pytest.fixture
def factory():
    return MagicMock(side_effect=lambda: pipeline_returning(outcome()))


def make_loop(factory, monotonic, cooldown=3, rate=5):
    return ScanLoop(
        pipeline_factory=factory,
        decode_frame=lambda frame: frame,
        max_scans_per_second=rate,
        cooldown_seconds=cooldown,
        monotonic=monotonic,
        sleep=monotonic.sleep
    )


def test_frame_without_qr_code_is_ignored(factory, monotonic):
    loop = make_loop(factory, monotonic)

    assert loop.submit_frame(None) is None
    factory.assert_not_called()


def test_processed_frame_returns_outcome(factory, monotonic):
    loop = make_loop(factory, monotonic)

    result = loop.submit_frame("payload-1")

    assert result.success
    assert loop.last_outcome is result


def test_cooldown_suppresses_attempts(factory, monotonic):
    loop = make_loop(factory, monotonic, cooldown=3)
    loop.submit_frame("payload-1")

    monotonic.now += 2.9
    assert loop.submit_frame("payload-2") is None

    monotonic.now += 0.2
    assert loop.submit_frame("payload-2") is not None
    assert factory.call_count == 2


def test_same_payload_is_not_reprocessed_until_reset(factory, monotonic):
    loop = make_loop(factory, monotonic, cooldown=0)
    loop.submit_frame("payload-1")

    assert loop.submit_frame("payload-1") is None

    loop.reset()
    assert loop.submit_frame("payload-1") is not None


def test_frames_are_ignored_while_pipeline_in_flight(monotonic):
    entered = threading.Event()
    release = threading.Event()

    def slow_run(_):
        entered.set()
        release.wait(5)
        return outcome()

    pipeline = MagicMock()
    pipeline.run.side_effect = slow_run
    loop = make_loop(MagicMock(return_value=pipeline), monotonic, cooldown=0)

    worker = threading.Thread(target=loop.submit_frame, args=("payload-1",))
    worker.start()
    entered.wait(5)

    assert loop.busy
    assert loop.submit_frame("payload-2") is None

    release.set()
    worker.join(5)
    assert not loop.busy
    assert pipeline.run.call_count == 1


def test_store_unavailable_becomes_failed_outcome(monotonic):
    pipeline = MagicMock()
    pipeline.run.side_effect = StoreUnavailable("connection reset")
    loop = make_loop(MagicMock(return_value=pipeline), monotonic)

    result = loop.submit_frame("payload-1")

    assert result.state is ScanState.FAILED
    assert result.reason is FailureReason.STORE_UNAVAILABLE
    assert "try again" in result.message


def test_run_is_rate_limited(factory, monotonic):
    loop = make_loop(factory, monotonic, cooldown=0, rate=5)
    start = monotonic.now

    outcomes = loop.run([f"payload-{i}" for i in range(5)])

    assert len(outcomes) == 5
    assert monotonic.now - start == pytest.approx(0.8)


def test_stop_ends_run_and_cancels_active_pipeline(monotonic):
    loop = None
    pipeline = MagicMock()

    def run_then_stop(_):
        loop.stop()
        return outcome(ScanState.IDLE)

    pipeline.run.side_effect = run_then_stop
    loop = make_loop(MagicMock(return_value=pipeline), monotonic, cooldown=0)

    outcomes = loop.run(["payload-1", "payload-2", "payload-3"])

    pipeline.cancel.assert_called_once()
    assert len(outcomes) == 1
    assert loop.state is ScanState.IDLE


def test_cancelled_outcome_does_not_start_cooldown(monotonic):
    pipeline = pipeline_returning(outcome(ScanState.IDLE))
    loop = make_loop(MagicMock(return_value=pipeline), monotonic, cooldown=3)
    loop.submit_frame("payload-1")

    assert not loop.in_cooldown()


@pytest.mark.parametrize("reason", [FailureReason.LOCATION_UNAVAILABLE, FailureReason.STORE_UNAVAILABLE])
def test_recoverable_failure_allows_retry_of_same_payload(reason, monotonic):
    factory = MagicMock(side_effect=lambda: pipeline_returning(outcome(ScanState.FAILED, reason)))
    loop = make_loop(factory, monotonic, cooldown=0)

    assert loop.submit_payload("payload-1") is not None
    assert loop.submit_payload("payload-1") is not None
    assert factory.call_count == 2


def test_cancelled_scan_allows_retry_of_same_payload(monotonic):
    factory = MagicMock(side_effect=lambda: pipeline_returning(outcome(ScanState.IDLE)))
    loop = make_loop(factory, monotonic, cooldown=3)

    loop.submit_payload("payload-1")

    assert loop.submit_payload("payload-1") is not None
    assert factory.call_count == 2


@pytest.mark.parametrize("reason", [FailureReason.INVALID_QR_FORMAT, FailureReason.OUT_OF_GEOFENCE])
def test_final_failure_keeps_payload_ignored(reason, monotonic):
    factory = MagicMock(side_effect=lambda: pipeline_returning(outcome(ScanState.FAILED, reason)))
    loop = make_loop(factory, monotonic, cooldown=0)

    loop.submit_payload("payload-1")

    assert loop.submit_payload("payload-1") is None
    assert factory.call_count == 1


def test_from_config_reads_scan_settings(factory):
    testing = ScanLoop.from_config(TestingConfig, factory, lambda frame: frame)
    default = ScanLoop.from_config(Config, factory, lambda frame: frame)

    assert testing.cooldown_seconds == 0
    assert testing.min_interval == pytest.approx(0.2)
    assert default.cooldown_seconds == 3


def test_from_config_cooldown_takes_effect(factory, monotonic):
    loop = ScanLoop.from_config(
        TestingConfig, factory, lambda frame: frame,
        monotonic=monotonic, sleep=monotonic.sleep
    )
    loop.submit_frame("payload-1")

    assert not loop.in_cooldown()
    assert loop.submit_frame("payload-2") is not None
