import logging
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from qr_attendance.modules.attendance_store import STATUS_LATE, AttendanceRecord
from qr_attendance.modules.geofence import Coordinates
from qr_attendance.modules.notification_system import NotificationSystem

SCANNED = datetime(2025, 9, 15, 9, 20, tzinfo=timezone.utc)


def make_record(status=STATUS_LATE):
    return AttendanceRecord(
        session_id="X",
        student_id="S1",
        class_id="C1",
        timestamp=SCANNED,
        status=status,
        scan_location=Coordinates(40.0, -74.0),
        scan_date="2025-09-15",
        issued_at=datetime(2025, 9, 15, 9, 0, tzinfo=timezone.utc),
        minutes_late=20,
        id=1
    )


@pytest.fixture
def notifier():
    system = NotificationSystem(email_enabled=True)
    yield system
    system.shutdown()


def test_confirmation_is_queued_and_kept_in_history(notifier):
    assert notifier.send_attendance_confirmation(make_record(), class_name="Algorithms")

    notifier.flush()
    recent = notifier.get_recent_notifications()
    assert recent[0]["title"] == "Attendance Recorded - Algorithms"
    assert recent[0]["data"]["status"] == STATUS_LATE
    assert recent[0]["is_sent"] is False


def test_email_sent_when_configured(notifier):
    notifier.configure_email("smtp.example.edu", 587, "noreply", "secret")

    with patch("qr_attendance.modules.notification_system.smtplib.SMTP") as smtp:
        notifier.send_attendance_confirmation(make_record(), class_name="Algorithms",
                                              recipient="s1@example.edu", student_name="Ada")
        notifier.flush()

    server = smtp.return_value.__enter__.return_value
    server.login.assert_called_once_with("noreply", "secret")
    message = server.send_message.call_args[0][0]
    assert message["To"] == "s1@example.edu"
    body = message.get_payload()[0].get_payload()
    assert "Ada" in body
    assert "Late" in body
    assert notifier.get_recent_notifications()[0]["is_sent"] is True


def test_smtp_failure_is_logged_not_raised(notifier, caplog):
    notifier.configure_email("smtp.example.edu", 587, "noreply", "secret")

    with patch("qr_attendance.modules.notification_system.smtplib.SMTP",
               side_effect=OSError("connection refused")):
        with caplog.at_level(logging.ERROR):
            notifier.send_attendance_confirmation(make_record(), recipient="s1@example.edu")
            notifier.flush()

    assert "connection refused" in caplog.text


def test_email_skipped_when_disabled():
    notifier = NotificationSystem(email_enabled=False)
    notifier.configure_email("smtp.example.edu", 587, "noreply", "secret")
    notifier._send_email_notification = MagicMock()

    notifier.send_attendance_confirmation(make_record(), recipient="s1@example.edu")
    notifier.flush()
    notifier.shutdown()

    notifier._send_email_notification.assert_not_called()


def test_from_config_reads_mail_settings():
    notifier = NotificationSystem.from_config({
        "NOTIFICATIONS_EMAIL_ENABLED": True,
        "MAIL_SERVER": "smtp.example.edu",
        "MAIL_PORT": 2525,
        "MAIL_USERNAME": "noreply",
        "MAIL_PASSWORD": "secret",
        "MAIL_USE_TLS": False,
        "MAIL_DEFAULT_SENDER": "attendance@example.edu",
    })
    notifier.shutdown()

    assert notifier.email_enabled
    assert notifier.email_config["smtp_port"] == 2525
    assert notifier.email_config["sender"] == "attendance@example.edu"
    assert notifier._is_email_configured()
