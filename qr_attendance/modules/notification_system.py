"""
Notification System Module - QR Attendance Verifier

This module sends attendance confirmations after a record has been written.
Delivery is fire-and-forget: notifications are queued and handled by a
background worker, and a delivery failure is logged without ever affecting
the attendance outcome.

Features:
- Background notification queue
- Attendance confirmation email (Jinja2 template, SMTP with STARTTLS)
- Recent notification history for the admin views
"""

import logging
import smtplib
import ssl
import threading
import uuid
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from queue import Queue
from typing import Any, Dict, List, Optional

from jinja2 import Template

from qr_attendance.modules.attendance_store import STATUS_LATE, AttendanceRecord

SYSTEM_NAME = "QR Attendance Verifier"

ATTENDANCE_CONFIRMATION_TEMPLATE = """
<html>
<body style="font-family: Arial, sans-serif;">
    <h2 style="color: {{ '#ffc107' if notification.data.status == 'late' else '#28a745' }};">Attendance Recorded</h2>

    <p>Hi {{ notification.data.student_name or notification.data.student_id }},</p>
    <p>Your attendance for <strong>{{ notification.data.class_name }}</strong> has been recorded.</p>

    <p><strong>Session:</strong> {{ notification.data.session_id }}</p>
    <p><strong>Time:</strong> {{ notification.data.timestamp }}</p>
    <p><strong>Status:</strong> {{ notification.data.status.title() }}</p>
    {% if notification.data.minutes_late %}
    <p><strong>Minutes late:</strong> {{ notification.data.minutes_late }}</p>
    {% endif %}

    <hr>
    <p style="color: #6c757d; font-size: 12px;">
        Generated by {{ system_name }} on {{ notification.created_at }}
    </p>
</body>
</html>
"""


@dataclass
class NotificationData:
    """Data structure for notification information."""
    id: str
    type: str
    title: str
    message: str
    recipient: Optional[str]
    data: Dict[str, Any] = field(default_factory=dict)
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    is_sent: bool = False


class NotificationSystem:
    """
    Queue-backed notification sender for attendance confirmations.
    """

    ATTENDANCE_CONFIRMATION = 'attendance_confirmation'

    def __init__(self, email_enabled: bool = False, history_size: int = 50):
        self.logger = logging.getLogger(__name__)
        self.email_enabled = email_enabled

        self.email_config = {
            'smtp_server': '',
            'smtp_port': 587,
            'username': '',
            'password': '',
            'sender': '',
            'use_tls': True
        }

        self.templates = {
            self.ATTENDANCE_CONFIRMATION: ATTENDANCE_CONFIRMATION_TEMPLATE
        }

        self.recent_notifications = deque(maxlen=history_size)
        self._history_lock = threading.Lock()

        self.notification_queue = Queue()
        self.notification_processor = threading.Thread(
            target=self._process_notifications,
            name='notification-processor',
            daemon=True
        )
        self.notification_processor.start()

        self.logger.info("Notification system initialized")

    @classmethod
    def from_config(cls, app_config) -> 'NotificationSystem':
        """Build a notifier from a Flask config mapping."""
        notifier = cls(email_enabled=bool(app_config.get('NOTIFICATIONS_EMAIL_ENABLED', False)))
        if app_config.get('MAIL_SERVER'):
            notifier.configure_email(
                smtp_server=app_config['MAIL_SERVER'],
                smtp_port=int(app_config.get('MAIL_PORT', 587)),
                username=app_config.get('MAIL_USERNAME') or '',
                password=app_config.get('MAIL_PASSWORD') or '',
                use_tls=bool(app_config.get('MAIL_USE_TLS', True)),
                sender=app_config.get('MAIL_DEFAULT_SENDER') or ''
            )
        return notifier

    def send_attendance_confirmation(self, record: AttendanceRecord, class_name: Optional[str] = None,
                                     recipient: Optional[str] = None,
                                     student_name: Optional[str] = None) -> bool:
        """
        Queue an attendance confirmation for a freshly written record.

        Args:
            record (AttendanceRecord): The stored attendance record
            class_name (str): Display name of the class
            recipient (str): Email address of the student, if known
            student_name (str): Display name of the student

        Returns:
            bool: True if the notification was queued
        """
        status_label = 'late' if record.status == STATUS_LATE else 'on time'
        notification = NotificationData(
            id=f"attendance_{uuid.uuid4().hex}",
            type=self.ATTENDANCE_CONFIRMATION,
            title=f"Attendance Recorded - {class_name or record.class_id}",
            message=f"Attendance marked {status_label} for {class_name or record.class_id}",
            recipient=recipient,
            data={
                'student_id': record.student_id,
                'student_name': student_name,
                'class_id': record.class_id,
                'class_name': class_name or record.class_id,
                'session_id': record.session_id,
                'timestamp': record.timestamp.isoformat(),
                'status': record.status,
                'minutes_late': record.minutes_late
            }
        )
        self.notification_queue.put(notification)
        return True

    def _process_notifications(self) -> None:
        """Background thread to process notification queue."""
        while True:
            notification = self.notification_queue.get()
            try:
                if notification is None:
                    break
                self._handle_notification(notification)
            except Exception as e:
                self.logger.error(f"Error processing notification: {str(e)}")
            finally:
                self.notification_queue.task_done()

    def _handle_notification(self, notification: NotificationData) -> None:
        self.logger.info(f"Processing notification: {notification.title}")

        if notification.recipient and self.email_enabled and self._is_email_configured():
            notification.is_sent = self._send_email_notification(notification)

        with self._history_lock:
            self.recent_notifications.appendleft(notification)

    def _send_email_notification(self, notification: NotificationData) -> bool:
        """
        Send email notification.

        Args:
            notification (NotificationData): Notification to send

        Returns:
            bool: Success status
        """
        try:
            msg = MIMEMultipart()
            msg['From'] = self.email_config['sender'] or self.email_config['username']
            msg['To'] = notification.recipient
            msg['Subject'] = f"{SYSTEM_NAME} - {notification.title}"

            template = Template(self.templates[notification.type])
            body = template.render(notification=asdict(notification), system_name=SYSTEM_NAME)
            msg.attach(MIMEText(body, 'html'))

            with smtplib.SMTP(self.email_config['smtp_server'], self.email_config['smtp_port']) as server:
                if self.email_config['use_tls']:
                    context = ssl.create_default_context()
                    server.starttls(context=context)

                server.login(self.email_config['username'], self.email_config['password'])
                server.send_message(msg)

            self.logger.info(f"Email notification sent to {notification.recipient}")
            return True

        except Exception as e:
            self.logger.error(f"Failed to send email notification: {str(e)}")
            return False

    def _is_email_configured(self) -> bool:
        """Check if email configuration is complete."""
        return all([
            self.email_config['username'],
            self.email_config['password'],
            self.email_config['smtp_server']
        ])

    def configure_email(self, smtp_server: str, smtp_port: int, username: str,
                        password: str, use_tls: bool = True, sender: str = '') -> None:
        """
        Configure email settings.

        Args:
            smtp_server (str): SMTP server address
            smtp_port (int): SMTP server port
            username (str): Email username
            password (str): Email password
            use_tls (bool): Use STARTTLS
            sender (str): From address, defaults to the username
        """
        self.email_config.update({
            'smtp_server': smtp_server,
            'smtp_port': smtp_port,
            'username': username,
            'password': password,
            'sender': sender,
            'use_tls': use_tls
        })

        self.logger.info("Email configuration updated")

    def get_recent_notifications(self, limit: int = 10) -> List[Dict[str, Any]]:
        with self._history_lock:
            return [asdict(n) for n in list(self.recent_notifications)[:limit]]

    def flush(self) -> None:
        """Block until every queued notification has been handled."""
        self.notification_queue.join()

    def shutdown(self) -> None:
        """Shutdown the notification system gracefully."""
        self.notification_queue.put(None)
        if self.notification_processor.is_alive():
            self.notification_processor.join(timeout=5)
        self.logger.info("Notification system shut down")
