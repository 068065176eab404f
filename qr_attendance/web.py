"""
Web Application Module - QR Attendance Verifier

Builds the Flask application that exposes session issuance to the admin
screens and attendance scanning to students.

Routes:
- POST /api/qr/generate                      issue a session QR code (admin)
- POST /api/attendance/scan                  verify scanned token text
- POST /api/attendance/scan-image            verify an uploaded QR picture
- GET  /api/sessions/<session_id>/attendance list records for a session (admin)
- GET  /api/health                           liveness
"""

import logging
from functools import wraps

from flask import Blueprint, Flask, current_app, jsonify, request, session
from werkzeug.exceptions import HTTPException

from qr_attendance.config import AttendancePolicy, Config, init_config
from qr_attendance.modules.attendance_recorder import AttendanceRecorder
from qr_attendance.modules.attendance_store import AttendanceStore
from qr_attendance.modules.class_manager import ClassManager
from qr_attendance.modules.database_manager import DatabaseManager
from qr_attendance.modules.duplicate_guard import DuplicateGuard
from qr_attendance.modules.errors import (
    AttendanceError,
    FailureReason,
    QRCodeGenerationError,
    StoreUnavailable,
)
from qr_attendance.modules.notification_system import NotificationSystem
from qr_attendance.modules.qr_generator import QRGenerator
from qr_attendance.modules.scan_pipeline import (
    ScanContext,
    ScanPipeline,
    ScanState,
    StaticLocationProvider,
)
from qr_attendance.modules.session_issuer import SessionIssuer
from qr_attendance.modules.token_codec import SessionTokenCodec

logger = logging.getLogger(__name__)

api = Blueprint('api', __name__, url_prefix='/api')

# HTTP status for each rejection reason
REASON_STATUS = {
    FailureReason.INVALID_LOCATION: 400,
    FailureReason.INCOMPLETE_CLASS_DATA: 400,
    FailureReason.CLASS_NOT_FOUND: 404,
    FailureReason.LOCATION_UNAVAILABLE: 422,
    FailureReason.INVALID_QR_FORMAT: 422,
    FailureReason.MALFORMED_TOKEN: 422,
    FailureReason.INCOMPLETE_TOKEN: 422,
    FailureReason.EXPIRED_SESSION: 422,
    FailureReason.OUT_OF_GEOFENCE: 422,
    FailureReason.STORE_UNAVAILABLE: 503,
}
REASON_STATUS.update({reason: 409 for reason in FailureReason if reason.is_duplicate})


class AttendanceServices:
    """Components shared by all requests of one application instance."""

    def __init__(self, app_config, policy: AttendancePolicy, database_path):
        self.db = DatabaseManager(database_path)
        self.policy = policy.with_overrides(self.db.get_system_settings())
        self.store = AttendanceStore(self.db)
        self.class_manager = ClassManager(self.db)
        self.codec = SessionTokenCodec()
        self.qr_generator = QRGenerator()
        self.notifier = NotificationSystem.from_config(app_config)
        self.issuer = SessionIssuer(codec=self.codec, qr_generator=self.qr_generator, policy=self.policy)
        self.guard = DuplicateGuard(self.store, self.policy)
        self.recorder = AttendanceRecorder(self.store, self.policy, notifier=self.notifier)

    def build_pipeline(self, context: ScanContext, location_provider) -> ScanPipeline:
        return ScanPipeline(
            context=context,
            class_manager=self.class_manager,
            guard=self.guard,
            recorder=self.recorder,
            location_provider=location_provider,
            codec=self.codec,
            policy=self.policy
        )


def get_services() -> AttendanceServices:
    return current_app.extensions['qr_attendance']


def error_response(message, status_code, reason=None, **extra):
    body = {'success': False, 'error': message}
    if reason is not None:
        body['reason'] = reason.code
    body.update(extra)
    return jsonify(body), status_code


def api_login_required(f):
    """Decorator to require an authenticated user for API routes"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if 'user_id' not in session:
            return error_response('Authentication required', 401)
        return f(*args, **kwargs)
    return decorated_function


def admin_required(f):
    """Decorator to require admin privileges for API routes"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if 'user_id' not in session:
            return error_response('Authentication required', 401)
        if session.get('user_type') != 'admin':
            return error_response('Admin access required', 403)
        return f(*args, **kwargs)
    return decorated_function


def current_scan_context() -> ScanContext:
    """Convert the Flask session identity into an explicit scan context."""
    return ScanContext(
        student_id=str(session['user_id']),
        student_name=session.get('full_name'),
        student_email=session.get('email')
    )


def scan_response(outcome):
    if outcome.state is ScanState.SUCCESS:
        return jsonify(outcome.to_dict()), 201
    body = outcome.to_dict()
    body['error'] = outcome.message
    status_code = REASON_STATUS.get(outcome.reason, 400) if outcome.reason else 400
    return jsonify(body), status_code


def run_scan(qr_text, latitude, longitude):
    services = get_services()
    pipeline = services.build_pipeline(
        current_scan_context(),
        StaticLocationProvider(latitude, longitude)
    )
    return scan_response(pipeline.run(qr_text))


@api.route('/health')
def health():
    return jsonify({'status': 'ok'})


@api.route('/qr/generate', methods=['POST'])
@admin_required
def generate_qr():
    """Issue a fresh attendance session QR code for a class"""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return error_response('Request body must be a JSON object', 400)

    class_id = data.get('classId')
    if not isinstance(class_id, str) or not class_id:
        return error_response('classId is required', 400)

    services = get_services()
    try:
        class_record = services.class_manager.get_class(class_id)
        issued = services.issuer.issue(class_id, data.get('location'), class_record)
    except QRCodeGenerationError as e:
        logger.error(f"QR generation failed for class {class_id}: {e.message}")
        return error_response('Failed to generate QR code', 500)
    except AttendanceError as e:
        return error_response(e.message, REASON_STATUS.get(e.reason, 400), e.reason)

    return jsonify(issued.to_response())


@api.route('/attendance/scan', methods=['POST'])
@api_login_required
def scan_attendance():
    """Verify scanned token text and record attendance"""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return error_response('Request body must be a JSON object', 400)

    qr_data = data.get('qr_data')
    if not isinstance(qr_data, str) or not qr_data.strip():
        return error_response('No QR code data provided', 400)

    location = data.get('location') or {}
    if not isinstance(location, dict):
        location = {}

    return run_scan(qr_data.strip(), location.get('latitude'), location.get('longitude'))


@api.route('/attendance/scan-image', methods=['POST'])
@api_login_required
def scan_attendance_image():
    """Decode an uploaded QR picture and record attendance"""
    upload = request.files.get('image')
    if upload is None:
        return error_response('No image uploaded', 400)

    try:
        latitude = float(request.form['latitude'])
        longitude = float(request.form['longitude'])
    except (KeyError, ValueError):
        latitude = longitude = None

    qr_text = get_services().qr_generator.decode_qr_image(upload.read())
    if qr_text is None:
        reason = FailureReason.INVALID_QR_FORMAT
        return error_response(reason.default_message, REASON_STATUS[reason], reason)

    return run_scan(qr_text, latitude, longitude)


@api.route('/sessions/<session_id>/attendance')
@admin_required
def session_attendance(session_id):
    """List the attendance records produced for one session"""
    records = get_services().store.list_for_session(session_id)
    return jsonify({
        'sessionId': session_id,
        'count': len(records),
        'records': [record.to_dict() for record in records]
    })


@api.errorhandler(StoreUnavailable)
def handle_store_unavailable(e):
    logger.error(f"Request failed, attendance store unavailable: {e.message}")
    reason = FailureReason.STORE_UNAVAILABLE
    return error_response(reason.default_message, REASON_STATUS[reason], reason)


def handle_http_exception(e):
    return error_response(e.description, e.code)


def create_app(config_class=None, database_path=None):
    """
    Build a Flask application instance.

    Args:
        config_class: Config class to load (defaults to Config)
        database_path: Overrides the config's DATABASE_PATH

    Returns:
        Flask: Configured application
    """
    config_class = config_class or Config

    app = Flask(__name__)
    app.config.from_object(config_class)
    init_config(app, config_class)

    policy = AttendancePolicy.from_config(config_class)
    services = AttendanceServices(
        app.config,
        policy,
        database_path or config_class.DATABASE_PATH
    )
    app.extensions['qr_attendance'] = services

    app.register_blueprint(api)
    app.register_error_handler(HTTPException, handle_http_exception)

    logger.info(
        f"Application created: validity {services.policy.validity_window_seconds}s "
        f"+ {services.policy.grace_seconds}s grace, timezone {services.policy.timezone}"
    )
    return app
