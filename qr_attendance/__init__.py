# QR Attendance Verifier - Package
"""
Main application package for the QR attendance verification engine.
This package contains the Flask application factory and the core modules
that issue attendance tokens and verify scans.
"""

__version__ = "1.0.0"
__author__ = "QR Attendance Team"
__description__ = "Time-bounded, location-bound QR attendance sessions with exactly-once recording"

# Import core components for easy access
from .modules.database_manager import DatabaseManager
from .modules.token_codec import SessionToken, SessionTokenCodec
from .modules.session_issuer import SessionIssuer
from .modules.scan_pipeline import ScanPipeline, ScanContext
from .modules.scan_loop import ScanLoop
from .modules.duplicate_guard import DuplicateGuard
from .modules.attendance_recorder import AttendanceRecorder

__all__ = [
    'DatabaseManager',
    'SessionToken',
    'SessionTokenCodec',
    'SessionIssuer',
    'ScanPipeline',
    'ScanContext',
    'ScanLoop',
    'DuplicateGuard',
    'AttendanceRecorder'
]
