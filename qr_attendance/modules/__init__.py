# QR Attendance Verifier - Modules Package
"""
Core business logic modules for the QR attendance verifier.
Contains the token protocol, the validators and the scan pipeline.
"""

__version__ = "1.0.0"
__description__ = "Core modules for attendance session issuance and scan verification"

# Module descriptions
MODULES = {
    'errors': 'Failure reasons and attendance exceptions',
    'geofence': 'Haversine distance and radius checks',
    'expiry': 'Token validity window checks',
    'token_codec': 'Session token serialization and strict decoding',
    'qr_generator': 'QR image rendering and image decoding',
    'session_issuer': 'Attendance session token issuance',
    'database_manager': 'SQLite connection and schema management',
    'attendance_store': 'Attendance record queries and insert-if-absent writes',
    'class_manager': 'Read access to class location records',
    'duplicate_guard': 'Session, cooldown and daily duplicate checks',
    'attendance_recorder': 'Status computation and record persistence',
    'scan_pipeline': 'Per-scan verification state machine',
    'scan_loop': 'Rate-limited single-flight camera loop',
    'notification_system': 'Fire-and-forget attendance confirmations'
}

def get_module_info():
    """Get information about available modules"""
    return MODULES
