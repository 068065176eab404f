# QR Attendance Verifier Configuration

import logging
import os
from dataclasses import dataclass, fields, replace
from datetime import timedelta
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

# Base directory
BASE_DIR = Path(__file__).parent.parent.absolute()

logger = logging.getLogger(__name__)


class Config:
    """Base configuration class"""

    # Flask Configuration
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'qr-attendance-secret-key-2025'

    # Database Configuration
    DATABASE_PATH = BASE_DIR / 'database' / 'attendance.db'

    MAX_CONTENT_LENGTH = 16 * 1024 * 1024  # 16MB max upload (scanned images)

    # Session token validity
    ATTENDANCE_VALIDITY_WINDOW_SECONDS = 60
    ATTENDANCE_GRACE_SECONDS = 30  # absorbs clock skew and scan latency

    # Attendance Configuration
    ATTENDANCE_LATE_THRESHOLD_MINUTES = 15
    ATTENDANCE_COOLDOWN_MINUTES = 10
    ATTENDANCE_TIMEZONE = os.environ.get('ATTENDANCE_TIMEZONE') or 'UTC'

    # Scanner Configuration
    LOCATION_TIMEOUT_SECONDS = 15
    SCAN_MAX_PER_SECOND = 5
    SCAN_COOLDOWN_SECONDS = 3

    # Session Configuration
    PERMANENT_SESSION_LIFETIME = timedelta(hours=8)
    SESSION_COOKIE_SECURE = False  # Set to True in production with HTTPS
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'

    # Email Configuration (for attendance confirmations)
    MAIL_SERVER = os.environ.get('MAIL_SERVER') or 'localhost'
    MAIL_PORT = int(os.environ.get('MAIL_PORT') or 587)
    MAIL_USE_TLS = os.environ.get('MAIL_USE_TLS', 'true').lower() in ['true', 'on', '1']
    MAIL_USERNAME = os.environ.get('MAIL_USERNAME')
    MAIL_PASSWORD = os.environ.get('MAIL_PASSWORD')
    MAIL_DEFAULT_SENDER = os.environ.get('MAIL_DEFAULT_SENDER') or 'noreply@attendance.local'

    # Notification Configuration
    NOTIFICATIONS_EMAIL_ENABLED = False  # Set to True to enable confirmation emails

    # Logging Configuration
    LOG_LEVEL = os.environ.get('LOG_LEVEL') or 'INFO'
    LOG_FILE = BASE_DIR / 'logs' / 'attendance.log'
    LOG_MAX_BYTES = 10 * 1024 * 1024  # 10MB
    LOG_BACKUP_COUNT = 5

    # Development Configuration
    DEBUG = os.environ.get('DEBUG', 'False').lower() in ['true', 'on', '1']
    TESTING = False

    @staticmethod
    def init_app(app):
        """Initialize application configuration"""
        for directory in (Config.LOG_FILE.parent,):
            directory.mkdir(parents=True, exist_ok=True)

        # Set Flask configuration
        app.config.update({
            'SECRET_KEY': Config.SECRET_KEY,
            'PERMANENT_SESSION_LIFETIME': Config.PERMANENT_SESSION_LIFETIME,
            'SESSION_COOKIE_SECURE': Config.SESSION_COOKIE_SECURE,
            'SESSION_COOKIE_HTTPONLY': Config.SESSION_COOKIE_HTTPONLY,
            'SESSION_COOKIE_SAMESITE': Config.SESSION_COOKIE_SAMESITE,
            'MAX_CONTENT_LENGTH': Config.MAX_CONTENT_LENGTH,
        })


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    TESTING = False

    DATABASE_PATH = BASE_DIR / 'database' / 'attendance_dev.db'

    SESSION_COOKIE_SECURE = False

    # More verbose logging
    LOG_LEVEL = 'DEBUG'

    # Email configuration for development (use console backend)
    MAIL_SERVER = 'localhost'
    MAIL_PORT = 1025  # MailHog default port
    MAIL_USE_TLS = False


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    DEBUG = True

    # Use in-memory database for testing
    DATABASE_PATH = ':memory:'

    # Disable email for testing
    MAIL_SUPPRESS_SEND = True
    NOTIFICATIONS_EMAIL_ENABLED = False

    # Short timings so loop tests do not sleep
    LOCATION_TIMEOUT_SECONDS = 1
    SCAN_COOLDOWN_SECONDS = 0


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    TESTING = False

    # Enhanced security for production
    SESSION_COOKIE_SECURE = True  # Requires HTTPS

    # Production database path
    DATABASE_PATH = BASE_DIR / 'database' / 'attendance_prod.db'

    # Production logging
    LOG_LEVEL = 'WARNING'

    # Email configuration for production
    NOTIFICATIONS_EMAIL_ENABLED = True

    @classmethod
    def init_app(cls, app):
        Config.init_app(app)

        # Production-specific initialization
        from logging.handlers import RotatingFileHandler

        # Setup file logging
        if not app.debug:
            file_handler = RotatingFileHandler(
                cls.LOG_FILE,
                maxBytes=cls.LOG_MAX_BYTES,
                backupCount=cls.LOG_BACKUP_COUNT
            )
            file_handler.setFormatter(logging.Formatter(
                '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
            ))
            file_handler.setLevel(logging.INFO)
            app.logger.addHandler(file_handler)

            app.logger.setLevel(logging.INFO)
            app.logger.info('QR Attendance Verifier startup')


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}


# Additional Configuration Classes
class QRCodeConfig:
    """QR Code specific configuration"""

    # High error correction so a phone camera can read a projected code
    ERROR_CORRECTION = 'H'
    BOX_SIZE = 10
    BORDER = 2

    # QR Code styling
    FILL_COLOR = "#000000"
    BACK_COLOR = "#FFFFFF"
    IMAGE_FORMAT = 'PNG'


@dataclass(frozen=True)
class AttendancePolicy:
    """Timing constants used by the verification core."""
    validity_window_seconds: int = 60
    grace_seconds: int = 30
    cooldown_minutes: int = 10
    late_threshold_minutes: int = 15
    timezone: str = 'UTC'
    location_timeout_seconds: float = 15.0

    @classmethod
    def from_config(cls, config_class) -> 'AttendancePolicy':
        """Build a policy from a Config class (or any object with the same attributes)."""
        return cls(
            validity_window_seconds=config_class.ATTENDANCE_VALIDITY_WINDOW_SECONDS,
            grace_seconds=config_class.ATTENDANCE_GRACE_SECONDS,
            cooldown_minutes=config_class.ATTENDANCE_COOLDOWN_MINUTES,
            late_threshold_minutes=config_class.ATTENDANCE_LATE_THRESHOLD_MINUTES,
            timezone=config_class.ATTENDANCE_TIMEZONE,
            location_timeout_seconds=float(config_class.LOCATION_TIMEOUT_SECONDS)
        )

    def with_overrides(self, overrides: dict) -> 'AttendancePolicy':
        """
        Return a copy with string overrides (e.g. from system_settings) applied.
        Unknown keys are ignored; values that cannot be used are logged and skipped.
        """
        known = {f.name for f in fields(self)}
        changes = {}
        for key, raw_value in overrides.items():
            if key not in known or raw_value is None:
                continue
            current = getattr(self, key)
            try:
                value = type(current)(raw_value)
                if key == 'timezone':
                    ZoneInfo(value)
            except (ValueError, TypeError, ZoneInfoNotFoundError):
                logger.warning(f"Ignoring invalid setting {key}={raw_value!r}, keeping {current!r}")
                continue
            changes[key] = value
        return replace(self, **changes)

    @property
    def validity_window(self) -> timedelta:
        return timedelta(seconds=self.validity_window_seconds)

    @property
    def cooldown(self) -> timedelta:
        return timedelta(minutes=self.cooldown_minutes)

    @property
    def late_threshold(self) -> timedelta:
        return timedelta(minutes=self.late_threshold_minutes)

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


# Environment-specific configurations
def get_config():
    """Get configuration based on environment variable"""
    return config.get(os.environ.get('FLASK_ENV', 'default'), DevelopmentConfig)


# Validation functions
def validate_config(config_class=Config):
    """Validate configuration settings"""
    errors = []

    if config_class.ATTENDANCE_VALIDITY_WINDOW_SECONDS <= 0:
        errors.append("ATTENDANCE_VALIDITY_WINDOW_SECONDS must be positive")
    if config_class.ATTENDANCE_GRACE_SECONDS < 0:
        errors.append("ATTENDANCE_GRACE_SECONDS must not be negative")
    if config_class.ATTENDANCE_COOLDOWN_MINUTES < 0:
        errors.append("ATTENDANCE_COOLDOWN_MINUTES must not be negative")
    if config_class.LOCATION_TIMEOUT_SECONDS <= 0:
        errors.append("LOCATION_TIMEOUT_SECONDS must be positive")

    try:
        ZoneInfo(config_class.ATTENDANCE_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        errors.append(f"Unknown ATTENDANCE_TIMEZONE: {config_class.ATTENDANCE_TIMEZONE}")

    # Check email configuration if enabled
    if config_class.NOTIFICATIONS_EMAIL_ENABLED:
        if not config_class.MAIL_SERVER:
            errors.append("MAIL_SERVER is required when email notifications are enabled")
        if not config_class.MAIL_USERNAME:
            errors.append("MAIL_USERNAME is required when email notifications are enabled")

    return errors


# Initialize configuration
def init_config(app, config_class):
    """Initialize application with configuration"""
    config_class.init_app(app)

    # Validate configuration
    errors = validate_config(config_class)
    if errors:
        for error in errors:
            app.logger.error(f"Configuration error: {error}")
        raise RuntimeError("Configuration validation failed")

    return config_class
