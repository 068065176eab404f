"""
QR Attendance Verifier - Main Application

This module serves as the development entry point. The application itself
is assembled by ``qr_attendance.web.create_app``.

Features:
- Session QR issuance for instructors
- Location- and time-bound attendance scanning for students
- Duplicate, cooldown and daily-cap enforcement
"""

import logging

from qr_attendance.config import get_config
from qr_attendance.web import create_app

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
)
logger = logging.getLogger(__name__)

config_class = get_config()
logging.getLogger().setLevel(config_class.LOG_LEVEL)

app = create_app(config_class)

if __name__ == '__main__':
    logger.info("Starting QR Attendance Verifier development server")
    app.run(debug=config_class.DEBUG, host='0.0.0.0', port=5000)
