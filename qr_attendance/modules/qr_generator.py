"""
QR Code Generator Module - QR Attendance Verifier

This module renders attendance token text as QR code images and reads
token text back out of uploaded pictures or camera frames. The pixel
format itself is handled by the ``qrcode`` and ``pyzbar`` libraries.

Features:
- PNG rendering with high error correction
- Base64 and data URL output for JSON responses
- QR payload extraction from images (file uploads, camera frames)
"""

import base64
import io
import logging
from datetime import datetime
from typing import Any, Dict, Optional, Union

import qrcode
from PIL import Image

from qr_attendance.config import QRCodeConfig

ERROR_CORRECTION_LEVELS = {
    'L': qrcode.constants.ERROR_CORRECT_L,
    'M': qrcode.constants.ERROR_CORRECT_M,
    'Q': qrcode.constants.ERROR_CORRECT_Q,
    'H': qrcode.constants.ERROR_CORRECT_H
}


class QRGenerator:
    """
    QR image encoder/decoder for attendance tokens.
    """

    def __init__(self, settings: Optional[Dict[str, Any]] = None):
        """
        Initialize the QR code generator with default settings.

        Args:
            settings (dict): Overrides for the default rendering settings
        """
        self.logger = logging.getLogger(__name__)

        self.default_settings = {
            'version': None,  # let qrcode pick the smallest fitting version
            'error_correction': ERROR_CORRECTION_LEVELS[QRCodeConfig.ERROR_CORRECTION],
            'box_size': QRCodeConfig.BOX_SIZE,
            'border': QRCodeConfig.BORDER,
            'fill_color': QRCodeConfig.FILL_COLOR,
            'back_color': QRCodeConfig.BACK_COLOR
        }
        if settings:
            self.default_settings.update(settings)

    def generate_session_qr_code(self, qr_text: str) -> Dict[str, Any]:
        """
        Render serialized token text as a PNG QR code.

        Args:
            qr_text (str): Serialized session token

        Returns:
            dict: Rendering result with base64 image data
        """
        try:
            if not qr_text:
                raise ValueError("QR payload is empty")

            settings = self.default_settings

            qr = qrcode.QRCode(
                version=settings['version'],
                error_correction=settings['error_correction'],
                box_size=settings['box_size'],
                border=settings['border']
            )

            qr.add_data(qr_text)
            qr.make(fit=True)

            img = qr.make_image(
                fill_color=settings['fill_color'],
                back_color=settings['back_color']
            )

            # Convert image to base64 string
            buffer = io.BytesIO()
            img.save(buffer, format=QRCodeConfig.IMAGE_FORMAT)
            img_base64 = base64.b64encode(buffer.getvalue()).decode()

            return {
                'success': True,
                'qr_data': qr_text,
                'image_base64': img_base64,
                'data_url': f"data:image/png;base64,{img_base64}",
                'image_size': img.size,
                'generated_at': datetime.now().isoformat()
            }

        except Exception as e:
            self.logger.error(f"QR code generation failed: {str(e)}")
            return {
                'success': False,
                'error': str(e)
            }

    def decode_qr_image(self, image: Union[bytes, Image.Image]) -> Optional[str]:
        """
        Extract the first QR payload from an image.

        Args:
            image: Raw image bytes (PNG/JPEG upload) or a PIL image (camera frame)

        Returns:
            str: Decoded payload text, or None when no QR code was found
        """
        # zbar is a system library; only needed when images are actually scanned
        from pyzbar.pyzbar import ZBarSymbol, decode

        try:
            if isinstance(image, (bytes, bytearray)):
                image = Image.open(io.BytesIO(image))
            image = image.convert('L')
        except (OSError, ValueError) as e:
            self.logger.warning(f"Unreadable image submitted for scanning: {str(e)}")
            return None

        decoded_objects = decode(image, symbols=[ZBarSymbol.QRCODE])
        if not decoded_objects:
            self.logger.debug("No QR code found in image")
            return None

        try:
            return decoded_objects[0].data.decode('utf-8')
        except UnicodeDecodeError:
            self.logger.warning("QR code payload is not UTF-8 text")
            return None
