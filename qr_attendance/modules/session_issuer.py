"""
Session Issuer Module - QR Attendance Verifier

This module creates attendance session tokens for the admin side. Each
call produces a fresh session id, stamps the issue time, serializes the
token and renders it as a QR image.

Issuance writes nothing to the store: validity is derived entirely from
the issue time embedded in the token.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional, Union

from qr_attendance.config import AttendancePolicy
from qr_attendance.modules.class_manager import ClassRecord
from qr_attendance.modules.errors import ClassNotFound, QRCodeGenerationError
from qr_attendance.modules.expiry import expires_at
from qr_attendance.modules.geofence import Coordinates, parse_coordinates
from qr_attendance.modules.qr_generator import QRGenerator
from qr_attendance.modules.token_codec import SessionToken, SessionTokenCodec, to_epoch_ms, utc_now


@dataclass(frozen=True)
class IssuedSession:
    """Serialized token, rendered image and session metadata."""
    token: SessionToken
    qr_text: str
    qr_code: str  # data URL
    image_base64: str
    expires_at: datetime

    @property
    def session_id(self) -> str:
        return self.token.session_id

    def to_response(self) -> dict:
        return {
            'qrCode': self.qr_code,
            'sessionId': self.session_id,
            'expiresAt': self.expires_at.isoformat()
        }


class SessionIssuer:
    """
    Issues attendance session tokens bound to a class and the issuer's position.
    """

    def __init__(self, codec: Optional[SessionTokenCodec] = None,
                 qr_generator: Optional[QRGenerator] = None,
                 policy: Optional[AttendancePolicy] = None,
                 clock: Callable[[], datetime] = utc_now,
                 id_factory: Callable[[], str] = lambda: uuid.uuid4().hex):
        self.codec = codec or SessionTokenCodec()
        self.qr_generator = qr_generator or QRGenerator()
        self.policy = policy or AttendancePolicy()
        self.clock = clock
        self.id_factory = id_factory
        self.logger = logging.getLogger(__name__)

    def issue(self, class_id: str, issuer_location: Union[Coordinates, Any],
              class_record: Optional[ClassRecord]) -> IssuedSession:
        """
        Issue a new attendance session for a class.

        Args:
            class_id (str): Target class
            issuer_location: Coordinates, or a ``{"latitude", "longitude"}`` mapping
            class_record (ClassRecord): The class, as loaded by the caller

        Returns:
            IssuedSession: Token text, QR image and expiry

        Raises:
            ClassNotFound: if no class record was supplied
            IncompleteClassData: if the class lacks a name, radius or coordinates
            InvalidLocation: if the issuer coordinates are not finite numbers
            QRCodeGenerationError: if the QR image could not be rendered
        """
        if class_record is None:
            raise ClassNotFound(f"Class not found: {class_id}")

        class_record.require_location()

        if isinstance(issuer_location, Coordinates):
            issuer_location = issuer_location.to_dict()
        issuer_location = parse_coordinates(issuer_location)

        issued_at = self.clock()
        token = SessionToken(
            class_id=class_id,
            session_id=self.id_factory(),
            issued_at_ms=to_epoch_ms(issued_at),
            issuer_location=issuer_location
        )

        qr_text = self.codec.encode(token)
        rendered = self.qr_generator.generate_session_qr_code(qr_text)
        if not rendered['success']:
            raise QRCodeGenerationError(f"Failed to generate QR code: {rendered['error']}")

        issued = IssuedSession(
            token=token,
            qr_text=qr_text,
            qr_code=rendered['data_url'],
            image_base64=rendered['image_base64'],
            expires_at=expires_at(token.issued_at, self.policy.validity_window_seconds)
        )

        self.logger.info(
            f"Attendance session issued: class {class_id}, session {token.session_id}, "
            f"expires {issued.expires_at.isoformat()}"
        )
        return issued
