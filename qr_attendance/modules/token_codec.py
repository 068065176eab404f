"""
Session Token Codec Module - QR Attendance Verifier

This module defines the attendance session token carried inside the QR
image and converts it to and from its compact JSON text form.

Wire format:
    {"classId": str, "sessionId": str, "timestamp": <ms epoch>,
     "location": {"latitude": float, "longitude": float}}

Decoding is total: any input produces a DecodeResult, never an exception.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from qr_attendance.modules.errors import FailureReason
from qr_attendance.modules.geofence import Coordinates, is_finite_number


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_epoch_ms(moment: datetime) -> int:
    """Milliseconds since the Unix epoch for an aware datetime."""
    return int(round(moment.timestamp() * 1000))


def from_epoch_ms(value: float) -> datetime:
    """Aware UTC datetime for a millisecond epoch timestamp."""
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


@dataclass(frozen=True)
class SessionToken:
    """Payload identifying one issuance of an attendance QR code."""
    class_id: str
    session_id: str
    issued_at_ms: int
    issuer_location: Coordinates

    @property
    def issued_at(self) -> datetime:
        return from_epoch_ms(self.issued_at_ms)

    def to_dict(self) -> dict:
        return {
            'classId': self.class_id,
            'sessionId': self.session_id,
            'timestamp': self.issued_at_ms,
            'location': self.issuer_location.to_dict()
        }


@dataclass(frozen=True)
class DecodeResult:
    """Either a decoded token or the reason decoding failed."""
    token: Optional[SessionToken] = None
    reason: Optional[FailureReason] = None
    detail: str = ''

    @property
    def ok(self) -> bool:
        return self.token is not None

    @classmethod
    def success(cls, token: SessionToken) -> 'DecodeResult':
        return cls(token=token)

    @classmethod
    def failure(cls, reason: FailureReason, detail: str) -> 'DecodeResult':
        return cls(reason=reason, detail=detail)


class SessionTokenCodec:
    """Serializes SessionTokens to QR text and validates decoded payloads."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def encode(self, token: SessionToken) -> str:
        return json.dumps(token.to_dict(), separators=(',', ':'))

    def decode(self, text: Any) -> DecodeResult:
        if isinstance(text, bytes):
            try:
                text = text.decode('utf-8')
            except UnicodeDecodeError:
                return DecodeResult.failure(FailureReason.MALFORMED_TOKEN, 'Payload is not UTF-8 text')

        if not isinstance(text, str):
            return DecodeResult.failure(FailureReason.MALFORMED_TOKEN, 'Payload is not text')

        try:
            data = json.loads(text)
        except (ValueError, RecursionError):
            self.logger.debug("QR payload is not JSON")
            return DecodeResult.failure(FailureReason.MALFORMED_TOKEN, 'Payload is not valid JSON')

        if not isinstance(data, dict):
            return DecodeResult.failure(FailureReason.MALFORMED_TOKEN, 'Payload is not a JSON object')

        return self._validate(data)

    def _validate(self, data: dict) -> DecodeResult:
        class_id = data.get('classId')
        if not isinstance(class_id, str) or not class_id:
            return self._incomplete('classId')

        session_id = data.get('sessionId')
        if not isinstance(session_id, str) or not session_id:
            return self._incomplete('sessionId')

        timestamp = data.get('timestamp')
        if not is_finite_number(timestamp) or timestamp <= 0:
            return self._incomplete('timestamp')
        try:
            # Must also leave room for the expiry arithmetic
            from_epoch_ms(timestamp) + timedelta(days=1)
        except (OverflowError, OSError, ValueError):
            return self._incomplete('timestamp')

        location = data.get('location')
        if not isinstance(location, dict):
            return self._incomplete('location')

        latitude = location.get('latitude')
        longitude = location.get('longitude')
        if not is_finite_number(latitude):
            return self._incomplete('location.latitude')
        if not is_finite_number(longitude):
            return self._incomplete('location.longitude')

        token = SessionToken(
            class_id=class_id,
            session_id=session_id,
            issued_at_ms=int(timestamp),
            issuer_location=Coordinates(latitude=float(latitude), longitude=float(longitude))
        )
        return DecodeResult.success(token)

    def _incomplete(self, field_name: str) -> DecodeResult:
        self.logger.debug(f"QR payload rejected: missing or invalid {field_name}")
        return DecodeResult.failure(
            FailureReason.INCOMPLETE_TOKEN,
            f'Missing or invalid field: {field_name}'
        )
