"""
Geofence Module - QR Attendance Verifier

Great-circle distance and radius checks used to decide whether a scanning
device is close enough to the place the attendance token was issued.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Optional

from qr_attendance.modules.errors import FailureReason, InvalidLocation

EARTH_RADIUS_METERS = 6371000.0


@dataclass(frozen=True)
class Coordinates:
    """A latitude/longitude pair in decimal degrees."""
    latitude: float
    longitude: float

    def to_dict(self) -> dict:
        return {'latitude': self.latitude, 'longitude': self.longitude}


def is_finite_number(value: Any) -> bool:
    """True for int/float values that are not NaN or infinite (bools excluded)."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        # int too large for a float
        return False


def parse_coordinates(data: Any) -> Coordinates:
    """
    Build Coordinates from a ``{"latitude": .., "longitude": ..}`` mapping.

    Raises:
        InvalidLocation: if the mapping is missing or either value is not a finite number
    """
    if not isinstance(data, dict):
        raise InvalidLocation()

    latitude = data.get('latitude')
    longitude = data.get('longitude')
    if not is_finite_number(latitude) or not is_finite_number(longitude):
        raise InvalidLocation()

    return Coordinates(latitude=float(latitude), longitude=float(longitude))


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great-circle distance between two points, in meters.

    ``a`` is clamped to [0, 1] so rounding near antipodal points or the poles
    cannot push the square roots into NaN.
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = (math.sin(d_phi / 2) ** 2
         + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2)
    a = min(1.0, max(0.0, a))

    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_METERS * c


def is_within_radius(scanner_lat: float, scanner_lon: float,
                     anchor_lat: float, anchor_lon: float,
                     radius_meters: float) -> bool:
    """True iff the scanner is at most ``radius_meters`` from the anchor."""
    return haversine_distance(scanner_lat, scanner_lon, anchor_lat, anchor_lon) <= radius_meters


@dataclass(frozen=True)
class GeofenceResult:
    within: bool
    distance_meters: float
    radius_meters: float
    reason: Optional[FailureReason] = None


class GeofenceValidator:
    """Checks a scan position against a circular fence."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def validate(self, scanner: Coordinates, anchor: Coordinates,
                 radius_meters: float) -> GeofenceResult:
        distance = haversine_distance(
            scanner.latitude, scanner.longitude,
            anchor.latitude, anchor.longitude
        )
        within = distance <= radius_meters

        self.logger.debug(
            f"Geofence check: distance={distance:.1f}m radius={radius_meters}m within={within}"
        )

        return GeofenceResult(
            within=within,
            distance_meters=distance,
            radius_meters=radius_meters,
            reason=None if within else FailureReason.OUT_OF_GEOFENCE
        )
