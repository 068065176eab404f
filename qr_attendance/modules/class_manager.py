"""
Class Manager Module - QR Attendance Verifier

This module gives the attendance core read access to class records and
their location fence (anchor coordinates and radius). Class records are
created and edited by the admin screens; the core only reads them, apart
from ``register_class`` which seeds records for those screens and tests.

Features:
- Class lookup by id
- Location completeness validation
- Class registration for seeding
"""

import logging
import sqlite3
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from qr_attendance.modules.errors import IncompleteClassData, StoreUnavailable
from qr_attendance.modules.geofence import Coordinates, is_finite_number


@dataclass(frozen=True)
class ClassRecord:
    """Data structure for a class and its geofence."""
    id: str
    name: Optional[str]
    latitude: Optional[float]
    longitude: Optional[float]
    radius: Optional[float]
    is_active: bool = True

    def require_location(self) -> Tuple[Coordinates, float]:
        """
        Return the class anchor and radius.

        Raises:
            IncompleteClassData: if the name, radius or coordinates are missing or unusable
        """
        if not self.name:
            raise IncompleteClassData("Class name is missing. Please contact your instructor.")

        if not is_finite_number(self.radius) or self.radius <= 0:
            raise IncompleteClassData()

        if not is_finite_number(self.latitude) or not is_finite_number(self.longitude):
            raise IncompleteClassData()

        return Coordinates(latitude=float(self.latitude), longitude=float(self.longitude)), float(self.radius)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ClassRecord':
        """
        Build a record from the admin UI's class document shape:
        ``{"id", "name", "location": {"coordinates": {"latitude", "longitude"}, "radius"}}``.
        """
        location = data.get('location') or {}
        coordinates = location.get('coordinates') or {}
        return cls(
            id=data.get('id', ''),
            name=data.get('name'),
            latitude=coordinates.get('latitude'),
            longitude=coordinates.get('longitude'),
            radius=location.get('radius'),
            is_active=bool(data.get('isActive', True))
        )


class ClassManager:
    """
    Read access to class records for issuance and scan verification.
    """

    def __init__(self, database_manager):
        """
        Initialize the class manager with database connection.

        Args:
            database_manager: Database manager instance
        """
        self.db = database_manager
        self.logger = logging.getLogger(__name__)

    def get_class(self, class_id: str) -> Optional[ClassRecord]:
        """
        Get an active class by id.

        Args:
            class_id (str): Class identifier

        Returns:
            ClassRecord: Class information or None
        """
        try:
            row = self.db.execute_query(
                "SELECT * FROM classes WHERE id = ? AND is_active = 1",
                (class_id,),
                fetch_all=False
            )
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Class lookup failed: {str(e)}") from e

        if not row:
            return None

        return ClassRecord(
            id=row['id'],
            name=row['name'],
            latitude=row['latitude'],
            longitude=row['longitude'],
            radius=row['radius'],
            is_active=bool(row['is_active'])
        )

    def register_class(self, class_id: str, name: Optional[str],
                       latitude: Optional[float], longitude: Optional[float],
                       radius: Optional[float]) -> ClassRecord:
        """
        Create or replace a class record.

        Args:
            class_id (str): Class identifier
            name (str): Display name
            latitude (float): Anchor latitude
            longitude (float): Anchor longitude
            radius (float): Allowed distance in meters

        Returns:
            ClassRecord: The stored record
        """
        self.db.execute_update(
            """INSERT OR REPLACE INTO classes (id, name, latitude, longitude, radius, is_active)
               VALUES (?, ?, ?, ?, ?, 1)""",
            (class_id, name, latitude, longitude, radius)
        )

        self.logger.info(f"Class registered: {class_id}")
        return ClassRecord(
            id=class_id,
            name=name,
            latitude=latitude,
            longitude=longitude,
            radius=radius
        )
