"""Drive session records."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import Field

from pyovms.models._base import OvmsModel, epoch_ms, iso_utc, new_session_id


class DrivePathPoint(OvmsModel):
    """A sampled position along a drive."""

    timestamp: datetime
    latitude: float
    longitude: float
    speed: float = 0.0
    soc: float | None = None
    elevation: float | None = None

    def to_row(self) -> dict[str, Any]:
        return {
            "ts": epoch_ms(self.timestamp),
            "lat": self.latitude,
            "lng": self.longitude,
            "speed": self.speed,
            "soc": self.soc,
            "elevation": self.elevation or 0.0,
        }


class DriveSession(OvmsModel):
    """A driving episode, from first motion to the end of its cooldown window.

    Parameters
    ----------
    started_at : datetime
        Tick at which motion was first detected.
    start_odometer : float
        Odometer (km) at start; always a known positive reading.
    path : tuple of DrivePathPoint
        Positions sampled at a minimum spacing while active.
    cooldown_started_at : datetime or None
        Set while the vehicle is stopped but the session is still open.
    ended_at : datetime or None
        On finalize, equal to the cooldown start so trailing idle time is excluded.
    distance : float
        ``end_odometer - start_odometer`` once finalized; running value in progress rows.
    consumption_kwh : float
        Energy used, from SoC delta times effective pack capacity.
    efficiency : float
        Wh per km, ``0.0`` when consumption is not positive.
    """

    id: str = Field(default_factory=new_session_id)
    started_at: datetime
    start_odometer: float
    start_soc: float | None = None
    path: tuple[DrivePathPoint, ...] = ()
    cooldown_started_at: datetime | None = None
    last_progress_at: datetime | None = None

    ended_at: datetime | None = None
    end_odometer: float | None = None
    end_soc: float | None = None
    distance: float = 0.0
    duration_minutes: int = 0
    consumption_kwh: float = 0.0
    efficiency: float = 0.0

    @property
    def is_finalized(self) -> bool:
        return self.ended_at is not None

    def to_row(self, vehicle_id: str) -> dict[str, Any]:
        return {
            "id": self.id,
            "vehicle_id": vehicle_id,
            "start_date": iso_utc(self.started_at),
            "end_date": iso_utc(self.ended_at),
            "start_soc": self.start_soc,
            "end_soc": self.end_soc,
            "start_odometer": self.start_odometer,
            "end_odometer": self.end_odometer,
            "distance": round(self.distance, 3),
            "duration": self.duration_minutes,
            "consumption": round(self.consumption_kwh, 3),
            "efficiency": round(self.efficiency, 1),
            "path": [point.to_row() for point in self.path],
        }
