"""Charge session records."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import Field

from pyovms.models._base import OvmsModel, epoch_ms, iso_utc, new_session_id


class ChargeChartPoint(OvmsModel):
    timestamp: datetime
    power: float
    soc: float | None = None

    def to_row(self) -> dict[str, Any]:
        return {
            "time": self.timestamp.strftime("%H:%M"),
            "timestamp": epoch_ms(self.timestamp),
            "power": round(self.power, 2),
            "soc": self.soc,
        }


class ChargeSession(OvmsModel):
    """A charging episode.

    ``power_sum`` and ``power_samples`` accumulate absolute charge power on
    every active tick; ``chart`` only receives a point per chart interval.
    """

    id: str = Field(default_factory=new_session_id)
    started_at: datetime
    start_soc: float | None = None
    location: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    chart: tuple[ChargeChartPoint, ...] = ()
    max_power: float = 0.0
    power_sum: float = 0.0
    power_samples: int = 0
    last_probe_at: datetime | None = None
    last_progress_at: datetime | None = None

    ended_at: datetime | None = None
    end_soc: float | None = None
    added_kwh: float = 0.0
    avg_power: float = 0.0
    duration_minutes: int = 0

    @property
    def is_finalized(self) -> bool:
        return self.ended_at is not None

    @property
    def running_avg_power(self) -> float:
        if self.power_samples <= 0:
            return 0.0
        return self.power_sum / self.power_samples

    def to_row(self, vehicle_id: str) -> dict[str, Any]:
        return {
            "id": self.id,
            "vehicle_id": vehicle_id,
            "date": iso_utc(self.started_at),
            "end_date": iso_utc(self.ended_at),
            "location": self.location or "Unknown",
            "latitude": self.latitude,
            "longitude": self.longitude,
            "start_soc": self.start_soc,
            "end_soc": self.end_soc,
            "added_kwh": round(self.added_kwh, 3),
            "duration": self.duration_minutes,
            "avg_power": round(self.avg_power, 2),
            "max_power": round(self.max_power, 2),
            "chart_data": [point.to_row() for point in self.chart],
        }
