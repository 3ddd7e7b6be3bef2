"""Immutable telemetry snapshot written by the periodic flush."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import Field

from pyovms.models._base import OvmsModel, epoch_ms
from pyovms.models.metrics import MetricValue

Gear = float | str


class TelemetrySnapshot(OvmsModel):
    """Copy of every known live-state field at one instant.

    Fields mirror :class:`pyovms.state.live.LiveVehicleState`; ``None`` means
    the vehicle never reported the metric.
    """

    vehicle_id: str
    timestamp: datetime

    vehicle_type: str | None = None
    soc: float | None = None
    soh: float | None = None
    capacity_kwh: float | None = None
    capacity_ah: float | None = None
    range_est: float | None = None
    range_ideal: float | None = None
    voltage: float | None = None
    current: float | None = None
    power: float | None = None
    voltage_12v: float | None = None
    current_12v: float | None = None

    speed: float | None = None
    odometer: float | None = None
    trip: float | None = None
    gear: Gear | None = None
    car_on: bool | None = None
    park_time: float | None = None
    drive_time: float | None = None

    latitude: float | None = None
    longitude: float | None = None
    elevation: float | None = None
    direction: float | None = None
    gps_sats: float | None = None
    location_name: str | None = None

    locked: bool | None = None
    door_fl: bool | None = None
    door_fr: bool | None = None
    door_rl: bool | None = None
    door_rr: bool | None = None
    door_hood: bool | None = None
    door_trunk: bool | None = None
    door_charge_port: bool | None = None

    temp_ambient: float | None = None
    temp_battery: float | None = None
    temp_motor: float | None = None
    temp_cabin: float | None = None
    temp_charger: float | None = None

    charge_state: str | None = None
    charge_kwh: float | None = None
    charge_power: float | None = None
    charge_voltage: float | None = None
    charge_current: float | None = None
    charging: bool | None = None
    pilot_current: float | None = None
    plug_status: str | None = None
    gate_temp: float | None = None

    raw_metrics: dict[str, MetricValue] = Field(default_factory=dict)
    vendor_metrics: dict[str, MetricValue] = Field(default_factory=dict)

    charge_session_open: bool = False
    derived_charge_power: float = 0.0

    def to_row(self) -> dict[str, Any]:
        """Shape the snapshot as a telemetry table row."""
        if self.charge_session_open:
            power = self.derived_charge_power
            charge_state = "charging"
        else:
            power = self.power or 0.0
            charge_state = self.charge_state or "stopped"
        return {
            "vehicle_id": self.vehicle_id,
            "timestamp": epoch_ms(self.timestamp),
            "raw_metrics": dict(self.raw_metrics),
            "car_metrics": dict(self.vendor_metrics),
            "soc": self.soc,
            "soh": self.soh,
            "speed": self.speed,
            "odometer": self.odometer,
            "voltage": self.voltage,
            "current": self.current,
            "current_12v": self.current_12v,
            "voltage_12v": self.voltage_12v,
            "temp_ambient": self.temp_ambient,
            "temp_battery": self.temp_battery,
            "temp_motor": self.temp_motor,
            "inside_temp": self.temp_cabin,
            "gear": None if self.gear is None else str(self.gear),
            "park_time": self.park_time,
            "power": power,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "elevation": self.elevation,
            "location_name": self.location_name,
            "locked": self.locked,
            "charge_state": charge_state,
            "charge_kwh": self.charge_kwh,
            "charge_temp": self.gate_temp or self.temp_charger,
        }
