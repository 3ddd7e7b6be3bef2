"""Live vehicle state aggregate.

One instance exists per running logger. It is owned explicitly and passed by
reference to the normalizer and the scheduler. Everything runs on one asyncio
loop, so no locking is done; a threaded caller must add its own mutex.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime

from pyovms.models.charge import ChargeSession
from pyovms.models.drive import DriveSession
from pyovms.models.metrics import MetricValue
from pyovms.models.telemetry import Gear, TelemetrySnapshot


@dataclass
class LiveVehicleState:
    """Most recent value of every known metric plus bookkeeping flags.

    No cross-field atomicity is provided: a reader may see a mix of old and
    just-updated fields when several metrics arrive at the same instant.
    """

    vehicle_type: str | None = None

    # Battery
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

    # Motion
    speed: float | None = None
    odometer: float | None = None
    trip: float | None = None
    gear: Gear | None = None
    car_on: bool | None = None
    park_time: float | None = None
    drive_time: float | None = None

    # Position
    latitude: float | None = None
    longitude: float | None = None
    elevation: float | None = None
    direction: float | None = None
    gps_sats: float | None = None
    location_name: str | None = None

    # Body
    locked: bool | None = None
    door_fl: bool | None = None
    door_fr: bool | None = None
    door_rl: bool | None = None
    door_rr: bool | None = None
    door_hood: bool | None = None
    door_trunk: bool | None = None
    door_charge_port: bool | None = None

    # Temperatures
    temp_ambient: float | None = None
    temp_battery: float | None = None
    temp_motor: float | None = None
    temp_cabin: float | None = None
    temp_charger: float | None = None

    # Charging (generic and vendor pilot/plug pair)
    charge_state: str | None = None
    charge_kwh: float | None = None
    charge_power: float | None = None
    charge_voltage: float | None = None
    charge_current: float | None = None
    charging: bool | None = None
    pilot_current: float | None = None
    plug_status: str | None = None
    gate_temp: float | None = None

    raw_metrics: dict[str, MetricValue] = field(default_factory=dict)
    vendor_metrics: dict[str, MetricValue] = field(default_factory=dict)

    is_dirty: bool = False
    last_message_at: datetime | None = None
    active_drive: DriveSession | None = None
    active_charge: ChargeSession | None = None

    @property
    def has_gps_fix(self) -> bool:
        return self.latitude is not None and self.longitude is not None and (self.latitude, self.longitude) != (0.0, 0.0)

    def effective_pack_capacity(self, *, default_kwh: float, nominal_voltage: float) -> float:
        """Usable pack energy in kWh.

        Prefers a reported usable capacity, then a reported Ah capacity at the
        nominal pack voltage, then the configured default.
        """
        if self.capacity_kwh is not None and self.capacity_kwh > 0:
            return self.capacity_kwh
        if self.capacity_ah is not None and self.capacity_ah > 0 and nominal_voltage > 0:
            return self.capacity_ah * nominal_voltage / 1000.0
        return default_kwh

    def effective_charge_power(self) -> float:
        """Absolute charge power in kW.

        Uses the reported charge power, else pilot current times the charge
        line voltage, else the absolute battery power.
        """
        if self.charge_power is not None:
            return abs(self.charge_power)
        if self.pilot_current and self.charge_voltage:
            return abs(self.pilot_current * self.charge_voltage) / 1000.0
        if self.power is not None:
            return abs(self.power)
        return 0.0

    def location_hint(self) -> str | None:
        if self.location_name:
            return self.location_name
        if self.has_gps_fix:
            return f"{self.latitude:.5f},{self.longitude:.5f}"
        return None

    def snapshot(self, *, vehicle_id: str, at: datetime) -> TelemetrySnapshot:
        """Copy all currently known fields into an immutable record."""
        values = {
            name: getattr(self, name)
            for name in TelemetrySnapshot.model_fields
            if name not in _SNAPSHOT_EXTRA_FIELDS and hasattr(self, name)
        }
        values["raw_metrics"] = copy.deepcopy(self.raw_metrics)
        values["vendor_metrics"] = copy.deepcopy(self.vendor_metrics)
        return TelemetrySnapshot(
            vehicle_id=vehicle_id,
            timestamp=at,
            charge_session_open=self.active_charge is not None,
            derived_charge_power=self.effective_charge_power(),
            **values,
        )


_SNAPSHOT_EXTRA_FIELDS = frozenset({"vehicle_id", "timestamp", "charge_session_open", "derived_charge_power"})
