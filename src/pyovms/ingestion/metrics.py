"""Metric field table and live-state application.

Every accepted sample is retained in ``raw_metrics`` (``v.`` namespace) or
``vendor_metrics`` (anything else), so unmapped telemetry is never lost.
Mapped keys additionally populate a typed field on the live state.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from pyovms.ingestion.normalize import normalize_metric, normalize_topic
from pyovms.models.metrics import MetricSample, MetricSource, MetricValue
from pyovms.state.live import LiveVehicleState

_logger = logging.getLogger(__name__)


class _Skip:
    """Marker returned by a coercer when the value does not fit the field."""


_SKIP = _Skip()


def _as_float(value: MetricValue) -> float | _Skip:
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, float):
        return value
    return _SKIP


def _as_bool(value: MetricValue) -> bool | _Skip:
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return value != 0
    return _SKIP


def _as_text(value: MetricValue) -> str:
    if isinstance(value, float):
        return f"{value:g}"
    return str(value)


def _as_gear(value: MetricValue) -> float | str | _Skip:
    if isinstance(value, bool):
        return _SKIP
    if isinstance(value, str):
        return value.upper()
    return value


@dataclass(frozen=True)
class FieldBinding:
    """Typed live-state field a canonical metric key populates."""

    attr: str
    coerce: Callable[[MetricValue], Any]


def _num(attr: str) -> FieldBinding:
    return FieldBinding(attr, _as_float)


def _flag(attr: str) -> FieldBinding:
    return FieldBinding(attr, _as_bool)


def _text(attr: str) -> FieldBinding:
    return FieldBinding(attr, _as_text)


METRIC_FIELDS: dict[str, FieldBinding] = {
    "v.type": _text("vehicle_type"),
    # Battery
    "v.b.soc": _num("soc"),
    "v.b.soh": _num("soh"),
    "v.b.capacity": _num("capacity_kwh"),
    "v.b.cac": _num("capacity_ah"),
    "v.b.range.est": _num("range_est"),
    "v.b.range.ideal": _num("range_ideal"),
    "v.b.voltage": _num("voltage"),
    "v.b.current": _num("current"),
    "v.b.power": _num("power"),
    "v.b.temp": _num("temp_battery"),
    "v.b.12v.voltage": _num("voltage_12v"),
    "v.b.12v.current": _num("current_12v"),
    # Motion
    "v.p.speed": _num("speed"),
    "v.p.odometer": _num("odometer"),
    "v.p.trip": _num("trip"),
    "v.e.gear": FieldBinding("gear", _as_gear),
    "v.e.on": _flag("car_on"),
    "v.e.parktime": _num("park_time"),
    "v.e.drivetime": _num("drive_time"),
    # Position
    "v.p.latitude": _num("latitude"),
    "v.p.longitude": _num("longitude"),
    "v.p.altitude": _num("elevation"),
    "v.p.direction": _num("direction"),
    "v.p.satcount": _num("gps_sats"),
    "v.p.location": _text("location_name"),
    # Body
    "v.e.locked": _flag("locked"),
    "v.d.fl": _flag("door_fl"),
    "v.d.fr": _flag("door_fr"),
    "v.d.rl": _flag("door_rl"),
    "v.d.rr": _flag("door_rr"),
    "v.d.hood": _flag("door_hood"),
    "v.d.trunk": _flag("door_trunk"),
    "v.d.cp": _flag("door_charge_port"),
    # Temperatures
    "v.e.temp": _num("temp_ambient"),
    "v.e.cabintemp": _num("temp_cabin"),
    "v.m.temp": _num("temp_motor"),
    "v.c.temp": _num("temp_charger"),
    # Charging
    "v.c.state": _text("charge_state"),
    "v.c.kwh": _num("charge_kwh"),
    "v.c.power": _num("charge_power"),
    "v.c.voltage": _num("charge_voltage"),
    "v.c.current": _num("charge_current"),
    "v.c.charging": _flag("charging"),
    # Vendor pilot/plug pair (BMW i3 module)
    "xi3.v.c.pilotsignal": _num("pilot_current"),
    "xi3.v.c.chargeplugstatus": _text("plug_status"),
    "xi3.v.c.temp.gatedriver": _num("gate_temp"),
}


def apply_sample(state: LiveVehicleState, sample: MetricSample, *, at: datetime) -> None:
    """Write one sample into the live state and mark it dirty."""
    if sample.source == MetricSource.STANDARD:
        state.raw_metrics[sample.key] = sample.value
    else:
        state.vendor_metrics[sample.key] = sample.value

    binding = METRIC_FIELDS.get(sample.key)
    if binding is not None:
        coerced = binding.coerce(sample.value)
        if isinstance(coerced, _Skip):
            _logger.debug("Metric %s value %r does not fit field %s; kept raw only", sample.key, sample.value, binding.attr)
        else:
            setattr(state, binding.attr, coerced)

    state.is_dirty = True
    state.last_message_at = at


def _utcnow() -> datetime:
    return datetime.now(UTC)


class MetricNormalizer:
    """Single writer of the live state; both transports feed it."""

    def __init__(
        self,
        state: LiveVehicleState,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._state = state
        self._clock = clock

    @property
    def state(self) -> LiveVehicleState:
        return self._state

    def ingest_topic(self, topic: str, payload: Any) -> MetricSample | None:
        """Apply a bus message; non-metric topics are ignored."""
        sample = normalize_topic(topic, payload)
        if sample is None:
            _logger.debug("Ignoring non-metric topic %s", topic)
            return None
        apply_sample(self._state, sample, at=self._clock())
        return sample

    def ingest_field(self, key: str, raw: Any) -> MetricSample:
        """Apply a value already addressed by its canonical key."""
        sample = normalize_metric(key, raw)
        apply_sample(self._state, sample, at=self._clock())
        return sample
