"""Fixed-position record parsing for the binary protocol.

Each decrypted line looks like ``MP-0 <type><comma separated payload>``.
Record parsers return ``(canonical_key, raw_text)`` pairs that go through
the same normalizer as bus messages, so both transports produce identical
live-state updates.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from pyovms._constants import ENCRYPTED_PREFIX, MSG_ENVIRONMENT, MSG_LOCATION, MSG_STATUS
from pyovms.exceptions import OvmsProtocolError
from pyovms.ingestion.normalize import safe_float, safe_int

_MILES_TO_KM = 1.609344

# Status record positions.
_S_SOC = 0
_S_UNITS = 1
_S_LINE_VOLTAGE = 2
_S_CHARGE_CURRENT = 3
_S_CHARGE_STATE = 4
_S_CHARGE_MODE = 5
_S_IDEAL_RANGE = 6
_S_EST_RANGE = 7
_S_CHARGE_LIMIT = 8
_S_CHARGE_DURATION = 9
_S_CHARGE_KWH = 10
_S_BATTERY_TEMP = 11
_S_CHARGER_TEMP = 12
_S_MIN_FIELDS = 8

# Location record positions.
_L_LATITUDE = 0
_L_LONGITUDE = 1
_L_DIRECTION = 2
_L_ALTITUDE = 3
_L_GPS_LOCK = 4
_L_GPS_STALE = 5
_L_SPEED = 6
_L_TRIP = 7
_L_ODOMETER = 8
_L_MIN_FIELDS = 8

# Environment record positions.
_D_DOORS1 = 0
_D_DOORS2 = 1
_D_LOCK = 2
_D_TEMP_PEM = 3
_D_TEMP_MOTOR = 4
_D_TEMP_BATTERY = 5
_D_TRIP = 6
_D_ODOMETER = 7
_D_SPEED = 8
_D_PARK_TIME = 9
_D_TEMP_AMBIENT = 10
_D_MIN_FIELDS = 11

_LOCKED_STATUS = 4

# doors1 bits
_DOOR_FL = 0x01
_DOOR_FR = 0x02
_CHARGE_PORT = 0x04
_CHARGING = 0x10
_CAR_ON = 0x80
# doors2 bits
_HOOD = 0x40
_TRUNK = 0x80


@dataclass(frozen=True)
class ProtocolMessage:
    code: str
    payload: str


def split_message(line: str) -> ProtocolMessage | None:
    """Split a decrypted line into its type code and payload.

    Lines without the encrypted-message envelope yield ``None``.
    """
    if not line.startswith(ENCRYPTED_PREFIX) or len(line) <= len(ENCRYPTED_PREFIX):
        return None
    body = line[len(ENCRYPTED_PREFIX) :]
    return ProtocolMessage(code=body[0], payload=body[1:])


def _fields(payload: str, minimum: int, code: str) -> list[str]:
    fields = [part.strip() for part in payload.split(",")]
    if len(fields) < minimum:
        raise OvmsProtocolError(f"{code} record has {len(fields)} fields, expected at least {minimum}")
    return fields


def _at(fields: list[str], index: int) -> str | None:
    if index >= len(fields):
        return None
    value = fields[index]
    return value or None


def _yes_no(flag: bool) -> str:
    return "yes" if flag else "no"


def _distance(value: str | None, miles: bool) -> str | None:
    number = safe_float(value)
    if number is None:
        return None
    return f"{number * _MILES_TO_KM:.1f}" if miles else f"{number:g}"


def _require_number(fields: list[str], index: int, code: str, name: str) -> str:
    value = _at(fields, index)
    if value is None or safe_float(value) is None:
        raise OvmsProtocolError(f"{code} record has non-numeric {name}: {value!r}")
    return value


def parse_status(payload: str) -> list[tuple[str, str]]:
    """Status record: SoC, units, line voltage, charge current, charge state, ranges, temperatures."""
    fields = _fields(payload, _S_MIN_FIELDS, MSG_STATUS)
    soc = _require_number(fields, _S_SOC, MSG_STATUS, "state of charge")
    miles = (_at(fields, _S_UNITS) or "K").upper() == "M"

    pairs: list[tuple[str, str | None]] = [
        ("v.b.soc", soc),
        ("v.c.voltage", _at(fields, _S_LINE_VOLTAGE)),
        ("v.c.current", _at(fields, _S_CHARGE_CURRENT)),
        ("v.c.state", _at(fields, _S_CHARGE_STATE)),
        ("v.c.mode", _at(fields, _S_CHARGE_MODE)),
        ("v.b.range.ideal", _distance(_at(fields, _S_IDEAL_RANGE), miles)),
        ("v.b.range.est", _distance(_at(fields, _S_EST_RANGE), miles)),
        ("v.c.limit", _at(fields, _S_CHARGE_LIMIT)),
        ("v.c.duration", _at(fields, _S_CHARGE_DURATION)),
        ("v.c.kwh", _at(fields, _S_CHARGE_KWH)),
        ("v.b.temp", _at(fields, _S_BATTERY_TEMP)),
        ("v.c.temp", _at(fields, _S_CHARGER_TEMP)),
    ]
    return [(key, value) for key, value in pairs if value is not None]


def parse_location(payload: str) -> list[tuple[str, str]]:
    """Location record: latitude, longitude, heading, altitude, GPS lock, speed, trip, odometer."""
    fields = _fields(payload, _L_MIN_FIELDS, MSG_LOCATION)
    latitude = _require_number(fields, _L_LATITUDE, MSG_LOCATION, "latitude")
    longitude = _require_number(fields, _L_LONGITUDE, MSG_LOCATION, "longitude")

    pairs: list[tuple[str, str | None]] = [
        ("v.p.latitude", latitude),
        ("v.p.longitude", longitude),
        ("v.p.direction", _at(fields, _L_DIRECTION)),
        ("v.p.altitude", _at(fields, _L_ALTITUDE)),
        ("v.p.gpslock", _at(fields, _L_GPS_LOCK)),
        ("v.p.gpsstale", _at(fields, _L_GPS_STALE)),
        ("v.p.speed", _at(fields, _L_SPEED)),
        ("v.p.trip", _at(fields, _L_TRIP)),
        ("v.p.odometer", _at(fields, _L_ODOMETER)),
    ]
    return [(key, value) for key, value in pairs if value is not None]


def parse_environment(payload: str) -> list[tuple[str, str]]:
    """Environment record: door bitfields, lock status, temperatures, odometer, speed, park time."""
    fields = _fields(payload, _D_MIN_FIELDS, MSG_ENVIRONMENT)
    doors1 = safe_int(_at(fields, _D_DOORS1))
    doors2 = safe_int(_at(fields, _D_DOORS2))
    if doors1 is None or doors2 is None:
        raise OvmsProtocolError(f"{MSG_ENVIRONMENT} record has non-numeric door flags")
    lock = safe_int(_at(fields, _D_LOCK))

    pairs: list[tuple[str, str | None]] = [
        ("v.d.fl", _yes_no(bool(doors1 & _DOOR_FL))),
        ("v.d.fr", _yes_no(bool(doors1 & _DOOR_FR))),
        ("v.d.cp", _yes_no(bool(doors1 & _CHARGE_PORT))),
        ("v.c.charging", _yes_no(bool(doors1 & _CHARGING))),
        ("v.e.on", _yes_no(bool(doors1 & _CAR_ON))),
        ("v.d.hood", _yes_no(bool(doors2 & _HOOD))),
        ("v.d.trunk", _yes_no(bool(doors2 & _TRUNK))),
        ("v.e.locked", None if lock is None else _yes_no(lock == _LOCKED_STATUS)),
        ("v.i.temp", _at(fields, _D_TEMP_PEM)),
        ("v.m.temp", _at(fields, _D_TEMP_MOTOR)),
        ("v.b.temp", _at(fields, _D_TEMP_BATTERY)),
        ("v.p.trip", _at(fields, _D_TRIP)),
        ("v.p.odometer", _at(fields, _D_ODOMETER)),
        ("v.p.speed", _at(fields, _D_SPEED)),
        ("v.e.parktime", _at(fields, _D_PARK_TIME)),
        ("v.e.temp", _at(fields, _D_TEMP_AMBIENT)),
    ]
    return [(key, value) for key, value in pairs if value is not None]


RECORD_PARSERS: dict[str, Callable[[str], list[tuple[str, str]]]] = {
    MSG_STATUS: parse_status,
    MSG_LOCATION: parse_location,
    MSG_ENVIRONMENT: parse_environment,
}
