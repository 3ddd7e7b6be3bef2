"""Logger configuration for pyovms."""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Mapping
from typing import Any

from pyovms._constants import MQTT_DEFAULT_PORT, PROTOCOL_DEFAULT_PORT
from pyovms.exceptions import OvmsConfigError

TRANSPORT_MQTT = "mqtt"
TRANSPORT_PROTOCOL = "protocol"
_TRANSPORTS = frozenset({TRANSPORT_MQTT, TRANSPORT_PROTOCOL})


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _first_env(env: Mapping[str, str], *keys: str) -> str | None:
    for key in keys:
        value = env.get(key)
        if value:
            return value
    return None


@dataclasses.dataclass(frozen=True)
class OvmsConfig:
    """Logger configuration.

    Parameters
    ----------
    vehicle_id : str
        Vehicle identifier on the server (``OVMS_ID``).
    password : str
        Shared secret used for the bus login and the protocol handshake.
    server : str
        Server host name or URL (``mqtt://host:port`` is accepted).
    username : str or None
        Bus account name. Defaults to ``vehicle_id``.
    transport : str
        ``"mqtt"`` or ``"protocol"``. Only one transport is active at a time.
    mqtt_port : int
        Bus port used when ``server`` carries none.
    protocol_port : int
        Binary protocol port.
    store_url : str or None
        Base URL of the telemetry store REST endpoint.
    store_key : str or None
        API key for the telemetry store.
    store_timeout : float
        Total seconds allowed for one store request.
    tick_interval : float
        Seconds between scheduler ticks.
    drive_cooldown : float
        Seconds without motion before an open drive is finalized.
    path_interval : float
        Minimum seconds between recorded drive path points.
    min_drive_distance : float
        Drives shorter than this (km) are discarded.
    charge_chart_interval : float
        Minimum seconds between recorded charge chart points.
    chart_max_points : int
        Cap on stored chart points; the oldest are dropped first.
    min_charge_duration : float
        Charges shorter than this (seconds) are discarded.
    charge_silence_threshold : float
        Seconds of transport silence during a charge before a status probe is sent.
    session_progress_interval : float
        Minimum seconds between progress updates of an open session row.
    keepalive_interval : float
        Protocol keep-alive period in seconds.
    reconnect_delay : float
        Seconds to wait before reconnecting a dropped transport.
    mqtt_keepalive : int
        MQTT keepalive in seconds.
    mqtt_tls : bool
        Connect to the bus over TLS.
    default_pack_capacity_kwh : float
        Usable pack energy used when the vehicle reports no capacity.
    nominal_pack_voltage : float
        Pack voltage used to convert a reported Ah capacity to kWh.
    """

    vehicle_id: str
    password: str = ""
    server: str = ""
    username: str | None = None
    transport: str = TRANSPORT_MQTT
    mqtt_port: int = MQTT_DEFAULT_PORT
    protocol_port: int = PROTOCOL_DEFAULT_PORT
    store_url: str | None = None
    store_key: str | None = None
    store_timeout: float = 15.0
    tick_interval: float = 5.0
    drive_cooldown: float = 900.0
    path_interval: float = 5.0
    min_drive_distance: float = 0.1
    charge_chart_interval: float = 60.0
    chart_max_points: int = 500
    min_charge_duration: float = 60.0
    charge_silence_threshold: float = 120.0
    session_progress_interval: float = 60.0
    keepalive_interval: float = 60.0
    reconnect_delay: float = 10.0
    mqtt_keepalive: int = 60
    mqtt_tls: bool = False
    default_pack_capacity_kwh: float = 37.9
    nominal_pack_voltage: float = 352.0

    @property
    def bus_username(self) -> str:
        return self.username or self.vehicle_id

    def validate(self, *, require_store: bool = True) -> None:
        """Raise :class:`OvmsConfigError` when startup cannot proceed."""
        if not self.vehicle_id.strip():
            raise OvmsConfigError("Vehicle identifier is missing (set OVMS_ID)")
        if not self.server.strip():
            raise OvmsConfigError("Server endpoint is missing (set OVMS_SERVER)")
        if self.transport not in _TRANSPORTS:
            raise OvmsConfigError(f"Unknown transport {self.transport!r}; expected one of {sorted(_TRANSPORTS)}")
        if require_store and not (self.store_url and self.store_key):
            raise OvmsConfigError("Telemetry store endpoint is missing (set SUPABASE_URL and SUPABASE_KEY)")
        if self.tick_interval <= 0:
            raise OvmsConfigError("tick_interval must be positive")

    @classmethod
    def from_env(cls, **overrides: Any) -> OvmsConfig:
        """Create configuration from environment variables.

        Reads ``OVMS_ID``, ``OVMS_USER``, ``OVMS_PASS``, ``OVMS_SERVER`` and the
        store credentials (``SUPABASE_URL``/``SUPABASE_KEY`` or their ``VITE_``
        variants). Explicit keyword arguments override environment values.
        """
        env = os.environ

        config_kwargs: dict[str, Any] = {"vehicle_id": env.get("OVMS_ID", "")}

        _ENV_STR_MAP = {
            "OVMS_USER": "username",
            "OVMS_PASS": "password",
            "OVMS_SERVER": "server",
            "OVMS_TRANSPORT": "transport",
        }
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        store_url = _first_env(env, "SUPABASE_URL", "VITE_SUPABASE_URL")
        if store_url is not None:
            config_kwargs["store_url"] = store_url
        store_key = _first_env(env, "SUPABASE_KEY", "VITE_SUPABASE_ANON_KEY")
        if store_key is not None:
            config_kwargs["store_key"] = store_key

        _ENV_FLOAT_MAP = {
            "OVMS_TICK_INTERVAL": "tick_interval",
            "OVMS_DRIVE_COOLDOWN": "drive_cooldown",
            "OVMS_MIN_DRIVE_DISTANCE": "min_drive_distance",
            "OVMS_MIN_CHARGE_DURATION": "min_charge_duration",
            "OVMS_PACK_CAPACITY_KWH": "default_pack_capacity_kwh",
            "OVMS_PACK_VOLTAGE": "nominal_pack_voltage",
            "OVMS_STORE_TIMEOUT": "store_timeout",
        }
        for env_key, field_name in _ENV_FLOAT_MAP.items():
            val = env.get(env_key)
            if val is None or field_name in overrides:
                continue
            try:
                config_kwargs[field_name] = float(val)
            except ValueError as exc:
                raise OvmsConfigError(f"{env_key} must be numeric, got {val!r}") from exc

        if "mqtt_tls" not in overrides:
            config_kwargs["mqtt_tls"] = _env_bool(env.get("OVMS_MQTT_TLS"), False)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
