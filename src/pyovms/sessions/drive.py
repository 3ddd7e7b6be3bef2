"""Drive session state machine.

``IDLE -> ACTIVE -> COOLING_DOWN -> IDLE``. A stop only opens the cooldown
window; motion resuming inside the window keeps the same session, so a trip
is not split at every red light or parking-lot pause.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import StrEnum

from pyovms._constants import MOVING_GEARS
from pyovms.config import OvmsConfig
from pyovms.models.drive import DrivePathPoint, DriveSession
from pyovms.models.telemetry import Gear
from pyovms.sessions.effects import SessionDiscarded, SessionEffect, SessionFinished, SessionProgress, SessionStarted
from pyovms.state.live import LiveVehicleState


class DrivePhase(StrEnum):
    IDLE = "idle"
    ACTIVE = "active"
    COOLING_DOWN = "cooling_down"


@dataclass(frozen=True)
class DriveSettings:
    cooldown: timedelta = timedelta(minutes=15)
    path_interval: timedelta = timedelta(seconds=5)
    min_distance: float = 0.1
    progress_interval: timedelta = timedelta(seconds=60)

    @classmethod
    def from_config(cls, config: OvmsConfig) -> DriveSettings:
        return cls(
            cooldown=timedelta(seconds=config.drive_cooldown),
            path_interval=timedelta(seconds=config.path_interval),
            min_distance=config.min_drive_distance,
            progress_interval=timedelta(seconds=config.session_progress_interval),
        )


def gear_is_engaged(gear: Gear | None) -> bool:
    """Whether the gear selects forward or reverse travel."""
    if gear is None:
        return False
    if isinstance(gear, str):
        return gear.strip().upper() in MOVING_GEARS
    return gear != 0


@dataclass(frozen=True)
class DriveObservation:
    """What the drive machine sees of the live state at one tick.

    ``powered`` is ``None`` when the vehicle never reported ignition; only an
    explicit ``False`` blocks drive detection.
    """

    at: datetime
    powered: bool | None = None
    speed: float | None = None
    gear: Gear | None = None
    odometer: float | None = None
    soc: float | None = None
    latitude: float | None = None
    longitude: float | None = None
    elevation: float | None = None
    capacity_kwh: float = 0.0
    charge_episode: bool = False

    @property
    def is_moving(self) -> bool:
        if self.powered is False:
            return False
        return (self.speed is not None and self.speed > 0) or gear_is_engaged(self.gear)

    @property
    def has_fix(self) -> bool:
        return self.latitude is not None and self.longitude is not None and (self.latitude, self.longitude) != (0.0, 0.0)

    @classmethod
    def from_state(
        cls,
        state: LiveVehicleState,
        *,
        at: datetime,
        capacity_kwh: float,
        charge_episode: bool,
    ) -> DriveObservation:
        return cls(
            at=at,
            powered=state.car_on,
            speed=state.speed,
            gear=state.gear,
            odometer=state.odometer,
            soc=state.soc,
            latitude=state.latitude,
            longitude=state.longitude,
            elevation=state.elevation,
            capacity_kwh=capacity_kwh,
            charge_episode=charge_episode,
        )


@dataclass(frozen=True)
class DriveMachine:
    phase: DrivePhase = DrivePhase.IDLE
    session: DriveSession | None = None


def _sample_path(session: DriveSession, obs: DriveObservation, settings: DriveSettings) -> DriveSession:
    latitude, longitude = obs.latitude, obs.longitude
    if latitude is None or longitude is None or not obs.has_fix:
        return session
    if session.path and obs.at - session.path[-1].timestamp < settings.path_interval:
        return session
    point = DrivePathPoint(
        timestamp=obs.at,
        latitude=latitude,
        longitude=longitude,
        speed=obs.speed or 0.0,
        soc=obs.soc,
        elevation=obs.elevation,
    )
    return session.model_copy(update={"path": (*session.path, point)})


def _progress(session: DriveSession, obs: DriveObservation, settings: DriveSettings) -> tuple[DriveSession, list[SessionEffect]]:
    last = session.last_progress_at or session.started_at
    if obs.at - last < settings.progress_interval:
        return session, []
    distance = 0.0
    if obs.odometer is not None:
        distance = max(0.0, obs.odometer - session.start_odometer)
    session = session.model_copy(update={"last_progress_at": obs.at, "distance": distance})
    return session, [SessionProgress(session)]


def finalize_drive(session: DriveSession, obs: DriveObservation) -> DriveSession:
    """Close the session at its cooldown start and compute derived figures."""
    ended_at = session.cooldown_started_at or obs.at
    end_odometer = obs.odometer if obs.odometer is not None else session.start_odometer
    distance = end_odometer - session.start_odometer

    consumption = 0.0
    if session.start_soc is not None and obs.soc is not None:
        consumption = (session.start_soc - obs.soc) / 100.0 * obs.capacity_kwh

    efficiency = 0.0
    if consumption > 0 and distance > 0:
        efficiency = consumption * 1000.0 / distance

    duration = ended_at - session.started_at
    return session.model_copy(
        update={
            "ended_at": ended_at,
            "end_odometer": end_odometer,
            "end_soc": obs.soc,
            "distance": distance,
            "duration_minutes": max(0, round(duration.total_seconds() / 60)),
            "consumption_kwh": consumption,
            "efficiency": efficiency,
        }
    )


def step_drive(
    machine: DriveMachine,
    obs: DriveObservation,
    settings: DriveSettings,
) -> tuple[DriveMachine, list[SessionEffect]]:
    """Advance the drive machine by one tick."""
    if obs.charge_episode:
        return machine, []

    moving = obs.is_moving

    if machine.phase == DrivePhase.IDLE or machine.session is None:
        if not moving or obs.odometer is None or obs.odometer <= 0:
            return DriveMachine(), []
        session = DriveSession(
            started_at=obs.at,
            start_odometer=obs.odometer,
            start_soc=obs.soc,
            last_progress_at=obs.at,
        )
        session = _sample_path(session, obs, settings)
        return DriveMachine(DrivePhase.ACTIVE, session), [SessionStarted(session)]

    session = machine.session

    if machine.phase == DrivePhase.ACTIVE:
        if not moving:
            session = session.model_copy(update={"cooldown_started_at": obs.at})
            return DriveMachine(DrivePhase.COOLING_DOWN, session), []
        session = _sample_path(session, obs, settings)
        session, effects = _progress(session, obs, settings)
        return DriveMachine(DrivePhase.ACTIVE, session), effects

    # COOLING_DOWN
    if moving:
        session = session.model_copy(update={"cooldown_started_at": None})
        session = _sample_path(session, obs, settings)
        return DriveMachine(DrivePhase.ACTIVE, session), []

    cooldown_started_at = session.cooldown_started_at or obs.at
    if obs.at - cooldown_started_at < settings.cooldown:
        return machine, []

    final = finalize_drive(session, obs)
    if final.distance < settings.min_distance:
        reason = f"distance {final.distance:.3f} km below minimum {settings.min_distance} km"
        return DriveMachine(), [SessionDiscarded(final, reason)]
    return DriveMachine(), [SessionFinished(final)]
