"""Charge session state machine.

``IDLE -> ACTIVE -> IDLE`` with no cooldown: plug and pilot signals are far
less noisy than motion. Any one detection signal starts a session; the
session stops only once every signal has cleared.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import StrEnum

from pyovms._constants import ACTIVE_CHARGE_STATES, PLUG_CONNECTED
from pyovms.config import OvmsConfig
from pyovms.models.charge import ChargeChartPoint, ChargeSession
from pyovms.sessions.effects import (
    SessionDiscarded,
    SessionEffect,
    SessionFinished,
    SessionProgress,
    SessionStarted,
    StatusProbeRequested,
)
from pyovms.state.live import LiveVehicleState


class ChargePhase(StrEnum):
    IDLE = "idle"
    ACTIVE = "active"


@dataclass(frozen=True)
class ChargeSettings:
    chart_interval: timedelta = timedelta(seconds=60)
    chart_max_points: int = 500
    min_duration: timedelta = timedelta(seconds=60)
    silence_threshold: timedelta = timedelta(seconds=120)
    progress_interval: timedelta = timedelta(seconds=60)

    @classmethod
    def from_config(cls, config: OvmsConfig) -> ChargeSettings:
        return cls(
            chart_interval=timedelta(seconds=config.charge_chart_interval),
            chart_max_points=config.chart_max_points,
            min_duration=timedelta(seconds=config.min_charge_duration),
            silence_threshold=timedelta(seconds=config.charge_silence_threshold),
            progress_interval=timedelta(seconds=config.session_progress_interval),
        )


@dataclass(frozen=True)
class ChargeObservation:
    """What the charge machine sees of the live state at one tick."""

    at: datetime
    pilot_current: float | None = None
    plug_status: str | None = None
    charge_state: str | None = None
    charging_flag: bool | None = None
    power_kw: float = 0.0
    soc: float | None = None
    charge_kwh: float | None = None
    location: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    capacity_kwh: float = 0.0
    last_message_at: datetime | None = None
    drive_episode: bool = False

    @property
    def vendor_signal(self) -> bool:
        return (
            self.pilot_current is not None
            and self.pilot_current > 0
            and (self.plug_status or "").strip().lower() == PLUG_CONNECTED
        )

    @property
    def state_signal(self) -> bool:
        return (self.charge_state or "").strip().lower() in ACTIVE_CHARGE_STATES

    @property
    def flag_signal(self) -> bool:
        return self.charging_flag is True

    @property
    def is_charging(self) -> bool:
        return self.vendor_signal or self.state_signal or self.flag_signal

    @classmethod
    def from_state(
        cls,
        state: LiveVehicleState,
        *,
        at: datetime,
        capacity_kwh: float,
        drive_episode: bool,
    ) -> ChargeObservation:
        return cls(
            at=at,
            pilot_current=state.pilot_current,
            plug_status=state.plug_status,
            charge_state=state.charge_state,
            charging_flag=state.charging,
            power_kw=state.effective_charge_power(),
            soc=state.soc,
            charge_kwh=state.charge_kwh,
            location=state.location_hint(),
            latitude=state.latitude,
            longitude=state.longitude,
            capacity_kwh=capacity_kwh,
            last_message_at=state.last_message_at,
            drive_episode=drive_episode,
        )


def charging_signals_active(state: LiveVehicleState) -> bool:
    """Whether any charge detection signal currently asserts on *state*."""
    return ChargeObservation(
        at=state.last_message_at or datetime.min,
        pilot_current=state.pilot_current,
        plug_status=state.plug_status,
        charge_state=state.charge_state,
        charging_flag=state.charging,
    ).is_charging


@dataclass(frozen=True)
class ChargeMachine:
    phase: ChargePhase = ChargePhase.IDLE
    session: ChargeSession | None = None


def added_energy(session: ChargeSession, obs: ChargeObservation) -> float:
    """Energy added in kWh, never negative.

    A positive vendor cumulative counter wins over the SoC-delta estimate.
    """
    if obs.charge_kwh is not None and obs.charge_kwh > 0:
        return obs.charge_kwh
    if session.start_soc is None or obs.soc is None:
        return 0.0
    return max(0.0, (obs.soc - session.start_soc) / 100.0 * obs.capacity_kwh)


def _probe_if_silent(
    session: ChargeSession,
    obs: ChargeObservation,
    settings: ChargeSettings,
) -> tuple[ChargeSession, list[SessionEffect]]:
    silent_for: timedelta | None = None
    if obs.last_message_at is not None:
        silent_for = obs.at - obs.last_message_at
        if silent_for <= settings.silence_threshold:
            return session, []
    if session.last_probe_at is not None and obs.at - session.last_probe_at < settings.silence_threshold:
        return session, []
    session = session.model_copy(update={"last_probe_at": obs.at})
    seconds = None if silent_for is None else silent_for.total_seconds()
    return session, [StatusProbeRequested(silent_for=seconds)]


def _accumulate(session: ChargeSession, obs: ChargeObservation, settings: ChargeSettings) -> ChargeSession:
    power = abs(obs.power_kw)
    update: dict[str, object] = {
        "power_sum": session.power_sum + power,
        "power_samples": session.power_samples + 1,
        "max_power": max(session.max_power, power),
    }
    if not session.chart or obs.at - session.chart[-1].timestamp >= settings.chart_interval:
        chart = (*session.chart, ChargeChartPoint(timestamp=obs.at, power=power, soc=obs.soc))
        if len(chart) > settings.chart_max_points:
            chart = chart[-settings.chart_max_points :]
        update["chart"] = chart
    return session.model_copy(update=update)


def _progress(session: ChargeSession, obs: ChargeObservation, settings: ChargeSettings) -> tuple[ChargeSession, list[SessionEffect]]:
    last = session.last_progress_at or session.started_at
    if obs.at - last < settings.progress_interval:
        return session, []
    session = session.model_copy(
        update={
            "last_progress_at": obs.at,
            "end_soc": obs.soc,
            "added_kwh": added_energy(session, obs),
            "avg_power": session.running_avg_power,
            "duration_minutes": max(0, round((obs.at - session.started_at).total_seconds() / 60)),
        }
    )
    return session, [SessionProgress(session)]


def finalize_charge(session: ChargeSession, obs: ChargeObservation) -> ChargeSession:
    duration = obs.at - session.started_at
    return session.model_copy(
        update={
            "ended_at": obs.at,
            "end_soc": obs.soc,
            "added_kwh": added_energy(session, obs),
            "avg_power": session.running_avg_power,
            "duration_minutes": max(0, round(duration.total_seconds() / 60)),
        }
    )


def step_charge(
    machine: ChargeMachine,
    obs: ChargeObservation,
    settings: ChargeSettings,
) -> tuple[ChargeMachine, list[SessionEffect]]:
    """Advance the charge machine by one tick."""
    charging = obs.is_charging

    if machine.phase == ChargePhase.IDLE or machine.session is None:
        if not charging or obs.drive_episode:
            return ChargeMachine(), []
        session = ChargeSession(
            started_at=obs.at,
            start_soc=obs.soc,
            location=obs.location,
            latitude=obs.latitude,
            longitude=obs.longitude,
        )
        return ChargeMachine(ChargePhase.ACTIVE, session), [SessionStarted(session)]

    session = machine.session

    if charging:
        session = _accumulate(session, obs, settings)
        session, effects = _progress(session, obs, settings)
        session, probes = _probe_if_silent(session, obs, settings)
        return ChargeMachine(ChargePhase.ACTIVE, session), effects + probes

    final = finalize_charge(session, obs)
    if obs.at - session.started_at < settings.min_duration:
        reason = f"duration {(obs.at - session.started_at).total_seconds():.0f}s below minimum"
        return ChargeMachine(), [SessionDiscarded(final, reason)]
    return ChargeMachine(), [SessionFinished(final)]
