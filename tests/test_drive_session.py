from __future__ import annotations

from datetime import UTC, datetime, timedelta

from pyovms.sessions.drive import (
    DriveMachine,
    DriveObservation,
    DrivePhase,
    DriveSettings,
    finalize_drive,
    gear_is_engaged,
    step_drive,
)
from pyovms.sessions.effects import SessionDiscarded, SessionFinished, SessionProgress, SessionStarted

_T0 = datetime(2026, 3, 1, 8, 0, tzinfo=UTC)
_SETTINGS = DriveSettings(cooldown=timedelta(minutes=15), path_interval=timedelta(seconds=5), min_distance=0.1)


def _obs(seconds: float, **kwargs) -> DriveObservation:
    kwargs.setdefault("capacity_kwh", 40.0)
    return DriveObservation(at=_T0 + timedelta(seconds=seconds), **kwargs)


def _run(steps: list[DriveObservation], machine: DriveMachine | None = None):
    machine = machine or DriveMachine()
    effects = []
    for obs in steps:
        machine, emitted = step_drive(machine, obs, _SETTINGS)
        effects.extend(emitted)
    return machine, effects


def test_gear_is_engaged() -> None:
    assert gear_is_engaged("D")
    assert gear_is_engaged("r")
    assert gear_is_engaged(1.0)
    assert not gear_is_engaged("P")
    assert not gear_is_engaged("N")
    assert not gear_is_engaged(0.0)
    assert not gear_is_engaged(None)


def test_stationary_drive_is_discarded_after_cooldown() -> None:
    machine, effects = _run(
        [
            _obs(0, speed=0.0, gear="P"),
            _obs(5, speed=45.0, gear="D", odometer=1000.0, soc=80.0),
            _obs(10 * 60, speed=0.0, gear="P", odometer=1000.0, soc=80.0),
            _obs(30 * 60, speed=0.0, gear="P", odometer=1000.0, soc=80.0),
        ]
    )

    assert machine.phase == DrivePhase.IDLE
    assert [type(effect) for effect in effects] == [SessionStarted, SessionDiscarded]
    discarded = effects[-1].session
    assert discarded.start_odometer == 1000.0
    assert discarded.distance == 0.0
    assert discarded.duration_minutes > 0


def test_drive_finalized_with_derived_figures() -> None:
    machine, effects = _run(
        [
            _obs(0, speed=45.0, gear="D", odometer=1000.0, soc=80.0),
            _obs(10 * 60, speed=0.0, gear="P", odometer=1012.0, soc=76.0),
            _obs(30 * 60, speed=0.0, gear="P", odometer=1012.0, soc=76.0),
        ]
    )

    assert machine.phase == DrivePhase.IDLE
    finished = effects[-1]
    assert isinstance(finished, SessionFinished)
    session = finished.session
    assert session.ended_at == _T0 + timedelta(minutes=10)
    assert session.duration_minutes == 10
    assert session.distance == 12.0
    assert session.end_odometer == 1012.0
    assert round(session.consumption_kwh, 3) == 1.6
    assert round(session.efficiency, 2) == 133.33


def test_motion_resuming_during_cooldown_keeps_same_session() -> None:
    machine, effects = _run(
        [
            _obs(0, speed=30.0, gear="D", odometer=500.0),
            _obs(10 * 60, speed=0.0, gear="P", odometer=505.0),
        ]
    )
    assert machine.phase == DrivePhase.COOLING_DOWN
    session_id = machine.session.id

    machine, more = _run(
        [
            _obs(15 * 60, speed=20.0, gear="D", odometer=505.0),
            _obs(30 * 60, speed=0.0, gear="P", odometer=512.0),
            _obs(40 * 60, speed=0.0, gear="P", odometer=512.0),
        ],
        machine,
    )
    assert machine.phase == DrivePhase.COOLING_DOWN
    assert machine.session.id == session_id

    machine, final = _run([_obs(46 * 60, speed=0.0, gear="P", odometer=512.0)], machine)
    effects += more + final

    started = [effect for effect in effects if isinstance(effect, SessionStarted)]
    finished = [effect for effect in effects if isinstance(effect, SessionFinished)]
    assert len(started) == 1
    assert len(finished) == 1
    assert finished[0].session.id == session_id
    assert finished[0].session.ended_at == _T0 + timedelta(minutes=30)
    assert finished[0].session.distance == 12.0


def test_cooldown_not_elapsed_keeps_session_open() -> None:
    machine, effects = _run(
        [
            _obs(0, speed=30.0, gear="D", odometer=500.0),
            _obs(60, speed=0.0, gear="P", odometer=501.0),
            _obs(60 + 14 * 60, speed=0.0, gear="P", odometer=501.0),
        ]
    )
    assert machine.phase == DrivePhase.COOLING_DOWN
    assert [type(effect) for effect in effects] == [SessionStarted]


def test_unknown_odometer_never_starts_a_drive() -> None:
    machine, effects = _run(
        [
            _obs(0, speed=45.0, gear="D"),
            _obs(5, speed=45.0, gear="D", odometer=0.0),
        ]
    )
    assert machine.phase == DrivePhase.IDLE
    assert effects == []


def test_explicit_ignition_off_blocks_start() -> None:
    machine, effects = _run([_obs(0, powered=False, speed=10.0, gear="D", odometer=100.0)])
    assert machine.phase == DrivePhase.IDLE
    assert effects == []


def test_gear_alone_starts_a_drive() -> None:
    machine, effects = _run([_obs(0, powered=True, speed=0.0, gear="R", odometer=100.0)])
    assert machine.phase == DrivePhase.ACTIVE
    assert isinstance(effects[0], SessionStarted)


def test_charge_episode_skips_drive_checks() -> None:
    machine, effects = _run([_obs(0, speed=45.0, gear="D", odometer=1000.0, charge_episode=True)])
    assert machine == DriveMachine()
    assert effects == []


def test_path_sampled_at_minimum_spacing_and_requires_fix() -> None:
    position = {"latitude": 52.5, "longitude": 13.4, "odometer": 1000.0, "speed": 30.0, "gear": "D"}
    machine, _ = _run(
        [
            _obs(0, **position),
            _obs(2, **position),
            _obs(5, **position),
            _obs(6, **position),
            _obs(10, **{**position, "latitude": 0.0, "longitude": 0.0}),
            _obs(11, **position),
        ]
    )
    timestamps = [point.timestamp for point in machine.session.path]
    assert timestamps == [_T0, _T0 + timedelta(seconds=5), _T0 + timedelta(seconds=11)]


def test_progress_emitted_at_interval_while_active() -> None:
    moving = {"speed": 50.0, "gear": "D"}
    machine, effects = _run(
        [
            _obs(0, odometer=1000.0, **moving),
            _obs(30, odometer=1000.4, **moving),
            _obs(60, odometer=1000.8, **moving),
        ]
    )
    progress = [effect for effect in effects if isinstance(effect, SessionProgress)]
    assert len(progress) == 1
    assert round(progress[0].session.distance, 1) == 0.8
    assert machine.session.last_progress_at == _T0 + timedelta(seconds=60)


def test_odometer_going_backwards_is_discarded_not_persisted() -> None:
    machine, effects = _run(
        [
            _obs(0, speed=30.0, gear="D", odometer=1000.0),
            _obs(60, speed=0.0, gear="P", odometer=999.0),
            _obs(60 + 16 * 60, speed=0.0, gear="P", odometer=999.0),
        ]
    )
    assert isinstance(effects[-1], SessionDiscarded)
    assert not any(isinstance(effect, SessionFinished) for effect in effects)


def test_efficiency_zero_when_soc_rises() -> None:
    machine, _ = _run([_obs(0, speed=30.0, gear="D", odometer=1000.0, soc=50.0)])
    final = finalize_drive(machine.session, _obs(600, odometer=1005.0, soc=52.0))
    assert final.consumption_kwh < 0
    assert final.efficiency == 0.0
