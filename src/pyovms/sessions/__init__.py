"""Drive and charge session detection.

Each session type is an explicit phase enum plus a pure transition function
``step(machine, observation, settings) -> (machine, effects)``. Timers are
expressed through the observation's timestamp, so the cooldown and
finalization rules are testable without a running loop.
"""

from pyovms.sessions.charge import ChargeMachine, ChargeObservation, ChargePhase, ChargeSettings, step_charge
from pyovms.sessions.drive import DriveMachine, DriveObservation, DrivePhase, DriveSettings, step_drive
from pyovms.sessions.effects import (
    SessionDiscarded,
    SessionEffect,
    SessionFinished,
    SessionProgress,
    SessionStarted,
    StatusProbeRequested,
)

__all__ = [
    "ChargeMachine",
    "ChargeObservation",
    "ChargePhase",
    "ChargeSettings",
    "DriveMachine",
    "DriveObservation",
    "DrivePhase",
    "DriveSettings",
    "SessionDiscarded",
    "SessionEffect",
    "SessionFinished",
    "SessionProgress",
    "SessionStarted",
    "StatusProbeRequested",
    "step_charge",
    "step_drive",
]
