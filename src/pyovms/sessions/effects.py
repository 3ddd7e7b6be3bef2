"""Side effects emitted by the session state machines.

The scheduler turns these into store writes and transport probes.
"""

from __future__ import annotations

from dataclasses import dataclass

from pyovms.models.charge import ChargeSession
from pyovms.models.drive import DriveSession

Session = DriveSession | ChargeSession


@dataclass(frozen=True)
class SessionStarted:
    """Insert the new session row."""

    session: Session


@dataclass(frozen=True)
class SessionProgress:
    """Update an open session row with its running figures."""

    session: Session


@dataclass(frozen=True)
class SessionFinished:
    """Update the session row with its final figures."""

    session: Session


@dataclass(frozen=True)
class SessionDiscarded:
    """Delete a session that failed the minimum distance/duration filter."""

    session: Session
    reason: str


@dataclass(frozen=True)
class StatusProbeRequested:
    """Ask the transport to provoke a fresh status report."""

    silent_for: float | None


SessionEffect = SessionStarted | SessionProgress | SessionFinished | SessionDiscarded | StatusProbeRequested
