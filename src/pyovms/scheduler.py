"""Periodic tick: advances both session machines and flushes the live snapshot.

Store writes never block the tick. They are queued on a :class:`StoreWriter`
that applies them in submission order, so a session's insert always reaches
the store before its updates. Failures are logged and never rolled back.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from pyovms._constants import TABLE_CHARGES, TABLE_DRIVES, TABLE_TELEMETRY
from pyovms.config import OvmsConfig
from pyovms.exceptions import OvmsStoreError
from pyovms.models.drive import DriveSession
from pyovms.sessions.charge import (
    ChargeMachine,
    ChargeObservation,
    ChargePhase,
    ChargeSettings,
    charging_signals_active,
    step_charge,
)
from pyovms.sessions.drive import DriveMachine, DriveObservation, DrivePhase, DriveSettings, step_drive
from pyovms.sessions.effects import (
    Session,
    SessionDiscarded,
    SessionEffect,
    SessionFinished,
    SessionProgress,
    SessionStarted,
    StatusProbeRequested,
)
from pyovms.state.live import LiveVehicleState
from pyovms.store.base import StoreOperation, StoreVerb, TelemetryStore
from pyovms.transport.base import VehicleTransport

_logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class _PendingWrite:
    operation: StoreOperation
    on_error: Callable[[Exception], None] | None = None
    coalesce_key: str | None = None


class StoreWriter:
    """Ordered, fire-and-forget queue in front of a :class:`TelemetryStore`.

    Writes submitted with a ``coalesce_key`` replace any queued write with
    the same key that has not been applied yet. A slow store therefore holds
    at most one pending snapshot instead of one per tick.
    """

    def __init__(self, store: TelemetryStore) -> None:
        self._store = store
        self._queue: asyncio.Queue[_PendingWrite] = asyncio.Queue()
        self._latest: dict[str, _PendingWrite] = {}

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def submit(
        self,
        operation: StoreOperation,
        *,
        on_error: Callable[[Exception], None] | None = None,
        coalesce_key: str | None = None,
    ) -> None:
        pending = _PendingWrite(operation, on_error, coalesce_key)
        if coalesce_key is not None:
            self._latest[coalesce_key] = pending
        self._queue.put_nowait(pending)

    async def run(self) -> None:
        while True:
            pending = await self._queue.get()
            try:
                await self._apply(pending)
            finally:
                self._queue.task_done()

    async def process_pending(self) -> int:
        """Apply every queued write now; returns how many were processed."""
        count = 0
        while not self._queue.empty():
            pending = self._queue.get_nowait()
            try:
                await self._apply(pending)
            finally:
                self._queue.task_done()
            count += 1
        return count

    async def _apply(self, pending: _PendingWrite) -> None:
        operation = pending.operation
        key = pending.coalesce_key
        if key is not None:
            if self._latest.get(key) is not pending:
                _logger.debug("Store write %s superseded by a newer one", operation.describe())
                return
            del self._latest[key]
        try:
            await operation.apply(self._store)
        except OvmsStoreError as exc:
            _logger.warning("Store write %s failed: %s", operation.describe(), exc)
            self._notify(pending, exc)
        except Exception as exc:
            _logger.exception("Unexpected error during store write %s", operation.describe())
            self._notify(pending, exc)
        else:
            _logger.debug("Store write %s done", operation.describe())

    @staticmethod
    def _notify(pending: _PendingWrite, exc: Exception) -> None:
        if pending.on_error is not None:
            pending.on_error(exc)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _table_for(session: Session) -> str:
    return TABLE_DRIVES if isinstance(session, DriveSession) else TABLE_CHARGES


class FlushScheduler:
    """Runs the session machines and the snapshot flush on a fixed interval.

    Drive and charge episodes are mutually exclusive: a driving signal is
    ignored while a charge is open (or about to open from a parked state),
    and a charge cannot open while a drive, including its cooldown, is open.
    """

    def __init__(
        self,
        config: OvmsConfig,
        state: LiveVehicleState,
        writer: StoreWriter,
        *,
        transport: VehicleTransport | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._config = config
        self._state = state
        self._writer = writer
        self._transport = transport
        self._clock = clock
        self._drive_settings = DriveSettings.from_config(config)
        self._charge_settings = ChargeSettings.from_config(config)
        self._drive = DriveMachine()
        self._charge = ChargeMachine()
        self._probe_tasks: set[asyncio.Task[bool]] = set()

    @property
    def drive_machine(self) -> DriveMachine:
        return self._drive

    @property
    def charge_machine(self) -> ChargeMachine:
        return self._charge

    def attach_transport(self, transport: VehicleTransport) -> None:
        self._transport = transport

    async def run(self) -> None:
        interval = self._config.tick_interval
        while True:
            await asyncio.sleep(interval)
            self.tick()

    def tick(self, now: datetime | None = None) -> list[SessionEffect]:
        """Advance both machines, dispatch their effects, flush the snapshot."""
        at = now or self._clock()
        state = self._state
        capacity = state.effective_pack_capacity(
            default_kwh=self._config.default_pack_capacity_kwh,
            nominal_voltage=self._config.nominal_pack_voltage,
        )

        charge_open = self._charge.phase != ChargePhase.IDLE
        drive_idle = self._drive.phase == DrivePhase.IDLE
        drive_obs = DriveObservation.from_state(
            state,
            at=at,
            capacity_kwh=capacity,
            charge_episode=charge_open or (drive_idle and charging_signals_active(state)),
        )
        self._drive, effects = step_drive(self._drive, drive_obs, self._drive_settings)

        charge_obs = ChargeObservation.from_state(
            state,
            at=at,
            capacity_kwh=capacity,
            drive_episode=self._drive.phase != DrivePhase.IDLE,
        )
        self._charge, charge_effects = step_charge(self._charge, charge_obs, self._charge_settings)
        effects.extend(charge_effects)

        state.active_drive = self._drive.session
        state.active_charge = self._charge.session

        for effect in effects:
            self._dispatch(effect)

        self._flush_snapshot(at)
        return effects

    def _dispatch(self, effect: SessionEffect) -> None:
        vehicle_id = self._config.vehicle_id
        if isinstance(effect, StatusProbeRequested):
            self._request_status(effect)
            return

        session = effect.session
        table = _table_for(session)
        row = session.to_row(vehicle_id)
        if isinstance(effect, SessionStarted):
            _logger.info("Opened %s session %s", table, session.id)
            self._writer.submit(StoreOperation(StoreVerb.INSERT, table, session.id, row))
        elif isinstance(effect, SessionProgress):
            self._writer.submit(StoreOperation(StoreVerb.UPDATE, table, session.id, row))
        elif isinstance(effect, SessionFinished):
            _logger.info("Finalized %s session %s", table, session.id)
            self._writer.submit(StoreOperation(StoreVerb.UPDATE, table, session.id, row))
        elif isinstance(effect, SessionDiscarded):
            _logger.info("Discarded %s session %s: %s", table, session.id, effect.reason)
            self._writer.submit(StoreOperation(StoreVerb.DELETE, table, session.id))

    def _request_status(self, effect: StatusProbeRequested) -> None:
        transport = self._transport
        if transport is None:
            _logger.debug("Status probe requested but no transport attached")
            return
        _logger.info("Charging with transport silent for %ss; requesting status", effect.silent_for)
        task = asyncio.get_running_loop().create_task(transport.request_status())
        self._probe_tasks.add(task)
        task.add_done_callback(self._probe_done)

    def _probe_done(self, task: asyncio.Task[bool]) -> None:
        self._probe_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _logger.warning("Status probe failed: %s", exc)

    def _flush_snapshot(self, at: datetime) -> None:
        state = self._state
        if not state.is_dirty:
            return
        state.is_dirty = False
        snapshot = state.snapshot(vehicle_id=self._config.vehicle_id, at=at)
        self._writer.submit(
            StoreOperation(StoreVerb.INSERT, TABLE_TELEMETRY, row=snapshot.to_row()),
            on_error=self._mark_dirty,
            coalesce_key=TABLE_TELEMETRY,
        )

    def _mark_dirty(self, _exc: Exception) -> None:
        self._state.is_dirty = True
