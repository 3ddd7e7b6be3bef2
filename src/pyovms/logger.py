"""Top-level telemetry logger wiring transport, state, sessions and store."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import Any

import aiohttp

from pyovms._redact import redact_for_log
from pyovms.config import TRANSPORT_PROTOCOL, OvmsConfig
from pyovms.exceptions import OvmsError
from pyovms.ingestion.metrics import MetricNormalizer
from pyovms.scheduler import FlushScheduler, StoreWriter
from pyovms.state.live import LiveVehicleState
from pyovms.store.base import TelemetryStore
from pyovms.store.rest import RestTelemetryStore
from pyovms.transport.base import VehicleTransport
from pyovms.transport.mqtt import MqttTransport
from pyovms.transport.protocol import ProtocolClient

_logger = logging.getLogger(__name__)


def build_transport(config: OvmsConfig, normalizer: MetricNormalizer) -> VehicleTransport:
    """Create the single configured transport."""
    if config.transport == TRANSPORT_PROTOCOL:
        return ProtocolClient(config, normalizer)
    return MqttTransport(config, normalizer)


class TelemetryLogger:
    """Runs one vehicle's ingestion pipeline until cancelled.

    Usage::

        async with TelemetryLogger(OvmsConfig.from_env()) as logger:
            await logger.run()

    Pass ``store`` to write somewhere other than the REST endpoint (a dry run
    uses :class:`~pyovms.store.memory.MemoryTelemetryStore`).
    """

    def __init__(
        self,
        config: OvmsConfig,
        *,
        store: TelemetryStore | None = None,
        session: aiohttp.ClientSession | None = None,
        transport: VehicleTransport | None = None,
    ) -> None:
        config.validate(require_store=store is None)
        self._config = config
        self._external_session = session is not None
        self._http_session = session
        self._store = store
        self._state = LiveVehicleState()
        self._normalizer = MetricNormalizer(self._state)
        self._transport = transport
        self._writer: StoreWriter | None = None
        self._scheduler: FlushScheduler | None = None

    @property
    def state(self) -> LiveVehicleState:
        return self._state

    @property
    def normalizer(self) -> MetricNormalizer:
        return self._normalizer

    @property
    def scheduler(self) -> FlushScheduler:
        if self._scheduler is None:
            raise OvmsError("Logger not started. Use 'async with TelemetryLogger(...) as logger:'")
        return self._scheduler

    async def __aenter__(self) -> TelemetryLogger:
        if self._store is None:
            if self._http_session is None:
                self._http_session = aiohttp.ClientSession()
            # validate() guarantees both are set when no store was given
            self._store = RestTelemetryStore(
                self._config.store_url or "",
                self._config.store_key or "",
                self._http_session,
                timeout=self._config.store_timeout,
            )
        if self._transport is None:
            self._transport = build_transport(self._config, self._normalizer)
        self._writer = StoreWriter(self._store)
        self._scheduler = FlushScheduler(self._config, self._state, self._writer, transport=self._transport)
        _logger.debug("Configuration: %s", redact_for_log(dataclasses.asdict(self._config)))
        _logger.info(
            "Telemetry logger ready vehicle=%s transport=%s",
            self._config.vehicle_id,
            self._config.transport,
        )
        return self

    async def __aexit__(self, *exc: Any) -> None:
        writer = self._writer
        if writer is not None and writer.pending:
            _logger.info("Flushing %d pending store writes", writer.pending)
            await writer.process_pending()
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        self._writer = None
        self._scheduler = None

    async def run(self) -> None:
        """Run transport, scheduler and store writer together until cancelled."""
        transport = self._transport
        writer = self._writer
        scheduler = self._scheduler
        if transport is None or writer is None or scheduler is None:
            raise OvmsError("Logger not started. Use 'async with TelemetryLogger(...) as logger:'")

        tasks = [
            asyncio.create_task(transport.run(), name="pyovms-transport"),
            asyncio.create_task(scheduler.run(), name="pyovms-scheduler"),
            asyncio.create_task(writer.run(), name="pyovms-store-writer"),
        ]
        try:
            await asyncio.gather(*tasks)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
