"""Telemetry store sinks."""

from pyovms.store.base import StoreOperation, StoreVerb, TelemetryStore
from pyovms.store.memory import MemoryTelemetryStore
from pyovms.store.rest import RestTelemetryStore

__all__ = [
    "MemoryTelemetryStore",
    "RestTelemetryStore",
    "StoreOperation",
    "StoreVerb",
    "TelemetryStore",
]
