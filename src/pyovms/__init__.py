"""pyovms - OVMS telemetry logger with drive and charge session detection."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pyovms")
except PackageNotFoundError:
    __version__ = "0+local"
from pyovms.config import OvmsConfig
from pyovms.exceptions import (
    OvmsConfigError,
    OvmsCryptoError,
    OvmsError,
    OvmsHandshakeError,
    OvmsProtocolError,
    OvmsStoreError,
    OvmsTransportError,
)
from pyovms.ingestion.metrics import MetricNormalizer
from pyovms.logger import TelemetryLogger
from pyovms.models import (
    ChargeChartPoint,
    ChargeSession,
    DrivePathPoint,
    DriveSession,
    MetricSample,
    MetricSource,
    TelemetrySnapshot,
)
from pyovms.scheduler import FlushScheduler, StoreWriter
from pyovms.state.live import LiveVehicleState
from pyovms.store import MemoryTelemetryStore, RestTelemetryStore, TelemetryStore

__all__ = [
    "__version__",
    "ChargeChartPoint",
    "ChargeSession",
    "DrivePathPoint",
    "DriveSession",
    "FlushScheduler",
    "LiveVehicleState",
    "MemoryTelemetryStore",
    "MetricNormalizer",
    "MetricSample",
    "MetricSource",
    "OvmsConfig",
    "OvmsConfigError",
    "OvmsCryptoError",
    "OvmsError",
    "OvmsHandshakeError",
    "OvmsProtocolError",
    "OvmsStoreError",
    "OvmsTransportError",
    "RestTelemetryStore",
    "StoreWriter",
    "TelemetryLogger",
    "TelemetrySnapshot",
]
