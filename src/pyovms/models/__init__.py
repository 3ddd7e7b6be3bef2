"""pyovms data models."""

from pyovms.models.charge import ChargeChartPoint, ChargeSession
from pyovms.models.drive import DrivePathPoint, DriveSession
from pyovms.models.metrics import MetricSample, MetricSource, MetricValue
from pyovms.models.telemetry import TelemetrySnapshot

__all__ = [
    "ChargeChartPoint",
    "ChargeSession",
    "DrivePathPoint",
    "DriveSession",
    "MetricSample",
    "MetricSource",
    "MetricValue",
    "TelemetrySnapshot",
]
