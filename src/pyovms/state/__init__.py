"""Live vehicle state.

The single mutable aggregate written by the normalizer and read by the
session state machines and the periodic flush.
"""

from pyovms.state.live import LiveVehicleState

__all__ = ["LiveVehicleState"]
