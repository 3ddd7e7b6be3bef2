"""Transport interface shared by the bus and protocol clients."""

from __future__ import annotations

from typing import Protocol


class VehicleTransport(Protocol):
    """An inbound metric source that can also provoke a status report."""

    async def run(self) -> None:
        """Connect and feed the normalizer until cancelled."""
        ...

    async def request_status(self) -> bool:
        """Ask the vehicle for a fresh status report; ``False`` if not connected."""
        ...
