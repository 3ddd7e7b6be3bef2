"""Inbound transports: message bus and binary protocol."""

from pyovms.transport.base import VehicleTransport
from pyovms.transport.mqtt import BusEndpoint, MqttTransport, parse_server
from pyovms.transport.protocol import ProtocolClient, ProtocolSession, ProtocolState, negotiate

__all__ = [
    "BusEndpoint",
    "MqttTransport",
    "ProtocolClient",
    "ProtocolSession",
    "ProtocolState",
    "VehicleTransport",
    "negotiate",
    "parse_server",
]
