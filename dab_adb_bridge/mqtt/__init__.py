"""MQTT layer for the DAB bridge.

This package provides the paho-mqtt transport, request/response correlation,
handler dispatch and the DAB topic and envelope conventions.
"""

from .client import DabMqttClient, Subscription
from .topics import Topics, response_topic
from .transport import InboundPacket, MqttTransport

__all__ = [
    "DabMqttClient",
    "Subscription",
    "Topics",
    "response_topic",
    "InboundPacket",
    "MqttTransport",
]
