"""DAB protocol layer.

This package provides the bridge serving DAB command topics for a device
binding, the telemetry session manager and a controller-side client.
"""

from .bridge import DabBridge
from .client import DabClient
from .device import DeviceCommands, UnimplementedDevice
from .telemetry import TelemetryKey, TelemetryKind, TelemetryManager

__all__ = [
    "DabBridge",
    "DabClient",
    "DeviceCommands",
    "UnimplementedDevice",
    "TelemetryKey",
    "TelemetryKind",
    "TelemetryManager",
]
