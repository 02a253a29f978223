"""DAB to ADB bridge.

Serves the DAB remote-control protocol over MQTT for an Android device
reached through adb.
"""

__version__ = "1.0.0"
