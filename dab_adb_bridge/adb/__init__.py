"""Android device binding.

This package drives an Android target through the adb executable: the
command wrapper, the app table, the DAB key table and the device binding
served by the DAB bridge.
"""

from .app_map import AppEntry, load_app_map, resolve_app
from .commands import AdbCommands, AndroidAppStatus
from .device import AdbDevice, ApplicationState
from .keymap import DAB_KEYS_TO_ANDROID, AndroidKeyCode, DabKey

__all__ = [
    "AdbCommands",
    "AdbDevice",
    "AndroidAppStatus",
    "AndroidKeyCode",
    "AppEntry",
    "ApplicationState",
    "DAB_KEYS_TO_ANDROID",
    "DabKey",
    "load_app_map",
    "resolve_app",
]
